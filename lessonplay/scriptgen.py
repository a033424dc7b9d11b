"""Lesson scripts: scene/slide models, prompt templates and response parsing."""
from __future__ import annotations

import json
import re
from dataclasses import asdict, dataclass, field

from pydantic import ValidationError

from .schemas import ScriptPayload

# ---------------------------------------------------------------------------
# Prompt templates
# ---------------------------------------------------------------------------

SCRIPT_PROMPT = """You are an expert educational content creator. Create a script for a short animated educational slideshow about: {topic}

The script should:
1. Be engaging and easy to understand.
2. Break down complex concepts into simple visuals.
3. Have clear scene-by-scene descriptions.

Return your response as valid JSON with this structure:
{{
    "title": "Slideshow title",
    "scenes": [
        {{
            "scene_number": 1,
            "narration": "What the narrator says (2-3 sentences max)",
            "visual_description": "Detailed description of the image to show"
        }}
    ]
}}

Create 4-5 scenes that tell a complete educational story about {topic}.
Keep narration concise - each scene should be speakable in 10-15 seconds.
Make visual descriptions detailed enough for an AI image generator."""

BRANCH_PROMPT = """The user has a question about a specific part of an educational slideshow.
Context (Current Slide Narration): "{context}"
User Question: "{question}"

Create a very short "detour" script (1 or 2 scenes MAX) that visually explains the answer to this question.

Return your response as valid JSON with this structure:
{{
    "title": "Explanation",
    "scenes": [
        {{
            "scene_number": 1,
            "narration": "What the narrator says to explain the answer",
            "visual_description": "Detailed description of a visual that helps explain the answer"
        }}
    ]
}}

Keep it very brief and focused solely on answering the question visually."""

QUESTION_PROMPT = """You are a helpful educational assistant.
Lesson Topic: "{topic}"
Current Slide Narration: "{context}"
User Question: "{question}"

Answer the question concisely in 2-3 sentences.
Do not offer to generate images, just answer the question in text."""

STYLE_PROMPT = """
Style: Modern educational illustration, clean vector art style,
vibrant but professional color palette (blues, teals, warm accents),
smooth gradients, minimal shadows, suitable for educational content,
16:9 aspect ratio, high quality, professional animation style.
Do not include text in the image.
"""

SPEECH_PROMPT = "Say in an enthusiastic, educational tone: {text}"


# ---------------------------------------------------------------------------
# Models
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Scene:
    scene_number: int
    narration: str
    visual_description: str

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class Script:
    title: str
    scenes: tuple[Scene, ...] = field(default_factory=tuple)

    def __len__(self) -> int:
        return len(self.scenes)


@dataclass(frozen=True)
class Slide:
    """A scene with its generated media attached.

    ``image_data`` is encoded image bytes (PNG/JPEG as returned by the model)
    and ``audio_data`` raw 16-bit PCM; either is ``None`` when synthesis
    produced nothing.
    """
    scene_number: int
    narration: str
    visual_description: str
    image_data: bytes | None = field(default=None, repr=False)
    audio_data: bytes | None = field(default=None, repr=False)

    @classmethod
    def from_scene(cls, scene: Scene, image_data: bytes | None, audio_data: bytes | None) -> "Slide":
        return cls(
            scene_number=scene.scene_number,
            narration=scene.narration,
            visual_description=scene.visual_description,
            image_data=image_data or None,
            audio_data=audio_data or None,
        )

    @property
    def has_image(self) -> bool:
        return self.image_data is not None

    @property
    def has_audio(self) -> bool:
        return self.audio_data is not None


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------

def _extract_json(text: str) -> dict:
    """Extract the first JSON object from a text response."""
    # Try direct parse
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        pass
    # Find JSON block in markdown code fence
    fence = re.search(r"```(?:json)?\s*(\{.*?\})\s*```", text, re.DOTALL)
    if fence:
        try:
            return json.loads(fence.group(1))
        except json.JSONDecodeError:
            pass
    # Find bare JSON object
    match = re.search(r"\{.*\}", text, re.DOTALL)
    if match:
        try:
            return json.loads(match.group(0))
        except json.JSONDecodeError:
            pass
    raise ValueError(f"No valid JSON found in response:\n{text[:500]}")


def parse_script(text: str | None) -> Script:
    """Parse a script model response into a :class:`Script`.

    Scenes keep the order the model returned them in; ``scene_number`` is
    only used for display.

    Raises ``ValueError`` if the response is empty, is not JSON, is missing
    the title, has no scenes, or has a scene without narration or visual
    description.
    """
    if not text or not text.strip():
        raise ValueError("Empty script response")

    data = _extract_json(text)
    if not isinstance(data, dict):
        raise ValueError(f"Script response is not a JSON object: {type(data).__name__}")

    try:
        payload = ScriptPayload.model_validate(data)
    except ValidationError as e:
        raise ValueError(f"Script response does not match the expected shape: {e}") from e

    scenes = tuple(
        Scene(
            scene_number=s.scene_number,
            narration=s.narration.strip(),
            visual_description=s.visual_description.strip(),
        )
        for s in payload.scenes
    )
    for s in scenes:
        if not s.narration or not s.visual_description:
            raise ValueError(f"Scene {s.scene_number} has blank narration or visual description")

    title = payload.title.strip()
    if not title:
        raise ValueError("Script has a blank title")

    return Script(title=title, scenes=scenes)


def script_to_json(script: Script) -> str:
    return json.dumps(
        {"title": script.title, "scenes": [s.to_dict() for s in script.scenes]},
        indent=2,
    )
