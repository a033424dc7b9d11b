"""Gemini content gateway: scripts, answers, images and narration.

This is the only module that talks to the provider. Every operation is a
single attempt; there is no retry, caching or rate limiting here.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable

from google import genai
from google.genai import types

from .config import Config
from .schemas import ScriptPayload
from .scriptgen import (
    BRANCH_PROMPT,
    QUESTION_PROMPT,
    SCRIPT_PROMPT,
    SPEECH_PROMPT,
    STYLE_PROMPT,
    Script,
    parse_script,
    script_to_json,
)

log = logging.getLogger(__name__)

ANSWER_FALLBACK = "Sorry, I had trouble connecting to the AI."
ANSWER_EMPTY = "I couldn't generate an answer."
OFF_TOPIC_REFUSAL = (
    "I can only answer questions about this lesson's topic. "
    "Try asking something related to what's on screen."
)

RelevanceGate = Callable[[str, str], bool]


class GenerationFailed(Exception):
    """The provider errored or returned content that is not a usable script."""


def _first_inline_data(response: Any) -> bytes | None:
    """Return the first inline binary payload of a generate_content response."""
    candidates = getattr(response, "candidates", None) or []
    if not candidates:
        return None
    content = getattr(candidates[0], "content", None)
    for part in getattr(content, "parts", None) or []:
        inline = getattr(part, "inline_data", None)
        if inline is not None and inline.data:
            return bytes(inline.data)
    return None


class GeminiGateway:
    """Async request/response client for the Gemini API.

    Args:
        config: Credentials, model ids and the optional per-call timeout.
        client: Pre-built ``genai.Client`` (tests pass a fake). Built from
            ``config.gemini_api_key`` when omitted.
        relevance_gate: Optional ``(topic, question) -> bool``. When it
            rejects a question, :meth:`answer_question` returns
            ``OFF_TOPIC_REFUSAL`` without calling the provider.
    """

    def __init__(
        self,
        config: Config,
        client: Any = None,
        relevance_gate: RelevanceGate | None = None,
    ) -> None:
        if client is None:
            if not config.gemini_api_key:
                raise ValueError("GEMINI_API_KEY is not set.")
            client = genai.Client(api_key=config.gemini_api_key)
        self._config = config
        self._client = client
        self._relevance_gate = relevance_gate

    @property
    def config(self) -> Config:
        return self._config

    async def _generate(self, model: str, contents: str, config: types.GenerateContentConfig | None = None):
        call: Awaitable = self._client.aio.models.generate_content(
            model=model,
            contents=contents,
            config=config,
        )
        if self._config.request_timeout is None:
            return await call
        return await asyncio.wait_for(call, timeout=self._config.request_timeout)

    async def _draft(self, prompt: str, what: str) -> Script:
        try:
            response = await self._generate(
                self._config.script_model,
                prompt,
                types.GenerateContentConfig(
                    response_mime_type="application/json",
                    response_schema=ScriptPayload,
                ),
            )
        except Exception as e:
            log.error("Error generating %s: %s", what, e)
            raise GenerationFailed(f"Could not generate {what}: {e}") from e

        try:
            script = parse_script(response.text)
        except ValueError as e:
            log.error("Unusable %s response: %s", what, e)
            raise GenerationFailed(f"No usable {what} generated: {e}") from e

        log.info("Drafted %s %r with %d scenes", what, script.title, len(script))
        log.debug("Drafted %s:\n%s", what, script_to_json(script))
        return script

    async def draft_script(self, topic: str) -> Script:
        """Draft the main lesson script for *topic*."""
        return await self._draft(SCRIPT_PROMPT.format(topic=topic), "script")

    async def draft_branch_script(self, context_text: str, question: str) -> Script:
        """Draft a one or two scene detour answering *question*."""
        prompt = BRANCH_PROMPT.format(context=context_text, question=question)
        return await self._draft(prompt, "branch script")

    async def answer_question(self, topic: str, context_text: str, question: str) -> str:
        """Short text answer. Never raises for provider failures."""
        if self._relevance_gate is not None and not self._relevance_gate(topic, question):
            log.info("Question rejected by relevance gate: %s", question[:80])
            return OFF_TOPIC_REFUSAL

        prompt = QUESTION_PROMPT.format(topic=topic, context=context_text, question=question)
        try:
            response = await self._generate(self._config.script_model, prompt)
        except Exception as e:
            log.error("Question answering failed: %s", e)
            return ANSWER_FALLBACK

        text = (getattr(response, "text", None) or "").strip()
        return text or ANSWER_EMPTY

    async def synthesize_image(self, visual_description: str) -> bytes | None:
        """Illustration bytes for a scene, or ``None`` on any failure."""
        prompt = f"{visual_description}\n\n{STYLE_PROMPT}"
        try:
            response = await self._generate(self._config.image_model, prompt)
        except Exception as e:
            log.warning("Error generating image: %s", e)
            return None

        data = _first_inline_data(response)
        if data is None:
            log.warning("Image model returned no image for: %s", visual_description[:60])
        return data

    async def synthesize_speech(self, text: str, voice_name: str) -> bytes | None:
        """Raw 24kHz mono 16-bit PCM narration, or ``None`` on any failure."""
        speech_config = types.GenerateContentConfig(
            response_modalities=["AUDIO"],
            speech_config=types.SpeechConfig(
                voice_config=types.VoiceConfig(
                    prebuilt_voice_config=types.PrebuiltVoiceConfig(voice_name=voice_name),
                ),
            ),
        )
        try:
            response = await self._generate(
                self._config.tts_model,
                SPEECH_PROMPT.format(text=text),
                speech_config,
            )
        except Exception as e:
            log.warning("Error generating audio: %s", e)
            return None

        data = _first_inline_data(response)
        if data is None:
            log.warning("TTS model returned no audio for: %s", text[:60])
        return data
