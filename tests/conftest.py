import asyncio
import json
from types import SimpleNamespace

import pytest

from lessonplay.audio_output import AutoplayBlocked
from lessonplay.gateway import GenerationFailed
from lessonplay.scriptgen import Scene, Script, Slide


# ---------------------------------------------------------------------------
# Provider responses
# ---------------------------------------------------------------------------

def text_response(text):
    return SimpleNamespace(text=text, candidates=[])


def inline_response(data):
    part = SimpleNamespace(inline_data=SimpleNamespace(data=data), text=None)
    return SimpleNamespace(
        text=None,
        candidates=[SimpleNamespace(content=SimpleNamespace(parts=[part]))],
    )


def script_json(n=3, title="Photosynthesis"):
    return json.dumps({
        "title": title,
        "scenes": [
            {
                "scene_number": i,
                "narration": f"Narration {i}",
                "visual_description": f"Visual {i}",
            }
            for i in range(1, n + 1)
        ],
    })


class FakeModels:
    """Stands in for ``client.aio.models``; routes by model id."""

    def __init__(self, handlers):
        self.handlers = handlers
        self.calls = []

    async def generate_content(self, model, contents, config=None):
        self.calls.append(SimpleNamespace(model=model, contents=contents, config=config))
        result = self.handlers[model]
        if callable(result):
            result = result(contents)
            if asyncio.iscoroutine(result):
                result = await result
        if isinstance(result, BaseException):
            raise result
        return result


class FakeClient:
    def __init__(self, handlers):
        self.aio = SimpleNamespace(models=FakeModels(handlers))

    @property
    def calls(self):
        return self.aio.models.calls


# ---------------------------------------------------------------------------
# Gateway
# ---------------------------------------------------------------------------

class FakeGateway:
    """Scriptable gateway that records call ordering and concurrency."""

    def __init__(self, n_scenes=3, branch_scenes=1):
        self.script = Script(
            title="Photosynthesis",
            scenes=tuple(Scene(i, f"Narration {i}", f"Visual {i}") for i in range(1, n_scenes + 1)),
        )
        self.branch = Script(
            title="Explanation",
            scenes=tuple(Scene(i, f"Detour {i}", f"Detour visual {i}") for i in range(1, branch_scenes + 1)),
        )
        self.fail_script = False
        self.fail_branch = False
        self.missing_images = set()
        self.missing_audio = set()
        self.answer = "Chlorophyll absorbs light."
        self.events = []
        self.outstanding = 0
        self.max_outstanding = 0
        self.questions = []
        self.branch_requests = []
        self.answer_gate = None

    async def draft_script(self, topic):
        await asyncio.sleep(0)
        if self.fail_script:
            raise GenerationFailed("boom")
        return self.script

    async def draft_branch_script(self, context_text, question):
        self.branch_requests.append((context_text, question))
        await asyncio.sleep(0)
        if self.fail_branch:
            raise GenerationFailed("branch boom")
        return self.branch

    async def answer_question(self, topic, context_text, question):
        self.questions.append((topic, context_text, question))
        if self.answer_gate is not None:
            await self.answer_gate.wait()
        else:
            await asyncio.sleep(0)
        return self.answer

    async def _media(self, kind, text, missing):
        self.outstanding += 1
        self.max_outstanding = max(self.max_outstanding, self.outstanding)
        self.events.append(("start", kind, text))
        await asyncio.sleep(0)
        await asyncio.sleep(0)
        self.outstanding -= 1
        self.events.append(("end", kind, text))
        if text in missing:
            return None
        return f"{kind}:{text}".encode()

    async def synthesize_image(self, visual_description):
        return await self._media("image", visual_description, self.missing_images)

    async def synthesize_speech(self, text, voice_name):
        return await self._media("speech", text, self.missing_audio)


@pytest.fixture
def fake_gateway():
    return FakeGateway()


# ---------------------------------------------------------------------------
# Playback
# ---------------------------------------------------------------------------

class FakeOutput:
    def __init__(self):
        self.loaded = None
        self.on_finished = None
        self.playing = False
        self.block_play = False
        self.loads = 0
        self.unloads = 0

    def load(self, wav_bytes, on_finished=None):
        self.loaded = wav_bytes
        self.on_finished = on_finished
        self.playing = False
        self.loads += 1

    def play(self):
        if self.block_play:
            raise AutoplayBlocked("not allowed")
        self.playing = True

    def pause(self):
        self.playing = False

    def unload(self):
        self.loaded = None
        self.on_finished = None
        self.playing = False
        self.unloads += 1

    def finish(self):
        """Simulate the clip reaching its natural end."""
        callback = self.on_finished
        self.playing = False
        callback()


class FakeTimer:
    def __init__(self, delay, callback):
        self.delay = delay
        self.callback = callback
        self.cancelled = False

    def cancel(self):
        self.cancelled = True


class FakeScheduler:
    def __init__(self):
        self.timers = []

    def __call__(self, delay, callback):
        timer = FakeTimer(delay, callback)
        self.timers.append(timer)
        return timer

    @property
    def pending(self):
        return [t for t in self.timers if not t.cancelled]

    def fire(self):
        for timer in self.pending:
            timer.cancelled = True
            timer.callback()


def make_slides(n=3, audio=True, start=1):
    return [
        Slide(
            scene_number=i,
            narration=f"Narration {i}",
            visual_description=f"Visual {i}",
            image_data=b"img",
            audio_data=b"\x00\x01" * 100 if audio else None,
        )
        for i in range(start, start + n)
    ]


@pytest.fixture
def output():
    return FakeOutput()


@pytest.fixture
def scheduler():
    return FakeScheduler()
