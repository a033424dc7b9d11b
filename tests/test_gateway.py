import asyncio
import logging

import pytest

from lessonplay.config import IMAGE_MODEL, SCRIPT_MODEL, TTS_MODEL, Config
from lessonplay.gateway import (
    ANSWER_EMPTY,
    ANSWER_FALLBACK,
    OFF_TOPIC_REFUSAL,
    GeminiGateway,
    GenerationFailed,
)

from conftest import FakeClient, inline_response, script_json, text_response


def _gateway(handlers, **kwargs):
    config = Config(gemini_api_key="test-key", request_timeout=kwargs.pop("timeout", None))
    client = FakeClient(handlers)
    return GeminiGateway(config, client=client, **kwargs), client


def test_requires_api_key_without_client():
    with pytest.raises(ValueError):
        GeminiGateway(Config(gemini_api_key=""))


def test_draft_script():
    gw, client = _gateway({SCRIPT_MODEL: text_response(script_json(4))})
    script = asyncio.run(gw.draft_script("photosynthesis"))

    assert len(script) == 4
    call = client.calls[0]
    assert call.model == SCRIPT_MODEL
    assert "photosynthesis" in call.contents
    assert call.config.response_mime_type == "application/json"


def test_draft_script_provider_error():
    gw, _ = _gateway({SCRIPT_MODEL: RuntimeError("quota exceeded")})
    with pytest.raises(GenerationFailed, match="quota exceeded"):
        asyncio.run(gw.draft_script("x"))


def test_draft_script_unusable_text():
    gw, _ = _gateway({SCRIPT_MODEL: text_response("")})
    with pytest.raises(GenerationFailed):
        asyncio.run(gw.draft_script("x"))


def test_draft_branch_script_uses_context_and_question():
    gw, client = _gateway({SCRIPT_MODEL: text_response(script_json(1, title="Why"))})
    script = asyncio.run(gw.draft_branch_script("Plants eat light.", "Why green?"))

    assert script.title == "Why"
    assert "Plants eat light." in client.calls[0].contents
    assert "Why green?" in client.calls[0].contents


def test_answer_question():
    gw, client = _gateway({SCRIPT_MODEL: text_response("  Because of chlorophyll.  ")})
    answer = asyncio.run(gw.answer_question("Plants", "Leaves are green.", "Why green?"))
    assert answer == "Because of chlorophyll."
    assert client.calls[0].config is None


def test_answer_question_never_raises():
    gw, _ = _gateway({SCRIPT_MODEL: ConnectionError("offline")})
    assert asyncio.run(gw.answer_question("t", "c", "q")) == ANSWER_FALLBACK


def test_answer_question_empty():
    gw, _ = _gateway({SCRIPT_MODEL: text_response(None)})
    assert asyncio.run(gw.answer_question("t", "c", "q")) == ANSWER_EMPTY


def test_relevance_gate_refuses_without_provider_call():
    gw, client = _gateway(
        {SCRIPT_MODEL: text_response("should not be used")},
        relevance_gate=lambda topic, question: "plant" in question,
    )
    assert asyncio.run(gw.answer_question("Plants", "c", "Who won the match?")) == OFF_TOPIC_REFUSAL
    assert client.calls == []

    assert asyncio.run(gw.answer_question("Plants", "c", "Do plants sleep?")) == "should not be used"


def test_synthesize_image():
    gw, client = _gateway({IMAGE_MODEL: inline_response(b"\x89PNG...")})
    data = asyncio.run(gw.synthesize_image("A leaf"))
    assert data == b"\x89PNG..."
    assert client.calls[0].contents.startswith("A leaf")


@pytest.mark.parametrize("result", [RuntimeError("500"), text_response("no image")])
def test_synthesize_image_absent(result):
    gw, _ = _gateway({IMAGE_MODEL: result})
    assert asyncio.run(gw.synthesize_image("A leaf")) is None


def test_synthesize_speech():
    gw, client = _gateway({TTS_MODEL: inline_response(b"\x00\x01" * 10)})
    data = asyncio.run(gw.synthesize_speech("Hello", "Kore"))

    assert data == b"\x00\x01" * 10
    config = client.calls[0].config
    assert config.response_modalities == ["AUDIO"]
    assert config.speech_config.voice_config.prebuilt_voice_config.voice_name == "Kore"


def test_synthesize_speech_absent():
    gw, _ = _gateway({TTS_MODEL: RuntimeError("tts down")})
    assert asyncio.run(gw.synthesize_speech("Hello", "Puck")) is None


def test_request_timeout():
    async def slow(contents):
        await asyncio.sleep(10)

    gw, _ = _gateway({SCRIPT_MODEL: slow}, timeout=0.01)
    with pytest.raises(GenerationFailed):
        asyncio.run(gw.draft_script("x"))
    assert asyncio.run(gw.answer_question("t", "c", "q")) == ANSWER_FALLBACK


def test_script_schema_serializes_through_sdk(monkeypatch):
    from google import genai

    client = genai.Client(api_key="x")
    sent = []

    async def transport(*args, **kwargs):
        sent.append((args, kwargs))
        raise ConnectionError("offline")

    monkeypatch.setattr(client._api_client, "async_request", transport)
    gw = GeminiGateway(Config(gemini_api_key="x"), client=client)

    with pytest.raises(GenerationFailed, match="offline"):
        asyncio.run(gw.draft_script("Plants"))
    assert len(sent) == 1
    assert "exclusiveMinimum" not in repr(sent)


def test_draft_script_logs_script_json(caplog):
    caplog.set_level(logging.DEBUG, logger="lessonplay.gateway")
    gw, _ = _gateway({SCRIPT_MODEL: text_response(script_json(2))})
    asyncio.run(gw.draft_script("photosynthesis"))
    assert '"scene_number": 2' in caplog.text
