import json

import pytest
from pydantic import ValidationError

from lessonplay.schemas import ScriptPayload
from lessonplay.scriptgen import Scene, Slide, parse_script, script_to_json

from conftest import script_json


def test_parse_valid_script():
    script = parse_script(script_json(3))
    assert script.title == "Photosynthesis"
    assert len(script) == 3
    assert script.scenes[0] == Scene(1, "Narration 1", "Visual 1")


def test_parse_fenced_json():
    text = "Here you go:\n```json\n" + script_json(2) + "\n```\nEnjoy!"
    assert len(parse_script(text)) == 2


def test_scene_order_kept_as_returned():
    data = json.loads(script_json(3))
    data["scenes"].reverse()
    script = parse_script(json.dumps(data))
    assert [s.scene_number for s in script.scenes] == [3, 2, 1]


@pytest.mark.parametrize("text", [None, "", "   ", "not json at all"])
def test_parse_rejects_unusable_text(text):
    with pytest.raises(ValueError):
        parse_script(text)


def test_parse_rejects_no_scenes():
    with pytest.raises(ValueError):
        parse_script(json.dumps({"title": "X", "scenes": []}))


def test_parse_rejects_blank_narration():
    data = json.loads(script_json(2))
    data["scenes"][1]["narration"] = "   "
    with pytest.raises(ValueError, match="Scene 2"):
        parse_script(json.dumps(data))


def test_parse_rejects_missing_title():
    data = json.loads(script_json(1))
    del data["title"]
    with pytest.raises(ValueError):
        parse_script(json.dumps(data))


def test_payload_schema():
    with pytest.raises(ValidationError):
        ScriptPayload(title="X", scenes=[{"scene_number": 0, "narration": "a", "visual_description": "b"}])


def test_script_to_json_round_trip():
    script = parse_script(script_json(2))
    assert parse_script(script_to_json(script)) == script


def test_slide_from_scene_normalizes_empty_media():
    slide = Slide.from_scene(Scene(1, "n", "v"), b"", b"pcm")
    assert slide.image_data is None
    assert not slide.has_image
    assert slide.has_audio
