from __future__ import annotations

import json

import pytest

from charpipe.editor import EditError, format_prompt, parse_edited_prompt

from conftest import make_prompt


def test_format_is_indented_json():
    text = format_prompt(make_prompt(action="reading a book"))
    assert text.startswith("{\n  \"character_id\": \"hero_01\"")
    assert json.loads(text)["scene"]["action"] == "reading a book"


def test_edited_text_parses_back():
    data = json.loads(format_prompt(make_prompt()))
    data["style"] = "anime style, vibrant colors"
    data["scene"]["action"] = "dancing in the rain"

    prompt = parse_edited_prompt(json.dumps(data))
    assert prompt.style == "anime style, vibrant colors"
    assert prompt.scene.action == "dancing in the rain"
    assert prompt.character_id == "hero_01"


@pytest.mark.parametrize(
    "text, message",
    [
        ("", "empty"),
        ("   \n", "empty"),
        ("{\"character_id\": ", "not valid JSON"),
        ("[1, 2]", "incomplete"),
        ("{\"character_id\": \"x\"}", "incomplete"),
    ],
)
def test_malformed_edits_raise_edit_error(text, message):
    with pytest.raises(EditError, match=message):
        parse_edited_prompt(text)


def test_missing_appearance_field_is_named():
    data = json.loads(format_prompt(make_prompt()))
    del data["appearance"]["eyes"]
    with pytest.raises(EditError, match="appearance.eyes"):
        parse_edited_prompt(json.dumps(data))
