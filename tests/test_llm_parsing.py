import json
import logging

import pytest

from designgen.errors import UnparsableResponse
from designgen.llm_parsing import SECTION_NAMES, parse_model_json
from designgen.truncation import is_truncated


GOOD_DOC = {
    "metadata": {"theme_name": "Desert Bloom", "theme_name_romanized": "desert bloom"},
    "product": {"type": "women's linen shirt", "sizes": ["S", "M", "L"]},
    "design": {"primary_color": "Sand", "accent_color": None, "pattern": {"scale": 0.5}},
    "branding": {"tagline": "Made for heat: light, cool, calm"},
    "photography": {"setting": "dunes", "shots": 3},
}


@pytest.mark.parametrize(
    "doc",
    [GOOD_DOC, {"a": "it's fine, really"}, [1, 2, {"x": "y"}], {"prefix": "kept when valid"}],
)
def test_valid_json_is_returned_unchanged(doc):
    text = json.dumps(doc, indent=2)
    assert parse_model_json(text) == json.loads(text)


def test_code_fences_do_not_change_result():
    text = json.dumps(GOOD_DOC)
    assert parse_model_json(f"```json\n{text}\n```") == GOOD_DOC
    assert parse_model_json(f"```\n{text}\n```") == GOOD_DOC


def test_single_quotes_and_trailing_commas_are_repaired():
    assert parse_model_json("{'a': 'b', 'c': [1,2,],}") == {"a": "b", "c": [1, 2]}


def test_stray_prefix_field_is_removed_on_repair():
    text = '{"design": {"prefix": "Mr", "hardware": "brass",}}'
    assert parse_model_json(text) == {"design": {"hardware": "brass"}}


def test_missing_comma_between_objects_is_repaired():
    text = '{"shots": [{"angle": "front"} {"angle": "back"}]}'
    assert parse_model_json(text) == {"shots": [{"angle": "front"}, {"angle": "back"}]}


def test_truncated_response_returns_partial_mapping():
    text = '{"metadata": {"theme_name": "Aurora"}, "product": {"name": "Linen Sh'
    assert is_truncated(text) is True
    doc = parse_model_json(text)
    assert doc == {"metadata": {"theme_name": "Aurora"}, "product": {"name": "Linen Sh"}}


def test_truncated_key_falls_back_to_line_salvage(caplog):
    text = "\n".join(
        [
            "{",
            '  "theme_name": "Aurora",',
            '  "season": "SS25",',
            '  "bad": tru,',
            '  "note": "cut off mid", "ta',
        ]
    )
    # Cut inside a key: closing the string still leaves an invalid object.
    assert is_truncated(text) is True
    with caplog.at_level(logging.WARNING, logger="designgen.llm_parsing"):
        doc = parse_model_json(text)
    assert doc["theme_name"] == "Aurora"
    assert doc["season"] == "SS25"
    assert "bad" not in doc
    assert any("bad" in r.getMessage() for r in caplog.records)


def test_line_salvage_closes_unterminated_value():
    text = "\n".join(
        [
            "{",
            '  "theme_name": "Aurora",',
            '  "tagline": "light as',
            "  ]]",
            '  "x": "y',
        ]
    )
    doc = parse_model_json(text)
    assert doc["theme_name"] == "Aurora"
    assert doc["tagline"] == "light as"


def test_section_wise_reconstruction_keeps_decodable_sections():
    text = (
        '{"metadata": {"theme_name": "Nova"}, '
        '"product": {"name": "Jacket" "color": "red"}, '
        '"branding": {"tagline": "Go"}}'
    )
    doc = parse_model_json(text)
    assert doc["metadata"] == {"theme_name": "Nova"}
    assert doc["branding"] == {"tagline": "Go"}
    assert "product" not in doc


def test_section_names_are_configurable():
    text = '{"alpha": {"x": 1}, "beta": {"y": 2 "z": 3}}'
    with pytest.raises(UnparsableResponse):
        parse_model_json(text)
    assert parse_model_json(text, sections=("alpha", "beta")) == {"alpha": {"x": 1}}
    assert "metadata" in SECTION_NAMES


@pytest.mark.parametrize("garbage", ["not json at all {{{", "", "   ", None, "null"])
def test_unrecoverable_input_raises(garbage):
    with pytest.raises(UnparsableResponse) as exc_info:
        parse_model_json(garbage)
    assert exc_info.value.kind == "unparsable_response"


@pytest.mark.parametrize(
    "text",
    ["[" * 100000 + "]" * 100000, '{"metadata": ' + "[" * 100000, '{"product": {"a": ' + "{" * 5000 + "}"],
)
def test_deeply_nested_input_raises_unparsable(text):
    with pytest.raises(UnparsableResponse):
        parse_model_json(text)


def test_nested_key_does_not_replace_top_level_section():
    text = (
        '{"product": {"name": "Jacket", "design": {"era": "70s"}, "x": 1 "y": 2}, '
        '"design": {"primary_color": "Sand"}}'
    )
    doc = parse_model_json(text)
    assert doc == {"design": {"primary_color": "Sand"}}


def test_section_name_inside_string_is_not_a_boundary():
    # The key below is the string '"design', so '"design":' also occurs mid-literal.
    text = '{"\\"design": {"a": 1}, "x": 1 "y": 2, "design": {"primary_color": "Sand"}}'
    doc = parse_model_json(text)
    assert doc == {"design": {"primary_color": "Sand"}}


def test_line_salvage_handles_long_whitespace_runs():
    text = "\n".join(
        [
            "{",
            '  "theme_name": "Aurora"' + " " * 20000 + ",",
            '  "motto": "calm' + " " * 20000 + 'seas",',
            '  "bad": tru' + " " * 20000 + "x",
            '  "note": "cut off mid", "ta',
        ]
    )
    assert is_truncated(text) is True
    doc = parse_model_json(text)
    assert doc["theme_name"] == "Aurora"
    assert doc["motto"] == "calm" + " " * 20000 + "seas"
    assert "bad" not in doc
