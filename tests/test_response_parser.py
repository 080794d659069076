"""Tests for structured response parsing."""

from types import SimpleNamespace

from services.realtime.response_parser import extract_usage, parse_response_with_questions


def test_direct_json():
    parsed = parse_response_with_questions('{"response": "Hi", "questions": ["a?", "b?"]}')
    assert parsed.content == "Hi"
    assert parsed.questions == ["a?", "b?"]


def test_fenced_json_block():
    raw = 'Here you go:\n```json\n{"response": "Hi", "questions": ["a?"]}\n```'
    parsed = parse_response_with_questions(raw)
    assert parsed.content == "Hi"
    assert parsed.questions == ["a?"]


def test_plain_text_fallback():
    parsed = parse_response_with_questions("not json")
    assert parsed.content == "not json"
    assert parsed.questions == []


def test_questions_filtered_and_capped():
    raw = '{"response": "Hi", "questions": ["a?", "", 3, "  ", "b?", "c?", "d?"]}'
    parsed = parse_response_with_questions(raw, limit=2)
    assert parsed.questions == ["a?", "b?"]


def test_wrong_shape_falls_back_to_raw():
    raw = '{"answer": "Hi"}'
    assert parse_response_with_questions(raw).content == raw
    assert parse_response_with_questions("[1, 2]").content == "[1, 2]"


def test_empty_input():
    parsed = parse_response_with_questions("")
    assert parsed.content == ""
    assert parsed.questions == []


def test_extract_usage_from_response():
    response = SimpleNamespace(usage=SimpleNamespace(input_tokens=7, output_tokens=3, total_tokens=10))
    assert extract_usage(response) == {"prompt": 7, "completion": 3, "total": 10}


def test_extract_usage_without_usage():
    assert extract_usage(SimpleNamespace(usage=None)) == {"prompt": 0, "completion": 0, "total": 0}
    assert extract_usage(None) == {"prompt": 0, "completion": 0, "total": 0}
