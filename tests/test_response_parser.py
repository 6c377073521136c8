"""Tests for structured-block extraction and per-task reply parsing."""

from __future__ import annotations

import pytest

from meeting_analyst.services.response_parser import (
    ResponseParseError,
    extract_json_block,
    normalize_priority,
    parse_action_items,
    parse_json_block,
    parse_key_points,
    parse_sentiment_keywords,
    parse_summary,
    parse_topics,
)


# ── Block extraction ─────────────────────────────────────────────────────────


@pytest.mark.parametrize(
    "response",
    ["", "plain prose only", '{"a": 1}', "```\n{\"a\": 1}\n```", "```json\n{\"a\": 1}"],
)
def test_no_structured_block_is_no_result(response):
    assert parse_json_block(response) is None


def test_block_is_decoded_independent_of_surrounding_prose():
    assert parse_json_block('prefix ```json {"a":1} ``` suffix') == {"a": 1}


def test_first_block_wins():
    response = '```json\n{"n": 1}\n```\nand later\n```json\n{"n": 2}\n```'
    assert parse_json_block(response) == {"n": 1}


def test_block_contents_are_trimmed():
    assert extract_json_block("```json\n\n  [1, 2]  \n```") == "[1, 2]"


def test_malformed_block_is_hard_error():
    with pytest.raises(ResponseParseError):
        parse_json_block('```json\n{"summary": \n```')


def test_parse_error_is_a_value_error():
    assert issubclass(ResponseParseError, ValueError)


# ── Task parsers ─────────────────────────────────────────────────────────────


def test_parse_summary():
    result = parse_summary('```json\n{"summary": "All good", "key_themes": ["a", "b"]}\n```')
    assert result.summary == "All good"
    assert result.key_themes == ["a", "b"]


def test_parse_summary_soft_miss():
    assert parse_summary("The model forgot the code block.") is None


def test_parse_summary_rejects_wrong_shape():
    with pytest.raises(ResponseParseError):
        parse_summary('```json\n["not", "an", "object"]\n```')
    with pytest.raises(ResponseParseError):
        parse_summary('```json\n{"summary": 42}\n```')


def test_parse_key_points():
    assert parse_key_points('```json\n{"key_points": ["one", "", "two"]}\n```') == ["one", "two"]
    assert parse_key_points('```json\n{}\n```') == []


def test_parse_key_points_rejects_non_list():
    with pytest.raises(ResponseParseError):
        parse_key_points('```json\n{"key_points": "one"}\n```')


def test_parse_action_items_normalizes_fields():
    response = """```json
{"action_items": [
  {"description": "Draft the email", "assignee": "Alice", "priority": "High (only when necessary)", "type": "Task"},
  {"description": "Check pricing", "priority": "urgent", "type": "brainstorm"},
  {"description": "   "}
]}
```"""
    items = parse_action_items(response)

    assert len(items) == 2
    first, second = items
    assert first.description == "Draft the email"
    assert first.assignee == "Alice"
    assert first.priority == "high"
    assert first.type == "task"
    assert first.status == "pending"
    assert len(first.id) == 32
    assert first.created_at.tzinfo is not None

    assert second.priority == "medium"
    assert second.type is None
    assert second.assignee is None
    assert first.id != second.id


def test_parse_action_items_rejects_non_object_items():
    with pytest.raises(ResponseParseError):
        parse_action_items('```json\n{"action_items": ["do it"]}\n```')


@pytest.mark.parametrize(
    "raw,expected",
    [("low", "low"), ("MEDIUM", "medium"), ("high / medium / low", "high"), ("", "medium"), (None, "medium")],
)
def test_normalize_priority(raw, expected):
    assert normalize_priority(raw) == expected


def test_parse_topics():
    response = """```json
{"topics": [{"topic": "Launch", "summary": "Timing", "participants": ["Alice"],
             "start_time": "00:05", "duration_minutes": 7.5}]}
```"""
    topics = parse_topics(response)
    assert len(topics) == 1
    topic = topics[0]
    assert topic.topic == "Launch"
    assert topic.start_time == "00:05"
    assert topic.duration_minutes == 7.5
    assert topic.participants == ["Alice"]


def test_parse_topics_decode_error_is_hard_error():
    with pytest.raises(ResponseParseError):
        parse_topics('```json\n{"topics": [\n```')


def test_parse_topics_bad_duration():
    with pytest.raises(ResponseParseError):
        parse_topics('```json\n{"topics": [{"topic": "x", "duration_minutes": "long"}]}\n```')


def test_parse_sentiment_keywords():
    result = parse_sentiment_keywords(
        '```json\n{"sentiment": "mixed", "keywords": ["budget"], "confidence": "0.7"}\n```'
    )
    assert result.sentiment == "mixed"
    assert result.keywords == ["budget"]
    assert result.confidence == pytest.approx(0.7)
