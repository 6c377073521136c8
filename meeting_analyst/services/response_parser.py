"""Structured-block extraction for LLM replies.

A reply without a ```json block is a soft miss (``None``); a block that
is present but does not decode to the expected shape raises
``ResponseParseError``.
"""

from __future__ import annotations

import json
import logging
import uuid
from dataclasses import dataclass, field
from typing import Any, Optional

from meeting_analyst.services.analysis_models import (
    ACTION_TYPES,
    PRIORITIES,
    ActionItem,
    TopicDiscussion,
    utcnow,
)

JSON_FENCE = "```json"
FENCE = "```"

_logger = logging.getLogger("analyst.parser")


class ResponseParseError(ValueError):
    pass


def extract_json_block(response: str) -> Optional[str]:
    """Return the trimmed contents of the first ```json block, if any."""
    if not response:
        return None
    start = response.find(JSON_FENCE)
    if start == -1:
        return None
    start += len(JSON_FENCE)
    end = response.find(FENCE, start)
    if end == -1:
        return None
    return response[start:end].strip()


def parse_json_block(response: str) -> Optional[Any]:
    block = extract_json_block(response)
    if block is None:
        _logger.debug("No structured block in response (%d chars)", len(response or ""))
        return None
    try:
        return json.loads(block)
    except json.JSONDecodeError as exc:
        raise ResponseParseError(f"Invalid JSON block: {exc}") from exc


def _object_block(response: str) -> Optional[dict]:
    data = parse_json_block(response)
    if data is None:
        return None
    if not isinstance(data, dict):
        raise ResponseParseError(f"Expected a JSON object, got {type(data).__name__}")
    return data


def _string_list(data: dict, key: str) -> list[str]:
    value = data.get(key)
    if value is None:
        return []
    if not isinstance(value, list):
        raise ResponseParseError(f"Expected '{key}' to be a list")
    return [str(item) for item in value if item is not None and str(item).strip()]


@dataclass
class SummaryResult:
    summary: str
    key_themes: list[str] = field(default_factory=list)


@dataclass
class SentimentResult:
    sentiment: str
    keywords: list[str] = field(default_factory=list)
    confidence: Optional[float] = None


def parse_summary(response: str) -> Optional[SummaryResult]:
    data = _object_block(response)
    if data is None:
        return None
    summary = data.get("summary")
    if not isinstance(summary, str):
        raise ResponseParseError("Expected 'summary' to be a string")
    return SummaryResult(summary=summary, key_themes=_string_list(data, "key_themes"))


def parse_key_points(response: str) -> Optional[list[str]]:
    data = _object_block(response)
    if data is None:
        return None
    return _string_list(data, "key_points")


def normalize_priority(value: Any) -> str:
    # Models sometimes echo the template ("high (only when ...)"); keep the first word.
    words = str(value or "").strip().lower().split()
    if words and words[0] in PRIORITIES:
        return words[0]
    return "medium"


def normalize_type(value: Any) -> Optional[str]:
    text = str(value or "").strip().lower()
    return text if text in ACTION_TYPES else None


def parse_action_items(response: str) -> Optional[list[ActionItem]]:
    data = _object_block(response)
    if data is None:
        return None
    raw_items = data.get("action_items") or []
    if not isinstance(raw_items, list):
        raise ResponseParseError("Expected 'action_items' to be a list")

    now = utcnow()
    items: list[ActionItem] = []
    for raw in raw_items:
        if not isinstance(raw, dict):
            raise ResponseParseError("Expected each action item to be an object")
        description = str(raw.get("description") or "").strip()
        if not description:
            continue
        assignee = str(raw.get("assignee") or "").strip() or None
        items.append(
            ActionItem(
                id=uuid.uuid4().hex,
                description=description,
                priority=normalize_priority(raw.get("priority")),
                status="pending",
                assignee=assignee,
                type=normalize_type(raw.get("type")),
                created_at=now,
            )
        )
    return items


def parse_topics(response: str) -> Optional[list[TopicDiscussion]]:
    data = _object_block(response)
    if data is None:
        return None
    raw_topics = data.get("topics") or []
    if not isinstance(raw_topics, list):
        raise ResponseParseError("Expected 'topics' to be a list")

    topics: list[TopicDiscussion] = []
    for raw in raw_topics:
        if not isinstance(raw, dict):
            raise ResponseParseError("Expected each topic to be an object")
        participants = raw.get("participants") or []
        if not isinstance(participants, list):
            participants = [participants]
        try:
            duration = float(raw.get("duration_minutes") or 0.0)
        except (TypeError, ValueError) as exc:
            raise ResponseParseError(f"Invalid topic duration: {exc}") from exc
        topics.append(
            TopicDiscussion(
                topic=str(raw.get("topic") or ""),
                start_time=str(raw.get("start_time") or ""),
                duration_minutes=duration,
                summary=str(raw.get("summary") or ""),
                participants=[str(p) for p in participants],
            )
        )
    return topics


def parse_sentiment_keywords(response: str) -> Optional[SentimentResult]:
    data = _object_block(response)
    if data is None:
        return None
    confidence = data.get("confidence")
    try:
        confidence = float(confidence) if confidence is not None else None
    except (TypeError, ValueError):
        confidence = None
    return SentimentResult(
        sentiment=str(data.get("sentiment") or ""),
        keywords=_string_list(data, "keywords"),
        confidence=confidence,
    )
