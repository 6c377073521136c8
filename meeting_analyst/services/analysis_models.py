"""Analysis record shapes and their JSON (de)serialization.

Field names of ``to_dict()`` are the persisted/exposed compatibility
surface: files written by older analysts must keep loading.
"""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional

from meeting_analyst.services.llm.base import GroundingMetadata

DEFAULT_SPEAKER = "Participant"
PRIORITIES = ("high", "medium", "low")
ACTION_TYPES = ("task", "research", "investigation", "follow-up", "decision")
STATUSES = ("pending", "in_progress", "completed")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def format_dt(value: datetime) -> str:
    return value.isoformat()


def parse_dt(value) -> datetime:
    """Parse an ISO-8601 timestamp; naive values are treated as UTC."""
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, str) and value:
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        # Trim sub-microsecond digits (e.g. RFC3339Nano) that fromisoformat rejects.
        if "." in text:
            head, _, tail = text.partition(".")
            digits = ""
            while tail and tail[0].isdigit():
                digits, tail = digits + tail[0], tail[1:]
            text = f"{head}.{digits[:6].ljust(6, '0')}{tail}"
        dt = datetime.fromisoformat(text)
    else:
        raise ValueError(f"Invalid timestamp: {value!r}")
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


@dataclass
class TranscriptEntry:
    timestamp: datetime
    speaker: str
    text: str
    is_agent: bool = False

    def to_dict(self) -> dict:
        return {
            "timestamp": format_dt(self.timestamp),
            "speaker": self.speaker,
            "text": self.text,
            "is_agent": self.is_agent,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "TranscriptEntry":
        return cls(
            timestamp=parse_dt(data.get("timestamp")),
            speaker=str(data.get("speaker") or DEFAULT_SPEAKER),
            text=str(data.get("text", "")),
            is_agent=bool(data.get("is_agent", False)),
        )


@dataclass
class ActionItem:
    id: str
    description: str
    priority: str = "medium"
    status: str = "pending"
    assignee: Optional[str] = None
    type: Optional[str] = None
    created_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> dict:
        data = {
            "id": self.id,
            "description": self.description,
            "priority": self.priority,
            "status": self.status,
            "created_at": format_dt(self.created_at),
        }
        if self.assignee:
            data["assignee"] = self.assignee
        if self.type:
            data["type"] = self.type
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "ActionItem":
        created_at = data.get("created_at")
        return cls(
            id=str(data.get("id", "")),
            description=str(data.get("description", "")),
            priority=str(data.get("priority") or "medium"),
            status=str(data.get("status") or "pending"),
            assignee=data.get("assignee") or None,
            type=data.get("type") or None,
            created_at=parse_dt(created_at) if created_at else utcnow(),
        )


@dataclass
class TopicDiscussion:
    topic: str
    start_time: str = ""  # "HH:MM" as reported by the model, not a timestamp
    duration_minutes: float = 0.0
    summary: str = ""
    participants: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "topic": self.topic,
            "start_time": self.start_time,
            "duration_minutes": self.duration_minutes,
            "summary": self.summary,
            "participants": list(self.participants),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "TopicDiscussion":
        return cls(
            topic=str(data.get("topic", "")),
            start_time=str(data.get("start_time") or ""),
            duration_minutes=float(data.get("duration_minutes") or 0.0),
            summary=str(data.get("summary", "")),
            participants=[str(p) for p in data.get("participants") or []],
        )


@dataclass
class GroundedContent:
    text: str
    text_with_citations: str
    grounding_metadata: Optional[GroundingMetadata] = None

    def to_dict(self) -> dict:
        data = {"text": self.text, "text_with_citations": self.text_with_citations}
        if self.grounding_metadata is not None:
            data["grounding_metadata"] = self.grounding_metadata.to_dict()
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "GroundedContent":
        raw_metadata = data.get("grounding_metadata")
        return cls(
            text=str(data.get("text", "")),
            text_with_citations=str(data.get("text_with_citations", "")),
            grounding_metadata=(
                GroundingMetadata.from_dict(raw_metadata) if isinstance(raw_metadata, dict) else None
            ),
        )


@dataclass
class MeetingAnalysisRecord:
    meeting_id: str
    meeting_url: str = ""
    start_time: datetime = field(default_factory=utcnow)
    last_updated: datetime = field(default_factory=utcnow)
    transcript: list[TranscriptEntry] = field(default_factory=list)
    summary: str = ""
    grounded_summary: Optional[GroundedContent] = None
    key_points: list[str] = field(default_factory=list)
    grounded_key_points: Optional[GroundedContent] = None
    action_items: list[ActionItem] = field(default_factory=list)
    topics: list[TopicDiscussion] = field(default_factory=list)
    participants: list[str] = field(default_factory=list)
    duration_minutes: float = 0.0
    word_count: int = 0
    sentiment: str = ""
    keywords: list[str] = field(default_factory=list)

    def add_participant(self, speaker: str) -> bool:
        """Insert ``speaker`` once, preserving first-seen order."""
        if speaker in self.participants:
            return False
        self.participants.append(speaker)
        return True

    def copy(self) -> "MeetingAnalysisRecord":
        return copy.deepcopy(self)

    def to_dict(self) -> dict:
        data = {
            "meeting_id": self.meeting_id,
            "meeting_url": self.meeting_url,
            "start_time": format_dt(self.start_time),
            "last_updated": format_dt(self.last_updated),
            "transcript": [e.to_dict() for e in self.transcript],
            "summary": self.summary,
            "key_points": list(self.key_points),
            "action_items": [a.to_dict() for a in self.action_items],
            "topics": [t.to_dict() for t in self.topics],
            "participants": list(self.participants),
            "duration_minutes": self.duration_minutes,
            "word_count": self.word_count,
            "sentiment": self.sentiment,
            "keywords": list(self.keywords),
        }
        if self.grounded_summary is not None:
            data["grounded_summary"] = self.grounded_summary.to_dict()
        if self.grounded_key_points is not None:
            data["grounded_key_points"] = self.grounded_key_points.to_dict()
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "MeetingAnalysisRecord":
        grounded_summary = data.get("grounded_summary")
        grounded_key_points = data.get("grounded_key_points")
        return cls(
            meeting_id=str(data.get("meeting_id", "")),
            meeting_url=str(data.get("meeting_url", "")),
            start_time=parse_dt(data["start_time"]) if data.get("start_time") else utcnow(),
            last_updated=parse_dt(data["last_updated"]) if data.get("last_updated") else utcnow(),
            transcript=[TranscriptEntry.from_dict(e) for e in data.get("transcript") or []],
            summary=str(data.get("summary", "")),
            grounded_summary=(
                GroundedContent.from_dict(grounded_summary)
                if isinstance(grounded_summary, dict) else None
            ),
            key_points=[str(p) for p in data.get("key_points") or []],
            grounded_key_points=(
                GroundedContent.from_dict(grounded_key_points)
                if isinstance(grounded_key_points, dict) else None
            ),
            action_items=[ActionItem.from_dict(a) for a in data.get("action_items") or []],
            topics=[TopicDiscussion.from_dict(t) for t in data.get("topics") or []],
            participants=[str(p) for p in data.get("participants") or []],
            duration_minutes=float(data.get("duration_minutes") or 0.0),
            word_count=int(data.get("word_count") or 0),
            sentiment=str(data.get("sentiment") or ""),
            keywords=[str(k) for k in data.get("keywords") or []],
        )
