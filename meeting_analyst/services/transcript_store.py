from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Iterator, Optional

from meeting_analyst.services.analysis_models import (
    DEFAULT_SPEAKER,
    MeetingAnalysisRecord,
    TranscriptEntry,
    utcnow,
)
from meeting_analyst.services.analysis_persistence import PersistenceStore


class ReadWriteLock:
    """Many concurrent readers or one writer; waiting writers block new readers."""

    def __init__(self) -> None:
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writer = False
        self._waiting_writers = 0

    @contextmanager
    def read(self) -> Iterator[None]:
        with self._cond:
            while self._writer or self._waiting_writers:
                self._cond.wait()
            self._readers += 1
        try:
            yield
        finally:
            with self._cond:
                self._readers -= 1
                if self._readers == 0:
                    self._cond.notify_all()

    @contextmanager
    def write(self) -> Iterator[None]:
        with self._cond:
            self._waiting_writers += 1
            try:
                while self._writer or self._readers:
                    self._cond.wait()
            finally:
                self._waiting_writers -= 1
            self._writer = True
        try:
            yield
        finally:
            with self._cond:
                self._writer = False
                self._cond.notify_all()


@dataclass
class AppendResult:
    entry: TranscriptEntry
    transcript_length: int


def _fragment_timestamp(value) -> Optional[datetime]:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    try:
        return datetime.fromtimestamp(int(value), tz=timezone.utc)
    except (OverflowError, OSError, ValueError):
        return None


class TranscriptStore:
    """Owns the meeting record and every write to it.

    Ingestion and analysis commits take the write side of the record lock;
    snapshots and copies take the read side. The record is persisted while
    the write lock is still held.
    """

    def __init__(
        self,
        record: MeetingAnalysisRecord,
        persistence: Optional[PersistenceStore] = None,
        *,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._record = record
        self._persistence = persistence
        self._clock = clock
        self._lock = ReadWriteLock()
        self._logger = logging.getLogger("analyst.transcript")

    @property
    def meeting_id(self) -> str:
        return self._record.meeting_id

    def append(self, batch: list[dict]) -> Optional[AppendResult]:
        """Merge one utterance batch into a single transcript entry.

        Returns None (and touches nothing) when the batch carries no text.
        """
        texts: list[str] = []
        speaker = DEFAULT_SPEAKER
        timestamp: Optional[datetime] = None

        for fragment in batch or []:
            if not isinstance(fragment, dict):
                continue
            fragment_speaker = fragment.get("speaker")
            if isinstance(fragment_speaker, str) and fragment_speaker:
                speaker = fragment_speaker
            text = fragment.get("text")
            if isinstance(text, str) and text:
                texts.append(text)
            fragment_ts = _fragment_timestamp(fragment.get("timestamp"))
            if fragment_ts is not None:
                timestamp = fragment_ts

        full_text = " ".join(texts)
        if not full_text.strip():
            return None

        with self._lock.write():
            now = self._clock()
            entry = TranscriptEntry(
                timestamp=timestamp or now,
                speaker=speaker,
                text=full_text,
                is_agent=False,
            )
            record = self._record
            record.transcript.append(entry)
            record.add_participant(speaker)
            record.word_count += len(full_text.split())
            record.duration_minutes = (now - record.start_time).total_seconds() / 60.0
            record.last_updated = now
            length = len(record.transcript)
            self._persist_locked()

        self._logger.debug(
            "Transcript entry appended meeting_id=%s speaker=%s entries=%d",
            self.meeting_id, speaker, length,
        )
        return AppendResult(entry=entry, transcript_length=length)

    def snapshot(self) -> tuple[TranscriptEntry, ...]:
        """Immutable view of the transcript as of now."""
        with self._lock.read():
            return tuple(self._record.transcript)

    def __len__(self) -> int:
        with self._lock.read():
            return len(self._record.transcript)

    def commit(self, mutate: Callable[[MeetingAnalysisRecord], None]) -> None:
        """Apply ``mutate`` to the record under the write lock."""
        with self._lock.write():
            mutate(self._record)

    def detach(self) -> None:
        """Stop persisting. In-memory state stays readable, the file is no longer written."""
        with self._lock.write():
            self._persistence = None
        self._logger.info("Transcript store detached meeting_id=%s", self.meeting_id)

    def touch_and_persist(self) -> None:
        with self._lock.write():
            self._record.last_updated = self._clock()
            self._persist_locked()

    def get_record(self) -> MeetingAnalysisRecord:
        """Deep copy of the record; callers cannot mutate shared state."""
        with self._lock.read():
            return self._record.copy()

    def _persist_locked(self) -> None:
        if self._persistence is not None:
            self._persistence.save(self._record)
