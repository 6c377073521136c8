from __future__ import annotations

import hashlib
import json
import logging
import os
import re
import threading
from datetime import datetime
from typing import Optional

from meeting_analyst.services.analysis_models import MeetingAnalysisRecord

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9_.-]+")


class PersistenceStore:
    """Durable JSON file for one meeting's analysis record.

    The path is fixed at construction: an existing file for the same meeting
    id is reused (crash recovery), otherwise a new name is derived from the
    creation time and the meeting id. The id part of the name carries a short
    hash of the raw id, so ids that sanitize alike never share a file.
    """

    def __init__(self, analysis_dir: str, meeting_id: str, created_at: datetime) -> None:
        self._analysis_dir = analysis_dir
        self._meeting_id = meeting_id
        self._lock = threading.Lock()
        self._logger = logging.getLogger("analyst.persistence")
        try:
            os.makedirs(self._analysis_dir, exist_ok=True)
        except OSError as exc:
            self._logger.error("Failed to create analysis dir: %s error=%s", analysis_dir, exc)
        self._path = self._find_existing_path() or os.path.join(
            self._analysis_dir, self._filename(created_at, meeting_id)
        )

    @property
    def path(self) -> str:
        return self._path

    @staticmethod
    def _safe_id(meeting_id: str) -> str:
        readable = _UNSAFE_CHARS.sub("_", meeting_id).replace("__", "_") or "meeting"
        digest = hashlib.sha1(meeting_id.encode("utf-8")).hexdigest()[:8]
        return f"{readable}-{digest}"

    @classmethod
    def _filename(cls, created_at: datetime, meeting_id: str) -> str:
        # Example: 20260211T093012-0800__meeting-42-1f0c6a2e.json
        stamp = created_at.astimezone().strftime("%Y%m%dT%H%M%S%z")
        return f"{stamp}__{cls._safe_id(meeting_id)}.json"

    def _find_existing_path(self) -> Optional[str]:
        wanted = f"{self._safe_id(self._meeting_id)}.json"
        try:
            names = sorted(os.listdir(self._analysis_dir))
        except OSError as exc:
            self._logger.warning("Failed to list analysis dir: %s", exc)
            return None
        # The timestamp prefix never contains "__"; everything after it is the id part.
        matches = [name for name in names if "__" in name and name.split("__", 1)[1] == wanted]
        if not matches:
            return None
        # Timestamp prefixes sort chronologically; the newest file wins.
        return os.path.join(self._analysis_dir, matches[-1])

    def save(self, record: MeetingAnalysisRecord) -> bool:
        """Write the record atomically. Failures are logged, never raised."""
        with self._lock:
            temp_path = f"{self._path}.tmp"
            try:
                payload = record.to_dict()
                os.makedirs(os.path.dirname(self._path), exist_ok=True)
                with open(temp_path, "w", encoding="utf-8") as f:
                    json.dump(payload, f, indent=2, ensure_ascii=False)
                os.replace(temp_path, self._path)
            except (OSError, TypeError, ValueError) as exc:
                self._logger.error(
                    "Failed to save analysis meeting_id=%s path=%s error=%s",
                    self._meeting_id, self._path, exc,
                )
                return False
        self._logger.debug("Analysis saved meeting_id=%s path=%s", self._meeting_id, self._path)
        return True

    def load(self) -> Optional[MeetingAnalysisRecord]:
        """Return the persisted record, or None when there is nothing usable."""
        with self._lock:
            if not os.path.exists(self._path):
                return None
            try:
                with open(self._path, "r", encoding="utf-8") as f:
                    data = json.load(f)
            except (OSError, json.JSONDecodeError) as exc:
                self._logger.warning("Failed to read analysis file: %s error=%s", self._path, exc)
                return None
        if not isinstance(data, dict):
            self._logger.warning("Ignoring non-object analysis file: %s", self._path)
            return None
        try:
            record = MeetingAnalysisRecord.from_dict(data)
        except (KeyError, TypeError, ValueError) as exc:
            self._logger.warning("Malformed analysis file: %s error=%s", self._path, exc)
            return None
        if record.meeting_id != self._meeting_id:
            self._logger.warning(
                "Ignoring analysis file for another meeting: %s expected=%s found=%s",
                self._path, self._meeting_id, record.meeting_id,
            )
            return None
        self._logger.info(
            "Analysis loaded meeting_id=%s entries=%d path=%s",
            record.meeting_id, len(record.transcript), self._path,
        )
        return record
