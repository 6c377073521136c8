"""Schedules and runs analysis cycles for one meeting.

A cycle snapshots the transcript once, then runs five tasks against that
snapshot in a fixed order: summary, key points, action items, topics,
sentiment/keywords. Cycles are serialized by their own lock, separate from
the record lock, and triggers that arrive while a cycle is already queued
are coalesced into it.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Optional, Sequence

from meeting_analyst.services.analysis_models import (
    GroundedContent,
    MeetingAnalysisRecord,
    TranscriptEntry,
    utcnow,
)
from meeting_analyst.services.analysis_settings import AnalysisSettings
from meeting_analyst.services.citations import add_citations, bullet_list
from meeting_analyst.services.llm import LLMProviderError
from meeting_analyst.services.llm_gateway import LLMGateway
from meeting_analyst.services.prompt_builder import AnalysisTask, PromptBuilder, format_transcript
from meeting_analyst.services.response_parser import (
    ResponseParseError,
    parse_action_items,
    parse_key_points,
    parse_sentiment_keywords,
    parse_summary,
    parse_topics,
)
from meeting_analyst.services.transcript_store import TranscriptStore

TASK_ORDER = (
    AnalysisTask.SUMMARY,
    AnalysisTask.KEY_POINTS,
    AnalysisTask.ACTION_ITEMS,
    AnalysisTask.TOPICS,
    AnalysisTask.SENTIMENT_KEYWORDS,
)

# Task outcomes recorded in CycleReport.tasks
COMPLETED = "completed"
NO_RESULT = "no_result"
SKIPPED = "skipped"
FAILED = "failed"

Snapshot = Sequence[TranscriptEntry]


@dataclass
class CycleReport:
    meeting_id: str
    started_at: datetime
    snapshot_length: int
    tasks: dict[str, str] = field(default_factory=dict)
    duration_ms: float = 0.0

    def to_dict(self) -> dict:
        return {
            "meeting_id": self.meeting_id,
            "started_at": self.started_at.isoformat(),
            "snapshot_length": self.snapshot_length,
            "tasks": dict(self.tasks),
            "duration_ms": round(self.duration_ms, 1),
        }


class AnalysisCycleRunner:
    def __init__(
        self,
        store: TranscriptStore,
        prompt_builder: PromptBuilder,
        gateway: LLMGateway,
        settings: Optional[AnalysisSettings] = None,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._store = store
        self._builder = prompt_builder
        self._gateway = gateway
        self._settings = settings or AnalysisSettings()
        self._clock = clock
        self._logger = logging.getLogger("analyst.cycle")

        self._cycle_lock = threading.Lock()
        self._schedule_lock = threading.Lock()
        self._pending = False
        self._closed = False
        self._threads: list[threading.Thread] = []
        self._last_cycle_start = clock()
        self._cycles_completed = 0
        self._last_report: Optional[CycleReport] = None

        self._handlers: dict[AnalysisTask, Callable[[Snapshot], str]] = {
            AnalysisTask.SUMMARY: self._generate_summary,
            AnalysisTask.KEY_POINTS: self._extract_key_points,
            AnalysisTask.ACTION_ITEMS: self._identify_action_items,
            AnalysisTask.TOPICS: self._extract_topics,
            AnalysisTask.SENTIMENT_KEYWORDS: self._analyze_sentiment_keywords,
        }

    @property
    def meeting_id(self) -> str:
        return self._store.meeting_id

    @property
    def cycles_completed(self) -> int:
        return self._cycles_completed

    @property
    def last_report(self) -> Optional[CycleReport]:
        return self._last_report

    @property
    def is_running(self) -> bool:
        return self._cycle_lock.locked()

    @property
    def closed(self) -> bool:
        return self._closed

    def close(self) -> None:
        """Refuse new cycles and abandon the remaining tasks of a running one."""
        with self._schedule_lock:
            self._closed = True
            self._pending = False
        self._logger.info("Analysis runner closed meeting_id=%s", self.meeting_id)

    # ── Scheduling ─────────────────────────────────────────────────────

    def should_trigger(self, transcript_length: int) -> bool:
        elapsed = self._clock() - self._last_cycle_start
        if elapsed > self._settings.interval_seconds:
            return True
        return transcript_length > 0 and transcript_length % self._settings.batch_size == 0

    def maybe_trigger(self, transcript_length: int) -> bool:
        if not self.should_trigger(transcript_length):
            return False
        return self.request_cycle()

    def request_cycle(self) -> bool:
        """Schedule a cycle on a worker thread without waiting for it.

        Returns False when a cycle is already queued; that queued cycle will
        take its snapshot after the current one finishes and so covers this
        trigger too.
        """
        with self._schedule_lock:
            if self._closed:
                self._logger.debug("Runner closed, cycle not scheduled meeting_id=%s", self.meeting_id)
                return False
            if self._pending:
                self._logger.debug("Cycle already pending meeting_id=%s", self.meeting_id)
                return False
            self._pending = True
            self._threads = [t for t in self._threads if t.is_alive()]
            thread = threading.Thread(
                target=self._run_scheduled,
                name=f"AnalysisCycle-{self.meeting_id}",
                daemon=True,
            )
            self._threads.append(thread)
            thread.start()
        self._logger.info("Analysis cycle scheduled meeting_id=%s", self.meeting_id)
        return True

    def _run_scheduled(self) -> None:
        try:
            with self._cycle_lock:
                with self._schedule_lock:
                    self._pending = False
                    if self._closed:
                        return
                self._execute()
        except Exception as exc:
            self._logger.exception("Analysis cycle crashed meeting_id=%s: %s", self.meeting_id, exc)

    def wait_for_idle(self, timeout: Optional[float] = None) -> bool:
        """Block until no scheduled cycle is queued or running."""
        deadline = None if timeout is None else time.monotonic() + timeout
        while True:
            with self._schedule_lock:
                self._threads = [t for t in self._threads if t.is_alive()]
                threads = list(self._threads)
            if not threads:
                return True
            for thread in threads:
                remaining = None if deadline is None else deadline - time.monotonic()
                if remaining is not None and remaining <= 0:
                    return False
                thread.join(remaining)

    # ── Execution ──────────────────────────────────────────────────────

    def run_cycle(self) -> CycleReport:
        """Run one cycle on the calling thread."""
        with self._cycle_lock:
            return self._execute()

    def _execute(self) -> CycleReport:
        self._last_cycle_start = self._clock()
        started = time.perf_counter()

        snapshot = self._store.snapshot()
        report = CycleReport(
            meeting_id=self.meeting_id,
            started_at=utcnow(),
            snapshot_length=len(snapshot),
        )
        self._logger.info(
            "Analysis cycle start meeting_id=%s entries=%d", self.meeting_id, len(snapshot)
        )

        for task in TASK_ORDER:
            if self._closed:
                report.tasks[task.value] = SKIPPED
                continue
            report.tasks[task.value] = self._run_task(task, snapshot)

        if self._closed:
            self._logger.info("Analysis cycle abandoned meeting_id=%s", self.meeting_id)
            return report
        self._store.touch_and_persist()
        report.duration_ms = (time.perf_counter() - started) * 1000
        self._cycles_completed += 1
        self._last_report = report
        self._logger.info(
            "Analysis cycle done meeting_id=%s duration_ms=%.1f tasks=%s",
            self.meeting_id, report.duration_ms, report.tasks,
        )
        return report

    def _run_task(self, task: AnalysisTask, snapshot: Snapshot) -> str:
        if not snapshot:
            return SKIPPED
        if not self._gateway.is_available():
            self._logger.warning(
                "LLM not available, skipping task=%s meeting_id=%s", task.value, self.meeting_id
            )
            return SKIPPED
        try:
            return self._handlers[task](snapshot)
        except LLMProviderError as exc:
            self._logger.warning(
                "Task failed task=%s meeting_id=%s error=%s", task.value, self.meeting_id, exc
            )
        except ResponseParseError as exc:
            self._logger.error(
                "Failed to parse response task=%s meeting_id=%s error=%s",
                task.value, self.meeting_id, exc,
            )
        except Exception as exc:
            self._logger.exception(
                "Unexpected task error task=%s meeting_id=%s: %s", task.value, self.meeting_id, exc
            )
        return FAILED

    def _prompt_for(self, task: AnalysisTask, snapshot: Snapshot) -> str:
        window = list(snapshot[-self._settings.window_for(task.value):])
        transcript = format_transcript(window)
        self._logger.debug(
            "Built prompt task=%s entries=%d transcript_chars=%d",
            task.value, len(window), len(transcript),
        )
        return self._builder.build(task, transcript)

    def _grounded_call(self, task: AnalysisTask, prompt: str):
        """Try the grounded call; None means use a plain completion instead."""
        if not self._gateway.supports_grounding():
            return None
        try:
            return self._gateway.call_with_grounding(prompt)
        except LLMProviderError as exc:
            self._logger.warning(
                "Grounded call failed, falling back to regular call task=%s error=%s",
                task.value, exc,
            )
            return None

    # ── Tasks ──────────────────────────────────────────────────────────

    def _generate_summary(self, snapshot: Snapshot) -> str:
        prompt = self._prompt_for(AnalysisTask.SUMMARY, snapshot)

        grounded = self._grounded_call(AnalysisTask.SUMMARY, prompt)
        if grounded is not None:
            result = parse_summary(grounded.text)
            if result is None:
                return NO_RESULT
            content = GroundedContent(
                text=result.summary,
                text_with_citations=add_citations(result.summary, grounded.grounding_metadata),
                grounding_metadata=grounded.grounding_metadata,
            )

            def apply_grounded(record: MeetingAnalysisRecord) -> None:
                record.summary = result.summary
                record.grounded_summary = content

            self._store.commit(apply_grounded)
            self._logger.info(
                "Grounded summary generated meeting_id=%s chars=%d",
                self.meeting_id, len(result.summary),
            )
            return COMPLETED

        result = parse_summary(self._gateway.call(prompt))
        if result is None:
            return NO_RESULT

        def apply(record: MeetingAnalysisRecord) -> None:
            record.summary = result.summary
            record.grounded_summary = None

        self._store.commit(apply)
        self._logger.info("Summary generated meeting_id=%s chars=%d", self.meeting_id, len(result.summary))
        return COMPLETED

    def _extract_key_points(self, snapshot: Snapshot) -> str:
        prompt = self._prompt_for(AnalysisTask.KEY_POINTS, snapshot)

        grounded = self._grounded_call(AnalysisTask.KEY_POINTS, prompt)
        if grounded is not None:
            points = parse_key_points(grounded.text)
            if points is None:
                return NO_RESULT
            text = bullet_list(points)
            content = GroundedContent(
                text=text,
                text_with_citations=add_citations(text, grounded.grounding_metadata),
                grounding_metadata=grounded.grounding_metadata,
            )

            def apply_grounded(record: MeetingAnalysisRecord) -> None:
                record.key_points = points
                record.grounded_key_points = content

            self._store.commit(apply_grounded)
            self._logger.info("Grounded key points extracted meeting_id=%s count=%d", self.meeting_id, len(points))
            return COMPLETED

        points = parse_key_points(self._gateway.call(prompt))
        if points is None:
            return NO_RESULT

        def apply(record: MeetingAnalysisRecord) -> None:
            record.key_points = points
            record.grounded_key_points = None

        self._store.commit(apply)
        self._logger.info("Key points extracted meeting_id=%s count=%d", self.meeting_id, len(points))
        return COMPLETED

    def _identify_action_items(self, snapshot: Snapshot) -> str:
        prompt = self._prompt_for(AnalysisTask.ACTION_ITEMS, snapshot)
        items = parse_action_items(self._gateway.call(prompt))
        if items is None:
            return NO_RESULT

        def apply(record: MeetingAnalysisRecord) -> None:
            record.action_items = items

        self._store.commit(apply)
        self._logger.info("Action items identified meeting_id=%s count=%d", self.meeting_id, len(items))
        return COMPLETED

    def _extract_topics(self, snapshot: Snapshot) -> str:
        prompt = self._prompt_for(AnalysisTask.TOPICS, snapshot)
        topics = parse_topics(self._gateway.call(prompt))
        if topics is None:
            return NO_RESULT

        def apply(record: MeetingAnalysisRecord) -> None:
            record.topics = topics

        self._store.commit(apply)
        self._logger.info("Topics extracted meeting_id=%s count=%d", self.meeting_id, len(topics))
        return COMPLETED

    def _analyze_sentiment_keywords(self, snapshot: Snapshot) -> str:
        prompt = self._prompt_for(AnalysisTask.SENTIMENT_KEYWORDS, snapshot)
        result = parse_sentiment_keywords(self._gateway.call(prompt))
        if result is None:
            return NO_RESULT

        def apply(record: MeetingAnalysisRecord) -> None:
            record.sentiment = result.sentiment
            record.keywords = result.keywords

        self._store.commit(apply)
        self._logger.info(
            "Sentiment analyzed meeting_id=%s sentiment=%s keywords=%d",
            self.meeting_id, result.sentiment, len(result.keywords),
        )
        return COMPLETED
