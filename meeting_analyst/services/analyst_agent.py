from __future__ import annotations

import logging
import threading
import time
from typing import Callable, Optional

from meeting_analyst.context import AppContext
from meeting_analyst.services.analysis_cycle import AnalysisCycleRunner
from meeting_analyst.services.analysis_models import MeetingAnalysisRecord, utcnow
from meeting_analyst.services.analysis_persistence import PersistenceStore
from meeting_analyst.services.analysis_settings import AnalysisSettings
from meeting_analyst.services.llm_gateway import LLMGateway
from meeting_analyst.services.prompt_builder import PromptBuilder
from meeting_analyst.services.transcript_store import TranscriptStore

_DT_FORMAT = "%Y-%m-%d %H:%M:%S"


def render_markdown(record: MeetingAnalysisRecord) -> str:
    """Human-readable report of an analysis record."""
    lines = [
        "# Meeting Analysis Report",
        "",
        f"**Meeting URL:** {record.meeting_url}",
        f"**Start Time:** {record.start_time.strftime(_DT_FORMAT)}",
        f"**Last Updated:** {record.last_updated.strftime(_DT_FORMAT)}",
        f"**Duration:** {record.duration_minutes:.1f} minutes",
        f"**Participants:** {', '.join(record.participants)}",
        f"**Total Words:** {record.word_count}",
    ]
    if record.sentiment:
        lines.append(f"**Overall Sentiment:** {record.sentiment}")
    lines.append("")

    if record.summary:
        lines += ["## Summary", "", record.summary, ""]

    if record.key_points:
        lines += ["## Key Points", ""]
        lines += [f"{i}. {point}" for i, point in enumerate(record.key_points, start=1)]
        lines.append("")

    if record.action_items:
        lines += ["## Action Items", ""]
        for item in record.action_items:
            line = f"- **{item.description}** ({item.priority} priority)"
            if item.type:
                line += f" - Type: {item.type}"
            if item.assignee:
                line += f" - Assigned to: {item.assignee}"
            line += f" - Status: {item.status}"
            lines.append(line)
        lines.append("")

    if record.topics:
        lines += ["## Discussion Topics", ""]
        for topic in record.topics:
            lines += [
                f"### {topic.topic}",
                f"**Duration:** {topic.duration_minutes:.1f} minutes",
                f"**Participants:** {', '.join(topic.participants)}",
                f"**Summary:** {topic.summary}",
                "",
            ]

    if record.keywords:
        lines += ["## Keywords", "", ", ".join(record.keywords), ""]

    if record.transcript:
        lines += ["## Full Transcript", ""]
        for entry in record.transcript:
            lines += [f"[{entry.timestamp.strftime('%H:%M:%S')}] **{entry.speaker}:** {entry.text}", ""]

    return "\n".join(lines) + "\n"


class AnalystAgent:
    """Live analysis for one meeting: ingestion, cycles and queries."""

    def __init__(
        self,
        meeting_id: str,
        *,
        analysis_dir: str,
        prompts_dir: str,
        gateway: LLMGateway,
        meeting_url: str = "",
        settings: Optional[AnalysisSettings] = None,
        custom_instructions: Optional[str] = None,
        prompt_strategy: str = "generated",
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._logger = logging.getLogger("analyst.agent")
        self._settings = settings or AnalysisSettings()
        now = utcnow()

        self._persistence = PersistenceStore(analysis_dir, meeting_id, now)
        record = self._persistence.load()
        if record is None:
            record = MeetingAnalysisRecord(
                meeting_id=meeting_id,
                meeting_url=meeting_url,
                start_time=now,
                last_updated=now,
            )
        else:
            self._logger.info(
                "Resuming analysis meeting_id=%s entries=%d", meeting_id, len(record.transcript)
            )

        self._store = TranscriptStore(record, self._persistence)
        self._builder = PromptBuilder(
            prompts_dir,
            custom_instructions=custom_instructions,
            strategy=prompt_strategy,
            gateway=gateway,
        )
        self._runner = AnalysisCycleRunner(
            self._store, self._builder, gateway, self._settings, clock=clock
        )

    @property
    def meeting_id(self) -> str:
        return self._store.meeting_id

    @property
    def runner(self) -> AnalysisCycleRunner:
        return self._runner

    @property
    def persistence_path(self) -> str:
        return self._persistence.path

    def process_utterance(self, batch: list[dict]) -> bool:
        """Ingest one utterance batch. Returns True when an entry was added."""
        result = self._store.append(batch)
        if result is None:
            return False
        self._runner.maybe_trigger(result.transcript_length)
        return True

    def request_cycle(self) -> bool:
        return self._runner.request_cycle()

    def wait_for_idle(self, timeout: Optional[float] = None) -> bool:
        return self._runner.wait_for_idle(timeout)

    def close(self) -> None:
        """Detach from the analysis file and stop scheduling cycles.

        A cycle already in flight finishes against memory only, so a later
        agent for the same meeting owns the file alone.
        """
        self._runner.close()
        self._store.detach()

    def get_record(self) -> MeetingAnalysisRecord:
        return self._store.get_record()

    def get_analysis(self) -> dict:
        return self._store.get_record().to_dict()

    def get_formatted_analysis(self) -> str:
        return render_markdown(self._store.get_record())

    def status(self) -> dict:
        record = self._store.get_record()
        report = self._runner.last_report
        return {
            "meeting_id": record.meeting_id,
            "meeting_url": record.meeting_url,
            "entries": len(record.transcript),
            "participants": list(record.participants),
            "word_count": record.word_count,
            "last_updated": record.last_updated.isoformat(),
            "cycles_completed": self._runner.cycles_completed,
            "cycle_running": self._runner.is_running,
            "last_cycle": report.to_dict() if report else None,
        }


class AnalystRegistry:
    """In-memory index of live analysts keyed by meeting id."""

    def __init__(
        self,
        ctx: AppContext,
        gateway: LLMGateway,
        settings: Optional[AnalysisSettings] = None,
    ) -> None:
        self._ctx = ctx
        self._gateway = gateway
        self._settings = settings
        self._lock = threading.Lock()
        self._agents: dict[str, AnalystAgent] = {}
        self._logger = logging.getLogger("analyst.registry")

    def create(
        self,
        meeting_id: str,
        *,
        meeting_url: str = "",
        custom_instructions: Optional[str] = None,
        prompt_strategy: str = "generated",
    ) -> AnalystAgent:
        with self._lock:
            if meeting_id in self._agents:
                raise ValueError(f"Analyst already registered: {meeting_id}")
            settings = self._settings or AnalysisSettings.load(self._ctx.config_path)
            agent = AnalystAgent(
                meeting_id,
                analysis_dir=self._ctx.analysis_dir,
                prompts_dir=self._ctx.prompts_dir,
                gateway=self._gateway,
                meeting_url=meeting_url,
                settings=settings,
                custom_instructions=custom_instructions,
                prompt_strategy=prompt_strategy,
            )
            self._agents[meeting_id] = agent
        self._logger.info("Analyst registered meeting_id=%s path=%s", meeting_id, agent.persistence_path)
        return agent

    def get(self, meeting_id: str) -> Optional[AnalystAgent]:
        with self._lock:
            return self._agents.get(meeting_id)

    def list(self) -> list[AnalystAgent]:
        with self._lock:
            return list(self._agents.values())

    def remove(self, meeting_id: str) -> bool:
        with self._lock:
            agent = self._agents.pop(meeting_id, None)
        if agent is None:
            return False
        agent.close()
        self._logger.info("Analyst removed meeting_id=%s", meeting_id)
        return True
