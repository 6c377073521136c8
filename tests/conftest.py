"""Shared fixtures for the analysis pipeline tests.

Provides:
- StubProvider / GroundingStubProvider: in-memory LLM doubles that answer
  each analysis task with a fixed ```json fixture and record every call
- FakeClock: monotonic clock the tests advance by hand
- make_agent: AnalystAgent factory writing under tmp_path
"""

from __future__ import annotations

import threading
import time
from typing import Optional

import pytest

from meeting_analyst.context import AppContext
from meeting_analyst.services.analysis_settings import AnalysisSettings
from meeting_analyst.services.analyst_agent import AnalystAgent
from meeting_analyst.services.llm import (
    GroundedResponse,
    GroundingChunk,
    GroundingMetadata,
    GroundingSegment,
    GroundingSupport,
    LLMProvider,
)
from meeting_analyst.services.llm_gateway import LLMGateway


# ── Reply fixtures ───────────────────────────────────────────────────────────

SUMMARY_TEXT = "The team agreed on the launch plan."

REPLIES = {
    "summary": (
        "Here is the summary.\n```json\n"
        '{"summary": "The team agreed on the launch plan.", "key_themes": ["launch"]}\n```\n'
    ),
    "key_points": '```json\n{"key_points": ["Launch is on Monday", "Budget approved"]}\n```',
    "action_items": (
        "```json\n"
        '{"action_items": [{"description": "Draft the launch email", "assignee": "Alice",'
        ' "priority": "high", "type": "task"}]}\n```'
    ),
    "topics": (
        "```json\n"
        '{"topics": [{"topic": "Launch", "summary": "Launch timing", "participants": ["Alice", "Bob"],'
        ' "start_time": "00:01", "duration_minutes": 3}]}\n```'
    ),
    "sentiment_keywords": (
        '```json\n{"sentiment": "positive", "keywords": ["launch", "budget"], "confidence": 0.9}\n```'
    ),
    "meta": "Act as a seasoned product strategist who focuses on delivery risk.",
}

# Ordered: the summary prompt mentions neither key_points nor the others.
_TASK_MARKERS = (
    ("summary", '"key_themes"'),
    ("key_points", '"key_points"'),
    ("action_items", '"action_items"'),
    ("topics", '"topics"'),
    ("sentiment_keywords", '"sentiment"'),
)


def task_for_prompt(prompt: str) -> str:
    if prompt.startswith("Given this role description"):
        return "meta"
    for task, marker in _TASK_MARKERS:
        if marker in prompt:
            return task
    return "unknown"


# ── Test doubles ─────────────────────────────────────────────────────────────


class StubProvider(LLMProvider):
    """Plain-completion provider answering from ``replies``.

    A reply that is an exception instance is raised instead of returned.
    ``gate`` (when set) blocks every call until the event fires.
    """

    def __init__(self, replies: Optional[dict] = None, *, available: bool = True, delay: float = 0.0):
        self.replies = dict(REPLIES)
        self.replies.update(replies or {})
        self.available = available
        self.delay = delay
        self.gate: Optional[threading.Event] = None
        self.started = threading.Event()
        self.calls: list[tuple[str, str]] = []
        self.active = 0
        self.max_active = 0
        self._lock = threading.Lock()

    def is_available(self) -> bool:
        return self.available

    def prompt(self, prompt: str) -> str:
        task = task_for_prompt(prompt)
        with self._lock:
            self.calls.append((task, prompt))
            self.active += 1
            self.max_active = max(self.max_active, self.active)
        self.started.set()
        try:
            if self.gate is not None:
                self.gate.wait(5.0)
            if self.delay:
                time.sleep(self.delay)
            reply = self.replies.get(task, "")
            if isinstance(reply, Exception):
                raise reply
            return reply
        finally:
            with self._lock:
                self.active -= 1

    def prompts_for(self, task: str) -> list[str]:
        return [prompt for called, prompt in self.calls if called == task]


class GroundingStubProvider(StubProvider):
    def __init__(self, *args, metadata: Optional[GroundingMetadata] = None, **kwargs):
        super().__init__(*args, **kwargs)
        self.metadata = metadata
        self.grounding_error: Optional[Exception] = None
        self.grounded_calls = 0

    def prompt_with_grounding(self, prompt: str) -> GroundedResponse:
        self.grounded_calls += 1
        if self.grounding_error is not None:
            raise self.grounding_error
        return GroundedResponse(text=self.prompt(prompt), grounding_metadata=self.metadata)


class FakeClock:
    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def summary_metadata() -> GroundingMetadata:
    """One support ending after "launch plan" in SUMMARY_TEXT."""
    end = len("The team agreed on the launch plan".encode("utf-8"))
    return GroundingMetadata(
        web_search_queries=["launch plan"],
        grounding_chunks=[GroundingChunk(uri="https://example.com/plan", title="Plan")],
        grounding_supports=[
            GroundingSupport(
                segment=GroundingSegment(start_index=0, end_index=end, text="launch plan"),
                chunk_indices=[0],
            )
        ],
    )


# ── Fixtures ─────────────────────────────────────────────────────────────────


@pytest.fixture
def ctx(tmp_path) -> AppContext:
    context = AppContext(
        cwd=str(tmp_path),
        data_dir=str(tmp_path / "data"),
        config_path=str(tmp_path / "data" / "config.json"),
    )
    context.ensure_dirs()
    return context


@pytest.fixture
def provider() -> StubProvider:
    return StubProvider()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def make_agent(ctx, clock):
    agents: list[AnalystAgent] = []

    def _make(
        provider: LLMProvider,
        meeting_id: str = "meeting-1",
        *,
        settings: Optional[AnalysisSettings] = None,
        **kwargs,
    ) -> AnalystAgent:
        agent = AnalystAgent(
            meeting_id,
            analysis_dir=ctx.analysis_dir,
            prompts_dir=ctx.prompts_dir,
            gateway=LLMGateway(provider=provider),
            settings=settings,
            clock=clock,
            **kwargs,
        )
        agents.append(agent)
        return agent

    yield _make
    for agent in agents:
        agent.wait_for_idle(timeout=5.0)


def utterance(text: str, speaker: Optional[str] = None, timestamp: Optional[float] = None) -> dict:
    fragment: dict = {"text": text}
    if speaker is not None:
        fragment["speaker"] = speaker
    if timestamp is not None:
        fragment["timestamp"] = timestamp
    return fragment
