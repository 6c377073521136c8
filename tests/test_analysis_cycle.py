"""Tests for cycle triggering, snapshot isolation, serialization and task isolation.

All LLM traffic goes through the in-memory StubProvider from conftest.
"""

from __future__ import annotations

import json
import threading

import pytest

from meeting_analyst.services.analysis_cycle import COMPLETED, FAILED, NO_RESULT, SKIPPED
from meeting_analyst.services.analysis_settings import AnalysisSettings
from meeting_analyst.services.analyst_agent import AnalystRegistry
from meeting_analyst.services.llm import LLMProviderError
from meeting_analyst.services.llm_gateway import LLMGateway

from conftest import SUMMARY_TEXT, GroundingStubProvider, StubProvider, summary_metadata, utterance

ALL_TASKS = ("summary", "key_points", "action_items", "topics", "sentiment_keywords")


def _fill(agent, count: int, prefix: str = "w") -> None:
    for i in range(count):
        agent.process_utterance([utterance(f"{prefix}{i}", speaker="Alice" if i % 2 == 0 else "Bob")])


# ── Trigger condition ────────────────────────────────────────────────────────


def test_trigger_on_batch_multiple(make_agent, provider):
    runner = make_agent(provider).runner
    assert runner.should_trigger(20) is True
    assert runner.should_trigger(40) is True
    assert runner.should_trigger(19) is False
    assert runner.should_trigger(0) is False


def test_trigger_after_interval(make_agent, provider, clock):
    runner = make_agent(provider).runner
    clock.advance(300)
    assert runner.should_trigger(3) is False
    clock.advance(1)
    assert runner.should_trigger(3) is True


def test_interval_restarts_at_cycle_start(make_agent, provider, clock):
    agent = make_agent(provider)
    clock.advance(301)
    agent.runner.run_cycle()
    assert agent.runner.should_trigger(3) is False


def test_settings_control_the_trigger(make_agent, provider, clock):
    runner = make_agent(provider, settings=AnalysisSettings(interval_seconds=10, batch_size=5)).runner
    assert runner.should_trigger(5) is True
    assert runner.should_trigger(6) is False
    clock.advance(11)
    assert runner.should_trigger(6) is True


def test_no_cycle_before_batch_is_reached(make_agent, provider):
    agent = make_agent(provider)
    _fill(agent, 19)
    assert agent.wait_for_idle(timeout=5.0)
    assert provider.calls == []
    assert agent.runner.cycles_completed == 0


# ── End to end ───────────────────────────────────────────────────────────────


def test_twenty_utterances_trigger_one_cycle(make_agent, provider):
    agent = make_agent(provider)

    _fill(agent, 20)
    assert agent.wait_for_idle(timeout=5.0)

    assert agent.runner.cycles_completed == 1
    assert [task for task, _ in provider.calls] == list(ALL_TASKS)

    record = agent.get_record()
    assert record.summary == SUMMARY_TEXT
    assert record.grounded_summary is None
    assert record.key_points == ["Launch is on Monday", "Budget approved"]
    assert len(record.action_items) == 1
    item = record.action_items[0]
    assert (item.description, item.assignee, item.priority, item.type, item.status) == (
        "Draft the launch email", "Alice", "high", "task", "pending",
    )
    assert [t.topic for t in record.topics] == ["Launch"]
    assert record.topics[0].duration_minutes == 3
    assert record.sentiment == "positive"
    assert record.keywords == ["launch", "budget"]
    assert record.participants == ["Alice", "Bob"]
    assert record.word_count == 20


def test_cycle_report(make_agent, provider):
    agent = make_agent(provider)
    _fill(agent, 3)

    report = agent.runner.run_cycle()

    assert report.snapshot_length == 3
    assert report.tasks == {task: COMPLETED for task in ALL_TASKS}
    assert agent.runner.last_report is report
    assert report.to_dict()["meeting_id"] == "meeting-1"


def test_cycle_persists_results(make_agent, provider):
    agent = make_agent(provider)
    _fill(agent, 2)
    agent.runner.run_cycle()

    reloaded = make_agent(StubProvider(), meeting_id="meeting-1")
    assert reloaded.persistence_path == agent.persistence_path
    assert reloaded.get_record().summary == SUMMARY_TEXT


def test_empty_transcript_skips_every_task(make_agent, provider):
    report = make_agent(provider).runner.run_cycle()
    assert set(report.tasks.values()) == {SKIPPED}
    assert provider.calls == []


# ── Windows ──────────────────────────────────────────────────────────────────


def test_each_task_sees_its_tail_window(make_agent, provider):
    agent = make_agent(provider, settings=AnalysisSettings(batch_size=1000))
    _fill(agent, 60)

    agent.runner.run_cycle()

    def entries_in(task):
        (prompt,) = provider.prompts_for(task)
        return [i for i in range(60) if f": w{i}\n" in prompt + "\n"]

    assert entries_in("summary") == list(range(10, 60))
    assert entries_in("key_points") == list(range(30, 60))
    assert entries_in("action_items") == list(range(20, 60))
    assert entries_in("topics") == list(range(10, 60))
    assert entries_in("sentiment_keywords") == list(range(40, 60))


# ── Snapshot isolation and serialization ─────────────────────────────────────


def test_cycle_sees_snapshot_not_concurrent_appends(make_agent, provider):
    agent = make_agent(provider)
    _fill(agent, 3)
    provider.gate = threading.Event()

    assert agent.request_cycle() is True
    assert provider.started.wait(5.0)
    _fill(agent, 5, prefix="late")
    provider.gate.set()
    assert agent.wait_for_idle(timeout=5.0)

    report = agent.runner.last_report
    assert report.snapshot_length == 3
    assert len(provider.calls) == 5
    for _, prompt in provider.calls:
        assert "late" not in prompt
        assert "w2" in prompt
    assert len(agent.get_record().transcript) == 8


def test_concurrent_triggers_never_overlap(make_agent):
    provider = StubProvider(delay=0.05)
    agent = make_agent(provider)
    _fill(agent, 3)
    barrier = threading.Barrier(10)
    results: list[bool] = []

    def fire():
        barrier.wait(timeout=5.0)
        results.append(agent.request_cycle())

    threads = [threading.Thread(target=fire) for _ in range(10)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=5.0)
    assert agent.wait_for_idle(timeout=10.0)

    assert provider.max_active == 1
    assert 1 <= agent.runner.cycles_completed <= 2
    assert results.count(True) == agent.runner.cycles_completed
    assert len(provider.calls) == 5 * agent.runner.cycles_completed


def test_trigger_during_running_cycle_is_queued_once(make_agent, provider):
    agent = make_agent(provider)
    _fill(agent, 3)
    provider.gate = threading.Event()

    assert agent.request_cycle() is True
    assert provider.started.wait(5.0)
    assert agent.request_cycle() is True
    assert agent.request_cycle() is False
    provider.gate.set()
    assert agent.wait_for_idle(timeout=5.0)

    assert agent.runner.cycles_completed == 2
    assert provider.max_active == 1


def test_removed_agent_never_overwrites_its_successor(ctx, provider):
    registry = AnalystRegistry(ctx, LLMGateway(provider=provider), AnalysisSettings())
    old = registry.create("m")
    _fill(old, 3)
    provider.gate = threading.Event()

    assert old.request_cycle() is True
    assert provider.started.wait(5.0)
    assert registry.remove("m") is True

    new = registry.create("m")
    assert new.persistence_path == old.persistence_path
    assert len(new.get_record().transcript) == 3
    new.process_utterance([utterance("after re-register", speaker="Carol")])

    provider.gate.set()
    assert old.wait_for_idle(timeout=5.0)

    with open(new.persistence_path, "r", encoding="utf-8") as f:
        data = json.load(f)
    assert [e["text"] for e in data["transcript"]][-1] == "after re-register"
    assert len(data["transcript"]) == 4
    assert old.runner.cycles_completed == 0
    assert old.request_cycle() is False


def test_closed_runner_skips_queued_cycle(make_agent, provider):
    agent = make_agent(provider)
    _fill(agent, 2)
    provider.gate = threading.Event()

    assert agent.request_cycle() is True
    assert provider.started.wait(5.0)
    assert agent.request_cycle() is True
    agent.close()
    provider.gate.set()
    assert agent.wait_for_idle(timeout=5.0)

    assert agent.runner.closed is True
    assert agent.runner.cycles_completed == 0
    assert len(provider.calls) == 1


# ── Fault isolation ──────────────────────────────────────────────────────────


def test_malformed_reply_fails_only_that_task(make_agent):
    provider = StubProvider({"summary": '```json\n{"summary": \n```'})
    agent = make_agent(provider)
    _fill(agent, 2)

    report = agent.runner.run_cycle()

    assert report.tasks["summary"] == FAILED
    assert all(report.tasks[t] == COMPLETED for t in ALL_TASKS[1:])
    assert agent.get_record().summary == ""
    assert agent.get_record().sentiment == "positive"


def test_provider_error_fails_only_that_task(make_agent):
    provider = StubProvider({"key_points": LLMProviderError("timeout")})
    agent = make_agent(provider)
    _fill(agent, 2)

    report = agent.runner.run_cycle()

    assert report.tasks["key_points"] == FAILED
    assert report.tasks["action_items"] == COMPLETED
    assert agent.get_record().key_points == []


def test_unexpected_error_fails_only_that_task(make_agent):
    provider = StubProvider({"topics": RuntimeError("boom")})
    agent = make_agent(provider)
    _fill(agent, 2)

    report = agent.runner.run_cycle()

    assert report.tasks["topics"] == FAILED
    assert report.tasks["sentiment_keywords"] == COMPLETED


def test_reply_without_block_contributes_nothing(make_agent):
    provider = StubProvider({"summary": "I could not find anything to summarize."})
    agent = make_agent(provider)
    _fill(agent, 2)

    report = agent.runner.run_cycle()

    assert report.tasks["summary"] == NO_RESULT
    assert agent.get_record().summary == ""


def test_later_cycle_overwrites_task_output(make_agent, provider):
    agent = make_agent(provider)
    _fill(agent, 2)
    agent.runner.run_cycle()

    provider.replies["key_points"] = '```json\n{"key_points": ["Only this"]}\n```'
    agent.runner.run_cycle()

    assert agent.get_record().key_points == ["Only this"]


def test_unavailable_provider_skips_tasks(make_agent):
    provider = StubProvider(available=False)
    agent = make_agent(provider)
    _fill(agent, 2)

    report = agent.runner.run_cycle()

    assert set(report.tasks.values()) == {SKIPPED}
    assert provider.calls == []


# ── Grounding ────────────────────────────────────────────────────────────────


def test_grounded_summary_and_key_points(make_agent):
    provider = GroundingStubProvider(metadata=summary_metadata())
    agent = make_agent(provider)
    _fill(agent, 2)

    agent.runner.run_cycle()

    record = agent.get_record()
    assert provider.grounded_calls == 2
    assert record.summary == SUMMARY_TEXT
    assert record.grounded_summary.text == SUMMARY_TEXT
    assert record.grounded_summary.text_with_citations == (
        "The team agreed on the launch plan [1](https://example.com/plan)."
    )
    assert record.grounded_summary.grounding_metadata.web_search_queries == ["launch plan"]
    assert record.grounded_key_points.text == "• Launch is on Monday\n• Budget approved"

    data = agent.get_analysis()
    assert data["grounded_summary"]["grounding_metadata"]["grounding_chunks"] == [
        {"web": {"uri": "https://example.com/plan", "title": "Plan"}}
    ]


def test_grounding_failure_falls_back_to_plain_call(make_agent):
    provider = GroundingStubProvider(metadata=summary_metadata())
    agent = make_agent(provider)
    _fill(agent, 2)
    agent.runner.run_cycle()

    provider.grounding_error = LLMProviderError("search quota exceeded")
    report = agent.runner.run_cycle()

    record = agent.get_record()
    assert report.tasks["summary"] == COMPLETED
    assert report.tasks["key_points"] == COMPLETED
    assert record.summary == SUMMARY_TEXT
    assert record.grounded_summary is None
    assert record.grounded_key_points is None
    assert "grounded_summary" not in agent.get_analysis()


@pytest.mark.parametrize("strategy", ["direct", "generated"])
def test_custom_instructions_reach_every_task(make_agent, strategy):
    provider = StubProvider()
    agent = make_agent(
        provider,
        custom_instructions="You are a sales coach.",
        prompt_strategy=strategy,
    )
    _fill(agent, 2)

    report = agent.runner.run_cycle()

    assert report.tasks == {task: COMPLETED for task in ALL_TASKS}
    meta_calls = provider.prompts_for("meta")
    assert len(meta_calls) == (5 if strategy == "generated" else 0)
    if strategy == "direct":
        assert all("You are a sales coach." in p for t, p in provider.calls)
