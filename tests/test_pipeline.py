"""Tests for EntryPipeline: gating, temporal policy, persistence, enrichment."""

import asyncio
import json
from datetime import datetime, timezone

import pytest

from conftest import NOW, EventRecorder, MockLLMProvider
from echovault.errors import PendingSubmissionError, PersistenceError
from echovault.events import Status, StatusBus
from echovault.services.maintenance import MaintenanceScheduler
from echovault.services.offline import ConnectivityMonitor
from echovault.services.pipeline import (
    EntryPipeline,
    SubmitStatus,
    WriteBackGuard,
    compose_text,
    fallback_fields,
)
from echovault.services.safety import GateResolution
from echovault.services.temporal import TemporalResolver
from echovault.types import Analysis, Classification, EnhancedContext, Entry, Insight

YESTERDAY_NOON = datetime(2024, 3, 12, 12, 0, tzinfo=timezone.utc)


def past_reference(confidence: float) -> str:
    return json.dumps({
        "past_reference": {
            "detected": True,
            "temporal_reference": "yesterday",
            "original_phrase": "Yesterday",
            "confidence": confidence,
        },
        "future_mentions": [],
        "recurring_mentions": [],
        "reasoning": "describes yesterday",
    })


def build(store, analyzer, settings, llm=None, online=True, corpus=None):
    bus = StatusBus()
    pipeline = EntryPipeline(
        store=store,
        analyzer=analyzer,
        temporal=TemporalResolver(llm),
        connectivity=ConnectivityMonitor(online=online),
        events=bus,
        settings=settings,
        corpus=corpus,
        clock=lambda: NOW,
    )
    return pipeline, EventRecorder(bus)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def test_compose_text_prefixes_reply_context():
    assert compose_text("Fine, thanks") == "Fine, thanks"
    assert compose_text("Fine, thanks", "How was it?") == (
        '[Replying to: "How was it?"]\n\nFine, thanks'
    )


def test_fallback_fields_are_neutral():
    fields = fallback_fields("x" * 80)
    assert fields["analysis"] == {"mood_score": 0.5, "framework": "general"}
    assert fields["title"] == "x" * 50 + "..."
    assert fields["tags"] == []
    assert fields["analysis_status"] == "complete"
    assert fields["entry_type"] == "reflection"


def test_write_back_guard_claims_once():
    guard = WriteBackGuard()
    assert guard.claim("e1") is True
    assert guard.claim("e1") is False
    guard.release("e1")
    assert "e1" not in guard
    assert guard.claim("e1") is True


# ---------------------------------------------------------------------------
# Happy path
# ---------------------------------------------------------------------------


class TestSubmit:
    @pytest.mark.asyncio
    async def test_one_create_then_one_update(self, store, analyzer, settings):
        pipeline, events = build(store, analyzer, settings)

        outcome = await pipeline.submit("Long day at work, but I got through it")
        assert outcome.status is SubmitStatus.SAVED
        assert outcome.entry_id == "entry-1"

        await pipeline.wait_idle()

        assert len(store.creates) == 1
        created = store.creates[0]
        assert created["analysis_status"] == "pending"
        assert created["context_version"] == 0
        assert created["created_at"] == NOW
        assert created["effective_date"] == NOW
        assert created["embedding"] == [1.0, 0.0, 0.0]

        assert len(store.updates) == 1
        entry_id, fields = store.updates[0]
        assert entry_id == "entry-1"
        assert fields["analysis_status"] == "complete"
        assert fields["title"] == "A long day"
        assert fields["entry_type"] == "reflection"
        assert fields["classification_confidence"] == 0.9
        assert fields["context_version"] == settings.context_version
        assert fields["analysis"] == {"mood_score": 0.6, "framework": "general"}

        statuses = [e.status for e in events.events]
        assert statuses == [Status.PENDING, Status.COMPLETE]
        assert events.of(Status.COMPLETE)[0].detail == {"fallback": False}

    @pytest.mark.asyncio
    async def test_empty_text_rejected(self, store, analyzer, settings):
        pipeline, _ = build(store, analyzer, settings)
        with pytest.raises(ValueError):
            await pipeline.submit("   ")
        assert store.creates == []

    @pytest.mark.asyncio
    async def test_reply_context_is_saved_with_entry(self, store, analyzer, settings):
        pipeline, _ = build(store, analyzer, settings)
        await pipeline.submit("It went fine", reply_context="How did the interview go?")
        await pipeline.wait_idle()
        assert store.creates[0]["text"].startswith('[Replying to: "How did the interview go?"]')

    @pytest.mark.asyncio
    async def test_category_defaults_to_personal(self, store, analyzer, settings):
        pipeline, _ = build(store, analyzer, settings)
        await pipeline.submit("Quiet evening")
        await pipeline.submit("Sprint planning ran long", category="work")
        await pipeline.wait_idle()
        assert [c["category"] for c in store.creates] == ["personal", "work"]

    @pytest.mark.asyncio
    async def test_store_failure_raises_and_skips_enrichment(self, store, analyzer, settings):
        pipeline, events = build(store, analyzer, settings)
        store.fail_create = RuntimeError("disk full")

        with pytest.raises(PersistenceError):
            await pipeline.submit("Nothing will be saved")
        await pipeline.wait_idle()

        assert analyzer.called("classify") == 0
        assert events.of(Status.PENDING) == []

    @pytest.mark.asyncio
    async def test_embedding_failure_saves_without_vector(self, store, analyzer, settings):
        analyzer.embedding = RuntimeError("embedding service down")
        pipeline, events = build(store, analyzer, settings)

        outcome = await pipeline.submit("Went for a walk by the river")
        await pipeline.wait_idle()

        assert outcome.status is SubmitStatus.SAVED
        assert "embedding" not in store.creates[0]
        assert store.updates[0][1]["analysis_status"] == "complete"
        assert len(events.of(Status.COMPLETE)) == 1

    @pytest.mark.asyncio
    async def test_analyzer_outage_still_completes(self, store, analyzer, settings):
        outage = ConnectionError("analyzer unreachable")
        analyzer.embedding = outage
        analyzer.classification = outage
        pipeline, events = build(store, analyzer, settings)
        text = "Rainy day, stayed in and read"

        outcome = await pipeline.submit(text)
        await pipeline.wait_idle()

        assert outcome.status is SubmitStatus.SAVED
        assert "embedding" not in store.creates[0]
        assert store.updates == [(outcome.entry_id, fallback_fields(text))]
        assert events.of(Status.COMPLETE)[0].detail["fallback"] is True


# ---------------------------------------------------------------------------
# Safety gate
# ---------------------------------------------------------------------------


class TestSafetyGate:
    @pytest.mark.asyncio
    async def test_crisis_blocks_before_any_write(self, store, analyzer, settings):
        pipeline, events = build(store, analyzer, settings)

        outcome = await pipeline.submit("Some days I want to die")

        assert outcome.status is SubmitStatus.GATE_BLOCKED
        assert outcome.pending is not None
        assert store.creates == []
        assert analyzer.calls == []
        blocked = events.of(Status.GATE_BLOCKED)
        assert len(blocked) == 1
        assert blocked[0].detail["token"] == outcome.pending.token

    @pytest.mark.asyncio
    async def test_crisis_resolution_discards(self, store, analyzer, settings):
        pipeline, events = build(store, analyzer, settings)
        outcome = await pipeline.submit("Some days I want to die")

        result = await pipeline.resolve_gate(outcome.pending, GateResolution.CRISIS)

        assert result.status is SubmitStatus.DISCARDED
        assert store.creates == []
        support = events.of(Status.SUPPORT_RESOURCES)
        assert len(support) == 1
        assert support[0].detail["level"] == "crisis"
        assert support[0].detail["resources"]

    @pytest.mark.asyncio
    async def test_okay_resolution_saves_flagged_entry(self, store, analyzer, settings):
        pipeline, events = build(store, analyzer, settings)
        outcome = await pipeline.submit("Some days I want to die")

        result = await pipeline.resolve_gate(outcome.pending, GateResolution.OKAY)
        await pipeline.wait_idle()

        assert result.status is SubmitStatus.SAVED
        created = store.creates[0]
        assert created["safety_flagged"] is True
        assert created["safety_user_response"] == "okay"
        assert events.of(Status.SUPPORT_RESOURCES) == []

    @pytest.mark.asyncio
    async def test_support_resolution_saves_and_shows_resources(self, store, analyzer, settings):
        pipeline, events = build(store, analyzer, settings)
        outcome = await pipeline.submit("Some days I want to die")

        result = await pipeline.resolve_gate(outcome.pending, "support")
        await pipeline.wait_idle()

        assert result.status is SubmitStatus.SAVED
        assert store.creates[0]["safety_user_response"] == "support"
        assert events.of(Status.SUPPORT_RESOURCES)[0].detail["level"] == "support"

    @pytest.mark.asyncio
    async def test_warning_annotates_without_blocking(self, store, analyzer, settings):
        pipeline, events = build(store, analyzer, settings)

        outcome = await pipeline.submit("Everything feels hopeless lately")
        await pipeline.wait_idle()

        assert outcome.status is SubmitStatus.SAVED
        assert store.creates[0]["has_warning_indicators"] is True
        assert store.creates[0]["safety_flagged"] is False
        assert events.of(Status.GATE_BLOCKED) == []

    @pytest.mark.asyncio
    async def test_gate_resolved_twice_raises(self, store, analyzer, settings):
        pipeline, _ = build(store, analyzer, settings)
        outcome = await pipeline.submit("Some days I want to die")
        await pipeline.resolve_gate(outcome.pending, GateResolution.CRISIS)

        with pytest.raises(PendingSubmissionError):
            await pipeline.resolve_gate(outcome.pending, GateResolution.OKAY)

    @pytest.mark.asyncio
    async def test_cancel_at_gate_discards(self, store, analyzer, settings):
        pipeline, _ = build(store, analyzer, settings)
        outcome = await pipeline.submit("Some days I want to die")

        result = await pipeline.cancel(outcome.pending)

        assert result.status is SubmitStatus.DISCARDED
        assert store.creates == []

    @pytest.mark.asyncio
    async def test_custom_predicates(self, store, analyzer, settings):
        from echovault.services.safety import SafetyGate

        bus = StatusBus()
        pipeline = EntryPipeline(
            store=store,
            analyzer=analyzer,
            gate=SafetyGate(crisis=lambda t: "red flag" in t, warning=lambda t: False),
            events=bus,
            settings=settings,
            clock=lambda: NOW,
        )
        outcome = await pipeline.submit("This is a red flag")
        assert outcome.status is SubmitStatus.GATE_BLOCKED


# ---------------------------------------------------------------------------
# Temporal confidence policy
# ---------------------------------------------------------------------------


class TestTemporalPolicy:
    @pytest.mark.asyncio
    async def test_high_confidence_backdates_automatically(self, store, analyzer, settings):
        llm = MockLLMProvider(past_reference(0.9))
        pipeline, events = build(store, analyzer, settings, llm=llm)

        outcome = await pipeline.submit("Yesterday was a rough day")
        await pipeline.wait_idle()

        assert outcome.status is SubmitStatus.SAVED
        created = store.creates[0]
        assert created["effective_date"] == YESTERDAY_NOON
        assert created["created_at"] == NOW
        assert created["temporal_context"]["backdated"] is True
        assert created["temporal_context"]["original_phrase"] == "Yesterday"
        assert events.of(Status.TEMPORAL_CONFIRMATION_NEEDED) == []

    @pytest.mark.asyncio
    async def test_medium_confidence_asks_first(self, store, analyzer, settings):
        llm = MockLLMProvider(past_reference(0.6))
        pipeline, events = build(store, analyzer, settings, llm=llm)

        outcome = await pipeline.submit("Yesterday was a rough day")

        assert outcome.status is SubmitStatus.NEEDS_TEMPORAL_CONFIRMATION
        assert store.creates == []
        prompt = events.of(Status.TEMPORAL_CONFIRMATION_NEEDED)
        assert len(prompt) == 1
        assert prompt[0].detail["detected_date"] == YESTERDAY_NOON.isoformat()

        result = await pipeline.confirm_temporal(outcome.pending, use_detected=True)
        await pipeline.wait_idle()

        assert result.status is SubmitStatus.SAVED
        assert store.creates[0]["effective_date"] == YESTERDAY_NOON

    @pytest.mark.asyncio
    async def test_declined_confirmation_keeps_today(self, store, analyzer, settings):
        llm = MockLLMProvider(past_reference(0.6))
        pipeline, _ = build(store, analyzer, settings, llm=llm)

        outcome = await pipeline.submit("Yesterday was a rough day")
        await pipeline.confirm_temporal(outcome.pending, use_detected=False)
        await pipeline.wait_idle()

        created = store.creates[0]
        assert created["effective_date"] == NOW
        assert created["temporal_context"]["backdated"] is False

    @pytest.mark.asyncio
    async def test_cancel_at_temporal_prompt_keeps_today(self, store, analyzer, settings):
        llm = MockLLMProvider(past_reference(0.6))
        pipeline, _ = build(store, analyzer, settings, llm=llm)

        outcome = await pipeline.submit("Yesterday was a rough day")
        result = await pipeline.cancel(outcome.pending)
        await pipeline.wait_idle()

        assert result.status is SubmitStatus.SAVED
        assert store.creates[0]["effective_date"] == NOW

    @pytest.mark.asyncio
    async def test_low_confidence_is_ignored(self, store, analyzer, settings):
        llm = MockLLMProvider(past_reference(0.3))
        pipeline, events = build(store, analyzer, settings, llm=llm)

        outcome = await pipeline.submit("Yesterday was a rough day")
        await pipeline.wait_idle()

        assert outcome.status is SubmitStatus.SAVED
        assert store.creates[0]["effective_date"] == NOW
        assert events.of(Status.TEMPORAL_CONFIRMATION_NEEDED) == []

    @pytest.mark.asyncio
    async def test_temporal_failure_keeps_today(self, store, analyzer, settings):
        llm = MockLLMProvider(error=RuntimeError("model unavailable"))
        pipeline, _ = build(store, analyzer, settings, llm=llm)

        outcome = await pipeline.submit("Yesterday was a rough day")
        await pipeline.wait_idle()

        assert outcome.status is SubmitStatus.SAVED
        assert store.creates[0]["effective_date"] == NOW
        assert "temporal_context" not in store.creates[0]

    @pytest.mark.asyncio
    async def test_confirm_on_gate_stage_raises(self, store, analyzer, settings):
        pipeline, _ = build(store, analyzer, settings)
        outcome = await pipeline.submit("Some days I want to die")

        with pytest.raises(PendingSubmissionError):
            await pipeline.confirm_temporal(outcome.pending, use_detected=True)

    @pytest.mark.asyncio
    async def test_confirmed_twice_raises(self, store, analyzer, settings):
        llm = MockLLMProvider(past_reference(0.6))
        pipeline, _ = build(store, analyzer, settings, llm=llm)
        outcome = await pipeline.submit("Yesterday was a rough day")
        await pipeline.confirm_temporal(outcome.pending, use_detected=True)

        with pytest.raises(PendingSubmissionError):
            await pipeline.confirm_temporal(outcome.pending, use_detected=True)
        await pipeline.wait_idle()
        assert len(store.creates) == 1


# ---------------------------------------------------------------------------
# Enrichment
# ---------------------------------------------------------------------------


class TestEnrichment:
    @pytest.mark.asyncio
    async def test_tags_and_context_are_merged(self, store, analyzer, settings):
        analyzer.context = EnhancedContext(
            structured_tags=["@person:sam"],
            topic_tags=["work", "career"],
            continues_situation="@situation:job_search",
            goal_update={"tag": "@goal:new_job", "status": "progress"},
        )
        analyzer.insight = Insight(
            found=True,
            type="pattern",
            message="Sam comes up when work is stressful",
            follow_up_questions=["How did the talk with Sam go?"],
        )
        pipeline, _ = build(store, analyzer, settings)

        await pipeline.submit("Talked to Sam about the job hunt")
        await pipeline.wait_idle()

        fields = store.updates[0][1]
        assert fields["tags"] == ["work", "@person:sam", "career"]
        assert fields["continues_situation"] == "@situation:job_search"
        assert fields["goal_update"] == {"tag": "@goal:new_job", "status": "progress"}
        assert fields["contextual_insight"]["followUpQuestions"] == [
            "How did the talk with Sam go?"
        ]

    @pytest.mark.asyncio
    async def test_goal_update_without_tag_is_dropped(self, store, analyzer, settings):
        analyzer.context = EnhancedContext(goal_update={"status": "progress"})
        pipeline, _ = build(store, analyzer, settings)

        await pipeline.submit("Made some progress today")
        await pipeline.wait_idle()

        assert "goal_update" not in store.updates[0][1]

    @pytest.mark.asyncio
    async def test_task_entries_skip_insight_and_context(self, store, analyzer, settings):
        analyzer.classification = Classification(
            entry_type="task",
            confidence=0.95,
            extracted_tasks=[{"text": "Buy milk", "completed": False, "recurrence": None}],
        )
        analyzer.analysis = Analysis(title="Buy milk", tags=["task"], mood_score=None)
        pipeline, events = build(store, analyzer, settings)

        await pipeline.submit("Buy milk")
        await pipeline.wait_idle()

        fields = store.updates[0][1]
        assert fields["entry_type"] == "task"
        assert fields["extracted_tasks"][0]["text"] == "Buy milk"
        assert fields["tags"] == ["task"]
        assert analyzer.called("generate_insight") == 0
        assert analyzer.called("extract_enhanced_context") == 0
        assert events.of(Status.NEEDS_DECOMPRESSION) == []

    @pytest.mark.asyncio
    async def test_classification_failure_writes_fallback(self, store, analyzer, settings):
        analyzer.classification = RuntimeError("model returned garbage")
        pipeline, events = build(store, analyzer, settings)
        text = "Went to the market and cooked dinner"

        await pipeline.submit(text)
        await pipeline.wait_idle()

        assert store.updates == [("entry-1", fallback_fields(text))]
        complete = events.of(Status.COMPLETE)
        assert len(complete) == 1
        assert complete[0].detail == {"fallback": True}

    @pytest.mark.asyncio
    async def test_one_failed_branch_fails_the_whole_enrichment(self, store, analyzer, settings):
        analyzer.insight = RuntimeError("insight failed")
        pipeline, events = build(store, analyzer, settings)

        await pipeline.submit("Long day again")
        await pipeline.wait_idle()

        assert len(store.updates) == 1
        assert store.updates[0][1]["analysis"] == {"mood_score": 0.5, "framework": "general"}
        assert events.of(Status.COMPLETE)[0].detail["fallback"] is True

    @pytest.mark.asyncio
    async def test_timeout_takes_fallback_path(self, store, analyzer, settings):
        settings.analyzer_timeout = 0.05
        analyzer.delays["classify"] = 0.5
        pipeline, events = build(store, analyzer, settings)

        await pipeline.submit("Slow model day")
        await pipeline.wait_idle()

        assert len(store.updates) == 1
        assert store.updates[0][1]["title"] == "Slow model day"
        assert events.of(Status.COMPLETE)[0].detail["fallback"] is True

    @pytest.mark.asyncio
    async def test_failed_write_back_falls_back_once(self, store, analyzer, settings):
        store.fail_updates = 1
        pipeline, events = build(store, analyzer, settings)
        text = "Cleaned the whole apartment"

        await pipeline.submit(text)
        await pipeline.wait_idle()

        assert store.updates == [("entry-1", fallback_fields(text))]
        assert len(events.of(Status.COMPLETE)) == 1

    @pytest.mark.asyncio
    async def test_entry_left_pending_is_recovered_by_maintenance(self, store, analyzer, settings):
        store.fail_updates = 2
        pipeline, events = build(store, analyzer, settings)
        text = "Nothing sticks today"

        outcome = await pipeline.submit(text)
        await pipeline.wait_idle()

        assert outcome.status is SubmitStatus.SAVED
        assert store.docs["entry-1"]["analysis_status"] == "pending"
        assert events.of(Status.COMPLETE) == []
        assert not pipeline.is_enriching("entry-1")

        scheduler = MaintenanceScheduler(
            store, analyzer, settings=settings, is_enriching=pipeline.is_enriching
        )
        await scheduler.run(await store.list_entries())

        assert store.docs["entry-1"]["analysis_status"] == "complete"
        assert store.updates_for("entry-1") == [fallback_fields(text)]

        next_session = MaintenanceScheduler(
            store, analyzer, settings=settings, is_enriching=pipeline.is_enriching
        )
        await next_session.run(await store.list_entries())
        assert store.docs["entry-1"]["context_version"] == settings.context_version

    @pytest.mark.asyncio
    async def test_enrichment_state_is_released_once_settled(self, store, analyzer, settings):
        analyzer.delays["classify"] = 0.05
        pipeline, _ = build(store, analyzer, settings)

        outcome = await pipeline.submit("Long walk after work")
        assert pipeline.is_enriching(outcome.entry_id)

        await pipeline.wait_idle()
        assert not pipeline.is_enriching(outcome.entry_id)
        assert outcome.entry_id not in pipeline._guard

    @pytest.mark.asyncio
    async def test_related_memories_come_from_same_category(self, store, analyzer, settings):
        corpus = [
            Entry(id="p1", text="Dinner with family", category="personal",
                  embedding=[1.0, 0.0, 0.0], created_at=NOW),
            Entry(id="w1", text="Standup ran long", category="work",
                  embedding=[1.0, 0.0, 0.0], created_at=NOW),
        ]
        pipeline, _ = build(store, analyzer, settings, corpus=lambda: corpus)

        await pipeline.submit("Sprint review went fine", category="work")
        await pipeline.wait_idle()

        assert [[e.id for e in related] for related in analyzer.related] == [["w1"]]

    @pytest.mark.asyncio
    async def test_related_memories_fall_back_to_recent_in_category(self, store, analyzer, settings):
        analyzer.embedding = None
        corpus = [
            Entry(id="p1", text="Dinner with family", category="personal", created_at=NOW),
            Entry(id="w1", text="Standup ran long", category="work", created_at=NOW),
        ]
        pipeline, _ = build(store, analyzer, settings, corpus=lambda: corpus)

        await pipeline.submit("Quiet afternoon at home")
        await pipeline.wait_idle()

        assert [[e.id for e in related] for related in analyzer.related] == [["p1"]]

    @pytest.mark.asyncio
    async def test_low_mood_signals_decompression_once(self, store, analyzer, settings):
        analyzer.analysis = Analysis(title="Heavy day", tags=[], mood_score=0.2)
        pipeline, events = build(store, analyzer, settings)

        await pipeline.submit("Heavy day, felt drained")
        await pipeline.wait_idle()

        signals = events.of(Status.NEEDS_DECOMPRESSION)
        assert len(signals) == 1
        assert signals[0].entry_id == "entry-1"
        assert signals[0].detail["mood_score"] == 0.2

    @pytest.mark.asyncio
    async def test_neutral_mood_does_not_signal(self, store, analyzer, settings):
        pipeline, events = build(store, analyzer, settings)
        await pipeline.submit("Ordinary Tuesday")
        await pipeline.wait_idle()
        assert events.of(Status.NEEDS_DECOMPRESSION) == []

    @pytest.mark.asyncio
    async def test_fallback_never_signals_decompression(self, store, analyzer, settings):
        analyzer.analysis = Analysis(title="Heavy day", tags=[], mood_score=0.1)
        analyzer.context = RuntimeError("context failed")
        pipeline, events = build(store, analyzer, settings)

        await pipeline.submit("Heavy day")
        await pipeline.wait_idle()

        assert events.of(Status.NEEDS_DECOMPRESSION) == []

    @pytest.mark.asyncio
    async def test_concurrent_submissions_each_get_one_update(self, store, analyzer, settings):
        analyzer.delays["analyze"] = 0.01
        pipeline, _ = build(store, analyzer, settings)

        outcomes = await asyncio.gather(*[
            pipeline.submit(f"Entry number {i}") for i in range(5)
        ])
        await pipeline.wait_idle()

        ids = sorted(o.entry_id for o in outcomes)
        assert len(store.creates) == 5
        assert sorted(eid for eid, _ in store.updates) == ids


# ---------------------------------------------------------------------------
# Offline
# ---------------------------------------------------------------------------


class TestOffline:
    @pytest.mark.asyncio
    async def test_offline_entries_replay_in_order(self, store, analyzer, settings):
        pipeline, events = build(store, analyzer, settings, online=False)

        first = await pipeline.submit("Morning pages one")
        second = await pipeline.submit("Morning pages two")

        assert first.status is SubmitStatus.OFFLINE_QUEUED
        assert first.entry_id.startswith("offline-")
        assert second.entry_id != first.entry_id
        assert store.creates == []
        assert len(pipeline.offline_queue) == 2
        assert len(events.of(Status.OFFLINE_QUEUED)) == 2

        tasks = pipeline.connectivity.set_online(True)
        assert len(tasks) == 1
        replayed = await tasks[0]
        await pipeline.wait_idle()

        assert replayed == ["entry-1", "entry-2"]
        assert [c["text"] for c in store.creates] == ["Morning pages one", "Morning pages two"]
        assert len(store.updates) == 2
        assert len(pipeline.offline_queue) == 0
        assert pipeline.connectivity.set_online(True) == []

    @pytest.mark.asyncio
    async def test_offline_entries_are_gated_first(self, store, analyzer, settings):
        pipeline, _ = build(store, analyzer, settings, online=False)

        outcome = await pipeline.submit("Some days I want to die")
        assert outcome.status is SubmitStatus.GATE_BLOCKED
        assert len(pipeline.offline_queue) == 0

        result = await pipeline.resolve_gate(outcome.pending, GateResolution.OKAY)
        assert result.status is SubmitStatus.OFFLINE_QUEUED
        item = pipeline.offline_queue.items[0]
        assert item.safety_flagged is True
        assert item.safety_user_response == "okay"

    @pytest.mark.asyncio
    async def test_offline_item_keeps_resolved_date(self, store, analyzer, settings):
        llm = MockLLMProvider(past_reference(0.9))
        pipeline, _ = build(store, analyzer, settings, llm=llm, online=False)

        await pipeline.submit("Yesterday was a rough day")

        item = pipeline.offline_queue.items[0]
        assert item.effective_date == YESTERDAY_NOON
        assert item.created_at == NOW

    @pytest.mark.asyncio
    async def test_failed_replay_keeps_items_queued(self, store, analyzer, settings):
        pipeline, _ = build(store, analyzer, settings, online=False)
        await pipeline.submit("First offline entry")
        await pipeline.submit("Second offline entry")

        store.fail_create = RuntimeError("still flaky")
        replayed = await asyncio.gather(*pipeline.connectivity.set_online(True))
        assert replayed == [[]]
        assert len(pipeline.offline_queue) == 2

        store.fail_create = None
        replayed = await pipeline.offline_queue.drain()
        await pipeline.wait_idle()
        assert replayed == ["entry-1", "entry-2"]
        assert len(pipeline.offline_queue) == 0
