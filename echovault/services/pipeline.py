"""Entry pipeline: gate, resolve, persist, then enrich in the background.

``submit`` returns as soon as the entry is durable (or queued offline).
Enrichment runs as a tracked background task and writes back exactly once,
either the full result or a neutral fallback.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Optional, Sequence

from echovault.config import PipelineSettings
from echovault.errors import PendingSubmissionError, PersistenceError
from echovault.events import Status, StatusBus
from echovault.services.analysis import TextAnalyzer
from echovault.services.offline import ConnectivityMonitor, OfflineReplayQueue, new_offline_id
from echovault.services.ranking import RelevanceRanker, select_context
from echovault.services.safety import (
    COPING_STRATEGIES,
    CRISIS_RESOURCES,
    GateResolution,
    SafetyGate,
)
from echovault.services.temporal import (
    TemporalDecision,
    TemporalResolver,
    TemporalResult,
    decide,
)
from echovault.storage.base import EntryStore
from echovault.types import (
    Analysis,
    AnalysisStatus,
    Entry,
    EntryType,
    OfflineQueueItem,
)
from echovault.utils.sanitize import merge_tags, remove_none, truncate_title

logger = logging.getLogger(__name__)


def compose_text(raw_text: str, reply_context: Optional[str] = None) -> str:
    if reply_context:
        return f'[Replying to: "{reply_context}"]\n\n{raw_text}'
    return raw_text


def fallback_fields(text: str) -> dict[str, Any]:
    """Neutral enrichment written when the real enrichment fails."""
    return {
        "analysis": {"mood_score": 0.5, "framework": "general"},
        "title": truncate_title(text),
        "tags": [],
        "analysis_status": AnalysisStatus.COMPLETE.value,
        "entry_type": EntryType.REFLECTION.value,
    }


class SubmitStatus(str, Enum):
    SAVED = "saved"
    OFFLINE_QUEUED = "offline_queued"
    GATE_BLOCKED = "gate_blocked"
    NEEDS_TEMPORAL_CONFIRMATION = "needs_temporal_confirmation"
    DISCARDED = "discarded"


class Stage(str, Enum):
    GATE = "gate"
    TEMPORAL = "temporal"


@dataclass
class PendingSubmission:
    """A submission suspended on user input. Nothing has been written."""

    text: str
    category: str
    created_at: datetime
    stage: Stage = Stage.GATE
    safety_flagged: bool = False
    safety_user_response: Optional[str] = None
    has_warning_indicators: bool = False
    temporal: Optional[TemporalResult] = None
    token: str = field(default_factory=lambda: uuid.uuid4().hex)


@dataclass
class SubmitOutcome:
    status: SubmitStatus
    entry_id: Optional[str] = None
    pending: Optional[PendingSubmission] = None


class WriteBackGuard:
    """Allows one successful enrichment write per entry id.

    ``claim`` before writing; ``release`` if the write failed so the
    fallback can claim it. The pipeline releases an id once its enrichment
    task has settled.
    """

    def __init__(self) -> None:
        self._claimed: set[str] = set()

    def claim(self, entry_id: str) -> bool:
        if entry_id in self._claimed:
            return False
        self._claimed.add(entry_id)
        return True

    def release(self, entry_id: str) -> None:
        self._claimed.discard(entry_id)

    def __contains__(self, entry_id: str) -> bool:
        return entry_id in self._claimed


def _analysis_dict(analysis: Analysis) -> dict[str, Any]:
    data: dict[str, Any] = {
        "mood_score": analysis.mood_score,
        "framework": analysis.framework or "general",
    }
    if analysis.cbt_breakdown:
        data["cbt_breakdown"] = analysis.cbt_breakdown
    if analysis.vent_support:
        data["vent_support"] = analysis.vent_support
    if analysis.celebration:
        data["celebration"] = analysis.celebration
    if analysis.task_acknowledgment:
        data["task_acknowledgment"] = analysis.task_acknowledgment
    return data


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class EntryPipeline:
    """Orchestrates SafetyGate, TemporalResolver, persistence and enrichment.

    Args:
        store: Durable entry store.
        analyzer: AI collaborator for embedding and enrichment.
        gate: Safety gate (default keyword predicates).
        temporal: Temporal resolver; without one every entry is dated today.
        connectivity: Online/offline state. Offline submissions are queued
            in ``offline_queue`` and replayed on reconnect.
        events: Status bus for the presentation layer.
        settings: Timeouts and thresholds.
        corpus: Callable returning the current entry list (newest first),
            used as retrieval context during enrichment.
        clock: Source of submission timestamps.
    """

    def __init__(
        self,
        store: EntryStore,
        analyzer: TextAnalyzer,
        gate: Optional[SafetyGate] = None,
        temporal: Optional[TemporalResolver] = None,
        connectivity: Optional[ConnectivityMonitor] = None,
        events: Optional[StatusBus] = None,
        settings: Optional[PipelineSettings] = None,
        corpus: Optional[Callable[[], Sequence[Entry]]] = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self._store = store
        self._analyzer = analyzer
        self._gate = gate or SafetyGate()
        self._temporal = temporal or TemporalResolver()
        self._settings = settings or PipelineSettings()
        self._events = events or StatusBus()
        self._corpus = corpus or (lambda: [])
        self._clock = clock
        self._ranker = RelevanceRanker(
            threshold=self._settings.relevance_threshold,
            top_k=self._settings.relevance_top_k,
        )

        self.connectivity = connectivity or ConnectivityMonitor()
        self.offline_queue = OfflineReplayQueue(self.persist)
        self.connectivity.watch(self.offline_queue)

        self._pending: dict[str, PendingSubmission] = {}
        self._tasks: set[asyncio.Task] = set()
        self._guard = WriteBackGuard()
        self._in_flight: dict[str, asyncio.Task] = {}

    @property
    def events(self) -> StatusBus:
        return self._events

    async def _call(self, awaitable):
        """Bound an external call; a timeout surfaces as ``asyncio.TimeoutError``."""
        return await asyncio.wait_for(awaitable, timeout=self._settings.analyzer_timeout)

    # -- Submission --

    async def submit(
        self,
        raw_text: str,
        reply_context: Optional[str] = None,
        category: Optional[str] = None,
    ) -> SubmitOutcome:
        text = compose_text(raw_text, reply_context)
        if not text.strip():
            raise ValueError("Entry text is empty")

        gate = self._gate.evaluate(text)
        pending = PendingSubmission(
            text=text,
            category=category or "personal",
            created_at=self._clock(),
            safety_flagged=gate.crisis,
            has_warning_indicators=gate.warning,
        )

        if gate.crisis:
            self._suspend(pending, Stage.GATE)
            self._events.emit(Status.GATE_BLOCKED, token=pending.token)
            logger.info("Submission blocked by safety gate, awaiting resolution")
            return SubmitOutcome(SubmitStatus.GATE_BLOCKED, pending=pending)

        return await self._after_gate(pending)

    async def resolve_gate(
        self, pending: PendingSubmission, resolution: GateResolution
    ) -> SubmitOutcome:
        self._take(pending, Stage.GATE)
        resolution = GateResolution(resolution)

        if resolution is not GateResolution.OKAY:
            self._events.emit(
                Status.SUPPORT_RESOURCES,
                level=resolution.value,
                resources=CRISIS_RESOURCES,
                coping_strategies=COPING_STRATEGIES,
            )
        if not resolution.proceeds:
            logger.info("Blocked submission discarded after crisis resolution")
            return SubmitOutcome(SubmitStatus.DISCARDED)

        pending.safety_user_response = resolution.value
        return await self._after_gate(pending)

    async def confirm_temporal(
        self, pending: PendingSubmission, use_detected: bool
    ) -> SubmitOutcome:
        self._take(pending, Stage.TEMPORAL)
        return await self._commit(pending, backdate=use_detected)

    async def cancel(self, pending: PendingSubmission) -> SubmitOutcome:
        """Close the prompt: a gate block is discarded, a date prompt keeps today."""
        if pending.stage is Stage.TEMPORAL:
            return await self.confirm_temporal(pending, use_detected=False)
        self._take(pending, Stage.GATE)
        return SubmitOutcome(SubmitStatus.DISCARDED)

    def _suspend(self, pending: PendingSubmission, stage: Stage) -> None:
        pending.stage = stage
        self._pending[pending.token] = pending

    def _take(self, pending: PendingSubmission, stage: Stage) -> None:
        current = self._pending.get(pending.token)
        if current is None or current.stage is not stage:
            raise PendingSubmissionError(
                f"Submission {pending.token} is not awaiting {stage.value} resolution"
            )
        del self._pending[pending.token]

    async def _after_gate(self, pending: PendingSubmission) -> SubmitOutcome:
        try:
            result = await self._call(self._temporal.resolve(pending.text, pending.created_at))
        except Exception as e:
            logger.warning(f"Temporal resolution failed, keeping today: {e}")
            result = TemporalResult(detected=False, effective_date=pending.created_at)
        pending.temporal = result

        decision = decide(result)
        if decision is TemporalDecision.CONFIRM:
            self._suspend(pending, Stage.TEMPORAL)
            self._events.emit(
                Status.TEMPORAL_CONFIRMATION_NEEDED,
                token=pending.token,
                detected_date=result.effective_date.isoformat(),
                original_phrase=result.original_phrase,
                confidence=result.confidence,
            )
            return SubmitOutcome(SubmitStatus.NEEDS_TEMPORAL_CONFIRMATION, pending=pending)

        return await self._commit(pending, backdate=decision is TemporalDecision.AUTO_APPLY)

    async def _commit(self, pending: PendingSubmission, backdate: bool) -> SubmitOutcome:
        temporal = pending.temporal
        effective_date = temporal.effective_date if (temporal and backdate) else pending.created_at
        item = OfflineQueueItem(
            offline_id=new_offline_id(),
            text=pending.text,
            category=pending.category,
            created_at=pending.created_at,
            effective_date=effective_date,
            safety_flagged=pending.safety_flagged,
            safety_user_response=pending.safety_user_response,
            has_warning_indicators=pending.has_warning_indicators,
            temporal_context=temporal.to_context(backdate) if temporal else None,
            future_mentions=list(temporal.future_mentions) if temporal else [],
        )

        if not self.connectivity.is_online:
            self.offline_queue.enqueue(item)
            self._events.emit(Status.OFFLINE_QUEUED, entry_id=item.offline_id)
            return SubmitOutcome(SubmitStatus.OFFLINE_QUEUED, entry_id=item.offline_id)

        entry_id = await self.persist(item)
        return SubmitOutcome(SubmitStatus.SAVED, entry_id=entry_id)

    # -- Persistence --

    async def persist(self, item: OfflineQueueItem) -> str:
        """Embed, create with ``pending`` status and start enrichment.

        Shared by the online path and offline replay. Raises
        ``PersistenceError`` when the store rejects the write.
        """
        embedding = await self._embed(item.text)
        fields = {
            "text": item.text,
            "category": item.category,
            "created_at": item.created_at,
            "effective_date": item.effective_date,
            "embedding": embedding,
            "analysis_status": AnalysisStatus.PENDING.value,
            "entry_type": EntryType.REFLECTION.value,
            "context_version": 0,
            "safety_flagged": item.safety_flagged,
            "safety_user_response": item.safety_user_response,
            "has_warning_indicators": item.has_warning_indicators,
            "temporal_context": item.temporal_context,
            "future_mentions": item.future_mentions,
        }
        try:
            entry_id = await self._store.create(remove_none(fields))
        except PersistenceError:
            raise
        except Exception as e:
            raise PersistenceError(f"Save failed: {e}") from e

        self._events.emit(Status.PENDING, entry_id=entry_id)
        task = self._spawn(self._enrich(entry_id, item.text, embedding, item.category))
        self._in_flight[entry_id] = task
        task.add_done_callback(lambda _task: self._settle(entry_id))
        return entry_id

    async def _embed(self, text: str) -> Optional[list[float]]:
        try:
            return await self._call(self._analyzer.embed(text))
        except Exception as e:
            logger.warning(f"Embedding failed, saving without one: {e}")
            return None

    # -- Enrichment --

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def wait_idle(self) -> None:
        """Wait for all in-flight enrichment tasks to settle."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def is_enriching(self, entry_id: str) -> bool:
        """True while this pipeline still owns the entry's enrichment write."""
        return entry_id in self._in_flight

    def _settle(self, entry_id: str) -> None:
        self._in_flight.pop(entry_id, None)
        self._guard.release(entry_id)

    async def _enrich(
        self,
        entry_id: str,
        text: str,
        embedding: Optional[list[float]],
        category: str,
    ) -> None:
        try:
            fields, mood = await self._build_enrichment(entry_id, text, embedding, category)
            await self._write_back(entry_id, fields)
        except Exception as e:
            logger.warning(
                f"Enrichment failed for {entry_id}, writing fallback: {type(e).__name__}: {e}",
                exc_info=True,
            )
            try:
                await self._write_back(entry_id, fallback_fields(text), fallback=True)
            except Exception as fallback_error:
                logger.error(
                    f"Fallback write failed for {entry_id}: {fallback_error}", exc_info=True
                )
            return

        if mood is not None and mood < self._settings.decompression_threshold:
            self._events.emit(Status.NEEDS_DECOMPRESSION, entry_id=entry_id, mood_score=mood)

    async def _write_back(
        self, entry_id: str, fields: dict[str, Any], fallback: bool = False
    ) -> bool:
        if not self._guard.claim(entry_id):
            logger.warning(f"Enrichment for {entry_id} already written, skipping")
            return False
        try:
            await self._store.update(entry_id, fields)
        except Exception:
            self._guard.release(entry_id)
            raise
        self._events.emit(Status.COMPLETE, entry_id=entry_id, fallback=fallback)
        return True

    async def _build_enrichment(
        self,
        entry_id: str,
        text: str,
        embedding: Optional[list[float]],
        category: str,
    ) -> tuple[dict[str, Any], Optional[float]]:
        classification = await self._call(self._analyzer.classify(text))
        entry_type = classification.entry_type

        corpus = [e for e in self._corpus() if e.id != entry_id]
        recent = select_context([], corpus, self._settings.recent_window)

        if entry_type == EntryType.TASK.value:
            analysis = await self._call(self._analyzer.analyze(text, entry_type))
            insight = context = None
        else:
            # Related memories come from the entry's own category only.
            same_category = [e for e in corpus if e.category == category]
            related = select_context(
                self._ranker.rank(embedding, same_category),
                same_category,
                self._settings.recent_window,
            )
            results = await asyncio.gather(
                self._call(self._analyzer.analyze(text, entry_type)),
                self._call(self._analyzer.generate_insight(text, related, recent, corpus)),
                self._call(self._analyzer.extract_enhanced_context(text, recent)),
                return_exceptions=True,
            )
            for result in results:
                if isinstance(result, BaseException):
                    raise result
            analysis, insight, context = results

        fields: dict[str, Any] = {
            "title": analysis.title or "New Memory",
            "tags": merge_tags(
                analysis.tags,
                context.structured_tags if context else [],
                context.topic_tags if context else [],
            ),
            "analysis_status": AnalysisStatus.COMPLETE.value,
            "entry_type": entry_type,
            "classification_confidence": classification.confidence,
            "context_version": self._settings.context_version,
            "analysis": _analysis_dict(analysis),
        }
        if context and context.continues_situation:
            fields["continues_situation"] = context.continues_situation
        if context and context.goal_update and context.goal_update.get("tag"):
            fields["goal_update"] = context.goal_update
        if classification.extracted_tasks:
            fields["extracted_tasks"] = classification.extracted_tasks
        if insight and insight.found:
            fields["contextual_insight"] = insight.to_dict()

        return remove_none(fields), analysis.mood_score
