"""Background convergence jobs over the existing corpus.

All jobs are idempotent: entries already at the target shape are skipped,
so re-running on a converged corpus performs no writes. Per-entry failures
are logged and skipped.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Callable, Optional, Sequence

from echovault.config import PipelineSettings
from echovault.services.analysis import TextAnalyzer
from echovault.services.pipeline import fallback_fields
from echovault.storage.base import EntryStore
from echovault.types import AnalysisStatus, Entry, EntryType, RetrofitProgress
from echovault.utils.sanitize import is_valid_embedding, merge_tags

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int, int], None]
EnrichingCheck = Callable[[str], bool]

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


async def _pause(seconds: float) -> None:
    if seconds > 0:
        await asyncio.sleep(seconds)


class SchemaRetrofit:
    """Upgrades entries below the target context version.

    Entries are processed in batches with a delay between entries and a
    longer one between batches. Each entry is written independently, so an
    interrupted run resumes by rescanning.
    """

    def __init__(
        self,
        store: EntryStore,
        analyzer: TextAnalyzer,
        settings: Optional[PipelineSettings] = None,
        on_progress: Optional[ProgressCallback] = None,
    ):
        self._store = store
        self._analyzer = analyzer
        self._settings = settings or PipelineSettings()
        self._on_progress = on_progress
        self.progress = RetrofitProgress(processed=0, total=0)

    def needs_retrofit(self, entry: Entry) -> bool:
        return (
            entry.id is not None
            and (entry.context_version or 0) < self._settings.context_version
            and entry.entry_type != EntryType.TASK.value
            and entry.analysis_status != AnalysisStatus.PENDING.value
            and len(entry.text or "") > 10
        )

    async def run(self, corpus: Sequence[Entry]) -> RetrofitProgress:
        stale = [e for e in corpus if self.needs_retrofit(e)]
        self.progress = RetrofitProgress(processed=0, total=len(stale))
        if not stale:
            logger.info("Retrofit: all entries are up to date")
            return self.progress

        logger.info(f"Retrofit: {len(stale)} entries need processing")
        by_date = sorted(corpus, key=lambda e: e.created_at or _EPOCH, reverse=True)
        size = max(1, self._settings.retrofit_batch_size)

        for start in range(0, len(stale), size):
            batch = stale[start:start + size]
            for index, entry in enumerate(batch):
                try:
                    if await self._retrofit_entry(entry, by_date):
                        self.progress.processed += 1
                        logger.debug(
                            f"Retrofit: processed {self.progress.processed}/{self.progress.total}"
                        )
                        if self._on_progress:
                            self._on_progress(self.progress.processed, self.progress.total)
                except Exception as e:
                    logger.error(f"Retrofit: failed to process entry {entry.id}: {e}", exc_info=True)

                if index < len(batch) - 1:
                    await _pause(self._settings.retrofit_entry_delay)

            if start + size < len(stale):
                await _pause(self._settings.retrofit_batch_delay)

        logger.info(f"Retrofit: complete, processed {self.progress.processed} entries")
        return self.progress

    async def _retrofit_entry(self, entry: Entry, by_date: Sequence[Entry]) -> bool:
        created = entry.created_at or _EPOCH
        earlier = [
            e for e in by_date
            if e.id != entry.id and (e.created_at or _EPOCH) < created
        ][:5]

        context = await asyncio.wait_for(
            self._analyzer.extract_enhanced_context(entry.text, earlier),
            timeout=self._settings.analyzer_timeout,
        )
        if context is None:
            return False

        fields = {
            "tags": merge_tags(entry.tags, context.structured_tags, context.topic_tags),
            "context_version": self._settings.context_version,
        }
        if context.continues_situation:
            fields["continues_situation"] = context.continues_situation
        if context.goal_update and context.goal_update.get("tag"):
            fields["goal_update"] = context.goal_update

        await self._store.update(entry.id, fields)
        return True


class PendingRecovery:
    """Completes entries whose enrichment was abandoned.

    An entry left ``pending`` (both enrichment writes failed, or the process
    stopped mid-enrichment) gets the neutral fallback enrichment. Entries
    whose enrichment is still running in this process are left alone, and
    every candidate is re-read from the store before it is written.
    """

    def __init__(
        self,
        store: EntryStore,
        is_enriching: Optional[EnrichingCheck] = None,
    ):
        self._store = store
        self._is_enriching = is_enriching or (lambda entry_id: False)
        self.recovered = 0

    def is_abandoned(self, entry: Entry) -> bool:
        return (
            entry.id is not None
            and entry.analysis_status == AnalysisStatus.PENDING.value
            and not self._is_enriching(entry.id)
        )

    async def run(self, corpus: Sequence[Entry]) -> int:
        self.recovered = 0
        candidates = [e for e in corpus if self.is_abandoned(e)]
        if not candidates:
            return 0

        current = {e.id: e for e in await self._store.list_entries()}
        for entry in candidates:
            live = current.get(entry.id)
            if live is None or live.analysis_status != AnalysisStatus.PENDING.value:
                continue
            try:
                await self._store.update(entry.id, fallback_fields(live.text))
                self.recovered += 1
            except Exception as e:
                logger.error(f"Failed to recover pending entry {entry.id}: {e}", exc_info=True)

        if self.recovered:
            logger.info(f"Recovered {self.recovered} entries stuck in pending")
        return self.recovered


class EmbeddingBackfill:
    """Fills in missing embeddings, at most ``backfill_cap`` per session."""

    def __init__(
        self,
        store: EntryStore,
        analyzer: TextAnalyzer,
        settings: Optional[PipelineSettings] = None,
    ):
        self._store = store
        self._analyzer = analyzer
        self._settings = settings or PipelineSettings()
        self.filled = 0

    @staticmethod
    def needs_embedding(entry: Entry) -> bool:
        return entry.id is not None and not entry.embedding and bool((entry.text or "").strip())

    async def run(self, corpus: Sequence[Entry]) -> int:
        self.filled = 0
        missing = [e for e in corpus if self.needs_embedding(e)]
        if not missing:
            return 0

        cap = self._settings.backfill_cap
        logger.info(f"Found {len(missing)} entries without embeddings, backfilling up to {cap}")
        for index, entry in enumerate(missing[:cap]):
            if index:
                await _pause(self._settings.backfill_delay)
            try:
                embedding = await asyncio.wait_for(
                    self._analyzer.embed(entry.text),
                    timeout=self._settings.analyzer_timeout,
                )
                if not is_valid_embedding(embedding):
                    logger.warning(f"No embedding returned for entry {entry.id}")
                    continue
                await self._store.update(entry.id, {"embedding": embedding})
                self.filled += 1
                logger.debug(f"Backfilled embedding for entry {entry.id}")
            except Exception as e:
                logger.error(f"Failed to backfill embedding for entry {entry.id}: {e}", exc_info=True)

        if len(missing) > cap:
            logger.info(
                f"{len(missing) - cap} entries still need embeddings (will process on next session)"
            )
        return self.filled


class MaintenanceScheduler:
    """Runs PendingRecovery, EmbeddingBackfill and SchemaRetrofit at most once per session.

    ``is_enriching`` reports entry ids whose enrichment is still in flight
    (normally ``EntryPipeline.is_enriching``).
    """

    def __init__(
        self,
        store: EntryStore,
        analyzer: TextAnalyzer,
        settings: Optional[PipelineSettings] = None,
        on_progress: Optional[ProgressCallback] = None,
        is_enriching: Optional[EnrichingCheck] = None,
    ):
        self.recovery = PendingRecovery(store, is_enriching)
        self.retrofit = SchemaRetrofit(store, analyzer, settings, on_progress)
        self.backfill = EmbeddingBackfill(store, analyzer, settings)
        self._recovery_started = False
        self._retrofit_started = False
        self._backfill_started = False
        self._tasks: set[asyncio.Task] = set()

    def _spawn(self, coro, name: str) -> asyncio.Task:
        task = asyncio.create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._on_done)
        return task

    def _on_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error(f"Maintenance job {task.get_name()} crashed", exc_info=task.exception())

    def start(self, corpus: Sequence[Entry]) -> list[asyncio.Task]:
        """Start whichever jobs have not run this session. Returns the new tasks."""
        started = []
        snapshot = list(corpus)
        if not self._recovery_started:
            self._recovery_started = True
            started.append(self._spawn(self.recovery.run(snapshot), "pending-recovery"))
        if not self._backfill_started:
            self._backfill_started = True
            started.append(self._spawn(self.backfill.run(snapshot), "embedding-backfill"))
        if not self._retrofit_started:
            self._retrofit_started = True
            started.append(self._spawn(self.retrofit.run(snapshot), "schema-retrofit"))
        return started

    async def run(self, corpus: Sequence[Entry]) -> tuple[int, RetrofitProgress]:
        """Start the jobs and wait for them (used by the CLI)."""
        self.start(corpus)
        await self.wait_idle()
        return self.backfill.filled, self.retrofit.progress

    async def wait_idle(self) -> None:
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
