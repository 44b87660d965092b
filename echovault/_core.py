"""EchoVault main class (facade pattern)."""

from __future__ import annotations

import asyncio
import logging
from datetime import date
from typing import Optional

from echovault.config import PipelineSettings, ProviderSettings, pipeline_settings_from_env
from echovault.db import Database
from echovault.errors import transcription_error_for
from echovault.events import StatusBus
from echovault.providers.llm import LLMProvider
from echovault.services.analysis import TextAnalyzer
from echovault.services.chat import ChatAnswer, JournalChat
from echovault.services.maintenance import MaintenanceScheduler, ProgressCallback
from echovault.services.offline import ConnectivityMonitor
from echovault.services.pipeline import (
    EntryPipeline,
    PendingSubmission,
    SubmitOutcome,
)
from echovault.services.safety import GateResolution, SafetyGate, check_longitudinal_risk
from echovault.services.synthesis import DailySynthesis, generate_daily_synthesis
from echovault.services.temporal import TemporalResolver
from echovault.storage.base import EntryStore
from echovault.types import Entry

logger = logging.getLogger(__name__)


class EchoVault:
    """Session-scoped entry point: pipeline, offline queue, chat and maintenance.

    Args:
        analyzer: AI collaborator (classification, analysis, embedding, ...).
        store: Durable entry store. Defaults to PostgreSQL at ``database_url``.
        database_url: PostgreSQL connection string, used when ``store`` is None.
        llm: Optional chat model for temporal resolution. Without one every
            entry is dated at submission time.
        settings: Pipeline and maintenance tuning.
        gate: Safety gate with custom predicates.
        online: Initial connectivity state.
        embedding_dims: Vector column size for the default store.
        on_progress: Retrofit progress callback ``(processed, total)``.

    Usage:
        async with EchoVault(analyzer=LLMTextAnalyzer(llm, embedding), llm=llm,
                             database_url="postgresql+asyncpg://...") as ev:
            outcome = await ev.submit("Yesterday was rough")
            answer = await ev.ask("How have I been sleeping?")
    """

    def __init__(
        self,
        analyzer: TextAnalyzer,
        store: Optional[EntryStore] = None,
        database_url: Optional[str] = None,
        llm: Optional[LLMProvider] = None,
        settings: Optional[PipelineSettings] = None,
        gate: Optional[SafetyGate] = None,
        online: bool = True,
        embedding_dims: Optional[int] = None,
        on_progress: Optional[ProgressCallback] = None,
    ):
        if store is None:
            if not database_url:
                raise ValueError("Either store or database_url is required")
            # Set embedding dimensions before any model import
            import echovault.models as _models
            if embedding_dims:
                _models._embedding_dims = embedding_dims
            from echovault.storage.postgres import PostgresEntryStore
            store = PostgresEntryStore(Database(database_url))

        self._store = store
        self._analyzer = analyzer
        self._settings = settings or PipelineSettings()
        self._entries: list[Entry] = []
        self._watch_task: Optional[asyncio.Task] = None

        self.events = StatusBus()
        self.connectivity = ConnectivityMonitor(online=online)
        self.pipeline = EntryPipeline(
            store=store,
            analyzer=analyzer,
            gate=gate,
            temporal=TemporalResolver(llm),
            connectivity=self.connectivity,
            events=self.events,
            settings=self._settings,
            corpus=lambda: self._entries,
        )
        self.chat = JournalChat(analyzer, corpus=lambda: self._entries, settings=self._settings)
        self.maintenance = MaintenanceScheduler(
            store,
            analyzer,
            settings=self._settings,
            on_progress=on_progress,
            is_enriching=self.pipeline.is_enriching,
        )

    @classmethod
    def from_env(cls, **kwargs) -> "EchoVault":
        """Build an instance from ``ECHOVAULT_*`` environment variables."""
        from echovault.providers.openai_embedding import OpenAIEmbedding
        from echovault.providers.openai_llm import OpenAILLM
        from echovault.providers.transcription import WhisperTranscriber
        from echovault.services.analysis import LLMTextAnalyzer

        cfg = ProviderSettings.from_env()
        if not cfg.llm_api_key:
            raise ValueError("ECHOVAULT_LLM_API_KEY (or OPENAI_API_KEY) is not set")

        llm = OpenAILLM(api_key=cfg.llm_api_key, model=cfg.llm_model, base_url=cfg.llm_base_url)
        embedding = OpenAIEmbedding(
            api_key=cfg.llm_api_key,
            model=cfg.embedding_model,
            base_url=cfg.llm_base_url,
            dimensions=cfg.embedding_dims,
        )
        transcriber = WhisperTranscriber(
            api_key=cfg.llm_api_key, model=cfg.transcription_model, base_url=cfg.llm_base_url
        )
        kwargs.setdefault("settings", pipeline_settings_from_env())
        return cls(
            analyzer=LLMTextAnalyzer(llm, embedding, transcriber),
            database_url=cfg.database_url,
            llm=llm,
            embedding_dims=cfg.embedding_dims,
            **kwargs,
        )

    # -- Lifecycle --

    async def init(self) -> None:
        """Initialize storage and load the current entry list."""
        await self._store.init()
        await self.refresh()

    async def close(self) -> None:
        """Stop watching, let replay and enrichment settle, release the store."""
        if self._watch_task:
            self._watch_task.cancel()
            try:
                await self._watch_task
            except asyncio.CancelledError:
                pass
            self._watch_task = None
        await self.wait_idle()
        await self.maintenance.wait_idle()
        if len(self.pipeline.offline_queue):
            logger.warning(
                f"Closing with {len(self.pipeline.offline_queue)} offline entries not persisted"
            )
        await self._store.close()

    async def __aenter__(self) -> "EchoVault":
        await self.init()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    # -- Live corpus --

    @property
    def entries(self) -> list[Entry]:
        """Latest known entries, newest first."""
        return list(self._entries)

    async def refresh(self) -> list[Entry]:
        self._entries = await self._store.list_entries()
        return self.entries

    def watch(self, interval: float = 2.0, start_maintenance: bool = True) -> asyncio.Task:
        """Follow store snapshots in the background.

        The first snapshot also starts the maintenance jobs when
        ``start_maintenance`` is set.
        """
        if self._watch_task is None or self._watch_task.done():
            self._watch_task = asyncio.create_task(self._follow(interval, start_maintenance))
        return self._watch_task

    async def _follow(self, interval: float, start_maintenance: bool) -> None:
        first = True
        async for snapshot in self._store.subscribe(interval=interval):
            self._entries = snapshot
            if first and start_maintenance:
                self.maintenance.start(snapshot)
            first = False

    # -- Submission --

    async def submit(
        self,
        text: str,
        reply_context: Optional[str] = None,
        category: Optional[str] = None,
    ) -> SubmitOutcome:
        return await self.pipeline.submit(text, reply_context=reply_context, category=category)

    async def submit_audio(
        self,
        audio: bytes,
        mime_type: str,
        reply_context: Optional[str] = None,
        category: Optional[str] = None,
    ) -> SubmitOutcome:
        """Transcribe a voice entry and submit it.

        Raises ``TranscriptionError`` when the transcriber returns a sentinel.
        """
        transcript = await self._analyzer.transcribe(audio, mime_type)
        error = transcription_error_for(transcript)
        if error is not None:
            logger.warning(f"Transcription rejected: {error.sentinel}")
            raise error
        return await self.submit(transcript, reply_context=reply_context, category=category)

    async def resolve_gate(
        self, pending: PendingSubmission, resolution: GateResolution
    ) -> SubmitOutcome:
        return await self.pipeline.resolve_gate(pending, resolution)

    async def confirm_temporal(
        self, pending: PendingSubmission, use_detected: bool
    ) -> SubmitOutcome:
        return await self.pipeline.confirm_temporal(pending, use_detected)

    async def cancel(self, pending: PendingSubmission) -> SubmitOutcome:
        return await self.pipeline.cancel(pending)

    def set_online(self, online: bool) -> list[asyncio.Task]:
        return self.connectivity.set_online(online)

    async def wait_idle(self) -> None:
        """Wait for a running offline replay, then for enrichment."""
        await self.pipeline.offline_queue.wait_idle()
        await self.pipeline.wait_idle()

    # -- Retrieval & insight --

    async def ask(self, question: str) -> ChatAnswer:
        return await self.chat.ask(question)

    async def daily_synthesis(self, day: date) -> Optional[DailySynthesis]:
        day_entries = [
            e for e in self._entries
            if e.sort_date is not None and e.sort_date.date() == day
        ]
        return await generate_daily_synthesis(self._analyzer, day_entries)

    def longitudinal_risk(self) -> bool:
        return check_longitudinal_risk(self._entries)

    def start_maintenance(self) -> list[asyncio.Task]:
        return self.maintenance.start(self._entries)
