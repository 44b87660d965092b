"""Offline buffering and replay of gated entries."""

from __future__ import annotations

import asyncio
import logging
import uuid
from collections import deque
from typing import Awaitable, Callable, Optional

from echovault.types import OfflineQueueItem

logger = logging.getLogger(__name__)

PersistFn = Callable[[OfflineQueueItem], Awaitable[str]]


def new_offline_id() -> str:
    return f"offline-{uuid.uuid4().hex}"


class OfflineReplayQueue:
    """FIFO of entries captured while disconnected.

    Items are replayed one at a time through ``persist`` (the pipeline's
    embed + create + enrichment path). An item leaves the queue only after
    ``persist`` returns, so an interrupted drain replays it next time.
    """

    def __init__(self, persist: PersistFn):
        self._persist = persist
        self._items: deque[OfflineQueueItem] = deque()
        self._drain_task: Optional[asyncio.Task] = None

    def __len__(self) -> int:
        return len(self._items)

    @property
    def items(self) -> tuple[OfflineQueueItem, ...]:
        return tuple(self._items)

    @property
    def draining(self) -> bool:
        return self._drain_task is not None and not self._drain_task.done()

    def enqueue(self, item: OfflineQueueItem) -> str:
        self._items.append(item)
        logger.info(f"Queued offline entry {item.offline_id} ({len(self._items)} pending)")
        return item.offline_id

    def start_drain(self) -> asyncio.Task:
        """Start a drain, or return the one already running."""
        if not self.draining:
            self._drain_task = asyncio.create_task(self._drain())
        return self._drain_task

    async def drain(self) -> list[str]:
        """Replay queued items; returns the store ids created by this drain."""
        return await self.start_drain()

    async def wait_idle(self) -> None:
        """Wait for a running drain, if any, to finish."""
        if self._drain_task is not None:
            await asyncio.gather(self._drain_task, return_exceptions=True)

    async def _drain(self) -> list[str]:
        persisted: list[str] = []
        while self._items:
            item = self._items[0]
            try:
                entry_id = await self._persist(item)
            except Exception as e:
                logger.error(
                    f"Offline replay stopped at {item.offline_id}, "
                    f"{len(self._items)} item(s) left queued: {e}",
                    exc_info=True,
                )
                break
            self._items.popleft()
            persisted.append(entry_id)
            logger.debug(f"Replayed offline entry {item.offline_id} as {entry_id}")
        if persisted:
            logger.info(f"Offline replay persisted {len(persisted)} entries")
        return persisted


class ConnectivityMonitor:
    """Tracks online state and drains watched queues on reconnect."""

    def __init__(self, online: bool = True):
        self._online = online
        self._queues: list[OfflineReplayQueue] = []

    @property
    def is_online(self) -> bool:
        return self._online

    def watch(self, queue: OfflineReplayQueue) -> None:
        if queue not in self._queues:
            self._queues.append(queue)

    def set_online(self, online: bool) -> list[asyncio.Task]:
        """Record a connectivity change.

        An offline to online transition starts one drain per non-empty
        queue; repeated ``True`` calls are not transitions and start nothing.
        Returns the drain tasks started (or joined).
        """
        was_online = self._online
        self._online = online
        if not online or was_online:
            return []

        logger.info("Connectivity restored")
        return [queue.start_drain() for queue in self._queues if len(queue)]
