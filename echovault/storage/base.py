"""Abstract base class for the durable entry store."""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from typing import Any, AsyncIterator, Optional

from echovault.types import Entry


class EntryStore(ABC):
    """Abstract document store for journal entries.

    Field dicts use the ``Entry`` attribute names. ``update`` is a partial
    write: only the given keys change, so concurrent writers on disjoint
    field sets never clobber each other.
    """

    async def init(self) -> None:
        """Initialize storage (e.g., create tables). Override if needed."""

    async def close(self) -> None:
        """Release resources. Override if needed."""

    @abstractmethod
    async def create(self, fields: dict[str, Any]) -> str:
        """Persist a new entry. Returns the store-assigned id."""
        ...

    @abstractmethod
    async def update(self, entry_id: str, fields: dict[str, Any]) -> None:
        """Merge ``fields`` into an existing entry."""
        ...

    @abstractmethod
    async def list_entries(self, limit: Optional[int] = None) -> list[Entry]:
        """Return entries newest first."""
        ...

    async def subscribe(
        self, limit: Optional[int] = None, interval: float = 2.0
    ) -> AsyncIterator[list[Entry]]:
        """Yield a snapshot of the entry list whenever it changes.

        The default implementation polls ``list_entries``; stores with a
        native change feed should override it.
        """
        last: Optional[list[tuple]] = None
        while True:
            snapshot = await self.list_entries(limit)
            fingerprint = [
                (e.id, e.analysis_status, e.context_version, e.title, len(e.tags))
                for e in snapshot
            ]
            if fingerprint != last:
                last = fingerprint
                yield snapshot
            await asyncio.sleep(interval)
