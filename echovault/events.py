"""Observable status transitions emitted by the pipeline for the presentation layer."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Optional

logger = logging.getLogger(__name__)


class Status(str, Enum):
    PENDING = "pending"
    COMPLETE = "complete"
    NEEDS_DECOMPRESSION = "needs-decompression"
    GATE_BLOCKED = "gate-blocked"
    SUPPORT_RESOURCES = "support-resources"
    TEMPORAL_CONFIRMATION_NEEDED = "temporal-confirmation-needed"
    OFFLINE_QUEUED = "offline-queued"


@dataclass
class StatusEvent:
    status: Status
    entry_id: Optional[str] = None
    detail: dict[str, Any] = field(default_factory=dict)


Listener = Callable[[StatusEvent], None]


class StatusBus:
    """Synchronous fan-out of status events to subscribed listeners."""

    def __init__(self) -> None:
        self._listeners: list[Listener] = []

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register a listener. Returns a callable that unsubscribes it."""
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def emit(self, status: Status, entry_id: Optional[str] = None, **detail: Any) -> None:
        event = StatusEvent(status=status, entry_id=entry_id, detail=detail)
        logger.debug(f"status {status.value} entry={entry_id}")
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception as e:
                logger.error(f"Status listener failed for {status.value}: {e}", exc_info=True)
