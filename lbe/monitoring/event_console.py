"""Console logger for key journal events."""

from __future__ import annotations

from collections.abc import Iterable

import structlog

from lbe.ledger.events import Event, EventType


class EventConsoleLogger:
    """Emit selected journal events to stdout via structlog."""

    def __init__(self, include: Iterable[EventType] | None = None) -> None:
        self.include = set(
            include
            or {
                EventType.WORKER_STARTED,
                EventType.WORKER_STOPPED,
                EventType.TRANSITION_SUBMITTED,
                EventType.TRANSITION_FAILED,
                EventType.HANDLER_FAILED,
            }
        )
        self.log = structlog.get_logger("journal_events")

    def handle_event(self, event: Event) -> None:
        if event.event_type not in self.include:
            return
        self.log.info(
            "journal_event",
            event_type=event.event_type.value,
            sequence_num=event.sequence_num,
            payload=event.payload,
            metadata=event.metadata,
        )
