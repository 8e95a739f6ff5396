"""In-process fan-out of worker journal entries.

Every entry is written to the journal first, so subscribers only ever see
entries that survive a restart. Subscribers are either bound to one entry
type or receive everything (the console logger, for instance).
"""

from __future__ import annotations

import asyncio
from collections import defaultdict
from typing import Any, Awaitable, Callable

import structlog

from lbe.ledger.events import Event, EventType
from lbe.ledger.journal import EventJournal

EventHandler = Callable[[Event], Awaitable[None] | None]

log = structlog.get_logger(__name__)


def _handler_name(handler: EventHandler) -> str:
    return getattr(handler, "__name__", repr(handler))


class EventBus:
    def __init__(self, journal: EventJournal) -> None:
        self._journal = journal
        self._by_type: dict[EventType, list[EventHandler]] = defaultdict(list)
        self._catch_all: list[EventHandler] = []

    def register(self, event_type: EventType, handler: EventHandler) -> None:
        self._by_type[event_type].append(handler)

    def register_all(self, handler: EventHandler) -> None:
        """Subscribe to every entry type, after the type-specific handlers."""
        self._catch_all.append(handler)

    def subscribers(self, event_type: EventType) -> list[EventHandler]:
        return [*self._by_type.get(event_type, []), *self._catch_all]

    async def publish(
        self,
        event_type: EventType,
        payload: dict[str, Any],
        metadata: dict[str, Any] | None = None,
    ) -> Event:
        """Journal the entry, then hand it to its subscribers."""
        event = self._journal.append(event_type, payload, metadata)
        for handler in self.subscribers(event.event_type):
            await self._deliver(handler, event)
        return event

    async def _deliver(self, handler: EventHandler, event: Event) -> None:
        try:
            outcome = handler(event)
            if asyncio.iscoroutine(outcome):
                await outcome
        except asyncio.CancelledError:
            raise
        except Exception:
            name = _handler_name(handler)
            log.exception(
                "event_handler_failed",
                event_id=event.event_id,
                event_type=event.event_type.value,
                handler=name,
            )
            # A failing HANDLER_FAILED subscriber must not report itself again.
            if event.event_type != EventType.HANDLER_FAILED:
                await self._report_failure(event, name)

    async def _report_failure(self, event: Event, handler: str) -> None:
        try:
            await self.publish(
                EventType.HANDLER_FAILED,
                {"event_id": event.event_id, "event_type": event.event_type.value, "handler": handler},
                {"source": "event_bus"},
            )
        except Exception:
            log.exception(
                "handler_failure_not_journaled",
                event_id=event.event_id,
                event_type=event.event_type.value,
                handler=handler,
            )
