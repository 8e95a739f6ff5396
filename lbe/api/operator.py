"""Operator API for inspecting events and worker activity."""

from __future__ import annotations

import time
from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI, HTTPException, Query

from lbe.config.settings import Settings, load_settings
from lbe.ledger.clock import SlotClock
from lbe.ledger.events import Event
from lbe.ledger.journal import EventJournal
from lbe.ledger.store import RecordLedger
from lbe.settlement.aggregate import EventAggregate, fetch_events
from lbe.settlement.errors import ValidationFailure
from lbe.settlement.phase import classify

# Global instances (reused across requests)
_settings: Settings | None = None
_ledger: RecordLedger | None = None
_journal: EventJournal | None = None
_start_time: float = 0.0


def _get_instances() -> tuple[Settings, RecordLedger, EventJournal]:
    """Get or create global instances."""
    global _settings, _ledger, _journal
    if _settings is None:
        _settings = load_settings()
    if _ledger is None:
        _ledger = RecordLedger(_settings.storage.ledger_path, SlotClock.from_config(_settings.network))
    if _journal is None:
        _journal = EventJournal(_settings.storage.journal_path)
    return _settings, _ledger, _journal


def _serialize_event(event: Event) -> dict[str, Any]:
    return {
        "event_id": event.event_id,
        "event_type": event.event_type.value,
        "timestamp": event.timestamp.isoformat(),
        "sequence_num": event.sequence_num,
        "payload": event.payload,
        "metadata": event.metadata,
    }


def _serialize_aggregate(aggregate: EventAggregate, now: int, minimum_liquidity: int) -> dict[str, Any]:
    data = aggregate.summary()
    try:
        data["phase"] = classify(aggregate, now, minimum_liquidity).value
    except ValidationFailure as exc:
        data["phase"] = None
        data["error"] = exc.to_dict()
    return data


@asynccontextmanager
async def lifespan(app: FastAPI) -> Any:
    """Lifespan context manager for startup/shutdown."""
    global _start_time
    _start_time = time.time()
    yield


def create_app(
    ledger: RecordLedger | None = None,
    journal: EventJournal | None = None,
    settings: Settings | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application."""
    global _settings, _ledger, _journal
    if settings is not None:
        _settings = settings
    if ledger is not None:
        _ledger = ledger
    if journal is not None:
        _journal = journal

    app = FastAPI(
        title="LBE Settlement Operator API",
        description="Inspect open events and settlement worker activity",
        version="0.1.0",
        lifespan=lifespan,
    )

    @app.get("/health")
    async def health() -> dict[str, Any]:
        """Get worker and ledger health."""
        settings, ledger, journal = _get_instances()
        return {
            "status": "healthy",
            "uptime_sec": time.time() - _start_time,
            "network": settings.network.name,
            "worker_enabled": settings.worker.enabled,
            "tip_slot": ledger.tip_slot,
            "protocol_time": await ledger.current_protocol_time(),
            "journal_sequence": journal.last_sequence(),
            "api_port": settings.monitoring.api_port,
            "metrics_port": settings.monitoring.metrics_port,
        }

    @app.get("/events")
    async def get_events() -> dict[str, Any]:
        """List every open event with its phase and derived accounting."""
        settings, ledger, _ = _get_instances()
        now = await ledger.current_protocol_time()
        aggregates = await fetch_events(ledger)
        minimum_liquidity = settings.protocol.minimum_liquidity
        return {
            "protocol_time": now,
            "count": len(aggregates),
            "events": [_serialize_aggregate(a, now, minimum_liquidity) for a in aggregates],
        }

    @app.get("/events/{event_id}")
    async def get_event(event_id: str) -> dict[str, Any]:
        """Get one event, including its live treasury datum."""
        settings, ledger, _ = _get_instances()
        now = await ledger.current_protocol_time()
        aggregates = await fetch_events(ledger, event_id)
        if not aggregates:
            raise HTTPException(status_code=404, detail=f"event {event_id} not found")
        aggregate = aggregates[0]
        data = _serialize_aggregate(aggregate, now, settings.protocol.minimum_liquidity)
        data["treasury"] = aggregate.treasury.to_dict()
        data["protocol_time"] = now
        return data

    @app.get("/journal")
    async def get_journal(
        tail: int = Query(default=100, ge=1, le=1000, description="Number of recent entries"),
    ) -> dict[str, Any]:
        """Get recent worker journal entries."""
        _, _, journal = _get_instances()
        recent = journal.tail(tail)
        return {
            "count": len(recent),
            "last_sequence": journal.last_sequence(),
            "events": [_serialize_event(e) for e in recent],
        }

    @app.get("/")
    async def root() -> dict[str, Any]:
        """Root endpoint with API info."""
        return {
            "name": "LBE Settlement Operator API",
            "version": "0.1.0",
            "endpoints": {
                "health": "GET /health",
                "events": "GET /events",
                "event": "GET /events/{event_id}",
                "journal": "GET /journal?tail=N",
            },
        }

    return app
