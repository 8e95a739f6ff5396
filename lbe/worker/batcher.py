"""Polling batch worker that drives every open event toward settlement."""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from typing import Any

import structlog

from lbe.config.settings import ProtocolConfig, WorkerConfig
from lbe.ledger.bus import EventBus
from lbe.ledger.events import EventType
from lbe.ledger.store import LedgerClient
from lbe.monitoring.metrics import Metrics
from lbe.settlement.aggregate import EventAggregate, fetch_events
from lbe.settlement.errors import FactoryMismatch, LedgerConflict, LedgerUnavailable, ValidationFailure
from lbe.settlement.phase import Phase, classify
from lbe.settlement.transitions import TransitionBuilder
from lbe.settlement.types import CancelRequest, FactoryDatum, Record, RecordKind, Transition

log = structlog.get_logger(__name__)

SUBMITTED = "submitted"
IDLE = "idle"
FAILED = "failed"
CONFLICT = "conflict"
UNAVAILABLE = "unavailable"


@dataclass
class EventOutcome:
    event_id: str
    phase: Phase | None
    status: str
    tx_id: str | None = None
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "event_id": self.event_id,
            "phase": self.phase.value if self.phase else None,
            "status": self.status,
            "tx_id": self.tx_id,
            "error": self.error,
        }


@dataclass
class TickResult:
    now: int | None
    events: int = 0
    outcomes: list[EventOutcome] = field(default_factory=list)
    skipped: bool = False

    @property
    def submitted(self) -> list[EventOutcome]:
        return [outcome for outcome in self.outcomes if outcome.status == SUBMITTED]


class LbeBatcher:
    """Classify each open event and submit at most one transition per tick."""

    def __init__(
        self,
        ledger: LedgerClient,
        builder: TransitionBuilder,
        protocol: ProtocolConfig,
        worker_config: WorkerConfig,
        event_bus: EventBus | None = None,
        metrics: Metrics | None = None,
    ) -> None:
        self.ledger = ledger
        self.builder = builder
        self.protocol = protocol
        self.worker_config = worker_config
        self.event_bus = event_bus
        self.metrics = metrics

    async def load_events(self) -> list[EventAggregate]:
        return await fetch_events(self.ledger)

    async def _amm_factory(self, event_id: str) -> Record:
        for record in await self.ledger.get_records(RecordKind.AMM_FACTORY):
            if isinstance(record.datum, FactoryDatum) and record.datum.covers(event_id):
                return record
        raise FactoryMismatch(f"no AMM factory entry can register pool {event_id}")

    async def build_transition(self, aggregate: EventAggregate, phase: Phase, now: int) -> Transition:
        treasury = aggregate.treasury
        if phase == Phase.COUNTING_SELLERS:
            sellers = aggregate.sellers[: self.protocol.seller_batch_size]
            return self.builder.counting_sellers(treasury, aggregate.manager, sellers, now)  # type: ignore[arg-type]
        if phase == Phase.COLLECT_MANAGER:
            return self.builder.collect_manager(treasury, aggregate.manager, now)  # type: ignore[arg-type]
        if phase == Phase.COLLECT_ORDERS:
            orders = aggregate.uncollected_orders[: self.protocol.order_batch_size]
            return self.builder.collect_orders(treasury, orders, now)
        if phase == Phase.CREATE_POOL:
            amm_factory = await self._amm_factory(aggregate.event_id)
            return self.builder.create_amm_pool(treasury, amm_factory, now)
        if phase == Phase.CANCEL_BELOW_MINIMUM:
            return self.builder.cancel_event(treasury, CancelRequest.not_reach_minimum(), now)
        if phase == Phase.CANCEL_CREATED_ELSEWHERE:
            request = CancelRequest.created_pool(aggregate.amm_pool)  # type: ignore[arg-type]
            return self.builder.cancel_event(treasury, request, now)
        if phase == Phase.REDEEM_ORDERS:
            orders = aggregate.collected_orders[: self.protocol.order_batch_size]
            return self.builder.redeem_orders(treasury, orders, now)
        if phase == Phase.REFUND_ORDERS:
            orders = aggregate.collected_orders[: self.protocol.order_batch_size]
            return self.builder.refund_orders(treasury, orders, now)
        raise ValueError(f"phase {phase.value} has no worker transition")

    async def _publish(self, event_type: EventType, payload: dict[str, Any]) -> None:
        if self.event_bus is None:
            return
        await self.event_bus.publish(event_type, payload, {"source": "lbe_batcher"})

    async def handle_event(self, aggregate: EventAggregate, now: int) -> EventOutcome:
        """Classify one event and submit its next transition. Never raises."""
        event_id = aggregate.event_id
        phase: Phase | None = None
        try:
            phase = classify(aggregate, now, self.protocol.minimum_liquidity)
            if not phase.actionable:
                return EventOutcome(event_id=event_id, phase=phase, status=IDLE)
            transition = await self.build_transition(aggregate, phase, now)
            tx_id = await self.ledger.submit(transition)
        except ValidationFailure as exc:
            log.warning(
                "event_validation_failed",
                event_id=event_id,
                phase=_phase(phase),
                code=exc.code,
                error=exc.message,
            )
            self._count_failure(phase, exc.code)
            outcome = EventOutcome(event_id=event_id, phase=phase, status=FAILED, error=str(exc))
            await self._publish(EventType.TRANSITION_FAILED, outcome.to_dict())
            return outcome
        except LedgerConflict as exc:
            log.info("ledger_conflict", event_id=event_id, phase=_phase(phase), refs=exc.refs)
            if self.metrics:
                self.metrics.ledger_conflicts_total.inc()
            outcome = EventOutcome(event_id=event_id, phase=phase, status=CONFLICT, error=str(exc))
            await self._publish(EventType.LEDGER_CONFLICT, outcome.to_dict())
            return outcome
        except LedgerUnavailable as exc:
            log.warning("ledger_unavailable", event_id=event_id, phase=_phase(phase), error=str(exc))
            if self.metrics:
                self.metrics.ledger_unavailable_total.inc()
            return EventOutcome(event_id=event_id, phase=phase, status=UNAVAILABLE, error=str(exc))
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            log.exception("event_handling_failed", event_id=event_id, phase=_phase(phase))
            self._count_failure(phase, type(exc).__name__)
            outcome = EventOutcome(event_id=event_id, phase=phase, status=FAILED, error=str(exc))
            await self._publish(EventType.TRANSITION_FAILED, outcome.to_dict())
            return outcome

        log.info(
            "transition_submitted",
            event_id=event_id,
            phase=phase.value,
            kind=transition.kind.value,
            tx_id=tx_id,
            consumed=len(transition.consumed),
        )
        if self.metrics:
            self.metrics.transitions_submitted_total.labels(kind=transition.kind.value).inc()
        await self._publish(
            EventType.TRANSITION_SUBMITTED,
            {**transition.summary(), "phase": phase.value, "tx_id": tx_id, "metadata": transition.metadata},
        )
        return EventOutcome(event_id=event_id, phase=phase, status=SUBMITTED, tx_id=tx_id)

    def _count_failure(self, phase: Phase | None, reason: str) -> None:
        if self.metrics:
            self.metrics.transition_failures_total.labels(phase=_phase(phase) or "unknown", reason=reason).inc()

    async def run_once(self) -> TickResult:
        """One polling cycle. Ends early after the first successful submission."""
        started = time.monotonic()
        try:
            now = await self.ledger.current_protocol_time()
            aggregates = await self.load_events()
        except LedgerUnavailable as exc:
            log.warning("ledger_unavailable", error=str(exc))
            if self.metrics:
                self.metrics.ledger_unavailable_total.inc()
            await self._publish(EventType.TICK_SKIPPED, {"error": str(exc)})
            return TickResult(now=None, skipped=True)

        result = TickResult(now=now, events=len(aggregates))
        for aggregate in aggregates:
            outcome = await self.handle_event(aggregate, now)
            result.outcomes.append(outcome)
            if outcome.status == UNAVAILABLE:
                # The rest of the tick would hit the same ledger.
                result.skipped = True
                await self._publish(EventType.TICK_SKIPPED, {"error": outcome.error, "event_id": outcome.event_id})
                return result
            if outcome.status == SUBMITTED:
                break

        if self.metrics:
            self._update_metrics(self.metrics, aggregates, now, time.monotonic() - started)
        log.info(
            "worker_tick_complete",
            protocol_time=now,
            events=result.events,
            submitted=len(result.submitted),
            failed=sum(1 for outcome in result.outcomes if outcome.status == FAILED),
        )
        await self._publish(
            EventType.TICK_COMPLETED,
            {"protocol_time": now, "events": result.events, "submitted": len(result.submitted)},
        )
        return result

    def _update_metrics(
        self, metrics: Metrics, aggregates: list[EventAggregate], now: int, duration: float
    ) -> None:
        metrics.worker_ticks_total.inc()
        metrics.worker_tick_duration_sec.observe(duration)
        phases = []
        for aggregate in aggregates:
            try:
                phases.append((aggregate, classify(aggregate, now, self.protocol.minimum_liquidity)))
            except ValidationFailure:
                continue
        metrics.update_events(phases)
        tip_slot = getattr(self.ledger, "tip_slot", None)
        if tip_slot is not None:
            metrics.ledger_tip_slot.set(tip_slot)

    async def run_forever(self, stop: asyncio.Event | None = None) -> None:
        stop = stop or asyncio.Event()
        await self._publish(EventType.WORKER_STARTED, {"interval_sec": self.worker_config.interval_sec})
        log.info("worker_started", interval_sec=self.worker_config.interval_sec)
        last_tick = time.time()
        while not stop.is_set():
            now = time.time()
            if self.metrics:
                self.metrics.loop_last_tick_age_sec.labels(loop="worker").set(now - last_tick)
            last_tick = now
            try:
                await self.run_once()
            except Exception as exc:
                log.warning("worker_tick_failed", error=str(exc))
            try:
                await asyncio.wait_for(stop.wait(), timeout=self.worker_config.interval_sec)
            except asyncio.TimeoutError:
                pass
        await self._publish(EventType.WORKER_STOPPED, {})
        log.info("worker_stopped")


def _phase(phase: Phase | None) -> str | None:
    return phase.value if phase else None
