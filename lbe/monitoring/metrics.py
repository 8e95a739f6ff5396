"""Prometheus metrics definitions."""

from __future__ import annotations

from collections import Counter as Tally
from typing import Iterable

from prometheus_client import CollectorRegistry, Counter, Gauge, Histogram, start_http_server

from lbe.settlement.aggregate import EventAggregate
from lbe.settlement.phase import Phase


class Metrics:
    """Expose worker and ledger metrics for monitoring."""

    def __init__(self, registry: CollectorRegistry | None = None) -> None:
        # A private registry per instance keeps repeated construction (tests) safe.
        self.registry = registry or CollectorRegistry()
        self.loop_last_tick_age_sec = Gauge(
            "loop_last_tick_age_sec",
            "Seconds since the loop last ticked",
            ["loop"],
            registry=self.registry,
        )
        self.worker_ticks_total = Counter(
            "worker_ticks_total", "Worker ticks completed", registry=self.registry
        )
        self.worker_tick_duration_sec = Histogram(
            "worker_tick_duration_sec",
            "Duration of one worker tick",
            buckets=[0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0],
            registry=self.registry,
        )
        self.transitions_submitted_total = Counter(
            "transitions_submitted_total",
            "Transitions submitted by kind",
            ["kind"],
            registry=self.registry,
        )
        self.transition_failures_total = Counter(
            "transition_failures_total",
            "Transitions that failed to build or submit",
            ["phase", "reason"],
            registry=self.registry,
        )
        self.ledger_conflicts_total = Counter(
            "ledger_conflicts_total",
            "Submissions that lost a race for their input records",
            registry=self.registry,
        )
        self.ledger_unavailable_total = Counter(
            "ledger_unavailable_total",
            "Ticks skipped because the ledger could not be read",
            registry=self.registry,
        )
        self.open_events = Gauge("open_events", "Events with a live treasury record", registry=self.registry)
        self.events_by_phase = Gauge(
            "events_by_phase",
            "Open events per classified phase",
            ["phase"],
            registry=self.registry,
        )
        self.ledger_tip_slot = Gauge("ledger_tip_slot", "Last synced ledger slot", registry=self.registry)

    def start(self, port: int) -> None:
        start_http_server(port, registry=self.registry)

    def update_events(self, phases: Iterable[tuple[EventAggregate, Phase]]) -> None:
        counts = Tally(phase for _, phase in phases)
        self.open_events.set(sum(counts.values()))
        for phase in Phase:
            self.events_by_phase.labels(phase=phase.value).set(counts.get(phase, 0))
