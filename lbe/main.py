"""Settlement worker entrypoint: batch loop, optional devnet clock and operator API."""

from __future__ import annotations

import asyncio
import time

import structlog
import uvicorn

from lbe.api.operator import create_app
from lbe.config.settings import load_settings
from lbe.ledger import EventBus, EventJournal, EventType, RecordLedger, SlotClock
from lbe.monitoring import EventConsoleLogger, Metrics, configure_logging
from lbe.settlement.transitions import TransitionBuilder
from lbe.worker.batcher import LbeBatcher

log = structlog.get_logger(__name__)


async def main_async() -> None:
    settings = load_settings()
    configure_logging(settings.monitoring.log_level, settings.storage.logs_path, settings.monitoring)
    structlog.contextvars.bind_contextvars(network=settings.network.name)
    errors = settings.validate_for_worker()
    if errors:
        log.error("settings_validation_failed", errors=errors, network=settings.network.name)
        return

    clock = SlotClock.from_config(settings.network)
    ledger = RecordLedger(settings.storage.ledger_path, clock)
    journal = EventJournal(settings.storage.journal_path)
    event_bus = EventBus(journal)

    event_console = EventConsoleLogger()
    event_bus.register_all(event_console.handle_event)

    metrics = Metrics()
    if settings.monitoring.metrics_enabled:
        try:
            metrics.start(settings.monitoring.metrics_port)
        except OSError as exc:
            log.warning("metrics_server_failed", port=settings.monitoring.metrics_port, error=str(exc))

    builder = TransitionBuilder(settings.protocol)
    batcher = LbeBatcher(
        ledger,
        builder,
        settings.protocol,
        settings.worker,
        event_bus=event_bus,
        metrics=metrics,
    )
    log.info(
        "worker_configured",
        network=settings.network.name,
        tip_slot=ledger.tip_slot,
        transactions=ledger.transaction_count,
        interval_sec=settings.worker.interval_sec,
    )

    async def devnet_clock_loop() -> None:
        """Advance the local tip from the wall clock so time-gated phases progress."""
        if not settings.worker.devnet_clock:
            return
        last_tick = time.time()
        while True:
            now = time.time()
            metrics.loop_last_tick_age_sec.labels(loop="devnet_clock").set(now - last_tick)
            last_tick = now
            try:
                slot = ledger.advance_to_time(int(now * 1000))
                metrics.ledger_tip_slot.set(slot)
            except OSError as exc:
                log.warning("devnet_clock_failed", error=str(exc))
            await asyncio.sleep(settings.worker.devnet_clock_interval_sec)

    async def api_server() -> None:
        """Run the operator API server."""
        if not settings.monitoring.api_enabled:
            return
        try:
            config = uvicorn.Config(
                create_app(ledger=ledger, journal=journal, settings=settings),
                host="127.0.0.1",
                port=settings.monitoring.api_port,
                log_level="info",
            )
            server = uvicorn.Server(config)
            await server.serve()
        except Exception as exc:
            log.warning("api_server_failed", error=str(exc))

    stop = asyncio.Event()

    async def worker_loop() -> None:
        if not settings.worker.enabled:
            log.info("worker_disabled")
            return
        await batcher.run_forever(stop)

    try:
        await asyncio.gather(
            worker_loop(),
            devnet_clock_loop(),
            api_server(),
            return_exceptions=True,
        )
    finally:
        stop.set()
        journal.append(EventType.WORKER_STOPPED, {"reason": "shutdown"}, {"source": "main"})


def main() -> None:
    asyncio.run(main_async())


if __name__ == "__main__":
    main()
