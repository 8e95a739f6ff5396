"""Background settlement worker."""

from lbe.worker.batcher import EventOutcome, LbeBatcher, TickResult

__all__ = ["EventOutcome", "LbeBatcher", "TickResult"]
