"""Monitoring utilities."""

from lbe.monitoring.logging import configure_logging
from lbe.monitoring.metrics import Metrics
from lbe.monitoring.event_console import EventConsoleLogger

__all__ = ["configure_logging", "Metrics", "EventConsoleLogger"]
