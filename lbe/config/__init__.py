"""Configuration management module."""

from lbe.config.settings import (
    MonitoringConfig,
    NetworkConfig,
    ProtocolConfig,
    Settings,
    StorageConfig,
    WorkerConfig,
    load_settings,
)

__all__ = [
    "MonitoringConfig",
    "NetworkConfig",
    "ProtocolConfig",
    "Settings",
    "StorageConfig",
    "WorkerConfig",
    "load_settings",
]
