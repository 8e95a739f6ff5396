"""
Configuration management with Pydantic validation.

Loads settings from YAML config file and environment variables.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Literal

import yaml
from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings

DAY_MS = 24 * 60 * 60 * 1000
HOUR_MS = 60 * 60 * 1000

# (zero_time_ms, zero_slot, slot_length_ms)
NETWORK_PRESETS: dict[str, tuple[int, int, int]] = {
    "mainnet": (1596059091000, 4492800, 1000),
    "preprod": (1655769600000, 86400, 1000),
    "devnet": (0, 0, 1000),
}


class NetworkConfig(BaseModel):
    """Slot clock parameters of the ledger network."""

    name: Literal["mainnet", "preprod", "devnet"] = "preprod"
    zero_time_ms: int = Field(default=1655769600000, ge=0)
    zero_slot: int = Field(default=86400, ge=0)
    slot_length_ms: int = Field(default=1000, ge=1, le=60_000)

    @classmethod
    def preset(cls, name: str) -> "NetworkConfig":
        zero_time_ms, zero_slot, slot_length_ms = NETWORK_PRESETS[name]
        return cls(
            name=name,
            zero_time_ms=zero_time_ms,
            zero_slot=zero_slot,
            slot_length_ms=slot_length_ms,
        )


class ProtocolConfig(BaseModel):
    """Protocol limits, batch sizes and record rents - contains hard limits."""

    default_seller_count: int = Field(default=20, ge=1, le=200)
    # Ledger transaction size bounds how many records one transition may touch.
    seller_batch_size: int = Field(default=20, ge=1, le=100)
    order_batch_size: int = Field(default=30, ge=1, le=100)

    max_discovery_range_ms: int = Field(default=30 * DAY_MS, ge=HOUR_MS)
    max_penalty_range_ms: int = Field(default=2 * DAY_MS, ge=HOUR_MS)
    max_penalty_rate: int = Field(default=25, ge=1, le=100)
    min_pool_allocation: int = Field(default=70, ge=51, le=100)
    max_pool_allocation: int = Field(default=100, ge=51, le=100)
    min_pool_base_fee: int = Field(default=5, ge=1)
    max_pool_base_fee: int = Field(default=2000, ge=1)
    minimum_liquidity: int = Field(default=10, ge=0)
    lp_policy_id: str = "d6aae2059baee188f74917493cf7637e679cd219bdfbbf4dcbeb1d0b"

    treasury_rent: int = Field(default=5_000_000, ge=0)
    manager_rent: int = Field(default=2_000_000, ge=0)
    seller_rent: int = Field(default=1_500_000, ge=0)
    order_rent: int = Field(default=2_000_000, ge=0)
    seller_commission: int = Field(default=250_000, ge=0)
    order_commission: int = Field(default=250_000, ge=0)
    collect_seller_commission: int = Field(default=250_000, ge=0)
    create_pool_commission: int = Field(default=10_000_000, ge=0)

    tx_validity_ms: int = Field(default=3 * HOUR_MS, ge=60_000, le=DAY_MS)

    @field_validator("max_pool_allocation")
    @classmethod
    def validate_pool_allocation(cls, v: int, info) -> int:
        min_alloc = info.data.get("min_pool_allocation", 70)
        if v < min_alloc:
            raise ValueError(
                f"max_pool_allocation ({v}) cannot be below min_pool_allocation ({min_alloc})"
            )
        return v

    @field_validator("max_pool_base_fee")
    @classmethod
    def validate_pool_base_fee(cls, v: int, info) -> int:
        min_fee = info.data.get("min_pool_base_fee", 5)
        if v < min_fee:
            raise ValueError(f"max_pool_base_fee ({v}) cannot be below min_pool_base_fee ({min_fee})")
        return v

    @field_validator("collect_seller_commission")
    @classmethod
    def validate_collect_seller_commission(cls, v: int, info) -> int:
        # Counting sellers pays the shard owner its rent minus this commission.
        seller_rent = info.data.get("seller_rent", 1_500_000)
        if v > seller_rent:
            raise ValueError("seller_rent must cover collect_seller_commission")
        return v


class WorkerConfig(BaseModel):
    """Batch worker configuration."""

    enabled: bool = True
    interval_sec: float = Field(default=30.0, gt=0, le=3600)
    # Advance the local ledger tip from the wall clock (local devnet only).
    devnet_clock: bool = False
    devnet_clock_interval_sec: float = Field(default=1.0, gt=0, le=60)


class StorageConfig(BaseModel):
    """Storage paths configuration."""

    ledger_path: str = "./data/ledger"
    journal_path: str = "./data/journal"
    logs_path: str = "./logs"


class MonitoringConfig(BaseModel):
    """Monitoring and logging configuration."""

    metrics_port: int = Field(default=9090, ge=1024, le=65535)
    metrics_enabled: bool = True
    api_port: int = Field(default=8000, ge=1024, le=65535)
    api_enabled: bool = True
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    error_log_max_bytes: int = Field(default=5_000_000, ge=100_000, le=50_000_000)
    error_log_backup_count: int = Field(default=3, ge=1, le=20)


class Settings(BaseSettings):
    """Main application settings."""

    network: NetworkConfig = Field(default_factory=NetworkConfig)
    protocol: ProtocolConfig = Field(default_factory=ProtocolConfig)
    worker: WorkerConfig = Field(default_factory=WorkerConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    monitoring: MonitoringConfig = Field(default_factory=MonitoringConfig)

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
        "env_nested_delimiter": "__",
        "populate_by_name": True,
    }

    def validate_for_worker(self) -> list[str]:
        """Return configuration problems that should stop the worker from starting."""
        errors = []
        if self.protocol.order_batch_size < 1 or self.protocol.seller_batch_size < 1:
            errors.append("batch sizes must be positive")
        if self.worker.devnet_clock and self.network.name != "devnet":
            errors.append("devnet_clock is only allowed on the devnet network")
        if self.monitoring.api_enabled and self.monitoring.api_port == self.monitoring.metrics_port:
            errors.append("api_port and metrics_port must differ")
        return errors


def load_settings(config_path: str | Path | None = None) -> Settings:
    """
    Load settings from YAML config file and environment variables.

    Priority (highest to lowest):
    1. Environment variables
    2. Config file values
    3. Default values
    """
    config_data = {}

    if config_path is None:
        config_path = os.environ.get("CONFIG_PATH", "config.yaml")

    config_file = Path(config_path)
    if config_file.exists():
        with open(config_file) as f:
            config_data = yaml.safe_load(f) or {}

    network = config_data.get("network")
    if isinstance(network, dict) and set(network) == {"name"}:
        config_data["network"] = NetworkConfig.preset(network["name"]).model_dump()

    env_path = config_file.parent / ".env"
    return Settings(**config_data, _env_file=env_path)


def create_default_config(path: str | Path = "config.yaml") -> None:
    """Create a default configuration file."""
    protocol = ProtocolConfig()
    default_config = {
        "network": NetworkConfig.preset("preprod").model_dump(),
        "protocol": {
            "default_seller_count": protocol.default_seller_count,
            "seller_batch_size": protocol.seller_batch_size,
            "order_batch_size": protocol.order_batch_size,
            "minimum_liquidity": protocol.minimum_liquidity,
            "tx_validity_ms": protocol.tx_validity_ms,
        },
        "worker": {
            "enabled": True,
            "interval_sec": 30,
            "devnet_clock": False,
        },
        "storage": {
            "ledger_path": "./data/ledger",
            "journal_path": "./data/journal",
            "logs_path": "./logs",
        },
        "monitoring": {
            "metrics_port": 9090,
            "api_port": 8000,
            "log_level": "INFO",
            "error_log_max_bytes": 5000000,
            "error_log_backup_count": 3,
        },
    }

    with open(path, "w") as f:
        yaml.dump(default_config, f, default_flow_style=False, sort_keys=False)
