"""Reconstruction of per-event aggregates from flat ledger records."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterable, Protocol

import structlog

from lbe.settlement.types import (
    ManagerDatum,
    OrderDatum,
    PoolDatum,
    Record,
    RecordKind,
    TreasuryDatum,
    sort_records,
)

log = structlog.get_logger(__name__)


class RecordSource(Protocol):
    async def get_records(self, kind: RecordKind, event_id: str | None = None) -> list[Record]:
        ...


@dataclass(frozen=True)
class EventAggregate:
    """Snapshot of one event: treasury plus whatever records still belong to it."""

    treasury: Record
    manager: Record | None = None
    sellers: tuple[Record, ...] = ()
    collected_orders: tuple[Record, ...] = ()
    uncollected_orders: tuple[Record, ...] = ()
    amm_pool: Record | None = None

    @property
    def event_id(self) -> str:
        return self.treasury_datum.event_id

    @property
    def treasury_datum(self) -> TreasuryDatum:
        return self.treasury.datum  # type: ignore[return-value]

    @property
    def manager_datum(self) -> ManagerDatum | None:
        return self.manager.datum if self.manager else None  # type: ignore[return-value]

    @property
    def outstanding_seller_count(self) -> int:
        manager = self.manager_datum
        return manager.seller_count if manager else 0

    @property
    def remaining_to_collect(self) -> int:
        treasury = self.treasury_datum
        if treasury.total_liquidity > 0:
            # Redemption drains collected_fund while reserve_raise stays fixed.
            return 0
        return treasury.reserve_raise + treasury.total_penalty - treasury.collected_fund

    @property
    def is_final(self) -> bool:
        return self.treasury_datum.is_manager_collected and self.remaining_to_collect == 0

    @property
    def uncollected_fund(self) -> int:
        return sum(_order(record).fund for record in self.uncollected_orders)

    @property
    def manager_fund(self) -> int:
        manager = self.manager_datum
        return manager.reserve_raise + manager.total_penalty if manager else 0

    def summary(self) -> dict[str, Any]:
        treasury = self.treasury_datum
        return {
            "event_id": self.event_id,
            "base_asset": treasury.base_asset.to_string(),
            "raise_asset": treasury.raise_asset.to_string(),
            "start_time": treasury.start_time,
            "end_time": treasury.end_time,
            "collected_fund": treasury.collected_fund,
            "reserve_raise": treasury.reserve_raise,
            "total_penalty": treasury.total_penalty,
            "total_liquidity": treasury.total_liquidity,
            "is_manager_collected": treasury.is_manager_collected,
            "is_cancelled": treasury.is_cancelled,
            "outstanding_seller_count": self.outstanding_seller_count,
            "remaining_to_collect": self.remaining_to_collect,
            "is_final": self.is_final,
            "sellers": len(self.sellers),
            "collected_orders": len(self.collected_orders),
            "uncollected_orders": len(self.uncollected_orders),
            "amm_pool": self.amm_pool.ref.to_string() if self.amm_pool else None,
        }


def _order(record: Record) -> OrderDatum:
    return record.datum  # type: ignore[return-value]


def group_events(
    treasuries: Iterable[Record],
    managers: Iterable[Record] = (),
    sellers: Iterable[Record] = (),
    orders: Iterable[Record] = (),
    amm_pools: Iterable[Record] = (),
) -> list[EventAggregate]:
    """Group records by event id. Records of unknown events are skipped."""
    buckets: dict[str, dict[str, Any]] = {}
    for record in sort_records(treasuries):
        datum = record.datum
        if not isinstance(datum, TreasuryDatum):
            continue
        buckets[datum.event_id] = {
            "treasury": record,
            "manager": None,
            "sellers": [],
            "collected_orders": [],
            "uncollected_orders": [],
            "amm_pool": None,
        }

    def _bucket(record: Record) -> dict[str, Any] | None:
        bucket = buckets.get(record.event_id or "")
        if bucket is None:
            log.warning("orphan_record", ref=record.ref.to_string(), kind=record.kind.value)
        return bucket

    for record in sort_records(managers):
        bucket = _bucket(record)
        if bucket is not None:
            bucket["manager"] = record
    for record in sort_records(sellers):
        bucket = _bucket(record)
        if bucket is not None:
            bucket["sellers"].append(record)
    for record in sort_records(orders):
        bucket = _bucket(record)
        if bucket is None:
            continue
        key = "collected_orders" if _order(record).is_collected else "uncollected_orders"
        bucket[key].append(record)
    for record in sort_records(amm_pools):
        if not isinstance(record.datum, PoolDatum):
            continue
        # Pools exist for every traded pair; only those matching an event matter.
        bucket = buckets.get(record.datum.event_id)
        if bucket is not None:
            bucket["amm_pool"] = record

    return [
        EventAggregate(
            treasury=bucket["treasury"],
            manager=bucket["manager"],
            sellers=tuple(bucket["sellers"]),
            collected_orders=tuple(bucket["collected_orders"]),
            uncollected_orders=tuple(bucket["uncollected_orders"]),
            amm_pool=bucket["amm_pool"],
        )
        for bucket in buckets.values()
    ]


async def fetch_events(ledger: RecordSource, event_id: str | None = None) -> list[EventAggregate]:
    """Read all event records from the ledger and assemble aggregates."""
    return group_events(
        treasuries=await ledger.get_records(RecordKind.TREASURY, event_id),
        managers=await ledger.get_records(RecordKind.MANAGER, event_id),
        sellers=await ledger.get_records(RecordKind.SELLER, event_id),
        orders=await ledger.get_records(RecordKind.ORDER, event_id),
        amm_pools=await ledger.get_records(RecordKind.AMM_POOL, event_id),
    )
