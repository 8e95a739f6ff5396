from __future__ import annotations

import re
import shutil
from dataclasses import replace
from pathlib import Path
from typing import Any
from uuid import uuid4

import pytest

from lbe.config.settings import DAY_MS, HOUR_MS, ProtocolConfig
from lbe.ledger import RecordLedger, SlotClock
from lbe.settlement.types import (
    ADA,
    FACTORY_HEAD,
    FACTORY_TAIL,
    Asset,
    Datum,
    EventParameters,
    FactoryDatum,
    ManagerDatum,
    OrderDatum,
    PoolDatum,
    Record,
    RecordKind,
    RecordRef,
    SCRIPT_ADDRESSES,
    SellerDatum,
    TreasuryDatum,
    Value,
)

# Protocol time the tests start from (2023-11-14T22:13:20Z).
T0 = 1_700_000_000_000


def _safe_node_name(name: str) -> str:
    # Windows-safe-ish: keep alnum, dash, underscore, dot.
    name = re.sub(r"[^A-Za-z0-9._-]+", "_", name).strip("._")
    return name or "test"


@pytest.fixture
def workspace_tmp_path(request: pytest.FixtureRequest) -> Path:
    """Temp dir rooted in the workspace (not system temp)."""
    root = Path.cwd() / ".pytest_tmp_workspace" / _safe_node_name(request.node.name) / uuid4().hex
    root.mkdir(parents=True, exist_ok=True)
    try:
        yield root
    finally:
        shutil.rmtree(root, ignore_errors=True)


@pytest.fixture
def t0() -> int:
    return T0


@pytest.fixture
def protocol() -> ProtocolConfig:
    """Small batches so multi-tick progress is exercised."""
    return ProtocolConfig(default_seller_count=3, seller_batch_size=2, order_batch_size=2)


@pytest.fixture
def base_asset() -> Asset:
    return Asset("aa" * 28, "4c4245")


@pytest.fixture
def raise_asset() -> Asset:
    return Asset("bb" * 28, "55534443")


@pytest.fixture
def params(base_asset: Asset, raise_asset: Asset) -> EventParameters:
    start = T0 + HOUR_MS
    return EventParameters(
        base_asset=base_asset,
        raise_asset=raise_asset,
        reserve_base=1_000_000,
        start_time=start,
        end_time=start + DAY_MS,
        owner="addr_test_owner",
        receiver="addr_test_receiver",
        pool_allocation=80,
        pool_base_fee=30,
    )


class RecordFactory:
    """Build standalone records with unique refs for validator and builder tests."""

    def __init__(self) -> None:
        self._counter = 0

    def make(self, kind: RecordKind, datum: Datum | None, value: Value | None = None) -> Record:
        self._counter += 1
        ref = RecordRef(tx_id=f"{self._counter:064x}", index=0)
        address = SCRIPT_ADDRESSES.get(kind, "addr_test")
        return Record(ref=ref, kind=kind, address=address, value=value or Value(), datum=datum)

    def factory(self, head: str = FACTORY_HEAD, tail: str = FACTORY_TAIL, amm: bool = False) -> Record:
        kind = RecordKind.AMM_FACTORY if amm else RecordKind.FACTORY
        return self.make(kind, FactoryDatum(head=head, tail=tail))

    def treasury(self, params: EventParameters, value: Value | None = None, **fields: Any) -> Record:
        datum = replace(TreasuryDatum.from_parameters(params), **fields)
        if value is None:
            value = Value(
                {
                    ADA: 15_000_000,
                    params.base_asset: params.reserve_base,
                    params.raise_asset: datum.collected_fund,
                }
            )
        return self.make(RecordKind.TREASURY, datum, value)

    def manager(self, params: EventParameters, seller_count: int = 0, **fields: Any) -> Record:
        datum = ManagerDatum(
            base_asset=params.base_asset,
            raise_asset=params.raise_asset,
            seller_count=seller_count,
            **fields,
        )
        return self.make(RecordKind.MANAGER, datum, Value.lovelace(2_000_000))

    def seller(self, params: EventParameters, owner: str | None = None, **fields: Any) -> Record:
        datum = SellerDatum(
            base_asset=params.base_asset,
            raise_asset=params.raise_asset,
            owner=owner or params.owner,
            **fields,
        )
        return self.make(RecordKind.SELLER, datum, Value.lovelace(1_500_000))

    def order(
        self,
        params: EventParameters,
        owner: str,
        amount: int,
        penalty_amount: int = 0,
        is_collected: bool = False,
    ) -> Record:
        datum = OrderDatum(
            base_asset=params.base_asset,
            raise_asset=params.raise_asset,
            owner=owner,
            amount=amount,
            penalty_amount=penalty_amount,
            is_collected=is_collected,
        )
        if is_collected:
            value = Value.lovelace(2_250_000)
        else:
            value = Value.lovelace(2_500_000).add(params.raise_asset, amount + penalty_amount)
        return self.make(RecordKind.ORDER, datum, value)

    def pool(self, params: EventParameters) -> Record:
        datum = PoolDatum(
            asset_a=params.base_asset,
            asset_b=params.raise_asset,
            reserve_a=1_000,
            reserve_b=1_000,
            total_liquidity=1_000,
            base_fee=30,
        )
        return self.make(RecordKind.AMM_POOL, datum, Value({params.base_asset: 1_000, params.raise_asset: 1_000}))


@pytest.fixture
def records() -> RecordFactory:
    return RecordFactory()


@pytest.fixture
def clock() -> SlotClock:
    return SlotClock(zero_time_ms=0, zero_slot=0, slot_length_ms=1000)


@pytest.fixture
def ledger(workspace_tmp_path: Path, clock: SlotClock) -> RecordLedger:
    ledger = RecordLedger(str(workspace_tmp_path / "ledger"), clock)
    ledger.advance_to_time(T0)
    return ledger
