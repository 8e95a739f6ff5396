from __future__ import annotations

import random
from dataclasses import replace

import pytest

from lbe.ledger import RecordLedger
from lbe.settlement.errors import (
    EventNotFound,
    FactoryMismatch,
    OwnerMismatch,
    TimeWindowViolation,
    WithdrawalExceedsBalance,
)
from lbe.settlement.service import EventService
from lbe.settlement.transitions import TransitionBuilder
from lbe.settlement.types import ProjectDetails, RecordKind
from lbe.tools.init_ledger import init_ledger


@pytest.fixture
def service(ledger: RecordLedger, protocol) -> EventService:
    init_ledger(ledger)
    return EventService(ledger, TransitionBuilder(protocol), protocol, rng=random.Random(1))


@pytest.mark.asyncio
async def test_update_before_start(service: EventService, ledger: RecordLedger, params) -> None:
    await service.create_event(params, details=ProjectDetails(event_name="Demo"))

    await service.update_event(params.event_id, params.owner, replace(params, pool_allocation=90))

    (treasury,) = await ledger.get_records(RecordKind.TREASURY, params.event_id)
    assert treasury.datum.pool_allocation == 90


@pytest.mark.asyncio
async def test_add_sellers_during_discovery(service: EventService, ledger: RecordLedger, params) -> None:
    await service.create_event(params, seller_count=1)
    ledger.advance_to_time(params.start_time)

    await service.add_sellers(params.event_id, 2, "addr_test_helper")

    (manager,) = await ledger.get_records(RecordKind.MANAGER, params.event_id)
    assert manager.datum.seller_count == 3
    sellers = await ledger.get_records(RecordKind.SELLER, params.event_id)
    expected = [params.owner, "addr_test_helper", "addr_test_helper"]
    assert sorted(s.datum.owner for s in sellers) == sorted(expected)


@pytest.mark.asyncio
async def test_repeated_deposits_merge_into_one_order(service: EventService, ledger: RecordLedger, params) -> None:
    await service.create_event(params)
    ledger.advance_to_time(params.start_time)

    await service.deposit(params.event_id, "addr_test_alice", 100)
    await service.deposit(params.event_id, "addr_test_alice", 50)
    await service.withdraw(params.event_id, "addr_test_alice", 30)

    (order,) = await ledger.get_records(RecordKind.ORDER, params.event_id)
    assert order.datum.amount == 120
    sellers = await ledger.get_records(RecordKind.SELLER, params.event_id)
    assert sum(s.datum.amount for s in sellers) == 120
    with pytest.raises(WithdrawalExceedsBalance):
        await service.withdraw(params.event_id, "addr_test_alice", 500)


@pytest.mark.asyncio
async def test_operation_errors(service: EventService, ledger: RecordLedger, params) -> None:
    with pytest.raises(EventNotFound):
        await service.deposit(params.event_id, "addr_test_alice", 100)

    await service.create_event(params)
    with pytest.raises(OwnerMismatch):
        await service.cancel_event(params.event_id, "addr_test_mallory")
    with pytest.raises(TimeWindowViolation):
        await service.deposit(params.event_id, "addr_test_alice", 100)

    # The registry entry was split by the first event; the same pair cannot register again.
    with pytest.raises(FactoryMismatch):
        await service.create_event(params)
