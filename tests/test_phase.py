"""Tests for event phase classification."""

from __future__ import annotations

from dataclasses import replace

import pytest

from lbe.settlement.aggregate import EventAggregate
from lbe.settlement.errors import InvalidRecord
from lbe.settlement.phase import SETTLEMENT_PHASES, Phase, classify

MIN_LIQUIDITY = 10


def _aggregate(records, params, manager_sellers=None, pool=False, **treasury_fields) -> EventAggregate:
    manager = None
    if manager_sellers is not None:
        manager = records.manager(params, seller_count=manager_sellers)
    return EventAggregate(
        treasury=records.treasury(params, **treasury_fields),
        manager=manager,
        amm_pool=records.pool(params) if pool else None,
    )


def _collected(amount: int) -> dict:
    return {"is_manager_collected": True, "reserve_raise": amount, "collected_fund": amount}


def test_open_event_is_in_discovery(records, params) -> None:
    aggregate = _aggregate(records, params, manager_sellers=3)

    assert classify(aggregate, params.start_time, MIN_LIQUIDITY) == Phase.DISCOVERY
    assert classify(aggregate, params.end_time, MIN_LIQUIDITY) == Phase.DISCOVERY
    assert not Phase.DISCOVERY.actionable


def test_sellers_are_counted_first(records, params) -> None:
    aggregate = _aggregate(records, params, manager_sellers=3)
    assert classify(aggregate, params.end_time + 1, MIN_LIQUIDITY) == Phase.COUNTING_SELLERS


def test_cancelled_event_skips_discovery(records, params) -> None:
    aggregate = _aggregate(records, params, manager_sellers=1, is_cancelled=True)
    assert classify(aggregate, params.start_time, MIN_LIQUIDITY) == Phase.COUNTING_SELLERS


def test_manager_collected_once_sellers_are_counted(records, params) -> None:
    aggregate = _aggregate(records, params, manager_sellers=0)
    assert classify(aggregate, params.end_time + 1, MIN_LIQUIDITY) == Phase.COLLECT_MANAGER


def test_missing_manager_is_an_invalid_record(records, params) -> None:
    aggregate = _aggregate(records, params)
    with pytest.raises(InvalidRecord):
        classify(aggregate, params.end_time + 1, MIN_LIQUIDITY)


def test_orders_collected_while_funds_remain(records, params) -> None:
    aggregate = _aggregate(records, params, is_manager_collected=True, reserve_raise=500, total_penalty=20)
    assert classify(aggregate, params.end_time + 1, MIN_LIQUIDITY) == Phase.COLLECT_ORDERS


def test_below_minimum_raise_is_cancelled(records, params) -> None:
    below = replace(params, minimum_raise=500)
    aggregate = _aggregate(records, below, **_collected(300))

    assert classify(aggregate, params.end_time + 1, MIN_LIQUIDITY) == Phase.CANCEL_BELOW_MINIMUM


def test_tiny_liquidity_is_cancelled(records, params) -> None:
    tiny = replace(params, reserve_base=10)
    aggregate = _aggregate(records, tiny, **_collected(10))

    assert classify(aggregate, params.end_time + 1, MIN_LIQUIDITY) == Phase.CANCEL_BELOW_MINIMUM


def test_successful_raise_creates_pool(records, params) -> None:
    aggregate = _aggregate(records, replace(params, minimum_raise=500), **_collected(400_000))
    assert classify(aggregate, params.end_time + 1, MIN_LIQUIDITY) == Phase.CREATE_POOL


def test_existing_pool_cancels_event(records, params) -> None:
    aggregate = _aggregate(records, params, pool=True, **_collected(400_000))
    assert classify(aggregate, params.end_time + 1, MIN_LIQUIDITY) == Phase.CANCEL_CREATED_ELSEWHERE


def test_pool_lookup_waits_for_collection(records, params) -> None:
    aggregate = _aggregate(records, params, pool=True, is_manager_collected=True, reserve_raise=100)
    assert classify(aggregate, params.end_time + 1, MIN_LIQUIDITY) == Phase.COLLECT_ORDERS


def test_redeem_then_settled(records, params) -> None:
    redeeming = _aggregate(records, params, total_liquidity=300, **_collected(400_000))
    settled = _aggregate(
        records, params, is_manager_collected=True, reserve_raise=400_000, total_liquidity=300
    )

    assert classify(redeeming, params.end_time + 1, MIN_LIQUIDITY) == Phase.REDEEM_ORDERS
    # reserve_raise is kept after redemption; nothing is left to collect once pooled.
    assert settled.remaining_to_collect == 0
    assert classify(settled, params.end_time + 1, MIN_LIQUIDITY) == Phase.SETTLED


def test_refund_then_awaiting_close(records, params) -> None:
    refunding = _aggregate(records, params, is_cancelled=True, **_collected(300))
    drained = _aggregate(records, params, is_cancelled=True, is_manager_collected=True)

    assert classify(refunding, params.end_time + 1, MIN_LIQUIDITY) == Phase.REFUND_ORDERS
    assert classify(drained, params.end_time + 1, MIN_LIQUIDITY) == Phase.AWAITING_CLOSE
    assert not Phase.AWAITING_CLOSE.actionable


def test_classification_is_idempotent(records, params) -> None:
    aggregate = _aggregate(records, params, manager_sellers=2)
    now = params.end_time + 1
    assert classify(aggregate, now, MIN_LIQUIDITY) == classify(aggregate, now, MIN_LIQUIDITY)


@pytest.mark.parametrize(
    "fields",
    [
        {"is_cancelled": True, **_collected(400_000)},
        {"is_cancelled": True, "is_manager_collected": True},
        {"total_liquidity": 300, **_collected(400_000)},
        {"total_liquidity": 300, "is_manager_collected": True, "reserve_raise": 400_000},
    ],
)
def test_settled_events_never_settle_again(records, params, fields) -> None:
    aggregate = _aggregate(records, params, pool=True, **fields)
    assert classify(aggregate, params.end_time + 1, MIN_LIQUIDITY) not in SETTLEMENT_PHASES
