"""Phase classification: which transition an event needs next."""

from __future__ import annotations

from enum import Enum

from lbe.settlement.aggregate import EventAggregate
from lbe.settlement.calculation import pool_split
from lbe.settlement.errors import InvalidRecord


class Phase(str, Enum):
    DISCOVERY = "discovery"
    COUNTING_SELLERS = "counting_sellers"
    COLLECT_MANAGER = "collect_manager"
    COLLECT_ORDERS = "collect_orders"
    CREATE_POOL = "create_pool"
    CANCEL_BELOW_MINIMUM = "cancel_below_minimum"
    CANCEL_CREATED_ELSEWHERE = "cancel_created_elsewhere"
    REDEEM_ORDERS = "redeem_orders"
    REFUND_ORDERS = "refund_orders"
    AWAITING_CLOSE = "awaiting_close"
    SETTLED = "settled"

    @property
    def actionable(self) -> bool:
        return self not in _IDLE_PHASES


_IDLE_PHASES = {Phase.DISCOVERY, Phase.AWAITING_CLOSE, Phase.SETTLED}

SETTLEMENT_PHASES = {Phase.CREATE_POOL, Phase.CANCEL_BELOW_MINIMUM, Phase.CANCEL_CREATED_ELSEWHERE}


def classify(aggregate: EventAggregate, now: int, minimum_liquidity: int = 0) -> Phase:
    """Return the first eligible phase in fixed priority order. Pure."""
    treasury = aggregate.treasury_datum

    if not treasury.is_cancelled and now <= treasury.end_time:
        return Phase.DISCOVERY

    if not treasury.is_manager_collected:
        manager = aggregate.manager_datum
        if manager is None:
            raise InvalidRecord(f"event {aggregate.event_id} has no manager record")
        if manager.seller_count > 0:
            return Phase.COUNTING_SELLERS
        return Phase.COLLECT_MANAGER

    remaining = aggregate.remaining_to_collect
    if remaining > 0:
        return Phase.COLLECT_ORDERS

    if remaining == 0 and not treasury.is_cancelled and treasury.total_liquidity == 0:
        if aggregate.amm_pool is not None:
            return Phase.CANCEL_CREATED_ELSEWHERE
        enough_raised = treasury.collected_fund >= (treasury.minimum_raise or 1)
        if enough_raised and pool_split(treasury, minimum_liquidity).is_viable(minimum_liquidity):
            return Phase.CREATE_POOL
        return Phase.CANCEL_BELOW_MINIMUM

    if treasury.total_liquidity > 0 and treasury.collected_fund > 0:
        return Phase.REDEEM_ORDERS

    if treasury.is_cancelled and treasury.collected_fund > 0:
        return Phase.REFUND_ORDERS

    if treasury.is_cancelled:
        return Phase.AWAITING_CLOSE
    return Phase.SETTLED
