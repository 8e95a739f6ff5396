"""LBE settlement state machine."""

from lbe.settlement.aggregate import EventAggregate, fetch_events, group_events
from lbe.settlement.calculation import (
    PoolSplit,
    RedeemAmounts,
    initial_liquidity,
    penalty_amount,
    pool_split,
    redeem_amounts,
)
from lbe.settlement.errors import (
    LedgerConflict,
    LedgerError,
    LedgerRejected,
    LedgerUnavailable,
    SettlementError,
    ValidationFailure,
)
from lbe.settlement.phase import Phase, classify
from lbe.settlement.transitions import TransitionBuilder

__all__ = [
    # Aggregates
    "EventAggregate",
    "fetch_events",
    "group_events",
    # Math
    "PoolSplit",
    "RedeemAmounts",
    "initial_liquidity",
    "penalty_amount",
    "pool_split",
    "redeem_amounts",
    # Errors
    "SettlementError",
    "ValidationFailure",
    "LedgerError",
    "LedgerConflict",
    "LedgerRejected",
    "LedgerUnavailable",
    # Phases and builders
    "Phase",
    "classify",
    "TransitionBuilder",
]
