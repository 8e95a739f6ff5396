"""Pure settlement math: initial liquidity, penalties and pro-rata redemption."""

from __future__ import annotations

import math
from dataclasses import dataclass

from lbe.settlement.types import Asset, PenaltyConfig, TreasuryDatum


def initial_liquidity(amount_a: int, amount_b: int) -> int:
    """Liquidity minted for a fresh pool: floor(sqrt(a * b))."""
    if amount_a < 0 or amount_b < 0:
        raise ValueError("reserves must be non-negative")
    return math.isqrt(amount_a * amount_b)


def penalty_amount(
    time: int,
    total_input_amount: int,
    total_output_amount: int,
    penalty_config: PenaltyConfig | None,
) -> int:
    """Penalty charged on the withdrawn delta of a single order update."""
    if penalty_config is None:
        return 0
    if time < penalty_config.penalty_start_time:
        return 0
    if total_output_amount >= total_input_amount:
        return 0
    withdrawn = total_input_amount - total_output_amount
    return withdrawn * penalty_config.percent // 100


@dataclass(frozen=True)
class RedeemAmounts:
    lp_amount: int
    bonus_raise: int


def redeem_amounts(
    user_amount: int,
    total_penalty: int,
    reserve_raise: int,
    total_liquidity: int,
    maximum_raise: int | None = None,
) -> RedeemAmounts:
    """Pro-rata LP share and excess-raise refund of one contributor."""
    if user_amount <= 0:
        raise ValueError("user_amount must be positive")
    if total_liquidity <= 0:
        raise ValueError("total_liquidity must be positive")
    if reserve_raise <= 0:
        raise ValueError("reserve_raise must be positive")
    excess = 0
    if maximum_raise and maximum_raise < total_penalty + reserve_raise:
        excess = total_penalty + reserve_raise - maximum_raise
    return RedeemAmounts(
        lp_amount=total_liquidity * user_amount // reserve_raise,
        bonus_raise=excess * user_amount // reserve_raise,
    )


@dataclass(frozen=True)
class PoolSplit:
    """How a settled event's funds are divided between pool, receiver and treasury."""

    asset_a: Asset
    asset_b: Asset
    effective_raise: int
    reserve_a: int
    reserve_b: int
    pool_reserve_a: int
    pool_reserve_b: int
    total_liquidity: int
    receiver_lp: int
    treasury_lp: int

    @property
    def receiver_a(self) -> int:
        return self.reserve_a - self.pool_reserve_a

    @property
    def receiver_b(self) -> int:
        return self.reserve_b - self.pool_reserve_b

    def is_viable(self, minimum_liquidity: int) -> bool:
        return self.total_liquidity > minimum_liquidity and self.treasury_lp > 0


def pool_split(treasury: TreasuryDatum, minimum_liquidity: int) -> PoolSplit:
    """Split reserves by pool allocation and share minted LP between receiver and treasury."""
    collected = treasury.collected_fund
    if treasury.maximum_raise and treasury.maximum_raise < collected:
        effective_raise = treasury.maximum_raise
    else:
        effective_raise = collected

    asset_a, asset_b = sorted((treasury.base_asset, treasury.raise_asset))
    if asset_a == treasury.base_asset:
        reserve_a, reserve_b = treasury.reserve_base, effective_raise
    else:
        reserve_a, reserve_b = effective_raise, treasury.reserve_base

    allocation = treasury.pool_allocation
    pool_reserve_a = reserve_a * allocation // 100
    pool_reserve_b = reserve_b * allocation // 100
    total_liquidity = initial_liquidity(pool_reserve_a, pool_reserve_b)
    lbe_lp = max(0, total_liquidity - minimum_liquidity)
    receiver_lp = lbe_lp * (allocation - 50) // allocation
    return PoolSplit(
        asset_a=asset_a,
        asset_b=asset_b,
        effective_raise=effective_raise,
        reserve_a=reserve_a,
        reserve_b=reserve_b,
        pool_reserve_a=pool_reserve_a,
        pool_reserve_b=pool_reserve_b,
        total_liquidity=total_liquidity,
        receiver_lp=receiver_lp,
        treasury_lp=lbe_lp - receiver_lp,
    )
