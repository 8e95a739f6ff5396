"""Preconditions of every settlement transition.

Each validator re-derives amounts from the records it is given and raises a
named ``ValidationFailure`` on the first violated rule. ``now`` is protocol
time taken from the ledger tip, never the local wall clock.
"""

from __future__ import annotations

from dataclasses import replace
from typing import Sequence

from lbe.config.settings import ProtocolConfig
from lbe.settlement.calculation import pool_split
from lbe.settlement.errors import (
    CollectionIncomplete,
    EventAlreadyCancelled,
    EventNotCancelled,
    FactoryMismatch,
    IdentityMismatch,
    InvalidBatch,
    InvalidParameters,
    InvalidProjectDetails,
    InvalidRecord,
    LiquidityTooLow,
    ManagerAlreadyCollected,
    ManagerNotCollected,
    MinimumRaiseReached,
    OrderAlreadyCollected,
    OrderBelowMinimum,
    OrderNotCollected,
    OutstandingSellers,
    OwnerMismatch,
    PoolAlreadyCreated,
    PoolNotCreated,
    RaiseBelowMinimum,
    RefundsOutstanding,
    TimeWindowViolation,
    ValidationFailure,
    WithdrawalExceedsBalance,
)
from lbe.settlement.types import (
    CancelReason,
    CancelRequest,
    EventParameters,
    FactoryDatum,
    ManagerDatum,
    OrderAction,
    OrderDatum,
    PoolDatum,
    ProjectDetails,
    Record,
    RecordKind,
    SellerDatum,
    TreasuryDatum,
)


def _require(condition: bool, failure: type[ValidationFailure], message: str) -> None:
    if not condition:
        raise failure(message)


def datum_of(record: Record, kind: RecordKind):
    """Return the record's datum after checking it is of the expected kind."""
    if record.kind != kind:
        raise InvalidRecord(f"{record.ref.to_string()} is a {record.kind.value} record, expected {kind.value}")
    if record.datum is None:
        raise InvalidRecord(f"{record.ref.to_string()} has no datum")
    return record.datum


def _same_event(treasury: TreasuryDatum, datum, label: str) -> None:
    _require(
        datum.event_id == treasury.event_id,
        IdentityMismatch,
        f"treasury and {label} must share the same event id",
    )


def _unique(records: Sequence[Record]) -> None:
    refs = [record.ref for record in records]
    _require(len(set(refs)) == len(refs), InvalidBatch, "duplicate records in batch")


def _order_datums(
    treasury: TreasuryDatum,
    orders: Sequence[Record],
    collected: bool,
) -> list[OrderDatum]:
    _unique(orders)
    datums: list[OrderDatum] = []
    for record in orders:
        order: OrderDatum = datum_of(record, RecordKind.ORDER)
        _same_event(treasury, order, "order")
        if collected:
            _require(order.is_collected, OrderNotCollected, "order must be collected")
        else:
            _require(not order.is_collected, OrderAlreadyCollected, "order must not be collected")
        datums.append(order)
    return datums


def _check_batch(size: int, limit: int, covers_remaining: bool, label: str) -> None:
    _require(size > 0, InvalidBatch, f"at least one {label} is required")
    _require(size <= limit, InvalidBatch, f"{label} batch exceeds limit of {limit}")
    _require(
        size == limit or covers_remaining,
        InvalidBatch,
        f"{label} batch must be full or cover everything remaining",
    )


def validate_event_parameters(params: EventParameters, now: int, protocol: ProtocolConfig) -> None:
    _require(params.base_asset != params.raise_asset, InvalidParameters, "base and raise asset must differ")
    _require(not params.base_asset.is_ada, InvalidParameters, "base asset must not be the native asset")
    _require(params.start_time > now, InvalidParameters, "event must start in the future")
    _require(params.start_time < params.end_time, InvalidParameters, "start_time must precede end_time")
    _require(
        params.end_time - params.start_time <= protocol.max_discovery_range_ms,
        InvalidParameters,
        "discovery window is too long",
    )
    _require(
        protocol.min_pool_allocation <= params.pool_allocation <= protocol.max_pool_allocation,
        InvalidParameters,
        f"pool allocation must be within {protocol.min_pool_allocation}-{protocol.max_pool_allocation}",
    )
    if params.minimum_order_raise is not None:
        _require(params.minimum_order_raise > 0, InvalidParameters, "minimum order raise must be positive")
    if params.maximum_raise is not None:
        _require(params.maximum_raise > 0, InvalidParameters, "maximum raise must be positive")
    if params.minimum_raise is not None:
        _require(params.minimum_raise > 0, InvalidParameters, "minimum raise must be positive")
        if params.maximum_raise is not None:
            _require(
                params.minimum_raise < params.maximum_raise,
                InvalidParameters,
                "minimum raise must be below maximum raise",
            )
    _require(params.reserve_base > 0, InvalidParameters, "reserve base must be positive")
    penalty = params.penalty_config
    if penalty is not None:
        _require(
            params.start_time < penalty.penalty_start_time < params.end_time,
            InvalidParameters,
            "penalty must start inside the discovery window",
        )
        _require(
            penalty.penalty_start_time >= params.end_time - protocol.max_penalty_range_ms,
            InvalidParameters,
            "penalty period is too long",
        )
        _require(
            0 < penalty.percent <= protocol.max_penalty_rate,
            InvalidParameters,
            f"penalty percent must be within 1-{protocol.max_penalty_rate}",
        )
    _require(
        protocol.min_pool_base_fee <= params.pool_base_fee <= protocol.max_pool_base_fee,
        InvalidParameters,
        f"pool base fee must be within {protocol.min_pool_base_fee}-{protocol.max_pool_base_fee}",
    )


def validate_project_details(details: ProjectDetails) -> None:
    _require(len(details.event_name) <= 50, InvalidProjectDetails, "event name is too long")
    _require(
        len(details.description or "") < 1000,
        InvalidProjectDetails,
        "event description is too long",
    )
    if details.tokenomics is None:
        return
    total = 0.0
    for entry in details.tokenomics:
        _require(len(entry.tag) <= 50, InvalidProjectDetails, "tokenomic tag is too long")
        try:
            percentage = float(entry.percentage)
        except ValueError as exc:
            raise InvalidProjectDetails(f"invalid percentage {entry.percentage!r}") from exc
        _require(0 < percentage <= 100, InvalidProjectDetails, f"invalid percentage {entry.percentage!r}")
        total += percentage
    _require(abs(total - 100) < 1e-9, InvalidProjectDetails, "tokenomics must total 100%")


def validate_create_event(
    factory: Record,
    params: EventParameters,
    seller_count: int,
    now: int,
    protocol: ProtocolConfig,
    details: ProjectDetails | None = None,
) -> None:
    factory_datum: FactoryDatum = datum_of(factory, RecordKind.FACTORY)
    _require(
        factory_datum.covers(params.event_id),
        FactoryMismatch,
        "event id must lie between factory head and tail",
    )
    _require(seller_count > 0, InvalidParameters, "at least one seller is required")
    validate_event_parameters(params, now, protocol)
    if details is not None:
        validate_project_details(details)


def validate_update_event(
    treasury: Record,
    owner: str,
    params: EventParameters,
    now: int,
    protocol: ProtocolConfig,
    details: ProjectDetails | None = None,
) -> None:
    datum: TreasuryDatum = datum_of(treasury, RecordKind.TREASURY)
    _require(now < datum.start_time, TimeWindowViolation, "event can only be updated before it starts")
    _require(not datum.is_cancelled, EventAlreadyCancelled, "event is cancelled")
    _require(datum.base_asset == params.base_asset, IdentityMismatch, "base asset cannot change")
    _require(datum.raise_asset == params.raise_asset, IdentityMismatch, "raise asset cannot change")
    _require(owner == datum.owner, OwnerMismatch, "only the owner can update the event")
    validate_event_parameters(params, now, protocol)
    if details is not None:
        validate_project_details(details)


def validate_cancel_event(
    treasury: Record,
    request: CancelRequest,
    now: int,
    protocol: ProtocolConfig,
) -> None:
    datum: TreasuryDatum = datum_of(treasury, RecordKind.TREASURY)
    _require(not datum.is_cancelled, EventAlreadyCancelled, "event already cancelled")
    if request.reason == CancelReason.BY_OWNER:
        _require(request.owner == datum.owner, OwnerMismatch, "only the owner can cancel the event")
        if datum.revocable:
            _require(now < datum.end_time, TimeWindowViolation, "cancel must happen before discovery ends")
        else:
            _require(now < datum.start_time, TimeWindowViolation, "cancel must happen before discovery starts")
    elif request.reason == CancelReason.CREATED_POOL:
        if request.amm_pool is None:
            raise InvalidRecord("an AMM pool record is required")
        pool: PoolDatum = datum_of(request.amm_pool, RecordKind.AMM_POOL)
        _same_event(datum, pool, "AMM pool")
        _require(datum.total_liquidity == 0, PoolAlreadyCreated, "event already created its pool")
    elif request.reason == CancelReason.NOT_REACH_MINIMUM:
        _require(datum.is_manager_collected, ManagerNotCollected, "manager must be collected first")
        _require(datum.total_liquidity == 0, PoolAlreadyCreated, "event already created its pool")
        raised = datum.reserve_raise + datum.total_penalty
        below_minimum = raised < (datum.minimum_raise or 1)
        split = pool_split(replace(datum, collected_fund=raised), protocol.minimum_liquidity)
        _require(
            below_minimum or not split.is_viable(protocol.minimum_liquidity),
            MinimumRaiseReached,
            "event reached its minimum raise",
        )
    else:
        raise InvalidParameters(f"unknown cancel reason {request.reason!r}")


def validate_deposit_or_withdraw(
    treasury: Record,
    seller: Record,
    orders: Sequence[Record],
    owner: str,
    action: OrderAction,
    now: int,
) -> None:
    treasury_datum: TreasuryDatum = datum_of(treasury, RecordKind.TREASURY)
    seller_datum: SellerDatum = datum_of(seller, RecordKind.SELLER)
    _same_event(treasury_datum, seller_datum, "seller")
    current_amount = 0
    for order in _order_datums(treasury_datum, orders, collected=False):
        _require(order.owner == owner, OwnerMismatch, "orders must belong to the requesting owner")
        current_amount += order.amount
    _require(not treasury_datum.is_cancelled, EventAlreadyCancelled, "event is cancelled")
    _require(action.amount > 0, InvalidParameters, "amount must be positive")
    if action.type == "deposit":
        new_amount = current_amount + action.amount
    else:
        _require(
            current_amount >= action.amount,
            WithdrawalExceedsBalance,
            f"withdrawal {action.amount} exceeds available {current_amount}",
        )
        new_amount = current_amount - action.amount
    _require(treasury_datum.start_time <= now, TimeWindowViolation, "event has not started yet")
    _require(now <= treasury_datum.end_time, TimeWindowViolation, "event has ended")
    minimum = treasury_datum.minimum_order_raise
    if minimum is not None:
        _require(
            new_amount == 0 or new_amount >= minimum,
            OrderBelowMinimum,
            f"order amount must be 0 or at least {minimum}",
        )


def validate_add_sellers(treasury: Record, manager: Record, count: int, now: int) -> None:
    treasury_datum: TreasuryDatum = datum_of(treasury, RecordKind.TREASURY)
    manager_datum: ManagerDatum = datum_of(manager, RecordKind.MANAGER)
    _require(count > 0, InvalidParameters, "must add at least one seller")
    _same_event(treasury_datum, manager_datum, "manager")
    _require(not treasury_datum.is_cancelled, EventAlreadyCancelled, "event is cancelled")
    _require(now < treasury_datum.end_time, TimeWindowViolation, "sellers must be added before discovery ends")


def _discovery_closed(treasury: TreasuryDatum, now: int) -> None:
    _require(
        now > treasury.end_time or treasury.is_cancelled,
        TimeWindowViolation,
        "event is neither cancelled nor past its discovery window",
    )


def validate_counting_sellers(
    treasury: Record,
    manager: Record,
    sellers: Sequence[Record],
    now: int,
    protocol: ProtocolConfig,
) -> None:
    treasury_datum: TreasuryDatum = datum_of(treasury, RecordKind.TREASURY)
    manager_datum: ManagerDatum = datum_of(manager, RecordKind.MANAGER)
    _same_event(treasury_datum, manager_datum, "manager")
    _unique(sellers)
    for record in sellers:
        _same_event(treasury_datum, datum_of(record, RecordKind.SELLER), "seller")
    _require(
        len(sellers) <= manager_datum.seller_count,
        InvalidBatch,
        "more sellers than the manager is tracking",
    )
    _check_batch(
        len(sellers),
        protocol.seller_batch_size,
        len(sellers) == manager_datum.seller_count,
        "seller",
    )
    _discovery_closed(treasury_datum, now)


def validate_collect_manager(treasury: Record, manager: Record, now: int) -> None:
    treasury_datum: TreasuryDatum = datum_of(treasury, RecordKind.TREASURY)
    manager_datum: ManagerDatum = datum_of(manager, RecordKind.MANAGER)
    _same_event(treasury_datum, manager_datum, "manager")
    _discovery_closed(treasury_datum, now)
    _require(
        manager_datum.seller_count == 0,
        OutstandingSellers,
        f"{manager_datum.seller_count} sellers must be counted first",
    )
    _require(not treasury_datum.is_manager_collected, ManagerAlreadyCollected, "manager already collected")


def validate_collect_orders(treasury: Record, orders: Sequence[Record], protocol: ProtocolConfig) -> None:
    datum: TreasuryDatum = datum_of(treasury, RecordKind.TREASURY)
    collect_amount = sum(order.fund for order in _order_datums(datum, orders, collected=False))
    remaining = datum.reserve_raise + datum.total_penalty - datum.collected_fund
    _require(datum.is_manager_collected, ManagerNotCollected, "manager must be collected first")
    _require(collect_amount <= remaining, InvalidBatch, "orders exceed the amount left to collect")
    _check_batch(len(orders), protocol.order_batch_size, collect_amount == remaining, "order")


def validate_create_amm_pool(treasury: Record, amm_factory: Record, protocol: ProtocolConfig) -> None:
    datum: TreasuryDatum = datum_of(treasury, RecordKind.TREASURY)
    factory: FactoryDatum = datum_of(amm_factory, RecordKind.AMM_FACTORY)
    _require(factory.covers(datum.event_id), FactoryMismatch, "invalid AMM factory for this pair")
    _require(
        datum.is_manager_collected and datum.collected_fund == datum.reserve_raise + datum.total_penalty,
        CollectionIncomplete,
        "all funds must be collected before creating the pool",
    )
    _require(not datum.is_cancelled, EventAlreadyCancelled, "event is cancelled")
    _require(
        datum.collected_fund >= (datum.minimum_raise or 1),
        RaiseBelowMinimum,
        "event did not raise enough",
    )
    _require(
        pool_split(datum, protocol.minimum_liquidity).is_viable(protocol.minimum_liquidity),
        LiquidityTooLow,
        "initial liquidity is too low to create the pool",
    )
    _require(datum.total_liquidity == 0, PoolAlreadyCreated, "event already created its pool")


def validate_redeem_orders(treasury: Record, orders: Sequence[Record], protocol: ProtocolConfig) -> None:
    datum: TreasuryDatum = datum_of(treasury, RecordKind.TREASURY)
    redeem_amount = sum(order.fund for order in _order_datums(datum, orders, collected=True))
    _require(datum.total_liquidity > 0, PoolNotCreated, "event has not created its pool")
    _require(redeem_amount <= datum.collected_fund, InvalidBatch, "orders exceed the collected fund")
    _check_batch(len(orders), protocol.order_batch_size, redeem_amount == datum.collected_fund, "order")


def validate_refund_orders(treasury: Record, orders: Sequence[Record], protocol: ProtocolConfig) -> None:
    datum: TreasuryDatum = datum_of(treasury, RecordKind.TREASURY)
    refund_amount = sum(order.fund for order in _order_datums(datum, orders, collected=True))
    _require(datum.is_cancelled, EventNotCancelled, "event is not cancelled")
    _require(datum.is_manager_collected, ManagerNotCollected, "manager must be collected first")
    _require(
        datum.collected_fund == datum.reserve_raise + datum.total_penalty,
        CollectionIncomplete,
        "all orders must be collected before refunding",
    )
    _require(refund_amount <= datum.collected_fund, InvalidBatch, "orders exceed the collected fund")
    _check_batch(len(orders), protocol.order_batch_size, refund_amount == datum.collected_fund, "order")


def validate_close_event(
    treasury: Record,
    head_factory: Record,
    tail_factory: Record,
    owner: str,
) -> None:
    datum: TreasuryDatum = datum_of(treasury, RecordKind.TREASURY)
    head: FactoryDatum = datum_of(head_factory, RecordKind.FACTORY)
    tail: FactoryDatum = datum_of(tail_factory, RecordKind.FACTORY)
    _require(head.tail == datum.event_id, FactoryMismatch, "head factory does not point at the event")
    _require(tail.head == datum.event_id, FactoryMismatch, "tail factory does not point at the event")
    _require(datum.is_cancelled, EventNotCancelled, "only cancelled events can be closed")
    _require(datum.owner == owner, OwnerMismatch, "only the owner can close the event")
    _require(datum.is_manager_collected, ManagerNotCollected, "manager must be collected first")
    _require(
        datum.total_penalty == 0 and datum.reserve_raise == 0,
        RefundsOutstanding,
        "all orders must be refunded before closing",
    )
