"""Builders for every settlement transition.

A builder validates its inputs, then returns an unsubmitted ``Transition``
that consumes the given records and produces their successors. Amounts are
always recomputed from the consumed records.
"""

from __future__ import annotations

from dataclasses import replace
from typing import Sequence

from lbe.config.settings import ProtocolConfig
from lbe.settlement import validation
from lbe.settlement.calculation import penalty_amount, pool_split, redeem_amounts
from lbe.settlement.types import (
    ADA,
    Asset,
    CancelReason,
    CancelRequest,
    EventParameters,
    FactoryDatum,
    ManagerDatum,
    OrderAction,
    OrderDatum,
    Output,
    PoolDatum,
    ProjectDetails,
    Record,
    RecordKind,
    SellerDatum,
    Transition,
    TransitionKind,
    TreasuryDatum,
    Value,
    sort_records,
)


class TransitionBuilder:
    """Construct ledger updates for event owners, contributors and the batcher."""

    def __init__(self, protocol: ProtocolConfig) -> None:
        self.protocol = protocol

    def lp_asset(self, event_id: str) -> Asset:
        return Asset(self.protocol.lp_policy_id, event_id)

    def _valid_to(self, now: int, *limits: int) -> int:
        return min((now + self.protocol.tx_validity_ms, *limits))

    def _seller_output(self, treasury: TreasuryDatum, owner: str) -> Output:
        return Output.script(
            RecordKind.SELLER,
            Value.lovelace(self.protocol.seller_rent),
            SellerDatum(base_asset=treasury.base_asset, raise_asset=treasury.raise_asset, owner=owner),
        )

    def create_event(
        self,
        factory: Record,
        params: EventParameters,
        now: int,
        seller_count: int | None = None,
        details: ProjectDetails | None = None,
    ) -> Transition:
        if seller_count is None:
            seller_count = self.protocol.default_seller_count
        validation.validate_create_event(factory, params, seller_count, now, self.protocol, details)
        factory_datum: FactoryDatum = factory.datum  # type: ignore[assignment]
        event_id = params.event_id
        treasury = TreasuryDatum.from_parameters(params)

        treasury_value = Value.lovelace(
            self.protocol.treasury_rent + self.protocol.create_pool_commission
        ).add(params.base_asset, params.reserve_base)
        produced = [
            Output.script(RecordKind.FACTORY, Value(), FactoryDatum(head=factory_datum.head, tail=event_id)),
            Output.script(RecordKind.FACTORY, Value(), FactoryDatum(head=event_id, tail=factory_datum.tail)),
            Output.script(RecordKind.TREASURY, treasury_value, treasury),
            Output.script(
                RecordKind.MANAGER,
                Value.lovelace(self.protocol.manager_rent),
                ManagerDatum(
                    base_asset=params.base_asset,
                    raise_asset=params.raise_asset,
                    seller_count=seller_count,
                ),
            ),
        ]
        produced.extend(self._seller_output(treasury, params.owner) for _ in range(seller_count))
        return Transition(
            kind=TransitionKind.CREATE_EVENT,
            event_id=event_id,
            consumed=(factory,),
            produced=tuple(produced),
            valid_from=now,
            valid_to=self._valid_to(now, params.start_time - 1),
            signers=(params.owner,),
            metadata={
                "seller_count": seller_count,
                "project_details": details.to_dict() if details else None,
            },
        )

    def update_event(
        self,
        treasury: Record,
        owner: str,
        params: EventParameters,
        now: int,
        details: ProjectDetails | None = None,
    ) -> Transition:
        validation.validate_update_event(treasury, owner, params, now, self.protocol, details)
        old: TreasuryDatum = treasury.datum  # type: ignore[assignment]
        updated = replace(
            TreasuryDatum.from_parameters(params),
            collected_fund=old.collected_fund,
            reserve_raise=old.reserve_raise,
            total_penalty=old.total_penalty,
            total_liquidity=old.total_liquidity,
            is_manager_collected=old.is_manager_collected,
            is_cancelled=old.is_cancelled,
        )
        value = treasury.value.without(old.base_asset).add(params.base_asset, params.reserve_base)
        return Transition(
            kind=TransitionKind.UPDATE_EVENT,
            event_id=old.event_id,
            consumed=(treasury,),
            produced=(Output.script(RecordKind.TREASURY, value, updated),),
            valid_from=now,
            valid_to=self._valid_to(now, old.start_time - 1, params.start_time - 1),
            signers=(owner,),
            metadata={"project_details": details.to_dict() if details else None},
        )

    def cancel_event(self, treasury: Record, request: CancelRequest, now: int) -> Transition:
        validation.validate_cancel_event(treasury, request, now, self.protocol)
        datum: TreasuryDatum = treasury.datum  # type: ignore[assignment]
        valid_to = self._valid_to(now)
        signers: tuple[str, ...] = ()
        references: tuple[Record, ...] = ()
        if request.reason == CancelReason.BY_OWNER:
            deadline = datum.end_time if datum.revocable else datum.start_time
            valid_to = min(valid_to, deadline - 1)
            signers = (datum.owner,)
        elif request.reason == CancelReason.CREATED_POOL and request.amm_pool is not None:
            references = (request.amm_pool,)
        return Transition(
            kind=TransitionKind.CANCEL_EVENT,
            event_id=datum.event_id,
            consumed=(treasury,),
            produced=(Output.script(RecordKind.TREASURY, treasury.value, replace(datum, is_cancelled=True)),),
            valid_from=now,
            valid_to=valid_to,
            references=references,
            signers=signers,
            metadata={"reason": request.reason.value},
        )

    def deposit_or_withdraw(
        self,
        treasury: Record,
        seller: Record,
        orders: Sequence[Record],
        owner: str,
        action: OrderAction,
        now: int,
    ) -> Transition:
        validation.validate_deposit_or_withdraw(treasury, seller, orders, owner, action, now)
        treasury_datum: TreasuryDatum = treasury.datum  # type: ignore[assignment]
        seller_datum: SellerDatum = seller.datum  # type: ignore[assignment]
        orders = sort_records(orders)
        order_datums: list[OrderDatum] = [record.datum for record in orders]  # type: ignore[misc]

        current_amount = sum(order.amount for order in order_datums)
        input_penalty = sum(order.penalty_amount for order in order_datums)
        if action.type == "deposit":
            new_amount = current_amount + action.amount
        else:
            new_amount = current_amount - action.amount

        valid_to = min(treasury_datum.end_time, now + self.protocol.tx_validity_ms)
        # Penalty is assessed at the latest instant the transition could confirm.
        tx_penalty = penalty_amount(valid_to, current_amount, new_amount, treasury_datum.penalty_config)
        new_penalty = input_penalty + tx_penalty

        seller_value = seller.value
        if not orders and new_amount > 0:
            seller_value = seller_value.add(ADA, self.protocol.seller_commission)
        produced = [
            Output.script(
                RecordKind.SELLER,
                seller_value,
                replace(
                    seller_datum,
                    amount=seller_datum.amount + new_amount - current_amount,
                    penalty_amount=seller_datum.penalty_amount + tx_penalty,
                ),
            )
        ]
        new_fund = new_amount + new_penalty
        order_value = Value()
        if new_fund > 0:
            order_value = Value.lovelace(
                self.protocol.order_rent + 2 * self.protocol.order_commission
            ).add(treasury_datum.raise_asset, new_fund)
            produced.append(
                Output.script(
                    RecordKind.ORDER,
                    order_value,
                    OrderDatum(
                        base_asset=treasury_datum.base_asset,
                        raise_asset=treasury_datum.raise_asset,
                        owner=owner,
                        amount=new_amount,
                        penalty_amount=new_penalty,
                    ),
                )
            )
        # Whatever the merged order no longer locks goes back to the owner.
        released = Value()
        for record in orders:
            released = released + record.value
        returned = Value(
            {
                asset: amount - order_value.get(asset)
                for asset, amount in released.items()
                if amount > order_value.get(asset)
            }
        )
        if returned:
            produced.append(Output.payment(owner, returned))

        signers = tuple(dict.fromkeys([owner, *(order.owner for order in order_datums)]))
        kind = TransitionKind.DEPOSIT_ORDER if action.type == "deposit" else TransitionKind.WITHDRAW_ORDER
        return Transition(
            kind=kind,
            event_id=treasury_datum.event_id,
            consumed=(seller, *orders),
            produced=tuple(produced),
            valid_from=now,
            valid_to=valid_to,
            references=(treasury,),
            signers=signers,
            metadata={
                "owner": owner,
                "amount": action.amount,
                "new_amount": new_amount,
                "penalty": tx_penalty,
            },
        )

    def add_sellers(
        self,
        treasury: Record,
        manager: Record,
        count: int,
        seller_owner: str,
        now: int,
    ) -> Transition:
        validation.validate_add_sellers(treasury, manager, count, now)
        treasury_datum: TreasuryDatum = treasury.datum  # type: ignore[assignment]
        manager_datum: ManagerDatum = manager.datum  # type: ignore[assignment]
        produced = [
            Output.script(
                RecordKind.MANAGER,
                manager.value,
                replace(manager_datum, seller_count=manager_datum.seller_count + count),
            )
        ]
        produced.extend(self._seller_output(treasury_datum, seller_owner) for _ in range(count))
        return Transition(
            kind=TransitionKind.ADD_SELLERS,
            event_id=treasury_datum.event_id,
            consumed=(manager,),
            produced=tuple(produced),
            valid_from=now,
            valid_to=self._valid_to(now, treasury_datum.end_time - 1),
            references=(treasury,),
            metadata={"count": count, "seller_owner": seller_owner},
        )

    def counting_sellers(
        self,
        treasury: Record,
        manager: Record,
        sellers: Sequence[Record],
        now: int,
    ) -> Transition:
        validation.validate_counting_sellers(treasury, manager, sellers, now, self.protocol)
        manager_datum: ManagerDatum = manager.datum  # type: ignore[assignment]
        sellers = sort_records(sellers)
        seller_datums: list[SellerDatum] = [record.datum for record in sellers]  # type: ignore[misc]

        total_amount = sum(seller.amount for seller in seller_datums)
        total_penalty = sum(seller.penalty_amount for seller in seller_datums)
        produced = [
            Output.script(
                RecordKind.MANAGER,
                manager.value,
                replace(
                    manager_datum,
                    reserve_raise=manager_datum.reserve_raise + total_amount,
                    total_penalty=manager_datum.total_penalty + total_penalty,
                    seller_count=manager_datum.seller_count - len(sellers),
                ),
            )
        ]
        for record, datum in zip(sellers, seller_datums):
            rent = record.value.get(ADA) - self.protocol.collect_seller_commission
            if rent > 0:
                produced.append(Output.payment(datum.owner, Value.lovelace(rent)))
        return Transition(
            kind=TransitionKind.COUNTING_SELLERS,
            event_id=manager_datum.event_id,
            consumed=(manager, *sellers),
            produced=tuple(produced),
            valid_from=now,
            valid_to=self._valid_to(now),
            references=(treasury,),
            metadata={"sellers": len(sellers), "amount": total_amount, "penalty": total_penalty},
        )

    def collect_manager(self, treasury: Record, manager: Record, now: int) -> Transition:
        validation.validate_collect_manager(treasury, manager, now)
        treasury_datum: TreasuryDatum = treasury.datum  # type: ignore[assignment]
        manager_datum: ManagerDatum = manager.datum  # type: ignore[assignment]
        updated = replace(
            treasury_datum,
            is_manager_collected=True,
            reserve_raise=treasury_datum.reserve_raise + manager_datum.reserve_raise,
            total_penalty=treasury_datum.total_penalty + manager_datum.total_penalty,
        )
        produced = [Output.script(RecordKind.TREASURY, treasury.value, updated)]
        if manager.value:
            produced.append(Output.payment(treasury_datum.owner, manager.value))
        return Transition(
            kind=TransitionKind.COLLECT_MANAGER,
            event_id=treasury_datum.event_id,
            consumed=(treasury, manager),
            produced=tuple(produced),
            valid_from=now,
            valid_to=self._valid_to(now),
            metadata={
                "reserve_raise": updated.reserve_raise,
                "total_penalty": updated.total_penalty,
            },
        )

    def collect_orders(self, treasury: Record, orders: Sequence[Record], now: int) -> Transition:
        validation.validate_collect_orders(treasury, orders, self.protocol)
        datum: TreasuryDatum = treasury.datum  # type: ignore[assignment]
        orders = sort_records(orders)
        order_datums: list[OrderDatum] = [record.datum for record in orders]  # type: ignore[misc]

        delta = sum(order.fund for order in order_datums)
        produced = [
            Output.script(
                RecordKind.TREASURY,
                treasury.value.add(datum.raise_asset, delta),
                replace(datum, collected_fund=datum.collected_fund + delta),
            )
        ]
        collected_value = Value.lovelace(self.protocol.order_rent + self.protocol.order_commission)
        produced.extend(
            Output.script(RecordKind.ORDER, collected_value, replace(order, is_collected=True))
            for order in order_datums
        )
        return Transition(
            kind=TransitionKind.COLLECT_ORDERS,
            event_id=datum.event_id,
            consumed=(treasury, *orders),
            produced=tuple(produced),
            valid_from=now,
            valid_to=self._valid_to(now),
            metadata={"orders": len(orders), "collected": delta},
        )

    def create_amm_pool(self, treasury: Record, amm_factory: Record, now: int) -> Transition:
        validation.validate_create_amm_pool(treasury, amm_factory, self.protocol)
        datum: TreasuryDatum = treasury.datum  # type: ignore[assignment]
        factory: FactoryDatum = amm_factory.datum  # type: ignore[assignment]
        split = pool_split(datum, self.protocol.minimum_liquidity)
        event_id = datum.event_id
        lp = self.lp_asset(event_id)

        treasury_value = (
            treasury.value.without(datum.base_asset)
            - Value.of(datum.raise_asset, split.effective_raise)
            - Value.lovelace(self.protocol.create_pool_commission)
        ).add(lp, split.treasury_lp)
        produced = [
            Output.script(
                RecordKind.TREASURY,
                treasury_value,
                replace(datum, total_liquidity=split.treasury_lp),
            ),
            Output.script(
                RecordKind.AMM_POOL,
                Value({split.asset_a: split.pool_reserve_a, split.asset_b: split.pool_reserve_b}),
                PoolDatum(
                    asset_a=split.asset_a,
                    asset_b=split.asset_b,
                    reserve_a=split.pool_reserve_a,
                    reserve_b=split.pool_reserve_b,
                    total_liquidity=split.total_liquidity,
                    base_fee=datum.pool_base_fee,
                ),
            ),
            Output.script(RecordKind.AMM_FACTORY, Value(), FactoryDatum(head=factory.head, tail=event_id)),
            Output.script(RecordKind.AMM_FACTORY, Value(), FactoryDatum(head=event_id, tail=factory.tail)),
        ]
        receiver_value = Value(
            {split.asset_a: split.receiver_a, split.asset_b: split.receiver_b, lp: split.receiver_lp}
        )
        if receiver_value:
            produced.append(Output.payment(datum.receiver, receiver_value))
        return Transition(
            kind=TransitionKind.CREATE_AMM_POOL,
            event_id=event_id,
            consumed=(treasury, amm_factory),
            produced=tuple(produced),
            valid_from=now,
            valid_to=self._valid_to(now),
            metadata={
                "effective_raise": split.effective_raise,
                "total_liquidity": split.total_liquidity,
                "receiver_lp": split.receiver_lp,
                "treasury_lp": split.treasury_lp,
            },
        )

    def redeem_orders(self, treasury: Record, orders: Sequence[Record], now: int) -> Transition:
        validation.validate_redeem_orders(treasury, orders, self.protocol)
        datum: TreasuryDatum = treasury.datum  # type: ignore[assignment]
        orders = sort_records(orders)
        lp = self.lp_asset(datum.event_id)

        payments: list[Output] = []
        total_fund = 0
        total_lp = 0
        total_bonus = 0
        for record in orders:
            order: OrderDatum = record.datum  # type: ignore[assignment]
            lp_amount = 0
            bonus = 0
            if order.amount > 0:
                amounts = redeem_amounts(
                    order.amount,
                    datum.total_penalty,
                    datum.reserve_raise,
                    datum.total_liquidity,
                    datum.maximum_raise,
                )
                lp_amount, bonus = amounts.lp_amount, amounts.bonus_raise
            total_fund += order.fund
            total_lp += lp_amount
            total_bonus += bonus
            payout = Value.lovelace(self.protocol.order_rent).add(lp, lp_amount).add(datum.raise_asset, bonus)
            payments.append(Output.payment(order.owner, payout))

        # reserve_raise and total_liquidity stay fixed so later batches remain pro-rata.
        treasury_value = treasury.value - Value({lp: total_lp}) - Value.of(datum.raise_asset, total_bonus)
        produced = [
            Output.script(
                RecordKind.TREASURY,
                treasury_value,
                replace(datum, collected_fund=datum.collected_fund - total_fund),
            ),
            *payments,
        ]
        return Transition(
            kind=TransitionKind.REDEEM_ORDERS,
            event_id=datum.event_id,
            consumed=(treasury, *orders),
            produced=tuple(produced),
            valid_from=now,
            valid_to=self._valid_to(now),
            metadata={"orders": len(orders), "lp": total_lp, "bonus": total_bonus, "fund": total_fund},
        )

    def refund_orders(self, treasury: Record, orders: Sequence[Record], now: int) -> Transition:
        validation.validate_refund_orders(treasury, orders, self.protocol)
        datum: TreasuryDatum = treasury.datum  # type: ignore[assignment]
        orders = sort_records(orders)

        payments: list[Output] = []
        total_amount = 0
        total_penalty = 0
        for record in orders:
            order: OrderDatum = record.datum  # type: ignore[assignment]
            total_amount += order.amount
            total_penalty += order.penalty_amount
            payout = Value.lovelace(self.protocol.order_rent).add(datum.raise_asset, order.fund)
            payments.append(Output.payment(order.owner, payout))

        refund = total_amount + total_penalty
        updated = replace(
            datum,
            collected_fund=datum.collected_fund - refund,
            reserve_raise=datum.reserve_raise - total_amount,
            total_penalty=datum.total_penalty - total_penalty,
        )
        produced = [
            Output.script(
                RecordKind.TREASURY,
                treasury.value - Value.of(datum.raise_asset, refund),
                updated,
            ),
            *payments,
        ]
        return Transition(
            kind=TransitionKind.REFUND_ORDERS,
            event_id=datum.event_id,
            consumed=(treasury, *orders),
            produced=tuple(produced),
            valid_from=now,
            valid_to=self._valid_to(now),
            metadata={"orders": len(orders), "refund": refund},
        )

    def close_event(
        self,
        treasury: Record,
        head_factory: Record,
        tail_factory: Record,
        owner: str,
        now: int,
    ) -> Transition:
        validation.validate_close_event(treasury, head_factory, tail_factory, owner)
        datum: TreasuryDatum = treasury.datum  # type: ignore[assignment]
        head: FactoryDatum = head_factory.datum  # type: ignore[assignment]
        tail: FactoryDatum = tail_factory.datum  # type: ignore[assignment]
        produced = [
            Output.script(RecordKind.FACTORY, Value(), FactoryDatum(head=head.head, tail=tail.tail)),
        ]
        if treasury.value:
            produced.append(Output.payment(datum.owner, treasury.value))
        return Transition(
            kind=TransitionKind.CLOSE_EVENT,
            event_id=datum.event_id,
            consumed=(treasury, head_factory, tail_factory),
            produced=tuple(produced),
            valid_from=now,
            valid_to=self._valid_to(now),
            signers=(datum.owner,),
        )
