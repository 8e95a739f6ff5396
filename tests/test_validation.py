"""Tests for transition preconditions."""

from __future__ import annotations

from dataclasses import replace

import pytest

from lbe.config.settings import DAY_MS, HOUR_MS
from lbe.settlement import validation
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
    ManagerNotCollected,
    MinimumRaiseReached,
    OrderAlreadyCollected,
    OrderBelowMinimum,
    OutstandingSellers,
    OwnerMismatch,
    PoolAlreadyCreated,
    PoolNotCreated,
    RaiseBelowMinimum,
    RefundsOutstanding,
    TimeWindowViolation,
    WithdrawalExceedsBalance,
)
from lbe.settlement.types import (
    ADA,
    Asset,
    CancelRequest,
    OrderAction,
    PenaltyConfig,
    ProjectDetails,
    RecordKind,
    Tokenomic,
)


class TestEventParameters:
    def test_valid_parameters_pass(self, params, protocol, t0) -> None:
        validation.validate_event_parameters(params, t0, protocol)

    @pytest.mark.parametrize(
        "changes",
        [
            {"pool_allocation": 60},
            {"pool_base_fee": 1},
            {"reserve_base": 0},
            {"minimum_raise": 500, "maximum_raise": 400},
            {"minimum_order_raise": 0},
        ],
    )
    def test_out_of_range_fields_rejected(self, params, protocol, t0, changes) -> None:
        with pytest.raises(InvalidParameters):
            validation.validate_event_parameters(replace(params, **changes), t0, protocol)

    def test_same_assets_rejected(self, params, protocol, t0) -> None:
        with pytest.raises(InvalidParameters, match="differ"):
            validation.validate_event_parameters(replace(params, raise_asset=params.base_asset), t0, protocol)

    def test_native_base_asset_rejected(self, params, protocol, t0) -> None:
        with pytest.raises(InvalidParameters, match="native"):
            validation.validate_event_parameters(replace(params, base_asset=ADA), t0, protocol)

    def test_start_in_the_past_rejected(self, params, protocol, t0) -> None:
        with pytest.raises(InvalidParameters):
            validation.validate_event_parameters(params, params.start_time + 1, protocol)

    def test_start_at_current_time_rejected(self, params, protocol) -> None:
        with pytest.raises(InvalidParameters, match="future"):
            validation.validate_event_parameters(params, params.start_time, protocol)

    def test_discovery_window_too_long(self, params, protocol, t0) -> None:
        long_params = replace(params, end_time=params.start_time + 31 * DAY_MS)
        with pytest.raises(InvalidParameters, match="too long"):
            validation.validate_event_parameters(long_params, t0, protocol)

    def test_penalty_rules(self, params, protocol, t0) -> None:
        long_window = replace(params, end_time=params.start_time + 5 * DAY_MS)
        ok = PenaltyConfig(penalty_start_time=long_window.end_time - DAY_MS, percent=25)
        validation.validate_event_parameters(replace(long_window, penalty_config=ok), t0, protocol)

        too_early = PenaltyConfig(penalty_start_time=long_window.end_time - 3 * DAY_MS, percent=10)
        with pytest.raises(InvalidParameters, match="penalty period"):
            validation.validate_event_parameters(replace(long_window, penalty_config=too_early), t0, protocol)

        too_high = replace(ok, percent=26)
        with pytest.raises(InvalidParameters, match="penalty percent"):
            validation.validate_event_parameters(replace(long_window, penalty_config=too_high), t0, protocol)

        outside = replace(ok, penalty_start_time=long_window.end_time)
        with pytest.raises(InvalidParameters, match="inside"):
            validation.validate_event_parameters(replace(long_window, penalty_config=outside), t0, protocol)


class TestProjectDetails:
    def test_tokenomics_must_total_one_hundred(self) -> None:
        details = ProjectDetails(
            event_name="Demo",
            tokenomics=(Tokenomic("team", "20"), Tokenomic("sale", "70")),
        )
        with pytest.raises(InvalidProjectDetails, match="100%"):
            validation.validate_project_details(details)

    def test_valid_details_pass(self) -> None:
        details = ProjectDetails(
            event_name="Demo",
            description="A demo launch",
            social_links={"website": "https://example.org"},
            tokenomics=(Tokenomic("team", "20.5"), Tokenomic("sale", "79.5")),
        )
        validation.validate_project_details(details)

    def test_non_numeric_percentage(self) -> None:
        details = ProjectDetails(event_name="Demo", tokenomics=(Tokenomic("team", "lots"),))
        with pytest.raises(InvalidProjectDetails, match="invalid percentage"):
            validation.validate_project_details(details)

    def test_long_name_rejected(self) -> None:
        with pytest.raises(InvalidProjectDetails):
            validation.validate_project_details(ProjectDetails(event_name="x" * 51))


def test_create_requires_covering_factory(records, params, protocol, t0) -> None:
    factory = records.factory(tail=params.event_id)
    with pytest.raises(FactoryMismatch):
        validation.validate_create_event(factory, params, 3, t0, protocol)


def test_create_requires_factory_record(records, params, protocol, t0) -> None:
    with pytest.raises(InvalidRecord):
        validation.validate_create_event(records.treasury(params), params, 3, t0, protocol)


def test_update_only_by_owner_before_start(records, params, protocol, t0) -> None:
    treasury = records.treasury(params)
    validation.validate_update_event(treasury, params.owner, params, t0, protocol)

    with pytest.raises(OwnerMismatch):
        validation.validate_update_event(treasury, "addr_test_mallory", params, t0, protocol)
    with pytest.raises(TimeWindowViolation):
        validation.validate_update_event(treasury, params.owner, params, params.start_time, protocol)


def test_update_cannot_change_pair(records, params, protocol, t0) -> None:
    treasury = records.treasury(params)
    other = replace(params, raise_asset=Asset("cc" * 28, "4f54"))
    with pytest.raises(IdentityMismatch):
        validation.validate_update_event(treasury, params.owner, other, t0, protocol)


class TestCancel:
    def test_owner_cancel_window(self, records, params, protocol, t0) -> None:
        treasury = records.treasury(params)
        request = CancelRequest.by_owner(params.owner)
        validation.validate_cancel_event(treasury, request, t0, protocol)
        with pytest.raises(TimeWindowViolation):
            validation.validate_cancel_event(treasury, request, params.start_time, protocol)

    def test_revocable_event_can_be_cancelled_during_discovery(self, records, params, protocol) -> None:
        treasury = records.treasury(replace(params, revocable=True))
        request = CancelRequest.by_owner(params.owner)
        validation.validate_cancel_event(treasury, request, params.start_time + HOUR_MS, protocol)
        with pytest.raises(TimeWindowViolation):
            validation.validate_cancel_event(treasury, request, params.end_time, protocol)

    def test_cancel_requires_owner(self, records, params, protocol, t0) -> None:
        with pytest.raises(OwnerMismatch):
            validation.validate_cancel_event(
                records.treasury(params), CancelRequest.by_owner("addr_test_mallory"), t0, protocol
            )

    def test_cannot_cancel_twice(self, records, params, protocol, t0) -> None:
        treasury = records.treasury(params, is_cancelled=True)
        with pytest.raises(EventAlreadyCancelled):
            validation.validate_cancel_event(treasury, CancelRequest.by_owner(params.owner), t0, protocol)

    def test_below_minimum_requires_manager_collection(self, records, params, protocol) -> None:
        treasury = records.treasury(replace(params, minimum_raise=500))
        with pytest.raises(ManagerNotCollected):
            validation.validate_cancel_event(
                treasury, CancelRequest.not_reach_minimum(), params.end_time + 1, protocol
            )

    def test_below_minimum_requires_a_shortfall(self, records, params, protocol) -> None:
        reached = records.treasury(
            replace(params, minimum_raise=500),
            is_manager_collected=True,
            reserve_raise=600,
            collected_fund=600,
        )
        with pytest.raises(MinimumRaiseReached):
            validation.validate_cancel_event(
                reached, CancelRequest.not_reach_minimum(), params.end_time + 1, protocol
            )

        short = records.treasury(
            replace(params, minimum_raise=500),
            is_manager_collected=True,
            reserve_raise=300,
            collected_fund=300,
        )
        validation.validate_cancel_event(short, CancelRequest.not_reach_minimum(), params.end_time + 1, protocol)

    def test_created_elsewhere_requires_matching_pool(self, records, params, protocol) -> None:
        treasury = records.treasury(params)
        validation.validate_cancel_event(
            treasury, CancelRequest.created_pool(records.pool(params)), params.end_time + 1, protocol
        )

        other = replace(params, raise_asset=Asset("cc" * 28, "4f54"))
        with pytest.raises(IdentityMismatch):
            validation.validate_cancel_event(
                treasury, CancelRequest.created_pool(records.pool(other)), params.end_time + 1, protocol
            )


class TestOrders:
    def test_deposit_requires_open_window(self, records, params, t0) -> None:
        treasury = records.treasury(params)
        seller = records.seller(params)
        with pytest.raises(TimeWindowViolation):
            validation.validate_deposit_or_withdraw(
                treasury, seller, [], "addr_test_alice", OrderAction.deposit(100), t0
            )
        with pytest.raises(TimeWindowViolation):
            validation.validate_deposit_or_withdraw(
                treasury, seller, [], "addr_test_alice", OrderAction.deposit(100), params.end_time + 1
            )

    def test_withdraw_cannot_exceed_balance(self, records, params) -> None:
        treasury = records.treasury(params)
        order = records.order(params, "addr_test_alice", 100)
        with pytest.raises(WithdrawalExceedsBalance):
            validation.validate_deposit_or_withdraw(
                treasury,
                records.seller(params),
                [order],
                "addr_test_alice",
                OrderAction.withdraw(101),
                params.start_time,
            )

    def test_orders_must_belong_to_owner(self, records, params) -> None:
        order = records.order(params, "addr_test_bob", 100)
        with pytest.raises(OwnerMismatch):
            validation.validate_deposit_or_withdraw(
                records.treasury(params),
                records.seller(params),
                [order],
                "addr_test_alice",
                OrderAction.deposit(1),
                params.start_time,
            )

    def test_minimum_order_raise(self, records, params) -> None:
        treasury = records.treasury(replace(params, minimum_order_raise=50))
        seller = records.seller(params)
        order = records.order(params, "addr_test_alice", 100)
        now = params.start_time
        with pytest.raises(OrderBelowMinimum):
            validation.validate_deposit_or_withdraw(
                treasury, seller, [], "addr_test_alice", OrderAction.deposit(10), now
            )
        with pytest.raises(OrderBelowMinimum):
            validation.validate_deposit_or_withdraw(
                treasury, seller, [order], "addr_test_alice", OrderAction.withdraw(60), now
            )
        # Withdrawing everything is always allowed.
        validation.validate_deposit_or_withdraw(
            treasury, seller, [order], "addr_test_alice", OrderAction.withdraw(100), now
        )

    def test_duplicate_orders_rejected(self, records, params) -> None:
        order = records.order(params, "addr_test_alice", 100)
        with pytest.raises(InvalidBatch, match="duplicate"):
            validation.validate_deposit_or_withdraw(
                records.treasury(params),
                records.seller(params),
                [order, order],
                "addr_test_alice",
                OrderAction.deposit(1),
                params.start_time,
            )


class TestBatchTransitions:
    def test_counting_sellers_batch_must_be_full_or_final(self, records, params, protocol) -> None:
        treasury = records.treasury(params)
        manager = records.manager(params, seller_count=3)
        sellers = [records.seller(params) for _ in range(3)]
        after_end = params.end_time + 1

        validation.validate_counting_sellers(treasury, manager, sellers[:2], after_end, protocol)
        with pytest.raises(InvalidBatch):
            validation.validate_counting_sellers(treasury, manager, sellers[:1], after_end, protocol)
        with pytest.raises(InvalidBatch):
            validation.validate_counting_sellers(treasury, manager, sellers, after_end, protocol)

    def test_counting_sellers_waits_for_discovery_end(self, records, params, protocol) -> None:
        treasury = records.treasury(params)
        manager = records.manager(params, seller_count=1)
        with pytest.raises(TimeWindowViolation):
            validation.validate_counting_sellers(
                treasury, manager, [records.seller(params)], params.end_time, protocol
            )

    def test_counting_sellers_rejects_foreign_manager(self, records, params, protocol) -> None:
        other = replace(params, raise_asset=Asset("cc" * 28, "4f54"))
        with pytest.raises(IdentityMismatch):
            validation.validate_counting_sellers(
                records.treasury(params),
                records.manager(other, seller_count=1),
                [records.seller(params)],
                params.end_time + 1,
                protocol,
            )

    def test_collect_manager_requires_counted_sellers(self, records, params) -> None:
        with pytest.raises(OutstandingSellers):
            validation.validate_collect_manager(
                records.treasury(params), records.manager(params, seller_count=2), params.end_time + 1
            )

    def test_collect_orders_requires_manager(self, records, params, protocol) -> None:
        order = records.order(params, "addr_test_alice", 100)
        with pytest.raises(ManagerNotCollected):
            validation.validate_collect_orders(records.treasury(params), [order], protocol)

    def test_collect_orders_cannot_exceed_remaining(self, records, params, protocol) -> None:
        treasury = records.treasury(params, is_manager_collected=True, reserve_raise=50)
        order = records.order(params, "addr_test_alice", 100)
        with pytest.raises(InvalidBatch):
            validation.validate_collect_orders(treasury, [order], protocol)

    def test_collect_orders_rejects_collected(self, records, params, protocol) -> None:
        treasury = records.treasury(params, is_manager_collected=True, reserve_raise=100)
        order = records.order(params, "addr_test_alice", 100, is_collected=True)
        with pytest.raises(OrderAlreadyCollected) as excinfo:
            validation.validate_collect_orders(treasury, [order], protocol)
        assert excinfo.value.code == "ORDER_ALREADY_COLLECTED"


class TestSettlement:
    def _collected(self, records, params, **fields):
        defaults = {"is_manager_collected": True, "reserve_raise": 400_000, "collected_fund": 400_000}
        defaults.update(fields)
        return records.treasury(params, **defaults)

    def test_create_pool_happy_path(self, records, params, protocol) -> None:
        validation.validate_create_amm_pool(self._collected(records, params), records.factory(amm=True), protocol)

    def test_create_pool_requires_complete_collection(self, records, params, protocol) -> None:
        treasury = self._collected(records, params, collected_fund=100)
        with pytest.raises(CollectionIncomplete):
            validation.validate_create_amm_pool(treasury, records.factory(amm=True), protocol)

    def test_create_pool_requires_minimum(self, records, params, protocol) -> None:
        treasury = records.treasury(
            replace(params, minimum_raise=500),
            is_manager_collected=True,
            reserve_raise=300,
            collected_fund=300,
        )
        with pytest.raises(RaiseBelowMinimum):
            validation.validate_create_amm_pool(treasury, records.factory(amm=True), protocol)

    def test_create_pool_requires_liquidity(self, records, params, protocol) -> None:
        treasury = records.treasury(
            replace(params, reserve_base=10),
            is_manager_collected=True,
            reserve_raise=10,
            collected_fund=10,
        )
        with pytest.raises(LiquidityTooLow):
            validation.validate_create_amm_pool(treasury, records.factory(amm=True), protocol)

    def test_create_pool_only_once(self, records, params, protocol) -> None:
        treasury = self._collected(records, params, total_liquidity=1)
        with pytest.raises(PoolAlreadyCreated):
            validation.validate_create_amm_pool(treasury, records.factory(amm=True), protocol)

    def test_create_pool_rejects_cancelled(self, records, params, protocol) -> None:
        treasury = self._collected(records, params, is_cancelled=True)
        with pytest.raises(EventAlreadyCancelled):
            validation.validate_create_amm_pool(treasury, records.factory(amm=True), protocol)

    def test_create_pool_requires_amm_factory(self, records, params, protocol) -> None:
        with pytest.raises(InvalidRecord):
            validation.validate_create_amm_pool(self._collected(records, params), records.factory(), protocol)

    def test_redeem_requires_pool(self, records, params, protocol) -> None:
        order = records.order(params, "addr_test_alice", 400_000, is_collected=True)
        with pytest.raises(PoolNotCreated):
            validation.validate_redeem_orders(self._collected(records, params), [order], protocol)

    def test_refund_requires_cancel(self, records, params, protocol) -> None:
        order = records.order(params, "addr_test_alice", 400_000, is_collected=True)
        with pytest.raises(EventNotCancelled):
            validation.validate_refund_orders(self._collected(records, params), [order], protocol)


class TestClose:
    def test_close_requires_refunds(self, records, params) -> None:
        event_id = params.event_id
        treasury = records.treasury(
            params, is_cancelled=True, is_manager_collected=True, reserve_raise=10, collected_fund=10
        )
        with pytest.raises(RefundsOutstanding):
            validation.validate_close_event(
                treasury, records.factory(tail=event_id), records.factory(head=event_id), params.owner
            )

    def test_close_requires_owner_and_cancel(self, records, params) -> None:
        event_id = params.event_id
        head = records.factory(tail=event_id)
        tail = records.factory(head=event_id)
        with pytest.raises(EventNotCancelled):
            validation.validate_close_event(records.treasury(params), head, tail, params.owner)
        cancelled = records.treasury(params, is_cancelled=True, is_manager_collected=True)
        with pytest.raises(OwnerMismatch):
            validation.validate_close_event(cancelled, head, tail, "addr_test_mallory")
        validation.validate_close_event(cancelled, head, tail, params.owner)

    def test_close_requires_bracketing_factories(self, records, params) -> None:
        cancelled = records.treasury(params, is_cancelled=True, is_manager_collected=True)
        with pytest.raises(FactoryMismatch):
            validation.validate_close_event(cancelled, records.factory(), records.factory(), params.owner)


def test_datum_of_checks_kind(records, params) -> None:
    with pytest.raises(InvalidRecord):
        validation.datum_of(records.treasury(params), RecordKind.MANAGER)
