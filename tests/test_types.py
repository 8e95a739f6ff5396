"""Tests for protocol value types and record serialization."""

from __future__ import annotations

import pytest

from lbe.settlement.types import (
    ADA,
    FACTORY_HEAD,
    FACTORY_TAIL,
    Asset,
    FactoryDatum,
    PenaltyConfig,
    Record,
    RecordKind,
    RecordRef,
    Transition,
    TransitionKind,
    Value,
    compute_event_id,
)


def test_value_arithmetic_merges_and_drops_zero(base_asset: Asset, raise_asset: Asset) -> None:
    left = Value({ADA: 5, base_asset: 10})
    right = Value({base_asset: 10, raise_asset: 3})

    total = left + right
    assert total.get(base_asset) == 20
    assert total.get(raise_asset) == 3

    remainder = total - Value({base_asset: 20})
    assert remainder.get(base_asset) == 0
    assert base_asset not in dict(remainder.items())
    assert remainder == Value({ADA: 5, raise_asset: 3})
    assert total >= remainder
    assert not (remainder >= total)


def test_value_rejects_negative_result(base_asset: Asset) -> None:
    with pytest.raises(ValueError):
        Value.of(base_asset, 1) - Value.of(base_asset, 2)
    with pytest.raises(ValueError):
        Value({base_asset: -1})


def test_empty_value_is_falsy() -> None:
    assert not Value()
    assert not Value({ADA: 0})
    assert Value.lovelace(1)


def test_asset_units(base_asset: Asset) -> None:
    assert ADA.to_string() == "lovelace"
    assert Asset.from_string("lovelace") == ADA
    assert Asset.from_string(base_asset.to_string()) == base_asset
    with pytest.raises(ValueError):
        Asset.from_string(".abc")


def test_event_id_is_order_independent(base_asset: Asset, raise_asset: Asset) -> None:
    event_id = compute_event_id(base_asset, raise_asset)
    assert event_id == compute_event_id(raise_asset, base_asset)
    assert len(event_id) == 64
    assert event_id != compute_event_id(base_asset, ADA)


def test_factory_bounds_cover_every_event_id(base_asset: Asset, raise_asset: Asset) -> None:
    event_id = compute_event_id(base_asset, raise_asset)
    assert FactoryDatum(FACTORY_HEAD, FACTORY_TAIL).covers(event_id)
    assert not FactoryDatum(FACTORY_HEAD, event_id).covers(event_id)
    assert not FactoryDatum(event_id, FACTORY_TAIL).covers(event_id)


def test_treasury_record_round_trip(records, params) -> None:
    record = records.treasury(
        params,
        penalty_config=PenaltyConfig(penalty_start_time=params.end_time - 1000, percent=20),
        minimum_raise=100,
        collected_fund=50,
    )

    restored = Record.from_dict(record.to_dict())

    assert restored == record
    assert restored.event_id == params.event_id
    assert restored.datum.penalty_config.percent == 20


def test_record_ref_parsing() -> None:
    ref = RecordRef.from_string("abc#3")
    assert ref == RecordRef("abc", 3)
    assert ref.to_string() == "abc#3"
    with pytest.raises(ValueError):
        RecordRef.from_string("no-index")


def test_transition_summary(records, params) -> None:
    treasury = records.treasury(params)
    transition = Transition(
        kind=TransitionKind.CANCEL_EVENT,
        event_id=params.event_id,
        consumed=(treasury,),
        produced=(),
        valid_from=1,
        valid_to=2,
    )
    summary = transition.summary()
    assert summary["kind"] == "cancel_event"
    assert summary["consumed"] == [treasury.ref.to_string()]
    assert transition.produced_of(RecordKind.TREASURY) == []
