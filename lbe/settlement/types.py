"""Records, datums and transitions of the settlement protocol."""

from __future__ import annotations

import hashlib
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Iterable, Iterator, Literal, Mapping

ADA_UNIT = "lovelace"


@dataclass(frozen=True, order=True)
class Asset:
    """Fungible asset identifier. The native currency is the empty asset."""

    policy_id: str
    token_name: str = ""

    @property
    def is_ada(self) -> bool:
        return self.policy_id == "" and self.token_name == ""

    def to_string(self) -> str:
        if self.is_ada:
            return ADA_UNIT
        return f"{self.policy_id}.{self.token_name}"

    @classmethod
    def from_string(cls, unit: str) -> "Asset":
        if unit == ADA_UNIT:
            return ADA
        policy_id, _, token_name = unit.partition(".")
        if not policy_id:
            raise ValueError(f"invalid asset unit: {unit!r}")
        return cls(policy_id=policy_id, token_name=token_name)


ADA = Asset("", "")


def _unit_hash(asset: Asset) -> bytes:
    return hashlib.sha3_256(f"{asset.policy_id}{asset.token_name}".encode()).digest()


def compute_event_id(asset_a: Asset, asset_b: Asset) -> str:
    """Identifier of an asset pair, shared by the event and the AMM pool's LP token name."""
    first, second = sorted((asset_a, asset_b))
    return hashlib.sha3_256(_unit_hash(first) + _unit_hash(second)).hexdigest()


class Value:
    """Immutable bag of asset amounts. Zero entries are dropped."""

    __slots__ = ("_amounts",)

    def __init__(self, amounts: Mapping[Asset, int] | None = None) -> None:
        cleaned: dict[Asset, int] = {}
        for asset, amount in (amounts or {}).items():
            if amount < 0:
                raise ValueError(f"negative amount for {asset.to_string()}: {amount}")
            if amount:
                cleaned[asset] = int(amount)
        self._amounts = cleaned

    @classmethod
    def of(cls, asset: Asset, amount: int) -> "Value":
        return cls({asset: amount})

    @classmethod
    def lovelace(cls, amount: int) -> "Value":
        return cls({ADA: amount})

    def get(self, asset: Asset) -> int:
        return self._amounts.get(asset, 0)

    def add(self, asset: Asset, amount: int) -> "Value":
        merged = dict(self._amounts)
        merged[asset] = merged.get(asset, 0) + amount
        return Value(merged)

    def without(self, asset: Asset) -> "Value":
        return Value({a: n for a, n in self._amounts.items() if a != asset})

    def __add__(self, other: "Value") -> "Value":
        merged = dict(self._amounts)
        for asset, amount in other.items():
            merged[asset] = merged.get(asset, 0) + amount
        return Value(merged)

    def __sub__(self, other: "Value") -> "Value":
        merged = dict(self._amounts)
        for asset, amount in other.items():
            merged[asset] = merged.get(asset, 0) - amount
        return Value(merged)

    def __ge__(self, other: "Value") -> bool:
        return all(self.get(asset) >= amount for asset, amount in other.items())

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Value):
            return NotImplemented
        return self._amounts == other._amounts

    def __hash__(self) -> int:
        return hash(frozenset(self._amounts.items()))

    def __bool__(self) -> bool:
        return bool(self._amounts)

    def __repr__(self) -> str:
        return f"Value({self.to_dict()!r})"

    def items(self) -> Iterator[tuple[Asset, int]]:
        return iter(sorted(self._amounts.items()))

    def to_dict(self) -> dict[str, int]:
        return {asset.to_string(): amount for asset, amount in self.items()}

    @classmethod
    def from_dict(cls, data: Mapping[str, int]) -> "Value":
        return cls({Asset.from_string(unit): int(amount) for unit, amount in data.items()})


def _opt_int(value: Any) -> int | None:
    return None if value is None else int(value)


@dataclass(frozen=True)
class PenaltyConfig:
    penalty_start_time: int
    percent: int

    def to_dict(self) -> dict[str, int]:
        return {"penalty_start_time": self.penalty_start_time, "percent": self.percent}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any] | None) -> "PenaltyConfig | None":
        if data is None:
            return None
        return cls(penalty_start_time=int(data["penalty_start_time"]), percent=int(data["percent"]))


@dataclass(frozen=True)
class EventParameters:
    """Owner-supplied configuration of one event."""

    base_asset: Asset
    raise_asset: Asset
    reserve_base: int
    start_time: int
    end_time: int
    owner: str
    receiver: str
    pool_allocation: int
    pool_base_fee: int
    revocable: bool = False
    minimum_raise: int | None = None
    maximum_raise: int | None = None
    minimum_order_raise: int | None = None
    penalty_config: PenaltyConfig | None = None

    @property
    def event_id(self) -> str:
        return compute_event_id(self.base_asset, self.raise_asset)


@dataclass(frozen=True)
class Tokenomic:
    tag: str
    percentage: str


@dataclass(frozen=True)
class ProjectDetails:
    """Free-form project metadata attached to create and update transitions."""

    event_name: str
    description: str | None = None
    social_links: dict[str, str] = field(default_factory=dict)
    tokenomics: tuple[Tokenomic, ...] | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "event_name": self.event_name,
            "description": self.description,
            "social_links": dict(self.social_links),
            "tokenomics": (
                [{"tag": t.tag, "percentage": t.percentage} for t in self.tokenomics]
                if self.tokenomics is not None
                else None
            ),
        }


@dataclass(frozen=True)
class TreasuryDatum:
    base_asset: Asset
    raise_asset: Asset
    reserve_base: int
    start_time: int
    end_time: int
    owner: str
    receiver: str
    pool_allocation: int
    pool_base_fee: int
    revocable: bool = False
    minimum_raise: int | None = None
    maximum_raise: int | None = None
    minimum_order_raise: int | None = None
    penalty_config: PenaltyConfig | None = None
    collected_fund: int = 0
    reserve_raise: int = 0
    total_penalty: int = 0
    total_liquidity: int = 0
    is_manager_collected: bool = False
    is_cancelled: bool = False

    @property
    def event_id(self) -> str:
        return compute_event_id(self.base_asset, self.raise_asset)

    @classmethod
    def from_parameters(cls, params: EventParameters) -> "TreasuryDatum":
        return cls(
            base_asset=params.base_asset,
            raise_asset=params.raise_asset,
            reserve_base=params.reserve_base,
            start_time=params.start_time,
            end_time=params.end_time,
            owner=params.owner,
            receiver=params.receiver,
            pool_allocation=params.pool_allocation,
            pool_base_fee=params.pool_base_fee,
            revocable=params.revocable,
            minimum_raise=params.minimum_raise,
            maximum_raise=params.maximum_raise,
            minimum_order_raise=params.minimum_order_raise,
            penalty_config=params.penalty_config,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "base_asset": self.base_asset.to_string(),
            "raise_asset": self.raise_asset.to_string(),
            "reserve_base": self.reserve_base,
            "start_time": self.start_time,
            "end_time": self.end_time,
            "owner": self.owner,
            "receiver": self.receiver,
            "pool_allocation": self.pool_allocation,
            "pool_base_fee": self.pool_base_fee,
            "revocable": self.revocable,
            "minimum_raise": self.minimum_raise,
            "maximum_raise": self.maximum_raise,
            "minimum_order_raise": self.minimum_order_raise,
            "penalty_config": self.penalty_config.to_dict() if self.penalty_config else None,
            "collected_fund": self.collected_fund,
            "reserve_raise": self.reserve_raise,
            "total_penalty": self.total_penalty,
            "total_liquidity": self.total_liquidity,
            "is_manager_collected": self.is_manager_collected,
            "is_cancelled": self.is_cancelled,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "TreasuryDatum":
        return cls(
            base_asset=Asset.from_string(data["base_asset"]),
            raise_asset=Asset.from_string(data["raise_asset"]),
            reserve_base=int(data["reserve_base"]),
            start_time=int(data["start_time"]),
            end_time=int(data["end_time"]),
            owner=data["owner"],
            receiver=data["receiver"],
            pool_allocation=int(data["pool_allocation"]),
            pool_base_fee=int(data["pool_base_fee"]),
            revocable=bool(data.get("revocable", False)),
            minimum_raise=_opt_int(data.get("minimum_raise")),
            maximum_raise=_opt_int(data.get("maximum_raise")),
            minimum_order_raise=_opt_int(data.get("minimum_order_raise")),
            penalty_config=PenaltyConfig.from_dict(data.get("penalty_config")),
            collected_fund=int(data.get("collected_fund", 0)),
            reserve_raise=int(data.get("reserve_raise", 0)),
            total_penalty=int(data.get("total_penalty", 0)),
            total_liquidity=int(data.get("total_liquidity", 0)),
            is_manager_collected=bool(data.get("is_manager_collected", False)),
            is_cancelled=bool(data.get("is_cancelled", False)),
        )


@dataclass(frozen=True)
class ManagerDatum:
    base_asset: Asset
    raise_asset: Asset
    seller_count: int
    reserve_raise: int = 0
    total_penalty: int = 0

    @property
    def event_id(self) -> str:
        return compute_event_id(self.base_asset, self.raise_asset)

    def to_dict(self) -> dict[str, Any]:
        return {
            "base_asset": self.base_asset.to_string(),
            "raise_asset": self.raise_asset.to_string(),
            "seller_count": self.seller_count,
            "reserve_raise": self.reserve_raise,
            "total_penalty": self.total_penalty,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ManagerDatum":
        return cls(
            base_asset=Asset.from_string(data["base_asset"]),
            raise_asset=Asset.from_string(data["raise_asset"]),
            seller_count=int(data["seller_count"]),
            reserve_raise=int(data.get("reserve_raise", 0)),
            total_penalty=int(data.get("total_penalty", 0)),
        )


@dataclass(frozen=True)
class SellerDatum:
    base_asset: Asset
    raise_asset: Asset
    owner: str
    amount: int = 0
    penalty_amount: int = 0

    @property
    def event_id(self) -> str:
        return compute_event_id(self.base_asset, self.raise_asset)

    def to_dict(self) -> dict[str, Any]:
        return {
            "base_asset": self.base_asset.to_string(),
            "raise_asset": self.raise_asset.to_string(),
            "owner": self.owner,
            "amount": self.amount,
            "penalty_amount": self.penalty_amount,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "SellerDatum":
        return cls(
            base_asset=Asset.from_string(data["base_asset"]),
            raise_asset=Asset.from_string(data["raise_asset"]),
            owner=data["owner"],
            amount=int(data.get("amount", 0)),
            penalty_amount=int(data.get("penalty_amount", 0)),
        )


@dataclass(frozen=True)
class OrderDatum:
    base_asset: Asset
    raise_asset: Asset
    owner: str
    amount: int
    penalty_amount: int = 0
    is_collected: bool = False

    @property
    def event_id(self) -> str:
        return compute_event_id(self.base_asset, self.raise_asset)

    @property
    def fund(self) -> int:
        return self.amount + self.penalty_amount

    def to_dict(self) -> dict[str, Any]:
        return {
            "base_asset": self.base_asset.to_string(),
            "raise_asset": self.raise_asset.to_string(),
            "owner": self.owner,
            "amount": self.amount,
            "penalty_amount": self.penalty_amount,
            "is_collected": self.is_collected,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "OrderDatum":
        return cls(
            base_asset=Asset.from_string(data["base_asset"]),
            raise_asset=Asset.from_string(data["raise_asset"]),
            owner=data["owner"],
            amount=int(data["amount"]),
            penalty_amount=int(data.get("penalty_amount", 0)),
            is_collected=bool(data.get("is_collected", False)),
        )


# Factory lists are bounded by the lowest and highest possible identifiers.
FACTORY_HEAD = "00"
FACTORY_TAIL = "ff" * 33


@dataclass(frozen=True)
class FactoryDatum:
    """One link (head, tail) of a sorted identifier registry."""

    head: str
    tail: str

    def covers(self, identifier: str) -> bool:
        return self.head < identifier < self.tail

    def to_dict(self) -> dict[str, Any]:
        return {"head": self.head, "tail": self.tail}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "FactoryDatum":
        return cls(head=data["head"], tail=data["tail"])


@dataclass(frozen=True)
class PoolDatum:
    asset_a: Asset
    asset_b: Asset
    reserve_a: int
    reserve_b: int
    total_liquidity: int
    base_fee: int

    @property
    def event_id(self) -> str:
        return compute_event_id(self.asset_a, self.asset_b)

    def to_dict(self) -> dict[str, Any]:
        return {
            "asset_a": self.asset_a.to_string(),
            "asset_b": self.asset_b.to_string(),
            "reserve_a": self.reserve_a,
            "reserve_b": self.reserve_b,
            "total_liquidity": self.total_liquidity,
            "base_fee": self.base_fee,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "PoolDatum":
        return cls(
            asset_a=Asset.from_string(data["asset_a"]),
            asset_b=Asset.from_string(data["asset_b"]),
            reserve_a=int(data["reserve_a"]),
            reserve_b=int(data["reserve_b"]),
            total_liquidity=int(data["total_liquidity"]),
            base_fee=int(data["base_fee"]),
        )


class RecordKind(str, Enum):
    """Kinds of ledger records the protocol reads or writes."""

    FACTORY = "factory"
    TREASURY = "treasury"
    MANAGER = "manager"
    SELLER = "seller"
    ORDER = "order"
    AMM_FACTORY = "amm_factory"
    AMM_POOL = "amm_pool"
    PAYMENT = "payment"


DATUM_TYPES: dict[RecordKind, type] = {
    RecordKind.FACTORY: FactoryDatum,
    RecordKind.TREASURY: TreasuryDatum,
    RecordKind.MANAGER: ManagerDatum,
    RecordKind.SELLER: SellerDatum,
    RecordKind.ORDER: OrderDatum,
    RecordKind.AMM_FACTORY: FactoryDatum,
    RecordKind.AMM_POOL: PoolDatum,
}

SCRIPT_ADDRESSES: dict[RecordKind, str] = {
    RecordKind.FACTORY: "script:lbe_factory",
    RecordKind.TREASURY: "script:lbe_treasury",
    RecordKind.MANAGER: "script:lbe_manager",
    RecordKind.SELLER: "script:lbe_seller",
    RecordKind.ORDER: "script:lbe_order",
    RecordKind.AMM_FACTORY: "script:amm_factory",
    RecordKind.AMM_POOL: "script:amm_pool",
}

Datum = TreasuryDatum | ManagerDatum | SellerDatum | OrderDatum | FactoryDatum | PoolDatum


@dataclass(frozen=True, order=True)
class RecordRef:
    tx_id: str
    index: int

    def to_string(self) -> str:
        return f"{self.tx_id}#{self.index}"

    @classmethod
    def from_string(cls, value: str) -> "RecordRef":
        tx_id, _, index = value.rpartition("#")
        if not tx_id:
            raise ValueError(f"invalid record ref: {value!r}")
        return cls(tx_id=tx_id, index=int(index))


def _datum_to_dict(datum: Datum | None) -> dict[str, Any] | None:
    return datum.to_dict() if datum is not None else None


def _datum_from_dict(kind: RecordKind, data: Mapping[str, Any] | None) -> Datum | None:
    if data is None:
        return None
    return DATUM_TYPES[kind].from_dict(data)


@dataclass(frozen=True)
class Output:
    """A record about to be produced by a transition."""

    kind: RecordKind
    address: str
    value: Value
    datum: Datum | None = None

    @classmethod
    def script(cls, kind: RecordKind, value: Value, datum: Datum) -> "Output":
        return cls(kind=kind, address=SCRIPT_ADDRESSES[kind], value=value, datum=datum)

    @classmethod
    def payment(cls, address: str, value: Value) -> "Output":
        return cls(kind=RecordKind.PAYMENT, address=address, value=value)

    def at(self, ref: RecordRef) -> "Record":
        return Record(ref=ref, kind=self.kind, address=self.address, value=self.value, datum=self.datum)

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind.value,
            "address": self.address,
            "value": self.value.to_dict(),
            "datum": _datum_to_dict(self.datum),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Output":
        kind = RecordKind(data["kind"])
        return cls(
            kind=kind,
            address=data["address"],
            value=Value.from_dict(data.get("value", {})),
            datum=_datum_from_dict(kind, data.get("datum")),
        )


@dataclass(frozen=True)
class Record:
    """An unspent ledger record."""

    ref: RecordRef
    kind: RecordKind
    address: str
    value: Value
    datum: Datum | None = None

    @property
    def event_id(self) -> str | None:
        return getattr(self.datum, "event_id", None)

    def to_dict(self) -> dict[str, Any]:
        return {
            "ref": self.ref.to_string(),
            "kind": self.kind.value,
            "address": self.address,
            "value": self.value.to_dict(),
            "datum": _datum_to_dict(self.datum),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Record":
        kind = RecordKind(data["kind"])
        return cls(
            ref=RecordRef.from_string(data["ref"]),
            kind=kind,
            address=data["address"],
            value=Value.from_dict(data.get("value", {})),
            datum=_datum_from_dict(kind, data.get("datum")),
        )


def sort_records(records: Iterable[Record]) -> list[Record]:
    """Deterministic batch ordering by record reference."""
    return sorted(records, key=lambda record: record.ref)


class TransitionKind(str, Enum):
    CREATE_EVENT = "create_event"
    UPDATE_EVENT = "update_event"
    CANCEL_EVENT = "cancel_event"
    DEPOSIT_ORDER = "deposit_order"
    WITHDRAW_ORDER = "withdraw_order"
    ADD_SELLERS = "add_sellers"
    COUNTING_SELLERS = "counting_sellers"
    COLLECT_MANAGER = "collect_manager"
    COLLECT_ORDERS = "collect_orders"
    CREATE_AMM_POOL = "create_amm_pool"
    REDEEM_ORDERS = "redeem_orders"
    REFUND_ORDERS = "refund_orders"
    CLOSE_EVENT = "close_event"


@dataclass(frozen=True)
class Transition:
    """Unsubmitted ledger update: records consumed, outputs produced."""

    kind: TransitionKind
    event_id: str
    consumed: tuple[Record, ...]
    produced: tuple[Output, ...]
    valid_from: int
    valid_to: int
    references: tuple[Record, ...] = ()
    signers: tuple[str, ...] = ()
    metadata: dict[str, Any] = field(default_factory=dict)

    def produced_of(self, kind: RecordKind) -> list[Output]:
        return [output for output in self.produced if output.kind == kind]

    def summary(self) -> dict[str, Any]:
        """Compact description for logs and the worker journal."""
        return {
            "kind": self.kind.value,
            "event_id": self.event_id,
            "consumed": [record.ref.to_string() for record in self.consumed],
            "produced": len(self.produced),
            "valid_from": self.valid_from,
            "valid_to": self.valid_to,
        }


class CancelReason(str, Enum):
    CREATED_POOL = "created_pool"
    BY_OWNER = "by_owner"
    NOT_REACH_MINIMUM = "not_reach_minimum"


@dataclass(frozen=True)
class CancelRequest:
    reason: CancelReason
    owner: str | None = None
    amm_pool: Record | None = None

    @classmethod
    def by_owner(cls, owner: str) -> "CancelRequest":
        return cls(reason=CancelReason.BY_OWNER, owner=owner)

    @classmethod
    def not_reach_minimum(cls) -> "CancelRequest":
        return cls(reason=CancelReason.NOT_REACH_MINIMUM)

    @classmethod
    def created_pool(cls, amm_pool: Record) -> "CancelRequest":
        return cls(reason=CancelReason.CREATED_POOL, amm_pool=amm_pool)


@dataclass(frozen=True)
class OrderAction:
    type: Literal["deposit", "withdraw"]
    amount: int

    @classmethod
    def deposit(cls, amount: int) -> "OrderAction":
        return cls(type="deposit", amount=amount)

    @classmethod
    def withdraw(cls, amount: int) -> "OrderAction":
        return cls(type="withdraw", amount=amount)
