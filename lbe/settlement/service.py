"""Caller-facing operations for event owners and contributors."""

from __future__ import annotations

import random

import structlog

from lbe.config.settings import ProtocolConfig
from lbe.ledger.store import LedgerClient
from lbe.settlement.errors import EventNotFound, FactoryMismatch
from lbe.settlement.transitions import TransitionBuilder
from lbe.settlement.types import (
    CancelRequest,
    EventParameters,
    FactoryDatum,
    OrderAction,
    OrderDatum,
    ProjectDetails,
    Record,
    RecordKind,
    Transition,
)

log = structlog.get_logger(__name__)


class EventService:
    """Load the records an operation needs, build the transition and submit it."""

    def __init__(
        self,
        ledger: LedgerClient,
        builder: TransitionBuilder,
        protocol: ProtocolConfig,
        rng: random.Random | None = None,
    ) -> None:
        self.ledger = ledger
        self.builder = builder
        self.protocol = protocol
        self._rng = rng or random.Random()

    async def _submit(self, transition: Transition) -> str:
        tx_id = await self.ledger.submit(transition)
        log.info(
            "transition_submitted",
            tx_id=tx_id,
            kind=transition.kind.value,
            event_id=transition.event_id,
        )
        return tx_id

    async def _treasury(self, event_id: str) -> Record:
        records = await self.ledger.get_records(RecordKind.TREASURY, event_id)
        if not records:
            raise EventNotFound(f"no event with id {event_id}")
        return records[0]

    async def _manager(self, event_id: str) -> Record:
        records = await self.ledger.get_records(RecordKind.MANAGER, event_id)
        if not records:
            raise EventNotFound(f"event {event_id} has no manager record")
        return records[0]

    async def _owner_orders(self, event_id: str, owner: str) -> list[Record]:
        orders = await self.ledger.get_records(RecordKind.ORDER, event_id)
        result = []
        for record in orders:
            datum: OrderDatum = record.datum  # type: ignore[assignment]
            if datum.owner == owner and not datum.is_collected:
                result.append(record)
        return result

    async def _pick_seller(self, event_id: str) -> Record:
        sellers = await self.ledger.get_records(RecordKind.SELLER, event_id)
        if not sellers:
            raise EventNotFound(f"event {event_id} has no seller records")
        # Spread concurrent contributors over shards.
        return self._rng.choice(sellers)

    async def create_event(
        self,
        params: EventParameters,
        seller_count: int | None = None,
        details: ProjectDetails | None = None,
    ) -> str:
        event_id = params.event_id
        factories = await self.ledger.get_records(RecordKind.FACTORY)
        factory = next(
            (record for record in factories if isinstance(record.datum, FactoryDatum) and record.datum.covers(event_id)),
            None,
        )
        if factory is None:
            raise FactoryMismatch(f"no factory entry can register event {event_id}")
        now = await self.ledger.current_protocol_time()
        transition = self.builder.create_event(factory, params, now, seller_count, details)
        return await self._submit(transition)

    async def update_event(
        self,
        event_id: str,
        owner: str,
        params: EventParameters,
        details: ProjectDetails | None = None,
    ) -> str:
        treasury = await self._treasury(event_id)
        now = await self.ledger.current_protocol_time()
        return await self._submit(self.builder.update_event(treasury, owner, params, now, details))

    async def cancel_event(self, event_id: str, owner: str) -> str:
        treasury = await self._treasury(event_id)
        now = await self.ledger.current_protocol_time()
        transition = self.builder.cancel_event(treasury, CancelRequest.by_owner(owner), now)
        return await self._submit(transition)

    async def _order(self, event_id: str, owner: str, action: OrderAction) -> str:
        treasury = await self._treasury(event_id)
        seller = await self._pick_seller(event_id)
        orders = await self._owner_orders(event_id, owner)
        now = await self.ledger.current_protocol_time()
        transition = self.builder.deposit_or_withdraw(treasury, seller, orders, owner, action, now)
        return await self._submit(transition)

    async def deposit(self, event_id: str, owner: str, amount: int) -> str:
        return await self._order(event_id, owner, OrderAction.deposit(amount))

    async def withdraw(self, event_id: str, owner: str, amount: int) -> str:
        return await self._order(event_id, owner, OrderAction.withdraw(amount))

    async def add_sellers(self, event_id: str, count: int, seller_owner: str) -> str:
        treasury = await self._treasury(event_id)
        manager = await self._manager(event_id)
        now = await self.ledger.current_protocol_time()
        transition = self.builder.add_sellers(treasury, manager, count, seller_owner, now)
        return await self._submit(transition)

    async def close_event(self, event_id: str, owner: str) -> str:
        treasury = await self._treasury(event_id)
        factories = await self.ledger.get_records(RecordKind.FACTORY)
        head = next((r for r in factories if r.datum.tail == event_id), None)  # type: ignore[union-attr]
        tail = next((r for r in factories if r.datum.head == event_id), None)  # type: ignore[union-attr]
        if head is None or tail is None:
            raise FactoryMismatch(f"factory entries for event {event_id} not found")
        now = await self.ledger.current_protocol_time()
        return await self._submit(self.builder.close_event(treasury, head, tail, owner, now))
