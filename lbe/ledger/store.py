"""Local record ledger: append-only transaction log replayed into an unspent set."""

from __future__ import annotations

import asyncio
import os
from pathlib import Path
from typing import Any, Iterable, Protocol
from uuid import uuid4

import orjson
import structlog

from lbe.ledger.clock import SlotClock
from lbe.settlement.errors import LedgerConflict, LedgerRejected, LedgerUnavailable
from lbe.settlement.types import Output, Record, RecordKind, RecordRef, Transition, sort_records

log = structlog.get_logger(__name__)

GENESIS = "genesis"


class LedgerClient(Protocol):
    """What the settlement layer needs from a ledger."""

    async def get_records(self, kind: RecordKind, event_id: str | None = None) -> list[Record]:
        ...

    async def submit(self, transition: Transition) -> str:
        ...

    async def current_protocol_time(self) -> int:
        ...


class RecordLedger:
    """File-backed ledger with tip tracking and double-spend rejection."""

    def __init__(self, ledger_path: str, clock: SlotClock) -> None:
        self.ledger_path = Path(ledger_path)
        self.ledger_path.mkdir(parents=True, exist_ok=True)
        self.transactions_file = self.ledger_path / "transactions.jsonl"
        self.tip_file = self.ledger_path / "tip.txt"
        self.clock = clock
        self._unspent: dict[RecordRef, Record] = {}
        self._lock = asyncio.Lock()
        self._tip_slot = 0
        self._transaction_count = 0
        last_slot = self._replay()
        self._tip_slot = max(self._load_tip(), last_slot)

    def _load_tip(self) -> int:
        if not self.tip_file.exists():
            return 0
        try:
            return int(self.tip_file.read_text().strip())
        except ValueError:
            return 0

    def _persist_tip(self) -> None:
        self.tip_file.write_text(str(self._tip_slot))

    def _replay(self) -> int:
        last_slot = 0
        for entry in self.iter_transactions():
            self._apply(entry)
            last_slot = max(last_slot, int(entry.get("slot", 0)))
        if self._transaction_count:
            log.info(
                "ledger_replayed",
                transactions=self._transaction_count,
                unspent=len(self._unspent),
            )
        return last_slot

    def _apply(self, entry: dict[str, Any]) -> None:
        tx_id = entry["tx_id"]
        for ref in entry.get("consumed", []):
            self._unspent.pop(RecordRef.from_string(ref), None)
        for index, data in enumerate(entry.get("produced", [])):
            output = Output.from_dict(data)
            if output.kind == RecordKind.PAYMENT:
                continue
            ref = RecordRef(tx_id=tx_id, index=index)
            self._unspent[ref] = output.at(ref)
        self._transaction_count += 1

    def _write(self, entry: dict[str, Any]) -> None:
        try:
            with open(self.transactions_file, "ab") as handle:
                handle.write(orjson.dumps(entry) + b"\n")
                handle.flush()
                os.fsync(handle.fileno())
        except OSError as exc:
            raise LedgerUnavailable(f"failed to append transaction: {exc}") from exc

    def iter_transactions(self) -> Iterable[dict[str, Any]]:
        """Iterate confirmed transactions in submission order."""
        if not self.transactions_file.exists():
            return iter(())

        def _iter() -> Iterable[dict[str, Any]]:
            with open(self.transactions_file, "rb") as handle:
                for line in handle:
                    if not line.strip():
                        continue
                    yield orjson.loads(line)

        return _iter()

    @property
    def tip_slot(self) -> int:
        return self._tip_slot

    @property
    def transaction_count(self) -> int:
        return self._transaction_count

    def advance_to_slot(self, slot: int) -> int:
        """Move the tip forward. The tip never moves backwards."""
        if slot > self._tip_slot:
            self._tip_slot = slot
            self._persist_tip()
        return self._tip_slot

    def advance_to_time(self, unix_time_ms: int) -> int:
        return self.advance_to_slot(self.clock.unix_time_to_slot(unix_time_ms))

    def genesis(self, outputs: Iterable[Output]) -> str:
        """Record bootstrap outputs that consume nothing."""
        produced = list(outputs)
        tx_id = uuid4().hex
        entry = {
            "tx_id": tx_id,
            "kind": GENESIS,
            "event_id": None,
            "slot": self._tip_slot,
            "consumed": [],
            "produced": [output.to_dict() for output in produced],
            "metadata": {},
        }
        self._write(entry)
        self._apply(entry)
        log.info("ledger_genesis", tx_id=tx_id, outputs=len(produced))
        return tx_id

    async def current_protocol_time(self) -> int:
        return self.clock.slot_to_unix_time(self._tip_slot)

    async def get_records(self, kind: RecordKind, event_id: str | None = None) -> list[Record]:
        records = [
            record
            for record in self._unspent.values()
            if record.kind == kind and (event_id is None or record.event_id == event_id)
        ]
        return sort_records(records)

    def get_record(self, ref: RecordRef) -> Record | None:
        return self._unspent.get(ref)

    async def submit(self, transition: Transition) -> str:
        async with self._lock:
            now = self.clock.slot_to_unix_time(self._tip_slot)
            if not transition.valid_from <= now <= transition.valid_to:
                raise LedgerRejected(
                    f"protocol time {now} outside validity range "
                    f"[{transition.valid_from}, {transition.valid_to}]"
                )
            missing = [
                record.ref.to_string()
                for record in (*transition.consumed, *transition.references)
                if record.ref not in self._unspent
            ]
            if missing:
                raise LedgerConflict(f"records already spent: {', '.join(missing)}", refs=missing)

            tx_id = uuid4().hex
            entry = {
                "tx_id": tx_id,
                "kind": transition.kind.value,
                "event_id": transition.event_id,
                "slot": self._tip_slot,
                "consumed": [record.ref.to_string() for record in transition.consumed],
                "references": [record.ref.to_string() for record in transition.references],
                "produced": [output.to_dict() for output in transition.produced],
                "signers": list(transition.signers),
                "metadata": transition.metadata,
            }
            self._write(entry)
            self._apply(entry)
            return tx_id
