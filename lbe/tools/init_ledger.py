"""CLI to bootstrap a local ledger with the factory registries."""

from __future__ import annotations

import argparse
from pathlib import Path

from lbe.config.settings import create_default_config, load_settings
from lbe.ledger import RecordLedger, SlotClock
from lbe.settlement.types import FACTORY_HEAD, FACTORY_TAIL, FactoryDatum, Output, RecordKind, Value


def genesis_outputs() -> list[Output]:
    """One open (head, tail) entry for the event registry and one for the AMM pool registry."""
    return [
        Output.script(RecordKind.FACTORY, Value(), FactoryDatum(head=FACTORY_HEAD, tail=FACTORY_TAIL)),
        Output.script(RecordKind.AMM_FACTORY, Value(), FactoryDatum(head=FACTORY_HEAD, tail=FACTORY_TAIL)),
    ]


def init_ledger(ledger: RecordLedger, slot: int | None = None) -> str | None:
    """Seed the registries unless the ledger already holds them. Returns the genesis tx id."""
    if slot is not None:
        ledger.advance_to_slot(slot)
    if ledger.transaction_count:
        return None
    return ledger.genesis(genesis_outputs())


def main() -> None:
    parser = argparse.ArgumentParser(description="Initialise a local LBE ledger.")
    parser.add_argument("--config", default=None, help="Path to config.yaml")
    parser.add_argument("--slot", type=int, default=None, help="Initial tip slot")
    parser.add_argument(
        "--write-config",
        action="store_true",
        help="Write a default config.yaml first if none exists",
    )
    args = parser.parse_args()

    config_path = Path(args.config or "config.yaml")
    if args.write_config and not config_path.exists():
        create_default_config(config_path)
        print(f"Wrote default configuration to {config_path}")

    settings = load_settings(config_path)
    ledger = RecordLedger(settings.storage.ledger_path, SlotClock.from_config(settings.network))
    tx_id = init_ledger(ledger, args.slot)
    if tx_id is None:
        print(f"Ledger at {settings.storage.ledger_path} already initialised (tip slot {ledger.tip_slot}).")
    else:
        print(f"Seeded factory registries in {tx_id} (tip slot {ledger.tip_slot}).")


if __name__ == "__main__":
    main()
