"""CLI to print every open event with its current phase."""

from __future__ import annotations

import argparse
import asyncio

import orjson

from lbe.config.settings import load_settings
from lbe.ledger import RecordLedger, SlotClock
from lbe.settlement.aggregate import fetch_events
from lbe.settlement.errors import ValidationFailure
from lbe.settlement.phase import classify


async def collect_events(ledger: RecordLedger, minimum_liquidity: int) -> list[dict]:
    now = await ledger.current_protocol_time()
    rows = []
    for aggregate in await fetch_events(ledger):
        row = aggregate.summary()
        try:
            row["phase"] = classify(aggregate, now, minimum_liquidity).value
        except ValidationFailure as exc:
            row["phase"] = None
            row["error"] = str(exc)
        rows.append(row)
    return rows


def main() -> None:
    parser = argparse.ArgumentParser(description="Show open LBE events and their settlement phase.")
    parser.add_argument("--config", default=None, help="Path to config.yaml")
    parser.add_argument("--json", action="store_true", help="Print one JSON object per event")
    args = parser.parse_args()

    settings = load_settings(args.config)
    ledger = RecordLedger(settings.storage.ledger_path, SlotClock.from_config(settings.network))
    rows = asyncio.run(collect_events(ledger, settings.protocol.minimum_liquidity))
    if not rows:
        print("No open events.")
        return
    for row in rows:
        if args.json:
            print(orjson.dumps(row).decode())
        else:
            print(
                f"{row['event_id'][:16]}  phase={row['phase']}  "
                f"collected={row['collected_fund']}  remaining={row['remaining_to_collect']}  "
                f"cancelled={row['is_cancelled']}"
            )


if __name__ == "__main__":
    main()
