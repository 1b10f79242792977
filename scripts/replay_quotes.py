#!/usr/bin/env python3
"""Replay a CSV of quotes through the engine and print what it did.

CSV columns: instrument, price[, high_24h, low_24h]. Plans come from a
snapshot (``--state``), which is updated in place unless ``--dry-run``.

Usage:
    python scripts/replay_quotes.py --quotes data/btc_ticks.csv --state data/battlecard_snapshot.json
"""

from __future__ import annotations

import argparse
import csv
import logging
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

from battlecard.config.config_manager import ConfigManager
from battlecard.database.snapshot_store import SnapshotStore
from battlecard.engine.scenario_engine import ScenarioEngine


def parse_args():
    parser = argparse.ArgumentParser(description="Replay quotes through the Battle Card engine")
    parser.add_argument("--quotes", type=str, required=True, help="CSV of instrument,price[,high_24h,low_24h]")
    parser.add_argument("--state", type=str, required=True, help="Snapshot JSON holding the plans")
    parser.add_argument("--profile", type=str, default=None, help="Config profile")
    parser.add_argument("--dry-run", action="store_true", help="Do not write the snapshot back")
    return parser.parse_args()


def _opt(row: dict, key: str) -> float | None:
    value = row.get(key)
    return float(value) if value not in (None, "") else None


def replay(engine: ScenarioEngine, quotes_path: Path) -> list[dict]:
    actions: list[dict] = []
    with open(quotes_path, newline="") as f:
        for row in csv.DictReader(f):
            actions.extend(engine.on_price_update(
                row["instrument"],
                float(row["price"]),
                _opt(row, "high_24h"),
                _opt(row, "low_24h"),
            ))
    return actions


def main():
    args = parse_args()

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

    quotes_path = Path(args.quotes)
    if not quotes_path.exists():
        logging.error("Quotes file not found: %s", quotes_path)
        sys.exit(1)

    config = ConfigManager()
    config.load(profile=args.profile)
    config.set("persistence.snapshot_path", "")
    engine = ScenarioEngine.from_config(config)

    store = SnapshotStore(args.state)
    payload = store.load()
    if payload is None:
        logging.error("Snapshot not found: %s", args.state)
        sys.exit(1)
    engine.restore_state(payload)

    actions = replay(engine, quotes_path)

    print("\n" + "=" * 60)
    print("  Battle Card — Quote Replay")
    print("=" * 60)
    print(f"  Quotes processed:  {engine.ticks}")
    print(f"  Actions taken:     {len(actions)}")
    for action in actions:
        detail = ", ".join(f"{k}={v}" for k, v in action.items() if k != "action")
        print(f"    {action['action']:<16} {detail}")
    account = engine.account()
    print(f"\n  Balance:           ${account['balance']:,.2f}")
    print(f"  Unrealized P&L:    ${account['unrealized_pnl']:,.2f}")
    print(f"  Open positions:    {account['open_positions']}")
    print("=" * 60 + "\n")

    if not args.dry_run:
        store.save_now(engine.export_state())
        print(f"Snapshot updated: {store.path}")


if __name__ == "__main__":
    main()
