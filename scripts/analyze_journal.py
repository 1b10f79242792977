#!/usr/bin/env python3
"""Analyze the trade journal stored in an engine snapshot.

Usage:
    python scripts/analyze_journal.py --state data/battlecard_snapshot.json [--csv data/journal.csv]
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path

import numpy as np

sys.path.insert(0, str(Path(__file__).parent.parent))

from battlecard.core.data_types import LedgerEntry
from battlecard.database.ledger import Ledger
from battlecard.database.snapshot_store import SnapshotStore


def parse_args():
    parser = argparse.ArgumentParser(description="Analyze a Battle Card trade journal")
    parser.add_argument("--state", type=str, default="data/battlecard_snapshot.json",
                        help="Path to the engine snapshot JSON")
    parser.add_argument("--csv", type=str, default=None, help="Also export the journal to this CSV")
    return parser.parse_args()


def analyze(ledger: Ledger, starting_balance: float) -> dict:
    """Journal statistics plus per-scenario and per-exit breakdowns."""
    summary = ledger.summary(starting_balance)
    entries = ledger.entries
    if not entries:
        return {**summary, "message": "No closed trades in journal"}

    by_scenario: dict[str, dict] = {}
    for scenario in sorted({e.scenario_type.value for e in entries}):
        r = np.array([e.r_multiple for e in entries if e.scenario_type.value == scenario])
        by_scenario[scenario] = {
            "trades": int(r.size),
            "win_rate": float((r > 0).mean()),
            "avg_r": float(r.mean()),
        }

    exit_reasons: dict[str, int] = {}
    for e in entries:
        exit_reasons[e.exit_reason_text] = exit_reasons.get(e.exit_reason_text, 0) + 1

    # Sharpe approximation over per-trade returns
    returns = np.array([e.pnl_percent for e in entries])
    sharpe = float(returns.mean() / returns.std()) if returns.size > 1 and returns.std() > 0 else 0.0

    return {
        **summary,
        "by_entry_scenario": by_scenario,
        "exit_reasons": exit_reasons,
        "sharpe_per_trade": sharpe,
    }


def main():
    args = parse_args()

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(message)s",
    )

    store = SnapshotStore(args.state)
    payload = store.load()
    if payload is None:
        logging.error("Snapshot not found: %s", args.state)
        sys.exit(1)

    ledger = Ledger()
    ledger.restore([LedgerEntry.from_dict(e) for e in payload.get("ledger", [])])
    starting_balance = payload.get("settings", {}).get("starting_balance", 10_000.0)

    analysis = analyze(ledger, starting_balance)

    print("\n" + "=" * 60)
    print("  Battle Card — Journal Analysis Report")
    print("=" * 60)
    print(f"  Total trades:      {analysis['total_trades']}")

    if analysis["total_trades"] > 0:
        pf = analysis["profit_factor"]
        print(f"  Win rate:          {analysis['win_rate']:.1f}%")
        print(f"  Avg R-multiple:    {analysis['avg_r_multiple']:.2f}")
        print(f"  Profit factor:     {'n/a' if pf is None else f'{pf:.2f}'}")
        print(f"  Sharpe (per trade):{analysis['sharpe_per_trade']:>6.2f}")
        print(f"  Total PnL:         ${analysis['total_pnl']:,.2f}")
        print(f"  Balance:           ${analysis['balance']:,.2f}")
        print(f"  Max drawdown:      ${analysis['max_drawdown']:,.2f}")
        print(f"  Played as planned: {analysis['plan_accuracy']:.1f}%")
        print(f"\n  Actual Scenario:")
        for scenario, count in analysis["actual_scenarios"].items():
            print(f"    {scenario}: {count}")
        print(f"\n  Entry Scenario:")
        for scenario, stats in analysis["by_entry_scenario"].items():
            print(f"    {scenario}: {stats['trades']} trades, {stats['win_rate']:.0%} wins, {stats['avg_r']:+.2f}R avg")
        print(f"\n  Exit Reasons:")
        for reason, count in sorted(analysis["exit_reasons"].items()):
            print(f"    {reason}: {count}")
    else:
        print(f"  {analysis.get('message', 'No trades')}")

    print("=" * 60 + "\n")

    if args.csv:
        rows = ledger.export_csv(args.csv)
        print(f"Exported {rows} journal entries to {args.csv}")

    output_path = Path(args.state).parent / "journal_analysis.json"
    with open(output_path, "w") as f:
        json.dump(analysis, f, indent=2, default=str)
    print(f"Analysis saved to {output_path}")


if __name__ == "__main__":
    main()
