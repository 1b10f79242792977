"""Ledger — append-only trade journal built from closed positions.

Entries are never edited except to attach lessons-learned notes. Summary
statistics are derived on read.
"""

from __future__ import annotations

import csv
import logging
import threading
from pathlib import Path

import numpy as np

from battlecard.core.data_types import LedgerEntry
from battlecard.core.errors import LedgerEntryNotFound
from battlecard.core.types import SCENARIO_ORDER, Outcome

logger = logging.getLogger(__name__)


class Ledger:
    def __init__(self) -> None:
        self._entries: list[LedgerEntry] = []  # chronological
        self._lock = threading.Lock()

    def append(self, entry: LedgerEntry) -> None:
        with self._lock:
            if any(e.position_id == entry.position_id for e in self._entries):
                logger.warning("Position %s already journaled, ignoring duplicate", entry.position_id)
                return
            self._entries.append(entry)
        logger.info(
            "Journal: %s %s %s pnl=%.2f r=%.2f",
            entry.instrument,
            entry.direction.value,
            entry.exit_reason.value,
            entry.pnl,
            entry.r_multiple,
        )

    @property
    def entries(self) -> list[LedgerEntry]:
        """Newest first."""
        with self._lock:
            return list(reversed(self._entries))

    def get(self, entry_id: str) -> LedgerEntry:
        with self._lock:
            for entry in self._entries:
                if entry.id == entry_id:
                    return entry
        raise LedgerEntryNotFound(entry_id)

    def add_note(self, entry_id: str, note: str) -> LedgerEntry:
        """Attach lessons-learned text. The only mutation a journal entry accepts."""
        with self._lock:
            for i, entry in enumerate(self._entries):
                if entry.id == entry_id:
                    updated = entry.with_lessons(note)
                    self._entries[i] = updated
                    return updated
        raise LedgerEntryNotFound(entry_id)

    def filter(self, outcome: Outcome | None = None, query: str | None = None) -> list[LedgerEntry]:
        """Newest-first entries matching an outcome and a case-insensitive text query."""
        result = self.entries
        if outcome is not None:
            result = [e for e in result if e.outcome == outcome]
        if query:
            q = query.lower()
            result = [
                e for e in result
                if q in e.instrument.lower() or q in e.thesis.lower() or q in e.scenario_name.lower()
            ]
        return result

    def total_pnl(self) -> float:
        with self._lock:
            return float(sum(e.pnl for e in self._entries))

    def balance(self, starting_balance: float) -> float:
        return starting_balance + self.total_pnl()

    def summary(self, starting_balance: float = 0.0) -> dict:
        """Account statistics over all journaled trades."""
        with self._lock:
            entries = list(self._entries)

        if not entries:
            return {
                "total_trades": 0,
                "wins": 0,
                "losses": 0,
                "breakeven": 0,
                "win_rate": 0.0,
                "total_pnl": 0.0,
                "avg_r_multiple": 0.0,
                "profit_factor": None,
                "max_drawdown": 0.0,
                "balance": starting_balance,
                "actual_scenarios": {t.value: 0 for t in SCENARIO_ORDER},
                "plan_accuracy": 0.0,
            }

        pnl = np.array([e.pnl for e in entries], dtype=np.float64)
        r = np.array([e.r_multiple for e in entries], dtype=np.float64)

        gross_profit = float(pnl[pnl > 0].sum())
        gross_loss = float(-pnl[pnl < 0].sum())
        if gross_loss > 0:
            profit_factor = gross_profit / gross_loss
        else:
            profit_factor = None

        equity = starting_balance + np.cumsum(pnl)
        peak = np.maximum.accumulate(np.concatenate(([starting_balance], equity)))[1:]
        max_drawdown = float(np.max(peak - equity))

        wins = int((pnl > 0).sum())
        losses = int((pnl < 0).sum())
        actual = {t.value: 0 for t in SCENARIO_ORDER}
        for e in entries:
            actual[e.actual_scenario.value] += 1
        played_as_planned = sum(1 for e in entries if e.actual_scenario == e.scenario_type)

        return {
            "total_trades": len(entries),
            "wins": wins,
            "losses": losses,
            "breakeven": len(entries) - wins - losses,
            "win_rate": wins / len(entries) * 100,
            "total_pnl": float(pnl.sum()),
            "avg_r_multiple": float(r.mean()),
            "profit_factor": profit_factor,
            "max_drawdown": max_drawdown,
            "balance": starting_balance + float(pnl.sum()),
            "actual_scenarios": actual,
            "plan_accuracy": played_as_planned / len(entries) * 100,
        }

    def export_csv(self, path: str | Path) -> int:
        """Write the journal (newest first) to CSV. Returns rows written."""
        entries = self.entries
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        fieldnames = list(LedgerEntry.__dataclass_fields__)
        with open(path, "w", newline="", encoding="utf-8") as f:
            writer = csv.DictWriter(f, fieldnames=fieldnames)
            writer.writeheader()
            for entry in entries:
                writer.writerow(entry.to_dict())
        logger.info("Exported %d journal entries to %s", len(entries), path)
        return len(entries)

    def restore(self, entries: list[LedgerEntry]) -> None:
        """Replace contents with chronological ``entries`` (snapshot restore)."""
        with self._lock:
            self._entries = sorted(entries, key=lambda e: e.exit_time)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)
