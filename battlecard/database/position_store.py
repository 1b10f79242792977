"""Position Store — open/closed simulated positions, indexed by plan."""

from __future__ import annotations

import logging
import threading

from battlecard.core.data_types import Position
from battlecard.core.errors import InvariantViolation, PositionNotFound

logger = logging.getLogger(__name__)


class PositionStore:
    """At most one open position per plan.

    ``add`` refuses a second open position outright. Data restored from a
    snapshot may still carry duplicates; ``open_for_plan`` then raises in
    strict mode and otherwise keeps the earliest one.
    """

    def __init__(self, strict: bool = False) -> None:
        self._positions: dict[str, Position] = {}
        self._lock = threading.RLock()
        self._strict = strict

    def add(self, position: Position) -> None:
        with self._lock:
            if position.is_open and self._open_for(position.plan_id):
                raise InvariantViolation(f"Plan {position.plan_id} already has an open position")
            self._positions[position.id] = position

    def restore(self, position: Position) -> None:
        """Insert without the open-position check (snapshot restore)."""
        with self._lock:
            self._positions[position.id] = position

    def update(self, position: Position) -> None:
        with self._lock:
            if position.id not in self._positions:
                raise PositionNotFound(position.id)
            self._positions[position.id] = position

    def get(self, position_id: str) -> Position:
        with self._lock:
            pos = self._positions.get(position_id)
        if pos is None:
            raise PositionNotFound(position_id)
        return pos

    def find(self, position_id: str) -> Position | None:
        with self._lock:
            return self._positions.get(position_id)

    def _open_for(self, plan_id: str) -> list[Position]:
        return [p for p in self._positions.values() if p.plan_id == plan_id and p.is_open]

    def open_for_plan(self, plan_id: str) -> Position | None:
        with self._lock:
            open_positions = self._open_for(plan_id)
        if not open_positions:
            return None
        if len(open_positions) > 1:
            if self._strict:
                raise InvariantViolation(
                    f"Plan {plan_id} has {len(open_positions)} open positions"
                )
            logger.warning(
                "Plan %s has %d open positions, using the earliest and ignoring the rest",
                plan_id,
                len(open_positions),
            )
        return min(open_positions, key=lambda p: p.opened_at)

    def open_positions(self) -> list[Position]:
        with self._lock:
            return [p for p in self._positions.values() if p.is_open]

    def closed_positions(self) -> list[Position]:
        with self._lock:
            return [p for p in self._positions.values() if not p.is_open]

    def for_plan(self, plan_id: str) -> list[Position]:
        with self._lock:
            return [p for p in self._positions.values() if p.plan_id == plan_id]

    def all(self) -> list[Position]:
        with self._lock:
            return list(self._positions.values())

    def clear(self) -> None:
        with self._lock:
            self._positions.clear()

    def __len__(self) -> int:
        return len(self._positions)
