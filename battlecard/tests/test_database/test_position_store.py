"""Tests for PositionStore — one open position per plan."""

from dataclasses import replace
from datetime import datetime, timedelta, timezone

import pytest

from battlecard.core.data_types import Position
from battlecard.core.errors import InvariantViolation, PositionNotFound
from battlecard.core.types import PositionStatus, ScenarioType, TradeDirection
from battlecard.database.position_store import PositionStore

T0 = datetime(2026, 1, 5, 9, 0, tzinfo=timezone.utc)


def make_position(pos_id="pos-1", plan_id="plan-1", opened_at=T0, **overrides):
    defaults = dict(
        id=pos_id,
        plan_id=plan_id,
        scenario_type=ScenarioType.A,
        scenario_name="Primary",
        instrument="BTC/USDT",
        timeframe="4H",
        thesis="",
        direction=TradeDirection.LONG,
        entry_price=100.0,
        opened_at=opened_at,
        size=1000.0,
        leverage=5.0,
        stop_loss=95.0,
        target1=110.0,
    )
    defaults.update(overrides)
    return Position(**defaults)


class TestPositionStore:
    def test_add_and_get(self):
        store = PositionStore()
        store.add(make_position())
        assert store.get("pos-1").plan_id == "plan-1"
        assert store.open_for_plan("plan-1").id == "pos-1"
        assert store.open_for_plan("plan-2") is None

    def test_second_open_position_refused(self):
        store = PositionStore()
        store.add(make_position())
        with pytest.raises(InvariantViolation):
            store.add(make_position("pos-2"))

    def test_new_position_after_close(self):
        store = PositionStore()
        store.add(make_position())
        store.update(replace(store.get("pos-1"), status=PositionStatus.CLOSED, exit_price=110.0))
        store.add(make_position("pos-2"))
        assert store.open_for_plan("plan-1").id == "pos-2"
        assert [p.id for p in store.closed_positions()] == ["pos-1"]
        assert len(store.for_plan("plan-1")) == 2

    def test_unknown(self):
        store = PositionStore()
        with pytest.raises(PositionNotFound):
            store.get("missing")
        with pytest.raises(PositionNotFound):
            store.update(make_position("missing"))
        assert store.find("missing") is None

    def test_restored_duplicates_lenient(self):
        store = PositionStore()
        store.restore(make_position("late", opened_at=T0 + timedelta(minutes=5)))
        store.restore(make_position("early"))
        assert store.open_for_plan("plan-1").id == "early"

    def test_restored_duplicates_strict(self):
        store = PositionStore(strict=True)
        store.restore(make_position("a"))
        store.restore(make_position("b"))
        with pytest.raises(InvariantViolation):
            store.open_for_plan("plan-1")

    def test_clear(self):
        store = PositionStore()
        store.add(make_position())
        store.clear()
        assert len(store) == 0
        assert store.open_positions() == []
