"""Tests for ScenarioEngine — tick orchestration, manual actions, persistence."""

import pytest

from battlecard.config.settings import EngineSettings, SettingsStore
from battlecard.core.errors import InvalidTransition, MissingQuote, PlanNotFound
from battlecard.core.types import ExitReason, PlanStatus, ScenarioType
from battlecard.database.ledger import Ledger
from battlecard.database.plan_store import PlanStore
from battlecard.database.position_store import PositionStore
from battlecard.database.snapshot_store import SnapshotStore
from battlecard.engine.scenario_engine import ScenarioEngine


class TestTick:
    def test_symbol_normalised(self, engine, sample_plan):
        actions = engine.on_price_update("BTCUSDT", 100.0)
        assert [a["action"] for a in actions] == ["open_position"]
        assert engine.quote_for("BTC/USDT").price == 100.0

    def test_missing_quote_skips_plan(self, engine, sample_plan):
        assert engine.on_price_update("ETHUSDT", 100.0) == []
        assert engine.positions.open_positions() == []

    def test_master_switch(self, engine, sample_plan, settings_store):
        settings_store.update(enabled=False)
        assert engine.on_price_update("BTCUSDT", 100.0) == []
        assert engine.ticks == 0
        assert engine.positions.open_positions() == []

    @pytest.mark.parametrize("price", [0.0, -1.0, float("nan")])
    def test_invalid_price_ignored(self, engine, sample_plan, price):
        assert engine.on_price_update("BTCUSDT", price) == []
        assert engine.quote_for("BTCUSDT") is None

    def test_draft_plan_not_evaluated(self, engine, make_plan):
        make_plan(activate=False)
        assert engine.on_price_update("BTCUSDT", 100.0) == []

    def test_full_cycle_to_target(self, engine, sample_plan):
        engine.on_price_update("BTCUSDT", 100.0)
        engine.on_price_update("BTCUSDT", 105.0)
        actions = engine.on_price_update("BTCUSDT", 110.0)
        assert actions[0]["reason"] == "target1_hit"
        assert engine.plans.get(sample_plan.id).status == PlanStatus.COMPLETED
        # Completed plans are no longer evaluated
        assert engine.on_price_update("BTCUSDT", 100.0) == []

    def test_flags_of_deleted_plans_collected(self, engine, sample_plan):
        engine.on_price_update("BTCUSDT", 100.0)
        assert len(engine.actions) > 0
        engine.plans.delete_plan(sample_plan.id)
        engine.on_price_update("BTCUSDT", 100.0)
        assert len(engine.actions) == 0

    def test_thread_pool_evaluates_every_plan(self, clock, settings_store, scenarios):
        engine = ScenarioEngine(
            plans=PlanStore(clock=clock),
            positions=PositionStore(),
            ledger=Ledger(),
            settings=settings_store,
            clock=clock,
            max_workers=4,
        )
        try:
            for _ in range(6):
                plan = engine.plans.create_plan("SOL/USDT", "1H", "", scenarios())
                engine.plans.save_plan(plan)
            actions = engine.on_price_update("SOLUSDT", 100.0)
            assert len(actions) == 6
            assert len(engine.positions.open_positions()) == 6
        finally:
            engine.close()


    def test_one_position_per_plan_across_ticks(self, clock, settings_store, scenarios):
        engine = ScenarioEngine(
            plans=PlanStore(strict=True, clock=clock),
            positions=PositionStore(strict=True),
            ledger=Ledger(),
            settings=settings_store,
            clock=clock,
            max_workers=8,
        )
        try:
            plan_ids = []
            for _ in range(50):
                plan = engine.plans.save_plan(engine.plans.create_plan("SOL/USDT", "1H", "", scenarios()))
                plan_ids.append(plan.id)
            # A triggers, A and B re-trigger while open, then target 1
            for price in (101.5, 100.0, 100.1, 97.0, 99.9, 100.0, 110.0, 100.0, 97.0):
                engine.on_price_update("SOLUSDT", price)
                clock.advance(minutes=1)
                for plan_id in plan_ids:
                    assert sum(p.is_open for p in engine.positions.for_plan(plan_id)) <= 1

            assert all(len(engine.positions.for_plan(plan_id)) == 1 for plan_id in plan_ids)
            assert len(engine.ledger) == 50
            assert {e.plan_id for e in engine.ledger.entries} == set(plan_ids)
        finally:
            engine.close()

class TestReadSide:
    def test_readings_need_quote(self, engine, sample_plan):
        assert engine.trigger_readings(sample_plan.id) == []
        assert engine.closest_scenario(sample_plan.id) is None

    def test_readings(self, engine, sample_plan):
        engine.settings.update(auto_execute_on_trigger=False)
        engine.on_price_update("BTCUSDT", 97.2)
        readings = engine.trigger_readings(sample_plan.id)
        assert len(readings) == 4
        assert engine.closest_scenario(sample_plan.id).scenario_type == ScenarioType.B

    def test_unknown_plan(self, engine):
        with pytest.raises(PlanNotFound):
            engine.trigger_readings("missing")

    def test_live_and_unrealized_pnl(self, engine, sample_plan):
        engine.on_price_update("BTCUSDT", 100.0)
        engine.on_price_update("BTCUSDT", 102.0)
        pos = engine.positions.open_for_plan(sample_plan.id)
        snap = engine.live_pnl(pos.id)
        assert snap.pnl == pytest.approx(100.0)
        assert snap.r_multiple == pytest.approx(0.4)
        assert engine.unrealized_pnl() == pytest.approx(100.0)

    def test_account(self, engine, sample_plan):
        engine.on_price_update("BTCUSDT", 100.0)
        engine.on_price_update("BTCUSDT", 110.0)
        account = engine.account()
        assert account["balance"] == pytest.approx(10_500.0)
        assert account["unrealized_pnl"] == 0.0
        assert account["stats"]["wins"] == 1


class TestManualActions:
    def test_close_manual_uses_last_quote(self, engine, sample_plan):
        engine.on_price_update("BTCUSDT", 100.0)
        engine.on_price_update("BTCUSDT", 103.0)
        pos = engine.positions.open_for_plan(sample_plan.id)
        entry = engine.close_position_manual(pos.id)
        assert entry.exit_price == 103.0
        assert entry.exit_reason == ExitReason.MANUAL
        assert engine.plans.get(sample_plan.id).status == PlanStatus.CLOSED
        assert engine.close_position_manual(pos.id) is None

    def test_close_manual_without_quote(self, engine, sample_plan, settings_store):
        pos = engine.lifecycle.open_position(
            sample_plan, sample_plan.scenario(ScenarioType.A), 100.0, settings_store.current
        )
        with pytest.raises(MissingQuote):
            engine.close_position_manual(pos.id)
        assert engine.close_position_manual(pos.id, price=101.0).exit_price == 101.0

    def test_close_plan_completed(self, engine, sample_plan):
        engine.on_price_update("BTCUSDT", 100.0)
        engine.on_price_update("BTCUSDT", 106.0)
        plan = engine.close_plan(sample_plan.id, PlanStatus.COMPLETED)
        assert plan.status == PlanStatus.COMPLETED
        assert plan.closed_at is not None
        assert engine.ledger.entries[0].exit_reason == ExitReason.MANUAL
        assert engine.positions.open_positions() == []

    def test_close_plan_without_position(self, engine, sample_plan):
        assert engine.close_plan(sample_plan.id).status == PlanStatus.CLOSED
        assert len(engine.ledger) == 0

    def test_close_plan_bad_outcome(self, engine, sample_plan):
        with pytest.raises(InvalidTransition):
            engine.close_plan(sample_plan.id, PlanStatus.MONITORING)

    def test_delete_plan_closes_position(self, engine, sample_plan):
        engine.on_price_update("BTCUSDT", 100.0)
        engine.on_price_update("BTCUSDT", 99.0)
        engine.delete_plan(sample_plan.id)
        assert engine.plans.find(sample_plan.id) is None
        assert engine.positions.open_positions() == []
        assert engine.ledger.entries[0].exit_price == 99.0
        assert engine.actions.fired(sample_plan.id) == frozenset()

    def test_amend_position(self, engine, sample_plan):
        engine.on_price_update("BTCUSDT", 100.0)
        pos = engine.positions.open_for_plan(sample_plan.id)
        engine.amend_position(pos.id, stop_loss=99.0)
        actions = engine.on_price_update("BTCUSDT", 98.9)
        assert actions[0]["reason"] == "stop_hit"

    def test_reset_account(self, engine, sample_plan):
        engine.on_price_update("BTCUSDT", 100.0)
        engine.reset_account()
        assert len(engine.positions) == 0
        assert len(engine.ledger) == 0
        assert len(engine.actions) == 0
        assert engine.plans.get(sample_plan.id).status == PlanStatus.ACTIVE
        assert engine.account()["balance"] == 10_000.0


class TestPersistence:
    def test_export_restore(self, engine, sample_plan, clock, settings_store):
        engine.on_price_update("BTCUSDT", 100.0)
        engine.on_price_update("BTCUSDT", 95.0)
        make_other = engine.plans.create_plan("ETH/USDT", "1D", "", sample_plan.scenarios)
        engine.plans.save_plan(make_other)
        engine.on_price_update("ETHUSDT", 100.0)
        state = engine.export_state()

        restored = ScenarioEngine(
            plans=PlanStore(clock=clock),
            positions=PositionStore(),
            ledger=Ledger(),
            settings=SettingsStore(EngineSettings()),
            clock=clock,
        )
        restored.restore_state(state)

        assert restored.settings.current == settings_store.current
        assert [p.to_dict() for p in restored.plans.all()] == [p.to_dict() for p in engine.plans.all()]
        assert restored.ledger.entries == engine.ledger.entries
        assert len(restored.positions.open_positions()) == 1
        assert restored.export_state() == state

    def test_restored_flags_prevent_refire(self, engine, sample_plan, clock):
        engine.on_price_update("BTCUSDT", 100.0)
        state = engine.export_state()
        restored = ScenarioEngine(
            plans=PlanStore(clock=clock),
            positions=PositionStore(),
            ledger=Ledger(),
            settings=SettingsStore(),
            clock=clock,
        )
        restored.restore_state(state)
        restored.positions.clear()
        assert restored.on_price_update("BTCUSDT", 100.0) == []

    def test_snapshot_written_after_actions(self, tmp_path, clock, settings_store, scenarios):
        store = SnapshotStore(tmp_path / "state.json")
        engine = ScenarioEngine(
            plans=PlanStore(clock=clock),
            positions=PositionStore(),
            ledger=Ledger(),
            settings=settings_store,
            clock=clock,
            snapshot_store=store,
        )
        plan = engine.plans.save_plan(engine.plans.create_plan("BTC/USDT", "4H", "", scenarios()))
        engine.on_price_update("BTCUSDT", 100.0)
        assert store.flush(timeout=5.0)
        payload = store.load()
        assert payload["plans"][0]["id"] == plan.id
        assert len(payload["positions"]) == 1
        engine.close()

    def test_from_config_restores_snapshot(self, config, tmp_path, scenarios):
        path = tmp_path / "snap.json"
        config.set("persistence.snapshot_path", str(path))
        config.set("paper_trading.leverage", 2.0)

        first = ScenarioEngine.from_config(config)
        plan = first.plans.save_plan(first.plans.create_plan("BTC/USDT", "4H", "", scenarios()))
        first.on_price_update("BTCUSDT", 100.0)
        first.close()

        second = ScenarioEngine.from_config(config)
        assert second.plans.get(plan.id).status == PlanStatus.MONITORING
        assert second.positions.open_for_plan(plan.id).leverage == 2.0
        second.close()
