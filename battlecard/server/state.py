"""EngineState — Singleton holding the live ScenarioEngine and providing API snapshots."""

from __future__ import annotations

import threading
from collections import deque
from typing import Any

from battlecard.config.toggle_registry import TOGGLE_DEPENDENCIES, TOGGLE_KEY_MAP, ToggleRegistry
from battlecard.core.data_types import Event, Plan
from battlecard.core.event_bus import EventBus
from battlecard.core.types import Outcome
from battlecard.engine.quote_stream import QuoteStream
from battlecard.engine.scenario_engine import ScenarioEngine
from battlecard.risk import pnl_calculator

MAX_ALERTS = 100


class EngineState:
    """Singleton holding the engine, its event bus and the recent alert feed."""

    _instance: EngineState | None = None
    _lock = threading.Lock()

    def __new__(cls) -> EngineState:
        if cls._instance is None:
            with cls._lock:
                if cls._instance is None:
                    cls._instance = super().__new__(cls)
                    cls._instance._initialized = False
        return cls._instance

    def __init__(self) -> None:
        if self._initialized:
            return
        self.engine: ScenarioEngine | None = None
        self.event_bus: EventBus | None = None
        self.quote_stream: QuoteStream | None = None
        self.alerts: deque[dict[str, Any]] = deque(maxlen=MAX_ALERTS)
        self._initialized = True

    @classmethod
    def reset(cls) -> None:
        cls._instance = None

    def attach(self, engine: ScenarioEngine, event_bus: EventBus | None = None) -> None:
        self.engine = engine
        self.event_bus = event_bus
        if event_bus is not None:
            event_bus.subscribe_all_sync(self._record_alert)

    def _record_alert(self, event: Event) -> None:
        self.alerts.appendleft({
            "type": event.type.value,
            "timestamp_ns": event.timestamp_ns,
            **event.payload,
        })

    def snapshot_dashboard(self) -> dict[str, Any]:
        e = self.engine
        if e is None:
            return {
                "state": "idle",
                "balance": 0,
                "equity": 0,
                "unrealized_pnl": 0,
                "active_plans": 0,
                "open_positions": 0,
                "total_trades": 0,
                "win_rate": 0,
                "total_pnl": 0,
                "ticks": 0,
            }

        account = e.account()
        stats = account["stats"]
        settings = e.settings.current
        return {
            "state": "active" if settings.enabled else "paused",
            "balance": account["balance"],
            "equity": account["equity"],
            "unrealized_pnl": account["unrealized_pnl"],
            "active_plans": len(e.plans.list_active_plans()),
            "open_positions": account["open_positions"],
            "total_trades": stats["total_trades"],
            "win_rate": stats["win_rate"],
            "total_pnl": stats["total_pnl"],
            "ticks": e.ticks,
            "events": self.event_bus.stats() if self.event_bus is not None else None,
        }

    def snapshot_plan(self, plan: Plan) -> dict[str, Any]:
        e = self.engine
        data = plan.to_dict()
        quote = e.quote_for(plan.instrument)
        data["current_price"] = quote.price if quote else None
        closest = e.closest_scenario(plan.id)
        data["closest_scenario"] = closest.to_dict() if closest else None
        for scenario, row in zip(plan.scenarios, data["scenarios"]):
            row["reward_risk"] = (
                pnl_calculator.reward_risk_ratio(scenario.entry_price, scenario.stop_loss, scenario.target1)
                if scenario.has_trade_levels
                else None
            )
        return data

    def snapshot_plans(self) -> list[dict[str, Any]]:
        e = self.engine
        if e is None:
            return []
        return [self.snapshot_plan(p) for p in e.plans.all()]

    def snapshot_plan_detail(self, plan_id: str) -> dict[str, Any]:
        e = self.engine
        plan = e.plans.get(plan_id)
        data = self.snapshot_plan(plan)
        data["readings"] = [r.to_dict() for r in e.trigger_readings(plan_id)]
        position = e.positions.open_for_plan(plan_id)
        data["position"] = self._position_dict(position.id) if position else None
        return data

    def _position_dict(self, position_id: str) -> dict[str, Any]:
        e = self.engine
        data = e.positions.get(position_id).to_dict()
        snap = e.live_pnl(position_id)
        data["live_pnl"] = None if snap is None else {
            "pnl": snap.pnl,
            "pnl_percent": snap.pnl_percent,
            "r_multiple": snap.r_multiple,
        }
        return data

    def snapshot_positions(self, status: str = "open") -> list[dict[str, Any]]:
        e = self.engine
        if e is None:
            return []
        if status == "open":
            positions = e.positions.open_positions()
        elif status == "closed":
            positions = e.positions.closed_positions()
        else:
            positions = e.positions.all()
        positions.sort(key=lambda p: p.opened_at, reverse=True)
        return [self._position_dict(p.id) for p in positions]

    def snapshot_journal(self, outcome: Outcome | None = None, query: str | None = None) -> list[dict[str, Any]]:
        e = self.engine
        if e is None:
            return []
        return [entry.to_dict() for entry in e.ledger.filter(outcome=outcome, query=query)]

    def snapshot_journal_summary(self) -> dict[str, Any]:
        e = self.engine
        if e is None:
            return {}
        return e.ledger.summary(e.settings.current.starting_balance)

    def snapshot_settings(self) -> dict[str, Any]:
        e = self.engine
        if e is None:
            return {}
        settings = e.settings.current
        registry = ToggleRegistry(settings.get)
        return {
            **settings.to_dict(),
            "toggles": [
                {
                    "id": tid,
                    "key": key,
                    "enabled": registry.is_enabled(tid),
                    "raw_value": registry.raw(tid),
                    "parents": TOGGLE_DEPENDENCIES.get(tid, []),
                    "blocked_by": registry.blocked_by(tid),
                }
                for tid, key in TOGGLE_KEY_MAP.items()
            ],
        }

    def snapshot_quotes(self) -> list[dict[str, Any]]:
        e = self.engine
        if e is None:
            return []
        return [q.to_dict() for q in e.quotes()]

    def snapshot_alerts(self, limit: int = 20) -> list[dict[str, Any]]:
        return list(self.alerts)[:limit]
