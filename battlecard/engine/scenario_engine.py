"""Scenario Engine — evaluates every active plan on each quote update.

One evaluation pass per tick. Plans are independent: each is evaluated under
its own lock, optionally on a thread pool, so two ticks never interleave on
the same plan. The action registry and the stores are the only shared state
and each guards itself.
"""

from __future__ import annotations

import logging
import math
import threading
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime
from typing import Any, Callable

from battlecard.config.config_manager import ConfigManager
from battlecard.config.settings import EngineSettings, SettingsStore
from battlecard.core.data_types import (
    LedgerEntry,
    Plan,
    PnLSnapshot,
    Position,
    Quote,
    TriggerReading,
    normalize_symbol,
)
from battlecard.core.errors import InvalidTransition, MissingQuote
from battlecard.core.event_bus import EventBus
from battlecard.core.types import ExitReason, PlanStatus
from battlecard.database.ledger import Ledger
from battlecard.database.plan_store import PlanStore, utcnow
from battlecard.database.position_store import PositionStore
from battlecard.database.snapshot_store import SnapshotStore
from battlecard.engine.action_registry import ActionRegistry
from battlecard.engine.position_lifecycle import PositionLifecycleManager
from battlecard.engine.trigger_evaluator import TriggerEvaluator
from battlecard.risk import pnl_calculator

logger = logging.getLogger(__name__)


class ScenarioEngine:
    def __init__(
        self,
        plans: PlanStore,
        positions: PositionStore,
        ledger: Ledger,
        settings: SettingsStore,
        event_bus: EventBus | None = None,
        evaluator: TriggerEvaluator | None = None,
        lifecycle: PositionLifecycleManager | None = None,
        actions: ActionRegistry | None = None,
        clock: Callable[[], datetime] | None = None,
        max_workers: int = 1,
        snapshot_store: SnapshotStore | None = None,
        chaos_band_pct: float = 0.5,
        approach_alert_pct: float = 1.0,
    ) -> None:
        self.plans = plans
        self.positions = positions
        self.ledger = ledger
        self.settings = settings
        self.event_bus = event_bus
        self.evaluator = evaluator or TriggerEvaluator()
        self.actions = actions or ActionRegistry()
        self._clock = clock or utcnow
        self.lifecycle = lifecycle or PositionLifecycleManager(
            plans,
            positions,
            ledger,
            self.actions,
            self.evaluator,
            event_bus=event_bus,
            clock=self._clock,
            chaos_band_pct=chaos_band_pct,
            approach_alert_pct=approach_alert_pct,
        )
        self._snapshot_store = snapshot_store

        self._quotes: dict[str, Quote] = {}
        self._quotes_lock = threading.Lock()
        self._plan_locks: dict[str, threading.Lock] = {}
        self._plan_locks_guard = threading.Lock()

        self._executor: ThreadPoolExecutor | None = None
        if max_workers > 1:
            self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="battlecard-eval")

        self._ticks = 0

    @classmethod
    def from_config(
        cls,
        config: ConfigManager | None = None,
        event_bus: EventBus | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> ScenarioEngine:
        """Wire stores, evaluator and settings from configuration."""
        if config is None:
            config = ConfigManager()
            if not config.raw:
                config.load()

        for problem in config.validate():
            logger.warning("Config: %s", problem)

        strict = bool(config.get("system.strict_invariants", False))
        snapshot_path = config.get("persistence.snapshot_path", "")
        snapshot_store = SnapshotStore(snapshot_path) if snapshot_path else None

        engine = cls(
            plans=PlanStore(strict=strict, clock=clock),
            positions=PositionStore(strict=strict),
            ledger=Ledger(),
            settings=SettingsStore(EngineSettings.from_config(config)),
            event_bus=event_bus,
            evaluator=TriggerEvaluator(
                at_trigger_pct=config.get("trigger.at_trigger_pct", 0.3),
                approaching_pct=config.get("trigger.approaching_pct", 1.5),
            ),
            clock=clock,
            max_workers=int(config.get("engine.max_workers", 1)),
            snapshot_store=snapshot_store,
            chaos_band_pct=config.get("trigger.chaos_band_pct", 0.5),
            approach_alert_pct=config.get("trigger.approach_alert_pct", 1.0),
        )

        if snapshot_store is not None:
            payload = snapshot_store.load()
            if payload is not None:
                engine.restore_state(payload)
        return engine

    @property
    def ticks(self) -> int:
        return self._ticks

    # ------------------------------------------------------------------
    # Quote feed
    # ------------------------------------------------------------------

    def on_price_update(
        self,
        instrument: str,
        price: float,
        high_24h: float | None = None,
        low_24h: float | None = None,
    ) -> list[dict]:
        """Store the quote and run one evaluation pass. Returns the actions taken."""
        if not math.isfinite(price) or price <= 0:
            logger.warning("Ignoring invalid price %r for %s", price, instrument)
            return []
        quote = Quote(
            instrument=normalize_symbol(instrument),
            price=float(price),
            received_at=self._clock(),
            high_24h=high_24h,
            low_24h=low_24h,
        )
        with self._quotes_lock:
            self._quotes[quote.instrument] = quote
        return self.evaluate()

    def quote_for(self, instrument: str) -> Quote | None:
        with self._quotes_lock:
            return self._quotes.get(normalize_symbol(instrument))

    def prices(self) -> dict[str, float]:
        with self._quotes_lock:
            return {symbol: q.price for symbol, q in self._quotes.items()}

    def quotes(self) -> list[Quote]:
        with self._quotes_lock:
            return list(self._quotes.values())

    # ------------------------------------------------------------------
    # Evaluation
    # ------------------------------------------------------------------

    def evaluate(self) -> list[dict]:
        """Evaluate every active plan against its latest quote."""
        settings = self.settings.current
        if not settings.enabled:
            logger.debug("Paper trading disabled, skipping evaluation")
            return []
        self._ticks += 1

        dropped = self.actions.retain_plans(self.plans.plan_ids())
        if dropped:
            logger.debug("Dropped action flags of %d deleted plans", dropped)

        plan_ids = [p.id for p in self.plans.list_active_plans()]
        if self._executor is not None and len(plan_ids) > 1:
            results = list(self._executor.map(lambda pid: self._evaluate_plan(pid, settings), plan_ids))
        else:
            results = [self._evaluate_plan(pid, settings) for pid in plan_ids]

        actions = [action for plan_actions in results for action in plan_actions]
        if actions:
            self.persist()
        return actions

    def _plan_lock(self, plan_id: str) -> threading.Lock:
        with self._plan_locks_guard:
            lock = self._plan_locks.get(plan_id)
            if lock is None:
                lock = self._plan_locks[plan_id] = threading.Lock()
            return lock

    def _evaluate_plan(self, plan_id: str, settings: EngineSettings) -> list[dict]:
        with self._plan_lock(plan_id):
            plan = self.plans.find(plan_id)
            if plan is None or not plan.is_evaluated:
                return []
            quote = self.quote_for(plan.instrument)
            if quote is None:
                logger.debug("No quote for %s yet, skipping plan %s", plan.instrument, plan_id)
                return []
            position = self.positions.open_for_plan(plan_id)
            if position is None:
                return self.lifecycle.try_entry(plan, quote.price, settings)
            return self.lifecycle.check_exits(plan, position, quote.price, settings)

    # ------------------------------------------------------------------
    # Read side
    # ------------------------------------------------------------------

    def trigger_readings(self, plan_id: str) -> list[TriggerReading]:
        """Readings for A-D against the latest quote; empty without a quote."""
        plan = self.plans.get(plan_id)
        quote = self.quote_for(plan.instrument)
        if quote is None:
            return []
        return self.evaluator.scan_plan(plan, quote.price)

    def closest_scenario(self, plan_id: str) -> TriggerReading | None:
        plan = self.plans.get(plan_id)
        quote = self.quote_for(plan.instrument)
        if quote is None:
            return None
        return self.evaluator.closest(plan, quote.price)

    def live_pnl(self, position_id: str) -> PnLSnapshot | None:
        position = self.positions.get(position_id)
        if not position.is_open:
            return PnLSnapshot(
                pnl=position.realized_pnl or 0.0,
                pnl_percent=position.realized_pnl_percent or 0.0,
                r_multiple=position.r_multiple or 0.0,
                leverage=position.leverage,
            )
        quote = self.quote_for(position.instrument)
        if quote is None:
            return None
        return pnl_calculator.calc(position, quote.price)

    def unrealized_pnl(self) -> float:
        return pnl_calculator.unrealized_total(self.positions.open_positions(), self.prices())

    def account(self) -> dict[str, Any]:
        """Balance, journal statistics and open exposure."""
        starting = self.settings.current.starting_balance
        stats = self.ledger.summary(starting)
        unrealized = self.unrealized_pnl()
        return {
            "starting_balance": starting,
            "balance": stats["balance"],
            "unrealized_pnl": unrealized,
            "equity": stats["balance"] + unrealized,
            "open_positions": len(self.positions.open_positions()),
            "stats": stats,
        }

    # ------------------------------------------------------------------
    # Manual actions
    # ------------------------------------------------------------------

    def _sound_alerts(self) -> bool:
        return self.settings.current.is_enabled("SOUND_ALERTS")

    def _exit_price(self, position: Position, price: float | None) -> float:
        if price is not None:
            return float(price)
        quote = self.quote_for(position.instrument)
        if quote is None:
            raise MissingQuote(position.instrument)
        return quote.price

    def close_position_manual(self, position_id: str, price: float | None = None) -> LedgerEntry | None:
        """Close at ``price`` or the latest quote. None when already closed."""
        position = self.positions.get(position_id)
        with self._plan_lock(position.plan_id):
            exit_price = self._exit_price(position, price)
            entry = self.lifecycle.close_position(
                position_id, exit_price, ExitReason.MANUAL, sound_alerts=self._sound_alerts()
            )
        if entry is not None:
            self.persist()
        return entry

    def close_plan(self, plan_id: str, outcome: PlanStatus = PlanStatus.CLOSED) -> Plan:
        """Finish a plan as ``completed`` or ``closed``, closing any open position first."""
        if outcome not in (PlanStatus.COMPLETED, PlanStatus.CLOSED):
            raise InvalidTransition(f"Plan can only be closed as completed or closed, not {outcome.value}")
        with self._plan_lock(plan_id):
            plan = self.plans.get(plan_id)
            position = self.positions.open_for_plan(plan_id)
            if position is not None:
                self.lifecycle.close_position(
                    position.id,
                    self._exit_price(position, None),
                    ExitReason.MANUAL,
                    plan_status=outcome,
                    sound_alerts=self._sound_alerts(),
                )
            plan = self.plans.find(plan_id) or plan
            if plan.status != outcome:
                plan = self.plans.set_plan_status(plan_id, outcome)
        self.persist()
        return plan

    def delete_plan(self, plan_id: str) -> Plan:
        """Delete a plan. An open position is closed manually first."""
        with self._plan_lock(plan_id):
            self.plans.get(plan_id)
            position = self.positions.open_for_plan(plan_id)
            if position is not None:
                quote = self.quote_for(position.instrument)
                if quote is None:
                    logger.warning(
                        "No quote for %s, closing position %s at entry before deleting plan %s",
                        position.instrument,
                        position.id,
                        plan_id,
                    )
                    exit_price = position.entry_price
                else:
                    exit_price = quote.price
                self.lifecycle.close_position(
                    position.id, exit_price, ExitReason.MANUAL, sound_alerts=self._sound_alerts()
                )
            plan = self.plans.delete_plan(plan_id)
            self.actions.forget_plan(plan_id)
        with self._plan_locks_guard:
            self._plan_locks.pop(plan_id, None)
        self.persist()
        return plan

    def amend_position(self, position_id: str, **levels: float | None) -> Position | None:
        position = self.positions.get(position_id)
        with self._plan_lock(position.plan_id):
            amended = self.lifecycle.amend_levels(position_id, **levels)
        self.persist()
        return amended

    def update_settings(self, **changes: Any) -> EngineSettings:
        settings = self.settings.update(**changes)
        self.persist()
        return settings

    def reset_account(self) -> None:
        """Wipe positions, journal and fired flags. Plans stay; monitoring ones go back to active."""
        for plan in self.plans.all():
            with self._plan_lock(plan.id):
                if plan.status == PlanStatus.MONITORING:
                    self.plans.set_plan_status(plan.id, PlanStatus.ACTIVE)
        self.positions.clear()
        self.ledger.clear()
        self.actions.clear()
        logger.info("Account reset to %.2f", self.settings.current.starting_balance)
        self.persist()

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def export_state(self) -> dict[str, Any]:
        return {
            "settings": self.settings.current.to_dict(),
            "plans": [p.to_dict() for p in self.plans.all()],
            "positions": [p.to_dict() for p in self.positions.all()],
            "ledger": [e.to_dict() for e in reversed(self.ledger.entries)],
            "actions": self.actions.to_dict(),
        }

    def restore_state(self, payload: dict[str, Any]) -> None:
        """Replace all engine state with a snapshot from ``export_state``."""
        if "settings" in payload:
            self.settings.replace_all(EngineSettings(**payload["settings"]))
        self.plans.clear()
        for data in payload.get("plans", []):
            self.plans.add(Plan.from_dict(data))
        self.positions.clear()
        for data in payload.get("positions", []):
            self.positions.restore(Position.from_dict(data))
        self.ledger.restore([LedgerEntry.from_dict(e) for e in payload.get("ledger", [])])
        self.actions.load(payload.get("actions", {}))
        logger.info(
            "Restored %d plans, %d positions, %d journal entries",
            len(self.plans),
            len(self.positions),
            len(self.ledger),
        )

    def persist(self) -> None:
        """Queue a snapshot; never blocks the tick."""
        if self._snapshot_store is not None:
            self._snapshot_store.request_save(self.export_state())

    def close(self) -> None:
        if self._executor is not None:
            self._executor.shutdown(wait=True)
            self._executor = None
        if self._snapshot_store is not None:
            self._snapshot_store.save_now(self.export_state())
            self._snapshot_store.close()
