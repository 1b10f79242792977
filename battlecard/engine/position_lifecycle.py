"""Position Lifecycle Manager — opens and closes simulated positions for a plan.

Entry (no open position):
    First tradeable scenario in A→D order that is AT_TRIGGER opens a position
    at the current price, once per scenario per plan. Scenarios scanned before
    it that sit within the approach distance raise a one-shot alert.

Exit (open position), first match wins, one close per tick:
    1. Invalidation  Scenario D level crossed (always on)
    2. Chaos         Scenario C trigger within the band (advisory, never closes)
    3. Stop          stop loss crossed (auto_exit_on_stop)
    4. Target 1      target1 reached (auto_exit_on_target)

Every method returns action dicts (``{"action": ...}``) describing what it did.
"""

from __future__ import annotations

import logging
import time
import uuid
from dataclasses import replace
from datetime import datetime
from typing import Callable

from battlecard.config.settings import EngineSettings
from battlecard.core.data_types import Event, LedgerEntry, Plan, Position, Scenario
from battlecard.core.errors import InvalidPlanError, InvalidScenario
from battlecard.core.event_bus import EventBus
from battlecard.core.types import (
    EXIT_REASON_TEXT,
    TERMINAL_STATUSES,
    EventType,
    ExitReason,
    PlanStatus,
    PositionStatus,
    ScenarioType,
    Severity,
    TradeDirection,
    TriggerStatus,
)
from battlecard.database.ledger import Ledger
from battlecard.database.plan_store import PlanStore, utcnow
from battlecard.database.position_store import PositionStore
from battlecard.engine.action_registry import (
    ActionRegistry,
    ApproachAlerted,
    ChaosFlagged,
    EnteredOnScenario,
    ExitedBy,
)
from battlecard.engine.trigger_evaluator import TriggerEvaluator
from battlecard.risk import pnl_calculator

logger = logging.getLogger(__name__)

_TARGET_REASONS = (ExitReason.TARGET1_HIT, ExitReason.TARGET2_HIT, ExitReason.TARGET3_HIT)

_EXIT_EVENTS = {
    ExitReason.INVALIDATION: EventType.SETUP_INVALIDATED,
    ExitReason.STOP_HIT: EventType.STOP_HIT,
    ExitReason.TARGET1_HIT: EventType.TARGET_HIT,
    ExitReason.TARGET2_HIT: EventType.TARGET_HIT,
    ExitReason.TARGET3_HIT: EventType.TARGET_HIT,
    ExitReason.MANUAL: EventType.POSITION_CLOSED,
}


class PositionLifecycleManager:
    def __init__(
        self,
        plans: PlanStore,
        positions: PositionStore,
        ledger: Ledger,
        actions: ActionRegistry,
        evaluator: TriggerEvaluator,
        event_bus: EventBus | None = None,
        clock: Callable[[], datetime] | None = None,
        chaos_band_pct: float = 0.5,
        approach_alert_pct: float = 1.0,
    ) -> None:
        self._plans = plans
        self._positions = positions
        self._ledger = ledger
        self._actions = actions
        self._evaluator = evaluator
        self._event_bus = event_bus
        self._clock = clock or utcnow
        self._chaos_band_pct = chaos_band_pct
        self._approach_alert_pct = approach_alert_pct

    # ------------------------------------------------------------------
    # Entry
    # ------------------------------------------------------------------

    def try_entry(self, plan: Plan, price: float, settings: EngineSettings) -> list[dict]:
        """Scan a plan without an open position for an entry trigger."""
        sound_alerts = settings.is_enabled("SOUND_ALERTS")
        actions: list[dict] = []
        entry = None
        if settings.is_enabled("AUTO_EXECUTE"):
            entry = self._evaluator.first_at_trigger(
                plan, price, skip=self._actions.entered_scenarios(plan.id)
            )

        # Approach alerts for the scenarios ranked ahead of the entry
        for scenario in plan.scenarios:
            if entry is not None and scenario.type == entry.type:
                break
            if not scenario.has_trade_levels:
                continue
            reading = self._evaluator.classify(scenario, price)
            if (
                reading.status == TriggerStatus.APPROACHING
                and reading.distance_pct <= self._approach_alert_pct
                and self._actions.claim(plan.id, ApproachAlerted(scenario.type))
            ):
                self._publish(
                    EventType.SCENARIO_APPROACHING,
                    plan.id,
                    scenario.type,
                    f"APPROACHING — {plan.instrument}",
                    f"Scenario {scenario.type.value}: {reading.distance_pct:.1f}% from entry "
                    f"${scenario.entry_price:,.2f}",
                    Severity.WARNING,
                    sound_alerts=sound_alerts,
                )
                actions.append({
                    "action": "approach_alert",
                    "plan_id": plan.id,
                    "scenario_type": scenario.type.value,
                    "distance_pct": reading.distance_pct,
                })

        if entry is None or not self._actions.claim(plan.id, EnteredOnScenario(entry.type)):
            return actions
        position = self.open_position(plan, entry, price, settings)
        if position is None:
            self._actions.release(plan.id, EnteredOnScenario(entry.type))
            return actions
        actions.append({
            "action": "open_position",
            "plan_id": plan.id,
            "position_id": position.id,
            "scenario_type": entry.type.value,
            "direction": position.direction.value,
            "entry_price": position.entry_price,
        })
        return actions

    def open_position(
        self,
        plan: Plan,
        scenario: Scenario,
        fill_price: float,
        settings: EngineSettings,
    ) -> Position | None:
        """Open a position on ``scenario`` at ``fill_price``. None if one is already open."""
        missing = scenario.missing_trade_levels()
        if missing:
            raise InvalidScenario(scenario.type.value, missing)
        if self._positions.open_for_plan(plan.id) is not None:
            logger.debug("Plan %s already has an open position, not opening another", plan.id)
            return None

        now = self._clock()
        position = Position(
            id=uuid.uuid4().hex,
            plan_id=plan.id,
            scenario_type=scenario.type,
            scenario_name=scenario.name,
            instrument=plan.instrument,
            timeframe=plan.timeframe,
            thesis=plan.thesis,
            direction=scenario.planned_direction,
            entry_price=float(fill_price),
            opened_at=now,
            size=settings.default_position_size,
            leverage=settings.leverage,
            stop_loss=scenario.stop_loss,
            target1=scenario.target1,
            target2=scenario.target2,
            target3=scenario.target3,
        )
        self._positions.add(position)
        if plan.status != PlanStatus.MONITORING and plan.status not in TERMINAL_STATUSES:
            self._plans.set_plan_status(plan.id, PlanStatus.MONITORING)

        logger.info(
            "OPEN %s %s @ %.2f | plan=%s scenario=%s size=%.2f lev=%.1fx",
            position.direction.value.upper(),
            plan.instrument,
            position.entry_price,
            plan.id,
            scenario.type.value,
            position.size,
            position.leverage,
        )
        self._publish(
            EventType.POSITION_OPENED,
            plan.id,
            scenario.type,
            f"POSITION OPENED — {plan.instrument}",
            f"{position.direction.value.upper()} @ ${position.entry_price:,.2f} | "
            f"Scenario {scenario.type.value}: {scenario.name}",
            Severity.SUCCESS,
            sound="entry",
            sound_alerts=settings.is_enabled("SOUND_ALERTS"),
            position_id=position.id,
        )
        return position

    # ------------------------------------------------------------------
    # Exit
    # ------------------------------------------------------------------

    def check_exits(
        self,
        plan: Plan,
        position: Position,
        price: float,
        settings: EngineSettings,
    ) -> list[dict]:
        """Run the exit ladder for an open position. At most one close per call."""
        sound_alerts = settings.is_enabled("SOUND_ALERTS")
        actions: list[dict] = []
        is_long = position.direction == TradeDirection.LONG

        # 1. Invalidation
        scenario_d = plan.scenario(ScenarioType.D)
        level = scenario_d.invalidation_level
        if level is not None:
            invalidated = price <= level if is_long else price >= level
            if invalidated:
                closed = self._close_once(
                    position,
                    price,
                    ExitReason.INVALIDATION,
                    actual=scenario_d,
                    notes=f"Scenario D ({scenario_d.name}) played out - Setup invalidated",
                    sound_alerts=sound_alerts,
                )
                if closed is not None:
                    actions.append(closed)
                return actions

        # 2. Chaos advisory
        scenario_c = plan.scenario(ScenarioType.C)
        if scenario_c.trigger_price is not None:
            distance = abs(price - scenario_c.trigger_price) / scenario_c.trigger_price * 100
            if distance <= self._chaos_band_pct and self._actions.claim(
                plan.id, ChaosFlagged(position.id)
            ):
                logger.warning(
                    "CHAOS %s: price %.2f within %.2f%% of Scenario C level %.2f",
                    plan.instrument,
                    price,
                    distance,
                    scenario_c.trigger_price,
                )
                self._publish(
                    EventType.CHAOS_WARNING,
                    plan.id,
                    ScenarioType.C,
                    f"CHAOS — {plan.instrument}",
                    f"Scenario C ({scenario_c.name}) playing out - Choppy conditions",
                    Severity.WARNING,
                    sound_alerts=sound_alerts,
                    position_id=position.id,
                )
                actions.append({
                    "action": "chaos_warning",
                    "plan_id": plan.id,
                    "position_id": position.id,
                    "distance_pct": distance,
                })

        # 3. Stop loss
        stop_hit = price <= position.stop_loss if is_long else price >= position.stop_loss
        if stop_hit:
            if settings.is_enabled("AUTO_EXIT_STOP"):
                closed = self._close_once(
                    position,
                    price,
                    ExitReason.STOP_HIT,
                    actual=scenario_d,
                    notes="Price hit stop loss level",
                    sound_alerts=sound_alerts,
                )
                if closed is not None:
                    actions.append(closed)
            return actions

        # 4. Target 1
        if settings.is_enabled("AUTO_EXIT_TARGET"):
            t1_hit = price >= position.target1 if is_long else price <= position.target1
            if t1_hit:
                actual = plan.scenario(position.scenario_type)
                closed = self._close_once(
                    position,
                    price,
                    ExitReason.TARGET1_HIT,
                    actual=actual,
                    notes=f"Target hit - {position.scenario_name} played out",
                    sound_alerts=sound_alerts,
                )
                if closed is not None:
                    actions.append(closed)

        return actions

    def _close_once(
        self,
        position: Position,
        price: float,
        reason: ExitReason,
        actual: Scenario,
        notes: str,
        sound_alerts: bool = True,
    ) -> dict | None:
        flag = ExitedBy(position.id, reason)
        if not self._actions.claim(position.plan_id, flag):
            return None
        entry = self.close_position(
            position.id,
            price,
            reason,
            actual_scenario=actual.type,
            actual_scenario_name=actual.name,
            scenario_notes=notes,
            sound_alerts=sound_alerts,
        )
        if entry is None:
            return None
        return {
            "action": "close_position",
            "plan_id": position.plan_id,
            "position_id": position.id,
            "reason": reason.value,
            "exit_price": price,
            "pnl": entry.pnl,
            "r_multiple": entry.r_multiple,
        }

    def close_position(
        self,
        position_id: str,
        exit_price: float,
        reason: ExitReason,
        actual_scenario: ScenarioType | None = None,
        actual_scenario_name: str | None = None,
        scenario_notes: str = "",
        plan_status: PlanStatus | None = None,
        sound_alerts: bool = True,
    ) -> LedgerEntry | None:
        """Close, journal and notify. None when the position is already closed.

        The plan moves to ``completed`` on a target exit and ``closed``
        otherwise, unless ``plan_status`` says differently.
        """
        position = self._positions.get(position_id)
        if not position.is_open:
            logger.debug("Position %s already closed, ignoring %s", position_id, reason.value)
            return None

        now = self._clock()
        snap = pnl_calculator.calc(position, exit_price)
        closed = replace(
            position,
            status=PositionStatus.CLOSED,
            exit_price=float(exit_price),
            exit_time=now,
            exit_reason=reason,
            realized_pnl=snap.pnl,
            realized_pnl_percent=snap.pnl_percent,
            r_multiple=snap.r_multiple,
        )
        self._positions.update(closed)

        if actual_scenario is None:
            actual_scenario = position.scenario_type
        if actual_scenario_name is None:
            plan = self._plans.find(position.plan_id)
            if plan is not None:
                actual_scenario_name = plan.scenario(actual_scenario).name
            elif actual_scenario == position.scenario_type:
                actual_scenario_name = position.scenario_name
            else:
                actual_scenario_name = actual_scenario.value

        entry = LedgerEntry(
            id=uuid.uuid4().hex,
            plan_id=position.plan_id,
            position_id=position.id,
            date=now,
            instrument=position.instrument,
            timeframe=position.timeframe,
            direction=position.direction,
            scenario_type=position.scenario_type,
            scenario_name=position.scenario_name,
            thesis=position.thesis,
            entry_price=position.entry_price,
            exit_price=float(exit_price),
            stop_loss=position.stop_loss,
            target=position.target1,
            size=position.size,
            leverage=position.leverage,
            outcome=pnl_calculator.outcome_for(snap.pnl),
            pnl=snap.pnl,
            pnl_percent=snap.pnl_percent,
            r_multiple=snap.r_multiple,
            entry_time=position.opened_at,
            exit_time=now,
            holding_period=pnl_calculator.format_holding_period(position.opened_at, now),
            exit_reason=reason,
            exit_reason_text=EXIT_REASON_TEXT[reason],
            actual_scenario=actual_scenario,
            actual_scenario_name=actual_scenario_name,
            scenario_notes=scenario_notes,
        )
        self._ledger.append(entry)

        if plan_status is None:
            plan_status = PlanStatus.COMPLETED if reason in _TARGET_REASONS else PlanStatus.CLOSED
        self._finish_plan(position.plan_id, plan_status)

        logger.info(
            "CLOSE %s %s @ %.2f | reason=%s pnl=%.2f (%.2f%%) r=%.2f actual=%s",
            position.direction.value.upper(),
            position.instrument,
            exit_price,
            reason.value,
            snap.pnl,
            snap.pnl_percent,
            snap.r_multiple,
            actual_scenario.value,
        )
        self._publish_exit(closed, entry, sound_alerts)
        return entry

    def _finish_plan(self, plan_id: str, status: PlanStatus) -> None:
        plan = self._plans.find(plan_id)
        if plan is None or plan.status in TERMINAL_STATUSES:
            return
        self._plans.set_plan_status(plan_id, status)

    def amend_levels(
        self,
        position_id: str,
        stop_loss: float | None = None,
        target1: float | None = None,
        target2: float | None = None,
        target3: float | None = None,
    ) -> Position | None:
        """Move stop/targets of an open position. None when it is already closed."""
        position = self._positions.get(position_id)
        if not position.is_open:
            logger.debug("Position %s is closed, levels not amended", position_id)
            return None
        changes = {
            name: float(value)
            for name, value in (
                ("stop_loss", stop_loss),
                ("target1", target1),
                ("target2", target2),
                ("target3", target3),
            )
            if value is not None
        }
        for name, value in changes.items():
            if not value > 0:
                raise InvalidPlanError(f"Position {position_id}: {name} must be a positive price, got {value}")
        if not changes:
            return position
        amended = replace(position, **changes)
        self._positions.update(amended)
        logger.info(
            "Position %s levels amended: %s",
            position_id,
            ", ".join(f"{k}={v}" for k, v in changes.items()),
        )
        return amended

    # ------------------------------------------------------------------
    # Notifications
    # ------------------------------------------------------------------

    def _publish_exit(self, position: Position, entry: LedgerEntry, sound_alerts: bool) -> None:
        reason = entry.exit_reason
        if reason in _TARGET_REASONS:
            title, severity, sound = "TARGET HIT", Severity.SUCCESS, "win"
        elif reason == ExitReason.INVALIDATION:
            title, severity, sound = "INVALIDATED", Severity.DANGER, "loss"
        elif reason == ExitReason.STOP_HIT:
            title, severity, sound = "STOPPED OUT", Severity.DANGER, "loss"
        else:
            title = "POSITION CLOSED"
            severity = Severity.SUCCESS if entry.pnl >= 0 else Severity.WARNING
            sound = None
        sign = "+" if entry.pnl >= 0 else "-"
        self._publish(
            _EXIT_EVENTS[reason],
            position.plan_id,
            entry.actual_scenario,
            f"{title} — {position.instrument}",
            f"{entry.actual_scenario.value}: {entry.actual_scenario_name} | "
            f"P&L: {sign}${abs(entry.pnl):.2f} ({entry.pnl_percent:+.2f}%) | {entry.r_multiple:+.1f}R",
            severity,
            sound=sound,
            sound_alerts=sound_alerts,
            position_id=position.id,
            reason=reason.value,
            pnl=entry.pnl,
            pnl_percent=entry.pnl_percent,
            r_multiple=entry.r_multiple,
        )

    def _publish(
        self,
        event_type: EventType,
        plan_id: str,
        scenario_type: ScenarioType,
        title: str,
        message: str,
        severity: Severity,
        sound: str | None = None,
        sound_alerts: bool = True,
        **extra,
    ) -> None:
        if self._event_bus is None:
            return
        payload = {
            "plan_id": plan_id,
            "scenario_type": scenario_type.value,
            "title": title,
            "message": message,
            "severity": severity.value,
            "sound": sound if sound_alerts else None,
            **extra,
        }
        self._event_bus.publish_sync(Event(
            type=event_type,
            timestamp_ns=time.time_ns(),
            source="position_lifecycle",
            payload=payload,
        ))
