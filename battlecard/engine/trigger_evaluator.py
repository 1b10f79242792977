"""Trigger Evaluator — classifies how far price is from each scenario's entry.

    distance_pct = |price - entry| / entry * 100
    AT_TRIGGER   distance_pct <= 0.3
    APPROACHING  distance_pct <= 1.5
    FAR          otherwise, or no entry level

Pure classification. Whether an AT_TRIGGER reading opens a position is the
lifecycle manager's call.
"""

from __future__ import annotations

from typing import Collection

from battlecard.core.data_types import Plan, Scenario, TriggerReading
from battlecard.core.types import ScenarioType, TriggerStatus


class TriggerEvaluator:
    def __init__(self, at_trigger_pct: float = 0.3, approaching_pct: float = 1.5) -> None:
        if at_trigger_pct > approaching_pct:
            raise ValueError(
                f"at_trigger_pct ({at_trigger_pct}) must not exceed approaching_pct ({approaching_pct})"
            )
        self._at_trigger_pct = at_trigger_pct
        self._approaching_pct = approaching_pct

    def classify(self, scenario: Scenario, price: float) -> TriggerReading:
        entry = scenario.entry_price
        if entry is None:
            return TriggerReading(
                scenario_type=scenario.type,
                status=TriggerStatus.FAR,
                distance_pct=100.0,
                message="No trade scenario",
                tradeable=False,
            )

        distance = abs(price - entry) / entry * 100
        if distance <= self._at_trigger_pct:
            status = TriggerStatus.AT_TRIGGER
            message = f"AT ENTRY: ${price:,.2f}"
        elif distance <= self._approaching_pct:
            status = TriggerStatus.APPROACHING
            message = f"{distance:.1f}% from entry"
        else:
            status = TriggerStatus.FAR
            message = f"{distance:.1f}% away"

        tradeable = scenario.has_trade_levels
        if not tradeable:
            message = f"{message} (no trade levels set)"

        return TriggerReading(
            scenario_type=scenario.type,
            status=status,
            distance_pct=distance,
            message=message,
            tradeable=tradeable,
        )

    def scan_plan(self, plan: Plan, price: float) -> list[TriggerReading]:
        """Readings for A, B, C, D in canonical order."""
        return [self.classify(s, price) for s in plan.scenarios]

    def closest(self, plan: Plan, price: float) -> TriggerReading | None:
        """Nearest scenario that has an entry level, or None for a no-trade plan."""
        candidates = [
            self.classify(s, price) for s in plan.scenarios if s.entry_price is not None
        ]
        if not candidates:
            return None
        return min(candidates, key=lambda r: r.distance_pct)

    def first_at_trigger(
        self,
        plan: Plan,
        price: float,
        skip: Collection[ScenarioType] = (),
    ) -> Scenario | None:
        """First tradeable scenario (A→D) at its trigger, ignoring ``skip``."""
        for scenario in plan.scenarios:
            if scenario.type in skip or not scenario.has_trade_levels:
                continue
            if self.classify(scenario, price).status == TriggerStatus.AT_TRIGGER:
                return scenario
        return None
