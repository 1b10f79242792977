"""Plan Store — Battle Cards and their scenarios.

Written by the authoring surface, read by the engine. Plans are frozen; every
change swaps in a new value under the store lock.
"""

from __future__ import annotations

import logging
import threading
import uuid
from dataclasses import replace
from datetime import datetime, timezone
from typing import Callable, Sequence

from battlecard.core.data_types import Plan, Scenario
from battlecard.core.errors import (
    InvalidPlanError,
    InvalidTransition,
    InvariantViolation,
    PlanNotFound,
)
from battlecard.core.types import TERMINAL_STATUSES, PlanStatus, ScenarioType
from battlecard.risk.probability_rebalancer import (
    PROBABILITY_TOTAL,
    default_scenarios,
    normalize,
    rebalance,
)

logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class PlanStore:
    def __init__(self, strict: bool = False, clock: Callable[[], datetime] | None = None) -> None:
        self._plans: dict[str, Plan] = {}
        self._lock = threading.RLock()
        self._strict = strict
        self._clock = clock or utcnow

    def create_plan(
        self,
        instrument: str,
        timeframe: str = "",
        thesis: str = "",
        scenarios: Sequence[Scenario] | None = None,
    ) -> Plan:
        """New draft plan; scenarios default to the 40/30/20/10 split with no levels."""
        now = self._clock()
        plan = Plan(
            id=uuid.uuid4().hex,
            instrument=instrument,
            timeframe=timeframe,
            thesis=thesis,
            status=PlanStatus.DRAFT,
            scenarios=tuple(scenarios) if scenarios is not None else default_scenarios(),
            created_at=now,
            updated_at=now,
        )
        with self._lock:
            self._plans[plan.id] = plan
        return plan

    def save_plan(self, plan: Plan) -> Plan:
        """Store a plan from the editor. Drafts become active on save."""
        now = self._clock()
        scenarios = plan.scenarios
        total = plan.probability_total
        if total != PROBABILITY_TOTAL:
            if self._strict:
                raise InvariantViolation(
                    f"Plan {plan.id}: scenario probabilities sum to {total}, expected {PROBABILITY_TOTAL}"
                )
            logger.warning("Plan %s: probabilities sum to %d, normalizing", plan.id, total)
            scenarios = normalize(scenarios)

        status = PlanStatus.ACTIVE if plan.status == PlanStatus.DRAFT else plan.status
        saved = replace(plan, scenarios=scenarios, status=status, updated_at=now)
        with self._lock:
            self._plans[saved.id] = saved
        logger.info("Plan %s saved (%s, %s)", saved.id, saved.instrument, saved.status.value)
        return saved

    def add(self, plan: Plan) -> None:
        """Insert as-is (snapshot restore)."""
        with self._lock:
            self._plans[plan.id] = plan

    def get(self, plan_id: str) -> Plan:
        with self._lock:
            plan = self._plans.get(plan_id)
        if plan is None:
            raise PlanNotFound(plan_id)
        return plan

    def find(self, plan_id: str) -> Plan | None:
        with self._lock:
            return self._plans.get(plan_id)

    def list_active_plans(self) -> list[Plan]:
        """Plans the engine evaluates (active, monitoring), oldest first."""
        with self._lock:
            plans = [p for p in self._plans.values() if p.is_evaluated]
        return sorted(plans, key=lambda p: p.created_at)

    def set_plan_status(self, plan_id: str, status: PlanStatus) -> Plan:
        with self._lock:
            plan = self.get(plan_id)
            if plan.status == status:
                return plan
            if plan.status in TERMINAL_STATUSES and status != PlanStatus.ARCHIVED:
                raise InvalidTransition(
                    f"Plan {plan_id} is {plan.status.value}; only archiving is allowed"
                )
            if status == PlanStatus.DRAFT:
                raise InvalidTransition(f"Plan {plan_id} cannot return to draft")
            updated = plan.with_status(status, self._clock())
            self._plans[plan_id] = updated
        logger.info("Plan %s: %s → %s", plan_id, plan.status.value, status.value)
        return updated

    def update_scenario(self, plan_id: str, scenario_type: ScenarioType, **changes) -> Plan:
        """Edit a scenario's name, description or levels. Probability goes through ``set_probability``."""
        if "probability" in changes:
            raise InvalidPlanError("Use set_probability() to change a scenario probability")
        if "type" in changes:
            raise InvalidPlanError("Scenario type cannot be changed")
        with self._lock:
            plan = self.get(plan_id)
            try:
                edited = replace(plan.scenario(scenario_type), **changes)
            except TypeError as e:
                raise InvalidPlanError(str(e)) from e
            scenarios = [edited if s.type == scenario_type else s for s in plan.scenarios]
            updated = plan.with_scenarios(scenarios, self._clock())
            self._plans[plan_id] = updated
        return updated

    def set_probability(self, plan_id: str, scenario_type: ScenarioType, value: int) -> Plan:
        with self._lock:
            plan = self.get(plan_id)
            scenarios = rebalance(plan.scenarios, scenario_type, value)
            updated = plan.with_scenarios(scenarios, self._clock())
            self._plans[plan_id] = updated
        if updated.probability_total != PROBABILITY_TOTAL:
            logger.warning(
                "Plan %s: probabilities sum to %d after editing %s",
                plan_id,
                updated.probability_total,
                scenario_type.value,
            )
        return updated

    def delete_plan(self, plan_id: str) -> Plan:
        with self._lock:
            plan = self._plans.pop(plan_id, None)
        if plan is None:
            raise PlanNotFound(plan_id)
        logger.info("Plan %s deleted", plan_id)
        return plan

    def plan_ids(self) -> set[str]:
        with self._lock:
            return set(self._plans)

    def all(self) -> list[Plan]:
        with self._lock:
            return sorted(self._plans.values(), key=lambda p: p.created_at)

    def clear(self) -> None:
        with self._lock:
            self._plans.clear()

    def __len__(self) -> int:
        return len(self._plans)
