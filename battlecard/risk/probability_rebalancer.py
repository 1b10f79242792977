"""Probability rebalancer — keeps a plan's four scenario probabilities summing to 100.

Editing one scenario moves the other three proportionally to their share of
the remaining total, clamped at 0, then rounded to integers with the
largest-remainder method so no point is lost to truncation.

Known edge case: when the other three are all 0 there is nothing to scale.
The edited value is applied alone and the total is off until the user edits
another scenario.
"""

from __future__ import annotations

import logging
import math
from dataclasses import replace
from typing import Sequence

from battlecard.core.data_types import Scenario
from battlecard.core.errors import InvalidPlanError
from battlecard.core.types import SCENARIO_NAMES, SCENARIO_ORDER, ScenarioType

logger = logging.getLogger(__name__)

PROBABILITY_TOTAL = 100
DEFAULT_PROBABILITIES: dict[ScenarioType, int] = {
    ScenarioType.A: 40,
    ScenarioType.B: 30,
    ScenarioType.C: 20,
    ScenarioType.D: 10,
}


def default_scenarios() -> tuple[Scenario, ...]:
    return tuple(
        Scenario(type=t, probability=DEFAULT_PROBABILITIES[t], name=SCENARIO_NAMES[t])
        for t in SCENARIO_ORDER
    )


def probability_total(scenarios: Sequence[Scenario]) -> int:
    return sum(s.probability for s in scenarios)


def _largest_remainder(values: list[float], total: int) -> list[int]:
    """Round non-negative floats to ints that sum to ``total``."""
    floors = [math.floor(v) for v in values]
    shortfall = total - sum(floors)
    order = sorted(range(len(values)), key=lambda i: values[i] - floors[i], reverse=True)
    for i in order[:max(0, shortfall)]:
        floors[i] += 1
    return floors


def rebalance(
    scenarios: Sequence[Scenario],
    edited_type: ScenarioType,
    new_value: int,
) -> tuple[Scenario, ...]:
    """Set ``edited_type`` to ``new_value`` and scale the others to keep the total."""
    if isinstance(new_value, bool) or not isinstance(new_value, int):
        raise InvalidPlanError(f"Probability must be an integer, got {new_value!r}")
    if not 0 <= new_value <= PROBABILITY_TOTAL:
        raise InvalidPlanError(f"Probability {new_value} outside 0-{PROBABILITY_TOTAL}")

    edited = next((s for s in scenarios if s.type == edited_type), None)
    if edited is None:
        raise InvalidPlanError(f"No scenario {edited_type.value} to edit")

    others = [s for s in scenarios if s.type != edited_type]
    total_others = sum(s.probability for s in others)
    diff = new_value - edited.probability

    if total_others == 0:
        logger.warning(
            "Rebalance: scenarios other than %s are all 0, total is now %d",
            edited_type.value,
            new_value,
        )
        return tuple(replace(s, probability=new_value) if s.type == edited_type else s for s in scenarios)

    raw = [max(0.0, s.probability - diff * (s.probability / total_others)) for s in others]
    adjusted = _largest_remainder(raw, round(sum(raw)))
    new_by_type = {s.type: value for s, value in zip(others, adjusted)}
    new_by_type[edited_type] = new_value

    return tuple(replace(s, probability=new_by_type[s.type]) for s in scenarios)


def normalize(scenarios: Sequence[Scenario]) -> tuple[Scenario, ...]:
    """Rescale probabilities to sum to 100. All-zero input is returned unchanged."""
    total = probability_total(scenarios)
    if total == PROBABILITY_TOTAL or total == 0:
        return tuple(scenarios)
    scaled = [s.probability * PROBABILITY_TOTAL / total for s in scenarios]
    values = _largest_remainder(scaled, PROBABILITY_TOTAL)
    return tuple(replace(s, probability=v) for s, v in zip(scenarios, values))
