"""Action Registry — per-plan "already fired" flags for at-most-once execution.

Flags are small frozen dataclasses rather than concatenated strings, so a
plan id containing a separator can never collide with another plan's key.
The registry is shared by every evaluation path; all access goes through one
lock and ``claim`` is an atomic test-and-set.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import Any, Iterable, Union

from battlecard.core.types import ExitReason, ScenarioType


@dataclass(frozen=True)
class EnteredOnScenario:
    scenario_type: ScenarioType


@dataclass(frozen=True)
class ExitedBy:
    position_id: str
    reason: ExitReason


@dataclass(frozen=True)
class ApproachAlerted:
    scenario_type: ScenarioType


@dataclass(frozen=True)
class ChaosFlagged:
    position_id: str


ActionFlag = Union[EnteredOnScenario, ExitedBy, ApproachAlerted, ChaosFlagged]


def _flag_to_dict(flag: ActionFlag) -> dict[str, Any]:
    if isinstance(flag, EnteredOnScenario):
        return {"kind": "entered", "scenario_type": flag.scenario_type.value}
    if isinstance(flag, ExitedBy):
        return {"kind": "exited", "position_id": flag.position_id, "reason": flag.reason.value}
    if isinstance(flag, ApproachAlerted):
        return {"kind": "approach", "scenario_type": flag.scenario_type.value}
    if isinstance(flag, ChaosFlagged):
        return {"kind": "chaos", "position_id": flag.position_id}
    raise TypeError(f"Unknown action flag: {flag!r}")


def _flag_from_dict(data: dict[str, Any]) -> ActionFlag:
    kind = data["kind"]
    if kind == "entered":
        return EnteredOnScenario(ScenarioType(data["scenario_type"]))
    if kind == "exited":
        return ExitedBy(data["position_id"], ExitReason(data["reason"]))
    if kind == "approach":
        return ApproachAlerted(ScenarioType(data["scenario_type"]))
    if kind == "chaos":
        return ChaosFlagged(data["position_id"])
    raise ValueError(f"Unknown action flag kind: {kind}")


class ActionRegistry:
    def __init__(self) -> None:
        self._fired: dict[str, set[ActionFlag]] = {}
        self._lock = threading.Lock()

    def claim(self, plan_id: str, flag: ActionFlag) -> bool:
        """Mark ``flag`` fired for the plan. False if it had already fired."""
        with self._lock:
            fired = self._fired.setdefault(plan_id, set())
            if flag in fired:
                return False
            fired.add(flag)
            return True

    def release(self, plan_id: str, flag: ActionFlag) -> None:
        """Undo a claim whose action did not go through."""
        with self._lock:
            self._fired.get(plan_id, set()).discard(flag)

    def has(self, plan_id: str, flag: ActionFlag) -> bool:
        with self._lock:
            return flag in self._fired.get(plan_id, ())

    def fired(self, plan_id: str) -> frozenset[ActionFlag]:
        with self._lock:
            return frozenset(self._fired.get(plan_id, ()))

    def entered_scenarios(self, plan_id: str) -> set[ScenarioType]:
        with self._lock:
            return {
                f.scenario_type for f in self._fired.get(plan_id, ())
                if isinstance(f, EnteredOnScenario)
            }

    def forget_plan(self, plan_id: str) -> None:
        with self._lock:
            self._fired.pop(plan_id, None)

    def retain_plans(self, live_plan_ids: Iterable[str]) -> int:
        """Drop flags of plans that no longer exist. Returns the number dropped."""
        live = set(live_plan_ids)
        with self._lock:
            stale = [pid for pid in self._fired if pid not in live]
            for pid in stale:
                del self._fired[pid]
            return len(stale)

    def clear(self) -> None:
        with self._lock:
            self._fired.clear()

    def __len__(self) -> int:
        with self._lock:
            return sum(len(flags) for flags in self._fired.values())

    def to_dict(self) -> dict[str, list[dict[str, Any]]]:
        with self._lock:
            return {
                pid: sorted((_flag_to_dict(f) for f in flags), key=lambda d: sorted(d.items()))
                for pid, flags in self._fired.items()
            }

    def load(self, data: dict[str, list[dict[str, Any]]]) -> None:
        """Replace all flags with the output of ``to_dict``."""
        fired = {pid: {_flag_from_dict(f) for f in flags} for pid, flags in data.items()}
        with self._lock:
            self._fired = fired

    @classmethod
    def from_dict(cls, data: dict[str, list[dict[str, Any]]]) -> ActionRegistry:
        registry = cls()
        registry.load(data)
        return registry
