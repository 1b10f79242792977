"""Frozen dataclasses for Battle Card data structures.

Every persisted type round-trips through ``to_dict()`` / ``from_dict()``:
enums as their string values, datetimes as ISO-8601 with offset.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field, fields, replace
from datetime import datetime
from enum import Enum
from typing import Any

from battlecard.core.errors import InvalidPlanError
from battlecard.core.types import (
    EVALUATED_STATUSES,
    SCENARIO_NAMES,
    SCENARIO_ORDER,
    EventType,
    ExitReason,
    Outcome,
    PlanStatus,
    PositionStatus,
    ScenarioType,
    TradeDirection,
    TriggerStatus,
)

PRICE_FIELDS = ("trigger_price", "entry_price", "stop_loss", "target1", "target2", "target3")
TRADE_LEVEL_FIELDS = ("entry_price", "stop_loss", "target1")


def normalize_symbol(instrument: str) -> str:
    """Map display symbols ("BTC/USDT") onto feed symbols ("BTCUSDT")."""
    return instrument.replace("/", "").replace("-", "").strip().upper()


def _encode(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, tuple):
        return [_encode(v) for v in value]
    if hasattr(value, "to_dict"):
        return value.to_dict()
    return value


def _to_dict(obj) -> dict[str, Any]:
    return {f.name: _encode(getattr(obj, f.name)) for f in fields(obj)}


def _parse_dt(value: str | datetime | None) -> datetime | None:
    if value is None or isinstance(value, datetime):
        return value
    return datetime.fromisoformat(value)


def _opt_float(value: Any) -> float | None:
    return None if value is None else float(value)


def _enum(enum_cls, value):
    if value is None or isinstance(value, enum_cls):
        return value
    return enum_cls(value)


@dataclass(frozen=True)
class Scenario:
    """One of the four probability-weighted outcomes of a plan."""

    type: ScenarioType
    probability: int
    name: str = ""
    description: str = ""
    trigger_price: float | None = None
    entry_price: float | None = None
    stop_loss: float | None = None
    target1: float | None = None
    target2: float | None = None
    target3: float | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "type", _enum(ScenarioType, self.type))

        prob = self.probability
        if isinstance(prob, float) and prob.is_integer():
            prob = int(prob)
        if isinstance(prob, bool) or not isinstance(prob, int):
            raise InvalidPlanError(f"Scenario {self.type.value}: probability must be an integer, got {prob!r}")
        if not 0 <= prob <= 100:
            raise InvalidPlanError(f"Scenario {self.type.value}: probability {prob} outside 0-100")
        object.__setattr__(self, "probability", prob)

        for name in PRICE_FIELDS:
            value = getattr(self, name)
            if value is None:
                continue
            value = float(value)
            if not math.isfinite(value) or value <= 0:
                raise InvalidPlanError(f"Scenario {self.type.value}: {name} must be a positive price, got {value}")
            object.__setattr__(self, name, value)

        if not self.name:
            object.__setattr__(self, "name", SCENARIO_NAMES[self.type])

    def missing_trade_levels(self) -> list[str]:
        return [name for name in TRADE_LEVEL_FIELDS if getattr(self, name) is None]

    @property
    def has_trade_levels(self) -> bool:
        return not self.missing_trade_levels()

    @property
    def invalidation_level(self) -> float | None:
        """Trigger price wins over stop loss when both are set."""
        if self.trigger_price is not None:
            return self.trigger_price
        return self.stop_loss

    @property
    def planned_direction(self) -> TradeDirection | None:
        if self.entry_price is None or self.target1 is None:
            return None
        return TradeDirection.LONG if self.target1 > self.entry_price else TradeDirection.SHORT

    def to_dict(self) -> dict[str, Any]:
        return _to_dict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Scenario:
        return cls(
            type=ScenarioType(data["type"]),
            probability=data.get("probability", 0),
            name=data.get("name", ""),
            description=data.get("description", ""),
            **{name: _opt_float(data.get(name)) for name in PRICE_FIELDS},
        )


@dataclass(frozen=True)
class Plan:
    """Battle Card: a trade idea expressed as exactly four scenarios (A, B, C, D)."""

    id: str
    instrument: str
    timeframe: str
    thesis: str
    status: PlanStatus
    scenarios: tuple[Scenario, ...]
    created_at: datetime
    updated_at: datetime
    closed_at: datetime | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "status", _enum(PlanStatus, self.status))
        by_type = {}
        for scenario in self.scenarios:
            if scenario.type in by_type:
                raise InvalidPlanError(f"Plan {self.id}: duplicate scenario {scenario.type.value}")
            by_type[scenario.type] = scenario
        if len(by_type) != len(SCENARIO_ORDER):
            raise InvalidPlanError(
                f"Plan {self.id}: expected scenarios A, B, C, D, got "
                f"{sorted(t.value for t in by_type)}"
            )
        object.__setattr__(self, "scenarios", tuple(by_type[t] for t in SCENARIO_ORDER))

    def scenario(self, scenario_type: ScenarioType) -> Scenario:
        return self.scenarios[SCENARIO_ORDER.index(scenario_type)]

    @property
    def probability_total(self) -> int:
        return sum(s.probability for s in self.scenarios)

    @property
    def is_evaluated(self) -> bool:
        return self.status in EVALUATED_STATUSES

    def with_status(self, status: PlanStatus, now: datetime) -> Plan:
        closed_at = self.closed_at
        if status in (PlanStatus.COMPLETED, PlanStatus.CLOSED) and closed_at is None:
            closed_at = now
        return replace(self, status=status, updated_at=now, closed_at=closed_at)

    def with_scenarios(self, scenarios, now: datetime) -> Plan:
        return replace(self, scenarios=tuple(scenarios), updated_at=now)

    def to_dict(self) -> dict[str, Any]:
        return _to_dict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Plan:
        return cls(
            id=data["id"],
            instrument=data["instrument"],
            timeframe=data.get("timeframe", ""),
            thesis=data.get("thesis", ""),
            status=PlanStatus(data["status"]),
            scenarios=tuple(Scenario.from_dict(s) for s in data["scenarios"]),
            created_at=_parse_dt(data["created_at"]),
            updated_at=_parse_dt(data["updated_at"]),
            closed_at=_parse_dt(data.get("closed_at")),
        )


@dataclass(frozen=True)
class Position:
    """Simulated position. Open positions are replaced on change; closed ones are final."""

    id: str
    plan_id: str
    scenario_type: ScenarioType
    scenario_name: str
    instrument: str
    timeframe: str
    thesis: str
    direction: TradeDirection
    entry_price: float
    opened_at: datetime
    size: float
    leverage: float
    stop_loss: float
    target1: float
    target2: float | None = None
    target3: float | None = None
    status: PositionStatus = PositionStatus.OPEN
    exit_price: float | None = None
    exit_time: datetime | None = None
    exit_reason: ExitReason | None = None
    realized_pnl: float | None = None
    realized_pnl_percent: float | None = None
    r_multiple: float | None = None

    def __post_init__(self) -> None:
        if self.leverage < 1:
            raise InvalidPlanError(f"Position {self.id}: leverage must be >= 1, got {self.leverage}")

    @property
    def is_open(self) -> bool:
        return self.status == PositionStatus.OPEN

    def to_dict(self) -> dict[str, Any]:
        return _to_dict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Position:
        return cls(
            id=data["id"],
            plan_id=data["plan_id"],
            scenario_type=ScenarioType(data["scenario_type"]),
            scenario_name=data.get("scenario_name", ""),
            instrument=data["instrument"],
            timeframe=data.get("timeframe", ""),
            thesis=data.get("thesis", ""),
            direction=TradeDirection(data["direction"]),
            entry_price=float(data["entry_price"]),
            opened_at=_parse_dt(data["opened_at"]),
            size=float(data["size"]),
            leverage=float(data["leverage"]),
            stop_loss=float(data["stop_loss"]),
            target1=float(data["target1"]),
            target2=_opt_float(data.get("target2")),
            target3=_opt_float(data.get("target3")),
            status=PositionStatus(data.get("status", "open")),
            exit_price=_opt_float(data.get("exit_price")),
            exit_time=_parse_dt(data.get("exit_time")),
            exit_reason=_enum(ExitReason, data.get("exit_reason")),
            realized_pnl=_opt_float(data.get("realized_pnl")),
            realized_pnl_percent=_opt_float(data.get("realized_pnl_percent")),
            r_multiple=_opt_float(data.get("r_multiple")),
        )


@dataclass(frozen=True)
class LedgerEntry:
    """Journal snapshot of a closed position. Only ``lessons_learned`` may change later."""

    id: str
    plan_id: str
    position_id: str
    date: datetime
    instrument: str
    timeframe: str
    direction: TradeDirection
    scenario_type: ScenarioType
    scenario_name: str
    thesis: str
    entry_price: float
    exit_price: float
    stop_loss: float
    target: float
    size: float
    leverage: float
    outcome: Outcome
    pnl: float
    pnl_percent: float
    r_multiple: float
    entry_time: datetime
    exit_time: datetime
    holding_period: str
    exit_reason: ExitReason
    exit_reason_text: str
    actual_scenario: ScenarioType
    actual_scenario_name: str
    scenario_notes: str = ""
    lessons_learned: str | None = None

    def with_lessons(self, note: str) -> LedgerEntry:
        return replace(self, lessons_learned=note)

    def to_dict(self) -> dict[str, Any]:
        return _to_dict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> LedgerEntry:
        return cls(
            id=data["id"],
            plan_id=data["plan_id"],
            position_id=data["position_id"],
            date=_parse_dt(data["date"]),
            instrument=data["instrument"],
            timeframe=data.get("timeframe", ""),
            direction=TradeDirection(data["direction"]),
            scenario_type=ScenarioType(data["scenario_type"]),
            scenario_name=data.get("scenario_name", ""),
            thesis=data.get("thesis", ""),
            entry_price=float(data["entry_price"]),
            exit_price=float(data["exit_price"]),
            stop_loss=float(data["stop_loss"]),
            target=float(data["target"]),
            size=float(data["size"]),
            leverage=float(data["leverage"]),
            outcome=Outcome(data["outcome"]),
            pnl=float(data["pnl"]),
            pnl_percent=float(data["pnl_percent"]),
            r_multiple=float(data["r_multiple"]),
            entry_time=_parse_dt(data["entry_time"]),
            exit_time=_parse_dt(data["exit_time"]),
            holding_period=data.get("holding_period", ""),
            exit_reason=ExitReason(data["exit_reason"]),
            exit_reason_text=data.get("exit_reason_text", ""),
            actual_scenario=ScenarioType(data["actual_scenario"]),
            actual_scenario_name=data.get("actual_scenario_name", ""),
            scenario_notes=data.get("scenario_notes", ""),
            lessons_learned=data.get("lessons_learned"),
        )


@dataclass(frozen=True)
class PnLSnapshot:
    pnl: float
    pnl_percent: float
    r_multiple: float
    leverage: float


@dataclass(frozen=True)
class TriggerReading:
    """Distance of the current price from a scenario's entry level."""

    scenario_type: ScenarioType
    status: TriggerStatus
    distance_pct: float
    message: str
    tradeable: bool

    def to_dict(self) -> dict[str, Any]:
        return _to_dict(self)


@dataclass(frozen=True)
class Quote:
    instrument: str
    price: float
    received_at: datetime
    high_24h: float | None = None
    low_24h: float | None = None

    def to_dict(self) -> dict[str, Any]:
        return _to_dict(self)


@dataclass(frozen=True)
class Event:
    """Event bus message."""

    type: EventType
    timestamp_ns: int
    source: str
    payload: dict[str, Any] = field(default_factory=dict)
