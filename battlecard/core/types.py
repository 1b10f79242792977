"""Core enums used across the Battle Card engine."""

from enum import Enum


class ScenarioType(Enum):
    A = "A"  # Primary
    B = "B"  # Secondary
    C = "C"  # Chaos (no trade)
    D = "D"  # Invalidation


# Canonical evaluation order; also the tie-break order for simultaneous triggers.
SCENARIO_ORDER: tuple[ScenarioType, ...] = (
    ScenarioType.A,
    ScenarioType.B,
    ScenarioType.C,
    ScenarioType.D,
)

SCENARIO_NAMES: dict[ScenarioType, str] = {
    ScenarioType.A: "Primary",
    ScenarioType.B: "Secondary",
    ScenarioType.C: "Chaos",
    ScenarioType.D: "Invalidation",
}


class PlanStatus(Enum):
    DRAFT = "draft"
    ACTIVE = "active"
    MONITORING = "monitoring"
    COMPLETED = "completed"
    CLOSED = "closed"
    ARCHIVED = "archived"


EVALUATED_STATUSES = frozenset({PlanStatus.ACTIVE, PlanStatus.MONITORING})
TERMINAL_STATUSES = frozenset({PlanStatus.COMPLETED, PlanStatus.CLOSED, PlanStatus.ARCHIVED})


class TradeDirection(Enum):
    LONG = "long"
    SHORT = "short"


class PositionStatus(Enum):
    OPEN = "open"
    CLOSED = "closed"


class ExitReason(Enum):
    STOP_HIT = "stop_hit"
    TARGET1_HIT = "target1_hit"
    TARGET2_HIT = "target2_hit"
    TARGET3_HIT = "target3_hit"
    INVALIDATION = "invalidation"
    MANUAL = "manual"


EXIT_REASON_TEXT: dict[ExitReason, str] = {
    ExitReason.STOP_HIT: "Stop Loss Hit",
    ExitReason.TARGET1_HIT: "Target 1 Hit",
    ExitReason.TARGET2_HIT: "Target 2 Hit",
    ExitReason.TARGET3_HIT: "Target 3 Hit",
    ExitReason.INVALIDATION: "Setup Invalidated",
    ExitReason.MANUAL: "Manual Close",
}


class TriggerStatus(Enum):
    FAR = "far"
    APPROACHING = "approaching"
    AT_TRIGGER = "at_trigger"


class Outcome(Enum):
    WIN = "win"
    LOSS = "loss"
    BREAKEVEN = "breakeven"


class Severity(Enum):
    INFO = "info"
    SUCCESS = "success"
    WARNING = "warning"
    DANGER = "danger"


class EventType(Enum):
    POSITION_OPENED = "POSITION_OPENED"
    SCENARIO_APPROACHING = "SCENARIO_APPROACHING"
    STOP_HIT = "STOP_HIT"
    TARGET_HIT = "TARGET_HIT"
    SETUP_INVALIDATED = "SETUP_INVALIDATED"
    CHAOS_WARNING = "CHAOS_WARNING"
    POSITION_CLOSED = "POSITION_CLOSED"
