"""Exception hierarchy for the Battle Card engine.

Missing quotes are not errors: a plan without a price is simply skipped for
the tick. Everything here is either a caller mistake (bad plan data, unknown
ids, illegal status moves) or a broken engine contract.
"""

from __future__ import annotations


class BattleCardError(Exception):
    """Base class for all engine errors."""


class InvalidPlanError(BattleCardError, ValueError):
    """Plan or scenario data is malformed (wrong scenario set, bad level, bad probability)."""


class InvalidScenario(BattleCardError):
    """Scenario lacks the entry/stop/target1 levels required to trade."""

    def __init__(self, scenario_type: str, missing: list[str]) -> None:
        self.scenario_type = scenario_type
        self.missing = missing
        super().__init__(
            f"Scenario {scenario_type} has no trade levels set (missing: {', '.join(missing)})"
        )


class InvariantViolation(BattleCardError):
    """Engine contract broken: probabilities off 100, or two open positions for one plan."""


class InvalidTransition(BattleCardError):
    """Plan status change not allowed from its current status."""


class PlanNotFound(BattleCardError, KeyError):
    def __str__(self) -> str:
        return f"Plan not found: {self.args[0]}"


class PositionNotFound(BattleCardError, KeyError):
    def __str__(self) -> str:
        return f"Position not found: {self.args[0]}"


class LedgerEntryNotFound(BattleCardError, KeyError):
    def __str__(self) -> str:
        return f"Journal entry not found: {self.args[0]}"


class MissingQuote(BattleCardError, LookupError):
    """A manual action needs a price and none has been received for the instrument."""

    def __init__(self, instrument: str) -> None:
        self.instrument = instrument
        super().__init__(f"No quote received yet for {instrument}")


class InvalidSettings(BattleCardError, ValueError):
    """Settings update rejected (leverage below 1, non-positive size, unknown field)."""


class QuoteStreamUnavailable(BattleCardError):
    """The quote channel is stopped or its queue is full; the update was not queued."""
