"""P&L / risk calculator — pure functions over a position and a price.

    price_diff     = price - entry
    pnl_pct_raw    = price_diff / entry * 100
    directional    = pnl_pct_raw * (+1 long, -1 short)
    leveraged_pct  = directional * leverage
    pnl            = size * leveraged_pct / 100
    risk_pct       = |entry - stop| / entry * 100
    r_multiple     = directional / risk_pct   (0 when risk_pct == 0)

Leverage scales pnl and pnl_percent only. R-multiple is taken from the
unleveraged return so it measures the plan, not the account.
"""

from __future__ import annotations

from datetime import datetime
from typing import Iterable, Mapping, Protocol

from battlecard.core.data_types import PnLSnapshot, Position, normalize_symbol
from battlecard.core.types import Outcome, TradeDirection


class PricedPosition(Protocol):
    direction: TradeDirection
    entry_price: float
    stop_loss: float
    size: float
    leverage: float


def calc(position: PricedPosition, price: float, leverage: float | None = None) -> PnLSnapshot:
    """Unrealized (or realized, given the exit price) P&L of a position."""
    if leverage is None:
        leverage = position.leverage or 1.0
    entry = position.entry_price

    price_diff = price - entry
    pnl_percent_raw = price_diff / entry * 100
    sign = 1 if position.direction == TradeDirection.LONG else -1
    directional = pnl_percent_raw * sign
    leveraged_pct = directional * leverage
    pnl = position.size * leveraged_pct / 100

    risk_pct = abs(entry - position.stop_loss) / entry * 100
    r_multiple = directional / risk_pct if risk_pct > 0 else 0.0

    return PnLSnapshot(pnl=pnl, pnl_percent=leveraged_pct, r_multiple=r_multiple, leverage=leverage)


def reward_risk_ratio(entry: float, stop: float, target: float) -> float:
    """Planned reward:risk of a level set. 0 when the stop sits on the entry."""
    risk = abs(entry - stop)
    if risk == 0:
        return 0.0
    return abs(target - entry) / risk


def outcome_for(pnl: float) -> Outcome:
    if pnl > 0:
        return Outcome.WIN
    if pnl < 0:
        return Outcome.LOSS
    return Outcome.BREAKEVEN


def format_holding_period(entry_time: datetime, exit_time: datetime) -> str:
    """'2d 3h' for a day or more, '4h 12m' otherwise."""
    seconds = max(0, int((exit_time - entry_time).total_seconds()))
    hours, remainder = divmod(seconds, 3600)
    minutes = remainder // 60
    if hours >= 24:
        days, hours = divmod(hours, 24)
        return f"{days}d {hours}h"
    return f"{hours}h {minutes}m"


def unrealized_total(positions: Iterable[Position], prices: Mapping[str, float]) -> float:
    """Sum of open-position P&L; positions without a price contribute nothing."""
    total = 0.0
    for pos in positions:
        price = prices.get(normalize_symbol(pos.instrument))
        if price is None or not pos.is_open:
            continue
        total += calc(pos, price).pnl
    return total
