from __future__ import annotations

from typing import Optional, Tuple

from paperbot.account.models import Outcome, Position
from paperbot.strategy.base import TradeAction


def hit_take_profit(position: Position, price: float) -> bool:
    if position.side == TradeAction.BUY:
        return price >= position.take_profit
    return price <= position.take_profit


def hit_stop_loss(position: Position, price: float) -> bool:
    if position.side == TradeAction.BUY:
        return price <= position.stop_loss
    return price >= position.stop_loss


def should_exit(position: Position, price: float) -> Tuple[bool, Optional[str]]:
    """
    TP and SL are evaluated on the same observation; TP wins ties
    (a single gap through both levels books the take-profit).

    Returns: (exit_now, reason)
    """
    if hit_take_profit(position, price):
        return (True, "TAKE_PROFIT")
    if hit_stop_loss(position, price):
        return (True, "STOP_LOSS")
    return (False, None)


def realized_pnl(position: Position, exit_price: float, fee_rate: float = 0.0) -> Tuple[float, float]:
    """
    Returns (net_pnl, fee). Fee is charged on both legs' notional.
    """
    gross = (exit_price - position.entry_price) * position.amount * position.direction
    fee = float(fee_rate) * (position.entry_price + exit_price) * position.amount
    return gross - fee, fee


def outcome_for(pnl: float) -> Outcome:
    return Outcome.WIN if pnl > 0 else Outcome.LOSS


def validate_levels(
    side: TradeAction,
    entry_price: float,
    stop_loss: float,
    take_profit: float,
) -> None:
    """
    Validate SL/TP invariants.
    BUY:  stop_loss < entry_price < take_profit
    SELL: take_profit < entry_price < stop_loss
    Raises ValueError if invalid.
    """
    if side == TradeAction.BUY:
        if not (stop_loss < entry_price < take_profit):
            raise ValueError("Invalid SL/TP for BUY")
        return

    if side == TradeAction.SELL:
        if not (take_profit < entry_price < stop_loss):
            raise ValueError("Invalid SL/TP for SELL")
        return

    raise ValueError(f"Invalid side: {side}")
