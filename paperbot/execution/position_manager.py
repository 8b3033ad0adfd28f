from __future__ import annotations

import logging
import threading
import time
import uuid
from typing import Callable, Dict, List, Optional

from paperbot.account.models import AccountState, Outcome, Position, TradeRecord
from paperbot.execution.exit_rules import (
    outcome_for,
    realized_pnl,
    should_exit,
    validate_levels,
)
from paperbot.risk.gate import RiskGate
from paperbot.risk.sizing import size_from_balance
from paperbot.strategy.base import TradeSignal

log = logging.getLogger("paperbot.positions")


class InvariantViolation(Exception):
    """A caller asked for a transition the state machine forbids."""


class PositionManager:
    """
    Owns every open position and is the only writer of AccountState.

    Per symbol: Flat -> Open -> Closed (-> Flat). Sizing and TP/SL levels are
    fixed at open; positions are never partially closed.

    All mutations run under one lock, which makes the open-position cap
    check-and-insert atomic across the scan tick and stream callbacks.
    """

    def __init__(
        self,
        account: AccountState,
        *,
        risk_gate: RiskGate,
        risk_fraction: float,
        fee_rate: float = 0.0,
        strict: bool = False,
        clock: Callable[[], float] = time.time,
    ):
        self.account = account
        self.risk_gate = risk_gate
        self.risk_fraction = float(risk_fraction)
        self.fee_rate = float(fee_rate)
        self.strict = strict
        self.clock = clock
        self.lock = threading.RLock()
        self._last_prices: Dict[str, float] = {}

    def _now(self) -> int:
        return int(self.clock())

    def _violation(self, msg: str) -> None:
        if self.strict:
            raise InvariantViolation(msg)
        log.error("invariant violation ignored: %s", msg)

    def last_price(self, symbol: str) -> Optional[float]:
        return self._last_prices.get(symbol.upper())

    def has_position(self, symbol: str) -> bool:
        return symbol.upper() in self.account.open_positions

    def clear_prices(self) -> None:
        with self.lock:
            self._last_prices.clear()

    # ---------- OPEN ----------
    def open_position(self, signal: TradeSignal) -> Optional[Position]:
        symbol = signal.symbol.upper()

        if not signal.actionable:
            self._violation(f"cannot open {symbol} on {signal.action.value}")
            return None

        with self.lock:
            if symbol in self.account.open_positions:
                self._violation(f"{symbol} already has an open position")
                return None

            decision = self.risk_gate.can_open(self.account, symbol)
            if not decision.allowed:
                log.info("open %s blocked: %s", symbol, decision.reason)
                return None

            try:
                validate_levels(
                    signal.action, signal.entry, signal.stop_loss, signal.take_profit
                )
            except ValueError as e:
                log.warning("open %s rejected: %s (%s)", symbol, e, signal.reasoning)
                return None

            size = size_from_balance(
                symbol=symbol,
                price=signal.entry,
                balance=self.account.balance,
                risk_fraction=self.risk_fraction,
            )
            if size.reason != "ok":
                log.warning("open %s rejected: %s", symbol, size.reason)
                return None

            pos = Position(
                id=uuid.uuid4().hex,
                symbol=symbol,
                side=signal.action,
                entry_price=signal.entry,
                amount=size.amount,
                take_profit=signal.take_profit,
                stop_loss=signal.stop_loss,
                opened_at=self._now(),
            )
            self.account.open_positions[symbol] = pos
            self._last_prices[symbol] = signal.entry

        log.info(
            "opened %s %s amount=%.8f entry=%.4f tp=%.4f sl=%.4f",
            pos.side.value,
            symbol,
            pos.amount,
            pos.entry_price,
            pos.take_profit,
            pos.stop_loss,
        )
        return pos

    # ---------- OBSERVE / CLOSE ----------
    def observe(self, symbol: str, price: float) -> Optional[TradeRecord]:
        """
        Feed one price observation. Closes the position when TP or SL is hit.
        """
        symbol = symbol.upper()
        with self.lock:
            self._last_prices[symbol] = float(price)
            pos = self.account.open_positions.get(symbol)
            if pos is None:
                return None

            exit_now, reason = should_exit(pos, price)
            if not exit_now:
                return None

            rec = self._close(pos, float(price), outcome=None)

        log.info("%s hit on %s at %.4f pnl=%.4f", reason, symbol, price, rec.pnl)
        return rec

    def close_position(
        self, symbol: str, price: Optional[float] = None, outcome: Optional[Outcome] = Outcome.CLOSED
    ) -> Optional[TradeRecord]:
        """
        Manual close at `price` (default: last observed price).
        outcome=None judges WIN/LOSS by pnl.
        """
        symbol = symbol.upper()
        with self.lock:
            pos = self.account.open_positions.get(symbol)
            if pos is None:
                return None
            if price is None:
                price = self._last_prices.get(symbol, pos.entry_price)
            return self._close(pos, float(price), outcome=outcome)

    def close_all(self, outcome: Optional[Outcome] = Outcome.CLOSED) -> List[TradeRecord]:
        with self.lock:
            return [
                self.close_position(sym, outcome=outcome)
                for sym in list(self.account.open_positions)
            ]

    def _close(self, pos: Position, price: float, outcome: Optional[Outcome]) -> TradeRecord:
        pnl, fee = realized_pnl(pos, price, self.fee_rate)
        rec = TradeRecord(
            position=pos,
            exit_price=price,
            exit_time=self._now(),
            outcome=outcome or outcome_for(pnl),
            pnl=pnl,
            fee=fee,
        )
        del self.account.open_positions[pos.symbol]
        self.account.balance += pnl
        self.account.total_profit += pnl
        self.account.push_history(rec)
        return rec
