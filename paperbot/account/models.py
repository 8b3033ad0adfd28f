from __future__ import annotations

from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from paperbot.strategy.base import TradeAction


class Outcome(str, Enum):
    WIN = "WIN"
    LOSS = "LOSS"
    CLOSED = "CLOSED"  # manual close, not judged on pnl


@dataclass(frozen=True)
class Position:
    id: str
    symbol: str
    side: TradeAction  # BUY | SELL
    entry_price: float
    amount: float  # base-asset quantity
    take_profit: float
    stop_loss: float
    opened_at: int  # seconds
    leverage: int = 1

    @property
    def direction(self) -> int:
        return 1 if self.side == TradeAction.BUY else -1

    @property
    def notional(self) -> float:
        return self.entry_price * self.amount

    def to_dict(self) -> Dict[str, Any]:
        d = asdict(self)
        d["side"] = self.side.value
        return d

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "Position":
        return cls(
            id=str(d["id"]),
            symbol=str(d["symbol"]).upper(),
            side=TradeAction(d["side"]),
            entry_price=float(d["entry_price"]),
            amount=float(d["amount"]),
            take_profit=float(d["take_profit"]),
            stop_loss=float(d["stop_loss"]),
            opened_at=int(d["opened_at"]),
            leverage=int(d.get("leverage") or 1),
        )


@dataclass(frozen=True)
class TradeRecord:
    position: Position
    exit_price: float
    exit_time: int
    outcome: Outcome
    pnl: float  # net of fee
    fee: float = 0.0

    @property
    def symbol(self) -> str:
        return self.position.symbol

    def to_dict(self) -> Dict[str, Any]:
        d = self.position.to_dict()
        d.update(
            {
                "exit_price": self.exit_price,
                "exit_time": self.exit_time,
                "outcome": self.outcome.value,
                "pnl": self.pnl,
                "fee": self.fee,
            }
        )
        return d

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "TradeRecord":
        return cls(
            position=Position.from_dict(d),
            exit_price=float(d["exit_price"]),
            exit_time=int(d["exit_time"]),
            outcome=Outcome(d["outcome"]),
            pnl=float(d["pnl"]),
            fee=float(d.get("fee") or 0.0),
        )


@dataclass
class AccountState:
    balance: float
    active: bool = False
    started_at: Optional[int] = None
    total_profit: float = 0.0
    open_positions: Dict[str, Position] = field(default_factory=dict)
    history: List[TradeRecord] = field(default_factory=list)  # newest first
    history_cap: int = 50

    @classmethod
    def fresh(cls, initial_balance: float, history_cap: int = 50) -> "AccountState":
        return cls(balance=float(initial_balance), history_cap=int(history_cap))

    def reset(self, initial_balance: float) -> None:
        """Back to a fresh, inactive account. Mutates in place so holders keep their reference."""
        self.active = False
        self.started_at = None
        self.balance = float(initial_balance)
        self.total_profit = 0.0
        self.open_positions.clear()
        self.history.clear()

    def push_history(self, record: TradeRecord) -> None:
        self.history.insert(0, record)
        if len(self.history) > self.history_cap:
            del self.history[self.history_cap :]

    def win_rate(self) -> float:
        if not self.history:
            return 0.0
        wins = sum(1 for r in self.history if r.outcome == Outcome.WIN)
        return wins / len(self.history) * 100.0

    def uptime_seconds(self, now: int) -> int:
        if not self.active or self.started_at is None:
            return 0
        return max(0, int(now) - int(self.started_at))

    def to_dict(self, now: Optional[int] = None) -> Dict[str, Any]:
        out = {
            "active": self.active,
            "started_at": self.started_at,
            "balance": self.balance,
            "total_profit": self.total_profit,
            "open_positions": [p.to_dict() for p in self.open_positions.values()],
            "history": [r.to_dict() for r in self.history],
            "win_rate": self.win_rate(),
        }
        if now is not None:
            out["uptime_seconds"] = self.uptime_seconds(now)
        return out
