from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, FrozenSet, Sequence

from paperbot.market.models import Candle


class TradeAction(str, Enum):
    BUY = "BUY"
    SELL = "SELL"
    HOLD = "HOLD"


@dataclass(frozen=True)
class TradeSignal:
    symbol: str
    action: TradeAction
    confidence: float  # 0..100
    reasoning: str
    entry: float = 0.0
    take_profit: float = 0.0
    stop_loss: float = 0.0
    patterns: FrozenSet[str] = frozenset()
    timestamp: int = 0  # time of the last candle used
    meta: Dict[str, Any] = field(default_factory=dict, compare=False)

    @property
    def actionable(self) -> bool:
        return self.action in (TradeAction.BUY, TradeAction.SELL)

    def as_hold(self, reasoning: str, confidence: float = 0.0) -> "TradeSignal":
        return replace(
            self,
            action=TradeAction.HOLD,
            confidence=confidence,
            reasoning=reasoning,
            entry=0.0,
            take_profit=0.0,
            stop_loss=0.0,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "symbol": self.symbol,
            "action": self.action.value,
            "confidence": self.confidence,
            "reasoning": self.reasoning,
            "entry": self.entry,
            "take_profit": self.take_profit,
            "stop_loss": self.stop_loss,
            "patterns": sorted(self.patterns),
            "timestamp": self.timestamp,
            "meta": dict(self.meta),
        }


def hold(symbol: str, confidence: float, reasoning: str, **kwargs) -> TradeSignal:
    return TradeSignal(
        symbol=symbol,
        action=TradeAction.HOLD,
        confidence=confidence,
        reasoning=reasoning,
        **kwargs,
    )


class Strategy:
    name: str = "base"

    def get_signal(self, candles: Sequence[Candle], symbol: str) -> TradeSignal:
        raise NotImplementedError
