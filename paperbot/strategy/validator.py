from __future__ import annotations

import logging
import math
from dataclasses import replace
from typing import Protocol, Sequence

import requests

from paperbot.market.models import Candle
from paperbot.strategy.base import Strategy, TradeAction, TradeSignal

log = logging.getLogger("paperbot.validator")


class ValidatorError(Exception):
    pass


def clamp_confidence(value) -> float:
    """Confidence is a 0-100 score; anything unparseable counts as 0."""
    try:
        v = float(value)
    except (TypeError, ValueError):
        return 0.0
    if not math.isfinite(v):
        return 0.0
    return max(0.0, min(100.0, v))


class SignalValidator(Protocol):
    def validate(self, candles: Sequence[Candle], signal: TradeSignal) -> TradeSignal: ...


class ValidatedStrategy(Strategy):
    """
    Wraps a strategy with an advisory validator.

    Only BUY/SELL signals are sent for validation. A validator that answers
    with a different action rejects the trade (HOLD). A validator failure
    falls back to the unvalidated signal.
    """

    def __init__(self, inner: Strategy, validator: SignalValidator):
        self.inner = inner
        self.validator = validator
        self.name = f"{inner.name}+validated"

    def get_signal(self, candles: Sequence[Candle], symbol: str) -> TradeSignal:
        sig = self.inner.get_signal(candles, symbol)
        if not sig.actionable:
            return sig

        try:
            checked = self.validator.validate(candles, sig)
        except Exception as e:
            log.warning("validator failed for %s: %s", sig.symbol, e)
            return replace(sig, reasoning=f"{sig.reasoning} (validator unavailable)")

        if checked.action != sig.action:
            return sig.as_hold(
                f"validator rejected {sig.action.value}: {checked.reasoning}",
                confidence=clamp_confidence(checked.confidence),
            )

        # levels stay as computed; only conviction and rationale may change
        return replace(
            sig,
            confidence=clamp_confidence(checked.confidence),
            reasoning=checked.reasoning,
        )


class HttpSignalValidator:
    """
    Posts the candidate signal plus recent bars to an external advisor.

    Response JSON: {"action": "BUY|SELL|HOLD", "confidence": 0-100, "reasoning": "..."}
    """

    def __init__(self, url: str, timeout_s: float = 15.0, recent_bars: int = 20, session=None):
        self.url = url
        self.timeout_s = float(timeout_s)
        self.recent_bars = int(recent_bars)
        self.session = session or requests.Session()

    def _payload(self, candles: Sequence[Candle], signal: TradeSignal) -> dict:
        return {
            "symbol": signal.symbol,
            "action": signal.action.value,
            "confidence": signal.confidence,
            "reasoning": signal.reasoning,
            "entry": signal.entry,
            "take_profit": signal.take_profit,
            "stop_loss": signal.stop_loss,
            "candles": [
                {"time": c.time, "high": c.high, "low": c.low, "close": c.close}
                for c in candles[-self.recent_bars :]
            ],
        }

    def validate(self, candles: Sequence[Candle], signal: TradeSignal) -> TradeSignal:
        try:
            r = self.session.post(
                self.url, json=self._payload(candles, signal), timeout=self.timeout_s
            )
            r.raise_for_status()
            data = r.json()
        except (requests.RequestException, ValueError) as e:
            raise ValidatorError(f"validator request failed: {e}") from e

        if not isinstance(data, dict):
            raise ValidatorError("validator response is not an object")

        raw_action = str(data.get("action", "")).upper()
        try:
            action = TradeAction(raw_action)
        except ValueError:
            # unknown verdicts count as "do not trade"
            action = TradeAction.HOLD

        confidence = clamp_confidence(data.get("confidence") or 0.0)

        return replace(
            signal,
            action=action,
            confidence=confidence,
            reasoning=f"validator: {data.get('reasoning') or 'no reasoning'}",
        )
