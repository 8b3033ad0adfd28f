from __future__ import annotations

import math
from typing import List, Sequence

from paperbot.market.models import Candle

# guards rs against a zero loss sum
_EPS = 1e-10


def sma(values: Sequence[float], period: int) -> float:
    """Mean of the last `period` values; 0.0 when there is not enough data."""
    if period <= 0 or len(values) < period:
        return 0.0
    return sum(values[-period:]) / float(period)


def stddev(values: Sequence[float], period: int, mean: float) -> float:
    """Population standard deviation of the last `period` values around `mean`."""
    if period <= 0 or len(values) < period:
        return 0.0
    window = values[-period:]
    variance = sum((v - mean) ** 2 for v in window) / float(period)
    return math.sqrt(variance)


def ema(values: Sequence[float], period: int) -> List[float]:
    """
    Full EMA sequence seeded with values[0]:
        ema[i] = values[i] * k + ema[i-1] * (1 - k),  k = 2 / (period + 1)
    Callers use the last element.
    """
    if not values:
        return []
    k = 2 / (period + 1)
    out = [float(values[0])]
    for v in values[1:]:
        out.append(v * k + out[-1] * (1 - k))
    return out


def rsi(candles: Sequence[Candle], period: int = 14) -> float:
    """
    Simple-average RSI over the last `period` close-to-close deltas
    (not Wilder smoothing). Returns 50.0 with fewer than period+1 candles.
    """
    if len(candles) < period + 1:
        return 50.0
    gains = 0.0
    losses = 0.0
    for i in range(len(candles) - period, len(candles)):
        diff = candles[i].close - candles[i - 1].close
        if diff > 0:
            gains += diff
        else:
            losses += abs(diff)
    rs = gains / max(losses, _EPS)
    return 100 - (100 / (1 + rs))
