from __future__ import annotations

import math
from dataclasses import dataclass
from typing import List, Sequence


class FeedError(Exception):
    """Timeout, HTTP failure or malformed payload from the candle feed."""


@dataclass(frozen=True)
class Candle:
    time: int  # bar open time, seconds
    open: float
    high: float
    low: float
    close: float
    volume: float


def candle_from_kline(k: Sequence) -> Candle:
    """
    Binance kline format:
    [openTime(ms), open, high, low, close, volume, closeTime, ...]
    """
    try:
        c = Candle(
            time=int(k[0]) // 1000,
            open=float(k[1]),
            high=float(k[2]),
            low=float(k[3]),
            close=float(k[4]),
            volume=float(k[5]),
        )
    except (TypeError, ValueError, IndexError) as e:
        raise FeedError(f"malformed kline: {k!r} ({e})") from e

    if not all(math.isfinite(x) for x in (c.open, c.high, c.low, c.close, c.volume)):
        raise FeedError(f"non-finite kline values: {k!r}")
    return c


def candles_from_klines(klines: Sequence) -> List[Candle]:
    if not isinstance(klines, list):
        raise FeedError(f"expected kline list, got {type(klines).__name__}")
    candles = [candle_from_kline(k) for k in klines]
    ensure_ordered(candles)
    return candles


def ensure_ordered(candles: Sequence[Candle]) -> None:
    """Bar times must be unique and strictly increasing."""
    for prev, cur in zip(candles, candles[1:]):
        if cur.time <= prev.time:
            raise FeedError(f"out-of-order candles: {prev.time} -> {cur.time}")


def closes(candles: Sequence[Candle]) -> List[float]:
    return [c.close for c in candles]
