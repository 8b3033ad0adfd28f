from typing import Dict, List, Optional

from paperbot.core.config import Settings
from paperbot.market.models import Candle, FeedError


def make_candles(closes: List[float], start: int = 1_700_000_000, step: int = 60) -> List[Candle]:
    return [
        Candle(time=start + i * step, open=c, high=c, low=c, close=c, volume=1.0)
        for i, c in enumerate(closes)
    ]


def buy_setup_closes() -> List[float]:
    """
    Low base, a flat shelf at 100, then a one-bar drop to 95.
    EMA200 stays far below the price (uptrend), lower band ~97.57, RSI 0.
    """
    return [60.0] * 181 + [100.0] * 19 + [95.0]


def sell_setup_closes() -> List[float]:
    """Mirror image: high base, shelf at 100, spike to 105."""
    return [140.0] * 181 + [100.0] * 19 + [105.0]


def flat_closes(n: int = 201) -> List[float]:
    return [100.0] * n


def make_settings(**overrides) -> Settings:
    base = dict(
        WATCHLIST="BTCUSDT,ETHUSDT,SOLUSDT",
        INITIAL_BALANCE=1000.0,
        RISK_FRACTION=0.1,
        MAX_OPEN_POSITIONS=3,
        HISTORY_CAP=50,
        FEE_RATE=0.0,
        CLOSE_ON_STOP=True,
        STREAM_ENABLED=False,
    )
    base.update(overrides)
    return Settings(**base)


class FakeFeed:
    """Serves canned candle windows; an Exception value is raised instead."""

    def __init__(self, windows: Optional[Dict[str, object]] = None):
        self.windows: Dict[str, object] = dict(windows or {})
        self.calls: List[str] = []

    def fetch_history(self, symbol, interval, limit, end_time=None):
        self.calls.append(symbol)
        w = self.windows.get(symbol)
        if w is None:
            return make_candles(flat_closes())
        if isinstance(w, Exception):
            raise w
        return list(w)


class FakeClock:
    def __init__(self, t: float = 1_700_100_000):
        self.t = t

    def __call__(self) -> float:
        return self.t


def feed_error(msg: str = "timeout") -> FeedError:
    return FeedError(msg)
