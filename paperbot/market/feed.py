from __future__ import annotations

import logging
from typing import Callable, List, Optional, Protocol

import requests

from paperbot.market.models import Candle, FeedError, candles_from_klines

log = logging.getLogger("paperbot.feed")


class CandleFeed(Protocol):
    def fetch_history(
        self,
        symbol: str,
        interval: str,
        limit: int,
        end_time: Optional[int] = None,
    ) -> List[Candle]: ...


class CandleStream(Protocol):
    def subscribe(
        self, symbol: str, interval: str, on_update: Callable[[Candle], None]
    ) -> Callable[[], None]: ...


class BinanceSpotFeed:
    """
    Public (unsigned) spot kline history.

    Every call carries a timeout. Failures are raised as FeedError and
    never retried here; the scan loop skips the symbol until the next tick.
    """

    def __init__(self, base_url: str, timeout_s: float = 10.0, session=None):
        self.base_url = base_url.rstrip("/")
        self.timeout_s = float(timeout_s)
        self.session = session or requests.Session()

    def _public_get(self, path: str, params: dict | None = None):
        url = f"{self.base_url}{path}"
        try:
            r = self.session.get(url, params=params or {}, timeout=self.timeout_s)
        except requests.Timeout as e:
            raise FeedError(f"timeout after {self.timeout_s}s: {path}") from e
        except requests.RequestException as e:
            raise FeedError(f"request failed: {path} ({e})") from e

        # Rate limit / temp ban
        if r.status_code in (418, 429):
            raise FeedError(f"rate limited (HTTP {r.status_code}): {path}")
        if r.status_code >= 400:
            raise FeedError(f"Binance HTTP {r.status_code}: {r.text}")

        try:
            return r.json()
        except ValueError as e:
            raise FeedError(f"invalid json from {path}") from e

    def fetch_history(
        self,
        symbol: str,
        interval: str,
        limit: int,
        end_time: Optional[int] = None,
    ) -> List[Candle]:
        params = {"symbol": symbol.upper(), "interval": interval, "limit": int(limit)}
        if end_time:
            # end_time is in seconds like Candle.time
            params["endTime"] = int(end_time) * 1000

        data = self._public_get("/api/v3/klines", params=params)
        candles = candles_from_klines(data)
        log.debug("fetched %d candles for %s", len(candles), symbol)
        return candles
