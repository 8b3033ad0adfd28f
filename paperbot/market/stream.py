from __future__ import annotations

import json
import logging
import threading
from typing import Callable, List, Optional

from websockets.exceptions import ConnectionClosed, WebSocketException
from websockets.sync.client import connect

from paperbot.market.models import Candle, FeedError, candle_from_kline

log = logging.getLogger("paperbot.stream")


class CandleBuffer:
    """
    Bounded candle window for one symbol.

    Stream contract:
      - same time as the last bar   -> replaces it (in-progress bar update)
      - strictly greater time       -> appends a new bar
      - lower time                  -> stale, ignored
    """

    def __init__(self, max_len: int = 500, candles: Optional[List[Candle]] = None):
        self.max_len = int(max_len)
        self._candles: List[Candle] = list(candles or [])[-self.max_len :]
        self._lock = threading.Lock()

    def apply(self, candle: Candle) -> bool:
        """Returns False when the update was stale and ignored."""
        with self._lock:
            if self._candles:
                last = self._candles[-1]
                if candle.time < last.time:
                    return False
                if candle.time == last.time:
                    self._candles[-1] = candle
                    return True
            self._candles.append(candle)
            if len(self._candles) > self.max_len:
                del self._candles[: len(self._candles) - self.max_len]
            return True

    def replace(self, candles: List[Candle]) -> None:
        with self._lock:
            self._candles = list(candles)[-self.max_len :]

    def snapshot(self) -> List[Candle]:
        with self._lock:
            return list(self._candles)

    def __len__(self) -> int:
        return len(self._candles)


def parse_kline_message(raw: str | bytes) -> Candle:
    """
    Binance kline stream payload:
    {"e": "kline", "k": {"t": openTime(ms), "o": ..., "h": ..., "l": ..., "c": ..., "v": ...}}
    """
    try:
        msg = json.loads(raw)
        k = msg["k"]
        row = [k["t"], k["o"], k["h"], k["l"], k["c"], k["v"]]
    except (ValueError, KeyError, TypeError) as e:
        raise FeedError(f"malformed kline message: {e}") from e
    return candle_from_kline(row)


class BinanceKlineStream:
    """
    One websocket connection per subscription, served from a daemon thread.
    Reconnects after a pause until unsubscribed.
    """

    def __init__(
        self,
        ws_url: str,
        open_timeout_s: float = 10.0,
        reconnect_delay_s: float = 5.0,
    ):
        self.ws_url = ws_url.rstrip("/")
        self.open_timeout_s = float(open_timeout_s)
        self.reconnect_delay_s = float(reconnect_delay_s)

    def subscribe(
        self, symbol: str, interval: str, on_update: Callable[[Candle], None]
    ) -> Callable[[], None]:
        url = f"{self.ws_url}/{symbol.lower()}@kline_{interval}"
        stop = threading.Event()

        t = threading.Thread(
            target=self._run,
            args=(url, symbol.upper(), on_update, stop),
            name=f"kline-{symbol.lower()}",
            daemon=True,
        )
        t.start()

        def unsubscribe() -> None:
            stop.set()

        return unsubscribe

    def _run(
        self,
        url: str,
        symbol: str,
        on_update: Callable[[Candle], None],
        stop: threading.Event,
    ) -> None:
        while not stop.is_set():
            try:
                with connect(url, open_timeout=self.open_timeout_s) as ws:
                    log.info("stream connected %s", url)
                    while not stop.is_set():
                        try:
                            raw = ws.recv(timeout=1.0)
                        except TimeoutError:
                            continue
                        try:
                            candle = parse_kline_message(raw)
                        except FeedError as e:
                            log.warning("stream %s: %s", symbol, e)
                            continue
                        try:
                            on_update(candle)
                        except Exception:
                            log.exception("stream callback failed for %s", symbol)
            except (ConnectionClosed, WebSocketException, OSError, TimeoutError) as e:
                if stop.is_set():
                    break
                log.error("stream %s closed: %s. Reconnecting...", symbol, e)
                stop.wait(self.reconnect_delay_s)

        log.info("stream stopped %s", url)
