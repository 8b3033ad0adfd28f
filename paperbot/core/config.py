# paperbot/core/config.py
from __future__ import annotations

import json
import logging
from typing import Any, List

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

log = logging.getLogger("paperbot.config")


DEFAULT_WATCHLIST = [
    "BTCUSDT",
    "ETHUSDT",
    "SOLUSDT",
    "BNBUSDT",
    "XRPUSDT",
    "ADAUSDT",
    "DOGEUSDT",
    "AVAXUSDT",
    "DOTUSDT",
    "MATICUSDT",
]


def _parse_list(v: Any) -> List[str]:
    """
    Accepts:
      - list: ["BTCUSDT","ETHUSDT"]
      - csv:  "BTCUSDT,ETHUSDT"
      - json: '["BTCUSDT","ETHUSDT"]'
    Returns uppercase, trimmed symbols.
    """
    if v is None:
        return []
    if isinstance(v, list):
        return [str(x).strip().upper() for x in v if str(x).strip()]
    s = str(v).strip()
    if not s:
        return []
    if s.startswith("["):
        try:
            arr = json.loads(s)
            return [str(x).strip().upper() for x in arr if str(x).strip()]
        except ValueError:
            # fall back to csv parse
            pass
    return [p.strip().upper() for p in s.split(",") if p.strip()]


class Settings(BaseSettings):
    """Runtime configuration loaded from .env / environment variables."""

    # enable_decoding=False keeps pydantic-settings from json-decoding list fields.
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
        enable_decoding=False,
    )

    # --- Market data ---
    BINANCE_REST_URL: str = "https://api.binance.com"
    BINANCE_WS_URL: str = "wss://stream.binance.com:9443/ws"
    CANDLE_INTERVAL: str = "1m"
    HISTORY_LIMIT: int = 300
    FEED_TIMEOUT_SECONDS: float = 10.0
    STREAM_ENABLED: bool = False

    # --- Watchlist / scheduling ---
    WATCHLIST: List[str] = Field(default_factory=lambda: list(DEFAULT_WATCHLIST))
    MAX_SYMBOLS: int = 10
    SCAN_INTERVAL_SECONDS: float = 5.0

    # --- Account / risk ---
    INITIAL_BALANCE: float = 1000.0
    RISK_FRACTION: float = 0.1
    MAX_OPEN_POSITIONS: int = 3
    HISTORY_CAP: int = 50
    FEE_RATE: float = 0.0
    CLOSE_ON_STOP: bool = True

    # --- Strategy ---
    MIN_HISTORY: int = 200
    BB_PERIOD: int = 20
    BB_STDDEV: float = 2.0
    TREND_PERIOD: int = 200
    TREND_FALLBACK_PERIOD: int = 50
    RSI_PERIOD: int = 14
    RSI_BUY_BELOW: float = 40.0
    RSI_SELL_ABOVE: float = 60.0
    SQUEEZE_WIDTH: float = 0.02

    # --- Signal validator (empty URL = disabled) ---
    VALIDATOR_URL: str = ""
    VALIDATOR_TIMEOUT_SECONDS: float = 15.0

    # --- Storage / logging ---
    DB_PATH: str = "data/paperbot.db"
    AUDIT_JSONL_PATH: str = "logs/paperbot_audit.jsonl"
    LOG_LEVEL: str = "INFO"

    @field_validator("WATCHLIST", mode="before")
    @classmethod
    def parse_watchlist(cls, v: Any) -> List[str]:
        return _parse_list(v)

    def model_post_init(self, __context: Any) -> None:
        self.CANDLE_INTERVAL = (self.CANDLE_INTERVAL or "1m").strip()
        self.LOG_LEVEL = (self.LOG_LEVEL or "INFO").upper().strip()
        self.BINANCE_REST_URL = self.BINANCE_REST_URL.rstrip("/")
        self.BINANCE_WS_URL = self.BINANCE_WS_URL.rstrip("/")

    @property
    def validator_enabled(self) -> bool:
        return bool(self.VALIDATOR_URL.strip())

    def symbols(self) -> List[str]:
        """Watchlist in configured order, de-duplicated and capped at MAX_SYMBOLS."""
        seen = set()
        out: List[str] = []
        for s in self.WATCHLIST:
            if s not in seen:
                seen.add(s)
                out.append(s)
        return out[: max(0, self.MAX_SYMBOLS)]

    def validate_runtime(self) -> List[str]:
        """
        Fail-fast validation. Returns warnings (non-fatal).
        Raises ValueError for fatal misconfiguration.
        """
        errors: List[str] = []
        warnings: List[str] = []

        if not self.WATCHLIST:
            warnings.append("WATCHLIST is empty. Engine will have nothing to scan.")

        if self.MAX_SYMBOLS <= 0:
            errors.append("MAX_SYMBOLS must be > 0.")

        if self.SCAN_INTERVAL_SECONDS <= 0:
            errors.append("SCAN_INTERVAL_SECONDS must be > 0.")
        if self.FEED_TIMEOUT_SECONDS <= 0:
            errors.append("FEED_TIMEOUT_SECONDS must be > 0.")
        if self.HISTORY_LIMIT < self.MIN_HISTORY:
            errors.append(
                f"HISTORY_LIMIT ({self.HISTORY_LIMIT}) must be >= MIN_HISTORY ({self.MIN_HISTORY})."
            )

        # Account / risk sanity
        if self.INITIAL_BALANCE <= 0:
            errors.append("INITIAL_BALANCE must be > 0.")
        if not (0 < self.RISK_FRACTION <= 1):
            errors.append("RISK_FRACTION must be in (0, 1].")
        if self.MAX_OPEN_POSITIONS <= 0:
            errors.append("MAX_OPEN_POSITIONS must be > 0.")
        if self.HISTORY_CAP <= 0:
            errors.append("HISTORY_CAP must be > 0.")
        if self.FEE_RATE < 0:
            errors.append("FEE_RATE must be >= 0.")
        elif self.FEE_RATE >= 0.01:
            warnings.append(
                f"FEE_RATE ({self.FEE_RATE}) is 1% or more per side; check if this is intended."
            )

        # Strategy sanity
        if self.BB_PERIOD < 2:
            errors.append("BB_PERIOD must be >= 2.")
        if self.MIN_HISTORY < self.BB_PERIOD:
            errors.append("MIN_HISTORY must be >= BB_PERIOD.")
        if self.MIN_HISTORY < self.RSI_PERIOD + 1:
            errors.append("MIN_HISTORY must be > RSI_PERIOD.")
        if self.TREND_FALLBACK_PERIOD <= 0 or self.TREND_PERIOD <= 0:
            errors.append("TREND_PERIOD and TREND_FALLBACK_PERIOD must be > 0.")
        for name in ("RSI_BUY_BELOW", "RSI_SELL_ABOVE"):
            v = getattr(self, name)
            if not (0 <= v <= 100):
                errors.append(f"{name} must be within [0, 100].")
        if self.RSI_BUY_BELOW >= self.RSI_SELL_ABOVE:
            warnings.append("RSI_BUY_BELOW >= RSI_SELL_ABOVE; thresholds overlap.")

        if self.validator_enabled:
            warnings.append(
                f"Signal validator enabled at {self.VALIDATOR_URL}; BUY/SELL signals may be downgraded."
            )

        if errors:
            msg = "Config validation failed:\n" + "\n".join([f"- {e}" for e in errors])
            raise ValueError(msg)

        return warnings


# Pydantic v2 + postponed annotations safety
Settings.model_rebuild()
settings = Settings()
