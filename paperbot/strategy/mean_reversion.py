from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence

from paperbot.market.models import Candle, closes
from paperbot.strategy.base import Strategy, TradeAction, TradeSignal, hold
from paperbot.strategy.indicators import ema, rsi, sma, stddev


@dataclass(frozen=True)
class StrategyConfig:
    min_history: int = 200
    bb_period: int = 20
    bb_stddev: float = 2.0
    trend_period: int = 200
    trend_fallback_period: int = 50
    rsi_period: int = 14
    rsi_buy_below: float = 40.0
    rsi_sell_above: float = 60.0
    band_touch_tolerance: float = 0.002
    stop_loss_pct: float = 0.01
    squeeze_width: float = 0.02
    entry_confidence: float = 92.0
    squeeze_confidence: float = 50.0
    idle_confidence: float = 10.0

    @classmethod
    def from_settings(cls, s) -> "StrategyConfig":
        return cls(
            min_history=s.MIN_HISTORY,
            bb_period=s.BB_PERIOD,
            bb_stddev=s.BB_STDDEV,
            trend_period=s.TREND_PERIOD,
            trend_fallback_period=s.TREND_FALLBACK_PERIOD,
            rsi_period=s.RSI_PERIOD,
            rsi_buy_below=s.RSI_BUY_BELOW,
            rsi_sell_above=s.RSI_SELL_ABOVE,
            squeeze_width=s.SQUEEZE_WIDTH,
        )


class MeanReversionStrategy(Strategy):
    """
    Mean reversion inside the prevailing trend.

    Long when price is above the trend EMA, tags the lower Bollinger band and
    RSI is oversold; short is the mirror image. Targets the opposite band,
    stops a fixed percentage away from entry.
    """

    name = "mean_reversion"

    def __init__(self, config: StrategyConfig | None = None):
        self.config = config or StrategyConfig()

    def get_signal(self, candles: Sequence[Candle], symbol: str) -> TradeSignal:
        cfg = self.config
        symbol = symbol.upper()

        if len(candles) < cfg.min_history:
            return hold(
                symbol,
                0.0,
                "insufficient data",
                timestamp=candles[-1].time if candles else 0,
            )

        prices = closes(candles)
        price = prices[-1]
        ts = candles[-1].time

        # 1) Bollinger bands
        mid = sma(prices, cfg.bb_period)
        dev = stddev(prices, cfg.bb_period, mid)
        upper = mid + cfg.bb_stddev * dev
        lower = mid - cfg.bb_stddev * dev

        # 2) Trend filter, shorter smoothing when history is short
        trend_period = (
            cfg.trend_period
            if len(prices) >= cfg.trend_period
            else cfg.trend_fallback_period
        )
        trend = ema(prices, trend_period)[-1]

        # 3) Momentum
        strength = rsi(candles, cfg.rsi_period)

        width = (upper - lower) / mid if mid else 0.0
        meta = {
            "price": price,
            "sma": mid,
            "upper_band": upper,
            "lower_band": lower,
            "band_width": width,
            "trend": trend,
            "trend_period": trend_period,
            "rsi": strength,
        }

        uptrend = price > trend
        downtrend = price < trend

        if (
            uptrend
            and price <= lower * (1 + cfg.band_touch_tolerance)
            and strength < cfg.rsi_buy_below
        ):
            return TradeSignal(
                symbol=symbol,
                action=TradeAction.BUY,
                confidence=cfg.entry_confidence,
                reasoning=(
                    f"Long pullback: price {price:.2f} at lower band {lower:.2f} "
                    f"above trend {trend:.2f}, RSI {strength:.0f}"
                ),
                entry=price,
                take_profit=upper,
                stop_loss=price * (1 - cfg.stop_loss_pct),
                patterns=frozenset({"lower_band_touch", "trend_pullback"}),
                timestamp=ts,
                meta=meta,
            )

        if (
            downtrend
            and price >= upper * (1 - cfg.band_touch_tolerance)
            and strength > cfg.rsi_sell_above
        ):
            return TradeSignal(
                symbol=symbol,
                action=TradeAction.SELL,
                confidence=cfg.entry_confidence,
                reasoning=(
                    f"Short rally: price {price:.2f} at upper band {upper:.2f} "
                    f"below trend {trend:.2f}, RSI {strength:.0f}"
                ),
                entry=price,
                take_profit=lower,
                stop_loss=price * (1 + cfg.stop_loss_pct),
                patterns=frozenset({"upper_band_rejection", "trend_continuation"}),
                timestamp=ts,
                meta=meta,
            )

        if width < cfg.squeeze_width:
            return hold(
                symbol,
                cfg.squeeze_confidence,
                f"Volatility squeeze (band width {width:.4f}), breakout imminent",
                patterns=frozenset({"squeeze"}),
                timestamp=ts,
                meta=meta,
            )

        return hold(
            symbol,
            cfg.idle_confidence,
            f"No clear signal. RSI: {strength:.0f}",
            timestamp=ts,
            meta=meta,
        )
