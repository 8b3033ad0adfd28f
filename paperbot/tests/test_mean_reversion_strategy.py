import pytest

from paperbot.strategy.base import TradeAction
from paperbot.strategy.mean_reversion import MeanReversionStrategy, StrategyConfig
from paperbot.tests.helpers import (
    buy_setup_closes,
    flat_closes,
    make_candles,
    make_settings,
    sell_setup_closes,
)


def _signal(closes, config=None, symbol="BTCUSDT"):
    return MeanReversionStrategy(config).get_signal(make_candles(closes), symbol)


def test_insufficient_history_holds_with_zero_confidence():
    sig = _signal(buy_setup_closes()[-199:])
    assert sig.action == TradeAction.HOLD
    assert sig.confidence == 0.0
    assert sig.reasoning == "insufficient data"
    assert (sig.entry, sig.take_profit, sig.stop_loss) == (0.0, 0.0, 0.0)


def test_buy_on_lower_band_touch_in_uptrend_with_oversold_rsi():
    sig = _signal(buy_setup_closes())

    assert sig.action == TradeAction.BUY
    assert sig.confidence == 92.0
    assert sig.entry == 95.0
    assert sig.stop_loss == pytest.approx(94.05)
    assert sig.take_profit == pytest.approx(sig.meta["upper_band"])
    assert sig.meta["lower_band"] == pytest.approx(97.5706, abs=1e-3)
    assert sig.meta["rsi"] < 40
    assert sig.meta["trend"] < 95.0
    assert sig.meta["trend_period"] == 200
    assert "trend_pullback" in sig.patterns


def test_sell_is_mirror_of_buy():
    sig = _signal(sell_setup_closes())

    assert sig.action == TradeAction.SELL
    assert sig.entry == 105.0
    assert sig.stop_loss == pytest.approx(106.05)
    assert sig.take_profit == pytest.approx(sig.meta["lower_band"])
    assert sig.meta["rsi"] > 60
    assert sig.meta["trend"] > 105.0


def test_flat_then_drop_is_downtrend_and_not_a_buy():
    # price falls below the flat EMA, so the long trend filter fails
    sig = _signal(flat_closes(200) + [95.0])
    assert sig.action == TradeAction.HOLD
    assert sig.confidence == 10.0
    assert sig.reasoning == "No clear signal. RSI: 0"


def test_no_buy_when_rsi_threshold_not_met():
    sig = _signal(buy_setup_closes(), StrategyConfig(rsi_buy_below=0.0))
    assert sig.action == TradeAction.HOLD


def test_no_buy_when_price_is_above_lower_band():
    # wide bands push the lower band far below the price
    sig = _signal(buy_setup_closes(), StrategyConfig(bb_stddev=10.0))
    assert sig.action == TradeAction.HOLD
    assert sig.meta["lower_band"] * 1.002 < 95.0


def test_volatility_squeeze_hold():
    sig = _signal(flat_closes(200) + [100.1])
    assert sig.action == TradeAction.HOLD
    assert sig.confidence == 50.0
    assert "squeeze" in sig.reasoning.lower()
    assert sig.patterns == frozenset({"squeeze"})
    assert sig.meta["band_width"] < 0.02


def test_short_history_uses_fallback_trend_period():
    cfg = StrategyConfig(min_history=50)
    sig = _signal(flat_closes(60), cfg)
    assert sig.meta["trend_period"] == 50


def test_same_input_gives_same_signal_and_text():
    a = _signal(buy_setup_closes())
    b = _signal(buy_setup_closes())
    assert a == b
    assert a.reasoning == b.reasoning
    assert a.timestamp == make_candles(buy_setup_closes())[-1].time


def test_config_from_settings_carries_thresholds():
    s = make_settings(RSI_BUY_BELOW=35, RSI_SELL_ABOVE=65, MIN_HISTORY=220, HISTORY_LIMIT=300)
    cfg = StrategyConfig.from_settings(s)
    assert cfg.rsi_buy_below == 35
    assert cfg.rsi_sell_above == 65
    assert cfg.min_history == 220
