import pytest

from paperbot.account.models import AccountState, Outcome
from paperbot.execution.position_manager import InvariantViolation, PositionManager
from paperbot.risk.gate import RiskGate
from paperbot.strategy.base import TradeAction, TradeSignal, hold
from paperbot.tests.helpers import FakeClock


def _pm(balance=1000.0, max_open=3, cap=50, fee_rate=0.0, strict=True):
    account = AccountState.fresh(balance, history_cap=cap)
    pm = PositionManager(
        account,
        risk_gate=RiskGate(max_open_positions=max_open),
        risk_fraction=0.1,
        fee_rate=fee_rate,
        strict=strict,
        clock=FakeClock(),
    )
    return pm, account


def _buy(symbol="BTCUSDT", entry=100.0, tp=110.0, sl=95.0):
    return TradeSignal(
        symbol=symbol,
        action=TradeAction.BUY,
        confidence=92.0,
        reasoning="test",
        entry=entry,
        take_profit=tp,
        stop_loss=sl,
    )


def _sell(symbol="BTCUSDT", entry=100.0, tp=90.0, sl=105.0):
    return TradeSignal(
        symbol=symbol,
        action=TradeAction.SELL,
        confidence=92.0,
        reasoning="test",
        entry=entry,
        take_profit=tp,
        stop_loss=sl,
    )


def test_open_sizes_from_balance_and_risk_fraction():
    pm, account = _pm()
    pos = pm.open_position(_buy(entry=50.0, tp=60.0, sl=49.5))

    # 1000 * 0.1 / 50
    assert pos.amount == pytest.approx(2.0)
    assert pos.leverage == 1
    assert account.open_positions["BTCUSDT"] is pos


def test_no_close_until_level_is_crossed():
    pm, account = _pm()
    pm.open_position(_buy())

    # approaches both levels without touching either
    for price in (101.0, 105.0, 109.99, 99.0, 95.01, 109.999):
        assert pm.observe("BTCUSDT", price) is None
        assert "BTCUSDT" in account.open_positions

    rec = pm.observe("BTCUSDT", 110.0)
    assert rec is not None
    assert rec.outcome == Outcome.WIN
    assert rec.exit_price == 110.0
    assert "BTCUSDT" not in account.open_positions


def test_buy_stop_loss_books_loss_and_updates_balance():
    pm, account = _pm()
    pm.open_position(_buy())  # amount 1.0

    before = account.balance
    rec = pm.observe("BTCUSDT", 94.0)

    assert rec.outcome == Outcome.LOSS
    assert rec.pnl == pytest.approx(-6.0)
    assert account.balance == pytest.approx(before + rec.pnl)
    assert account.total_profit == pytest.approx(-6.0)


def test_sell_pnl_is_inverted():
    pm, account = _pm()
    pm.open_position(_sell())

    assert pm.observe("BTCUSDT", 95.0) is None
    rec = pm.observe("BTCUSDT", 89.0)

    assert rec.outcome == Outcome.WIN
    assert rec.pnl == pytest.approx(11.0)
    assert account.balance == pytest.approx(1011.0)


def test_fee_is_subtracted_from_pnl():
    pm, account = _pm(fee_rate=0.001)
    pm.open_position(_buy())

    rec = pm.observe("BTCUSDT", 110.0)

    # both legs: 0.001 * (100 + 110) * 1
    assert rec.fee == pytest.approx(0.21)
    assert rec.pnl == pytest.approx(10.0 - 0.21)
    assert account.balance == pytest.approx(1000.0 + rec.pnl)


def test_history_newest_first_and_capped():
    pm, account = _pm(cap=50)
    ids = []
    for i in range(51):
        pos = pm.open_position(_buy())
        ids.append(pos.id)
        pm.close_position("BTCUSDT", price=100.0 + i % 3)

    assert len(account.history) == 50
    assert account.history[0].position.id == ids[-1]
    assert ids[0] not in {r.position.id for r in account.history}


def test_close_appends_exactly_one_record_at_front():
    pm, account = _pm()
    pm.open_position(_buy("BTCUSDT"))
    pm.open_position(_buy("ETHUSDT"))

    pm.observe("BTCUSDT", 120.0)
    assert len(account.history) == 1
    pm.observe("ETHUSDT", 90.0)
    assert len(account.history) == 2
    assert account.history[0].symbol == "ETHUSDT"


def test_open_position_cap_is_never_exceeded():
    pm, account = _pm(max_open=3)
    opened = [pm.open_position(_buy(s)) for s in ("A", "B", "C", "D", "E")]

    assert [p is not None for p in opened] == [True, True, True, False, False]
    assert len(account.open_positions) == 3


def test_second_open_for_same_symbol_fails_loudly_when_strict():
    pm, _ = _pm(strict=True)
    pm.open_position(_buy())
    with pytest.raises(InvariantViolation):
        pm.open_position(_buy())


def test_second_open_for_same_symbol_is_noop_at_runtime():
    pm, account = _pm(strict=False)
    first = pm.open_position(_buy())
    assert pm.open_position(_buy(entry=101.0, tp=111.0, sl=96.0)) is None
    assert account.open_positions["BTCUSDT"] is first


def test_hold_signal_cannot_open():
    pm, _ = _pm(strict=True)
    with pytest.raises(InvariantViolation):
        pm.open_position(hold("BTCUSDT", 10.0, "nothing"))


def test_levels_on_wrong_side_are_rejected():
    pm, account = _pm()
    assert pm.open_position(_buy(entry=100.0, tp=99.0, sl=95.0)) is None
    assert account.open_positions == {}


def test_manual_close_uses_last_observed_price_and_closed_outcome():
    pm, account = _pm()
    pm.open_position(_buy())
    pm.observe("BTCUSDT", 104.0)

    rec = pm.close_position("BTCUSDT")

    assert rec.outcome == Outcome.CLOSED
    assert rec.exit_price == 104.0
    assert rec.pnl == pytest.approx(4.0)
    assert account.balance == pytest.approx(1004.0)


def test_close_all_closes_every_symbol():
    pm, account = _pm()
    for s in ("A", "B"):
        pm.open_position(_buy(s))

    recs = pm.close_all()

    assert {r.symbol for r in recs} == {"A", "B"}
    assert all(r.outcome == Outcome.CLOSED for r in recs)
    assert account.open_positions == {}
    # closed at entry => flat balance
    assert account.balance == pytest.approx(1000.0)
