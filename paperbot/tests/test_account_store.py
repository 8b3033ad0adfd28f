import json

from paperbot.account.models import AccountState, Outcome, Position, TradeRecord
from paperbot.ops.context import clear_tick_id, set_tick_id
from paperbot.persistence.account_store import AccountStore
from paperbot.persistence.audit import Audit
from paperbot.persistence.db import DB
from paperbot.strategy.base import TradeAction


def _position(symbol="BTCUSDT", pid="p1"):
    return Position(
        id=pid,
        symbol=symbol,
        side=TradeAction.SELL,
        entry_price=100.0,
        amount=0.5,
        take_profit=90.0,
        stop_loss=101.0,
        opened_at=1_700_000_000,
    )


def _record(pid, pnl=1.0):
    return TradeRecord(
        position=_position(pid=pid),
        exit_price=98.0,
        exit_time=1_700_000_600,
        outcome=Outcome.WIN if pnl > 0 else Outcome.LOSS,
        pnl=pnl,
    )


def test_fresh_database_has_no_account(tmp_path):
    store = AccountStore(DB(str(tmp_path / "a.db")))
    assert store.load_account_state() is None
    assert store.load_history() == []


def test_save_and_load_account_with_positions(tmp_path):
    store = AccountStore(DB(str(tmp_path / "a.db")))
    state = AccountState.fresh(1000.0)
    state.balance = 1012.5
    state.total_profit = 12.5
    state.open_positions["BTCUSDT"] = _position()
    store.save_account_state(state)

    # closing the position rewrites the set
    state.open_positions.clear()
    state.open_positions["ETHUSDT"] = _position("ETHUSDT", "p2")
    store.save_account_state(state)

    loaded = store.load_account_state()
    assert loaded.balance == 1012.5
    assert loaded.total_profit == 12.5
    assert list(loaded.open_positions) == ["ETHUSDT"]
    assert loaded.open_positions["ETHUSDT"] == _position("ETHUSDT", "p2")


def test_history_is_newest_first_and_pruned(tmp_path):
    store = AccountStore(DB(str(tmp_path / "a.db")), history_cap=3)
    for i in range(5):
        store.append_history(_record(f"t{i}", pnl=i - 2))

    hist = store.load_history()
    assert [r.position.id for r in hist] == ["t4", "t3", "t2"]
    assert hist[-1].outcome == Outcome.LOSS


def test_clear_wipes_everything(tmp_path):
    store = AccountStore(DB(str(tmp_path / "a.db")))
    store.save_account_state(AccountState.fresh(10.0))
    store.append_history(_record("t1"))

    store.clear()

    assert store.load_account_state() is None
    assert store.load_history() == []


def test_audit_writes_db_and_jsonl_with_tick_id(tmp_path):
    db = DB(str(tmp_path / "a.db"))
    jsonl = tmp_path / "logs" / "audit.jsonl"
    audit = Audit(db, str(jsonl))

    set_tick_id("tick-1")
    try:
        audit.event("POSITION_OPEN", symbol="BTCUSDT", action="BUY", details={"amount": 1.5})
    finally:
        clear_tick_id()

    rows = audit.tail(10)
    assert rows[0]["tick_id"] == "tick-1"
    assert rows[0]["details"] == {"amount": 1.5}

    line = json.loads(jsonl.read_text(encoding="utf-8").strip().splitlines()[-1])
    assert line["event_type"] == "POSITION_OPEN"
    assert line["symbol"] == "BTCUSDT"
