from __future__ import annotations

import logging
import threading
import time
import uuid
from collections import defaultdict
from contextlib import contextmanager
from typing import Any, Callable, Dict, List, Optional

from paperbot.account.models import AccountState, TradeRecord
from paperbot.core.config import Settings, settings as default_settings
from paperbot.execution.position_manager import PositionManager
from paperbot.market.feed import CandleFeed, CandleStream
from paperbot.market.models import Candle, FeedError, ensure_ordered
from paperbot.market.stream import CandleBuffer
from paperbot.ops.context import clear_tick_id, set_tick_id
from paperbot.persistence.account_store import AccountStore
from paperbot.persistence.audit import Audit
from paperbot.risk.gate import RiskGate
from paperbot.strategy.base import Strategy

log = logging.getLogger("paperbot.runner")


class PaperEngine:
    """
    Paper trading engine.

    One tick (run_once) walks the watchlist sequentially in configured order:
    fetch candles, check exits for an open position, otherwise look for an
    entry while the open-position cap allows. A failing symbol is logged and
    skipped; the rest of the watchlist still runs.
    """

    def __init__(
        self,
        *,
        feed: CandleFeed,
        strategy: Strategy,
        account: Optional[AccountState] = None,
        store: Optional[AccountStore] = None,
        audit: Optional[Audit] = None,
        stream: Optional[CandleStream] = None,
        settings: Settings = default_settings,
        strict: bool = False,
        clock: Callable[[], float] = time.time,
    ):
        self.feed = feed
        self.strategy = strategy
        self.store = store
        self.audit = audit
        self.stream = stream
        self.settings = settings
        self.clock = clock

        self.symbols: List[str] = settings.symbols()
        self.interval = settings.CANDLE_INTERVAL

        if account is None:
            account = self._restore_account()
        self.account = account

        self.risk_gate = RiskGate(max_open_positions=settings.MAX_OPEN_POSITIONS)
        self.positions = PositionManager(
            self.account,
            risk_gate=self.risk_gate,
            risk_fraction=settings.RISK_FRACTION,
            fee_rate=settings.FEE_RATE,
            strict=strict,
            clock=clock,
        )

        self.buffers: Dict[str, CandleBuffer] = {
            s: CandleBuffer(max_len=settings.HISTORY_LIMIT) for s in self.symbols
        }

        # --- Execution locks (anti-overlap) ---
        self._cycle_lock = threading.Lock()
        self._symbol_locks = defaultdict(threading.Lock)  # symbol -> Lock
        self._unsubscribers: List[Callable[[], None]] = []

        self.tick_count = 0
        self.last_tick_at: Optional[int] = None

    # ---------- construction helpers ----------
    def _restore_account(self) -> AccountState:
        fresh = AccountState.fresh(
            self.settings.INITIAL_BALANCE, history_cap=self.settings.HISTORY_CAP
        )
        if self.store is None:
            return fresh
        try:
            saved = self.store.load_account_state()
        except Exception:
            log.exception("could not load saved account; starting fresh")
            return fresh
        if saved is None:
            return fresh

        # a restart never resumes scanning implicitly
        saved.active = False
        saved.history_cap = self.settings.HISTORY_CAP
        del saved.history[saved.history_cap :]
        log.info(
            "restored account balance=%.2f open=%d history=%d",
            saved.balance,
            len(saved.open_positions),
            len(saved.history),
        )
        return saved

    # ---------- guards ----------
    @contextmanager
    def cycle_guard(self, timeout_s: float = 0.0):
        """
        Prevent overlapping ticks.
        If another tick is running, we skip cleanly.
        """
        if timeout_s < 0:
            acquired = self._cycle_lock.acquire()
        else:
            acquired = self._cycle_lock.acquire(timeout=timeout_s)
        try:
            yield acquired
        finally:
            if acquired:
                self._cycle_lock.release()

    @contextmanager
    def symbol_guard(self, symbol: str, timeout_s: float = 10.0):
        """
        Prevent overlapping work per symbol across:
        - the scan tick
        - live stream callbacks
        """
        lock = self._symbol_locks[(symbol or "").upper()]
        acquired = lock.acquire(timeout=timeout_s)
        try:
            yield acquired
        finally:
            if acquired:
                lock.release()

    # ---------- side effects that must never crash the engine ----------
    def _event(self, event_type: str, symbol: Optional[str] = None, action: Optional[str] = None, **details) -> None:
        if self.audit is None:
            return
        try:
            self.audit.event(event_type=event_type, symbol=symbol, action=action, details=details)
        except Exception:
            log.exception("audit event failed: %s/%s", event_type, action)

    def _save(self) -> None:
        if self.store is None:
            return
        try:
            with self.positions.lock:
                self.store.save_account_state(self.account)
        except Exception as e:
            # memory stays authoritative; next successful save reconciles
            log.error("save account state failed: %s: %s", type(e).__name__, e)

    def _record_close(self, rec: TradeRecord, reason: str) -> None:
        self._event(
            "POSITION_CLOSE",
            symbol=rec.symbol,
            action=rec.outcome.value,
            reason=reason,
            position_id=rec.position.id,
            side=rec.position.side.value,
            entry_price=rec.position.entry_price,
            exit_price=rec.exit_price,
            amount=rec.position.amount,
            pnl=rec.pnl,
            fee=rec.fee,
            balance=self.account.balance,
        )
        if self.store is None:
            return
        try:
            self.store.append_history(rec)
        except Exception as e:
            log.error("append history failed for %s: %s: %s", rec.symbol, type(e).__name__, e)

    # ---------- tick ----------
    def run_once(self) -> Dict[str, Any]:
        if not self.account.active:
            return {"skipped": True, "reason": "inactive"}

        with self.cycle_guard() as acquired:
            if not acquired:
                log.warning("tick skipped: previous tick still running")
                return {"skipped": True, "reason": "tick_in_progress"}

            # stop() may have won the race for the lock
            if not self.account.active:
                return {"skipped": True, "reason": "inactive"}

            tick_id = uuid.uuid4().hex
            set_tick_id(tick_id)
            try:
                # restored positions outside the watchlist still need exit checks;
                # they go first so a close frees its slot for this tick
                orphans = [s for s in list(self.account.open_positions) if s not in self.symbols]
                results = [self.step_symbol(sym, allow_entry=False) for sym in orphans]
                results += [self.step_symbol(sym) for sym in self.symbols]
                self.tick_count += 1
                self.last_tick_at = int(self.clock())
                self._save()
                self._event(
                    "TICK",
                    action="TICK_END",
                    symbols=len(results),
                    errors=sum(1 for r in results if "error" in r),
                    open_positions=len(self.account.open_positions),
                )
                return {"skipped": False, "tick_id": tick_id, "results": results}
            finally:
                clear_tick_id()

    def step_symbol(self, symbol: str, allow_entry: bool = True) -> Dict[str, Any]:
        with self.symbol_guard(symbol) as acquired:
            if not acquired:
                self._event("SYMBOL_ERROR", symbol=symbol, action="SKIP_LOCK_TIMEOUT")
                return {"symbol": symbol, "error": "SYMBOL_LOCK_TIMEOUT"}
            try:
                return self._step_symbol(symbol, allow_entry)
            except Exception as e:
                err = f"{type(e).__name__}: {e}"
                log.warning("symbol %s skipped this tick: %s", symbol, err)
                self._event("SYMBOL_ERROR", symbol=symbol, action="SKIP", error=err)
                return {"symbol": symbol, "error": err}

    def _step_symbol(self, symbol: str, allow_entry: bool = True) -> Dict[str, Any]:
        # 1) Market data
        candles = self.feed.fetch_history(symbol, self.interval, self.settings.HISTORY_LIMIT)
        if not candles:
            raise FeedError("empty candle window")
        ensure_ordered(candles)
        self.buffers.setdefault(symbol, CandleBuffer(self.settings.HISTORY_LIMIT)).replace(candles)
        price = candles[-1].close

        # 2) Exit check, no same-tick re-entry
        if self.positions.has_position(symbol):
            rec = self.positions.observe(symbol, price)
            if rec is None:
                return {"symbol": symbol, "action": "HOLD_POSITION", "price": price}
            self._record_close(rec, reason="TP_SL")
            return {
                "symbol": symbol,
                "action": "CLOSED",
                "outcome": rec.outcome.value,
                "pnl": rec.pnl,
            }

        # 3) Entry, watchlist symbols only
        if not allow_entry:
            return {"symbol": symbol, "action": "NOT_WATCHED"}
        if not self.risk_gate.has_capacity(self.account):
            return {"symbol": symbol, "action": "NO_CAPACITY"}

        sig = self.strategy.get_signal(candles, symbol)
        self._event(
            "SIGNAL",
            symbol=symbol,
            action=sig.action.value,
            strategy=getattr(self.strategy, "name", "unknown"),
            confidence=sig.confidence,
            reasoning=sig.reasoning,
            meta=sig.meta,
        )
        if not sig.actionable:
            return {"symbol": symbol, "action": "HOLD", "reasoning": sig.reasoning}

        pos = self.positions.open_position(sig)
        if pos is None:
            return {"symbol": symbol, "action": "OPEN_BLOCKED", "signal": sig.action.value}

        self._event(
            "POSITION_OPEN",
            symbol=symbol,
            action=pos.side.value,
            position_id=pos.id,
            entry_price=pos.entry_price,
            amount=pos.amount,
            take_profit=pos.take_profit,
            stop_loss=pos.stop_loss,
            confidence=sig.confidence,
            reasoning=sig.reasoning,
        )
        return {"symbol": symbol, "action": "OPENED", "side": pos.side.value, "position_id": pos.id}

    # ---------- live stream ----------
    def on_candle_update(self, symbol: str, candle: Candle) -> None:
        symbol = symbol.upper()
        buf = self.buffers.setdefault(symbol, CandleBuffer(self.settings.HISTORY_LIMIT))
        if not buf.apply(candle):
            log.debug("stale candle ignored for %s at %s", symbol, candle.time)
            return

        if not self.account.active:
            return

        with self.symbol_guard(symbol) as acquired:
            if not acquired:
                log.debug("stream update for %s skipped: symbol busy", symbol)
                return
            if not self.account.active:
                return
            rec = self.positions.observe(symbol, candle.close)
        if rec is not None:
            self._record_close(rec, reason="TP_SL_STREAM")
            self._save()

    @property
    def streaming(self) -> bool:
        return bool(self._unsubscribers)

    def window(self, symbol: str) -> List[Candle]:
        """Latest merged candle window for a symbol (scan fetch + stream updates)."""
        buf = self.buffers.get(symbol.upper())
        return buf.snapshot() if buf is not None else []

    def _subscribe_all(self) -> None:
        if self.stream is None or not self.settings.STREAM_ENABLED:
            return
        for sym in self.symbols:
            try:
                unsub = self.stream.subscribe(
                    sym, self.interval, lambda c, s=sym: self.on_candle_update(s, c)
                )
                self._unsubscribers.append(unsub)
            except Exception:
                log.exception("subscribe failed for %s", sym)

    def _unsubscribe_all(self) -> None:
        while self._unsubscribers:
            unsub = self._unsubscribers.pop()
            try:
                unsub()
            except Exception:
                log.exception("unsubscribe failed")

    # ---------- control surface ----------
    def start(self) -> Dict[str, Any]:
        with self.cycle_guard(timeout_s=-1):
            if self.account.active:
                return self.get_state()
            with self.positions.lock:
                self.account.active = True
                self.account.started_at = int(self.clock())
            self._subscribe_all()
            self._save()
        log.info("engine started: %d symbols", len(self.symbols))
        self._event("ENGINE", action="START", symbols=self.symbols)
        return self.get_state()

    def stop(self) -> Dict[str, Any]:
        """
        Stops scanning. With CLOSE_ON_STOP every open position is closed at
        its last observed price with outcome CLOSED; otherwise positions are
        left open untouched until the next start.
        """
        with self.cycle_guard(timeout_s=-1):
            with self.positions.lock:
                was_active = self.account.active
                self.account.active = False
                self.account.started_at = None
            self._unsubscribe_all()

            closed: List[TradeRecord] = []
            if self.settings.CLOSE_ON_STOP:
                closed = [r for r in self.positions.close_all() if r is not None]
                for rec in closed:
                    self._record_close(rec, reason="ENGINE_STOP")
            self._save()

        if was_active:
            log.info("engine stopped: closed %d positions", len(closed))
            self._event("ENGINE", action="STOP", closed=len(closed))
        return self.get_state()

    def reset(self) -> Dict[str, Any]:
        with self.cycle_guard(timeout_s=-1):
            self._unsubscribe_all()
            with self.positions.lock:
                self.account.reset(self.settings.INITIAL_BALANCE)
                self.positions.clear_prices()
            self.tick_count = 0
            self.last_tick_at = None
            if self.store is not None:
                try:
                    self.store.clear()
                except Exception as e:
                    log.error("clear store failed: %s: %s", type(e).__name__, e)
            self._save()
        log.info("engine reset: balance=%.2f", self.account.balance)
        self._event("ENGINE", action="RESET", balance=self.account.balance)
        return self.get_state()

    def get_state(self) -> Dict[str, Any]:
        with self.positions.lock:
            state = self.account.to_dict(now=int(self.clock()))
        state["tick_count"] = self.tick_count
        state["last_tick_at"] = self.last_tick_at
        return state

    def get_history(self) -> List[Dict[str, Any]]:
        with self.positions.lock:
            return [r.to_dict() for r in self.account.history]
