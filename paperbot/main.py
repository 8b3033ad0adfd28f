import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional

from fastapi import FastAPI, HTTPException, Query

from paperbot.core.config import settings
from paperbot.core.logger import setup_logging
from paperbot.market.feed import BinanceSpotFeed
from paperbot.market.models import FeedError
from paperbot.market.stream import BinanceKlineStream
from paperbot.persistence.account_store import AccountStore
from paperbot.persistence.audit import Audit
from paperbot.persistence.db import DB
from paperbot.runner.runner import PaperEngine
from paperbot.runner.scheduler import ScanScheduler
from paperbot.strategy.base import Strategy
from paperbot.strategy.mean_reversion import MeanReversionStrategy, StrategyConfig
from paperbot.strategy.validator import HttpSignalValidator, ValidatedStrategy

log = logging.getLogger("paperbot.api")

_engine: Optional[PaperEngine] = None
_scheduler: Optional[ScanScheduler] = None


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def build_strategy() -> Strategy:
    strategy: Strategy = MeanReversionStrategy(StrategyConfig.from_settings(settings))
    if settings.validator_enabled:
        strategy = ValidatedStrategy(
            strategy,
            HttpSignalValidator(
                settings.VALIDATOR_URL, timeout_s=settings.VALIDATOR_TIMEOUT_SECONDS
            ),
        )
    return strategy


def build_engine() -> PaperEngine:
    db = DB(settings.DB_PATH)
    return PaperEngine(
        feed=BinanceSpotFeed(
            settings.BINANCE_REST_URL, timeout_s=settings.FEED_TIMEOUT_SECONDS
        ),
        strategy=build_strategy(),
        store=AccountStore(db, history_cap=settings.HISTORY_CAP),
        audit=Audit(db, settings.AUDIT_JSONL_PATH),
        stream=BinanceKlineStream(
            settings.BINANCE_WS_URL, open_timeout_s=settings.FEED_TIMEOUT_SECONDS
        ),
        settings=settings,
    )


def get_engine() -> PaperEngine:
    global _engine
    if _engine is None:
        _engine = build_engine()
    return _engine


@asynccontextmanager
async def lifespan(app: FastAPI):
    global _scheduler
    setup_logging(settings.LOG_LEVEL)

    # Fail-closed: crash the service rather than running with a bad config
    for w in settings.validate_runtime():
        log.warning("[CONFIG WARNING] %s", w)

    _scheduler = ScanScheduler(get_engine(), settings.SCAN_INTERVAL_SECONDS)
    _scheduler.start()
    try:
        yield
    finally:
        await _scheduler.shutdown()


app = FastAPI(title="Paperbot", lifespan=lifespan)


@app.get("/health")
async def health():
    engine = get_engine()
    return {
        "ok": True,
        "time_utc": _utc_now_iso(),
        "active": engine.account.active,
        "symbols": engine.symbols,
        "scheduler": vars(_scheduler.status) if _scheduler else None,
    }


@app.post("/engine/start")
def engine_start():
    return get_engine().start()


@app.post("/engine/stop")
def engine_stop():
    return get_engine().stop()


@app.post("/engine/reset")
def engine_reset():
    return get_engine().reset()


@app.get("/engine/state")
def engine_state():
    return get_engine().get_state()


@app.get("/engine/history")
def engine_history(limit: int = Query(50, ge=1, le=500)):
    return get_engine().get_history()[:limit]


@app.get("/strategy/signal")
def strategy_signal(symbol: str = "BTCUSDT"):
    """Read-only signal preview; never opens a position."""
    engine = get_engine()
    symbol = symbol.upper()
    # a live stream keeps the buffered window current; otherwise fetch fresh bars
    candles = engine.window(symbol) if engine.streaming else []
    if len(candles) < engine.settings.MIN_HISTORY:
        try:
            candles = engine.feed.fetch_history(symbol, engine.interval, engine.settings.HISTORY_LIMIT)
        except FeedError as e:
            raise HTTPException(status_code=502, detail=str(e))
    return engine.strategy.get_signal(candles, symbol).to_dict()
