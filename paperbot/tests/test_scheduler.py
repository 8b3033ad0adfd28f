import asyncio

from paperbot.runner.runner import PaperEngine
from paperbot.runner.scheduler import ScanScheduler, next_deadline
from paperbot.strategy.mean_reversion import MeanReversionStrategy
from paperbot.tests.helpers import FakeFeed, make_settings


def _engine():
    return PaperEngine(
        feed=FakeFeed(),
        strategy=MeanReversionStrategy(),
        settings=make_settings(WATCHLIST="BTCUSDT"),
    )


def test_tick_idles_while_inactive():
    eng = _engine()
    sched = ScanScheduler(eng, interval_seconds=0.01)

    r = asyncio.run(sched.tick())

    assert r["reason"] == "inactive"
    assert eng.feed.calls == []
    assert sched.status.ticks == 0


def test_tick_runs_engine_when_active():
    eng = _engine()
    eng.start()
    sched = ScanScheduler(eng, interval_seconds=0.01)

    r = asyncio.run(sched.tick())

    assert r["skipped"] is False
    assert eng.feed.calls == ["BTCUSDT"]
    assert sched.status.ticks == 1
    assert sched.status.last_tick_at is not None


def test_unexpected_engine_error_is_recorded_not_raised(monkeypatch):
    eng = _engine()
    eng.start()
    sched = ScanScheduler(eng)

    def boom():
        raise RuntimeError("bug")

    monkeypatch.setattr(eng, "run_once", boom)
    r = asyncio.run(sched.tick())

    assert r["reason"] == "tick_error"
    assert "RuntimeError" in sched.status.last_error


def test_loop_starts_and_shuts_down():
    eng = _engine()
    eng.start()

    async def scenario():
        sched = ScanScheduler(eng, interval_seconds=0.01)
        sched.start()
        await asyncio.sleep(0.1)
        await sched.shutdown()
        return sched

    sched = asyncio.run(scenario())

    assert sched.status.running is False
    assert sched.status.ticks >= 1


def test_next_deadline_keeps_a_fixed_grid():
    # tick finished early: next slot is one period after the previous one
    assert next_deadline(100.0, 101.5, 5.0) == (105.0, 0)


def test_next_deadline_skips_slots_missed_by_a_slow_tick():
    # slots at 105 and 110 passed while the tick ran
    assert next_deadline(100.0, 112.0, 5.0) == (115.0, 2)
