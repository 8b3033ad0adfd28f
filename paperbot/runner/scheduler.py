from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional, Tuple

from paperbot.runner.runner import PaperEngine

log = logging.getLogger("paperbot.scheduler")


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def next_deadline(deadline: float, now: float, interval: float) -> Tuple[float, int]:
    """
    Next slot on the fixed grid started at the first deadline.
    Slots that passed while a tick was running are skipped, not queued.
    Returns (deadline, missed slot count).
    """
    if interval <= 0:
        return now, 0
    deadline += interval
    missed = 0
    if deadline < now:
        missed = int((now - deadline) // interval) + 1
        deadline += missed * interval
    return deadline, missed


@dataclass
class SchedulerStatus:
    running: bool = False
    interval_seconds: float = 5.0
    last_tick_at: Optional[str] = None
    ticks: int = 0
    skipped: int = 0
    missed_slots: int = 0
    last_error: Optional[str] = None


class ScanScheduler:
    """
    Fixed-period driver for PaperEngine.run_once.

    Ticks run one at a time in a worker thread, so the event loop stays free
    for the HTTP surface. Ticks start on a fixed wall-clock grid; a tick that
    overruns its period makes the loop skip the missed slots. While the
    account is inactive the loop idles.
    """

    def __init__(self, engine: PaperEngine, interval_seconds: float = 5.0):
        self.engine = engine
        self.status = SchedulerStatus(interval_seconds=float(interval_seconds))
        self._task: Optional[asyncio.Task] = None

    async def tick(self) -> dict:
        if not self.engine.account.active:
            return {"skipped": True, "reason": "inactive"}

        try:
            result = await asyncio.to_thread(self.engine.run_once)
        except Exception as e:
            # run_once isolates symbols; anything reaching here is a bug, keep ticking
            self.status.last_error = f"{type(e).__name__}: {e}"
            log.exception("tick failed")
            return {"skipped": True, "reason": "tick_error"}

        self.status.last_tick_at = _utc_now_iso()
        if result.get("skipped"):
            self.status.skipped += 1
        else:
            self.status.ticks += 1
            self.status.last_error = None
        return result

    async def run_forever(self) -> None:
        interval = self.status.interval_seconds
        log.info("scheduler running every %.1fs", interval)
        loop = asyncio.get_running_loop()
        deadline = loop.time()
        while self.status.running:
            await self.tick()
            deadline, missed = next_deadline(deadline, loop.time(), interval)
            if missed:
                self.status.missed_slots += missed
                log.warning("tick overran its period, skipped %d slot(s)", missed)
            await asyncio.sleep(max(0.0, deadline - loop.time()))

    def start(self) -> None:
        if self._task is not None and not self._task.done():
            return
        self.status.running = True
        self._task = asyncio.create_task(self.run_forever())

    async def shutdown(self) -> None:
        self.status.running = False
        if self._task and not self._task.done():
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                # expected when we cancel the background loop
                pass
        self._task = None
