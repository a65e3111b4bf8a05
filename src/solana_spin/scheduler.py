from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Awaitable, Callable, Protocol

from .config import Settings
from .events import now_ms
from .ledger import LedgerError, LedgerStore
from .milestones import MilestoneEngine
from .prices import Metric
from .project_constants import FIRST_RUN_MAX_DELAY_MS, MIN_DELAY_MS
from .recurring import RecurringEngine

log = logging.getLogger("scheduler")


class MetricSource(Protocol):
    def get_observed_metric(self) -> Awaitable[Metric]: ...


class Scheduler:
    """
    Single cooperative loop: milestones, then the recurring wheel, then sleep
    until the next window computed from the ledger. Cycles never overlap.
    """

    def __init__(
        self,
        settings: Settings,
        ledger: LedgerStore,
        metrics: MetricSource,
        milestones: MilestoneEngine,
        recurring: RecurringEngine,
        clock: Callable[[], int] = now_ms,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.settings = settings
        self.ledger = ledger
        self.metrics = metrics
        self.milestones = milestones
        self.recurring = recurring
        self.clock = clock
        self.sleep = sleep
        self._running = False

    def compute_delay_ms(self) -> int:
        s = self.settings
        state = self.ledger.state()
        if state.recurring_active:
            interval, last = s.recurring_interval_ms, state.last_recurring_ts
        else:
            # Prefer the shorter demo cadence until recurring is live
            interval = min(s.recurring_interval_ms, s.demo_interval_ms)
            last = state.last_spin_ts if s.demo_below_start else state.last_recurring_ts
        if interval <= 0:
            interval = s.recurring_interval_ms

        now = self.clock()
        if last:
            target = last + interval
        else:
            target = now + max(MIN_DELAY_MS, min(interval, FIRST_RUN_MAX_DELAY_MS))
        return max(MIN_DELAY_MS, target - now)

    async def run_cycle(self) -> bool:
        """Run one draw cycle. Returns False without doing anything if a cycle is in progress."""
        if self._running:
            log.debug("Cycle already running; deferring.")
            return False
        self._running = True
        try:
            metric = await self.metrics.get_observed_metric()
            log.debug("Observed FDV %s (source %s).", metric.value_usd, metric.source)
            try:
                await self.milestones.run(metric.value_usd)
            except LedgerError:
                log.exception("Ledger append failed; remaining draws skipped this cycle.")
                return True
            except Exception:
                log.exception("Milestones error")
            try:
                outcome = await self.recurring.run(metric.value_usd)
                log.debug("Recurring outcome: %s", outcome.value)
            except Exception:
                log.exception("Recurring error")
        finally:
            self._running = False
        return True

    async def run_forever(self) -> None:
        if self.settings.recurring_interval_ms <= 0:
            log.info("Recurring loop disabled (RECURRING_INTERVAL_MS <= 0).")
            return
        while True:
            await self.run_cycle()
            delay = self.compute_delay_ms()
            eta = datetime.fromtimestamp((self.clock() + delay) / 1000, tz=timezone.utc).isoformat()
            log.info("Next recurring check in %.1fs (~ %s).", delay / 1000, eta)
            await self.sleep(delay / 1000)
