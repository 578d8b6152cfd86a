"""
Periodic maintenance for the credential pool.

This module runs, as background asyncio tasks:
- Quota reset on each credential's reset day (hourly check)
- Full ledger flush to the durable store (every minute)
- Pending queue drain on the flush tick, so requests waiting on an
  expired cooldown or a reset quota get picked up
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from datetime import datetime
from typing import Any, Optional

from scrape_proxy.core.models import PoolConfig, utc_now
from scrape_proxy.pipelines.dispatcher import Dispatcher
from scrape_proxy.utils.logging import get_logger

logger = get_logger(__name__)




# ==== MAINTENANCE RUNNER ==== #

class Maintenance:
    """
    Time-driven upkeep of the ledger and the pending queue.

    Attributes:
        dispatcher: Dispatcher owning the ledger, selector and queue
        reset_interval: Seconds between quota reset checks
        flush_interval: Seconds between ledger flushes and queue drains
        _tasks: Running background loops
    """

    def __init__(
        self,
        dispatcher: Dispatcher,
        reset_interval: float,
        flush_interval: float,
    ) -> None:
        self.dispatcher = dispatcher
        self.reset_interval = reset_interval
        self.flush_interval = flush_interval
        self._tasks: list[asyncio.Task[Any]] = []

    @classmethod
    def from_config(cls, dispatcher: Dispatcher, config: PoolConfig) -> Maintenance:
        return cls(
            dispatcher,
            reset_interval=config.reset_interval_seconds,
            flush_interval=config.flush_interval_seconds,
        )




    # --► MAINTENANCE ACTIONS

    async def reset_quotas(self, now: Optional[datetime] = None) -> list[str]:
        """
        Reset every credential whose reset day has come this period.

        Returns:
            Ids of the credentials that were reset
        """
        now = now or utc_now()
        ledger = self.dispatcher.ledger
        reset: list[str] = []

        for state in ledger.states():
            if await ledger.reset_if_due(state.id, now):
                reset.append(state.id)

        if reset:
            self.drain()

        return reset

    async def flush(self) -> None:
        """Snapshot the whole ledger to the durable store."""
        await self.dispatcher.ledger.snapshot_all()

    def drain(self) -> int:
        """
        Start as many queue drains as there are free credential slots.

        Returns:
            Number of drain tasks started
        """
        queue_depth = len(self.dispatcher.queue)
        if not queue_depth:
            return 0

        selector = self.dispatcher.selector
        capacity = queue_depth if selector.pool_empty else selector.available_slots()
        started = self.dispatcher.schedule_drain(capacity)

        if started:
            logger.info("Draining %s of %s queued requests", started, queue_depth)

        return started

    async def _flush_and_drain(self) -> None:
        await self.flush()
        self.drain()




    # --► BACKGROUND LOOPS

    async def _every(
        self,
        interval: float,
        action: Callable[[], Awaitable[Any]],
        name: str,
    ) -> None:
        while True:
            await asyncio.sleep(interval)
            try:
                await action()
            except Exception:
                logger.exception("Maintenance task %s failed", name)

    async def start(self) -> None:
        """Run an initial reset check, then start the periodic loops."""
        await self.reset_quotas()

        self._tasks = [
            asyncio.create_task(
                self._every(self.reset_interval, self.reset_quotas, "quota_reset"),
            ),
            asyncio.create_task(
                self._every(self.flush_interval, self._flush_and_drain, "ledger_flush"),
            ),
        ]
        logger.info(
            "Maintenance started (reset every %ss, flush every %ss)",
            self.reset_interval,
            self.flush_interval,
        )

    async def stop(self) -> None:
        """Cancel the loops and write a final snapshot."""
        for task in self._tasks:
            task.cancel()

        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []
        await self.flush()
