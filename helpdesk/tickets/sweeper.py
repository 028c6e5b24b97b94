"""Background sweep that closes resolved tickets whose SLA deadline has passed.

The sweep is a privileged bulk writer. It does not negotiate versions per
ticket. Instead it issues one filtered update over ``status = resolved AND
sla_deadline < now``. Every ticket it touches still gets ``version + 1`` and a
system timeline entry. The filter is monotonic and excludes its own output:
once a ticket is closed, or someone else moves it out of ``resolved``, later
cycles skip it.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Callable

from helpdesk.metrics import MetricsRegistry, metrics_registry
from helpdesk.metrics.definitions import AUTO_CLOSE_FAILURES, TICKETS_AUTO_CLOSED

from .models import TimelineAction, TimelineEntry
from .repository import TicketStore

logger = logging.getLogger(__name__)

AUTO_CLOSE_DETAILS = "Auto-closed after SLA expiry"
DEFAULT_INTERVAL_SECONDS = 5 * 60


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AutoCloseSweeper:
    """Periodic task owning the auto-close cycle. It keeps no checkpoint between runs."""

    def __init__(
        self,
        store: TicketStore,
        *,
        interval_seconds: float = DEFAULT_INTERVAL_SECONDS,
        clock: Callable[[], datetime] = _utcnow,
        metrics: MetricsRegistry | None = None,
    ) -> None:
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive")
        self._store = store
        self._interval = interval_seconds
        self._clock = clock
        self._metrics = metrics or metrics_registry
        self._task: asyncio.Task[None] | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def run_once(self, now: datetime | None = None) -> int:
        """Close every expired resolved ticket and return how many were closed."""

        now = now or self._clock()
        entry = TimelineEntry(TimelineAction.STATUS_CHANGE.value, None, now, AUTO_CLOSE_DETAILS)
        closed = await self._store.close_expired(now, entry)
        if closed:
            self._metrics.counter(TICKETS_AUTO_CLOSED).inc(closed)
            logger.info("Auto-closed %s tickets past SLA.", closed)
        return closed

    async def run_cycle(self) -> int:
        """Run one cycle; a failure is logged and reported as zero closures."""

        try:
            return await self.run_once()
        except asyncio.CancelledError:
            raise
        except Exception:
            self._metrics.counter(AUTO_CLOSE_FAILURES).inc()
            logger.exception("Auto-close job failed")
            return 0

    def start(self) -> None:
        if self.running:
            raise RuntimeError("Auto-close sweeper already running")
        self._task = asyncio.create_task(self._run(), name="helpdesk-auto-close")
        logger.info("Auto-close sweeper started (interval %ss)", self._interval)

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("Auto-close sweeper stopped")

    async def _run(self) -> None:
        # First cycle runs one interval after start.
        while True:
            await asyncio.sleep(self._interval)
            await self.run_cycle()
