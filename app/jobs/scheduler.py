"""In-process background refresh."""

from __future__ import annotations

import asyncio
import logging
from datetime import timedelta

from app.ingest.models import StoreScope
from app.ingest.refresh import RefreshService
from app.jobs.refresh import BACKFILL_DAYS, backfill
from app.utils.dates import format_date, today_utc

logger = logging.getLogger(__name__)

REFRESH_INTERVAL = timedelta(minutes=5)


class RefreshScheduler:
    """Startup backfill plus a periodic refresh of today, both cancellable via ``stop()``."""

    def __init__(
        self,
        service: RefreshService,
        *,
        interval: timedelta = REFRESH_INTERVAL,
        backfill_days: int = BACKFILL_DAYS,
    ) -> None:
        self.service = service
        self.interval = interval
        self.backfill_days = backfill_days
        self._stop = asyncio.Event()
        self._tasks: list[asyncio.Task] = []

    @property
    def running(self) -> bool:
        return any(not task.done() for task in self._tasks)

    def start(self) -> None:
        if self.running:
            return
        self._stop.clear()
        self._tasks = [
            asyncio.create_task(self._run_backfill(), name="visitor-backfill"),
            asyncio.create_task(self._run_periodic(), name="visitor-refresh"),
        ]

    async def stop(self) -> None:
        self._stop.set()
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []

    async def _run_backfill(self) -> None:
        try:
            await backfill(self.service, self.backfill_days)
        except Exception:
            logger.exception("Backfill aborted")

    async def _run_periodic(self) -> None:
        while not self._stop.is_set():
            await self.refresh_today()
            try:
                await asyncio.wait_for(self._stop.wait(), timeout=self.interval.total_seconds())
            except asyncio.TimeoutError:
                continue

    async def refresh_today(self) -> None:
        day = today_utc()
        try:
            await self.service.refresh_day(day, StoreScope.all_stores())
        except Exception:
            logger.exception("Refresh failed for %s", format_date(day))
