"""Refresh pipeline: fetch a day, aggregate it, persist rollups and raw records."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from datetime import date, datetime, timezone
from typing import Any

from sqlalchemy.engine import Engine

from app.db.rollups import RollupStore
from app.db.visitors import VisitorStore
from app.ingest.models import StoreScope, VisitorRecord
from app.ingest.visitor_api import VisitorApiClient
from app.logic.aggregate import DayTally, aggregate_visitors
from app.utils.dates import format_date, utc_now

logger = logging.getLogger(__name__)

RefreshKey = tuple[date, StoreScope]


class RefreshService:
    """Runs at most one refresh per (day, scope) at a time.

    Callers that arrive while a refresh for the same key is in flight wait for
    it and receive the same tally instead of hitting the API again.
    """

    def __init__(
        self,
        engine: Engine,
        client: VisitorApiClient,
        *,
        rollups: RollupStore | None = None,
        visitors: VisitorStore | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.engine = engine
        self.client = client
        self.rollups = rollups or RollupStore(engine)
        self.visitors = visitors or VisitorStore(engine)
        self.clock = clock
        self._inflight: dict[RefreshKey, asyncio.Task[DayTally]] = {}

    async def refresh_day(self, day: date, scope: StoreScope) -> DayTally:
        key = (day, scope)
        task = self._inflight.get(key)
        if task is None:
            task = asyncio.ensure_future(self._refresh(day, scope))
            self._inflight[key] = task
            task.add_done_callback(lambda done, key=key: self._forget(key, done))
        else:
            logger.debug("Joining in-flight refresh day=%s store=%s", format_date(day), scope)
        return await asyncio.shield(task)

    def _forget(self, key: RefreshKey, task: asyncio.Task[DayTally]) -> None:
        if self._inflight.get(key) is task:
            del self._inflight[key]

    async def _refresh(self, day: date, scope: StoreScope) -> DayTally:
        events = await self.client.fetch_day(day, None if scope.is_all else scope.device_id)
        tally = aggregate_visitors(events)
        records = _build_records(events, day)
        loop = asyncio.get_running_loop()
        try:
            await loop.run_in_executor(None, self._persist, day, scope, tally, records)
        except Exception:
            logger.exception(
                "Persisting refresh failed day=%s store=%s (fetched %s visitors)",
                format_date(day),
                scope,
                tally.total,
            )
            raise
        logger.info("Refreshed day=%s store=%s total=%s", format_date(day), scope, tally.total)
        return tally

    def _persist(self, day: date, scope: StoreScope, tally: DayTally, records: list[VisitorRecord]) -> None:
        self.rollups.save_day(day, scope, tally, self.clock())
        self.visitors.insert_many(records)


def _build_records(events: list[dict[str, Any]], day: date) -> list[VisitorRecord]:
    fallback = datetime(day.year, day.month, day.day, tzinfo=timezone.utc)
    records: list[VisitorRecord] = []
    skipped = 0
    for event in events:
        record = VisitorRecord.from_event(event, fallback_ts=fallback)
        if record is None:
            skipped += 1
            continue
        records.append(record)
    if skipped:
        logger.debug("Skipped %s visitors without an identifier on %s", skipped, format_date(day))
    return records
