"""Celery configuration for running refreshes outside the API process."""

from __future__ import annotations

import asyncio
import os

from celery import Celery
from celery.signals import worker_ready

from app.jobs.scheduler import REFRESH_INTERVAL

broker_url = os.environ.get("REDIS_URL", "redis://redis:6379/0")
backend_url = os.environ.get("REDIS_URL", "redis://redis:6379/0")

celery_app = Celery("visitors", broker=broker_url, backend=backend_url)
celery_app.conf.timezone = "UTC"
celery_app.conf.beat_schedule = {
    "refresh-today": {
        "task": "app.jobs.refresh.refresh_today",
        "schedule": REFRESH_INTERVAL.total_seconds(),
    },
}


@celery_app.task(name="app.jobs.refresh.refresh_today")
def refresh_today_task() -> int:
    from app.jobs.refresh import run_refresh

    return asyncio.run(run_refresh())


@celery_app.task(name="app.jobs.refresh.refresh_range")
def refresh_range_task(start: str | None = None, end: str | None = None, device_id: str | None = None) -> int:
    from app.jobs.refresh import run_refresh
    from app.utils.dates import parse_iso_date

    first = parse_iso_date(start) if start else None
    last = parse_iso_date(end) if end else None
    return asyncio.run(run_refresh(first, last, device_id))


@celery_app.task(name="app.jobs.refresh.backfill")
def backfill_task(days_back: int | None = None) -> int:
    from app.jobs.refresh import BACKFILL_DAYS, run_backfill

    return asyncio.run(run_backfill(BACKFILL_DAYS if days_back is None else days_back))


@worker_ready.connect
def _backfill_on_start(sender=None, **kwargs) -> None:  # pragma: no cover - executed by worker
    backfill_task.delay()
