"""Refresh and backfill jobs."""

from __future__ import annotations

import argparse
import asyncio
import logging
import os
from datetime import date, timedelta

from dotenv import load_dotenv

from app.db.session import create_engine_from_env
from app.ingest.models import StoreScope
from app.ingest.refresh import RefreshService
from app.ingest.visitor_api import VisitorApiClient
from app.utils.dates import format_date, iter_days, parse_iso_date, today_utc

logger = logging.getLogger(__name__)

BACKFILL_DAYS = int(os.environ.get("BACKFILL_DAYS", 7))


async def refresh_range(service: RefreshService, start: date, end: date, scope: StoreScope) -> int:
    """Refresh each day in order; the first failure propagates."""
    count = 0
    for day in iter_days(start, end):
        await service.refresh_day(day, scope)
        count += 1
    return count


async def backfill(service: RefreshService, days_back: int = BACKFILL_DAYS, *, today: date | None = None) -> int:
    """Refresh ``today - days_back`` through today for all stores, skipping failed days."""
    end = today or today_utc()
    start = end - timedelta(days=days_back)
    scope = StoreScope.all_stores()
    refreshed = 0
    for day in iter_days(start, end):
        try:
            await service.refresh_day(day, scope)
        except Exception as exc:
            logger.warning("Backfill failed for %s: %s", format_date(day), exc)
            continue
        refreshed += 1
    logger.info("Backfill completed: %s of %s days", refreshed, (end - start).days + 1)
    return refreshed


async def run_refresh(
    start: date | None = None, end: date | None = None, device_id: str | None = None
) -> int:
    load_dotenv()
    engine = create_engine_from_env()
    client = VisitorApiClient.from_env()
    service = RefreshService(engine, client)
    first = start or today_utc()
    try:
        return await refresh_range(service, first, end or first, StoreScope.from_param(device_id))
    finally:
        await client.close()


async def run_backfill(days_back: int = BACKFILL_DAYS) -> int:
    load_dotenv()
    engine = create_engine_from_env()
    client = VisitorApiClient.from_env()
    try:
        return await backfill(RefreshService(engine, client), days_back)
    finally:
        await client.close()


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(description="Refresh visitor rollups from the DisplayForce API")
    parser.add_argument("--start", type=parse_iso_date, help="first day (YYYY-MM-DD), default today")
    parser.add_argument("--end", type=parse_iso_date, help="last day (YYYY-MM-DD), default --start")
    parser.add_argument("--device-id", help="restrict to one store/device")
    parser.add_argument("--backfill", type=int, metavar="DAYS", help="backfill the last DAYS days for all stores")
    args = parser.parse_args(argv)
    logging.basicConfig(level=os.environ.get("LOG_LEVEL", "INFO"))
    if args.backfill is not None:
        count = asyncio.run(run_backfill(args.backfill))
    else:
        count = asyncio.run(run_refresh(args.start, args.end, args.device_id))
    print(f"Refreshed {count} day(s)")


if __name__ == "__main__":
    main()
