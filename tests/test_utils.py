import asyncio
from datetime import date, datetime, timezone

import httpx
import pytest
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

from app.db import migrate
from app.utils import dates, retry
from app.utils.passwords import hash_password, verify_password


def test_iter_days_is_inclusive():
    assert list(dates.iter_days(date(2024, 2, 28), date(2024, 3, 1))) == [
        date(2024, 2, 28),
        date(2024, 2, 29),
        date(2024, 3, 1),
    ]
    assert list(dates.iter_days(date(2024, 1, 2), date(2024, 1, 1))) == []


def test_parse_iso_date_rejects_garbage():
    assert dates.parse_iso_date("2024-01-31") == date(2024, 1, 31)
    with pytest.raises(ValueError):
        dates.parse_iso_date("2024-02-30")
    with pytest.raises(ValueError):
        dates.parse_iso_date("yesterday")


def test_timestamp_round_trip_through_naive_utc():
    parsed = dates.parse_timestamp("2024-01-01T21:00:00-03:00")
    assert parsed == datetime(2024, 1, 2, 0, 0, tzinfo=timezone.utc)
    naive = dates.to_naive_utc(parsed)
    assert naive.tzinfo is None
    assert dates.as_utc(naive) == parsed
    assert dates.parse_timestamp(None) is None


def test_schema_statements_split():
    statements = migrate.schema_statements()
    assert len(statements) == 6
    assert all(stmt.rstrip().endswith(";") for stmt in statements)
    assert any("dashboard_hourly" in stmt for stmt in statements)


def test_run_migrations_is_idempotent():
    engine = create_engine("sqlite://", poolclass=StaticPool, connect_args={"check_same_thread": False})
    assert migrate.run_migrations(engine) == list(migrate.TABLES)
    assert migrate.run_migrations(engine) == []


def test_password_hashing():
    hashed = hash_password("hunter2")
    assert hashed != "hunter2"
    assert verify_password("hunter2", hashed)
    assert not verify_password("hunter3", hashed)
    assert not verify_password("hunter2", "not-a-hash")


@pytest.mark.asyncio
async def test_retry_async_retries_transport_errors_only():
    attempts = {"count": 0}

    async def flaky():
        attempts["count"] += 1
        if attempts["count"] < 3:
            raise httpx.ConnectError("refused")
        return "ok"

    assert await retry.retry_async(flaky, base_delay=0)() == "ok"
    assert attempts["count"] == 3

    async def broken():
        raise ValueError("not retried")

    with pytest.raises(ValueError):
        await retry.retry_async(broken, base_delay=0)()


@pytest.mark.asyncio
async def test_retry_async_gives_up_after_max_attempts():
    calls = []

    async def always_timeout():
        calls.append(1)
        raise asyncio.TimeoutError

    with pytest.raises(asyncio.TimeoutError):
        await retry.retry_async(always_timeout, base_delay=0)()
    assert len(calls) == retry.MAX_ATTEMPTS
