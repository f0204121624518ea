"""Datetime helpers.

Every day boundary in the system is a UTC calendar day.
"""

from __future__ import annotations

from datetime import date, datetime, timedelta, timezone
from typing import Any, Iterator

import pendulum

UTC = "UTC"


def utc_now() -> datetime:
    return pendulum.now(UTC)


def today_utc() -> date:
    return utc_now().date()


def parse_iso_date(value: str) -> date:
    parsed = pendulum.parse(value, exact=True)
    if isinstance(parsed, datetime):
        return parsed.date()
    if isinstance(parsed, date):
        return parsed
    raise ValueError(f"Not a calendar date: {value!r}")


def format_date(value: date) -> str:
    return value.strftime("%Y-%m-%d")


def iter_days(start: date, end: date) -> Iterator[date]:
    """Yield each calendar day from ``start`` to ``end`` inclusive."""
    current = start
    while current <= end:
        yield current
        current += timedelta(days=1)


def day_bounds(day: date) -> tuple[str, str]:
    """Return the first and last second of ``day`` as ISO strings in UTC."""
    stamp = format_date(day)
    return f"{stamp}T00:00:00Z", f"{stamp}T23:59:59Z"


def parse_timestamp(value: Any) -> datetime | None:
    """Parse an API timestamp into an aware UTC datetime, or None."""
    if value in (None, ""):
        return None
    if isinstance(value, datetime):
        parsed = value if value.tzinfo else value.replace(tzinfo=timezone.utc)
        return parsed.astimezone(timezone.utc)
    try:
        parsed = pendulum.parse(str(value), tz=UTC)
    except (ValueError, TypeError):
        return None
    if not isinstance(parsed, datetime):
        return None
    return parsed.in_timezone(UTC)


def to_naive_utc(value: datetime) -> datetime:
    """Drop tzinfo after converting to UTC; the database stores naive UTC."""
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc)
    return datetime(
        value.year, value.month, value.day,
        value.hour, value.minute, value.second, value.microsecond,
    )


def as_utc(value: datetime | str | None) -> datetime | None:
    """Read back a stored timestamp as an aware UTC datetime."""
    if value is None:
        return None
    if isinstance(value, str):
        return parse_timestamp(value)
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)
