"""Daily and hourly rollup tables."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, Iterable

from sqlalchemy import Date, DateTime, Float, Integer, bindparam
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.sql import text
from sqlalchemy.sql.elements import TextClause

from app.ingest.models import StoreScope
from app.logic.aggregate import HOURS, DayTally
from app.utils.dates import as_utc, to_naive_utc

logger = logging.getLogger(__name__)

AGE_COLUMNS = {
    "18-25": "age_18_25",
    "26-35": "age_26_35",
    "36-45": "age_36_45",
    "46-60": "age_46_60",
    "60+": "age_60_plus",
}
WEEKDAY_COLUMNS = ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")
DAILY_COLUMNS = (
    "total_visitors",
    "male",
    "female",
    "avg_age_sum",
    "avg_age_count",
    *AGE_COLUMNS.values(),
    *WEEKDAY_COLUMNS,
)


@dataclass(slots=True)
class DailyRollup:
    day: date
    store_key: str
    total_visitors: int
    male: int
    female: int
    avg_age_sum: float
    avg_age_count: int
    by_age: dict[str, int]
    by_weekday: dict[str, int]
    updated_at: datetime | None

    @classmethod
    def from_row(cls, row: Any) -> "DailyRollup":
        return cls(
            day=row["day"],
            store_key=row["store_key"],
            total_visitors=int(row["total_visitors"] or 0),
            male=int(row["male"] or 0),
            female=int(row["female"] or 0),
            avg_age_sum=float(row["avg_age_sum"] or 0),
            avg_age_count=int(row["avg_age_count"] or 0),
            by_age={band: int(row[col] or 0) for band, col in AGE_COLUMNS.items()},
            by_weekday={day: int(row[day] or 0) for day in WEEKDAY_COLUMNS},
            updated_at=as_utc(row["updated_at"]),
        )


@dataclass(slots=True)
class HourlyRollup:
    hour: int
    total: int
    male: int
    female: int


def _typed(sql: str, **types: Any) -> TextClause:
    """``text()`` with explicit bind types for date and timestamp parameters."""
    return text(sql).bindparams(*(bindparam(name, type_=type_) for name, type_ in types.items()))


def daily_values(tally: DayTally) -> dict[str, Any]:
    values: dict[str, Any] = {
        "total_visitors": tally.total,
        "male": tally.male,
        "female": tally.female,
        "avg_age_sum": tally.age_sum,
        "avg_age_count": tally.age_count,
    }
    for band, column in AGE_COLUMNS.items():
        values[column] = tally.by_age.get(band, 0)
    for day in WEEKDAY_COLUMNS:
        values[day] = tally.by_weekday.get(day, 0)
    return values


class RollupStore:
    """Sole writer of ``dashboard_daily`` and ``dashboard_hourly``."""

    def __init__(self, engine: Engine) -> None:
        self.engine = engine

    def save_day(self, day: date, scope: StoreScope, tally: DayTally, updated_at: datetime) -> None:
        """Replace the daily row and all 24 hourly rows in one transaction."""
        with self.engine.begin() as conn:
            self._upsert_daily(conn, day, scope, tally, updated_at)
            self._upsert_hourly(conn, day, scope, tally)

    def upsert_daily(self, day: date, scope: StoreScope, tally: DayTally, updated_at: datetime) -> None:
        with self.engine.begin() as conn:
            self._upsert_daily(conn, day, scope, tally, updated_at)

    def upsert_hourly(self, day: date, scope: StoreScope, tally: DayTally) -> None:
        with self.engine.begin() as conn:
            self._upsert_hourly(conn, day, scope, tally)

    def read_daily(self, days: Iterable[date], scope: StoreScope) -> dict[date, DailyRollup]:
        days = list(days)
        if not days:
            return {}
        query = (
            text(
                f"""
                SELECT day, store_key, {", ".join(DAILY_COLUMNS)}, updated_at
                FROM dashboard_daily
                WHERE day IN :days AND store_key = :store_key
                """
            )
            .bindparams(bindparam("days", expanding=True, type_=Date))
            .columns(day=Date, updated_at=DateTime, avg_age_sum=Float)
        )
        with self.engine.connect() as conn:
            result = conn.execute(query, {"days": days, "store_key": scope.key})
            rows = [DailyRollup.from_row(row) for row in result.mappings()]
        return {row.day: row for row in rows}

    def read_hourly(self, day: date, scope: StoreScope) -> list[HourlyRollup]:
        query = _typed(
            """
            SELECT hour, total, male, female
            FROM dashboard_hourly
            WHERE day = :day AND store_key = :store_key
            ORDER BY hour
            """,
            day=Date,
        ).columns(hour=Integer, total=Integer, male=Integer, female=Integer)
        with self.engine.connect() as conn:
            result = conn.execute(query, {"day": day, "store_key": scope.key})
            return [
                HourlyRollup(hour=row.hour, total=row.total or 0, male=row.male or 0, female=row.female or 0)
                for row in result
            ]

    def _upsert_daily(
        self, conn: Connection, day: date, scope: StoreScope, tally: DayTally, updated_at: datetime
    ) -> None:
        # Concurrent first writes for a new day must both succeed.
        columns = ", ".join(DAILY_COLUMNS)
        placeholders = ", ".join(f":{col}" for col in DAILY_COLUMNS)
        assignments = ", ".join(f"{col} = EXCLUDED.{col}" for col in DAILY_COLUMNS)
        conn.execute(
            _typed(
                f"""
                INSERT INTO dashboard_daily (day, store_key, {columns}, updated_at)
                VALUES (:day, :store_key, {placeholders}, :updated_at)
                ON CONFLICT (day, store_key) DO UPDATE SET
                  {assignments},
                  updated_at = EXCLUDED.updated_at
                """,
                day=Date,
                updated_at=DateTime,
            ),
            {
                "day": day,
                "store_key": scope.key,
                "updated_at": to_naive_utc(updated_at),
                **daily_values(tally),
            },
        )
        logger.debug("Saved daily rollup day=%s store=%s total=%s", day, scope, tally.total)

    def _upsert_hourly(self, conn: Connection, day: date, scope: StoreScope, tally: DayTally) -> None:
        statement = _typed(
            """
            INSERT INTO dashboard_hourly (day, store_key, hour, total, male, female)
            VALUES (:day, :store_key, :hour, :total, :male, :female)
            ON CONFLICT (day, store_key, hour) DO UPDATE SET
              total = EXCLUDED.total,
              male = EXCLUDED.male,
              female = EXCLUDED.female
            """,
            day=Date,
        )
        for hour in HOURS:
            conn.execute(
                statement,
                {
                    "day": day,
                    "store_key": scope.key,
                    "hour": hour,
                    "total": tally.by_hour.get(hour, 0),
                    "male": tally.male_by_hour.get(hour, 0),
                    "female": tally.female_by_hour.get(hour, 0),
                },
            )
