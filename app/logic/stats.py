"""Range statistics served from the rollup cache."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Any, Protocol

from app.db.rollups import DailyRollup, HourlyRollup, RollupStore
from app.ingest.models import StoreScope
from app.logic.aggregate import AGE_BANDS, HOURS, DayTally, mean_age
from app.utils.dates import format_date, iter_days, utc_now

logger = logging.getLogger(__name__)

# Cached rows for the current UTC day older than this are recomputed.
STALE_AFTER = timedelta(minutes=5)

WEEKDAY_LABELS = {
    "monday": "Seg",
    "tuesday": "Ter",
    "wednesday": "Qua",
    "thursday": "Qui",
    "friday": "Sex",
    "saturday": "Sáb",
    "sunday": "Dom",
}


class DayRefresher(Protocol):
    async def refresh_day(self, day: date, scope: StoreScope) -> DayTally: ...


def _zero_hours() -> dict[int, int]:
    return {hour: 0 for hour in HOURS}


@dataclass(slots=True)
class RangeStats:
    total: int = 0
    men: int = 0
    women: int = 0
    age_sum: float = 0.0
    age_count: int = 0
    by_day_of_week: dict[str, int] = field(default_factory=lambda: {label: 0 for label in WEEKDAY_LABELS.values()})
    by_age_group: dict[str, int] = field(default_factory=lambda: {band: 0 for band in AGE_BANDS})
    by_hour: dict[int, int] = field(default_factory=_zero_hours)
    male_by_hour: dict[int, int] = field(default_factory=_zero_hours)
    female_by_hour: dict[int, int] = field(default_factory=_zero_hours)
    refreshed_days: list[date] = field(default_factory=list)

    @property
    def average_age(self) -> int:
        return mean_age(self.age_sum, self.age_count)

    def add_daily(self, row: DailyRollup) -> None:
        self._add_counts(row.total_visitors, row.male, row.female, row.avg_age_sum, row.avg_age_count)
        self._add_breakdowns(row.by_age, row.by_weekday)

    def add_tally(self, tally: DayTally) -> None:
        self._add_counts(tally.total, tally.male, tally.female, tally.age_sum, tally.age_count)
        self._add_breakdowns(tally.by_age, tally.by_weekday)

    def add_hourly_rows(self, rows: list[HourlyRollup]) -> None:
        for row in rows:
            self.by_hour[row.hour] += row.total
            self.male_by_hour[row.hour] += row.male
            self.female_by_hour[row.hour] += row.female

    def add_hourly_tally(self, tally: DayTally) -> None:
        for hour in HOURS:
            self.by_hour[hour] += tally.by_hour.get(hour, 0)
            self.male_by_hour[hour] += tally.male_by_hour.get(hour, 0)
            self.female_by_hour[hour] += tally.female_by_hour.get(hour, 0)

    def _add_counts(self, total: int, male: int, female: int, age_sum: float, age_count: int) -> None:
        self.total += total
        self.men += male
        self.women += female
        self.age_sum += age_sum
        self.age_count += age_count

    def _add_breakdowns(self, by_age: dict[str, int], by_weekday: dict[str, int]) -> None:
        for band in AGE_BANDS:
            self.by_age_group[band] += by_age.get(band, 0)
        for weekday, label in WEEKDAY_LABELS.items():
            self.by_day_of_week[label] += by_weekday.get(weekday, 0)

    def as_dict(self) -> dict[str, Any]:
        return {
            "total": self.total,
            "men": self.men,
            "women": self.women,
            "averageAge": self.average_age,
            "byDayOfWeek": dict(self.by_day_of_week),
            "byAgeGroup": dict(self.by_age_group),
            "byHour": dict(self.by_hour),
            "byGenderHour": {"male": dict(self.male_by_hour), "female": dict(self.female_by_hour)},
        }


class StatsService:
    def __init__(
        self,
        rollups: RollupStore,
        refresher: DayRefresher,
        *,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.rollups = rollups
        self.refresher = refresher
        self.clock = clock

    def is_stale(self, day: date, row: DailyRollup | None, now: datetime) -> bool:
        if row is None:
            return True
        if day != now.date() or row.updated_at is None:
            return False
        return now - row.updated_at > STALE_AFTER

    async def visitor_stats(self, start: date, end: date, scope: StoreScope) -> RangeStats:
        days = list(iter_days(start, end))
        loop = asyncio.get_running_loop()
        cached = await loop.run_in_executor(None, self.rollups.read_daily, days, scope)
        stats = RangeStats()
        for day in days:
            now = self.clock()
            row = cached.get(day)
            fresh: DayTally | None = None
            if self.is_stale(day, row, now):
                logger.info("Cache miss day=%s store=%s", format_date(day), scope)
                fresh = await self.refresher.refresh_day(day, scope)
                stats.add_tally(fresh)
                stats.refreshed_days.append(day)
            else:
                stats.add_daily(row)
            hourly = await loop.run_in_executor(None, self.rollups.read_hourly, day, scope)
            if hourly:
                stats.add_hourly_rows(hourly)
            elif fresh is not None:
                stats.add_hourly_tally(fresh)
        return stats
