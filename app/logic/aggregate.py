"""Per-day visitor aggregation."""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping

from app.ingest.models import event_age, event_is_male, event_timestamp

AGE_BANDS = ("18-25", "26-35", "36-45", "46-60", "60+")
WEEKDAYS = ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")
# Indexed by ``isoweekday() % 7``, so Sunday is 0.
UTC_WEEKDAY_MAP = ("sunday", "monday", "tuesday", "wednesday", "thursday", "friday", "saturday")
HOURS = range(24)


def _zero_hours() -> dict[int, int]:
    return {hour: 0 for hour in HOURS}


@dataclass(slots=True)
class DayTally:
    total: int = 0
    male: int = 0
    female: int = 0
    age_sum: float = 0.0
    age_count: int = 0
    by_age: dict[str, int] = field(default_factory=lambda: {band: 0 for band in AGE_BANDS})
    by_weekday: dict[str, int] = field(default_factory=lambda: {day: 0 for day in WEEKDAYS})
    by_hour: dict[int, int] = field(default_factory=_zero_hours)
    male_by_hour: dict[int, int] = field(default_factory=_zero_hours)
    female_by_hour: dict[int, int] = field(default_factory=_zero_hours)

    @property
    def average_age(self) -> int:
        return mean_age(self.age_sum, self.age_count)


def age_band(age: float) -> str | None:
    if 18 <= age <= 25:
        return "18-25"
    if 26 <= age <= 35:
        return "26-35"
    if 36 <= age <= 45:
        return "36-45"
    if 46 <= age <= 60:
        return "46-60"
    if age > 60:
        return "60+"
    return None


def mean_age(age_sum: float, age_count: int) -> int:
    """Rounded mean (half up); 0 when no ages were counted."""
    if not age_count:
        return 0
    return int(math.floor(age_sum / age_count + 0.5))


def aggregate_visitors(events: Iterable[Mapping[str, Any]]) -> DayTally:
    tally = DayTally()
    for event in events:
        tally.total += 1
        male = event_is_male(event)
        if male:
            tally.male += 1
        else:
            tally.female += 1

        age = event_age(event)
        if age > 0:
            tally.age_sum += age
            tally.age_count += 1
        band = age_band(age)
        if band:
            tally.by_age[band] += 1

        ts = event_timestamp(event)
        if ts is None:
            continue
        tally.by_weekday[UTC_WEEKDAY_MAP[ts.isoweekday() % 7]] += 1
        tally.by_hour[ts.hour] += 1
        if male:
            tally.male_by_hour[ts.hour] += 1
        else:
            tally.female_by_hour[ts.hour] += 1
    return tally
