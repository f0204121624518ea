from datetime import date, datetime, timedelta, timezone

import pytest

from app.db.rollups import RollupStore
from app.ingest.models import StoreScope
from app.logic.aggregate import aggregate_visitors
from app.logic.stats import STALE_AFTER, StatsService
from tests.conftest import daily_row, dashboard_daily, make_event


class RecordingRefresher:
    def __init__(self, tally=None, *, rollups=None, now=None):
        self.tally = tally or aggregate_visitors([])
        self.rollups = rollups
        self.now = now
        self.calls = []

    async def refresh_day(self, day, scope):
        self.calls.append((day, scope))
        if self.rollups is not None:
            self.rollups.save_day(day, scope, self.tally, self.now)
        return self.tally


def _service(engine, refresher, now):
    return StatsService(RollupStore(engine), refresher, clock=lambda: now)


@pytest.mark.asyncio
async def test_range_blends_cached_days(seeded_engine):
    now = datetime(2024, 2, 1, 12, 0, tzinfo=timezone.utc)
    refresher = RecordingRefresher()
    stats = await _service(seeded_engine, refresher, now).visitor_stats(
        date(2024, 1, 1), date(2024, 1, 3), StoreScope.all_stores()
    )
    assert refresher.calls == []
    assert stats.total == 16
    assert stats.men == 8
    assert stats.women == 8
    # (300 + 100 + 61) / 13, not the mean of 30, 50 and 61
    assert stats.average_age == 35
    body = stats.as_dict()
    assert body["byDayOfWeek"] == {"Seg": 10, "Ter": 5, "Qua": 1, "Qui": 0, "Sex": 0, "Sáb": 0, "Dom": 0}
    assert body["byAgeGroup"] == {"18-25": 2, "26-35": 10, "36-45": 0, "46-60": 0, "60+": 1}
    assert body["byHour"][10] == 10
    assert body["byHour"][14] == 5
    assert body["byGenderHour"]["female"][14] == 4
    assert len(body["byHour"]) == 24


@pytest.mark.asyncio
async def test_missing_day_is_refreshed_and_blended(seeded_engine):
    now = datetime(2024, 2, 1, 12, 0, tzinfo=timezone.utc)
    tally = aggregate_visitors([make_event("x", start="2024-01-04T09:00:00Z", age=40)])
    refresher = RecordingRefresher(tally)
    stats = await _service(seeded_engine, refresher, now).visitor_stats(
        date(2024, 1, 3), date(2024, 1, 4), StoreScope.all_stores()
    )
    assert refresher.calls == [(date(2024, 1, 4), StoreScope.all_stores())]
    assert stats.total == 2
    assert stats.refreshed_days == [date(2024, 1, 4)]
    # no persisted hourly rows, so the fresh tally supplies the hours
    assert stats.by_hour[9] == 1


@pytest.mark.asyncio
async def test_refreshed_day_reads_persisted_hourly_rows(engine):
    now = datetime(2024, 1, 5, 12, 0, tzinfo=timezone.utc)
    rollups = RollupStore(engine)
    tally = aggregate_visitors([make_event("x", start="2024-01-04T09:00:00Z", sex=2)])
    refresher = RecordingRefresher(tally, rollups=rollups, now=now)
    stats = await _service(engine, refresher, now).visitor_stats(
        date(2024, 1, 4), date(2024, 1, 4), StoreScope("3")
    )
    assert stats.female_by_hour[9] == 1
    assert sum(stats.by_hour.values()) == 1


@pytest.mark.parametrize(("age_minutes", "refreshed"), [(10, True), (1, False)])
@pytest.mark.asyncio
async def test_today_row_staleness(engine, fixed_now, age_minutes, refreshed):
    today = fixed_now.date()
    updated = (fixed_now - timedelta(minutes=age_minutes)).replace(tzinfo=None)
    with engine.begin() as conn:
        conn.execute(dashboard_daily.insert(), daily_row(today, updated_at=updated, total_visitors=4))
    refresher = RecordingRefresher(aggregate_visitors([make_event("a"), make_event("b")]))
    stats = await _service(engine, refresher, fixed_now).visitor_stats(today, today, StoreScope.all_stores())
    assert bool(refresher.calls) is refreshed
    assert stats.total == (2 if refreshed else 4)


@pytest.mark.asyncio
async def test_old_rows_for_past_days_stay_cached(engine, fixed_now):
    yesterday = fixed_now.date() - timedelta(days=1)
    with engine.begin() as conn:
        conn.execute(
            dashboard_daily.insert(),
            daily_row(yesterday, updated_at=datetime(2023, 6, 1), total_visitors=7),
        )
    refresher = RecordingRefresher()
    stats = await _service(engine, refresher, fixed_now).visitor_stats(
        yesterday, yesterday, StoreScope.all_stores()
    )
    assert refresher.calls == []
    assert stats.total == 7


def test_stale_window_is_five_minutes():
    assert STALE_AFTER == timedelta(minutes=5)


@pytest.mark.asyncio
async def test_store_scope_reads_its_own_rows(seeded_engine):
    now = datetime(2024, 2, 1, tzinfo=timezone.utc)
    refresher = RecordingRefresher()
    stats = await _service(seeded_engine, refresher, now).visitor_stats(
        date(2024, 1, 1), date(2024, 1, 1), StoreScope("99")
    )
    assert refresher.calls == [(date(2024, 1, 1), StoreScope("99"))]
    assert stats.total == 0
