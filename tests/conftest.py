from datetime import date, datetime, timezone

import pytest
from sqlalchemy import (
    Boolean,
    Column,
    Date,
    DateTime,
    Float,
    Integer,
    MetaData,
    PrimaryKeyConstraint,
    String,
    Table,
    Text,
    create_engine,
)
from sqlalchemy.pool import StaticPool

from app.db.rollups import RollupStore
from app.db.visitors import VisitorStore

metadata = MetaData()

users = Table(
    "users",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("email", Text, nullable=False, unique=True),
    Column("password_hash", Text, nullable=False),
)

dashboard_daily = Table(
    "dashboard_daily",
    metadata,
    Column("day", Date, nullable=False),
    Column("store_key", Text, nullable=False),
    Column("total_visitors", Integer, default=0),
    Column("male", Integer, default=0),
    Column("female", Integer, default=0),
    Column("avg_age_sum", Float, default=0),
    Column("avg_age_count", Integer, default=0),
    Column("age_18_25", Integer, default=0),
    Column("age_26_35", Integer, default=0),
    Column("age_36_45", Integer, default=0),
    Column("age_46_60", Integer, default=0),
    Column("age_60_plus", Integer, default=0),
    Column("monday", Integer, default=0),
    Column("tuesday", Integer, default=0),
    Column("wednesday", Integer, default=0),
    Column("thursday", Integer, default=0),
    Column("friday", Integer, default=0),
    Column("saturday", Integer, default=0),
    Column("sunday", Integer, default=0),
    Column("updated_at", DateTime, nullable=False),
    PrimaryKeyConstraint("day", "store_key"),
)

dashboard_hourly = Table(
    "dashboard_hourly",
    metadata,
    Column("day", Date, nullable=False),
    Column("store_key", Text, nullable=False),
    Column("hour", Integer, nullable=False),
    Column("total", Integer, default=0),
    Column("male", Integer, default=0),
    Column("female", Integer, default=0),
    PrimaryKeyConstraint("day", "store_key", "hour"),
)

visitors = Table(
    "visitors",
    metadata,
    Column("visitor_id", Text, primary_key=True),
    Column("timestamp", DateTime, nullable=False),
    Column("store_id", Text),
    Column("store_name", Text),
    Column("gender", String(1)),
    Column("age", Float),
    Column("day_of_week", Text),
    Column("smile", Boolean),
)


def make_event(
    visitor_id="v1",
    *,
    start="2024-01-01T10:15:00Z",
    sex=1,
    age=30,
    device_id=None,
    tracks=None,
    **extra,
):
    event = {"visitor_id": visitor_id, "sex": sex, "age": age, **extra}
    if start is not None:
        event["start"] = start
    if tracks is not None:
        event["tracks"] = tracks
    elif device_id is not None:
        event["tracks"] = [{"id": f"t-{visitor_id}", "start": start, "device_id": device_id}]
    return event


def daily_row(day, store_key="*", *, updated_at=None, **values):
    row = {
        "day": day,
        "store_key": store_key,
        "total_visitors": 0,
        "male": 0,
        "female": 0,
        "avg_age_sum": 0,
        "avg_age_count": 0,
        "age_18_25": 0,
        "age_26_35": 0,
        "age_36_45": 0,
        "age_46_60": 0,
        "age_60_plus": 0,
        "monday": 0,
        "tuesday": 0,
        "wednesday": 0,
        "thursday": 0,
        "friday": 0,
        "saturday": 0,
        "sunday": 0,
        "updated_at": updated_at or datetime(2024, 1, 5, 12, 0),
    }
    row.update(values)
    return row


@pytest.fixture()
def engine():
    engine = create_engine(
        "sqlite://",
        future=True,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture()
def rollups(engine):
    return RollupStore(engine)


@pytest.fixture()
def visitor_store(engine):
    return VisitorStore(engine)


@pytest.fixture()
def seeded_engine(engine):
    """Three cached days for all stores, 2024-01-01 (Monday) through 2024-01-03."""
    with engine.begin() as conn:
        conn.execute(
            dashboard_daily.insert(),
            [
                daily_row(date(2024, 1, 1), total_visitors=10, male=6, female=4, avg_age_sum=300,
                          avg_age_count=10, age_26_35=10, monday=10),
                daily_row(date(2024, 1, 2), total_visitors=5, male=1, female=4, avg_age_sum=100,
                          avg_age_count=2, age_18_25=2, tuesday=5),
                daily_row(date(2024, 1, 3), total_visitors=1, male=1, female=0, avg_age_sum=61,
                          avg_age_count=1, age_60_plus=1, wednesday=1),
            ],
        )
        conn.execute(
            dashboard_hourly.insert(),
            [
                {"day": date(2024, 1, 1), "store_key": "*", "hour": 10, "total": 10, "male": 6, "female": 4},
                {"day": date(2024, 1, 2), "store_key": "*", "hour": 14, "total": 5, "male": 1, "female": 4},
            ],
        )
    return engine


@pytest.fixture()
def fixed_now():
    return datetime(2024, 1, 3, 12, 0, tzinfo=timezone.utc)
