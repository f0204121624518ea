"""Raw visitor records."""

from __future__ import annotations

import re
from datetime import date, datetime, timedelta
from typing import Any, Iterable

from sqlalchemy import Boolean, DateTime, Float, bindparam
from sqlalchemy.engine import Engine
from sqlalchemy.sql import text

from app.ingest.models import VisitorPage, VisitorRecord
from app.utils.dates import as_utc, to_naive_utc

MAX_PAGE_SIZE = 1000
DEFAULT_PAGE_SIZE = 40
LEADING_INT = re.compile(r"\s*[+-]?\d+")


def clamp_page(page: Any, page_size: Any) -> tuple[int, int]:
    """Normalize paging input; garbage falls back to page 1 and the default size."""
    page_num = _to_int(page) or 1
    size = _to_int(page_size) or DEFAULT_PAGE_SIZE
    return max(1, page_num), min(MAX_PAGE_SIZE, max(1, size))


def _to_int(value: Any) -> int | None:
    """Leading integer of ``value`` ("1.5" is 1, "12abc" is 12), else None."""
    if value is None:
        return None
    match = LEADING_INT.match(str(value))
    return int(match.group()) if match else None


class VisitorStore:
    """Append-only store; the only writer of ``visitors``."""

    def __init__(self, engine: Engine) -> None:
        self.engine = engine

    def insert_many(self, records: Iterable[VisitorRecord]) -> int:
        rows = [
            {
                "visitor_id": record.visitor_id,
                "timestamp": to_naive_utc(record.timestamp),
                "store_id": record.store_id,
                "store_name": record.store_name or None,
                "gender": record.gender,
                "age": record.age,
                "day_of_week": record.day_of_week,
                "smile": record.smile,
            }
            for record in records
        ]
        if not rows:
            return 0
        statement = text(
            """
            INSERT INTO visitors (visitor_id, timestamp, store_id, store_name, gender, age, day_of_week, smile)
            VALUES (:visitor_id, :timestamp, :store_id, :store_name, :gender, :age, :day_of_week, :smile)
            ON CONFLICT DO NOTHING
            """
        ).bindparams(bindparam("timestamp", type_=DateTime), bindparam("smile", type_=Boolean))
        with self.engine.begin() as conn:
            conn.execute(statement, rows)
        return len(rows)

    def list_page(
        self,
        start: date,
        end: date,
        *,
        device_id: str | None = None,
        page: int = 1,
        page_size: int = DEFAULT_PAGE_SIZE,
    ) -> VisitorPage:
        page, page_size = clamp_page(page, page_size)
        where = "timestamp >= :start_ts AND timestamp < :end_ts"
        params: dict[str, Any] = {
            "start_ts": datetime(start.year, start.month, start.day),
            "end_ts": datetime(end.year, end.month, end.day) + timedelta(days=1),
        }
        if device_id:
            where += " AND store_id = :store_id"
            params["store_id"] = device_id
        types = (bindparam("start_ts", type_=DateTime), bindparam("end_ts", type_=DateTime))

        count_query = text(f"SELECT COUNT(*) AS total FROM visitors WHERE {where}").bindparams(*types)
        list_query = (
            text(
                f"""
                SELECT visitor_id, timestamp, store_id, store_name, gender, age, day_of_week, smile
                FROM visitors
                WHERE {where}
                ORDER BY timestamp DESC
                LIMIT :limit OFFSET :offset
                """
            )
            .bindparams(*types)
            .columns(timestamp=DateTime, age=Float, smile=Boolean)
        )
        with self.engine.connect() as conn:
            total = int(conn.execute(count_query, params).scalar_one() or 0)
            result = conn.execute(
                list_query, {**params, "limit": page_size, "offset": (page - 1) * page_size}
            )
            items = [_serialize(row) for row in result.mappings()]
        return VisitorPage(items=items, total=total, page=page, page_size=page_size)


def _serialize(row: Any) -> dict[str, Any]:
    ts = as_utc(row["timestamp"])
    return {
        "visitor_id": row["visitor_id"],
        "timestamp": ts.isoformat().replace("+00:00", "Z") if ts else None,
        "store_id": row["store_id"],
        "store_name": row["store_name"],
        "gender": row["gender"],
        "age": row["age"],
        "day_of_week": row["day_of_week"],
        "smile": bool(row["smile"]),
    }
