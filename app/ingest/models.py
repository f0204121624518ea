"""Ingestion data models."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Mapping

from app.utils.dates import parse_timestamp

ALL_STORES_KEY = "*"

# Sunday-based, matches ``datetime.isoweekday() % 7``.
WEEKDAY_LABELS = ("Dom", "Seg", "Ter", "Qua", "Qui", "Sex", "Sáb")


@dataclass(frozen=True, slots=True)
class StoreScope:
    """Either every store (``device_id is None``) or a single device."""

    device_id: str | None = None

    @classmethod
    def all_stores(cls) -> "StoreScope":
        return cls(None)

    @classmethod
    def from_param(cls, device_id: str | None) -> "StoreScope":
        if device_id is None or str(device_id).strip() == "":
            return cls.all_stores()
        return cls(str(device_id).strip())

    @property
    def is_all(self) -> bool:
        return self.device_id is None

    @property
    def key(self) -> str:
        """Value persisted in the ``store_key`` column."""
        return ALL_STORES_KEY if self.device_id is None else self.device_id

    @property
    def label(self) -> str:
        return "all" if self.device_id is None else self.device_id

    def __str__(self) -> str:
        return self.label


def event_timestamp(event: Mapping[str, Any]) -> datetime | None:
    """Canonical detection time: top-level ``start``, else the first track's."""
    raw = event.get("start")
    if raw in (None, ""):
        track = _first_track(event)
        raw = track.get("start") if track else None
    return parse_timestamp(raw)


def event_device_id(event: Mapping[str, Any]) -> str:
    raw = event.get("device_id")
    if raw in (None, ""):
        track = _first_track(event)
        raw = track.get("device_id") if track else None
    if raw in (None, ""):
        devices = event.get("devices")
        if isinstance(devices, list) and devices:
            raw = devices[0]
    return "" if raw is None else str(raw)


def event_visitor_id(event: Mapping[str, Any]) -> str | None:
    for field in ("visitor_id", "session_id", "id"):
        value = event.get(field)
        if value not in (None, ""):
            return str(value)
    track = _first_track(event)
    if track and track.get("id") not in (None, ""):
        return str(track["id"])
    return None


def event_is_male(event: Mapping[str, Any]) -> bool:
    return event.get("sex") == 1


def event_age(event: Mapping[str, Any]) -> float:
    try:
        return float(event.get("age") or 0)
    except (TypeError, ValueError):
        return 0.0


def event_smiled(event: Mapping[str, Any]) -> bool:
    raw = event.get("smile")
    if raw is None:
        extra = event.get("additional_attributes")
        raw = extra.get("smile") if isinstance(extra, Mapping) else None
    if isinstance(raw, bool):
        return raw
    return str(raw or "").strip().lower() == "yes"


def weekday_label(ts: datetime) -> str:
    return WEEKDAY_LABELS[ts.isoweekday() % 7]


def _first_track(event: Mapping[str, Any]) -> Mapping[str, Any] | None:
    tracks = event.get("tracks")
    if isinstance(tracks, list) and tracks and isinstance(tracks[0], Mapping):
        return tracks[0]
    return None


@dataclass(slots=True)
class VisitorRecord:
    visitor_id: str
    timestamp: datetime
    store_id: str
    store_name: str
    gender: str
    age: float
    day_of_week: str
    smile: bool

    @classmethod
    def from_event(cls, event: Mapping[str, Any], *, fallback_ts: datetime) -> "VisitorRecord | None":
        visitor_id = event_visitor_id(event)
        if visitor_id is None:
            return None
        ts = event_timestamp(event) or fallback_ts
        return cls(
            visitor_id=visitor_id,
            timestamp=ts,
            store_id=event_device_id(event),
            store_name=str(event.get("store_name") or ""),
            gender="M" if event_is_male(event) else "F",
            age=event_age(event),
            day_of_week=weekday_label(ts),
            smile=event_smiled(event),
        )


@dataclass(slots=True)
class VisitorPage:
    items: list[dict[str, Any]]
    total: int
    page: int
    page_size: int

