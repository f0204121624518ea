"""DisplayForce visitor list client."""

from __future__ import annotations

import logging
import os
from datetime import date
from typing import Any

import httpx

from app.utils.dates import day_bounds, format_date
from app.utils.retry import retry_async

logger = logging.getLogger(__name__)

VISITOR_LIST_ENDPOINT = "https://api.displayforce.ai/public/v1/stats/visitor/list"
PAGE_SIZE = 500
ADDITIONAL_ATTRIBUTES = ["smile", "pitch", "yaw", "x", "y", "height"]


class VisitorApiError(RuntimeError):
    def __init__(self, status_code: int, reason: str, body: str) -> None:
        self.status_code = status_code
        self.reason = reason
        self.body = body
        super().__init__(f"API error [{status_code}] {reason} {body}".rstrip())


class VisitorApiClient:
    def __init__(
        self,
        token: str,
        *,
        endpoint: str = VISITOR_LIST_ENDPOINT,
        session: httpx.AsyncClient | None = None,
    ) -> None:
        self.token = token
        self.endpoint = endpoint
        self.session = session or httpx.AsyncClient(timeout=30.0)

    @classmethod
    def from_env(cls) -> "VisitorApiClient":
        token = os.environ.get("DISPLAYFORCE_TOKEN", "")
        if not token:
            logger.warning("DISPLAYFORCE_TOKEN is not set; visitor API calls will be rejected")
        endpoint = os.environ.get("DISPLAYFORCE_URL", VISITOR_LIST_ENDPOINT)
        return cls(token, endpoint=endpoint)

    async def close(self) -> None:
        await self.session.aclose()

    async def fetch_day(self, day: date, device_id: str | None = None) -> list[dict[str, Any]]:
        """Return every visitor detected on ``day`` (UTC), following pagination."""
        offset = 0
        visitors: list[dict[str, Any]] = []
        while True:
            data = await self._fetch_page(day, device_id, offset)
            page = _extract_payload(data)
            visitors.extend(page)
            pagination = data.get("pagination")
            if not pagination or len(page) < PAGE_SIZE:
                break
            total = pagination.get("total") if isinstance(pagination, dict) else None
            if total and len(visitors) >= total:
                break
            offset += PAGE_SIZE
        logger.debug("Fetched %s visitors for %s (device=%s)", len(visitors), format_date(day), device_id)
        return visitors

    async def _fetch_page(self, day: date, device_id: str | None, offset: int) -> dict[str, Any]:
        start, end = day_bounds(day)
        body: dict[str, Any] = {
            "start": start,
            "end": end,
            "limit": PAGE_SIZE,
            "offset": offset,
            "tracks": True,
            "face_quality": True,
            "glasses": True,
            "facial_hair": True,
            "hair_color": True,
            "hair_type": True,
            "headwear": True,
            "additional_attributes": ADDITIONAL_ATTRIBUTES,
        }
        if device_id:
            body["device_id"] = device_id
        headers = {"X-API-Token": self.token}
        response = await retry_async(self.session.post)(self.endpoint, json=body, headers=headers)
        if not response.is_success:
            raise VisitorApiError(response.status_code, response.reason_phrase, response.text)
        data = response.json()
        return data if isinstance(data, dict) else {}


def _extract_payload(data: dict[str, Any]) -> list[dict[str, Any]]:
    payload = data.get("payload")
    if payload is None:
        payload = data.get("data")
    if not isinstance(payload, list):
        return []
    return payload
