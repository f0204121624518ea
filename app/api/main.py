"""FastAPI application serving the visitor dashboard."""

from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager
from datetime import date
from typing import Any, AsyncIterator

from dotenv import load_dotenv
from fastapi import APIRouter, Depends, FastAPI, HTTPException, Query, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from sqlalchemy import text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError

from app.db.migrate import run_migrations
from app.db.session import create_engine_from_env
from app.db.visitors import VisitorStore, clamp_page
from app.ingest.models import StoreScope
from app.ingest.refresh import RefreshService
from app.ingest.visitor_api import VisitorApiClient
from app.jobs.refresh import refresh_range
from app.jobs.scheduler import RefreshScheduler
from app.logic.stats import StatsService
from app.utils.dates import parse_iso_date, today_utc
from app.utils.passwords import hash_password, verify_password

logger = logging.getLogger(__name__)

INVALID_CREDENTIALS = "Invalid credentials"


def _flag(name: str, default: str = "1") -> bool:
    return os.environ.get(name, default).strip().lower() not in {"0", "false", "no", ""}


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    load_dotenv()
    engine = create_engine_from_env()
    if _flag("AUTO_MIGRATE"):
        run_migrations(engine)
    client = VisitorApiClient.from_env()
    refresher = RefreshService(engine, client)
    app.state.engine = engine
    app.state.refresh_service = refresher
    app.state.stats_service = StatsService(refresher.rollups, refresher)
    scheduler = RefreshScheduler(refresher)
    if _flag("SCHEDULER_ENABLED"):
        scheduler.start()
    try:
        yield
    finally:
        await scheduler.stop()
        await client.close()
        engine.dispose()


app = FastAPI(title="Store Visitor Dashboard API", lifespan=lifespan)
app.add_middleware(
    CORSMiddleware,
    allow_origins=[o.strip() for o in os.environ.get("CORS_ORIGINS", "*").split(",") if o.strip()],
    allow_methods=["*"],
    allow_headers=["*"],
)
router = APIRouter(prefix="/api")


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return JSONResponse(status_code=400, content={"detail": "Invalid request", "errors": jsonable_encoder(exc.errors())})


class Credentials(BaseModel):
    email: str | None = None
    password: str | None = None


class LoginResponse(BaseModel):
    ok: bool
    userId: int


def get_engine(request: Request) -> Engine:
    return request.app.state.engine


def get_refresh_service(request: Request) -> RefreshService:
    return request.app.state.refresh_service


def get_stats_service(request: Request) -> StatsService:
    return request.app.state.stats_service


def _require_credentials(payload: Credentials) -> tuple[str, str]:
    if not payload.email or not payload.password:
        raise HTTPException(status_code=400, detail="email and password are required")
    return payload.email.lower(), payload.password


def _parse_day(value: str | None, name: str) -> date:
    if not value:
        raise HTTPException(status_code=400, detail="start and end (YYYY-MM-DD) are required")
    try:
        return parse_iso_date(value)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=f"Invalid {name} date: {value}") from exc


def _date_range(start: str | None, end: str | None) -> tuple[date, date]:
    return _parse_day(start, "start"), _parse_day(end, "end")


@router.post("/auth/register", status_code=201)
def register(payload: Credentials, engine: Engine = Depends(get_engine)) -> dict[str, Any]:
    email, password = _require_credentials(payload)
    password_hash = hash_password(password)
    try:
        with engine.begin() as conn:
            conn.execute(
                text("INSERT INTO users (email, password_hash) VALUES (:email, :password_hash)"),
                {"email": email, "password_hash": password_hash},
            )
    except IntegrityError as exc:
        raise HTTPException(status_code=409, detail="email already registered") from exc
    except Exception as exc:
        logger.exception("Registration failed")
        raise HTTPException(status_code=500, detail="registration failed") from exc
    return {"ok": True}


@router.post("/auth/login", response_model=LoginResponse)
def login(payload: Credentials, engine: Engine = Depends(get_engine)) -> LoginResponse:
    email, password = _require_credentials(payload)
    with engine.connect() as conn:
        user = conn.execute(
            text("SELECT id, password_hash FROM users WHERE email = :email"),
            {"email": email},
        ).mappings().first()
    if not user or not verify_password(password, user["password_hash"]):
        raise HTTPException(status_code=401, detail=INVALID_CREDENTIALS)
    return LoginResponse(ok=True, userId=user["id"])


@router.get("/stats/visitors")
async def visitor_stats(
    start: str | None = None,
    end: str | None = None,
    device_id: str | None = Query(None, alias="deviceId"),
    stats: StatsService = Depends(get_stats_service),
) -> dict[str, Any]:
    first, last = _date_range(start, end)
    try:
        result = await stats.visitor_stats(first, last, StoreScope.from_param(device_id))
    except Exception as exc:
        logger.exception("Stats query failed for %s..%s", first, last)
        raise HTTPException(status_code=500, detail=str(exc)) from exc
    return result.as_dict()


@router.get("/visitors/list")
async def visitors_list(
    start: str | None = None,
    end: str | None = None,
    device_id: str | None = Query(None, alias="deviceId"),
    page: str | None = "1",
    page_size: str | None = Query("40", alias="pageSize"),
    engine: Engine = Depends(get_engine),
) -> dict[str, Any]:
    first, last = _date_range(start, end)
    page_num, size = clamp_page(page, page_size)
    try:
        result = VisitorStore(engine).list_page(
            first, last, device_id=device_id or None, page=page_num, page_size=size
        )
    except Exception as exc:
        logger.exception("Visitor list failed")
        raise HTTPException(status_code=500, detail=str(exc)) from exc
    return {"items": result.items, "total": result.total, "page": result.page, "pageSize": result.page_size}


@router.get("/admin/refresh")
async def admin_refresh(
    start: str | None = None,
    end: str | None = None,
    device_id: str | None = Query(None, alias="deviceId"),
    refresher: RefreshService = Depends(get_refresh_service),
) -> dict[str, Any]:
    first = _parse_day(start, "start") if start else today_utc()
    last = _parse_day(end, "end") if end else first
    scope = StoreScope.from_param(device_id)
    try:
        days = await refresh_range(refresher, first, last, scope)
    except Exception as exc:
        logger.exception("Manual refresh failed")
        raise HTTPException(status_code=500, detail=str(exc)) from exc
    return {"ok": True, "days": days, "storeId": scope.label}


app.include_router(router)


def main() -> None:  # pragma: no cover - process entry point
    import uvicorn

    load_dotenv()
    logging.basicConfig(level=os.environ.get("LOG_LEVEL", "INFO"))
    uvicorn.run(app, host=os.environ.get("HOST", "0.0.0.0"), port=int(os.environ.get("PORT", 3001)))


if __name__ == "__main__":
    main()
