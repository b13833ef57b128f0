from __future__ import annotations

import json
import logging
from contextlib import asynccontextmanager
from dataclasses import asdict
from typing import Any, Callable, Dict, List, Optional

from fastapi import FastAPI, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool

from traffic_monitor.config import (
    CHECKOUT_ENDPOINT,
    LOGIN_ENDPOINT,
    MAX_INTERVAL_SECONDS,
    MAX_TIME_WINDOW_MINUTES,
    MAX_WINDOW_MINUTES,
    Settings,
    configure_logging,
    get_settings,
)
from traffic_monitor.models.data_models import HealthStatus
from traffic_monitor.services.aggregator import TrafficQueryService
from traffic_monitor.services.base import TrafficBackend
from traffic_monitor.services.factory import get_backend
from traffic_monitor.services.recorder import TrafficRecorder
from traffic_monitor.services.shop import checkout_response, login_response
from traffic_monitor.utils.helpers import now_ms, parse_bool_flag

logger = logging.getLogger(__name__)

# ──────────────────────────────────────────────────────────────────────────────
# Config
# ──────────────────────────────────────────────────────────────────────────────

API_PREFIX = "/api"

NO_STORE = {"Cache-Control": "no-store"}
SHORT_CACHE = {"Cache-Control": "max-age=4"}


# ──────────────────────────────────────────────────────────────────────────────
# App
# ──────────────────────────────────────────────────────────────────────────────


def create_app(
    settings: Optional[Settings] = None,
    backend: Optional[TrafficBackend] = None,
    clock: Callable[[], int] = now_ms,
) -> FastAPI:
    """
    Build the API. The backend is created at startup from settings unless
    one is passed in, and closed at shutdown if this app created it.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        cfg = settings or get_settings()
        configure_logging(cfg.log_level)

        store = backend or get_backend(cfg, clock=clock)
        app.state.backend = store
        app.state.recorder = TrafficRecorder.from_settings(store, cfg, clock=clock)
        app.state.queries = TrafficQueryService.from_settings(store, cfg, clock=clock)
        logger.info(f"Traffic monitor started with {store.backend_type} backend")
        try:
            yield
        finally:
            if backend is None:
                store.close()

    app = FastAPI(title="Traffic Monitor (Ingestion → Dashboard APIs)", lifespan=lifespan)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],  # dev OK; lock down in prod
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(RequestValidationError, invalid_parameter_handler)
    app.add_exception_handler(Exception, internal_error_handler)
    register_routes(app)
    return app


async def invalid_parameter_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Bad query parameters are a client bug: 400 with a readable message"""
    problems = []
    for err in exc.errors():
        loc = ".".join(str(p) for p in err.get("loc", ()) if p != "query")
        problems.append(f"{loc}: {err.get('msg')}")
    return JSONResponse(
        {"message": "Invalid parameter - " + "; ".join(problems)},
        status_code=400,
    )


async def internal_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception(f"Unhandled error on {request.url.path}")
    return JSONResponse({"message": "Internal server error"}, status_code=500)


def queries(request: Request) -> TrafficQueryService:
    return request.app.state.queries


async def record(request: Request, endpoint: str, status_code: int) -> None:
    recorder: TrafficRecorder = request.app.state.recorder
    await run_in_threadpool(recorder.record_request, request, endpoint, status_code)


def register_routes(app: FastAPI) -> None:

    # ──────────────────────────────────────────────────────────────────────────
    # Traffic queries
    # ──────────────────────────────────────────────────────────────────────────

    @app.get(f"{API_PREFIX}/traffic")
    def traffic(
        request: Request,
        endpoint: Optional[str] = Query(None),
        method: Optional[str] = Query(None),
        is_bot: Optional[str] = Query(None, alias="isBot"),
        since: Optional[int] = Query(None, ge=0),
        time_window: Optional[int] = Query(
            None, alias="timeWindow", ge=1, le=MAX_TIME_WINDOW_MINUTES
        ),
        limit: Optional[int] = Query(None, ge=1),
    ) -> List[Dict[str, Any]]:
        events = queries(request).query_logs(
            endpoint=endpoint,
            method=method,
            is_bot=parse_bool_flag(is_bot),
            since_ms=since,
            time_window_minutes=time_window,
            limit=limit,
        )
        return [e.to_dict() for e in events]

    @app.get(f"{API_PREFIX}/traffic/combined")
    def traffic_combined(
        request: Request,
        time_window: int = Query(5, alias="timeWindow", ge=1, le=MAX_WINDOW_MINUTES),
        interval_seconds: int = Query(60, alias="intervalSeconds", ge=1, le=MAX_INTERVAL_SECONDS),
    ) -> JSONResponse:
        snapshot = queries(request).combined(time_window, interval_seconds)
        return JSONResponse(snapshot, headers=SHORT_CACHE)

    @app.get(f"{API_PREFIX}/traffic/incremental")
    def traffic_incremental(
        request: Request,
        since: Optional[int] = Query(None, ge=0),
        limit: Optional[int] = Query(None, ge=1),
    ) -> JSONResponse:
        page = queries(request).incremental(since_ms=since, limit=limit)
        return JSONResponse(page.to_dict(), headers=NO_STORE)

    @app.get(f"{API_PREFIX}/dashboard-data")
    def dashboard_data(
        request: Request,
        window_minutes: int = Query(10, alias="windowMinutes", ge=1, le=MAX_WINDOW_MINUTES),
        interval_seconds: int = Query(60, alias="intervalSeconds", ge=1, le=MAX_INTERVAL_SECONDS),
    ) -> JSONResponse:
        points = queries(request).dashboard(window_minutes, interval_seconds)
        return JSONResponse([p.to_dict() for p in points], headers=NO_STORE)

    # ──────────────────────────────────────────────────────────────────────────
    # Health
    # ──────────────────────────────────────────────────────────────────────────

    @app.get(f"{API_PREFIX}/health")
    def health(request: Request) -> Dict[str, Any]:
        check = request.app.state.backend.health_check()
        status = HealthStatus(
            status="ok" if check["healthy"] else "degraded",
            backend=check["backend_type"],
            healthy=check["healthy"],
            stored_events=check["stored_events"],
            message=check["message"],
        )
        return asdict(status)

    # ──────────────────────────────────────────────────────────────────────────
    # Recorded shop endpoints
    # ──────────────────────────────────────────────────────────────────────────

    @app.post(f"{API_PREFIX}/auth/login")
    async def login(request: Request) -> JSONResponse:
        try:
            status_code, payload = login_response(await request.json())
        except json.JSONDecodeError:
            status_code, payload = 400, {"message": "Invalid JSON body"}
        except Exception:
            logger.exception("Login error")
            status_code, payload = 500, {"message": "Internal server error"}

        await record(request, LOGIN_ENDPOINT, status_code)
        return JSONResponse(payload, status_code=status_code)

    @app.post(f"{API_PREFIX}/checkout")
    async def checkout(request: Request) -> JSONResponse:
        try:
            status_code, payload = checkout_response(await request.json())
        except json.JSONDecodeError:
            status_code, payload = 400, {"message": "Invalid JSON body"}
        except Exception:
            logger.exception("Checkout error")
            status_code, payload = 500, {"message": "Internal server error"}

        await record(request, CHECKOUT_ENDPOINT, status_code)
        return JSONResponse(payload, status_code=status_code)


app = create_app()


def run() -> None:
    """Console entry point: serve the API with uvicorn"""
    import uvicorn

    uvicorn.run("traffic_monitor.main:app", host="0.0.0.0", port=8000)
