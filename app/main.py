import asyncio
from contextlib import suppress
from datetime import date, datetime, timezone
import logging
import time
from typing import Any
from uuid import uuid4

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.errors import ApiError, error_response
from app.logging_utils import setup_json_logging
from app.routers import frequency, reconciliation
from app.security import header_actor_id
from app.settings import get_cors_origins, get_settings
from app.services.reconciliation import (
    ReconciliationOrchestrator,
    policy_from_settings,
    scheduled_run_due,
)
from app.services.reconciliation_errors import PartialBatchFailure, ValidationError as ReconciliationValidationError
from app.services.reconciliation_store import sql_store_factory
from app.services.schema_guard import SchemaGuardResult, verify_runtime_schema
from app.db import engine

settings = get_settings()
setup_json_logging(settings.log_level)
logger = logging.getLogger("app.request")
reconciliation_worker_logger = logging.getLogger("app.reconciliation_worker")


def build_orchestrator() -> ReconciliationOrchestrator:
    return ReconciliationOrchestrator(
        sql_store_factory,
        policy_from_settings(settings),
        max_workers=settings.reconciliation_max_workers,
        scheduled_lookback_days=settings.reconciliation_scheduled_lookback_days,
        forced_default_days=settings.reconciliation_forced_default_days,
    )


app = FastAPI(title=settings.app_name, version="0.1.0")
app.add_middleware(
    CORSMiddleware,
    allow_origins=get_cors_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.state.reconciliation_orchestrator = build_orchestrator()
app.state.reconciliation_stop_event = asyncio.Event()


@app.middleware("http")
async def request_middleware(request: Request, call_next):
    request_id = request.headers.get("X-Request-Id") or str(uuid4())
    request.state.request_id = request_id
    header_actor = header_actor_id(request)
    request.state.actor = "operator" if header_actor else "system"
    request.state.actor_id = header_actor or "system"

    start = time.perf_counter()
    status_code = 500
    try:
        response = await call_next(request)
        status_code = response.status_code
        response.headers["X-Request-Id"] = request_id
        return response
    finally:
        latency_ms = round((time.perf_counter() - start) * 1000, 2)
        logger.info(
            "request_complete",
            extra={
                "request_id": request_id,
                "path": request.url.path,
                "method": request.method,
                "status_code": status_code,
                "latency_ms": latency_ms,
                "actor": getattr(request.state, "actor", "system"),
                "actor_id": getattr(request.state, "actor_id", "system"),
            },
        )


@app.exception_handler(ApiError)
async def handle_api_error(request: Request, exc: ApiError) -> JSONResponse:
    return error_response(
        request,
        status_code=exc.status_code,
        code=exc.code,
        message=exc.message,
    )


@app.exception_handler(ReconciliationValidationError)
async def handle_reconciliation_validation_error(
    request: Request,
    exc: ReconciliationValidationError,
) -> JSONResponse:
    return error_response(
        request,
        status_code=422,
        code="VALIDATION_ERROR",
        message=str(exc),
    )


@app.exception_handler(HTTPException)
async def handle_http_exception(request: Request, exc: HTTPException) -> JSONResponse:
    status_code = exc.status_code
    code_map = {
        403: "FORBIDDEN",
        404: "NOT_FOUND",
        409: "CONFLICT",
    }
    code = code_map.get(status_code, "HTTP_ERROR")
    message = str(exc.detail) if exc.detail else "Request failed."
    return error_response(
        request,
        status_code=status_code,
        code=code,
        message=message,
    )


@app.exception_handler(RequestValidationError)
async def handle_validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
    return error_response(
        request,
        status_code=422,
        code="VALIDATION_ERROR",
        message=str(exc.errors()),
    )


@app.exception_handler(Exception)
async def handle_unexpected_error(request: Request, exc: Exception) -> JSONResponse:
    logger.exception(
        "unhandled_error",
        extra={
            "request_id": getattr(request.state, "request_id", "unknown"),
            "path": request.url.path,
            "method": request.method,
        },
    )
    return error_response(
        request,
        status_code=500,
        code="INTERNAL_ERROR",
        message="Unexpected server error.",
    )


app.include_router(reconciliation.router)
app.include_router(frequency.router)


def _default_schema_guard_result() -> SchemaGuardResult:
    return SchemaGuardResult(
        ok=False,
        checked_at_utc=datetime.now(timezone.utc),
        issues=["SCHEMA_GUARD_NOT_RUN"],
        warnings=[],
    )


async def _reconciliation_worker_loop(orchestrator: ReconciliationOrchestrator, stop_event: asyncio.Event) -> None:
    interval_seconds = max(15, int(settings.reconciliation_worker_interval_seconds))
    last_run_day: date | None = None
    while not stop_event.is_set():
        now_utc = datetime.now(timezone.utc)
        now_local = now_utc.astimezone(orchestrator.policy.tz)
        if scheduled_run_due(now_local, last_run_day, settings.reconciliation_daily_run_hour):
            last_run_day = now_local.date()
            try:
                batch = await orchestrator.run_scheduled(now=now_utc, stop_event=stop_event)
                batch.raise_for_partial_failure()
            except PartialBatchFailure as exc:
                reconciliation_worker_logger.error(
                    "scheduled_reconciliation_partial_failure",
                    extra={"total_units": exc.total_units, "failures": exc.failed},
                )
            except Exception:
                reconciliation_worker_logger.exception("scheduled_reconciliation_tick_failed")
            else:
                reconciliation_worker_logger.info(
                    "scheduled_reconciliation_complete",
                    extra={"local_day": last_run_day, "total_units": batch.total_units},
                )

        try:
            await asyncio.wait_for(stop_event.wait(), timeout=interval_seconds)
        except asyncio.TimeoutError:
            continue


@app.on_event("startup")
async def run_schema_guard() -> None:
    result = await asyncio.to_thread(verify_runtime_schema, engine)
    app.state.schema_guard_result = result
    if result.ok:
        reconciliation_worker_logger.info(
            "schema_guard_ok",
            extra=result.to_dict(),
        )
        return

    reconciliation_worker_logger.error(
        "schema_guard_failed",
        extra=result.to_dict(),
    )
    if settings.schema_guard_strict:
        joined_issues = "; ".join(result.issues)
        raise RuntimeError(f"Runtime schema guard failed: {joined_issues}")


@app.on_event("startup")
async def start_reconciliation_worker() -> None:
    if not settings.reconciliation_worker_enabled:
        return
    if getattr(app.state, "reconciliation_worker_task", None) is not None:
        return

    stop_event = asyncio.Event()
    task = asyncio.create_task(_reconciliation_worker_loop(app.state.reconciliation_orchestrator, stop_event))
    app.state.reconciliation_stop_event = stop_event
    app.state.reconciliation_worker_task = task
    reconciliation_worker_logger.info(
        "reconciliation_worker_started",
        extra={
            "interval_seconds": max(15, int(settings.reconciliation_worker_interval_seconds)),
            "daily_run_hour": settings.reconciliation_daily_run_hour,
            "timezone": settings.reconciliation_timezone,
        },
    )


@app.on_event("shutdown")
async def stop_reconciliation_worker() -> None:
    stop_event: asyncio.Event | None = getattr(app.state, "reconciliation_stop_event", None)
    task: asyncio.Task[None] | None = getattr(app.state, "reconciliation_worker_task", None)
    if stop_event is not None:
        stop_event.set()
    if task is not None:
        task.cancel()
        with suppress(asyncio.CancelledError):
            await task
    app.state.reconciliation_worker_task = None


@app.get("/health")
def health() -> dict[str, Any]:
    schema_guard_result: SchemaGuardResult = getattr(app.state, "schema_guard_result", _default_schema_guard_result())
    worker_task = getattr(app.state, "reconciliation_worker_task", None)
    return {
        "status": "ok",
        "schema_guard": schema_guard_result.to_dict(),
        "reconciliation_worker_running": worker_task is not None and not worker_task.done(),
    }
