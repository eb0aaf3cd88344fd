from __future__ import annotations

import logging
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from datetime import datetime, time, timedelta
from time import perf_counter
from uuid import uuid4

from fastapi import FastAPI, Request, Response
from fastapi.responses import JSONResponse
from structlog.contextvars import bind_contextvars, reset_contextvars

from curator.api.routes import router
from curator.dependencies import get_database, get_settings, get_telemetry
from curator.errors import (
    ContentTooShortError,
    CuratorError,
    ForbiddenError,
    InvalidIdentifierError,
    NotFoundError,
    PersistenceFailureError,
    QuotaExceededError,
    TooManyRequestsError,
    UpstreamFailureError,
)
from curator.logging_config import configure_application_logging
from curator.models.contracts import HealthResponse
from curator.repositories.common import utc_now

LOGGER = logging.getLogger("playlist_curator.api")

_STATUS_BY_ERROR: tuple[tuple[type[CuratorError], int], ...] = (
    (InvalidIdentifierError, 400),
    (NotFoundError, 404),
    (ForbiddenError, 403),
    (QuotaExceededError, 429),
    (TooManyRequestsError, 429),
    (UpstreamFailureError, 502),
    (ContentTooShortError, 422),
    (PersistenceFailureError, 500),
)


def health_check() -> HealthResponse:
    return HealthResponse(status="ok")


def error_status(exc: CuratorError) -> int:
    for error_type, status_code in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            return status_code
    return 500


def _error_body(kind: str, message: str, retryable: bool) -> dict[str, object]:
    return {"error": {"kind": kind, "message": message, "retryable": retryable}}


def _retry_after_seconds(exc: CuratorError) -> int | None:
    if isinstance(exc, TooManyRequestsError):
        return exc.retry_after_seconds
    if isinstance(exc, QuotaExceededError):
        # The daily budget resets at the next UTC midnight.
        now = utc_now()
        next_day = datetime.combine(now.date() + timedelta(days=1), time.min, tzinfo=now.tzinfo)
        return max(1, int((next_day - now).total_seconds()))
    return None


async def curator_error_handler(request: Request, exc: Exception) -> Response:
    assert isinstance(exc, CuratorError)
    status_code = error_status(exc)
    log = LOGGER.error if status_code >= 500 else LOGGER.info
    log(
        "request failed path=%s status=%s kind=%s message=%s",
        request.url.path,
        status_code,
        exc.kind,
        exc.message,
    )
    headers: dict[str, str] = {}
    retry_after = _retry_after_seconds(exc)
    if retry_after is not None:
        headers["Retry-After"] = str(retry_after)
    return JSONResponse(
        status_code=status_code,
        content=_error_body(exc.kind, exc.message, exc.retryable),
        headers=headers,
    )


async def value_error_handler(request: Request, exc: Exception) -> Response:
    LOGGER.info("request rejected path=%s error=%s", request.url.path, exc)
    return JSONResponse(
        status_code=400,
        content=_error_body("invalid_request", str(exc), False),
    )


@asynccontextmanager
async def app_lifespan(_: FastAPI) -> AsyncIterator[None]:
    settings = get_settings()
    configure_application_logging(settings)
    database = get_database()
    LOGGER.info("app started db_path=%s", database.path)
    yield


def create_app() -> FastAPI:
    app = FastAPI(title="Playlist Curator API", version="0.1.0", lifespan=app_lifespan)

    async def request_context_middleware(
        request: Request,
        call_next: Callable[[Request], Awaitable[Response]],
    ) -> Response:
        telemetry = get_telemetry()
        incoming_request_id = request.headers.get("X-Request-ID")
        request_id = (
            incoming_request_id.strip()
            if isinstance(incoming_request_id, str) and incoming_request_id.strip()
            else str(uuid4())
        )
        context_tokens = bind_contextvars(
            http_request_id=request_id,
            http_method=request.method,
            http_path=request.url.path,
        )
        started_at = perf_counter()
        telemetry.emit(
            "http.request.start",
            request_id=request_id,
            method=request.method,
            path=request.url.path,
        )
        try:
            response = await call_next(request)
        except Exception as exc:
            telemetry.emit(
                "http.request.error",
                request_id=request_id,
                method=request.method,
                path=request.url.path,
                duration_ms=int((perf_counter() - started_at) * 1000),
                error_type=type(exc).__name__,
            )
            raise
        else:
            response.headers["X-Request-ID"] = request_id
            telemetry.emit(
                "http.request.finish",
                request_id=request_id,
                method=request.method,
                path=request.url.path,
                duration_ms=int((perf_counter() - started_at) * 1000),
                status_code=response.status_code,
            )
            return response
        finally:
            reset_contextvars(**context_tokens)

    app.middleware("http")(request_context_middleware)
    app.add_exception_handler(CuratorError, curator_error_handler)
    app.add_exception_handler(ValueError, value_error_handler)
    app.include_router(router)
    app.add_api_route(
        "/health",
        health_check,
        methods=["GET"],
        response_model=HealthResponse,
        tags=["system"],
        operation_id="health_check",
    )

    return app


app = create_app()
