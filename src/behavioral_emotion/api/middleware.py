"""Middleware — CORS, API key authentication, request logging, error handling."""

from __future__ import annotations

import time
import uuid
from typing import Callable

import structlog
from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from behavioral_emotion.config import DEFAULT_SECRET_KEY, get_settings

logger = structlog.get_logger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"


# ── CORS ──────────────────────────────────────────────────────


def add_cors(app: FastAPI) -> None:
    """Allow the host page's origin(s) to post events.

    ``cors_origins`` is comma-separated, or ``"*"``.  Credentials are only
    allowed with an explicit origin list; browsers reject them with ``*``.
    """
    raw = get_settings().cors_origins.strip()
    origins = ["*"] if raw == "*" else [o.strip() for o in raw.split(",") if o.strip()]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=origins != ["*"],
        allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
        allow_headers=["*"],
        expose_headers=[REQUEST_ID_HEADER],
    )


# ── API key authentication ────────────────────────────────────

# /emotion exposes only the consumer view (emotion + confidence).
_PUBLIC_PATHS: frozenset[str] = frozenset(
    {"/health", "/system/info", "/docs", "/openapi.json", "/redoc", "/emotion"}
)


def _auth_enabled() -> bool:
    return get_settings().api_secret_key not in (DEFAULT_SECRET_KEY, "")


class APIKeyMiddleware(BaseHTTPMiddleware):
    """Require ``X-API-Key`` or ``Authorization: Bearer <key>``.

    Off while ``api_secret_key`` is unset or still the placeholder.
    Pre-flight ``OPTIONS`` requests always pass so CORS keeps working.
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        if (
            not _auth_enabled()
            or request.method == "OPTIONS"
            or request.url.path in _PUBLIC_PATHS
        ):
            return await call_next(request)

        supplied = request.headers.get("X-API-Key") or _extract_bearer(
            request.headers.get("Authorization", "")
        )
        if supplied != get_settings().api_secret_key:
            logger.warning("http.unauthorized", path=request.url.path)
            return JSONResponse(status_code=401, content={"detail": "Invalid or missing API key."})
        return await call_next(request)


# ── Request logging ───────────────────────────────────────────


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Bind a request id for the duration of the request and log the outcome.

    The id is taken from the incoming ``X-Request-ID`` header when present
    and echoed back on the response.  ``/events`` is high-volume and logs at
    debug; ``/health`` is not logged.
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = request.headers.get(REQUEST_ID_HEADER) or uuid.uuid4().hex
        structlog.contextvars.bind_contextvars(request_id=request_id)
        start = time.monotonic()
        try:
            response = await call_next(request)
            response.headers[REQUEST_ID_HEADER] = request_id

            path = request.url.path
            if path != "/health":
                log = logger.debug if path == "/events" else logger.info
                log(
                    "http.request",
                    method=request.method,
                    path=path,
                    status=response.status_code,
                    duration_ms=round((time.monotonic() - start) * 1000, 1),
                )
            return response
        finally:
            structlog.contextvars.unbind_contextvars("request_id")


# ── Global error handler ─────────────────────────────────────


class ErrorHandlerMiddleware(BaseHTTPMiddleware):
    """Turn anything unhandled into a JSON 500."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        try:
            return await call_next(request)
        except Exception:
            logger.exception("http.unhandled_error", method=request.method, path=request.url.path)
            return JSONResponse(status_code=500, content={"detail": "Internal server error."})


# ── Setup helper ──────────────────────────────────────────────


def setup_middleware(app: FastAPI) -> None:
    """Outermost first at runtime: errors → logging → API key → CORS.

    Starlette reverses the registration order, so CORS is added first.
    """
    add_cors(app)
    app.add_middleware(APIKeyMiddleware)
    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(ErrorHandlerMiddleware)


def _extract_bearer(auth_header: str) -> str:
    scheme, _, token = auth_header.partition(" ")
    return token.strip() if scheme.lower() == "bearer" else ""
