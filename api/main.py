"""
api/main.py -- FastAPI application entry point for authgate.

Exposes the credential and token lifecycle (register, login, refresh, logout)
over HTTP.

Run with:  uvicorn api.main:app --reload

Middleware stack (outermost to innermost; Starlette wraps the last-registered
middleware outermost):
  1. log_requests          -- one access-log line per request, rejected ones included
  2. CORSMiddleware        -- adds CORS headers for allowed browser origins
  3. TrustedHostMiddleware -- rejects requests with unexpected Host headers

Lifespan builds the store and services from Settings on startup, starts the
refresh-token purge task, and tears both down symmetrically on shutdown.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import timedelta

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.responses import JSONResponse

from api.models import ErrorDetail, ErrorResponse, HealthResponse
from api.routes.v1.auth import router as auth_router
from auth.errors import (
    AlreadyExists,
    AuthError,
    FormatError,
    HashingError,
    InvalidCredentials,
    InvalidToken,
    StorageError,
    TokenExpired,
)
from auth.passwords import PasswordHasher
from auth.rotation import SessionRotator
from auth.service import CredentialService
from auth.store import UserStore
from auth.tokens import Clock, TokenCodec, utc_now
from core.config import Settings, get_settings

VERSION = "0.1.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("authgate.api")

# ---------------------------------------------------------------------------
# Service wiring
# ---------------------------------------------------------------------------


def wire_services(app: FastAPI, settings: Settings, user_store: UserStore, clock: Clock = utc_now) -> None:
    """Build the auth services around user_store and attach them to app.state.

    The signing secret is passed explicitly into TokenCodec; nothing in auth/
    reads it from Settings.
    """
    refresh_ttl = timedelta(seconds=settings.refresh_token_ttl_seconds)
    codec = TokenCodec(
        secret=settings.secret_key,
        access_ttl=timedelta(seconds=settings.access_token_ttl_seconds),
        algorithm=settings.jwt_algorithm,
        clock=clock,
    )
    app.state.user_store = user_store
    app.state.codec = codec
    app.state.credential_service = CredentialService(user_store, PasswordHasher(), codec, refresh_ttl, clock=clock)
    app.state.rotator = SessionRotator(user_store, codec, refresh_ttl, clock=clock)


# ---------------------------------------------------------------------------
# Background purge task
# ---------------------------------------------------------------------------


async def _purge_loop(app: FastAPI, interval_seconds: int) -> None:
    """Delete expired and revoked refresh tokens every interval_seconds.

    Expired tokens are already rejected lazily at rotation time; this only
    keeps the table from growing without bound. Errors are logged and the loop
    keeps going -- a failed sweep is retried on the next tick.
    """
    while True:
        await asyncio.sleep(interval_seconds)
        try:
            await asyncio.to_thread(app.state.rotator.purge)
        except StorageError:
            logger.exception("Refresh token purge failed")


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Manage application-level resources across the full server lifetime.

    Everything before yield runs on startup; everything after yield runs on
    shutdown. Settings validation has already run at import (middleware
    config), so a missing SECRET_KEY in production never reaches a request.
    """
    logger.info("authgate API starting up")
    settings = get_settings()
    wire_services(app, settings, UserStore(settings.database_url))
    logger.info("Auth store initialized")
    app.state.purge_task = asyncio.create_task(_purge_loop(app, settings.token_purge_interval_seconds))

    yield

    app.state.purge_task.cancel()
    app.state.user_store.close()
    logger.info("authgate API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="authgate API",
    description="User registration, password login, and access/refresh token lifecycle.",
    version=VERSION,
    lifespan=lifespan,
)

# ---------------------------------------------------------------------------
# Middleware stack
#
# Host and origin lists are read from Settings at import time, same as the
# lifespan does at startup.
# ---------------------------------------------------------------------------

_http_settings = get_settings()

app.add_middleware(TrustedHostMiddleware, allowed_hosts=_http_settings.allowed_hosts)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_http_settings.cors_origins,
    allow_methods=["GET", "POST"],
    allow_headers=["Content-Type", "Authorization"],
    max_age=3600,
)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    start = time.perf_counter()
    response = await call_next(request)
    ms = (time.perf_counter() - start) * 1000
    logger.info(
        "%s %s %d %.1fms %s",
        request.method,
        request.url.path,
        response.status_code,
        ms,
        request.client.host if request.client else "unknown",
    )
    return response


# ---------------------------------------------------------------------------
# Router registration
# ---------------------------------------------------------------------------

app.include_router(auth_router, prefix="/api/v1", tags=["Auth"])


# ---------------------------------------------------------------------------
# Exception handlers
#
# All handlers return the same ErrorResponse envelope so API clients can parse
# errors uniformly without inspecting status codes to choose a schema.
# ---------------------------------------------------------------------------

# (status, public message). Internal errors share one generic message so the
# response never says whether hashing or storage failed.
_AUTH_ERROR_RESPONSES: dict[type[AuthError], tuple[int, str]] = {
    AlreadyExists: (409, "User already exists."),
    InvalidCredentials: (401, "Invalid username or password."),
    InvalidToken: (401, "Invalid token."),
    TokenExpired: (401, "Token has expired."),
    HashingError: (500, "An unexpected error occurred."),
    FormatError: (500, "An unexpected error occurred."),
    StorageError: (500, "An unexpected error occurred."),
}


def _error_response(status_code: int, code: str, message: str, detail: str | None = None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(error=ErrorDetail(code=code, message=message, detail=detail)).model_dump(),
    )


@app.exception_handler(AuthError)
async def auth_error_handler(request: Request, exc: AuthError) -> JSONResponse:
    """Map auth.errors types onto HTTP responses.

    Lookup walks the MRO so subclasses (InvalidSignature, Expired, ...) share
    their parent's mapping. Internal failures are logged with a traceback and
    returned as a generic 500; client failures are logged at INFO without the
    submitted credentials.
    """
    status_code, message = 500, "An unexpected error occurred."
    for cls in type(exc).__mro__:
        if cls in _AUTH_ERROR_RESPONSES:
            status_code, message = _AUTH_ERROR_RESPONSES[cls]
            break

    if status_code >= 500:
        logger.error(
            "Internal auth failure on %s %s: %s",
            request.method,
            request.url.path,
            exc,
            exc_info=exc,
        )
    else:
        logger.info("%s %s rejected: %s", request.method, request.url.path, exc.code)

    response = _error_response(status_code, exc.code, message)
    if status_code == 401:
        response.headers["Cache-Control"] = "no-store"
    return response


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Return 422 with structured error when request body or query params fail validation.

    Input values are stripped from the detail so a rejected password is never
    echoed back.
    """
    errors = [{"loc": list(e.get("loc", ())), "msg": e.get("msg", "")} for e in exc.errors()]
    return _error_response(422, "validation_error", "Request validation failed.", str(errors))


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Return a structured error for all FastAPI/Starlette HTTP exceptions.

    Route handlers raise HTTPException with a dict detail ({"code", "message"}).
    When detail is already a structured dict, use it directly as the error
    field rather than stringifying it.
    """
    if isinstance(exc.detail, dict):
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": exc.detail},
            headers=exc.headers,
        )
    return _error_response(exc.status_code, f"http_{exc.status_code}", str(exc.detail))


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all handler for unexpected server errors.

    The raw exception goes to the log only, never to the response body.
    """
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return _error_response(500, "internal_error", "An unexpected error occurred.")


# ---------------------------------------------------------------------------
# Health endpoint
#
# Defined directly in main.py (not in a router) so it is always reachable
# regardless of router registration state.
# ---------------------------------------------------------------------------


@app.get("/api/v1/health", tags=["Health"])
def health(request: Request) -> HealthResponse:
    """Return API liveness, version, and database reachability."""
    database_ok = request.app.state.user_store.ping()
    return HealthResponse(
        status="healthy" if database_ok else "degraded",
        version=VERSION,
        components={"app": "ok", "database": "ok" if database_ok else "error"},
    )
