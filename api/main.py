"""
api/main.py -- FastAPI application entry point for TeamGate.

Run with:      uvicorn asgi:app --reload
Seed admin:    python main.py seed-admin --email admin@example.com --password ...

Middleware stack (outermost to innermost):
  1. TrustedHostMiddleware -- rejects requests with unexpected Host headers
  2. CORSMiddleware        -- adds CORS headers for the frontend origin
  3. SlowAPIMiddleware     -- enforces per-route rate limits from api.limiter

Lifespan handles startup (account store, team store, notifier, purge task) and
shutdown (cancel purge task, close DB connections) symmetrically.

Errors: every failure leaves the app through one of the exception handlers
below and is rendered as the error envelope
  {"success": false, "statusCode": ..., "message": "...", "errors": [...]}
Route and flow code raises core.errors.AppError subclasses; it never builds
error responses itself.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from sqlalchemy.exc import SQLAlchemyError
from starlette.exceptions import HTTPException as StarletteHTTPException

from api.limiter import limiter
from api.models import ErrorResponse, HealthResponse, respond
from api.routes.v1.auth import router as auth_router
from api.routes.v1.teams import router as teams_router
from api.routes.v1.users import router as users_router
from auth.notifier import build_notifier
from auth.store import AccountStore
from core.config import get_settings
from core.errors import AppError, StorageError
from teams.store import TeamStore

__version__ = "0.1.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("teamgate.api")

_PURGE_INTERVAL_SECONDS = 15 * 60

# ---------------------------------------------------------------------------
# Background purge task
# ---------------------------------------------------------------------------


async def _purge_loop(app: FastAPI) -> None:
    """Clear expired OTP, recovery, and confirmation digests every 15 minutes.

    Expired tokens are already rejected on lookup; this only keeps the table
    tidy. CancelledError from task.cancel() during shutdown propagates out of
    asyncio.sleep and unwinds the coroutine.
    """
    while True:
        await asyncio.sleep(_PURGE_INTERVAL_SECONDS)
        try:
            purged = app.state.account_store.purge_expired_tokens()
        except SQLAlchemyError:
            logger.exception("Token purge failed; retrying next interval")
            continue
        if purged:
            logger.info("Purged %d expired token slot(s)", purged)


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Manage application-level resources across the full server lifetime.

    Everything before yield runs on startup; everything after yield runs on
    shutdown. The purge task starts last because it references the account
    store.
    """
    settings = get_settings()
    logger.info("TeamGate API starting up")
    app.state.account_store = AccountStore(settings.database_url)
    app.state.team_store = TeamStore(settings.database_url)
    app.state.notifier = build_notifier(settings)
    if not app.state.account_store.has_accounts():
        logger.warning("No accounts exist yet -- run `python main.py seed-admin` to create the first superadmin")
    app.state.purge_task = asyncio.create_task(_purge_loop(app))

    yield

    app.state.purge_task.cancel()
    app.state.account_store.close()
    app.state.team_store.close()
    logger.info("TeamGate API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="TeamGate API",
    description="Account authentication, MFA, device confirmation, and team management.",
    version=__version__,
    lifespan=lifespan,
)

# ---------------------------------------------------------------------------
# Middleware stack
#
# Register in the order you want the request to encounter them:
# TrustedHost -> CORS -> SlowAPI.
# ---------------------------------------------------------------------------

app.add_middleware(
    TrustedHostMiddleware,
    # "testserver" is the Host header sent by Starlette's TestClient.
    allowed_hosts=["localhost", "127.0.0.1", "*.localhost", "testserver"],
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[get_settings().frontend_url],
    allow_credentials=True,
    allow_methods=["GET", "POST", "PATCH"],
    allow_headers=["Content-Type", "Authorization", "X-Client-Channel", "X-Device-Id"],
    max_age=3600,
)

app.add_middleware(SlowAPIMiddleware)

# SlowAPI looks for app.state.limiter by convention.
app.state.limiter = limiter

# ---------------------------------------------------------------------------
# Request logging middleware
#
# Every request passes through this coroutine before reaching any route
# handler. Wall-clock time is captured around call_next to report latency.
# ---------------------------------------------------------------------------


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
app.include_router(users_router, prefix="/api/v1", tags=["Users"])
app.include_router(teams_router, prefix="/api/v1", tags=["Teams"])


# ---------------------------------------------------------------------------
# Exception handlers
#
# All handlers return the same ErrorResponse envelope so API clients can parse
# errors uniformly without inspecting status codes to choose a schema.
# ---------------------------------------------------------------------------


def _error(status_code: int, message: str, errors: list | None = None) -> JSONResponse:
    body = ErrorResponse(status_code=status_code, message=message, errors=errors or [])
    return JSONResponse(status_code=status_code, content=body.model_dump(by_alias=True))


@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("%s on %s %s: %s", type(exc).__name__, request.method, request.url.path, exc.message)
    return _error(exc.status_code, exc.message, exc.errors)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Return 400 with one {field, message} entry per failed constraint.

    Only loc and msg are copied out; the raw error dicts can carry exception
    objects in ctx that are not JSON-serializable.
    """
    errors = [
        {"field": ".".join(str(part) for part in err.get("loc", ())), "message": err.get("msg", "")}
        for err in exc.errors()
    ]
    return _error(400, "Request validation failed.", errors)


@app.exception_handler(RateLimitExceeded)
def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Return 429 when a rate limit is exceeded.

    Plain def: SlowAPIMiddleware calls this handler directly and returns its
    result without awaiting it.

    Retry-After tells clients how many seconds to wait before retrying.
    """
    retry_after = int(getattr(exc, "retry_after", 60))
    response = _error(429, "Too many requests.")
    response.headers["Retry-After"] = str(retry_after)
    return response


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Unknown routes (404) and wrong methods (405) raised by the router itself."""
    return _error(exc.status_code, str(exc.detail))


@app.exception_handler(SQLAlchemyError)
async def storage_error_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
    logger.exception("Storage failure on %s %s", request.method, request.url.path)
    return _error(StorageError.status_code, StorageError.message)


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all handler for unexpected server errors.

    The raw exception is written to the log only, never to the response body.
    """
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return _error(500, "An unexpected error occurred.")


# ---------------------------------------------------------------------------
# Health endpoint
#
# Defined directly in main.py (not in a router) so it is always reachable
# regardless of router registration state. No rate limit applied.
# ---------------------------------------------------------------------------


@app.get("/api/v1/health", tags=["Health"])
def health(request: Request) -> JSONResponse:
    """Return API liveness, version, and database reachability."""
    components = {"database": "ok"}
    try:
        request.app.state.account_store.has_accounts()
    except SQLAlchemyError:
        logger.warning("Health check: database unreachable", exc_info=True)
        components["database"] = "unavailable"
    status = "healthy" if components["database"] == "ok" else "degraded"
    return respond(HealthResponse(status=status, version=__version__, components=components), "Service status.")
