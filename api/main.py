"""
api/main.py -- FastAPI application entry point for orgguard.

Run with:  uvicorn api.main:app --reload

Middleware stack (outermost to innermost):
  1. TrustedHostMiddleware -- rejects requests with unexpected Host headers
  2. CORSMiddleware        -- adds CORS headers for allowed browser origins
  3. SlowAPIMiddleware     -- enforces per-route rate limits from api.limiter

Lifespan handles startup (store, policy catalog sync, engine wiring, session
purge task) and shutdown (cancel purge task, close the store) symmetrically.

Every component is an explicit instance on app.state, built by wire_services().
Nothing in the request path is a module-level singleton, so tests can wire an
isolated store and cache per module.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from sqlalchemy.exc import OperationalError

from api.limiter import limiter
from api.models import ErrorDetail, ErrorResponse, HealthResponse
from api.routes.v1.admin import router as admin_router
from api.routes.v1.auth import router as auth_router
from api.routes.v1.org_units import router as org_units_router
from auth.sessions import SessionService
from auth.store import AuthStore
from cache.store import SessionAuthCache
from core.config import Settings, get_settings
from core.errors import AuthorizationError, StoreUnavailable
from rbac.audit import AuditLogger
from rbac.guard import PolicyClassification, RoleAssignmentGuard
from rbac.service import RbacAdmin, sync_policy_catalog
from rbac.versioning import PolicyVersioning

API_VERSION = "0.1.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("orgguard.api")

# ---------------------------------------------------------------------------
# Service wiring
# ---------------------------------------------------------------------------


def wire_services(app: FastAPI, store: AuthStore, settings: Settings, clock=time.time) -> None:
    """Build the engine components around one store and attach them to app.state.

    Order matters: cache before sessions, audit before guard, everything
    before the admin service that composes them.
    """
    app.state.store = store
    app.state.cache = SessionAuthCache(
        store,
        ttl=settings.auth_cache_ttl_seconds,
        policy_check_interval=settings.auth_cache_policy_check_seconds,
        session_check_interval=settings.auth_cache_session_check_seconds,
        max_entries=settings.auth_cache_max_entries,
        clock=clock,
    )
    app.state.sessions = SessionService(store, app.state.cache, session_ttl_days=settings.session_ttl_days)
    app.state.audit = AuditLogger(store)
    app.state.guard = RoleAssignmentGuard(
        store,
        PolicyClassification.from_settings(settings),
        app.state.audit,
        delegation_policy=settings.delegation_policy,
    )
    app.state.rbac = RbacAdmin(
        store,
        app.state.guard,
        PolicyVersioning(store),
        app.state.audit,
        app.state.sessions,
    )


# ---------------------------------------------------------------------------
# Background purge task
# ---------------------------------------------------------------------------


async def _purge_loop(app: FastAPI, interval: float) -> None:
    """Delete expired session rows every `interval` seconds.

    CancelledError from task.cancel() during shutdown propagates out of
    asyncio.sleep and unwinds the coroutine cleanly.
    """
    while True:
        await asyncio.sleep(interval)
        try:
            app.state.sessions.purge_expired()
        except OperationalError as exc:
            logger.warning("Session purge skipped, store unavailable: %s", exc)


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Manage application-level resources across the full server lifetime.

    Startup order:
      1. Store -- creates tables on first run.
      2. Policy catalog sync -- missing catalog keys exist before any
         require_policy() gate is evaluated.
      3. Engine wiring -- cache, sessions, guard, admin service.
      4. Purge task last -- references app.state.sessions.
    """
    settings = get_settings()
    logger.info("orgguard API starting up")
    store = AuthStore(settings.database_url)
    summary = sync_policy_catalog(store)
    logger.info("Policy catalog: %d keys (%d created)", summary["total"], summary["created"])
    wire_services(app, store, settings)
    logger.info(
        "Auth cache ready (ttl=%ss, policy check=%ss, session check=%ss, max=%d)",
        settings.auth_cache_ttl_seconds,
        settings.auth_cache_policy_check_seconds,
        settings.auth_cache_session_check_seconds,
        settings.auth_cache_max_entries,
    )
    app.state.purge_task = asyncio.create_task(_purge_loop(app, settings.session_purge_interval_seconds))

    yield

    app.state.purge_task.cancel()
    app.state.store.close()
    logger.info("orgguard API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="orgguard API",
    description="Policy-based access control with org-scoped delegation.",
    version=API_VERSION,
    lifespan=lifespan,
)

# ---------------------------------------------------------------------------
# Middleware stack
# ---------------------------------------------------------------------------

_settings = get_settings()

app.add_middleware(TrustedHostMiddleware, allowed_hosts=_settings.allowed_hosts)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_settings.cors_origins,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE"],
    allow_headers=["Content-Type", "Authorization", "X-Session-Token"],
    max_age=3600,
)

app.add_middleware(SlowAPIMiddleware)

# SlowAPI looks for app.state.limiter by convention.
app.state.limiter = limiter

# ---------------------------------------------------------------------------
# Request logging middleware
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
app.include_router(org_units_router, prefix="/api/v1", tags=["Org Units"])
app.include_router(admin_router, prefix="/api/v1", tags=["RBAC Admin"])


# ---------------------------------------------------------------------------
# Exception handlers
#
# All handlers return the same ErrorResponse envelope so API clients can parse
# errors uniformly without inspecting status codes to choose a schema.
# ---------------------------------------------------------------------------


def _error_response(status_code: int, code: str, message: str, detail=None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(error=ErrorDetail(code=code, message=message, detail=detail)).model_dump(),
    )


@app.exception_handler(AuthorizationError)
async def authorization_error_handler(request: Request, exc: AuthorizationError) -> JSONResponse:
    """Render every domain error with its own status and code.

    Denials are terminal. StoreUnavailable adds Retry-After because nothing
    was decided and the whole request may be retried.
    """
    response = _error_response(exc.status_code, exc.code, exc.message, exc.detail)
    if isinstance(exc, StoreUnavailable):
        response.headers["Retry-After"] = "5"
    elif exc.status_code == 401:
        response.headers["WWW-Authenticate"] = "Bearer"
    return response


@app.exception_handler(OperationalError)
async def store_error_handler(request: Request, exc: OperationalError) -> JSONResponse:
    """A store outage outside the resolver still surfaces as store_unavailable, never as a denial."""
    logger.error("Store unavailable on %s %s: %s", request.method, request.url.path, exc)
    return await authorization_error_handler(request, StoreUnavailable())


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Return 429 with a structured error when a rate limit is exceeded."""
    retry_after = int(getattr(exc, "retry_after", 60))
    response = _error_response(429, "rate_limited", "Too many requests.", str(exc))
    response.headers["Retry-After"] = str(retry_after)
    return response


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Return 422 with structured error when request body or query params fail validation."""
    return _error_response(422, "validation_error", "Request validation failed.", str(exc.errors()))


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Return a structured error for all FastAPI/Starlette HTTP exceptions."""
    if isinstance(exc.detail, dict):
        return JSONResponse(status_code=exc.status_code, content={"error": exc.detail})
    return _error_response(exc.status_code, f"http_{exc.status_code}", str(exc.detail))


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all handler for unexpected server errors.

    The raw exception is written to the log only, never to the response body.
    """
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return _error_response(500, "internal_error", "An unexpected error occurred.")


# ---------------------------------------------------------------------------
# Health endpoint
#
# Defined directly in main.py (not in a router) so it is always reachable
# regardless of router registration state. No rate limit, no auth.
# ---------------------------------------------------------------------------


@app.get("/api/v1/health", include_in_schema=True, tags=["Health"])
def health(request: Request) -> JSONResponse:
    """Return API liveness, version, and whether the store answers."""
    try:
        store_ok = request.app.state.store.ping()
    except OperationalError:
        store_ok = False
    body = HealthResponse(
        status="ok" if store_ok else "degraded",
        version=API_VERSION,
        store="ok" if store_ok else "unavailable",
    )
    return JSONResponse(status_code=200 if store_ok else 503, content=body.model_dump())
