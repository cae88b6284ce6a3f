"""
api/main.py -- FastAPI application entry point for the QMS portal auth API.

Run with:      uvicorn asgi:app --reload

Middleware stack (Starlette wraps the last registered outermost):
  1. log_requests          -- method, path, status, latency
  2. security_headers      -- nosniff, frame, referrer, CSP, HSTS
  3. SlowAPIMiddleware     -- enforces per-route rate limits from api.limiter
  4. CORSMiddleware        -- credentialed CORS for the configured front ends
  5. TrustedHostMiddleware -- rejects requests with unexpected Host headers

Lifespan builds the process-wide, read-only auth collaborators once:
  app.state.auth_store    -- AuthStore (users + sessions)
  app.state.auth_cookies  -- AuthCookieSet registry from Settings
  app.state.csrf_issuer   -- CsrfTokenIssuer holding the CSRF key
and tears them down symmetrically on shutdown.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager, suppress

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from starlette.exceptions import HTTPException as StarletteHTTPException

from api.limiter import limiter
from api.models import FailureResponse, HealthResponse
from api.routes.auth import router as auth_router
from auth.cookies import build_auth_cookie_set
from auth.csrf import CsrfTokenIssuer
from auth.errors import CsrfRejected, InternalFailure, Unauthenticated
from auth.store import AuthStore
from core.config import get_settings

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("qms.api")

_settings = get_settings()

VERSION = "0.1.0"

# ---------------------------------------------------------------------------
# Background purge task
# ---------------------------------------------------------------------------


async def _purge_loop(app: FastAPI) -> None:
    """Delete expired and revoked sessions every 6 hours.

    CancelledError from task.cancel() during shutdown propagates out of
    asyncio.sleep and unwinds the coroutine.
    """
    while True:
        await asyncio.sleep(6 * 60 * 60)
        removed = await asyncio.to_thread(app.state.auth_store.purge_expired_sessions)
        logger.info("Purged %d stale sessions", removed)


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Create the auth collaborators on startup, release them on shutdown.

    Startup order matters: the CSRF issuer records nonces through the store,
    so the store must exist first.
    """
    logger.info("QMS auth API starting up")
    app.state.auth_store = AuthStore(_settings.database_url)
    app.state.auth_cookies = build_auth_cookie_set(_settings)
    app.state.csrf_issuer = CsrfTokenIssuer(
        _settings.derive_key("csrf"),
        app.state.auth_store,
        max_age_seconds=_settings.csrf_token_max_age_seconds,
    )
    logger.info(
        "Auth initialized (cookies=%s, csrf_max_age=%ds)",
        sorted(app.state.auth_cookies.names),
        _settings.csrf_token_max_age_seconds,
    )
    app.state.purge_task = asyncio.create_task(_purge_loop(app))

    yield

    app.state.purge_task.cancel()
    with suppress(asyncio.CancelledError):
        await app.state.purge_task
    app.state.auth_store.close()
    logger.info("QMS auth API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="QMS Portal Auth API",
    description="Session, CSRF and signout endpoints for the QMS portal.",
    version=VERSION,
    lifespan=lifespan,
    docs_url="/docs" if _settings.debug else None,
    redoc_url=None,
)

# ---------------------------------------------------------------------------
# Middleware stack
# ---------------------------------------------------------------------------

app.add_middleware(
    TrustedHostMiddleware,
    allowed_hosts=_settings.allowed_hosts,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_settings.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE"],
    allow_headers=["Content-Type", "Authorization", "X-CSRF-Token"],
    max_age=3600,
)

app.add_middleware(SlowAPIMiddleware)

# SlowAPI looks for app.state.limiter by convention.
app.state.limiter = limiter

# ---------------------------------------------------------------------------
# Security headers middleware
#
# Applied to every response. setdefault() so a route that sets a stricter
# value itself (e.g. Cache-Control on signout) keeps it.
# ---------------------------------------------------------------------------

_SECURITY_HEADERS: dict[str, str] = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "Referrer-Policy": "strict-origin-when-cross-origin",
    "Permissions-Policy": "camera=(), microphone=(), geolocation=()",
    "Content-Security-Policy": (
        "default-src 'self'; img-src 'self' data: blob:; font-src 'self' data:; "
        "connect-src 'self'; frame-ancestors 'none'"
    ),
}


@app.middleware("http")
async def security_headers(request: Request, call_next):
    response = await call_next(request)
    for name, value in _SECURITY_HEADERS.items():
        response.headers.setdefault(name, value)
    if not _settings.debug:
        response.headers.setdefault("Strict-Transport-Security", "max-age=31536000; includeSubDomains")
    return response


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

app.include_router(auth_router, prefix="/api", tags=["Auth"])


# ---------------------------------------------------------------------------
# Exception handlers
#
# Every failure uses the same {success: false, message} envelope. Messages
# are generic; anything more specific stays in the server log.
# ---------------------------------------------------------------------------


def _failure(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=FailureResponse(message=message).model_dump(),
        headers={"Cache-Control": "no-store"},
    )


@app.exception_handler(Unauthenticated)
async def unauthenticated_handler(request: Request, exc: Unauthenticated) -> JSONResponse:
    return _failure(401, exc.message)


@app.exception_handler(CsrfRejected)
async def csrf_rejected_handler(request: Request, exc: CsrfRejected) -> JSONResponse:
    logger.warning("CSRF check failed on %s %s", request.method, request.url.path)
    return _failure(403, exc.message)


@app.exception_handler(InternalFailure)
async def internal_failure_handler(request: Request, exc: InternalFailure) -> JSONResponse:
    """The cause was logged with its traceback where it was caught."""
    return _failure(500, exc.message)


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Return 429 with Retry-After when a rate limit is exceeded."""
    retry_after = int(getattr(exc, "retry_after", 60))
    response = _failure(429, "Too many requests. Please try again later.")
    response.headers["Retry-After"] = str(retry_after)
    return response


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Return 400 when the body or query fails validation. Field detail is logged, not echoed."""
    logger.info("Validation failed on %s %s: %s", request.method, request.url.path, exc.errors())
    return _failure(400, "Invalid request")


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return _failure(exc.status_code, str(exc.detail))


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all handler for unexpected server errors.

    The raw exception is logged only, never written to the response body.
    """
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return _failure(500, "An unexpected error occurred.")


# ---------------------------------------------------------------------------
# Health endpoint
#
# Defined directly in main.py so it is reachable regardless of router
# registration. No rate limit applied.
# ---------------------------------------------------------------------------


@app.get("/api/health", tags=["Health"])
async def health() -> HealthResponse:
    """Return API liveness and current version."""
    return HealthResponse(version=VERSION)
