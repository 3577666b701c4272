"""
api/main.py -- FastAPI application entry point for WoLGate.

Exposes the authentication core over HTTP. The device-wake feature and the
device registry plug in as peer routers; they never touch credentials.

Run with:      uvicorn asgi:app --reload

Middleware stack (outermost to innermost):
  1. TrustedHostMiddleware  -- rejects requests with unexpected Host headers
  2. log_requests           -- one log line per request, redirects included
  3. route_guard            -- setup / login / home redirects (auth.guard.decide)
  4. SlowAPIMiddleware      -- enforces per-route rate limits from api.limiter

Lifespan opens the credential store and wires the AuthService into app.state
on startup, and closes the store on shutdown.
"""

from __future__ import annotations

import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.responses import JSONResponse, RedirectResponse
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from starlette.concurrency import run_in_threadpool

from api.limiter import limiter
from api.models import ErrorDetail, ErrorResponse, HealthResponse
from api.routes.v1.account import router as account_router
from api.routes.v1.auth import router as auth_router
from auth.errors import AuthError, InternalError
from auth.guard import decide
from auth.service import AuthService
from auth.store import open_credential_store
from auth.tokens import SESSION_COOKIE, clear_session_cookie, get_session_issuer
from core.config import get_settings

VERSION = "0.1.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("wolgate.api")

_settings = get_settings()


# ---------------------------------------------------------------------------
# Lifespan -- modern startup / shutdown pattern (replaces @app.on_event)
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Open the credential store and build the AuthService.

    The session issuer is the process-wide singleton: its signing key is
    fixed for the lifetime of the server.
    """
    logger.info("WoLGate API starting up")
    store = open_credential_store(_settings.database_url)
    app.state.auth_service = AuthService(store, get_session_issuer(), otp_issuer=_settings.otp_issuer)
    logger.info("Auth initialized (setup_required=%s)", not app.state.auth_service.is_initialized())

    yield

    store.close()
    logger.info("WoLGate API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="WoLGate API",
    description="Self-hosted Wake-on-LAN gateway: authentication and session core.",
    version=VERSION,
    lifespan=lifespan,
)

# ---------------------------------------------------------------------------
# Middleware stack
#
# add_middleware() and @app.middleware both insert at the outside of the
# stack, so the last registration runs first on an incoming request.
# ---------------------------------------------------------------------------

app.add_middleware(SlowAPIMiddleware)

# SlowAPI looks for app.state.limiter by convention.
app.state.limiter = limiter


# ---------------------------------------------------------------------------
# Route guard middleware
#
# Re-evaluated on every request: the store is asked whether any user exists
# and the cookie is verified fresh each time. Nothing is cached between
# requests, so the first setup takes effect on the very next hit.
# ---------------------------------------------------------------------------


@app.middleware("http")
async def route_guard(request: Request, call_next):
    """Admit the request or redirect it per auth.guard.decide().

    Store calls run in the threadpool so a slow disk never stalls the event
    loop. A store failure yields a generic 500; details are in the log.
    """
    service: AuthService = request.app.state.auth_service
    token = request.cookies.get(SESSION_COOKIE)
    try:
        has_users = await run_in_threadpool(service.is_initialized)
        identity = await run_in_threadpool(service.resolve_identity, token) if has_users else None
    except InternalError as exc:
        return JSONResponse(status_code=exc.status_code, content=ErrorResponse.from_auth_error(exc).model_dump())

    decision = decide(has_users, identity.username if identity else None, request.url.path)
    if not decision.admitted:
        resp = RedirectResponse(decision.redirect_to, status_code=303)
        if token and identity is None:
            # Stale or forged cookie; drop it so the browser stops sending it.
            clear_session_cookie(resp)
        return resp

    request.state.identity = identity
    return await call_next(request)


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


# Registered last so a bad Host header is rejected before the guard touches the store.
app.add_middleware(TrustedHostMiddleware, allowed_hosts=_settings.allowed_hosts)


# ---------------------------------------------------------------------------
# Router registration
# ---------------------------------------------------------------------------

app.include_router(auth_router, prefix="/api/v1", tags=["Auth"])
app.include_router(account_router, prefix="/api/v1", tags=["Account"])
# Web UI router is mounted by asgi.py, not here.
# api/ and web/ are independent layers -- only the top-level asgi.py imports both.


# ---------------------------------------------------------------------------
# Exception handlers
#
# All handlers return the same ErrorResponse envelope so API clients can parse
# errors uniformly without inspecting status codes to choose a schema.
# ---------------------------------------------------------------------------


@app.exception_handler(AuthError)
async def auth_error_handler(request: Request, exc: AuthError) -> JSONResponse:
    """Map the auth taxonomy onto status codes.

    Only the class-level message reaches the client. InternalError detail
    was already logged by the service.
    """
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse.from_auth_error(exc).model_dump(),
    )


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Return 429 with a structured error when a rate limit is exceeded."""
    retry_after = int(getattr(exc, "retry_after", 60))
    response = JSONResponse(
        status_code=429,
        content=ErrorResponse(
            error=ErrorDetail(
                code="rate_limited",
                message="Too many requests.",
                detail=str(exc),
            )
        ).model_dump(),
    )
    response.headers["Retry-After"] = str(retry_after)
    return response


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Return 422 with structured error when request body or query params fail validation."""
    return JSONResponse(
        status_code=422,
        content=ErrorResponse(
            error=ErrorDetail(
                code="validation_error",
                message="Request validation failed.",
                detail=str(exc.errors()),
            )
        ).model_dump(),
    )


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Return a structured error for all FastAPI/Starlette HTTP exceptions.

    Route handlers raise HTTPException with a dict detail. When detail is
    already a structured dict, use it directly as the error field.
    """
    if isinstance(exc.detail, dict):
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": exc.detail},
        )
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(
            error=ErrorDetail(
                code=f"http_{exc.status_code}",
                message=str(exc.detail),
            )
        ).model_dump(),
    )


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all handler for unexpected server errors.

    The raw exception goes to the log only, never to the response body.
    """
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=500,
        content=ErrorResponse(
            error=ErrorDetail(
                code="internal_error",
                message="An unexpected error occurred.",
            )
        ).model_dump(),
    )


# ---------------------------------------------------------------------------
# Health endpoint
#
# Defined directly in main.py (not in a router) so it is always reachable
# regardless of router registration state. No rate limit applied.
# ---------------------------------------------------------------------------


@app.get("/api/v1/health", tags=["Health"])
def health(request: Request) -> HealthResponse:
    """Return liveness, version, and whether the credential store answers."""
    try:
        request.app.state.auth_service.is_initialized()
        database = "ok"
    except InternalError:
        database = "error"
    return HealthResponse(version=VERSION, components={"app": "ok", "database": database})
