"""
api/routes/v1/auth.py -- Session endpoints: status, setup, login, logout, me.

Routes:
  GET  /api/v1/auth/status     -- setup state + current identity (public)
  POST /api/v1/auth/setup/otp  -- fresh TOTP secret for the setup form (setup mode only)
  POST /api/v1/auth/setup      -- create the first user; sets session cookie
  POST /api/v1/auth/login      -- password (+ OTP) login; sets session cookie
  POST /api/v1/auth/logout     -- clears the cookie
  GET  /api/v1/auth/me         -- current identity (requires auth)

Security:
  POST /login and POST /setup are rate-limited per client IP.
  Login failures share one code (bad_credentials) for unknown user and wrong
  password. otp_required / otp_invalid are only returned after the password
  matched, so the client can ask for the code without re-asking the password.
  Cache-Control: no-store on every response that carries a token.
  Handlers that hash passwords are plain def so FastAPI runs them in the
  threadpool and bcrypt never blocks the event loop.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from api.limiter import LOGIN_RATE_LIMIT, limiter
from api.models import (
    EnrollmentRequest,
    EnrollmentResponse,
    ErrorResponse,
    LoginRequest,
    MeResponse,
    MessageResponse,
    SessionResponse,
    SetupRequest,
    StatusResponse,
)
from auth.dependencies import get_auth_service, get_current_identity, try_get_current_identity
from auth.errors import AlreadyExistsError, AuthError, InternalError
from auth.models import Identity
from auth.service import AuthService
from auth.tokens import clear_session_cookie, set_session_cookie

# Auth policy:
# - GET  /api/v1/auth/status:     public -- the frontend decides between setup and login pages
# - POST /api/v1/auth/setup/otp:  setup mode only (guard admits /api/ before the first user)
# - POST /api/v1/auth/setup:      setup mode only, enforced again by AuthService.setup()
# - POST /api/v1/auth/login:      public
# - POST /api/v1/auth/logout:     requires a session (guard)
# - GET  /api/v1/auth/me:         requires auth (get_current_identity)
router = APIRouter()


def _session_response(service: AuthService, token: str, username: str, status_code: int = 200) -> JSONResponse:
    resp = JSONResponse(
        status_code=status_code,
        content=SessionResponse(
            session_token=token,
            username=username,
            expires_in=service.issuer.expire_seconds,
        ).model_dump(),
    )
    set_session_cookie(resp, token, service.issuer.expire_seconds)
    resp.headers["Cache-Control"] = "no-store"
    return resp


# ---------------------------------------------------------------------------
# Public endpoints
# ---------------------------------------------------------------------------


@router.get("/auth/status", response_model=StatusResponse)
def status(request: Request) -> StatusResponse:
    """Report whether setup is complete and who the caller is."""
    service = get_auth_service(request)
    identity = try_get_current_identity(request)
    return StatusResponse(
        initialized=service.is_initialized(),
        authenticated=identity is not None,
        username=identity.username if identity else None,
        otp_enabled=identity.otp_enabled if identity else False,
    )


@router.post("/auth/setup/otp", response_model=EnrollmentResponse)
def setup_otp(request: Request, body: EnrollmentRequest) -> EnrollmentResponse:
    """Generate a TOTP secret for the setup form. Nothing is stored until POST /auth/setup."""
    service = get_auth_service(request)
    if service.is_initialized():
        raise AlreadyExistsError("Setup has already been completed.")
    return EnrollmentResponse.from_enrollment(service.begin_enrollment(body.username))


@router.post("/auth/setup", response_model=SessionResponse, status_code=201)
@limiter.limit(LOGIN_RATE_LIMIT)
def setup(request: Request, body: SetupRequest) -> JSONResponse:
    """Create the first user and log them in.

    AlreadyExistsError (409) once any user exists -- a second anonymous
    visitor can never register on a live instance.
    """
    service = get_auth_service(request)
    token = service.setup(body.username, body.password, otp_secret=body.otp_secret, otp_code=body.otp_code)
    return _session_response(service, token, body.username, status_code=201)


@router.post("/auth/login", response_model=SessionResponse)
@limiter.limit(LOGIN_RATE_LIMIT)
def login(request: Request, body: LoginRequest) -> JSONResponse:
    """Authenticate with username, password and (if enabled) a one-time code."""
    service = get_auth_service(request)
    try:
        token = service.login(body.username, body.password, body.otp_code)
    except AuthError as exc:
        if isinstance(exc, InternalError):
            raise
        resp = JSONResponse(status_code=exc.status_code, content=ErrorResponse.from_auth_error(exc).model_dump())
        resp.headers["Cache-Control"] = "no-store"
        return resp
    return _session_response(service, token, body.username)


@router.post("/auth/logout", response_model=MessageResponse)
def logout() -> JSONResponse:
    """Clear the session cookie.

    There is no server-side revocation: a copy of the token stays valid
    until it expires.
    """
    resp = JSONResponse(content=MessageResponse(message="Logged out.").model_dump())
    clear_session_cookie(resp)
    return resp


# ---------------------------------------------------------------------------
# Authenticated endpoints
# ---------------------------------------------------------------------------


@router.get("/auth/me", response_model=MeResponse)
def me(identity: Identity = Depends(get_current_identity)) -> MeResponse:
    """Return identity information for the current session."""
    return MeResponse.from_identity(identity)
