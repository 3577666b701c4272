"""
web/routes.py -- Jinja2 template routes for the WoLGate web UI.

These routes serve server-rendered HTML. They share app.state with the API
routes (same AuthService) but return HTML and redirects instead of JSON.
Admission (setup mode, login required, already logged in) is decided by the
route_guard middleware before any handler here runs.

Layer rule: imports from auth/ only, never from api/.

Routes:
  GET  /                         -- home (auth required)
  GET  /login                    -- login form
  POST /login                    -- password login; re-renders with OTP prompt when needed
  POST /logout                   -- clear cookie, redirect /login
  GET  /setup                    -- first-run wizard
  POST /setup/otp                -- generate a TOTP secret to scan during setup
  POST /setup                    -- create the first user, log them in
  GET  /account                  -- account settings (auth required)
  POST /account/username         -- rename, then log in again
  POST /account/password         -- change password
  POST /account/otp/disable      -- turn the second factor off
  POST /account/otp/regenerate   -- new TOTP secret, shown once
"""

import logging
from pathlib import Path
from typing import Optional

from fastapi import APIRouter, Form, Request
from fastapi.responses import HTMLResponse, RedirectResponse
from fastapi.templating import Jinja2Templates

from auth.dependencies import get_auth_service, try_get_current_identity
from auth.errors import AuthError, OtpInvalidError, OtpRequiredError, ValidationError
from auth import otp
from auth.models import Identity, OtpEnrollment
from auth.tokens import clear_session_cookie, set_session_cookie

logger = logging.getLogger("wolgate.web")

templates = Jinja2Templates(directory=str(Path(__file__).parent / "templates"))
router = APIRouter()

# ---------------------------------------------------------------------------
# Message whitelists
# ---------------------------------------------------------------------------

# ?error= and ?message= query params are mapped through these dicts. The raw
# query value is NEVER passed to templates. Prevents reflected XSS.
_ERROR_MESSAGES: dict[str, str] = {
    "bad_credentials": "Invalid username or password.",
    "otp_required": "Enter the code from your authenticator app.",
    "otp_invalid": "Invalid one-time code.",
    "conflict": "That username is already taken.",
    "validation_error": "Please fill in every field.",
    "password_mismatch": "Passwords do not match.",
    "internal_error": "Something went wrong. Please try again.",
}

_INFO_MESSAGES: dict[str, str] = {
    "username_changed": "Username changed. Please log in again.",
    "password_changed": "Password updated.",
    "otp_disabled": "Two-factor authentication disabled.",
    "logged_out": "You have been logged out.",
}


def _error_text(exc: AuthError) -> str:
    # ValidationError messages are generated server-side and name the field.
    if isinstance(exc, ValidationError):
        return exc.message
    return _ERROR_MESSAGES.get(exc.code, _ERROR_MESSAGES["internal_error"])


def _require_identity(request: Request) -> Optional[Identity]:
    """Return the session identity, or None if the guard somehow let an anonymous request through."""
    return try_get_current_identity(request)


def _no_store(resp):
    resp.headers["Cache-Control"] = "no-store"
    return resp


# ---------------------------------------------------------------------------
# Home
# ---------------------------------------------------------------------------


@router.get("/", response_class=HTMLResponse)
def home(request: Request) -> HTMLResponse:
    identity = _require_identity(request)
    if identity is None:
        return RedirectResponse("/login", status_code=303)
    return templates.TemplateResponse(request, "home.html", {"identity": identity})


# ---------------------------------------------------------------------------
# Login / logout
# ---------------------------------------------------------------------------


@router.get("/login", response_class=HTMLResponse)
def login_form(request: Request) -> HTMLResponse:
    """Render the login page. Messages come from the whitelists only."""
    error_msg = _ERROR_MESSAGES.get(request.query_params.get("error", ""))
    info_msg = _INFO_MESSAGES.get(request.query_params.get("message", ""))
    return templates.TemplateResponse(request, "login.html", {"error_msg": error_msg, "info_msg": info_msg})


@router.post("/login", response_class=HTMLResponse)
def login_post(
    request: Request,
    username: str = Form(""),
    password: str = Form(""),
    otp_code: str = Form(""),
    challenge: str = Form(""),
) -> HTMLResponse:
    """Handle the login form.

    When the password is right but a one-time code is missing or wrong, the
    form is re-rendered in its OTP step carrying only the short-lived
    challenge token; the password never goes back into the page. The OTP
    step posts the challenge and the code, not the password.
    """
    service = get_auth_service(request)
    try:
        if challenge:
            token = service.complete_otp_login(challenge, otp_code or None)
        else:
            token = service.login(username, password, otp_code or None)
    except (OtpRequiredError, OtpInvalidError) as exc:
        context = {
            "otp_step": True,
            "challenge": exc.challenge,
            "error_msg": _error_text(exc) if isinstance(exc, OtpInvalidError) else None,
        }
        return _no_store(templates.TemplateResponse(request, "login.html", context, status_code=400))
    except AuthError as exc:
        status_code = exc.status_code if exc.status_code >= 500 else 400
        context = {"username": username, "error_msg": _error_text(exc)}
        return _no_store(templates.TemplateResponse(request, "login.html", context, status_code=status_code))

    resp = RedirectResponse("/", status_code=303)
    set_session_cookie(resp, token, service.issuer.expire_seconds)
    return _no_store(resp)


@router.post("/logout")
def logout(request: Request) -> RedirectResponse:
    """Clear the session cookie and redirect to the login page."""
    logger.info("Logout from %s", request.client.host if request.client else "unknown")
    resp = RedirectResponse("/login?message=logged_out", status_code=303)
    clear_session_cookie(resp)
    return resp


# ---------------------------------------------------------------------------
# First-run setup
# ---------------------------------------------------------------------------


@router.get("/setup", response_class=HTMLResponse)
def setup_form(request: Request) -> HTMLResponse:
    """Render the first-run wizard. The guard redirects here until a user exists."""
    return templates.TemplateResponse(request, "setup.html", {})


@router.post("/setup/otp", response_class=HTMLResponse)
def setup_otp(request: Request, username: str = Form("")) -> HTMLResponse:
    """Generate a TOTP secret for the wizard. Nothing is stored yet."""
    service = get_auth_service(request)
    try:
        enrollment = service.begin_enrollment(username)
    except AuthError as exc:
        return templates.TemplateResponse(request, "setup.html", {"error_msg": _error_text(exc)}, status_code=400)
    context = {"username": username, "enrollment": enrollment}
    return _no_store(templates.TemplateResponse(request, "setup.html", context))


@router.post("/setup", response_class=HTMLResponse)
def setup_post(
    request: Request,
    username: str = Form(""),
    password: str = Form(""),
    confirm_password: str = Form(""),
    otp_secret: str = Form(""),
    otp_code: str = Form(""),
) -> HTMLResponse:
    """Create the first user and log them in.

    AuthService.setup() re-checks that the store is empty under a lock, so
    two racing submissions cannot both register.
    """
    service = get_auth_service(request)
    context: dict = {"username": username}
    if otp_secret:
        # Keep the QR visible if the code needs another try.
        context["enrollment"] = OtpEnrollment(
            secret=otp_secret,
            enrollment_uri=otp.enrollment_uri(username, otp_secret, service.otp_issuer),
        )

    if password != confirm_password:
        context["error_msg"] = _ERROR_MESSAGES["password_mismatch"]
        return templates.TemplateResponse(request, "setup.html", context, status_code=400)

    try:
        token = service.setup(username, password, otp_secret=otp_secret or None, otp_code=otp_code or None)
    except AuthError as exc:
        context["error_msg"] = _error_text(exc)
        status_code = exc.status_code if exc.status_code >= 500 else 400
        return _no_store(templates.TemplateResponse(request, "setup.html", context, status_code=status_code))

    resp = RedirectResponse("/", status_code=303)
    set_session_cookie(resp, token, service.issuer.expire_seconds)
    return _no_store(resp)


# ---------------------------------------------------------------------------
# Account settings
# ---------------------------------------------------------------------------


def _account_page(request: Request, identity: Identity, status_code: int = 200, **context) -> HTMLResponse:
    context.setdefault("error_msg", None)
    context.setdefault("info_msg", None)
    context["identity"] = identity
    return _no_store(templates.TemplateResponse(request, "account.html", context, status_code=status_code))


@router.get("/account", response_class=HTMLResponse)
def account(request: Request) -> HTMLResponse:
    identity = _require_identity(request)
    if identity is None:
        return RedirectResponse("/login", status_code=303)
    info_msg = _INFO_MESSAGES.get(request.query_params.get("message", ""))
    error_msg = _ERROR_MESSAGES.get(request.query_params.get("error", ""))
    return _account_page(request, identity, info_msg=info_msg, error_msg=error_msg)


@router.post("/account/username", response_class=HTMLResponse)
def account_username(
    request: Request,
    current_password: str = Form(""),
    new_username: str = Form(""),
) -> HTMLResponse:
    """Rename the account. The old session no longer resolves, so log in again."""
    identity = _require_identity(request)
    if identity is None:
        return RedirectResponse("/login", status_code=303)
    try:
        get_auth_service(request).change_username(identity.username, current_password, new_username)
    except AuthError as exc:
        return _account_page(request, identity, status_code=400, error_msg=_error_text(exc))
    resp = RedirectResponse("/login?message=username_changed", status_code=303)
    clear_session_cookie(resp)
    return resp


@router.post("/account/password", response_class=HTMLResponse)
def account_password(
    request: Request,
    current_password: str = Form(""),
    new_password: str = Form(""),
    confirm_password: str = Form(""),
) -> HTMLResponse:
    identity = _require_identity(request)
    if identity is None:
        return RedirectResponse("/login", status_code=303)
    if new_password != confirm_password:
        return _account_page(request, identity, status_code=400, error_msg=_ERROR_MESSAGES["password_mismatch"])
    try:
        get_auth_service(request).change_password(identity.username, current_password, new_password)
    except AuthError as exc:
        return _account_page(request, identity, status_code=400, error_msg=_error_text(exc))
    return RedirectResponse("/account?message=password_changed", status_code=303)


@router.post("/account/otp/disable", response_class=HTMLResponse)
def account_otp_disable(request: Request, current_password: str = Form("")) -> HTMLResponse:
    identity = _require_identity(request)
    if identity is None:
        return RedirectResponse("/login", status_code=303)
    try:
        get_auth_service(request).disable_otp(identity.username, current_password)
    except AuthError as exc:
        return _account_page(request, identity, status_code=400, error_msg=_error_text(exc))
    return RedirectResponse("/account?message=otp_disabled", status_code=303)


@router.post("/account/otp/regenerate", response_class=HTMLResponse)
def account_otp_regenerate(request: Request, current_password: str = Form("")) -> HTMLResponse:
    """Replace the TOTP secret and show the new one once.

    The secret is active as soon as this returns; the page cannot be a
    redirect because the secret must not travel in a URL.
    """
    identity = _require_identity(request)
    if identity is None:
        return RedirectResponse("/login", status_code=303)
    try:
        enrollment = get_auth_service(request).regenerate_otp(identity.username, current_password)
    except AuthError as exc:
        return _account_page(request, identity, status_code=400, error_msg=_error_text(exc))
    refreshed = Identity(username=identity.username, otp_enabled=True)
    return _account_page(request, refreshed, enrollment=enrollment)
