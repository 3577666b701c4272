"""
api/routes/v1/account.py -- Self-service account changes for the logged-in user.

Routes:
  PUT  /api/v1/account/username        -- rename; clears the session cookie
  PUT  /api/v1/account/password        -- replace the password
  POST /api/v1/account/otp/disable     -- turn the second factor off
  POST /api/v1/account/otp/regenerate  -- new TOTP secret, active immediately

Every route requires a session AND the current password. The session says
who is acting; the password proves it is still them.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from api.limiter import LOGIN_RATE_LIMIT, limiter
from api.models import (
    ChangePasswordRequest,
    ChangeUsernameRequest,
    EnrollmentResponse,
    MessageResponse,
    PasswordConfirmRequest,
)
from auth.dependencies import get_auth_service, get_current_identity
from auth.models import Identity
from auth.tokens import clear_session_cookie

router = APIRouter()


@router.put("/account/username", response_model=MessageResponse)
@limiter.limit(LOGIN_RATE_LIMIT)
def change_username(
    request: Request,
    body: ChangeUsernameRequest,
    identity: Identity = Depends(get_current_identity),
) -> JSONResponse:
    """Rename the current user.

    Tokens embed the username, so the current session stops resolving once
    the record is re-keyed. The cookie is cleared and the client logs in again.
    """
    service = get_auth_service(request)
    service.change_username(identity.username, body.current_password, body.new_username)
    resp = JSONResponse(content=MessageResponse(message="Username changed. Please log in again.").model_dump())
    clear_session_cookie(resp)
    return resp


@router.put("/account/password", response_model=MessageResponse)
@limiter.limit(LOGIN_RATE_LIMIT)
def change_password(
    request: Request,
    body: ChangePasswordRequest,
    identity: Identity = Depends(get_current_identity),
) -> MessageResponse:
    get_auth_service(request).change_password(identity.username, body.current_password, body.new_password)
    return MessageResponse(message="Password updated.")


@router.post("/account/otp/disable", response_model=MessageResponse)
@limiter.limit(LOGIN_RATE_LIMIT)
def disable_otp(
    request: Request,
    body: PasswordConfirmRequest,
    identity: Identity = Depends(get_current_identity),
) -> MessageResponse:
    get_auth_service(request).disable_otp(identity.username, body.current_password)
    return MessageResponse(message="Two-factor authentication disabled.")


@router.post("/account/otp/regenerate", response_model=EnrollmentResponse)
@limiter.limit(LOGIN_RATE_LIMIT)
def regenerate_otp(
    request: Request,
    body: PasswordConfirmRequest,
    identity: Identity = Depends(get_current_identity),
) -> JSONResponse:
    """Issue a new TOTP secret. The old secret stops working immediately.

    The response carries the secret, so it must never be cached.
    """
    enrollment = get_auth_service(request).regenerate_otp(identity.username, body.current_password)
    resp = JSONResponse(content=EnrollmentResponse.from_enrollment(enrollment).model_dump())
    resp.headers["Cache-Control"] = "no-store"
    return resp
