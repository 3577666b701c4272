"""
auth/tokens.py -- Session token issuance and verification, cookie helpers.

Security design decisions:
  JWT: python-jose with HS256. Tokens carry the username (sub), issue time
       and expiry, signed with SECRET_KEY. There is no server-side session
       table: logout only drops the cookie, and a copied token stays valid
       until it expires.

  Verification returns None on every failure (malformed, bad signature,
       expired, missing sub/iat/exp, wrong purpose). Callers cannot tell the
       cases apart, which keeps the verifier from acting as an oracle.

  Purpose claim: session tokens carry purpose="session"; the pre-auth OTP
       challenge carries purpose="otp" and lives OTP_CHALLENGE_SECONDS. Each
       verifier accepts only its own purpose.

  SECRET_KEY: sourced from core.config.get_settings() and fixed for the
       process lifetime. Changing it invalidates every outstanding token.

  Cookie: httpOnly (page scripts cannot read it), SameSite=Strict (never sent
       on cross-site requests), path=/, max_age equal to the token lifetime.

Layer rule: no imports from api/ or web/.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from functools import lru_cache

from jose import JWTError, jwt

from core.config import get_settings

logger = logging.getLogger("wolgate.auth")

SESSION_COOKIE = "session"

# Pre-auth challenge issued after a correct password for a user with a
# second factor. It proves the password step only and is never a session.
OTP_CHALLENGE_SECONDS = 300

_ALGORITHM = "HS256"
_PURPOSE_SESSION = "session"
_PURPOSE_OTP = "otp"
_DECODE_OPTIONS = {"require_exp": True, "require_iat": True, "require_sub": True}


class SessionIssuer:
    """Signs and verifies session tokens with a single process-wide key."""

    def __init__(self, secret_key: str, expire_seconds: int) -> None:
        self._secret_key = secret_key
        self.expire_seconds = expire_seconds

    def issue(self, username: str) -> str:
        """Return a signed token for username expiring expire_seconds from now."""
        return self._encode(username, _PURPOSE_SESSION, self.expire_seconds)

    def verify(self, token: str) -> str | None:
        """Return the embedded username, or None if the token is not valid right now."""
        return self._decode(token, _PURPOSE_SESSION)

    def issue_otp_challenge(self, username: str) -> str:
        """Return a short-lived token proving username already passed the password step."""
        return self._encode(username, _PURPOSE_OTP, OTP_CHALLENGE_SECONDS)

    def verify_otp_challenge(self, token: str) -> str | None:
        return self._decode(token, _PURPOSE_OTP)

    def _encode(self, username: str, purpose: str, lifetime: int) -> str:
        now = datetime.now(timezone.utc)
        payload = {
            "sub": username,
            "purpose": purpose,
            "iat": now,
            "exp": now + timedelta(seconds=lifetime),
        }
        return jwt.encode(payload, self._secret_key, algorithm=_ALGORITHM)

    def _decode(self, token: str, purpose: str) -> str | None:
        if not token:
            return None
        try:
            payload = jwt.decode(token, self._secret_key, algorithms=[_ALGORITHM], options=_DECODE_OPTIONS)
        except JWTError:
            return None
        if payload.get("purpose") != purpose:
            return None
        username = payload.get("sub")
        if not isinstance(username, str) or not username:
            return None
        return username


@lru_cache
def get_session_issuer() -> SessionIssuer:
    """Return the process-wide SessionIssuer built from Settings."""
    settings = get_settings()
    return SessionIssuer(settings.secret_key, settings.token_expire_seconds)


# ---------------------------------------------------------------------------
# Cookie helpers
# ---------------------------------------------------------------------------


def set_session_cookie(response, token: str, expire_seconds: int = 0) -> None:
    """Write the session token as an httpOnly, SameSite=Strict cookie.

    Args:
        response:       FastAPI/Starlette response object.
        token:          Encoded session token.
        expire_seconds: Cookie max_age. If 0 (default), uses
                        Settings.token_expire_seconds so cookie and token
                        expire together.
    """
    settings = get_settings()
    duration = expire_seconds if expire_seconds > 0 else settings.token_expire_seconds
    response.set_cookie(
        SESSION_COOKIE,
        value=token,
        httponly=True,
        samesite="strict",
        secure=settings.secure_cookies,
        max_age=duration,
        path="/",
    )


def clear_session_cookie(response) -> None:
    response.delete_cookie(SESSION_COOKIE, path="/", httponly=True, samesite="strict")
