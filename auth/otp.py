"""
auth/otp.py -- TOTP second factor (RFC 6238) on top of pyotp.

Parameters are fixed for every secret this module hands out: SHA-256,
6 digits, 30-second period. Authenticator apps learn them from the
provisioning URI, so changing any of them invalidates existing enrollments.

check() accepts the previous, current and next time step (valid_window=1)
to absorb clock skew. pyotp compares codes with hmac.compare_digest.

The engine is stateless: it does not remember used codes, so a code can be
replayed inside its window. Replay tracking belongs to the caller.

Layer rule: no imports from api/ or web/.
"""

from __future__ import annotations

import hashlib
from datetime import datetime
from urllib.parse import quote, urlencode

import pyotp

OTP_DIGITS = 6
OTP_PERIOD = 30
OTP_ALGORITHM = "SHA256"
OTP_VALID_WINDOW = 1

# 32 base32 characters = 160 bits of entropy.
_SECRET_LENGTH = 32


def build_totp(secret: str) -> pyotp.TOTP:
    """Return a pyotp TOTP bound to the fixed WoLGate parameters."""
    return pyotp.TOTP(secret, digits=OTP_DIGITS, digest=hashlib.sha256, interval=OTP_PERIOD)


def generate_secret() -> str:
    """Return a fresh random base32 secret."""
    return pyotp.random_base32(length=_SECRET_LENGTH)


def is_valid_secret(secret: str) -> bool:
    """Return True if secret decodes as base32 and carries at least 80 bits."""
    if not secret:
        return False
    try:
        key = build_totp(secret).byte_secret()
    except ValueError:
        return False
    return len(key) >= 10


def enrollment_uri(username: str, secret: str, issuer: str) -> str:
    """Build the otpauth:// provisioning URI rendered as a QR code.

    All parameters are spelled out, including the RFC defaults for digits
    and period, so every authenticator app reads the same configuration.
    """
    label = quote(f"{issuer}:{username}")
    params = urlencode(
        {
            "secret": secret,
            "issuer": issuer,
            "algorithm": OTP_ALGORITHM,
            "digits": OTP_DIGITS,
            "period": OTP_PERIOD,
        },
        quote_via=quote,
    )
    return f"otpauth://totp/{label}?{params}"


def check(code: str, secret: str, for_time: datetime | int | None = None) -> bool:
    """Return True if code is valid for secret within +/-1 time step.

    for_time defaults to now; tests pass a fixed instant.
    """
    code = (code or "").strip()
    if not code.isdigit() or len(code) != OTP_DIGITS:
        return False
    try:
        return build_totp(secret).verify(code, for_time=for_time, valid_window=OTP_VALID_WINDOW)
    except ValueError:
        # Secret is not valid base32.
        return False
