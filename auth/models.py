"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, zero logic). Dataclasses own the
domain shape; the store, service and routes do the work.

Layer rule: no imports from api/ or web/.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass
class Credential:
    """The durable per-user record owned by the credential store.

    username is the unique key and is compared case-sensitively.
    password_hash is a bcrypt digest; the plaintext is never stored.
    otp_secret is a base32 TOTP secret, present iff the second factor is on.
    """

    username: str
    password_hash: str
    otp_secret: str | None = None


@dataclass(frozen=True)
class Identity:
    """The resolved user attached to a request by the route guard."""

    username: str
    otp_enabled: bool = False


@dataclass(frozen=True)
class OtpEnrollment:
    """A TOTP secret plus the otpauth:// URI the client renders as a QR code."""

    secret: str
    enrollment_uri: str
