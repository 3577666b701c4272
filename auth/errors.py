"""
auth/errors.py -- Error taxonomy for the authentication core.

Every failure the core reports to a caller is one of these classes. The
route layer maps them to responses by reading code / status_code / message,
so no handler needs an isinstance() ladder.

  ValidationError          caller's fault, field-level message is safe to show
  InvalidCredentialsError  deliberately uninformative (anti-enumeration)
  OtpRequiredError         password was right, second factor missing
  OtpInvalidError          password was right, second factor wrong
  AlreadyExistsError       username collision
  NotFoundError            record vanished
  InternalError            store or signing failure; detail goes to logs only

Layer rule: no imports from api/ or web/.
"""

from __future__ import annotations


class AuthError(Exception):
    """Base class for all reportable auth failures."""

    code = "auth_error"
    status_code = 400
    message = "Authentication failed."

    def __init__(self, message: str | None = None) -> None:
        if message is not None:
            self.message = message
        super().__init__(self.message)


class ValidationError(AuthError):
    code = "validation_error"
    status_code = 400
    message = "Invalid input."


class InvalidCredentialsError(AuthError):
    # Same text for unknown user and wrong password.
    code = "bad_credentials"
    status_code = 401
    message = "Invalid username or password."


class _OtpStepError(AuthError):
    """Password was right; challenge, when set, lets the caller finish without it."""

    def __init__(self, message: str | None = None, challenge: str | None = None) -> None:
        super().__init__(message)
        self.challenge = challenge


class OtpRequiredError(_OtpStepError):
    code = "otp_required"
    status_code = 401
    message = "A one-time code is required."


class OtpInvalidError(_OtpStepError):
    code = "otp_invalid"
    status_code = 401
    message = "Invalid one-time code."


class AlreadyExistsError(AuthError):
    code = "conflict"
    status_code = 409
    message = "A user with that username already exists."


class NotFoundError(AuthError):
    code = "not_found"
    status_code = 404
    message = "User not found."


class InternalError(AuthError):
    """Store or signing failure. The message is always generic."""

    code = "internal_error"
    status_code = 500
    message = "An unexpected error occurred."

    def __init__(self) -> None:
        super().__init__(None)
