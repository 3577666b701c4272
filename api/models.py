"""
API request and response models for WoLGate REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py, which
own the internal domain representation. Route handlers map between the two.

Field limits here are transport hygiene only. The auth service applies the
real rules (empty input, bcrypt's 72-byte limit) and raises ValidationError.
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from auth.errors import AuthError
from auth.models import Identity, OtpEnrollment

# ---------------------------------------------------------------------------
# Error envelope
# ---------------------------------------------------------------------------


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail

    @classmethod
    def from_auth_error(cls, exc: AuthError) -> "ErrorResponse":
        """Build the envelope for an auth-core failure. Only the class message is exposed."""
        return cls(error=ErrorDetail(code=exc.code, message=exc.message))


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "healthy"
    version: str
    components: dict[str, str] = Field(default_factory=dict)


class MessageResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    message: str


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class LoginRequest(BaseModel):
    """Request body for POST /api/v1/auth/login.

    otp_code is omitted on the first attempt. A 401 with code otp_required
    tells the client to prompt for it and resend with the same password.
    """

    username: str = Field(max_length=255)
    password: str = Field(max_length=255)
    otp_code: Optional[str] = Field(default=None, max_length=16)


class SetupRequest(BaseModel):
    """Request body for POST /api/v1/auth/setup.

    otp_secret comes from POST /api/v1/auth/setup/otp; otp_code proves the
    user scanned it.
    """

    username: str = Field(max_length=255)
    password: str = Field(max_length=255)
    otp_secret: Optional[str] = Field(default=None, max_length=128)
    otp_code: Optional[str] = Field(default=None, max_length=16)


class EnrollmentRequest(BaseModel):
    username: str = Field(max_length=255)


class ChangeUsernameRequest(BaseModel):
    current_password: str = Field(max_length=255)
    new_username: str = Field(max_length=255)


class ChangePasswordRequest(BaseModel):
    current_password: str = Field(max_length=255)
    new_password: str = Field(max_length=255)


class PasswordConfirmRequest(BaseModel):
    """Body for OTP disable / regenerate: the password re-authenticates the user."""

    current_password: str = Field(max_length=255)


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class SessionResponse(BaseModel):
    """Returned on successful login or setup. The token is also set as a cookie."""

    model_config = ConfigDict(frozen=True)

    session_token: str
    username: str
    expires_in: int


class EnrollmentResponse(BaseModel):
    """TOTP secret plus the otpauth:// URI the client renders as a QR code."""

    model_config = ConfigDict(frozen=True)

    secret: str
    enrollment_uri: str

    @classmethod
    def from_enrollment(cls, enrollment: OtpEnrollment) -> "EnrollmentResponse":
        return cls(secret=enrollment.secret, enrollment_uri=enrollment.enrollment_uri)


class MeResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    username: str
    otp_enabled: bool

    @classmethod
    def from_identity(cls, identity: Identity) -> "MeResponse":
        return cls(username=identity.username, otp_enabled=identity.otp_enabled)


class StatusResponse(BaseModel):
    """Response for GET /api/v1/auth/status.

    initialized=False means the instance is in first-run setup mode.
    """

    model_config = ConfigDict(frozen=True)

    initialized: bool
    authenticated: bool
    username: Optional[str] = None
    otp_enabled: bool = False
