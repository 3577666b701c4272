"""
auth/service.py -- Orchestration of setup, login and account mutations.

AuthService is the only code path that writes credentials. It composes the
credential store, the bcrypt helpers, the TOTP engine and the session issuer,
and reports every failure as one of the classes in auth.errors:

  - Unknown username and wrong password raise the same
    InvalidCredentialsError after the same amount of bcrypt work [timing].
  - OtpRequiredError / OtpInvalidError are raised only after the password
    checked out, so disclosing them tells an attacker nothing new.
  - CredentialStoreError and signing failures are logged with full detail
    and re-raised as a generic InternalError.

Every account mutation re-verifies the acting user's password. A hijacked
session alone cannot rename the account, change the password, or turn the
second factor off.

Records are read fresh from the store on each call; nothing is cached on
the service instance.

Layer rule: no imports from api/ or web/.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import replace

from jose import JWTError

from auth import otp
from auth.errors import (
    AlreadyExistsError,
    InternalError,
    InvalidCredentialsError,
    OtpInvalidError,
    OtpRequiredError,
    ValidationError,
)
from auth.models import Credential, Identity, OtpEnrollment
from auth.passwords import _DUMMY_HASH, MAX_PASSWORD_BYTES, hash_password, verify_password
from auth.store import CredentialStore, CredentialStoreError
from auth.tokens import SessionIssuer

logger = logging.getLogger("wolgate.auth")

MIN_USERNAME_LENGTH = 3
MAX_USERNAME_LENGTH = 32
MIN_PASSWORD_LENGTH = 8


@contextmanager
def _store_errors(action: str) -> Iterator[None]:
    """Translate store I/O failures into InternalError."""
    try:
        yield
    except CredentialStoreError as exc:
        logger.exception("Credential store failure during %s", action)
        raise InternalError() from exc


def _validate_username(username: str | None) -> str:
    if not username or not username.strip():
        raise ValidationError("Username is required.")
    if not MIN_USERNAME_LENGTH <= len(username) <= MAX_USERNAME_LENGTH:
        raise ValidationError(
            f"Username must be between {MIN_USERNAME_LENGTH} and {MAX_USERNAME_LENGTH} characters."
        )
    return username


def _validate_password(password: str | None) -> str:
    if not password:
        raise ValidationError("Password is required.")
    if len(password) < MIN_PASSWORD_LENGTH:
        raise ValidationError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters.")
    if len(password.encode("utf-8")) > MAX_PASSWORD_BYTES:
        raise ValidationError(f"Password must be at most {MAX_PASSWORD_BYTES} bytes.")
    return password


class AuthService:
    """Authentication use cases over an injected CredentialStore.

    Usage:
        service = AuthService(MemoryCredentialStore(), get_session_issuer())
        token = service.setup("alice", "correct-horse")
        service.resolve_identity(token)   # Identity(username="alice", otp_enabled=False)
    """

    def __init__(self, store: CredentialStore, issuer: SessionIssuer, otp_issuer: str = "WoLGate") -> None:
        self.store = store
        self.issuer = issuer
        self.otp_issuer = otp_issuer
        # Serializes the empty-check and the insert of first-run setup.
        self._setup_lock = threading.Lock()

    # ------------------------------------------------------------------
    # State queries
    # ------------------------------------------------------------------

    def is_initialized(self) -> bool:
        """Return True once the first user exists (setup mode is over)."""
        with _store_errors("has_any"):
            return self.store.has_any()

    def resolve_identity(self, token: str | None) -> Identity | None:
        """Map a session token to the Identity it belongs to.

        Returns None when the token is invalid or names a user that no longer
        exists (e.g. renamed since the token was issued).
        """
        username = self.issuer.verify(token) if token else None
        if username is None:
            return None
        with _store_errors("find"):
            record = self.store.find(username)
        if record is None:
            return None
        return Identity(username=record.username, otp_enabled=record.otp_secret is not None)

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def begin_enrollment(self, username: str) -> OtpEnrollment:
        """Generate a TOTP secret and URI without persisting anything.

        The setup flow shows the QR code first and passes the secret back to
        setup() together with a confirmation code.
        """
        username = _validate_username(username)
        secret = otp.generate_secret()
        return OtpEnrollment(secret=secret, enrollment_uri=otp.enrollment_uri(username, secret, self.otp_issuer))

    def setup(
        self,
        username: str,
        password: str,
        otp_secret: str | None = None,
        otp_code: str | None = None,
        allow_existing: bool = False,
    ) -> str:
        """Create a user and return a session token for it.

        Only allowed while the store is empty unless allow_existing is True.
        When otp_secret is given, otp_code must be a current code for it so
        a user cannot lock themselves out with a secret they never scanned.
        """
        username = _validate_username(username)
        password = _validate_password(password)
        if otp_secret is not None:
            if not otp.is_valid_secret(otp_secret):
                raise ValidationError("OTP secret is malformed.")
            if not otp_code:
                raise OtpRequiredError()
            if not otp.check(otp_code, otp_secret):
                raise OtpInvalidError()

        password_hash = hash_password(password)
        with self._setup_lock, _store_errors("setup"):
            if not allow_existing and self.store.has_any():
                logger.warning("Setup rejected: instance already initialized")
                raise AlreadyExistsError("Setup has already been completed.")
            self.store.add(Credential(username=username, password_hash=password_hash, otp_secret=otp_secret))

        logger.info("User created: %s (otp=%s)", username, otp_secret is not None)
        return self._issue(username)

    # ------------------------------------------------------------------
    # Login
    # ------------------------------------------------------------------

    def login(self, username: str, password: str, otp_code: str | None = None) -> str:
        """Authenticate and return a session token.

        Raises InvalidCredentialsError for unknown user or wrong password,
        OtpRequiredError when the user has a second factor and no code was
        sent, OtpInvalidError when the code does not match. Both OTP errors
        carry a challenge token for complete_otp_login(), so a form does not
        have to hold on to the password between the two steps.
        """
        if not username or not password:
            raise ValidationError("Username and password are required.")
        record = self._authenticate(username, password)
        if record.otp_secret is not None:
            self._check_second_factor(record, otp_code)
        logger.info("Login succeeded for %s", username)
        return self._issue(record.username)

    def complete_otp_login(self, challenge: str, otp_code: str | None) -> str:
        """Finish a login that stopped at the second factor.

        An expired, forged or foreign challenge raises InvalidCredentialsError,
        which sends the user back to the password step.
        """
        username = self.issuer.verify_otp_challenge(challenge)
        if username is None:
            logger.warning("Rejected one-time code challenge")
            raise InvalidCredentialsError()
        with _store_errors("find"):
            record = self.store.find(username)
        if record is None or record.otp_secret is None:
            logger.warning("Challenge for %s no longer matches an OTP user", username)
            raise InvalidCredentialsError()
        self._check_second_factor(record, otp_code)
        logger.info("Login succeeded for %s", username)
        return self._issue(record.username)

    # ------------------------------------------------------------------
    # Account mutations (all re-verify the password)
    # ------------------------------------------------------------------

    def change_username(self, current_username: str, verifying_password: str, new_username: str) -> None:
        """Re-key the acting user's record. Outstanding tokens for the old name stop resolving."""
        new_username = _validate_username(new_username)
        record = self._authenticate(current_username, verifying_password)
        if new_username == record.username:
            return
        with _store_errors("change_username"):
            self.store.update(record.username, replace(record, username=new_username))
        logger.info("Username changed: %s -> %s", current_username, new_username)

    def change_password(self, current_username: str, verifying_password: str, new_password: str) -> None:
        new_password = _validate_password(new_password)
        record = self._authenticate(current_username, verifying_password)
        with _store_errors("change_password"):
            self.store.update(record.username, replace(record, password_hash=hash_password(new_password)))
        logger.info("Password changed for %s", current_username)

    def disable_otp(self, current_username: str, verifying_password: str) -> None:
        record = self._authenticate(current_username, verifying_password)
        with _store_errors("disable_otp"):
            self.store.update(record.username, replace(record, otp_secret=None))
        logger.info("Second factor disabled for %s", current_username)

    def regenerate_otp(self, current_username: str, verifying_password: str) -> OtpEnrollment:
        """Replace the TOTP secret and return the new enrollment.

        The new secret is persisted before the user confirms they scanned it;
        the previous secret stops working immediately.
        """
        record = self._authenticate(current_username, verifying_password)
        secret = otp.generate_secret()
        with _store_errors("regenerate_otp"):
            self.store.update(record.username, replace(record, otp_secret=secret))
        logger.info("Second factor regenerated for %s", current_username)
        return OtpEnrollment(
            secret=secret,
            enrollment_uri=otp.enrollment_uri(record.username, secret, self.otp_issuer),
        )

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _authenticate(self, username: str, password: str) -> Credential:
        """Return the record if password matches, else raise InvalidCredentialsError.

        Always runs bcrypt whether or not the user exists [timing]:
        - Unknown username: bcrypt runs against _DUMMY_HASH
        - Wrong password: bcrypt runs against the real hash
        """
        with _store_errors("find"):
            record = self.store.find(username) if username else None
        if record is None:
            verify_password(password or "", _DUMMY_HASH)
            logger.warning("Authentication failed for %s", username)
            raise InvalidCredentialsError()
        if not verify_password(password or "", record.password_hash) or not password:
            logger.warning("Authentication failed for %s", username)
            raise InvalidCredentialsError()
        return record

    def _check_second_factor(self, record: Credential, otp_code: str | None) -> None:
        if not otp_code:
            logger.info("Login for %s awaiting one-time code", record.username)
            raise OtpRequiredError(challenge=self._challenge(record.username))
        if not otp.check(otp_code, record.otp_secret):
            logger.warning("Invalid one-time code for %s", record.username)
            raise OtpInvalidError(challenge=self._challenge(record.username))

    def _challenge(self, username: str) -> str:
        try:
            return self.issuer.issue_otp_challenge(username)
        except JWTError as exc:
            logger.exception("Challenge signing failed for %s", username)
            raise InternalError() from exc

    def _issue(self, username: str) -> str:
        try:
            return self.issuer.issue(username)
        except JWTError as exc:
            logger.exception("Session token signing failed for %s", username)
            raise InternalError() from exc
