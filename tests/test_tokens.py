"""
tests/test_tokens.py -- Unit tests for SessionIssuer and the cookie helpers.

Covers:
  - issue/verify round trip
  - any signature change, foreign key, expiry or garbage -> None
  - sub, iat and exp are required; purpose separates sessions from OTP challenges
  - cookie attributes: httpOnly, SameSite=Strict, path=/, max-age
"""

from __future__ import annotations

from fastapi.responses import Response
from jose import jwt

from auth.tokens import (
    OTP_CHALLENGE_SECONDS,
    SESSION_COOKIE,
    SessionIssuer,
    clear_session_cookie,
    set_session_cookie,
)

KEY = "k" * 40


def _flip_signature(token: str) -> str:
    head, payload, sig = token.split(".")
    # Change a middle character: the last base64url char may carry padding bits.
    i = len(sig) // 2
    replacement = "A" if sig[i] != "A" else "B"
    return ".".join([head, payload, sig[:i] + replacement + sig[i + 1 :]])


def test_round_trip():
    issuer = SessionIssuer(KEY, 60)
    assert issuer.verify(issuer.issue("alice")) == "alice"


def test_flipped_signature_rejected():
    issuer = SessionIssuer(KEY, 60)
    assert issuer.verify(_flip_signature(issuer.issue("alice"))) is None


def test_other_key_rejected():
    token = SessionIssuer("x" * 40, 60).issue("alice")
    assert SessionIssuer(KEY, 60).verify(token) is None


def test_expired_token_rejected():
    issuer = SessionIssuer(KEY, -10)
    assert issuer.verify(issuer.issue("alice")) is None


def test_garbage_and_empty_rejected():
    issuer = SessionIssuer(KEY, 60)
    assert issuer.verify("") is None
    assert issuer.verify("not.a.token") is None


def test_missing_subject_rejected():
    token = jwt.encode({"exp": 9_999_999_999, "iat": 0, "purpose": "session"}, KEY, algorithm="HS256")
    assert SessionIssuer(KEY, 60).verify(token) is None


def test_token_without_expiry_rejected():
    token = jwt.encode({"sub": "alice", "iat": 0, "purpose": "session"}, KEY, algorithm="HS256")
    assert SessionIssuer(KEY, 60).verify(token) is None


def test_token_without_issue_time_rejected():
    token = jwt.encode({"sub": "alice", "exp": 9_999_999_999, "purpose": "session"}, KEY, algorithm="HS256")
    assert SessionIssuer(KEY, 60).verify(token) is None


def test_token_without_purpose_rejected():
    token = jwt.encode({"sub": "alice", "iat": 0, "exp": 9_999_999_999}, KEY, algorithm="HS256")
    assert SessionIssuer(KEY, 60).verify(token) is None


def test_token_carries_username_and_expiry():
    claims = jwt.get_unverified_claims(SessionIssuer(KEY, 60).issue("alice"))
    assert claims["sub"] == "alice"
    assert claims["purpose"] == "session"
    assert claims["exp"] - claims["iat"] == 60


class TestOtpChallenge:
    def test_round_trip(self):
        issuer = SessionIssuer(KEY, 60)
        assert issuer.verify_otp_challenge(issuer.issue_otp_challenge("bob")) == "bob"

    def test_challenge_is_not_a_session(self):
        issuer = SessionIssuer(KEY, 60)
        assert issuer.verify(issuer.issue_otp_challenge("bob")) is None

    def test_session_is_not_a_challenge(self):
        issuer = SessionIssuer(KEY, 60)
        assert issuer.verify_otp_challenge(issuer.issue("bob")) is None

    def test_challenge_lifetime_is_short(self):
        claims = jwt.get_unverified_claims(SessionIssuer(KEY, 3600).issue_otp_challenge("bob"))
        assert claims["exp"] - claims["iat"] == OTP_CHALLENGE_SECONDS

    def test_expired_challenge_rejected(self):
        token = jwt.encode({"sub": "bob", "iat": 0, "exp": 1, "purpose": "otp"}, KEY, algorithm="HS256")
        assert SessionIssuer(KEY, 60).verify_otp_challenge(token) is None

    def test_foreign_key_rejected(self):
        token = SessionIssuer("x" * 40, 60).issue_otp_challenge("bob")
        assert SessionIssuer(KEY, 60).verify_otp_challenge(token) is None


def test_set_session_cookie_attributes():
    resp = Response()
    set_session_cookie(resp, "tok", 120)
    header = resp.headers["set-cookie"].lower()
    assert header.startswith(f"{SESSION_COOKIE}=tok")
    assert "httponly" in header
    assert "samesite=strict" in header
    assert "path=/" in header
    assert "max-age=120" in header


def test_clear_session_cookie_expires_it():
    resp = Response()
    clear_session_cookie(resp)
    header = resp.headers["set-cookie"].lower()
    assert header.startswith(f"{SESSION_COOKIE}=")
    assert "max-age=0" in header
