"""
tests/test_otp.py -- Unit tests for the TOTP engine (auth/otp.py).

Codes are generated with pyotp at a fixed instant and checked with for_time so
the tests never depend on the wall clock landing inside one 30 s step.
"""

from __future__ import annotations

import hashlib
from urllib.parse import parse_qs, unquote, urlparse

import pytest

from auth import otp

NOW = 1_700_000_010  # middle of a 30 s step


@pytest.fixture
def secret() -> str:
    return otp.generate_secret()


def _code_at(secret: str, t: int) -> str:
    return otp.build_totp(secret).at(t)


class TestCheck:
    def test_current_code_accepted(self, secret):
        assert otp.check(_code_at(secret, NOW), secret, for_time=NOW)

    def test_adjacent_steps_accepted(self, secret):
        assert otp.check(_code_at(secret, NOW - 30), secret, for_time=NOW)
        assert otp.check(_code_at(secret, NOW + 30), secret, for_time=NOW)

    def test_two_steps_away_rejected(self, secret):
        assert not otp.check(_code_at(secret, NOW - 60), secret, for_time=NOW)
        assert not otp.check(_code_at(secret, NOW + 60), secret, for_time=NOW)

    def test_surrounding_whitespace_ignored(self, secret):
        assert otp.check(f" {_code_at(secret, NOW)}\n", secret, for_time=NOW)

    @pytest.mark.parametrize("code", ["", "12345", "1234567", "abcdef", None])
    def test_malformed_code_rejected(self, secret, code):
        assert otp.check(code, secret, for_time=NOW) is False

    def test_malformed_secret_returns_false(self):
        assert otp.check("123456", "not base32!!", for_time=NOW) is False

    def test_engine_uses_sha256_six_digits_thirty_seconds(self, secret):
        totp = otp.build_totp(secret)
        assert totp.digest is hashlib.sha256
        assert totp.digits == 6
        assert totp.interval == 30


class TestSecrets:
    def test_generated_secret_is_valid_base32(self, secret):
        assert len(secret) == 32
        assert otp.is_valid_secret(secret)

    def test_secrets_are_unique(self):
        assert otp.generate_secret() != otp.generate_secret()

    @pytest.mark.parametrize("bad", ["", "!!!!", "ABC"])
    def test_invalid_secrets(self, bad):
        assert not otp.is_valid_secret(bad)


class TestEnrollmentUri:
    def test_uri_carries_all_parameters(self, secret):
        uri = otp.enrollment_uri("alice", secret, "WoLGate")
        parsed = urlparse(uri)
        assert parsed.scheme == "otpauth"
        assert parsed.netloc == "totp"
        assert unquote(parsed.path) == "/WoLGate:alice"
        params = parse_qs(parsed.query)
        assert params["secret"] == [secret]
        assert params["issuer"] == ["WoLGate"]
        assert params["algorithm"] == ["SHA256"]
        assert params["digits"] == ["6"]
        assert params["period"] == ["30"]

    def test_label_is_percent_encoded(self, secret):
        uri = otp.enrollment_uri("alice smith", secret, "Home Lab")
        assert " " not in uri
        assert unquote(urlparse(uri).path) == "/Home Lab:alice smith"
