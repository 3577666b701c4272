"""
tests/test_passwords.py -- Unit tests for auth/passwords.py.

Covers:
  - hash/verify round trip and salting
  - wrong password and malformed digest return False, never raise
  - the timing dummy hash is a real bcrypt digest
"""

from __future__ import annotations

from auth.passwords import _DUMMY_HASH, hash_password, verify_password


def test_hash_then_verify():
    digest = hash_password("password-1")
    assert digest.startswith("$2")
    assert verify_password("password-1", digest)


def test_wrong_password_rejected():
    assert not verify_password("password-2", hash_password("password-1"))


def test_same_password_hashes_differently():
    assert hash_password("password-1") != hash_password("password-1")


def test_malformed_digest_returns_false():
    assert verify_password("password-1", "not-a-bcrypt-hash") is False


def test_unicode_password_round_trips():
    digest = hash_password("pässwörd-☃")
    assert verify_password("pässwörd-☃", digest)


def test_dummy_hash_never_matches_empty_password():
    assert verify_password("", _DUMMY_HASH) is False
