"""
auth/passwords.py -- bcrypt password hashing.

Using bcrypt directly rather than passlib[bcrypt]: passlib's wrap-bug
detection trips over bcrypt 4.x, and direct usage has no compatibility shim.

bcrypt.checkpw compares digests in constant time, so verify_password leaks
nothing about how many leading bytes matched.

bcrypt only reads the first 72 bytes of its input and current releases raise
on longer input. The auth service rejects such passwords with ValidationError
before they reach this module.

Layer rule: no imports from api/ or web/.
"""

from __future__ import annotations

import bcrypt

from core.config import get_settings

MAX_PASSWORD_BYTES = 72

_ROUNDS = get_settings().bcrypt_rounds


def hash_password(plain: str) -> str:
    """Return a salted bcrypt digest. Two calls never return the same digest."""
    return bcrypt.hashpw(plain.encode("utf-8"), bcrypt.gensalt(rounds=_ROUNDS)).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if plain matches the bcrypt digest.

    Malformed digests and over-long inputs return False rather than raising.
    """
    try:
        return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        return False


# Timing equalization dummy hash.
# Computed once at module load so the first login attempt is not measurably
# slower than subsequent ones. The auth service verifies against it when the
# username does not exist, so unknown-user and wrong-password take the same time.
_DUMMY_HASH: str = hash_password("wolgate_timing_dummy")
