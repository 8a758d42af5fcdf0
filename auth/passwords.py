"""
auth/passwords.py -- Password hashing and verification.

Security design decisions:
  bcrypt, used directly (no passlib wrapper). Bcrypt is the right choice for
       low-entropy secrets because its cost factor makes brute-force expensive.
       The cost comes from Settings.bcrypt_rounds so each deployment can tune it.

  72-byte window: bcrypt only looks at the first 72 bytes of its input.
       hash_password() raises ValueError for a longer UTF-8 encoding and
       verify_password() returns False for one, so a password that merely
       starts with a stored password never matches it. The signup flow rejects
       longer passwords up front (MAX_PASSWORD_BYTES).

  verify_password() never raises: a mismatch or a malformed stored hash both
       return False. bcrypt.checkpw compares in constant time.

  _DUMMY_HASH enables timing equalization in the login flow so response time
       does not reveal whether a username exists [C1].

Layer rule: no imports from api/. Import from core/ is allowed.
"""

from __future__ import annotations

from typing import NamedTuple

import bcrypt

from core.config import get_settings

_settings = get_settings()

MAX_PASSWORD_BYTES = 72


class PasswordDigest(NamedTuple):
    salt: str
    hash: str


def _encode(plain: str) -> bytes:
    return plain.encode("utf-8")


def hash_password(plain: str) -> PasswordDigest:
    """Return a freshly salted bcrypt digest of the plaintext password.

    Raises ValueError if the UTF-8 encoding is longer than MAX_PASSWORD_BYTES.
    """
    secret = _encode(plain)
    if len(secret) > MAX_PASSWORD_BYTES:
        raise ValueError(f"Password exceeds {MAX_PASSWORD_BYTES} bytes.")
    salt = bcrypt.gensalt(rounds=_settings.bcrypt_rounds)
    hashed = bcrypt.hashpw(secret, salt)
    return PasswordDigest(salt=salt.decode("ascii"), hash=hashed.decode("ascii"))


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext password matches the bcrypt hash."""
    if not hashed:
        return False
    secret = _encode(plain)
    try:
        # Overlong input still runs one full bcrypt check before it is rejected.
        matched = bcrypt.checkpw(secret[:MAX_PASSWORD_BYTES], hashed.encode("utf-8"))
    except (ValueError, TypeError):
        return False
    return matched and len(secret) <= MAX_PASSWORD_BYTES


# Computed once at module load so the first login attempt is not measurably
# slower than later ones. Login verifies against it when the username does not
# exist, keeping bcrypt's constant work factor on both paths [C1].
_DUMMY_HASH: str = hash_password("authgate_timing_dummy").hash


def burn_dummy_check(plain: str) -> None:
    """Run one bcrypt comparison whose result is discarded [C1]."""
    verify_password(plain, _DUMMY_HASH)
