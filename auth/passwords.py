"""
auth/passwords.py -- Password hashing and verification (bcrypt).

Security design decisions:
  bcrypt is the right choice for low-entropy secrets because its cost factor
  makes brute force expensive. The cost comes from Settings.bcrypt_rounds so
  tests can run at the minimum cost while production keeps the default.

  Using bcrypt directly rather than passlib[bcrypt]: passlib's wrap-bug
  detection builds a password longer than 72 bytes, which bcrypt 4.x rejects.

  The minimum password length (8) is enforced by the callers that build users
  and by the API request models, not here. This module hashes whatever it is
  given.

  _DUMMY_HASH enables timing equalization in the login use case: when the
  account or email does not exist we still run one bcrypt verification, so
  response time does not reveal which part of the credential triple was wrong.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import bcrypt

from core.config import get_settings

if TYPE_CHECKING:
    from directory.models import User

_settings = get_settings()


def hash_password(plain: str) -> str:
    """Return a salted bcrypt hash of the given plaintext password.

    bcrypt only looks at the first 72 bytes; auth/service.py rejects longer
    passwords before they get here.
    """
    salt = bcrypt.gensalt(rounds=_settings.bcrypt_rounds)
    return bcrypt.hashpw(plain.encode("utf-8"), salt).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext password matches the bcrypt hash.

    A malformed or empty hash is a failed match, never an exception.
    """
    if not hashed:
        return False
    try:
        return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        return False


# Computed once at module load so the first failed login is not measurably
# slower than later ones.
_DUMMY_HASH: str = hash_password("codecoach_timing_dummy")


def burn_password_check(plain: str) -> None:
    """Spend one bcrypt verification against a hash that never matches."""
    verify_password(plain, _DUMMY_HASH)


def set_password(user: User, plain: str) -> None:
    """Hash plain and store only the hash on the in-memory user.

    Persisting the change is the caller's responsibility.
    """
    user.password_hash = hash_password(plain)


def check_password(user: User, plain: str) -> bool:
    """Return True if plain matches the user's stored hash.

    A False result carries no reason -- callers collapse it into the same
    failure as an unknown user.
    """
    return verify_password(plain, user.password_hash)
