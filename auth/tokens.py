"""
auth/tokens.py -- Opaque bearer tokens and random codes.

Security design decisions:
  Session tokens: secrets.token_urlsafe(45) yields exactly 60 characters of
       URL-safe base64 (45 bytes, 360 bits of entropy). The alphabet is safe in
       an "Authorization: Bearer" header and in URLs. Tokens are opaque: no
       timestamp, counter or user data is encoded in them. Validity lives in
       the users table (token + token_expires_at), so overwriting the column
       on login is what revokes the previous token.

  Opaque codes: hex from secrets.token_hex, used for OAuth state codes and
       the throwaway passwords given to accounts created through OAuth.

  The secrets module reads the OS CSPRNG. If that source fails the exception
       propagates -- there is deliberately no fallback to the random module.
"""

from __future__ import annotations

import secrets
from datetime import datetime, timedelta

SESSION_TOKEN_LENGTH = 60


def new_session_token() -> str:
    """Return a fresh 60-character bearer token."""
    return secrets.token_urlsafe(45)


def new_opaque_code(length: int) -> str:
    """Return exactly length hex characters from the CSPRNG."""
    if length < 1:
        raise ValueError("length must be positive")
    return secrets.token_hex((length + 1) // 2)[:length]


def token_expiry(now: datetime, seconds: int) -> datetime:
    """Return the instant a token issued at now stops being valid."""
    return now + timedelta(seconds=seconds)
