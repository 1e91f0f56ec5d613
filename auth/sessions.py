"""
auth/sessions.py -- Bearer token validation and the per-request Session.

resolve_session() is the only place a raw Authorization header is turned into
an identity. The checks run in a fixed order and each maps to one error:

  1. header absent / not "Bearer <token>" / implausibly short -> TokenInvalid
  2. no user holds the token                                   -> TokenInvalid
  3. token belongs to a user of another account                -> AccountMismatch
  4. now >= token_expires_at (or no expiry recorded)           -> TokenExpired

Step 3 matters because tokens are global: a perfectly valid token for account
A must not address account B's resources just because the path says so.

The resulting Session lives for one request. It is passed explicitly to every
use case and never cached or stored in a context-local.
"""

from __future__ import annotations

import itertools
import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Optional

from core.errors import AccountMismatch, TokenExpired, TokenInvalid

if TYPE_CHECKING:
    from auth.service import DirectoryStore
    from directory.models import User

logger = logging.getLogger("codecoach.auth.sessions")

_BEARER_PREFIX = "Bearer "
# "Bearer " plus at least four characters of token.
_MIN_HEADER_LENGTH = 11

_request_counter = itertools.count(1)
_counter_lock = threading.Lock()


@dataclass(frozen=True)
class Session:
    request_id: str
    user: User
    account_id: str

    @property
    def user_id(self) -> str:
        return self.user.id

    @property
    def role(self) -> str:
        return self.user.role


def new_session(user: User, now: Optional[datetime] = None) -> Session:
    """Wrap an authenticated user in a Session with a fresh request id."""
    now = now or datetime.now(timezone.utc)
    with _counter_lock:
        n = next(_request_counter)
    return Session(request_id=f"{now:%Y-%m-%d}-{n}", user=user, account_id=user.account_id)


def parse_bearer(authorization: Optional[str]) -> str:
    """Extract the token from an Authorization header value or raise TokenInvalid."""
    if not authorization or not authorization.startswith(_BEARER_PREFIX):
        raise TokenInvalid()
    if len(authorization) < _MIN_HEADER_LENGTH:
        raise TokenInvalid()
    return authorization[len(_BEARER_PREFIX) :]


def resolve_session(
    store: DirectoryStore,
    authorization: Optional[str],
    account_id: str,
    now: Optional[datetime] = None,
) -> Session:
    """Validate a bearer token against the target account and return a Session."""
    token = parse_bearer(authorization)
    now = now or datetime.now(timezone.utc)

    try:
        user = store.get_user_by_token(token)
    except Exception:
        # Any lookup failure is reported as an invalid token, never as a 500
        # that would distinguish "almost matched" from "no such token".
        logger.exception("Token lookup failed")
        raise TokenInvalid() from None
    if user is None:
        raise TokenInvalid()

    if user.account_id != account_id:
        raise AccountMismatch()

    if user.token_expires_at is None or now >= user.token_expires_at:
        raise TokenExpired()

    return new_session(user, now)
