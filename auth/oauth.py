"""
auth/oauth.py -- OAuth state tokens (CSRF protection for the GitHub flow).

The state parameter is the only thing that survives the round trip through
GitHub's authorize page, so it carries the flow intent as compact JSON:

    {"type": "signup", "account_name": "Acme Inc", "given_name": "Ada", ...,
     "code": "9f86d081884c7d65"}

OAuthStateManager keeps every issued state in process memory keyed by its
random code. consume() checks and pops the entry under one lock, which makes
each state single-use: two callbacks racing with the same state get exactly
one success.
The recorded state must also equal the one presented, so a client cannot keep
a valid code and rewrite the payload around it.

Issued-but-never-used states expire after ttl_seconds and are purged on every
new_state() call, so abandoned flows do not accumulate forever.

Each process owns its own manager. Running several workers requires sticky
routing for the OAuth callback, or a shared store behind the same interface.

Layer rule: no imports from api/ or directory/.
"""

from __future__ import annotations

import json
import logging
import threading
import time
from dataclasses import asdict, dataclass
from typing import Callable

from auth.tokens import new_opaque_code
from core.errors import InvalidState

logger = logging.getLogger("codecoach.auth.oauth")

LOGIN = "login"
SIGNUP = "signup"
INTENTS = frozenset({LOGIN, SIGNUP})

_STATE_CODE_LENGTH = 16


@dataclass(frozen=True)
class OAuthState:
    type: str  # "login" | "signup"
    code: str
    account_code: str = ""  # login: which tenant to log into (optional)
    account_name: str = ""  # signup: name of the account to create
    given_name: str = ""
    family_name: str = ""

    def to_string(self) -> str:
        return json.dumps(asdict(self), separators=(",", ":"))

    def __str__(self) -> str:
        return self.to_string()


def parse_state(raw: str) -> OAuthState:
    """Rebuild an OAuthState from its string form. Raises InvalidState on any defect."""
    if not raw:
        raise InvalidState("missing oauth state")
    try:
        data = json.loads(raw)
    except ValueError as exc:
        raise InvalidState("invalid oauth state") from exc
    if not isinstance(data, dict):
        raise InvalidState("invalid oauth state")

    fields = {}
    for name in ("type", "code", "account_code", "account_name", "given_name", "family_name"):
        value = data.get(name, "")
        if not isinstance(value, str):
            raise InvalidState("invalid oauth state")
        fields[name] = value

    if fields["type"] not in INTENTS:
        raise InvalidState("invalid oauth state type")
    if not fields["code"]:
        raise InvalidState("invalid oauth state")
    return OAuthState(**fields)


class OAuthStateManager:
    """Issues states and accepts each one back exactly once.

    Usage:
        states = OAuthStateManager(ttl_seconds=600)
        state = states.new_state("login", account_code="acme-inc")
        ...redirect through GitHub with state.to_string()...
        state = states.consume(request_state)   # raises InvalidState on replay
    """

    def __init__(self, ttl_seconds: int = 600, clock: Callable[[], float] = time.monotonic) -> None:
        self._ttl = ttl_seconds
        self._clock = clock
        self._lock = threading.Lock()
        # code -> (state, issued_at)
        self._outstanding: dict[str, tuple[OAuthState, float]] = {}

    def new_state(
        self,
        intent: str,
        *,
        account_code: str = "",
        account_name: str = "",
        given_name: str = "",
        family_name: str = "",
    ) -> OAuthState:
        if intent not in INTENTS:
            raise ValueError(f"Unknown OAuth intent: {intent!r}")
        state = OAuthState(
            type=intent,
            code=new_opaque_code(_STATE_CODE_LENGTH),
            account_code=account_code,
            account_name=account_name,
            given_name=given_name,
            family_name=family_name,
        )
        now = self._clock()
        with self._lock:
            self._purge_locked(now)
            self._outstanding[state.code] = (state, now)
        return state

    def consume(self, raw: str) -> OAuthState:
        """Validate and retire a state presented on the callback."""
        presented = parse_state(raw)
        now = self._clock()
        with self._lock:
            entry = self._outstanding.get(presented.code)
            if entry is None:
                logger.warning("OAuth callback with unknown or replayed state (type=%s)", presented.type)
                raise InvalidState()
            issued, issued_at = entry
            if now - issued_at > self._ttl:
                del self._outstanding[presented.code]
                logger.warning("OAuth callback with expired state (type=%s)", presented.type)
                raise InvalidState("oauth state expired")
            # A rewritten payload must not burn the genuine state.
            if issued != presented:
                logger.warning("OAuth callback state payload does not match the issued state")
                raise InvalidState()
            del self._outstanding[presented.code]
        return issued

    def purge_expired(self) -> int:
        """Drop states older than the TTL. Returns how many were removed."""
        with self._lock:
            return self._purge_locked(self._clock())

    def pending(self) -> int:
        with self._lock:
            return len(self._outstanding)

    def _purge_locked(self, now: float) -> int:
        expired = [code for code, (_, issued_at) in self._outstanding.items() if now - issued_at > self._ttl]
        for code in expired:
            del self._outstanding[code]
        return len(expired)
