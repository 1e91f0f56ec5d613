"""
core/errors.py -- Error taxonomy for the identity core.

Every exception carries a stable machine-readable code and the HTTP status the
API layer maps it to. The api/main.py exception handler turns any
DirectoryError into the standard {"error": {...}} envelope, so use cases raise
these and never HTTPException.

Messages are safe to show to clients. They must never contain tokens,
password hashes or any hint about which part of a credential triple was
wrong.

Layer rule: core/ is the kernel. No imports from api/, auth/ or directory/.
"""

from __future__ import annotations

from typing import Optional


class DirectoryError(Exception):
    """Base class for all identity-core failures."""

    status_code: int = 400
    code: str = "error"
    message: str = "Request failed."

    def __init__(self, message: Optional[str] = None, *, detail: Optional[str] = None) -> None:
        if message is not None:
            self.message = message
        self.detail = detail
        super().__init__(self.message)


class ValidationError(DirectoryError):
    """Malformed input. detail names the offending field."""

    status_code = 400
    code = "validation_error"

    def __init__(self, field: str, message: str) -> None:
        self.field = field
        super().__init__(message, detail=field)


class InvalidCredentials(DirectoryError):
    # Same message for unknown account, unknown email and wrong password.
    status_code = 401
    code = "invalid_credentials"
    message = "invalid account, email or password"


class TokenInvalid(DirectoryError):
    status_code = 401
    code = "token_invalid"
    message = "token invalid"


class TokenExpired(DirectoryError):
    status_code = 401
    code = "token_expired"
    message = "token expired"


class AccountMismatch(DirectoryError):
    status_code = 401
    code = "account_invalid"
    message = "account invalid"


class AccessDenied(DirectoryError):
    status_code = 403
    code = "access_denied"
    message = "access denied"


class NotFound(DirectoryError):
    status_code = 404
    code = "not_found"
    message = "not found"


class InvalidState(DirectoryError):
    """OAuth state missing, malformed, expired or replayed."""

    status_code = 400
    code = "invalid_state"
    message = "missing or incorrect oauth state"


class ExternalProviderError(DirectoryError):
    status_code = 502
    code = "external_provider_error"
    message = "could not get user profile from provider"


class PersistenceError(DirectoryError):
    status_code = 500
    code = "persistence_error"
    message = "An unexpected storage error occurred."
