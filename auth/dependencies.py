"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication.

Every account-scoped route takes {account_id} in its path. get_session()
reads the Authorization header and hands both to
IdentityService.authenticate_token(), which checks, in order:
  1. "Bearer <token>" shape
  2. the token belongs to some user
  3. that user belongs to {account_id}
  4. the token has not expired

Failures raise core.errors exceptions; api/main.py renders them as 401s in
the standard error envelope. Nothing is cached between requests.

Layer rule: auth/dependencies.py may import from fastapi (for Request)
because this module is part of the FastAPI dependency injection system.
"""

from __future__ import annotations

from fastapi import Request

from auth.service import IdentityService
from auth.sessions import Session


def get_identity(request: Request) -> IdentityService:
    """Return the IdentityService wired by the application lifespan."""
    return request.app.state.identity


def get_session(request: Request, account_id: str) -> Session:
    """Require a valid bearer token scoped to the account in the path.

    Use as a FastAPI dependency:
        @router.get("/accounts/{account_id}/me")
        def route(session: Session = Depends(get_session)): ...
    """
    identity = get_identity(request)
    return identity.authenticate_token(request.headers.get("Authorization"), account_id)
