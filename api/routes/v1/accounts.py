"""
api/routes/v1/accounts.py -- Account-scoped endpoints (session required).

Routes:
  GET   /api/v1/accounts/{account_id}                    -- the caller's account
  PATCH /api/v1/accounts/{account_id}                    -- rename / set logo (admin)
  GET   /api/v1/accounts/{account_id}/users              -- admin: all users; others: self
  POST  /api/v1/accounts/{account_id}/users              -- create user (admin)
  PATCH /api/v1/accounts/{account_id}/users/{user_id}    -- update user (admin or self)
  GET   /api/v1/accounts/{account_id}/me                 -- the caller's user record
  POST  /api/v1/accounts/{account_id}/logout             -- expire the caller's token

Auth policy: every route depends on get_session, which binds the bearer
token to {account_id}. Role checks happen inside IdentityService, not here.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query

from api.models import (
    AccountPatchRequest,
    AccountResponse,
    MessageResponse,
    UserCreate,
    UserListResponse,
    UserPatchRequest,
    UserResponse,
)
from auth.dependencies import get_identity, get_session
from auth.service import CreateUserArgs, IdentityService
from auth.sessions import Session
from directory.models import AccountPatch, UserPatch

router = APIRouter()


@router.get("/accounts/{account_id}", response_model=AccountResponse)
def get_account(
    account_id: str,
    session: Session = Depends(get_session),
    identity: IdentityService = Depends(get_identity),
) -> AccountResponse:
    return AccountResponse.from_account(identity.get_account(session, account_id))


@router.patch("/accounts/{account_id}", response_model=AccountResponse)
def update_account(
    account_id: str,
    body: AccountPatchRequest,
    session: Session = Depends(get_session),
    identity: IdentityService = Depends(get_identity),
) -> AccountResponse:
    """Rename the account or change its logo. Admin only; the code never changes."""
    account = identity.update_account(session, account_id, AccountPatch(name=body.name, logo=body.logo))
    return AccountResponse.from_account(account)


@router.get("/accounts/{account_id}/users", response_model=UserListResponse)
def list_users(
    account_id: str,
    page: int = Query(default=1, ge=1),
    session: Session = Depends(get_session),
    identity: IdentityService = Depends(get_identity),
) -> UserListResponse:
    result = identity.list_users(session, page)
    return UserListResponse(
        users=[UserResponse.from_user(u) for u in result.users],
        total=result.total,
        page=result.page,
        page_size=result.page_size,
    )


@router.post("/accounts/{account_id}/users", response_model=UserResponse, status_code=201)
def create_user(
    account_id: str,
    body: UserCreate,
    session: Session = Depends(get_session),
    identity: IdentityService = Depends(get_identity),
) -> UserResponse:
    """Create a user in this account. Admin only. The new user has no token until they log in."""
    user = identity.create_user(
        session,
        CreateUserArgs(
            email=body.email,
            password=body.password,
            role=body.role.value,
            given_name=body.given_name,
            family_name=body.family_name,
        ),
    )
    return UserResponse.from_user(user)


@router.patch("/accounts/{account_id}/users/{user_id}", response_model=UserResponse)
def update_user(
    account_id: str,
    user_id: str,
    body: UserPatchRequest,
    session: Session = Depends(get_session),
    identity: IdentityService = Depends(get_identity),
) -> UserResponse:
    patch = UserPatch(
        given_name=body.given_name,
        family_name=body.family_name,
        email=body.email,
        password=body.password,
    )
    return UserResponse.from_user(identity.update_user(session, account_id, user_id, patch))


@router.get("/accounts/{account_id}/me", response_model=UserResponse)
def me(account_id: str, session: Session = Depends(get_session)) -> UserResponse:
    return UserResponse.from_user(session.user)


@router.post("/accounts/{account_id}/logout", response_model=MessageResponse)
def logout(
    account_id: str,
    session: Session = Depends(get_session),
    identity: IdentityService = Depends(get_identity),
) -> MessageResponse:
    identity.logout(session)
    return MessageResponse(message="Logged out.")
