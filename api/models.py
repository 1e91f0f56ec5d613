"""
API request and response models for CodeCoach REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in directory/models.py,
which own the internal domain representation. Route handlers map between the
two.

Security: no response model has a field for password_hash, and only the
login/signup/callback responses carry a token -- the one just issued. User
and account views are built field by field from the domain objects, never
via asdict(), so a new secret field on User cannot leak by accident.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Annotated, Optional

from pydantic import BaseModel, ConfigDict, Field, StringConstraints, field_validator

from directory.models import Account, AccountInfo, User

# Secrets are taken byte for byte; the models below otherwise strip strings.
Password = Annotated[str, StringConstraints(strip_whitespace=False)]

# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class RoleEnum(str, Enum):
    admin = "admin"
    hiring_manager = "hiring_manager"
    candidate = "candidate"


class CallbackTypeEnum(str, Enum):
    login_successful = "login_successful"
    signup_successful = "signup_successful"
    listing_available_accounts = "listing_available_accounts"


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class SignupRequest(BaseModel):
    """Request body for POST /api/v1/signup."""

    model_config = ConfigDict(str_strip_whitespace=True)

    account_name: str = Field(min_length=2, max_length=100)
    email: str = Field(min_length=3, max_length=254)
    password: Password = Field(min_length=8, max_length=72)
    given_name: str = Field(default="", max_length=100)
    family_name: str = Field(default="", max_length=100)

    @field_validator("email")
    @classmethod
    def normalize_email(cls, v: str) -> str:
        return v.lower()


class LoginRequest(BaseModel):
    """Request body for POST /api/v1/login.

    No min_length on the fields: a malformed triple must fail the same way a
    wrong password does (401 invalid_credentials), not with a 422 that
    reveals which part was rejected.
    """

    model_config = ConfigDict(str_strip_whitespace=True)

    account_code: str = Field(max_length=100)
    email: str = Field(max_length=254)
    password: Password = Field(max_length=72)


class OAuthLoginURLRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    account_code: str = Field(default="", max_length=100)


class OAuthSignupURLRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    account_name: str = Field(min_length=2, max_length=100)
    given_name: str = Field(min_length=1, max_length=100)
    family_name: str = Field(min_length=1, max_length=100)


class UserCreate(BaseModel):
    """Request body for POST /api/v1/accounts/{account_id}/users. Admin only."""

    model_config = ConfigDict(str_strip_whitespace=True)

    email: str = Field(min_length=3, max_length=254)
    password: Password = Field(min_length=8, max_length=72)
    role: RoleEnum
    given_name: str = Field(min_length=1, max_length=100)
    family_name: str = Field(min_length=1, max_length=100)


class UserPatchRequest(BaseModel):
    """Request body for PATCH /api/v1/accounts/{account_id}/users/{user_id}.

    Every field is optional; omitted or empty fields are left unchanged.
    """

    model_config = ConfigDict(str_strip_whitespace=True)

    given_name: Optional[str] = Field(default=None, max_length=100)
    family_name: Optional[str] = Field(default=None, max_length=100)
    email: Optional[str] = Field(default=None, max_length=254)
    password: Optional[Password] = Field(default=None, max_length=72)


class AccountPatchRequest(BaseModel):
    """Request body for PATCH /api/v1/accounts/{account_id}."""

    model_config = ConfigDict(str_strip_whitespace=True)

    name: Optional[str] = Field(default=None, max_length=100)
    logo: Optional[str] = Field(default=None, max_length=2048)


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class UserProfileResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    given_name: str = ""
    family_name: str = ""
    photo_url: str = ""
    external_login: str = ""
    location: str = ""


class UserResponse(BaseModel):
    """Public view of a User. Never includes password_hash or token."""

    model_config = ConfigDict(frozen=True)

    id: str
    account_id: str
    email: str
    role: str
    external_id: Optional[str] = None
    profile: UserProfileResponse
    created_at: datetime
    updated_at: Optional[datetime] = None

    @classmethod
    def from_user(cls, user: User) -> "UserResponse":
        p = user.profile
        return cls(
            id=user.id,
            account_id=user.account_id,
            email=user.email,
            role=user.role,
            external_id=user.external_id,
            profile=UserProfileResponse(
                given_name=p.given_name,
                family_name=p.family_name,
                photo_url=p.photo_url,
                external_login=p.external_login,
                location=p.location,
            ),
            created_at=user.created_at,
            updated_at=user.updated_at,
        )


class MemberResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    role: str
    added_at: datetime


class AccountResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    code: str
    logo: str = ""
    owner_id: str = ""
    members: list[MemberResponse] = Field(default_factory=list)
    created_at: datetime
    updated_at: Optional[datetime] = None

    @classmethod
    def from_account(cls, account: Account) -> "AccountResponse":
        return cls(
            id=account.id,
            name=account.name,
            code=account.code,
            logo=account.profile.logo,
            owner_id=account.owner_id,
            members=[MemberResponse(id=m.id, role=m.role, added_at=m.added_at) for m in account.members],
            created_at=account.created_at,
            updated_at=account.updated_at,
        )


class AccountInfoResponse(BaseModel):
    """Public projection of an Account, listed when an OAuth login spans tenants."""

    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    code: str
    logo: str = ""
    created_at: datetime

    @classmethod
    def from_info(cls, info: AccountInfo) -> "AccountInfoResponse":
        return cls(id=info.id, name=info.name, code=info.code, logo=info.profile.logo, created_at=info.created_at)


class AuthResponse(BaseModel):
    """Response for signup and login: the account, the user and a fresh token."""

    model_config = ConfigDict(frozen=True)

    account: AccountResponse
    user: UserResponse
    token: str
    token_type: str = "bearer"
    expires_at: datetime


class OAuthURLResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    url: str


class OAuthCallbackResponse(BaseModel):
    """Response for GET /api/v1/oauth/callback.

    type selects which fields are populated: login_successful and
    signup_successful carry account/user/token; listing_available_accounts
    carries available_accounts only.
    """

    model_config = ConfigDict(frozen=True)

    type: CallbackTypeEnum
    account: Optional[AccountResponse] = None
    user: Optional[UserResponse] = None
    token: Optional[str] = None
    expires_at: Optional[datetime] = None
    available_accounts: list[AccountInfoResponse] = Field(default_factory=list)


class UserListResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    users: list[UserResponse]
    total: int
    page: int
    page_size: int


class MessageResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    message: str


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "healthy"
    version: str
    components: dict[str, str] = Field(default_factory=dict)
