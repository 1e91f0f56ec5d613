"""
api/routes/v1/auth.py -- Public authentication endpoints.

Routes:
  POST /api/v1/signup              -- create account + admin user; returns token
  POST /api/v1/login               -- password login into one account; returns token
  POST /api/v1/oauth/login-url     -- GitHub authorize URL for a login flow
  POST /api/v1/oauth/signup-url    -- GitHub authorize URL for a signup flow
  GET  /api/v1/oauth/callback      -- finish a GitHub flow (code + state)

None of these require a session. Handlers are plain `def` so FastAPI runs
them in its thread pool: bcrypt and the GitHub round trip block.

Security:
  Login failures are a single 401 invalid_credentials regardless of which
  part of (account, email, password) was wrong; IdentityService also
  equalizes bcrypt timing across those paths.
  Cache-Control: no-store on every response that carries a token.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from api.models import (
    AccountInfoResponse,
    AccountResponse,
    AuthResponse,
    LoginRequest,
    OAuthCallbackResponse,
    OAuthLoginURLRequest,
    OAuthSignupURLRequest,
    OAuthURLResponse,
    SignupRequest,
    UserResponse,
)
from auth.dependencies import get_identity
from auth.service import AuthResult, IdentityService, SignupArgs

router = APIRouter()


def _token_response(content: dict, status_code: int = 200) -> JSONResponse:
    resp = JSONResponse(status_code=status_code, content=content)
    resp.headers["Cache-Control"] = "no-store"
    return resp


def _auth_payload(result: AuthResult) -> dict:
    return AuthResponse(
        account=AccountResponse.from_account(result.account),
        user=UserResponse.from_user(result.user),
        token=result.token,
        expires_at=result.user.token_expires_at,
    ).model_dump(mode="json")


@router.post("/signup", response_model=AuthResponse, status_code=201)
def signup(body: SignupRequest, identity: IdentityService = Depends(get_identity)) -> JSONResponse:
    """Create a new account with the caller as its admin."""
    result = identity.signup(
        SignupArgs(
            account_name=body.account_name,
            email=body.email,
            password=body.password,
            given_name=body.given_name,
            family_name=body.family_name,
        )
    )
    return _token_response(_auth_payload(result), status_code=201)


@router.post("/login", response_model=AuthResponse)
def login(body: LoginRequest, identity: IdentityService = Depends(get_identity)) -> JSONResponse:
    """Authenticate with account code, email and password.

    Issuing a token overwrites the previous one: only the latest login's
    token stays valid.
    """
    result = identity.login(body.account_code, body.email, body.password)
    return _token_response(_auth_payload(result))


@router.post("/oauth/login-url", response_model=OAuthURLResponse)
def oauth_login_url(body: OAuthLoginURLRequest, identity: IdentityService = Depends(get_identity)) -> OAuthURLResponse:
    """Return the GitHub authorize URL for a login.

    Without account_code the callback answers with the accounts linked to the
    GitHub identity instead of logging in.
    """
    return OAuthURLResponse(url=identity.oauth_login_url(body.account_code))


@router.post("/oauth/signup-url", response_model=OAuthURLResponse)
def oauth_signup_url(body: OAuthSignupURLRequest, identity: IdentityService = Depends(get_identity)) -> OAuthURLResponse:
    """Return the GitHub authorize URL for creating a new account."""
    return OAuthURLResponse(url=identity.oauth_signup_url(body.account_name, body.given_name, body.family_name))


@router.get("/oauth/callback", response_model=OAuthCallbackResponse)
def oauth_callback(code: str = "", state: str = "", identity: IdentityService = Depends(get_identity)) -> JSONResponse:
    """Complete a GitHub flow. The state is single-use: a replay gets 400 invalid_state."""
    result = identity.complete_oauth_callback(code, state)
    payload = OAuthCallbackResponse(
        type=result.type,
        account=AccountResponse.from_account(result.account) if result.account else None,
        user=UserResponse.from_user(result.user) if result.user else None,
        token=result.token or None,
        expires_at=result.user.token_expires_at if result.user else None,
        available_accounts=[AccountInfoResponse.from_info(a) for a in result.available_accounts],
    )
    return _token_response(payload.model_dump(mode="json"))
