"""
auth/github.py -- GitHub as the external identity provider.

GitHubProvider satisfies the OAuthProvider protocol in auth/service.py:
  authorize_url(state)        -- where to send the browser
  exchange_code(code)         -- authorization code -> access token
  fetch_profile(access_token) -- access token -> ExternalProfile

Built on authlib's requests OAuth2Session. The session is created per call;
OAuth2Session wraps requests.Session, which is not safe to share between the
request threads FastAPI runs sync handlers on.

State handling is NOT delegated to authlib here. The state string is minted
and verified by auth/oauth.OAuthStateManager, because it carries the
signup/login payload and has to be validated before any provider call.

Email: GET /user only returns the public email. When it is empty we fall back
to GET /user/emails and accept the entry that is both primary and verified.
An unverified address could belong to someone who added a victim's email
without confirming it.

Every transport, HTTP or decoding failure becomes ExternalProviderError.
Nothing is retried.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

import requests
from authlib.common.errors import AuthlibBaseError
from authlib.integrations.requests_client import OAuth2Session

from core.errors import ExternalProviderError

logger = logging.getLogger("codecoach.auth.github")

AUTHORIZE_URL = "https://github.com/login/oauth/authorize"
ACCESS_TOKEN_URL = "https://github.com/login/oauth/access_token"  # noqa: S105 -- URL, not a password
API_BASE_URL = "https://api.github.com"
SCOPE = "read:user user:email"

_ACCEPT_GITHUB_JSON = {"Accept": "application/vnd.github.v3+json"}


@dataclass
class ExternalProfile:
    """The subset of a GitHub user profile the directory links to a User."""

    external_id: str  # GitHub numeric id, as a string
    login: str = ""
    name: str = ""  # display name, may be empty or a single word
    email: str = ""
    avatar_url: str = ""
    location: str = ""


class GitHubProvider:
    def __init__(self, client_id: str, client_secret: str, redirect_uri: str, timeout: float = 10.0) -> None:
        self.client_id = client_id
        self.client_secret = client_secret
        self.redirect_uri = redirect_uri
        self.timeout = timeout

    def _session(self, token: dict | None = None) -> OAuth2Session:
        return OAuth2Session(
            client_id=self.client_id,
            client_secret=self.client_secret,
            redirect_uri=self.redirect_uri,
            scope=SCOPE,
            token=token,
            token_endpoint_auth_method="client_secret_post",
        )

    def authorize_url(self, state: str) -> str:
        url, _ = self._session().create_authorization_url(AUTHORIZE_URL, state=state)
        return url

    def exchange_code(self, code: str) -> str:
        try:
            token = self._session().fetch_token(ACCESS_TOKEN_URL, code=code, timeout=self.timeout)
        except (AuthlibBaseError, requests.RequestException, ValueError) as exc:
            logger.warning("GitHub code exchange failed: %s", type(exc).__name__)
            raise ExternalProviderError("could not exchange oauth code for access token") from exc
        access_token = token.get("access_token") if token else None
        if not access_token:
            raise ExternalProviderError("could not exchange oauth code for access token")
        return access_token

    def fetch_profile(self, access_token: str) -> ExternalProfile:
        session = self._session(token={"access_token": access_token, "token_type": "bearer"})
        try:
            resp = session.get(f"{API_BASE_URL}/user", headers=_ACCEPT_GITHUB_JSON, timeout=self.timeout)
            resp.raise_for_status()
            data = resp.json()
            profile = ExternalProfile(
                external_id=str(data["id"]),
                login=data.get("login") or "",
                name=data.get("name") or "",
                email=data.get("email") or "",
                avatar_url=data.get("avatar_url") or "",
                location=data.get("location") or "",
            )
            if not profile.email:
                profile.email = self._primary_verified_email(session)
        except (requests.RequestException, ValueError, KeyError, TypeError) as exc:
            logger.warning("GitHub profile fetch failed: %s", type(exc).__name__)
            raise ExternalProviderError() from exc
        return profile

    def _primary_verified_email(self, session: OAuth2Session) -> str:
        resp = session.get(f"{API_BASE_URL}/user/emails", headers=_ACCEPT_GITHUB_JSON, timeout=self.timeout)
        resp.raise_for_status()
        for entry in resp.json():
            if entry.get("primary") and entry.get("verified"):
                return entry.get("email") or ""
        return ""
