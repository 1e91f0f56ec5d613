"""
auth/service.py -- Identity use cases: signup, login, OAuth, user/account mutation.

IdentityService composes the leaf components:
  auth/passwords.py  credential hashing and checks
  auth/tokens.py     bearer tokens and opaque codes
  auth/oauth.py      single-use OAuth state
  auth/sessions.py   bearer token -> Session
  auth/policy.py     role x action decisions
with two injected collaborators, described below as Protocols so the use cases
depend on behaviour rather than on directory/store.py or auth/github.py.

Error policy:
  Use cases raise core.errors exceptions only. Lookups that come back empty
  are mapped to the domain error for that step. sqlalchemy IntegrityError on
  insert/update means a uniqueness rule was hit and becomes ValidationError;
  any other SQLAlchemyError becomes PersistenceError after being logged.

  Login collapses unknown account, unknown email and wrong password into one
  InvalidCredentials, and spends a bcrypt check on every path so timing does
  not tell them apart either.

Known gap: signup inserts the account before the admin user. If the user
insert fails the account is left without its admin. This is logged at error
level with both ids so it can be cleaned up; there is no compensating delete.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Iterator, Optional, Protocol

from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from auth.github import ExternalProfile
from auth.oauth import LOGIN, SIGNUP, OAuthStateManager
from auth.passwords import burn_password_check, check_password, set_password
from auth.policy import CREATE_USER, UPDATE_ACCOUNT, UPDATE_USER, authorize, list_scope
from auth.sessions import Session, resolve_session
from auth.tokens import new_opaque_code, new_session_token, token_expiry
from core.errors import (
    AccountMismatch,
    DirectoryError,
    ExternalProviderError,
    InvalidCredentials,
    NotFound,
    PersistenceError,
    ValidationError,
)
from directory.models import (
    ADMIN_ROLE,
    ROLES,
    Account,
    AccountInfo,
    AccountPatch,
    Member,
    User,
    UserPatch,
    UserProfile,
    create_code,
    new_id,
)

logger = logging.getLogger("codecoach.auth.service")

MIN_PASSWORD_LENGTH = 8
# bcrypt only hashes the first 72 bytes and recent releases refuse longer input.
MAX_PASSWORD_BYTES = 72
MIN_CODE_LENGTH = 2
OAUTH_PASSWORD_LENGTH = 20
PLACEHOLDER_NAME = "admin"

LOGIN_SUCCESSFUL = "login_successful"
SIGNUP_SUCCESSFUL = "signup_successful"
LISTING_AVAILABLE_ACCOUNTS = "listing_available_accounts"


# ---------------------------------------------------------------------------
# Collaborator interfaces
# ---------------------------------------------------------------------------


class DirectoryStore(Protocol):
    def create_account(self, account: Account) -> None: ...

    def get_account(self, account_id: str) -> Optional[Account]: ...

    def get_account_by_code(self, code: str) -> Optional[Account]: ...

    def get_accounts_by_ids(self, account_ids: list[str]) -> list[AccountInfo]: ...

    def update_account_fields(self, account_id: str, **fields) -> Optional[Account]: ...

    def create_user(self, user: User, member: Optional[Member] = None) -> None: ...

    def get_user(self, account_id: str, user_id: str) -> Optional[User]: ...

    def get_user_by_email(self, account_id: str, email: str) -> Optional[User]: ...

    def get_user_by_token(self, token: str) -> Optional[User]: ...

    def get_user_by_external_id(self, account_id: str, external_id: str) -> Optional[User]: ...

    def get_users_by_external_id(self, external_id: str) -> list[User]: ...

    def update_user_fields(self, account_id: str, user_id: str, **fields) -> Optional[User]: ...

    def list_users(
        self, account_id: str, only_user_id: Optional[str] = None, offset: int = 0, limit: int = 50
    ) -> tuple[list[User], int]: ...


class OAuthProvider(Protocol):
    def authorize_url(self, state: str) -> str: ...

    def exchange_code(self, code: str) -> str: ...

    def fetch_profile(self, access_token: str) -> ExternalProfile: ...


# ---------------------------------------------------------------------------
# Arguments and results
# ---------------------------------------------------------------------------


@dataclass
class SignupArgs:
    account_name: str
    email: str
    password: str = field(repr=False)
    given_name: str = PLACEHOLDER_NAME
    family_name: str = PLACEHOLDER_NAME
    external_id: Optional[str] = None
    external_login: str = ""
    photo_url: str = ""
    location: str = ""


@dataclass
class CreateUserArgs:
    email: str
    password: str = field(repr=False)
    role: str = ""
    given_name: str = ""
    family_name: str = ""


@dataclass
class AuthResult:
    account: Account
    user: User
    token: str = field(repr=False)


@dataclass
class CallbackResult:
    type: str  # LOGIN_SUCCESSFUL | SIGNUP_SUCCESSFUL | LISTING_AVAILABLE_ACCOUNTS
    account: Optional[Account] = None
    user: Optional[User] = None
    token: str = field(default="", repr=False)
    available_accounts: list[AccountInfo] = field(default_factory=list)


@dataclass
class UserPage:
    users: list[User]
    total: int
    page: int
    page_size: int


# ---------------------------------------------------------------------------
# Constructors
# ---------------------------------------------------------------------------


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def normalize_email(email: str) -> str:
    return email.strip().lower()


def _validate_password(password: str) -> None:
    if not password or len(password) < MIN_PASSWORD_LENGTH or len(password.encode("utf-8")) > MAX_PASSWORD_BYTES:
        raise ValidationError("password", "missing or invalid password")


def new_account(name: str, now: Optional[datetime] = None) -> Account:
    """Build an unsaved Account whose code is derived from name."""
    name = name.strip()
    code = create_code(name)
    if len(code) < MIN_CODE_LENGTH:
        raise ValidationError(
            "account_name",
            f"could not create a valid account code '{code}' from the account name '{name}'",
        )
    return Account(id=new_id(), name=name, code=code, created_at=now or _utcnow())


def new_user(
    account_id: str,
    email: str,
    password: str,
    role: str,
    given_name: str = "",
    family_name: str = "",
    now: Optional[datetime] = None,
) -> User:
    """Build an unsaved User with a hashed password."""
    if not account_id:
        raise ValidationError("account_id", "missing account_id")
    given_name = given_name.strip()
    family_name = family_name.strip()
    if not given_name:
        raise ValidationError("given_name", "missing given_name")
    if not family_name:
        raise ValidationError("family_name", "missing family_name")
    email = normalize_email(email)
    if not email or "@" not in email:
        raise ValidationError("email", "missing or invalid email")
    _validate_password(password)
    if role not in ROLES:
        raise ValidationError("role", "missing or invalid role")

    user = User(
        account_id=account_id,
        id=new_id(),
        email=email,
        role=role,
        created_at=now or _utcnow(),
        profile=UserProfile(given_name=given_name, family_name=family_name),
    )
    set_password(user, password)
    return user


@contextmanager
def _storage(action: str) -> Iterator[None]:
    """Wrap non-integrity storage failures in PersistenceError."""
    try:
        yield
    except (DirectoryError, IntegrityError):
        raise
    except SQLAlchemyError as exc:
        logger.exception("Storage failure during %s", action)
        raise PersistenceError() from exc


# ---------------------------------------------------------------------------
# Use cases
# ---------------------------------------------------------------------------


class IdentityService:
    """Entry point for every identity operation the API exposes.

    Usage:
        service = IdentityService(store, OAuthStateManager(), provider, token_ttl_seconds=3600)
        result = service.signup(SignupArgs(account_name="Acme Inc", email="a@example.com", password="..."))
        session = service.authenticate_token(f"Bearer {result.token}", result.account.id)
    """

    def __init__(
        self,
        store: DirectoryStore,
        states: OAuthStateManager,
        provider: Optional[OAuthProvider] = None,
        *,
        token_ttl_seconds: int = 7 * 24 * 3600,
        page_size: int = 50,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.store = store
        self.states = states
        self.provider = provider
        self.token_ttl_seconds = token_ttl_seconds
        self.page_size = page_size
        self._clock = clock

    # ------------------------------------------------------------------
    # Password signup / login
    # ------------------------------------------------------------------

    def signup(self, args: SignupArgs) -> AuthResult:
        now = self._clock()
        account = new_account(args.account_name, now)
        with _storage("signup"):
            if self.store.get_account_by_code(account.code) is not None:
                raise ValidationError("account_name", f"account code '{account.code}' is already taken")

        user = new_user(
            account.id,
            args.email,
            args.password,
            ADMIN_ROLE,
            given_name=args.given_name or PLACEHOLDER_NAME,
            family_name=args.family_name or PLACEHOLDER_NAME,
            now=now,
        )
        user.external_id = args.external_id or None
        user.profile.external_login = args.external_login
        user.profile.photo_url = args.photo_url
        user.profile.location = args.location

        account.add_member(Member(id=user.id, role=ADMIN_ROLE, added_at=now))
        account.owner_id = user.id

        try:
            with _storage("signup"):
                self.store.create_account(account)
        except IntegrityError as exc:
            # Lost a race with a concurrent signup for the same code.
            raise ValidationError("account_name", f"account code '{account.code}' is already taken") from exc

        user.token = new_session_token()
        user.token_expires_at = token_expiry(now, self.token_ttl_seconds)
        try:
            self.store.create_user(user)
        except SQLAlchemyError as exc:
            logger.error(
                "Signup left account %s without its admin user %s: %s",
                account.id,
                user.id,
                type(exc).__name__,
            )
            raise PersistenceError("could not create user") from exc

        logger.info(
            "signup successful account=%s user=%s token_expires=%s",
            account.id,
            user.id,
            user.token_expires_at.isoformat(),
        )
        return AuthResult(account=account, user=user, token=user.token)

    def login(self, account_code: str, email: str, password: str) -> AuthResult:
        now = self._clock()
        code = create_code(account_code)
        email = normalize_email(email)

        account = None
        user = None
        if len(code) >= MIN_CODE_LENGTH:
            with _storage("login"):
                account = self.store.get_account_by_code(code)
                if account is not None:
                    user = self.store.get_user_by_email(account.id, email)

        if user is None:
            burn_password_check(password)
            logger.info("login failed: unknown account or email")
            raise InvalidCredentials()
        if not check_password(user, password):
            logger.info("login failed: bad password account=%s user=%s", user.account_id, user.id)
            raise InvalidCredentials()

        token = self._issue_token(user, now)
        logger.info(
            "login successful account=%s user=%s token_expires=%s",
            user.account_id,
            user.id,
            user.token_expires_at.isoformat(),
        )
        return AuthResult(account=account, user=user, token=token)

    def authenticate_token(self, authorization: Optional[str], account_id: str) -> Session:
        return resolve_session(self.store, authorization, account_id, self._clock())

    def logout(self, session: Session) -> None:
        """Expire the caller's token immediately."""
        now = self._clock()
        with _storage("logout"):
            self.store.update_user_fields(session.account_id, session.user.id, token_expires_at=now)
        logger.info("logout account=%s user=%s", session.account_id, session.user.id)

    # ------------------------------------------------------------------
    # OAuth
    # ------------------------------------------------------------------

    def oauth_login_url(self, account_code: str = "") -> str:
        """Start a GitHub login. Without an account code the callback lists linked accounts."""
        provider = self._require_provider()
        code = create_code(account_code) if account_code else ""
        state = self.states.new_state(LOGIN, account_code=code)
        return provider.authorize_url(state.to_string())

    def oauth_signup_url(self, account_name: str, given_name: str = "", family_name: str = "") -> str:
        """Start a GitHub signup for a new account called account_name."""
        provider = self._require_provider()
        # Fail before the round trip if the name can never produce a code.
        new_account(account_name)
        state = self.states.new_state(
            SIGNUP,
            account_name=account_name.strip(),
            given_name=given_name.strip(),
            family_name=family_name.strip(),
        )
        return provider.authorize_url(state.to_string())

    def complete_oauth_callback(self, code: str, state: str) -> CallbackResult:
        """Finish an OAuth flow started by oauth_login_url / oauth_signup_url."""
        if not code:
            raise ValidationError("code", "missing code")
        oauth_state = self.states.consume(state)

        provider = self._require_provider()
        access_token = provider.exchange_code(code)
        profile = provider.fetch_profile(access_token)

        if oauth_state.type == LOGIN:
            if oauth_state.account_code:
                res = self.external_login(oauth_state.account_code, profile.external_id)
                return CallbackResult(type=LOGIN_SUCCESSFUL, account=res.account, user=res.user, token=res.token)
            return CallbackResult(
                type=LISTING_AVAILABLE_ACCOUNTS,
                available_accounts=self.available_accounts(profile.external_id),
            )

        # SIGNUP: names from the state win; otherwise split the GitHub display name.
        parts = profile.name.split()
        given_name = oauth_state.given_name or (parts[0] if parts else PLACEHOLDER_NAME)
        family_name = oauth_state.family_name or (parts[-1] if parts else PLACEHOLDER_NAME)
        if not profile.email:
            raise ValidationError("email", "no email address found in github profile")

        res = self.signup(
            SignupArgs(
                account_name=oauth_state.account_name,
                email=profile.email,
                password=new_opaque_code(OAUTH_PASSWORD_LENGTH),
                given_name=given_name,
                family_name=family_name,
                external_id=profile.external_id,
                external_login=profile.login,
                photo_url=profile.avatar_url,
                location=profile.location,
            )
        )
        return CallbackResult(type=SIGNUP_SUCCESSFUL, account=res.account, user=res.user, token=res.token)

    def external_login(self, account_code: str, external_id: str) -> AuthResult:
        """Log in the user linked to external_id inside the account with account_code."""
        now = self._clock()
        code = create_code(account_code)
        with _storage("external login"):
            account = self.store.get_account_by_code(code)
            user = self.store.get_user_by_external_id(account.id, external_id) if account else None
        if user is None:
            logger.info("external login failed: no linked user in account code %s", code)
            raise InvalidCredentials()

        token = self._issue_token(user, now)
        logger.info("external login successful account=%s user=%s", user.account_id, user.id)
        return AuthResult(account=account, user=user, token=token)

    def available_accounts(self, external_id: str) -> list[AccountInfo]:
        """Accounts that have a user linked to external_id."""
        with _storage("available accounts"):
            users = self.store.get_users_by_external_id(external_id)
            account_ids = list(dict.fromkeys(u.account_id for u in users))
            return self.store.get_accounts_by_ids(account_ids)

    # ------------------------------------------------------------------
    # Account-scoped operations (require a Session)
    # ------------------------------------------------------------------

    def get_account(self, session: Session, account_id: str) -> Account:
        self._require_scope(session, account_id)
        with _storage("get account"):
            account = self.store.get_account(account_id)
        if account is None:
            raise NotFound("account not found")
        return account

    def create_user(self, session: Session, args: CreateUserArgs) -> User:
        authorize(session, CREATE_USER)
        now = self._clock()
        user = new_user(
            session.account_id,
            args.email,
            args.password,
            args.role,
            given_name=args.given_name,
            family_name=args.family_name,
            now=now,
        )
        try:
            with _storage("create user"):
                self.store.create_user(user, member=Member(id=user.id, role=user.role, added_at=now))
        except IntegrityError as exc:
            raise ValidationError("email", "email is already registered in this account") from exc

        logger.info("user created account=%s user=%s role=%s by=%s", user.account_id, user.id, user.role, session.user.id)
        return user

    def update_user(self, session: Session, account_id: str, user_id: str, patch: UserPatch) -> User:
        self._require_scope(session, account_id)
        authorize(session, UPDATE_USER, user_id)

        with _storage("update user"):
            current = self.store.get_user(session.account_id, user_id)
        if current is None:
            raise NotFound("user not found")

        fields: dict = {}
        profile_changed = False
        given_name = (patch.given_name or "").strip()
        family_name = (patch.family_name or "").strip()
        if given_name:
            current.profile.given_name = given_name
            profile_changed = True
        if family_name:
            current.profile.family_name = family_name
            profile_changed = True
        if profile_changed:
            fields["profile"] = current.profile
        if patch.email:
            email = normalize_email(patch.email)
            if "@" not in email:
                raise ValidationError("email", "missing or invalid email")
            fields["email"] = email
        if patch.password:
            _validate_password(patch.password)
            set_password(current, patch.password)
            fields["password_hash"] = current.password_hash

        if not fields:
            return current

        try:
            with _storage("update user"):
                updated = self.store.update_user_fields(session.account_id, user_id, **fields)
        except IntegrityError as exc:
            raise ValidationError("email", "email is already registered in this account") from exc
        if updated is None:
            raise NotFound("user not found")

        logger.info(
            "user updated account=%s user=%s fields=%s by=%s",
            session.account_id,
            user_id,
            sorted(fields),
            session.user.id,
        )
        return updated

    def update_account(self, session: Session, account_id: str, patch: AccountPatch) -> Account:
        self._require_scope(session, account_id)
        authorize(session, UPDATE_ACCOUNT)

        with _storage("update account"):
            current = self.store.get_account(account_id)
        if current is None:
            raise NotFound("account not found")

        fields: dict = {}
        if patch.name:
            name = patch.name.strip()
            if len(name) < MIN_CODE_LENGTH:
                raise ValidationError("name", "account name must be at least 2 characters")
            fields["name"] = name
        if patch.logo:
            current.profile.logo = patch.logo
            fields["profile"] = current.profile

        if not fields:
            return current

        with _storage("update account"):
            updated = self.store.update_account_fields(account_id, **fields)
        if updated is None:
            raise NotFound("account not found")
        logger.info("account updated account=%s fields=%s by=%s", account_id, sorted(fields), session.user.id)
        return updated

    def list_users(self, session: Session, page: int = 1) -> UserPage:
        if page < 1:
            raise ValidationError("page", "page must be 1 or greater")
        only_user_id = list_scope(session)
        with _storage("list users"):
            users, total = self.store.list_users(
                session.account_id,
                only_user_id=only_user_id,
                offset=(page - 1) * self.page_size,
                limit=self.page_size,
            )
        return UserPage(users=users, total=total, page=page, page_size=self.page_size)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _issue_token(self, user: User, now: datetime) -> str:
        """Overwrite the user's token with a fresh one and persist it."""
        token = new_session_token()
        expires_at = token_expiry(now, self.token_ttl_seconds)
        with _storage("issue token"):
            updated = self.store.update_user_fields(
                user.account_id, user.id, token=token, token_expires_at=expires_at
            )
        if updated is None:
            raise PersistenceError("could not update user's token")
        user.token = token
        user.token_expires_at = expires_at
        return token

    def _require_provider(self) -> OAuthProvider:
        if self.provider is None:
            raise ExternalProviderError("GitHub OAuth is not configured")
        return self.provider

    @staticmethod
    def _require_scope(session: Session, account_id: str) -> None:
        if account_id != session.account_id:
            raise AccountMismatch()
