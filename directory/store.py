"""
directory/store.py -- SQLAlchemy Core persistence layer for accounts and users.

Pattern: Repository + Data Mapper. DirectoryStore is the repository;
_row_to_account / _row_to_user are the mappers. Use cases never touch SQL
directly -- they depend on the DirectoryStore protocol in auth/service.py,
which this class satisfies structurally.

Contract:
  Lookups return None (or an empty list) when nothing matches. The use case
  decides which domain error that becomes.
  Duplicate account codes and duplicate (account_id, email) pairs raise
  sqlalchemy.exc.IntegrityError from the UNIQUE indexes.

Security:
  All queries use bound parameters. No f-strings in SQL.
  update_account_fields / update_user_fields accept only whitelisted column
  names -- a typo raises ValueError rather than silently writing nothing.

Storage format:
  Timestamps are ISO 8601 strings in UTC. profile and members are JSON text so
  the schema stays portable between SQLite and PostgreSQL.

DB path: directory/codecoach.db unless DATABASE_URL is set.
"""

from __future__ import annotations

import json
import threading
from dataclasses import asdict
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

from sqlalchemy import (
    Column,
    Index,
    MetaData,
    PrimaryKeyConstraint,
    String,
    Table,
    Text,
    create_engine,
    event,
    func,
    select,
    text,
)
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from directory.models import Account, AccountInfo, AccountProfile, Member, User, UserProfile

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).parent / 'codecoach.db'}"

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_accounts = Table(
    "accounts",
    _metadata,
    Column("id", String(20), primary_key=True),
    Column("name", String(128), nullable=False),
    Column("code", String(64), nullable=False, unique=True),
    Column("profile", Text, nullable=False, server_default="{}"),  # JSON
    Column("members", Text, nullable=False, server_default="[]"),  # JSON
    Column("owner_id", String(20), nullable=False),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32)),
)

_users = Table(
    "users",
    _metadata,
    Column("account_id", String(20), nullable=False),
    Column("id", String(20), nullable=False),
    Column("external_id", String(64)),  # GitHub user id
    Column("email", String(255), nullable=False),
    Column("password_hash", String(60), nullable=False),
    Column("token", String(60), nullable=False),
    Column("token_expires_at", String(32)),
    Column("profile", Text, nullable=False, server_default="{}"),  # JSON
    Column("role", String(32), nullable=False),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32)),
    PrimaryKeyConstraint("account_id", "id"),
    Index("ix_users_account_email", "account_id", "email", unique=True),
    Index("ix_users_token", "token"),
    Index("ix_users_external_id", "external_id"),
)


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode so readers are not blocked during writes.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def _parse_dt(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    parsed = datetime.fromisoformat(value)
    # Rows written by other tools may lack an offset; they are UTC by contract.
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _members_to_json(members: list[Member]) -> str:
    return json.dumps([{"id": m.id, "role": m.role, "added_at": _iso(m.added_at)} for m in members])


def _members_from_json(raw: Optional[str]) -> list[Member]:
    return [Member(id=m["id"], role=m["role"], added_at=_parse_dt(m["added_at"])) for m in json.loads(raw or "[]")]


def _encode(name: str, value: Any) -> Any:
    """Convert a domain value into its column representation."""
    if name == "members":
        return _members_to_json(value)
    if name == "profile":
        return json.dumps(asdict(value))
    if isinstance(value, datetime):
        return _iso(value)
    return value


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class DirectoryStore:
    """Repository for Account and User entities.

    Usage:
        store = DirectoryStore()
        store.create_account(account)
        store.create_user(user)
        user = store.get_user_by_token(token)
        store.close()
    """

    # Column whitelists for partial updates.
    _ACCOUNT_FIELDS: frozenset = frozenset({"name", "profile", "members", "owner_id"})
    _USER_FIELDS: frozenset = frozenset(
        {"email", "password_hash", "token", "token_expires_at", "profile", "role", "external_id"}
    )

    def __init__(self, db_url: str = _DEFAULT_DB_URL) -> None:
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        # Serializes membership read-modify-write within this process. On
        # PostgreSQL the row is also locked with SELECT ... FOR UPDATE.
        self._members_lock = threading.Lock()
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_wal_mode)
        _metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # Accounts
    # ------------------------------------------------------------------

    def create_account(self, account: Account) -> None:
        """Insert a new account. Raises IntegrityError if the code is taken."""
        with self.engine.connect() as conn:
            conn.execute(
                _accounts.insert().values(
                    id=account.id,
                    name=account.name,
                    code=account.code,
                    profile=_encode("profile", account.profile),
                    members=_members_to_json(account.members),
                    owner_id=account.owner_id,
                    created_at=_iso(account.created_at),
                    updated_at=_iso(account.updated_at),
                )
            )
            conn.commit()

    def get_account(self, account_id: str) -> Account | None:
        with self.engine.connect() as conn:
            row = conn.execute(_accounts.select().where(_accounts.c.id == account_id)).fetchone()
        return _row_to_account(row) if row is not None else None

    def get_account_by_code(self, code: str) -> Account | None:
        """Look up an account by its exact (already normalized) code."""
        with self.engine.connect() as conn:
            row = conn.execute(_accounts.select().where(_accounts.c.code == code)).fetchone()
        return _row_to_account(row) if row is not None else None

    def get_accounts_by_ids(self, account_ids: list[str]) -> list[AccountInfo]:
        """Return the public projection of every listed account, ordered by name."""
        if not account_ids:
            return []
        with self.engine.connect() as conn:
            rows = conn.execute(
                select(
                    _accounts.c.id,
                    _accounts.c.name,
                    _accounts.c.code,
                    _accounts.c.profile,
                    _accounts.c.created_at,
                )
                .where(_accounts.c.id.in_(account_ids))
                .order_by(_accounts.c.name)
            ).fetchall()
        return [
            AccountInfo(
                id=r.id,
                name=r.name,
                code=r.code,
                profile=AccountProfile(**json.loads(r.profile or "{}")),
                created_at=_parse_dt(r.created_at),
            )
            for r in rows
        ]

    def update_account_fields(self, account_id: str, **fields) -> Account | None:
        """Update whitelisted account columns and stamp updated_at.

        Returns the fresh record, or None if account_id does not exist.
        """
        unknown = set(fields) - self._ACCOUNT_FIELDS
        if unknown:
            raise ValueError(f"Unknown account fields: {unknown!r}")
        values = {name: _encode(name, value) for name, value in fields.items()}
        values["updated_at"] = _now_iso()
        with self.engine.connect() as conn:
            result = conn.execute(_accounts.update().where(_accounts.c.id == account_id).values(**values))
            conn.commit()
        if result.rowcount == 0:
            return None
        return self.get_account(account_id)

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    def create_user(self, user: User, member: Optional[Member] = None) -> None:
        """Insert a new user. Raises IntegrityError if the email is taken in that account.

        With member, the user's account gains that member entry (replacing any
        entry with the same id) in the same transaction, so the user row and its
        membership commit or roll back together.
        """
        with self._members_lock, self.engine.begin() as conn:
            conn.execute(
                _users.insert().values(
                    account_id=user.account_id,
                    id=user.id,
                    external_id=user.external_id,
                    email=user.email,
                    password_hash=user.password_hash,
                    token=user.token,
                    token_expires_at=_iso(user.token_expires_at),
                    profile=_encode("profile", user.profile),
                    role=user.role,
                    created_at=_iso(user.created_at),
                    updated_at=_iso(user.updated_at),
                )
            )
            if member is not None:
                _upsert_member(conn, user.account_id, member)

    def get_user(self, account_id: str, user_id: str) -> User | None:
        with self.engine.connect() as conn:
            row = conn.execute(
                _users.select().where((_users.c.account_id == account_id) & (_users.c.id == user_id))
            ).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_user_by_email(self, account_id: str, email: str) -> User | None:
        with self.engine.connect() as conn:
            row = conn.execute(
                _users.select().where((_users.c.account_id == account_id) & (_users.c.email == email))
            ).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_user_by_token(self, token: str) -> User | None:
        """Look up the user currently holding token. Empty tokens never match."""
        if not token:
            return None
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.token == token)).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_user_by_external_id(self, account_id: str, external_id: str) -> User | None:
        with self.engine.connect() as conn:
            row = conn.execute(
                _users.select().where((_users.c.account_id == account_id) & (_users.c.external_id == external_id))
            ).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_users_by_external_id(self, external_id: str) -> list[User]:
        """Return every user linked to external_id across all accounts."""
        with self.engine.connect() as conn:
            rows = conn.execute(
                _users.select().where(_users.c.external_id == external_id).order_by(_users.c.created_at)
            ).fetchall()
        return [_row_to_user(r) for r in rows]

    def update_user_fields(self, account_id: str, user_id: str, **fields) -> User | None:
        """Update whitelisted user columns and stamp updated_at.

        Returns the fresh record, or None if (account_id, user_id) does not exist.
        """
        unknown = set(fields) - self._USER_FIELDS
        if unknown:
            raise ValueError(f"Unknown user fields: {unknown!r}")
        values = {name: _encode(name, value) for name, value in fields.items()}
        values["updated_at"] = _now_iso()
        with self.engine.connect() as conn:
            result = conn.execute(
                _users.update()
                .where((_users.c.account_id == account_id) & (_users.c.id == user_id))
                .values(**values)
            )
            conn.commit()
        if result.rowcount == 0:
            return None
        return self.get_user(account_id, user_id)

    def list_users(
        self,
        account_id: str,
        only_user_id: Optional[str] = None,
        offset: int = 0,
        limit: int = 50,
    ) -> tuple[list[User], int]:
        """Return one page of users in an account plus the total match count.

        only_user_id narrows the listing to a single record (non-admin view).
        """
        condition = _users.c.account_id == account_id
        if only_user_id is not None:
            condition = condition & (_users.c.id == only_user_id)
        with self.engine.connect() as conn:
            total = conn.execute(select(func.count()).select_from(_users).where(condition)).scalar()
            rows = conn.execute(
                _users.select()
                .where(condition)
                .order_by(_users.c.created_at, _users.c.id)
                .offset(offset)
                .limit(limit)
            ).fetchall()
        return [_row_to_user(r) for r in rows], total or 0

    def ping(self) -> bool:
        """Return True if the database answers a trivial query."""
        try:
            with self.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
        except SQLAlchemyError:
            return False
        return True

    def close(self) -> None:
        self.engine.dispose()


def _upsert_member(conn, account_id: str, member: Member) -> None:
    """Read-modify-write of accounts.members on an open transaction."""
    row = conn.execute(
        select(_accounts.c.members).where(_accounts.c.id == account_id).with_for_update()
    ).fetchone()
    if row is None:
        return
    members = _members_from_json(row.members)
    for i, m in enumerate(members):
        if m.id == member.id:
            members[i] = member
            break
    else:
        members.append(member)
    conn.execute(
        _accounts.update()
        .where(_accounts.c.id == account_id)
        .values(members=_members_to_json(members), updated_at=_now_iso())
    )


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_account(row) -> Account:
    return Account(
        id=row.id,
        name=row.name,
        code=row.code,
        profile=AccountProfile(**json.loads(row.profile or "{}")),
        members=_members_from_json(row.members),
        owner_id=row.owner_id,
        created_at=_parse_dt(row.created_at),
        updated_at=_parse_dt(row.updated_at),
    )


def _row_to_user(row) -> User:
    return User(
        account_id=row.account_id,
        id=row.id,
        external_id=row.external_id,
        email=row.email,
        password_hash=row.password_hash,
        token=row.token,
        token_expires_at=_parse_dt(row.token_expires_at),
        profile=UserProfile(**json.loads(row.profile or "{}")),
        role=row.role,
        created_at=_parse_dt(row.created_at),
        updated_at=_parse_dt(row.updated_at),
    )
