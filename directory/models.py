"""
directory/models.py -- Domain dataclasses for accounts and users.

Pattern: Data class. These own the domain shape; directory/store.py persists
them and auth/service.py does the work. The only logic here is the pure
account-code derivation and the member upsert, both of which are invariants
of the data itself.

Secrets (password_hash, token, token_expires_at) are declared with
repr=False so an accidental log of a User never prints them.

Layer rule: imports only stdlib and core/.
"""

from __future__ import annotations

import re
import secrets
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

ADMIN_ROLE = "admin"
HIRING_MANAGER_ROLE = "hiring_manager"
CANDIDATE_ROLE = "candidate"

ROLES = frozenset({ADMIN_ROLE, HIRING_MANAGER_ROLE, CANDIDATE_ROLE})

_NOT_KEBAB_CASE = re.compile(r"[^a-z0-9\-]+")


def new_id() -> str:
    """Return a fresh 20-character primary key."""
    return secrets.token_hex(10)


def create_code(s: str) -> str:
    """Derive a kebab-case account code from a display name.

    "Acme Inc" -> "acme-inc", "  Foo!!Bar  " -> "foo-bar". The result may be
    shorter than 2 characters; callers decide whether that is acceptable.
    """
    code = _NOT_KEBAB_CASE.sub("-", s.lower())
    return code.strip("- ")


@dataclass
class AccountProfile:
    logo: str = ""


@dataclass
class Member:
    """A role assignment inside one account. Mirrors User.role."""

    id: str
    role: str  # "admin" | "hiring_manager" | "candidate"
    added_at: datetime


@dataclass
class Account:
    """A tenant. code is the login namespace and is globally unique."""

    id: str
    name: str
    code: str
    created_at: datetime
    profile: AccountProfile = field(default_factory=AccountProfile)
    members: list[Member] = field(default_factory=list)
    owner_id: str = ""
    updated_at: Optional[datetime] = None

    def add_member(self, member: Member) -> None:
        """Add member, or replace the existing entry with the same id in place."""
        for i, m in enumerate(self.members):
            if m.id == member.id:
                self.members[i] = member
                return
        self.members.append(member)


@dataclass
class AccountInfo:
    """Public projection of an Account, listed when an OAuth identity spans tenants."""

    id: str
    name: str
    code: str
    profile: AccountProfile
    created_at: datetime


@dataclass
class UserProfile:
    given_name: str = ""
    family_name: str = ""
    photo_url: str = ""
    external_login: str = ""  # GitHub login
    location: str = ""


@dataclass
class User:
    """A user inside exactly one account; identity is (account_id, id).

    Only one token is valid at a time: every login overwrites token and
    token_expires_at. external_id is the GitHub user id once linked.
    """

    account_id: str
    id: str
    email: str
    role: str
    created_at: datetime
    password_hash: str = field(default="", repr=False)
    token: str = field(default="", repr=False)
    token_expires_at: Optional[datetime] = field(default=None, repr=False)
    external_id: Optional[str] = None
    profile: UserProfile = field(default_factory=UserProfile)
    updated_at: Optional[datetime] = None


@dataclass
class UserPatch:
    """Partial update for a user. None or "" leaves the field unchanged."""

    given_name: Optional[str] = None
    family_name: Optional[str] = None
    email: Optional[str] = None
    password: Optional[str] = field(default=None, repr=False)


@dataclass
class AccountPatch:
    """Partial update for an account. None or "" leaves the field unchanged."""

    name: Optional[str] = None
    logo: Optional[str] = None
