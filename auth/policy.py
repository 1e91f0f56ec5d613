"""
auth/policy.py -- Role-based access control as one explicit decision table.

The model has two tiers: admin and everyone else (hiring_manager and
candidate are equal here). Whether a non-admin may act also depends on
whether the target is their own user record, so the table is keyed by
(tier, action, own_record).

    action          admin   non-admin/own   non-admin/other
    update_user     allow   allow           deny
    create_user     allow   deny            deny
    update_account  allow   deny            deny

Listing users is a filtered view rather than a hard failure: admins see the
whole account, everyone else only sees their own record (list_scope).

Account scope (session account == target account) is checked by the caller
before authorize(); this module only reasons about roles.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Optional

from core.errors import AccessDenied
from directory.models import ADMIN_ROLE

if TYPE_CHECKING:
    from auth.sessions import Session

UPDATE_USER = "update_user"
CREATE_USER = "create_user"
UPDATE_ACCOUNT = "update_account"

ADMIN_TIER = "admin"
MEMBER_TIER = "member"

_DECISIONS: dict[tuple[str, str, bool], bool] = {
    (ADMIN_TIER, UPDATE_USER, True): True,
    (ADMIN_TIER, UPDATE_USER, False): True,
    (MEMBER_TIER, UPDATE_USER, True): True,
    (MEMBER_TIER, UPDATE_USER, False): False,
    (ADMIN_TIER, CREATE_USER, True): True,
    (ADMIN_TIER, CREATE_USER, False): True,
    (MEMBER_TIER, CREATE_USER, True): False,
    (MEMBER_TIER, CREATE_USER, False): False,
    (ADMIN_TIER, UPDATE_ACCOUNT, True): True,
    (ADMIN_TIER, UPDATE_ACCOUNT, False): True,
    (MEMBER_TIER, UPDATE_ACCOUNT, True): False,
    (MEMBER_TIER, UPDATE_ACCOUNT, False): False,
}


def tier(role: str) -> str:
    return ADMIN_TIER if role == ADMIN_ROLE else MEMBER_TIER


def is_allowed(role: str, action: str, own_record: bool) -> bool:
    """Look up the decision. Unknown actions are denied."""
    return _DECISIONS.get((tier(role), action, own_record), False)


def authorize(session: Session, action: str, target_user_id: Optional[str] = None) -> None:
    """Raise AccessDenied unless the session's role may perform action."""
    own_record = target_user_id is not None and target_user_id == session.user.id
    if not is_allowed(session.user.role, action, own_record):
        raise AccessDenied()


def list_scope(session: Session) -> Optional[str]:
    """Return None when the caller may list every user, else their own user id."""
    if tier(session.user.role) == ADMIN_TIER:
        return None
    return session.user.id
