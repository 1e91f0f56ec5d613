"""Integration tests for directory/store.py against in-memory SQLite.

Covers:
- Account create / get / get by code, unique code
- User create / lookups, (account_id, email) uniqueness scoped per account
- Partial updates: whitelist, updated_at stamping, missing rows
- Membership written with the user row, atomically and under concurrency
- Paged listing with total and the single-user filter
- Timestamps come back timezone-aware
"""

import threading
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy.exc import IntegrityError

from directory.models import (
    ADMIN_ROLE,
    CANDIDATE_ROLE,
    Account,
    AccountProfile,
    Member,
    User,
    UserProfile,
)

_NOW = datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)


def _account(id_="acc1", name="Acme Inc", code="acme-inc") -> Account:
    a = Account(id=id_, name=name, code=code, created_at=_NOW, profile=AccountProfile(logo="https://x/logo.png"))
    a.add_member(Member(id="u1", role=ADMIN_ROLE, added_at=_NOW))
    a.owner_id = "u1"
    return a


def _user(account_id="acc1", id_="u1", email="a@example.com", role=ADMIN_ROLE, **kw) -> User:
    return User(
        account_id=account_id,
        id=id_,
        email=email,
        role=role,
        created_at=kw.pop("created_at", _NOW),
        password_hash="$2b$04$hash",
        profile=UserProfile(given_name="Ada", family_name="Lovelace"),
        **kw,
    )


class TestAccounts:
    def test_create_and_get(self, store):
        store.create_account(_account())
        got = store.get_account("acc1")
        assert got.name == "Acme Inc"
        assert got.code == "acme-inc"
        assert got.profile.logo == "https://x/logo.png"
        assert got.owner_id == "u1"
        assert [m.id for m in got.members] == ["u1"]
        assert got.members[0].added_at == _NOW
        assert got.created_at.tzinfo is not None

    def test_get_by_code(self, store):
        store.create_account(_account())
        assert store.get_account_by_code("acme-inc").id == "acc1"
        assert store.get_account_by_code("nope") is None

    def test_missing_account_is_none(self, store):
        assert store.get_account("missing") is None

    def test_duplicate_code_raises_integrity_error(self, store):
        store.create_account(_account())
        with pytest.raises(IntegrityError):
            store.create_account(_account(id_="acc2", name="ACME inc"))

    def test_update_fields(self, store):
        store.create_account(_account())
        updated = store.update_account_fields("acc1", name="Acme Corp", profile=AccountProfile(logo="new.png"))
        assert updated.name == "Acme Corp"
        assert updated.code == "acme-inc"
        assert updated.profile.logo == "new.png"
        assert updated.updated_at is not None

    def test_update_unknown_field_raises(self, store):
        store.create_account(_account())
        with pytest.raises(ValueError):
            store.update_account_fields("acc1", code="hijack")

    def test_update_missing_account_returns_none(self, store):
        assert store.update_account_fields("missing", name="X") is None

    def test_accounts_by_ids_ordered_by_name(self, store):
        store.create_account(_account("a1", "Zeta", "zeta"))
        store.create_account(_account("a2", "Alpha", "alpha"))
        store.create_account(_account("a3", "Mid", "mid"))
        infos = store.get_accounts_by_ids(["a1", "a2"])
        assert [i.code for i in infos] == ["alpha", "zeta"]
        assert store.get_accounts_by_ids([]) == []


class TestUsers:
    def test_create_and_lookups(self, store):
        store.create_user(_user(token="t" * 60, external_id="4242", token_expires_at=_NOW + timedelta(hours=1)))
        assert store.get_user("acc1", "u1").email == "a@example.com"
        assert store.get_user_by_email("acc1", "a@example.com").id == "u1"
        by_token = store.get_user_by_token("t" * 60)
        assert by_token.id == "u1"
        assert by_token.token_expires_at == _NOW + timedelta(hours=1)
        assert store.get_user_by_external_id("acc1", "4242").id == "u1"
        assert store.get_user("acc2", "u1") is None

    def test_empty_token_never_matches(self, store):
        store.create_user(_user(token=""))
        assert store.get_user_by_token("") is None

    def test_email_unique_within_account(self, store):
        store.create_user(_user())
        with pytest.raises(IntegrityError):
            store.create_user(_user(id_="u2"))

    def test_same_email_in_two_accounts(self, store):
        store.create_user(_user(account_id="acc1"))
        store.create_user(_user(account_id="acc2"))
        assert store.get_user_by_email("acc2", "a@example.com").account_id == "acc2"

    def test_users_by_external_id_span_accounts(self, store):
        store.create_user(_user(account_id="acc1", external_id="4242"))
        store.create_user(_user(account_id="acc2", external_id="4242", created_at=_NOW + timedelta(minutes=1)))
        store.create_user(_user(account_id="acc3", external_id="9999"))
        assert [u.account_id for u in store.get_users_by_external_id("4242")] == ["acc1", "acc2"]

    def test_update_user_fields(self, store):
        store.create_user(_user())
        updated = store.update_user_fields(
            "acc1",
            "u1",
            token="n" * 60,
            token_expires_at=_NOW,
            profile=UserProfile(given_name="Grace", family_name="Hopper"),
        )
        assert updated.token == "n" * 60
        assert updated.token_expires_at == _NOW
        assert updated.profile.given_name == "Grace"
        assert updated.updated_at is not None

    def test_update_user_email_collision(self, store):
        store.create_user(_user())
        store.create_user(_user(id_="u2", email="b@example.com"))
        with pytest.raises(IntegrityError):
            store.update_user_fields("acc1", "u2", email="a@example.com")

    def test_update_user_rejects_unknown_fields(self, store):
        store.create_user(_user())
        with pytest.raises(ValueError):
            store.update_user_fields("acc1", "u1", account_id="acc2")

    def test_update_missing_user_returns_none(self, store):
        assert store.update_user_fields("acc1", "ghost", email="g@example.com") is None


class TestMembership:
    def test_create_user_with_member(self, store):
        store.create_account(_account())
        store.create_user(_user(id_="u2", email="b@example.com", role=CANDIDATE_ROLE), member=Member(id="u2", role=CANDIDATE_ROLE, added_at=_NOW))
        got = store.get_account("acc1")
        assert [(m.id, m.role) for m in got.members] == [("u1", ADMIN_ROLE), ("u2", CANDIDATE_ROLE)]
        assert got.updated_at is not None

    def test_member_entry_is_replaced_in_place(self, store):
        store.create_account(_account())
        store.create_user(_user(), member=Member(id="u1", role=CANDIDATE_ROLE, added_at=_NOW))
        assert [(m.id, m.role) for m in store.get_account("acc1").members] == [("u1", CANDIDATE_ROLE)]

    def test_failed_insert_adds_no_member(self, store):
        store.create_account(_account())
        store.create_user(_user(id_="u2", email="b@example.com"))
        with pytest.raises(IntegrityError):
            store.create_user(_user(id_="u3", email="b@example.com"), member=Member(id="u3", role=CANDIDATE_ROLE, added_at=_NOW))
        assert [m.id for m in store.get_account("acc1").members] == ["u1"]

    def test_concurrent_creates_keep_every_member(self, store):
        store.create_account(_account())
        n = 8
        barrier = threading.Barrier(n)
        errors: list[Exception] = []

        def create(i):
            barrier.wait()
            try:
                store.create_user(
                    _user(id_=f"m{i}", email=f"m{i}@example.com", role=CANDIDATE_ROLE),
                    member=Member(id=f"m{i}", role=CANDIDATE_ROLE, added_at=_NOW),
                )
            except Exception as exc:
                errors.append(exc)

        threads = [threading.Thread(target=create, args=(i,)) for i in range(n)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert errors == []
        assert {m.id for m in store.get_account("acc1").members} == {"u1"} | {f"m{i}" for i in range(n)}


class TestListUsers:
    def _seed(self, store, n=5):
        for i in range(n):
            store.create_user(
                _user(
                    id_=f"u{i}",
                    email=f"user{i}@example.com",
                    role=CANDIDATE_ROLE,
                    created_at=_NOW + timedelta(minutes=i),
                )
            )
        store.create_user(_user(account_id="other", id_="x", email="x@example.com"))

    def test_pages_and_total(self, store):
        self._seed(store)
        page1, total = store.list_users("acc1", offset=0, limit=2)
        page3, _ = store.list_users("acc1", offset=4, limit=2)
        assert total == 5
        assert [u.id for u in page1] == ["u0", "u1"]
        assert [u.id for u in page3] == ["u4"]

    def test_single_user_filter(self, store):
        self._seed(store)
        users, total = store.list_users("acc1", only_user_id="u3")
        assert total == 1
        assert [u.id for u in users] == ["u3"]

    def test_empty_account(self, store):
        assert store.list_users("nobody") == ([], 0)


def test_ping(store):
    assert store.ping() is True
