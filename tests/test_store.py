"""Unit tests for auth/store.py -- UserStore persistence.

All tests use an in-memory SQLite database so they are fast and isolated.
Timestamps are passed explicitly so expiry behaviour is deterministic.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from auth.errors import AlreadyExists
from auth.models import Credential, RefreshToken
from auth.store import UserStore

NOW = datetime(2026, 1, 15, 12, 0, 0, tzinfo=timezone.utc)


def _credential(username: str = "alice", email: str = "alice@example.com") -> Credential:
    return Credential(username=username, email=email, password_hash="stored-hash")


def _token(credential_id: str, token_hash: str, expires_at: datetime | None = None) -> RefreshToken:
    return RefreshToken(
        credential_id=credential_id,
        token_hash=token_hash,
        expires_at=expires_at or NOW + timedelta(days=7),
    )


# ---------------------------------------------------------------------------
# Credentials
# ---------------------------------------------------------------------------


class TestCredentials:
    def test_create_assigns_id_and_created_at(self, store: UserStore) -> None:
        created = store.create_credential(_credential())
        assert created.id
        assert created.created_at is not None

    def test_ids_are_unique(self, store: UserStore) -> None:
        first = store.create_credential(_credential("alice", "alice@example.com"))
        second = store.create_credential(_credential("bob", "bob@example.com"))
        assert first.id != second.id

    def test_find_by_username(self, store: UserStore) -> None:
        created = store.create_credential(_credential())
        found = store.find_by_username("alice")
        assert found is not None
        assert found.id == created.id
        assert found.email == "alice@example.com"
        assert found.password_hash == "stored-hash"

    def test_find_by_username_is_case_sensitive(self, store: UserStore) -> None:
        store.create_credential(_credential())
        assert store.find_by_username("Alice") is None

    def test_find_by_id(self, store: UserStore) -> None:
        created = store.create_credential(_credential())
        found = store.find_by_id(created.id)
        assert found is not None
        assert found.username == "alice"

    def test_find_missing_returns_none(self, store: UserStore) -> None:
        assert store.find_by_username("nobody") is None
        assert store.find_by_id("00000000-0000-7000-8000-000000000000") is None

    def test_exists_checks(self, store: UserStore) -> None:
        store.create_credential(_credential())
        assert store.exists_username("alice")
        assert store.exists_email("alice@example.com")
        assert not store.exists_username("bob")
        assert not store.exists_email("bob@example.com")

    def test_duplicate_username_raises_already_exists(self, store: UserStore) -> None:
        store.create_credential(_credential("alice", "alice@example.com"))
        with pytest.raises(AlreadyExists):
            store.create_credential(_credential("alice", "other@example.com"))

    def test_duplicate_email_raises_already_exists(self, store: UserStore) -> None:
        store.create_credential(_credential("alice", "alice@example.com"))
        with pytest.raises(AlreadyExists):
            store.create_credential(_credential("bob", "alice@example.com"))

    def test_created_at_round_trips_as_utc(self, store: UserStore) -> None:
        created = store.create_credential(
            Credential(username="alice", email="alice@example.com", password_hash="h", created_at=NOW)
        )
        found = store.find_by_id(created.id)
        assert found is not None
        assert found.created_at == NOW


# ---------------------------------------------------------------------------
# Refresh tokens
# ---------------------------------------------------------------------------


class TestRefreshTokens:
    def test_create_and_find_by_hash(self, store: UserStore) -> None:
        user = store.create_credential(_credential())
        created = store.create_refresh_token(_token(user.id, "h1"))
        found = store.find_by_hash("h1")
        assert found is not None
        assert found.id == created.id
        assert found.credential_id == user.id
        assert found.expires_at == NOW + timedelta(days=7)
        assert found.revoked is False

    def test_find_unknown_hash_returns_none(self, store: UserStore) -> None:
        assert store.find_by_hash("missing") is None

    def test_find_by_hash_returns_expired_rows(self, store: UserStore) -> None:
        user = store.create_credential(_credential())
        store.create_refresh_token(_token(user.id, "old", expires_at=NOW - timedelta(days=1)))
        found = store.find_by_hash("old")
        assert found is not None
        assert found.is_expired(NOW)

    def test_revoked_tokens_are_not_found(self, store: UserStore) -> None:
        user = store.create_credential(_credential())
        store.create_refresh_token(_token(user.id, "h1"))
        assert store.revoke_by_hash("h1") is True
        assert store.find_by_hash("h1") is None

    def test_revoke_is_idempotent(self, store: UserStore) -> None:
        user = store.create_credential(_credential())
        store.create_refresh_token(_token(user.id, "h1"))
        assert store.revoke_by_hash("h1") is True
        assert store.revoke_by_hash("h1") is False

    def test_revoke_unknown_is_noop(self, store: UserStore) -> None:
        assert store.revoke_by_hash("never-issued") is False

    def test_revoke_all_for_credential(self, store: UserStore) -> None:
        alice = store.create_credential(_credential("alice", "alice@example.com"))
        bob = store.create_credential(_credential("bob", "bob@example.com"))
        store.create_refresh_token(_token(alice.id, "a1"))
        store.create_refresh_token(_token(alice.id, "a2"))
        store.create_refresh_token(_token(bob.id, "b1"))

        assert store.revoke_all_for_credential(alice.id) == 2
        assert store.find_by_hash("a1") is None
        assert store.find_by_hash("a2") is None
        assert store.find_by_hash("b1") is not None
        assert store.revoke_all_for_credential(alice.id) == 0

    def test_purge_removes_expired_and_revoked(self, store: UserStore) -> None:
        user = store.create_credential(_credential())
        store.create_refresh_token(_token(user.id, "active"))
        store.create_refresh_token(_token(user.id, "expired", expires_at=NOW - timedelta(seconds=1)))
        store.create_refresh_token(_token(user.id, "revoked"))
        store.revoke_by_hash("revoked")

        assert store.purge_refresh_tokens(NOW) == 2
        assert store.find_by_hash("active") is not None
        assert store.find_by_hash("expired") is None
        assert store.purge_refresh_tokens(NOW) == 0


# ---------------------------------------------------------------------------
# Transactions
# ---------------------------------------------------------------------------


class TestTransaction:
    def test_commit_on_success(self, store: UserStore) -> None:
        with store.transaction() as tx:
            user = tx.create_credential(_credential())
            tx.create_refresh_token(_token(user.id, "h1"))
        assert store.find_by_username("alice") is not None
        assert store.find_by_hash("h1") is not None

    def test_rollback_on_error(self, store: UserStore) -> None:
        user = store.create_credential(_credential())
        store.create_refresh_token(_token(user.id, "h1"))

        with pytest.raises(RuntimeError):
            with store.transaction() as tx:
                assert tx.revoke_by_hash("h1") is True
                raise RuntimeError("abort")

        assert store.find_by_hash("h1") is not None

    def test_nested_transaction_joins_outer(self, store: UserStore) -> None:
        with store.transaction() as tx:
            with tx.transaction() as inner:
                assert inner is tx
                inner.create_credential(_credential())
        assert store.exists_username("alice")

    def test_duplicate_inside_transaction_raises_already_exists(self, store: UserStore) -> None:
        store.create_credential(_credential())
        with pytest.raises(AlreadyExists):
            with store.transaction() as tx:
                tx.create_credential(_credential("alice", "second@example.com"))


def test_ping(store: UserStore) -> None:
    assert store.ping() is True
