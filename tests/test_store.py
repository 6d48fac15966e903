"""
tests/test_store.py -- Unit tests for auth/store.py (CredentialStore).

Uses the in-memory store fixture from conftest.py; timestamps come from the
fake clock.

Coverage:
  - email lookup is case-insensitive; the UNIQUE constraint raises IntegrityError
  - update_user(): rejects unknown columns, returns None for a missing user
  - delete_one_time_tokens(): removes one purpose for one user and reports the count
  - ping() answers on a live engine
"""

from __future__ import annotations

from datetime import timedelta

import pytest
from sqlalchemy.exc import IntegrityError

from auth.models import OneTimeToken, TokenPurpose, User
from auth.store import CredentialStore
from core.clock import to_iso


def _token(user_id: int, purpose: TokenPurpose, token_hash: str, expires_at: str) -> OneTimeToken:
    return OneTimeToken(user_id=user_id, purpose=purpose, token_hash=token_hash, expires_at=expires_at)


class TestUsers:
    def test_lookup_is_case_insensitive(self, store: CredentialStore) -> None:
        created = store.create_user(User(email="Mixed@Example.com", hashed_password="x"))
        assert created.email == "mixed@example.com"
        assert store.find_user_by_email("MIXED@example.COM").id == created.id

    def test_unique_email(self, store: CredentialStore) -> None:
        store.create_user(User(email="one@example.com", hashed_password="x"))
        with pytest.raises(IntegrityError):
            store.create_user(User(email="ONE@example.com", hashed_password="y"))

    def test_update_rejects_unknown_field(self, store: CredentialStore) -> None:
        uid = store.create_user(User(email="u@example.com", hashed_password="x")).id
        with pytest.raises(ValueError, match="email"):
            store.update_user(uid, email="other@example.com")

    def test_update_missing_user(self, store: CredentialStore) -> None:
        assert store.update_user(4242, verified=True) is None


class TestDeleteOneTimeTokens:
    def test_removes_only_the_given_purpose(self, store: CredentialStore, clock) -> None:
        uid = store.create_user(User(email="owner@example.com", hashed_password="x")).id
        other = store.create_user(User(email="other@example.com", hashed_password="x")).id
        expires = to_iso(clock() + timedelta(hours=1))
        store.create_one_time_token(_token(uid, TokenPurpose.PASSWORD_RESET, "a" * 64, expires))
        store.create_one_time_token(_token(uid, TokenPurpose.PASSWORD_RESET, "b" * 64, expires))
        store.create_one_time_token(_token(uid, TokenPurpose.EMAIL_VERIFICATION, "c" * 64, expires))
        store.create_one_time_token(_token(other, TokenPurpose.PASSWORD_RESET, "d" * 64, expires))

        assert store.delete_one_time_tokens(uid, TokenPurpose.PASSWORD_RESET) == 2
        assert store.count_one_time_tokens(uid, TokenPurpose.PASSWORD_RESET) == 0
        assert store.count_one_time_tokens(uid, TokenPurpose.EMAIL_VERIFICATION) == 1
        assert store.count_one_time_tokens(other, TokenPurpose.PASSWORD_RESET) == 1

    def test_nothing_to_delete(self, store: CredentialStore) -> None:
        uid = store.create_user(User(email="empty@example.com", hashed_password="x")).id
        assert store.delete_one_time_tokens(uid, TokenPurpose.EMAIL_VERIFICATION) == 0


def test_ping(store: CredentialStore) -> None:
    assert store.ping() is True
