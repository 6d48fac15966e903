"""
tests/test_one_time_tokens.py -- Unit tests for auth/one_time.py (OneTimeTokenStore).

Coverage:
  - issue() stores only the SHA-256 digest, never the raw value
  - consume() is single-use: the second redemption is TokenNotFound
  - expiry boundary: valid before expires_at, TokenExpired at it
  - purpose mismatch is rejected and does not burn the token
  - re-issue for the same (user, purpose) invalidates the previous value
  - tokens of different purposes coexist for one user
  - N concurrent consumes of one value yield exactly one success
  - N concurrent issues for one user and purpose leave one live token
  - purge_expired() removes only expired records
"""

from __future__ import annotations

import threading
from concurrent.futures import ThreadPoolExecutor
from datetime import timedelta

import pytest

from auth.errors import TokenExpired, TokenNotFound, TokenPurposeMismatch
from auth.models import TokenPurpose, User
from auth.one_time import OneTimeTokenStore, generate_token_value, hash_token
from auth.store import CredentialStore

VERIFY = TokenPurpose.EMAIL_VERIFICATION
RESET = TokenPurpose.PASSWORD_RESET


def _make_user(store: CredentialStore, email: str = "owner@example.com") -> int:
    return store.create_user(User(email=email, hashed_password="x")).id


class TestTokenValues:
    def test_generated_values_are_unique_and_urlsafe(self) -> None:
        values = {generate_token_value() for _ in range(50)}
        assert len(values) == 50
        for value in values:
            assert len(value) >= 43
            assert all(c.isalnum() or c in "-_" for c in value)

    def test_hash_token_is_sha256_hex(self) -> None:
        digest = hash_token("abc")
        assert digest == "ba7816bf8f01cfea414140de5dae2223b00361a396177a9cb410ff61f20015ad"


class TestIssueAndConsume:
    def test_only_digest_is_stored(self, store: CredentialStore, one_time: OneTimeTokenStore) -> None:
        uid = _make_user(store)
        raw = one_time.issue(uid, VERIFY, timedelta(hours=1))
        assert store.find_one_time_token(raw) is None
        record = store.find_one_time_token(hash_token(raw))
        assert record is not None
        assert record.user_id == uid
        assert record.purpose == VERIFY

    def test_consume_returns_owner(self, store: CredentialStore, one_time: OneTimeTokenStore) -> None:
        uid = _make_user(store)
        raw = one_time.issue(uid, VERIFY, timedelta(hours=1))
        assert one_time.consume(raw, VERIFY) == uid

    def test_consume_is_single_use(self, store: CredentialStore, one_time: OneTimeTokenStore) -> None:
        uid = _make_user(store)
        raw = one_time.issue(uid, RESET, timedelta(hours=1))
        one_time.consume(raw, RESET)
        with pytest.raises(TokenNotFound):
            one_time.consume(raw, RESET)

    def test_unknown_value(self, one_time: OneTimeTokenStore) -> None:
        with pytest.raises(TokenNotFound):
            one_time.consume("never-issued", VERIFY)

    def test_purpose_mismatch_keeps_token(self, store: CredentialStore, one_time: OneTimeTokenStore) -> None:
        uid = _make_user(store)
        raw = one_time.issue(uid, VERIFY, timedelta(hours=1))
        with pytest.raises(TokenPurposeMismatch):
            one_time.consume(raw, RESET)
        assert one_time.consume(raw, VERIFY) == uid


class TestExpiry:
    def test_valid_just_before_expiry(self, store: CredentialStore, one_time: OneTimeTokenStore, clock) -> None:
        uid = _make_user(store)
        raw = one_time.issue(uid, RESET, timedelta(hours=1))
        clock.advance(minutes=59, seconds=59)
        assert one_time.consume(raw, RESET) == uid

    def test_expired_at_boundary(self, store: CredentialStore, one_time: OneTimeTokenStore, clock) -> None:
        uid = _make_user(store)
        raw = one_time.issue(uid, RESET, timedelta(hours=1))
        clock.advance(hours=1)
        with pytest.raises(TokenExpired):
            one_time.consume(raw, RESET)

    def test_purge_removes_only_expired(self, store: CredentialStore, one_time: OneTimeTokenStore, clock) -> None:
        first = _make_user(store, "first@example.com")
        second = _make_user(store, "second@example.com")
        one_time.issue(first, RESET, timedelta(hours=1))
        keep = one_time.issue(second, VERIFY, timedelta(hours=24))
        clock.advance(hours=2)
        assert one_time.purge_expired() == 1
        assert store.count_one_time_tokens() == 1
        assert one_time.consume(keep, VERIFY) == second


class TestReissue:
    def test_reissue_invalidates_previous(self, store: CredentialStore, one_time: OneTimeTokenStore) -> None:
        uid = _make_user(store)
        old = one_time.issue(uid, VERIFY, timedelta(hours=24))
        new = one_time.issue(uid, VERIFY, timedelta(hours=24))
        assert old != new
        assert store.count_one_time_tokens(uid, VERIFY) == 1
        with pytest.raises(TokenNotFound):
            one_time.consume(old, VERIFY)
        assert one_time.consume(new, VERIFY) == uid

    def test_purposes_are_independent(self, store: CredentialStore, one_time: OneTimeTokenStore) -> None:
        uid = _make_user(store)
        verify = one_time.issue(uid, VERIFY, timedelta(hours=24))
        reset = one_time.issue(uid, RESET, timedelta(hours=1))
        assert store.count_one_time_tokens(uid) == 2
        assert one_time.consume(verify, VERIFY) == uid
        assert one_time.consume(reset, RESET) == uid

    def test_injected_token_factory(self, store: CredentialStore, clock) -> None:
        uid = _make_user(store)
        one_time = OneTimeTokenStore(store, clock=clock, token_factory=lambda: "fixed-token-value")
        assert one_time.issue(uid, VERIFY, timedelta(hours=1)) == "fixed-token-value"


class TestConcurrentConsume:
    """The conditional delete lets exactly one of N racing consumers win."""

    N = 8

    def test_exactly_one_winner(self, tmp_path) -> None:
        store = CredentialStore(f"sqlite:///{tmp_path / 'race.db'}")
        try:
            uid = _make_user(store)
            one_time = OneTimeTokenStore(store)
            raw = one_time.issue(uid, RESET, timedelta(hours=1))
            barrier = threading.Barrier(self.N)

            def attempt() -> str:
                barrier.wait()
                try:
                    one_time.consume(raw, RESET)
                    return "ok"
                except TokenNotFound:
                    return "not_found"

            with ThreadPoolExecutor(max_workers=self.N) as pool:
                outcomes = list(pool.map(lambda _: attempt(), range(self.N)))

            assert outcomes.count("ok") == 1
            assert outcomes.count("not_found") == self.N - 1
            assert store.count_one_time_tokens(uid, RESET) == 0
        finally:
            store.close()


class TestConcurrentIssue:
    """Racing issuances for one user and purpose leave a single live token."""

    N = 8

    def test_one_token_survives(self, tmp_path) -> None:
        store = CredentialStore(f"sqlite:///{tmp_path / 'issue.db'}")
        try:
            uid = _make_user(store)
            one_time = OneTimeTokenStore(store)
            barrier = threading.Barrier(self.N)

            def attempt() -> str:
                barrier.wait()
                return one_time.issue(uid, VERIFY, timedelta(hours=24))

            with ThreadPoolExecutor(max_workers=self.N) as pool:
                issued = list(pool.map(lambda _: attempt(), range(self.N)))

            assert len(set(issued)) == self.N
            assert store.count_one_time_tokens(uid, VERIFY) == 1
            survivors = [raw for raw in issued if store.find_one_time_token(hash_token(raw)) is not None]
            assert len(survivors) == 1
            assert one_time.consume(survivors[0], VERIFY) == uid
        finally:
            store.close()
