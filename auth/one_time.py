"""
auth/one_time.py -- Single-use tokens for email verification and password reset.

Lifecycle of a one-time token:
  issue()   -> random value generated, SHA-256 digest stored, raw value returned
               once for the email link. Any earlier token of the same purpose
               for the same user is deleted in the same transaction, so at most
               one is live per (user, purpose).
  consume() -> look up by digest, check purpose and expiry, then redeem with a
               conditional delete. The redeem succeeds only for the caller
               whose DELETE actually removed the row, which makes concurrent
               consumes of one value yield exactly one winner.

Token values: secrets.token_urlsafe(32) -- 256 bits from the OS CSPRNG, URL-safe
base64 without padding. Only the SHA-256 digest is stored, so a leaked database
dump cannot be replayed as reset links. A fast hash is enough here: the input
already has full entropy, bcrypt's slowness protects low-entropy passwords.

Failure modes (fine-grained on purpose; AuthService collapses them):
  TokenNotFound        -- never issued, already consumed, or lost the race
  TokenPurposeMismatch -- a reset token presented for verification, or vice versa
  TokenExpired         -- now >= expires_at; the record stays until purge
"""

from __future__ import annotations

import hashlib
import logging
import secrets
from collections.abc import Callable
from datetime import timedelta

from auth.errors import TokenExpired, TokenNotFound, TokenPurposeMismatch
from auth.models import OneTimeToken, TokenPurpose
from auth.store import CredentialStore
from core.clock import Clock, from_iso, to_iso, utcnow

logger = logging.getLogger("authkeep.auth.one_time")


def generate_token_value() -> str:
    """Return a new URL-safe token carrying 256 bits of entropy."""
    return secrets.token_urlsafe(32)


def hash_token(raw_token: str) -> str:
    return hashlib.sha256(raw_token.encode("utf-8")).hexdigest()


class OneTimeTokenStore:
    """Issues and redeems single-use tokens bound to (user, purpose)."""

    def __init__(
        self,
        store: CredentialStore,
        clock: Clock = utcnow,
        token_factory: Callable[[], str] = generate_token_value,
    ) -> None:
        self._store = store
        self._clock = clock
        self._token_factory = token_factory

    def issue(self, user_id: int, purpose: TokenPurpose, ttl: timedelta) -> str:
        """Create a token for user_id and return its raw value.

        Previous tokens of the same purpose for this user stop working the
        moment this call commits.
        """
        raw_token = self._token_factory()
        now = self._clock()
        self._store.replace_one_time_token(
            OneTimeToken(
                user_id=user_id,
                purpose=purpose,
                token_hash=hash_token(raw_token),
                expires_at=to_iso(now + ttl),
                created_at=to_iso(now),
            )
        )
        logger.info("Issued %s token for user_id=%s (ttl=%ss)", purpose.value, user_id, int(ttl.total_seconds()))
        return raw_token

    def consume(self, token_value: str, expected_purpose: TokenPurpose) -> int:
        """Redeem token_value exactly once and return the owning user ID.

        Raises:
            TokenNotFound: no such token, or another request redeemed it first.
            TokenPurposeMismatch: the token exists but belongs to another flow.
            TokenExpired: the token exists but now >= expires_at.
        """
        record = self._store.find_one_time_token(hash_token(token_value))
        if record is None:
            raise TokenNotFound()
        if record.purpose != expected_purpose:
            raise TokenPurposeMismatch()
        if self._clock() >= from_iso(record.expires_at):
            raise TokenExpired()
        # Redeem: only the request whose DELETE removes the row wins.
        if not self._store.delete_one_time_token(record.id):
            raise TokenNotFound()
        return record.user_id

    def purge_expired(self) -> int:
        """Delete every expired token. Returns the number of records removed."""
        removed = self._store.purge_expired_tokens(to_iso(self._clock()))
        if removed:
            logger.info("Purged %d expired one-time tokens", removed)
        return removed
