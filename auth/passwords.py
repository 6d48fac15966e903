"""
auth/passwords.py -- bcrypt password hashing and verification.

Security design decisions:
  bcrypt with a configurable cost factor (Settings.bcrypt_rounds, 12 by
  default). Each hash embeds its own random salt, so hashing the same password
  twice yields two different strings. checkpw re-derives the hash from the
  embedded salt and compares in constant time.

  bcrypt is used directly rather than through passlib: passlib's wrap-bug
  detection feeds bcrypt 4.x+ a >72-byte password, which it rejects.

  72-byte limit: bcrypt only reads the first 72 bytes and current releases
  raise ValueError beyond that. hash() surfaces this as HashingFailure (the API
  layer rejects such passwords earlier); compare() returns False because no
  stored hash can have come from a longer password.

  Timing equalization [C1]: dummy_compare() burns one bcrypt comparison against
  a hash computed at construction time. AuthService.login() calls it when the
  email is unknown so response time does not reveal whether an account exists.

CPU cost: hashing is deliberately slow. Every route that reaches this module is
a plain `def` handler, which FastAPI runs in its worker thread pool, so the event
loop keeps serving other requests while bcrypt works.
"""

from __future__ import annotations

import logging
import time

import bcrypt

from auth.errors import HashingFailure

logger = logging.getLogger("authkeep.auth.passwords")

_BCRYPT_MAX_BYTES = 72
_MIN_LENGTH = 8


def password_policy_violation(password: str) -> str | None:
    """Return a human-readable reason password is unacceptable, or None if it passes.

    Policy: at least 8 characters, at most 72 bytes (bcrypt's input limit),
    and at least one lowercase letter, one uppercase letter and one digit.
    Shared by the API request models and AuthService so both enforce the
    same rule.
    """
    if len(password) < _MIN_LENGTH:
        return f"Password must be at least {_MIN_LENGTH} characters long."
    if len(password.encode("utf-8")) > _BCRYPT_MAX_BYTES:
        return f"Password must be at most {_BCRYPT_MAX_BYTES} bytes long."
    if not (
        any(c.islower() for c in password) and any(c.isupper() for c in password) and any(c.isdigit() for c in password)
    ):
        return "Password must contain at least one uppercase letter, one lowercase letter, and one number."
    return None


class PasswordHasher:
    """One-way hashing and constant-time verification of passwords."""

    def __init__(self, rounds: int = 12) -> None:
        self.rounds = rounds
        self._dummy_hash = self.hash("authkeep_timing_dummy")

    def hash(self, password: str) -> str:
        """Return a salted bcrypt hash of password.

        Raises HashingFailure on any bcrypt error (entropy source failure,
        over-long input). These are unexpected and not caused by the user.
        """
        started = time.perf_counter()
        try:
            hashed = bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt(rounds=self.rounds))
        except (ValueError, TypeError) as exc:
            logger.error("Password hashing failed (length=%d)", len(password))
            raise HashingFailure() from exc
        logger.debug("Password hashed in %.1fms", (time.perf_counter() - started) * 1000)
        return hashed.decode("utf-8")

    def compare(self, password: str, hashed: str) -> bool:
        """Return True if password matches hashed.

        A wrong password is a normal False. Only a malformed stored hash
        raises (HashingFailure) -- that indicates corrupt data, not bad input.
        """
        raw = password.encode("utf-8")
        if len(raw) > _BCRYPT_MAX_BYTES:
            return False
        try:
            return bcrypt.checkpw(raw, hashed.encode("utf-8"))
        except ValueError as exc:
            logger.error("Stored password hash is malformed")
            raise HashingFailure() from exc

    def dummy_compare(self, password: str) -> None:
        """Spend one comparison's worth of CPU without a real account [C1]."""
        self.compare(password, self._dummy_hash)
