"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, zero logic). Stores and the service
layer do the work; these classes only own the domain shape.

Layer rule: no imports from api/.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class TokenPurpose(str, Enum):
    """What a one-time token may be redeemed for. Purposes are not interchangeable."""

    EMAIL_VERIFICATION = "email_verification"
    PASSWORD_RESET = "password_reset"


class Role(str, Enum):
    BUYER_RENTER = "buyer_renter"
    SELLER_LANDLORD = "seller_landlord"


@dataclass
class User:
    """Represents a registered identity.

    email is stored normalized (stripped, lowercased) so lookups are
    case-insensitive. hashed_password is None until a credential is set and
    must never be logged or serialized into a response.
    """

    email: str
    role: str = Role.BUYER_RENTER.value
    id: int | None = None
    hashed_password: str | None = None
    verified: bool = False
    first_name: str | None = None
    last_name: str | None = None
    phone: str | None = None
    created_at: str | None = None
    updated_at: str | None = None

    def __repr__(self) -> str:
        # Keep the hash out of tracebacks and log lines.
        return f"User(id={self.id!r}, email={self.email!r}, role={self.role!r}, verified={self.verified!r})"


@dataclass
class OneTimeToken:
    """A single-use credential bound to one user and one purpose.

    Only token_hash (SHA-256 of the raw value) is persisted. The raw value
    exists once, in the return value of OneTimeTokenStore.issue(), and then
    travels to the user inside an email link.
    """

    user_id: int
    purpose: TokenPurpose
    token_hash: str
    expires_at: str  # ISO 8601 UTC
    id: int | None = None
    created_at: str | None = None


@dataclass(frozen=True)
class SessionPayload:
    """Claims carried by a signed session token (access or refresh)."""

    user_id: int
    email: str
    token_type: str = "access"  # "access" | "refresh"
    issued_at: int | None = None  # epoch seconds
    expires_at: int | None = None  # epoch seconds
