"""
auth/store.py -- SQLAlchemy Core persistence layer for auth entities.

Pattern: Repository + Data Mapper. CredentialStore is the repository;
_row_to_user / _row_to_token are the mappers. Service and route code never
touches SQL directly.

Security:
  All queries use bound parameters. No f-strings in SQL.

  Email uniqueness is a UNIQUE constraint, not just a read-then-insert check.
  create_user() lets IntegrityError propagate so the service can turn a lost
  race into DuplicateEmail.

Concurrency (one-time tokens):
  delete_one_time_token() is a conditional delete. It reports whether *this*
  call removed the row (rowcount == 1). When two requests consume the same
  token, the database serializes the two DELETEs and only one of them sees a
  row to remove -- the other gets False and the consume fails. No in-process
  lock is involved, so this holds across any number of API processes.

  replace_one_time_token() runs delete-old + insert-new in a single
  transaction. The owning users row is locked first (SELECT ... FOR UPDATE on
  PostgreSQL/MySQL; SQLite ignores the clause and serializes writers on its
  database lock instead), so two concurrent issuances for the same user cannot
  both leave a live token behind.

Timestamps are stored as fixed-width ISO 8601 UTC strings (core.clock.to_iso),
which compare correctly as text in purge_expired_tokens().

Layer rule: no imports from api/.
"""

from __future__ import annotations

from sqlalchemy import (
    Column,
    ForeignKey,
    Index,
    Integer,
    MetaData,
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

from auth.models import OneTimeToken, TokenPurpose, User
from core.clock import Clock, to_iso, utcnow

_DEFAULT_DB_URL = "sqlite:///authkeep.db"

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

metadata = MetaData()

_users = Table(
    "users",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("email", String(255), nullable=False, unique=True),  # normalized lowercase
    Column("hashed_password", Text),  # NULL until a credential is set
    Column("role", String(30), nullable=False, server_default="buyer_renter"),
    Column("verified", Integer, nullable=False, server_default="0"),
    Column("first_name", String(50)),
    Column("last_name", String(50)),
    Column("phone", String(30)),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
)

_tokens = Table(
    "one_time_tokens",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
    Column("token_hash", String(64), nullable=False, unique=True),  # SHA-256 hex
    Column("purpose", String(32), nullable=False),
    Column("expires_at", String(32), nullable=False),
    Column("created_at", String(32), nullable=False),
    Index("ix_one_time_tokens_user_purpose", "user_id", "purpose"),
)

# Columns update_user() may touch. Anything else is a programming error.
_MUTABLE_USER_FIELDS = frozenset({"hashed_password", "verified", "role", "first_name", "last_name", "phone"})


# ---------------------------------------------------------------------------
# SQLite connection setup
# ---------------------------------------------------------------------------


def _configure_sqlite(dbapi_conn, connection_record) -> None:
    """Enable WAL journaling and foreign keys on every new SQLite connection.

    PRAGMAs are per-connection in SQLite, so they must be set each time the
    pool opens a connection. WAL lets readers proceed while a writer holds
    the lock; foreign_keys makes ON DELETE CASCADE effective.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")
    dbapi_conn.execute("PRAGMA foreign_keys=ON")


def normalize_email(email: str) -> str:
    return email.strip().lower()


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class CredentialStore:
    """Repository for User and OneTimeToken records.

    Usage:
        store = CredentialStore("sqlite:///authkeep.db")
        user = store.create_user(User(email="a@b.com", hashed_password=hasher.hash("...")))
        store.find_user_by_email("A@B.com")   # case-insensitive
        store.close()
    """

    def __init__(self, db_url: str = _DEFAULT_DB_URL, clock: Clock = utcnow) -> None:
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _configure_sqlite)
        self._clock = clock
        metadata.create_all(self.engine)

    def _now_iso(self) -> str:
        return to_iso(self._clock())

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    def find_user_by_email(self, email: str) -> User | None:
        """Look up a user by email, case-insensitively. Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.email == normalize_email(email))).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_user(self, user_id: int) -> User | None:
        """Look up a user by primary key. Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.id == user_id)).fetchone()
        return _row_to_user(row) if row is not None else None

    def create_user(self, user: User) -> User:
        """Insert a new user and return it with id and timestamps filled in.

        Raises sqlalchemy.exc.IntegrityError if the email already exists.
        """
        now = self._now_iso()
        with self.engine.begin() as conn:
            result = conn.execute(
                _users.insert().values(
                    email=normalize_email(user.email),
                    hashed_password=user.hashed_password,
                    role=user.role,
                    verified=1 if user.verified else 0,
                    first_name=user.first_name,
                    last_name=user.last_name,
                    phone=user.phone,
                    created_at=now,
                    updated_at=now,
                )
            )
            user_id = result.inserted_primary_key[0]
            row = conn.execute(_users.select().where(_users.c.id == user_id)).fetchone()
        return _row_to_user(row)

    def update_user(self, user_id: int, **fields) -> User | None:
        """Update mutable fields on an existing user and return the fresh record.

        Accepted fields: hashed_password, verified, role, first_name, last_name,
        phone. Unknown keys raise ValueError -- column names never come from
        caller input. Returns None if user_id does not exist.
        """
        unknown = set(fields) - _MUTABLE_USER_FIELDS
        if unknown:
            raise ValueError(f"Unknown user fields: {sorted(unknown)!r}")
        if "verified" in fields:
            fields["verified"] = 1 if fields["verified"] else 0
        with self.engine.begin() as conn:
            result = conn.execute(
                _users.update().where(_users.c.id == user_id).values(updated_at=self._now_iso(), **fields)
            )
            if result.rowcount == 0:
                return None
            row = conn.execute(_users.select().where(_users.c.id == user_id)).fetchone()
        return _row_to_user(row)

    # ------------------------------------------------------------------
    # One-time tokens
    # ------------------------------------------------------------------

    def find_one_time_token(self, token_hash: str) -> OneTimeToken | None:
        with self.engine.connect() as conn:
            row = conn.execute(_tokens.select().where(_tokens.c.token_hash == token_hash)).fetchone()
        return _row_to_token(row) if row is not None else None

    def create_one_time_token(self, token: OneTimeToken) -> int:
        """Insert a token record as-is and return its ID.

        Does not remove older tokens -- use replace_one_time_token() for the
        at-most-one-active-token rule.
        """
        with self.engine.begin() as conn:
            result = conn.execute(_tokens.insert().values(**_token_values(token, self._now_iso())))
            return result.inserted_primary_key[0]

    def delete_one_time_token(self, token_id: int) -> bool:
        """Conditionally delete one token. True only if this call removed the row."""
        with self.engine.begin() as conn:
            result = conn.execute(_tokens.delete().where(_tokens.c.id == token_id))
        return result.rowcount == 1

    def delete_one_time_tokens(self, user_id: int, purpose: TokenPurpose) -> int:
        """Delete every token of purpose owned by user_id. Returns rows removed."""
        with self.engine.begin() as conn:
            result = conn.execute(
                _tokens.delete().where((_tokens.c.user_id == user_id) & (_tokens.c.purpose == purpose.value))
            )
        return result.rowcount

    def replace_one_time_token(self, token: OneTimeToken) -> int:
        """Atomically drop the user's tokens of token.purpose and insert token.

        Both statements share one transaction; the owning user row is locked
        first so concurrent replacements for the same user run one after the
        other. Returns the new token ID.
        """
        with self.engine.begin() as conn:
            conn.execute(select(_users.c.id).where(_users.c.id == token.user_id).with_for_update())
            conn.execute(
                _tokens.delete().where(
                    (_tokens.c.user_id == token.user_id) & (_tokens.c.purpose == token.purpose.value)
                )
            )
            result = conn.execute(_tokens.insert().values(**_token_values(token, self._now_iso())))
            return result.inserted_primary_key[0]

    def purge_expired_tokens(self, now_iso: str) -> int:
        """Delete every token whose expires_at is at or before now_iso."""
        with self.engine.begin() as conn:
            result = conn.execute(_tokens.delete().where(_tokens.c.expires_at <= now_iso))
        return result.rowcount

    def count_one_time_tokens(self, user_id: int | None = None, purpose: TokenPurpose | None = None) -> int:
        """Count stored tokens, optionally filtered by owner and purpose."""
        query = select(func.count()).select_from(_tokens)
        if user_id is not None:
            query = query.where(_tokens.c.user_id == user_id)
        if purpose is not None:
            query = query.where(_tokens.c.purpose == purpose.value)
        with self.engine.connect() as conn:
            return conn.execute(query).scalar() or 0

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def ping(self) -> bool:
        """Return True if the database answers a trivial query."""
        with self.engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        return True

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _token_values(token: OneTimeToken, created_at: str) -> dict:
    return {
        "user_id": token.user_id,
        "token_hash": token.token_hash,
        "purpose": token.purpose.value,
        "expires_at": token.expires_at,
        "created_at": token.created_at or created_at,
    }


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        email=row.email,
        hashed_password=row.hashed_password,
        role=row.role,
        verified=bool(row.verified),
        first_name=row.first_name,
        last_name=row.last_name,
        phone=row.phone,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _row_to_token(row) -> OneTimeToken:
    return OneTimeToken(
        id=row.id,
        user_id=row.user_id,
        token_hash=row.token_hash,
        purpose=TokenPurpose(row.purpose),
        expires_at=row.expires_at,
        created_at=row.created_at,
    )
