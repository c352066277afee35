"""
auth/store.py -- SQLAlchemy Core persistence layer for user records.

Pattern: Repository + Data Mapper. UserStore is the repository; _row_to_user is
the mapper. The service never touches SQL directly.

Security:
  All queries use bound parameters. No f-strings in SQL.

  username, email, verification_code and reset_token carry UNIQUE constraints.
  Two concurrent signups with the same email both pass the service's
  pre-check, but only one INSERT can commit; the other surfaces as
  DuplicateRecordError. NULLs are distinct in UNIQUE indexes on both SQLite and
  PostgreSQL, so any number of users may have no pending code.

  update_user(where=...) is a compare-and-update: the WHERE clause repeats the
  expected current values, so a code or token can be consumed exactly once
  even when two requests race with the same value.

Error translation:
  IntegrityError  -> DuplicateRecordError (field parsed from the driver message)
  SQLAlchemyError -> StoreError

Layer rule: no imports from api/ or mail/.
"""

from __future__ import annotations

import uuid
from pathlib import Path

from sqlalchemy import Boolean, Column, MetaData, String, Table, Text, create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from auth.errors import DuplicateRecordError, StoreError
from auth.models import User
from core.config import now_iso

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).parent / 'gatekeeper_auth.db'}"

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("id", String(32), primary_key=True),  # uuid4 hex, opaque to clients
    Column("username", String(255), nullable=False, unique=True),
    Column("email", String(320), nullable=False, unique=True),
    Column("hashed_password", Text, nullable=False),
    Column("is_verified", Boolean, nullable=False, server_default="0"),
    Column("verification_code", String(16), unique=True),
    Column("verification_expires_at", String(32)),
    Column("reset_token", String(64), unique=True),
    Column("reset_expires_at", String(32)),
    Column("created_at", String(32), nullable=False),
    Column("last_login", String(32)),
)

# Columns a caller may change through update_user(). id and created_at are
# immutable once written.
_MUTABLE_FIELDS = frozenset(
    {
        "username",
        "email",
        "hashed_password",
        "is_verified",
        "verification_code",
        "verification_expires_at",
        "reset_token",
        "reset_expires_at",
        "last_login",
    }
)

_UNIQUE_FIELDS = ("verification_code", "reset_token", "username", "email")


# ---------------------------------------------------------------------------
# WAL mode
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode for concurrent read safety.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


def _duplicate_field(exc: IntegrityError) -> str | None:
    """Best-effort column name from a UNIQUE violation.

    SQLite: "UNIQUE constraint failed: users.email"
    PostgreSQL: 'duplicate key value violates unique constraint "users_email_key"'
    """
    message = str(exc.orig).lower()
    for name in _UNIQUE_FIELDS:
        if name in message:
            return name
    return None


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class UserStore:
    """Repository for User records.

    Usage:
        store = UserStore("sqlite:///gatekeeper.db")
        user_id = store.create_user(User(username="alice", email="a@x.com", hashed_password=digest))
        user = store.get_by_email("a@x.com")
        store.update_user(user_id, where={"verification_code": "123456"}, is_verified=True)
        store.close()
    """

    def __init__(self, db_url: str = _DEFAULT_DB_URL) -> None:
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite") and "mode=memory" not in db_url and ":memory:" not in db_url:
            event.listen(self.engine, "connect", _set_wal_mode)
        _metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # Lookups -- each returns None when no record matches
    # ------------------------------------------------------------------

    def get_by_id(self, user_id: str) -> User | None:
        return self._get_one(_users.c.id, user_id)

    def get_by_email(self, email: str) -> User | None:
        """Exact match. Callers normalize case before storing and looking up."""
        return self._get_one(_users.c.email, email)

    def get_by_username(self, username: str) -> User | None:
        return self._get_one(_users.c.username, username)

    def get_by_verification_code(self, code: str) -> User | None:
        """Return the user with this pending code, expired or not. The service checks expiry."""
        return self._get_one(_users.c.verification_code, code)

    def get_by_reset_token(self, token: str) -> User | None:
        return self._get_one(_users.c.reset_token, token)

    def _get_one(self, column, value) -> User | None:
        try:
            with self.engine.connect() as conn:
                row = conn.execute(_users.select().where(column == value)).fetchone()
        except SQLAlchemyError as exc:
            raise StoreError(f"user lookup by {column.name} failed") from exc
        return _row_to_user(row) if row is not None else None

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def create_user(self, user: User) -> str:
        """Insert a new user and return its assigned id.

        Raises DuplicateRecordError if username, email or the pending code
        collides with an existing row [M1].
        """
        user_id = uuid.uuid4().hex
        try:
            with self.engine.begin() as conn:
                conn.execute(
                    _users.insert().values(
                        id=user_id,
                        username=user.username,
                        email=user.email,
                        hashed_password=user.hashed_password,
                        is_verified=user.is_verified,
                        verification_code=user.verification_code,
                        verification_expires_at=user.verification_expires_at,
                        reset_token=user.reset_token,
                        reset_expires_at=user.reset_expires_at,
                        created_at=now_iso(),
                    )
                )
        except IntegrityError as exc:
            raise DuplicateRecordError("user record violates a uniqueness constraint", _duplicate_field(exc)) from exc
        except SQLAlchemyError as exc:
            raise StoreError("user insert failed") from exc
        return user_id

    def update_user(self, user_id: str, *, where: dict | None = None, **fields) -> bool:
        """Update mutable fields on an existing user.

        where: optional {column: expected_value} map. The row only changes if
            every listed column still holds the expected value at write time.

        Returns True if a row was updated, False if user_id was not found or a
        where condition no longer held. Raises ValueError for unknown columns.
        """
        unknown = (set(fields) | set(where or {})) - _MUTABLE_FIELDS
        if unknown:
            raise ValueError(f"Unknown user fields: {sorted(unknown)!r}")
        if not fields:
            return False
        stmt = _users.update().where(_users.c.id == user_id)
        for name, expected in (where or {}).items():
            column = _users.c[name]
            stmt = stmt.where(column.is_(None) if expected is None else column == expected)
        try:
            with self.engine.begin() as conn:
                result = conn.execute(stmt.values(**fields))
        except IntegrityError as exc:
            raise DuplicateRecordError("user update violates a uniqueness constraint", _duplicate_field(exc)) from exc
        except SQLAlchemyError as exc:
            raise StoreError("user update failed") from exc
        return result.rowcount > 0

    def delete_user(self, user_id: str) -> bool:
        """Permanently delete a user record. Returns True if deleted, False if not found."""
        try:
            with self.engine.begin() as conn:
                result = conn.execute(_users.delete().where(_users.c.id == user_id))
        except SQLAlchemyError as exc:
            raise StoreError("user delete failed") from exc
        return result.rowcount > 0

    def ping(self) -> bool:
        """True if a trivial query succeeds. Used by the health endpoint."""
        try:
            with self.engine.connect() as conn:
                conn.execute(_users.select().limit(1))
        except SQLAlchemyError:
            return False
        return True

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mapper (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        username=row.username,
        email=row.email,
        hashed_password=row.hashed_password,
        is_verified=bool(row.is_verified),
        verification_code=row.verification_code,
        verification_expires_at=row.verification_expires_at,
        reset_token=row.reset_token,
        reset_expires_at=row.reset_expires_at,
        created_at=row.created_at,
        last_login=row.last_login,
    )
