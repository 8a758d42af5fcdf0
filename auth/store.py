"""
auth/store.py -- SQLAlchemy Core persistence layer for user credentials.

Pattern: Repository + Data Mapper.
UserStore is the repository; _row_to_user is the mapper. Flow and route code
never touches SQL directly.

Contract:
  insert(user)      -- writes one record and returns its id. Empty string
                       fields are left out of the INSERT (sparse write) so the
                       column stays NULL instead of "".
  lookup(username)  -- returns the User or None. "Not found" is never an error.

  Every SQLAlchemy failure is re-raised as StoreError so callers above the
  store only deal with the auth error taxonomy. A UNIQUE violation on the
  username is DuplicateUserError, a StoreError subtype.

Security:
  All queries use bound parameters. No f-strings in SQL.
  Username uniqueness is a hard UNIQUE constraint with a plain INSERT -- a
  second signup for an existing name fails instead of replacing the record.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from sqlalchemy import Column, Integer, MetaData, String, Table, Text, create_engine, event, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from auth.errors import DuplicateUserError, StoreError
from auth.models import User
from core.config import get_settings

logger = logging.getLogger("authgate.store")

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("username", String(255), nullable=False, unique=True),
    Column("password_salt", String(64)),
    Column("password_hash", Text),
    Column("email", String(255)),
    Column("last_ip", String(45)),  # IPv6 textual max
    Column("created_at", String(32), nullable=False),
)

# Columns that take part in the sparse write. id and created_at are store-owned.
_WRITABLE_FIELDS = ("username", "password_salt", "password_hash", "email", "last_ip")


# ---------------------------------------------------------------------------
# WAL mode
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode for concurrent read safety.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


_UNIQUE_SQLSTATE = "23505"
_MYSQL_DUP_ENTRY = 1062


def _is_unique_violation(exc: IntegrityError) -> bool:
    """Return True if the driver reports a duplicate on users.username.

    Structured driver fields are checked first: SQLSTATE (psycopg / psycopg2),
    sqlite_errorname (sqlite3 on Python 3.11+) and the MySQL error number.
    Message text is consulted only for the SQLite column name, which sqlite3
    exposes nowhere else.
    """
    orig = exc.orig
    sqlstate = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
    if sqlstate is not None:
        if sqlstate != _UNIQUE_SQLSTATE:
            return False
        diag = getattr(orig, "diag", None)
        column_hint = getattr(diag, "constraint_name", None) or ""
        return not column_hint or "username" in column_hint
    errorname = getattr(orig, "sqlite_errorname", None)
    if errorname is not None and errorname != "SQLITE_CONSTRAINT_UNIQUE":
        return False
    args = getattr(orig, "args", ())
    if args and isinstance(args[0], int):
        return args[0] == _MYSQL_DUP_ENTRY
    return "UNIQUE constraint failed: users.username" in str(orig)


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class UserStore:
    """Repository for User records.

    Usage:
        store = UserStore()
        digest = hash_password("secret")
        store.insert(User(username="alice", password_salt=digest.salt, password_hash=digest.hash))
        user = store.lookup("alice")
        store.close()

    Safe to share between request threads: every call checks out its own
    connection from the engine pool.
    """

    def __init__(self, db_url: str | None = None) -> None:
        db_url = db_url or get_settings().database_url
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_wal_mode)
        try:
            _metadata.create_all(self.engine)
        except SQLAlchemyError as exc:
            raise StoreError("Could not initialise the user store.") from exc

    def insert(self, user: User) -> int:
        """Insert a new user and return its assigned database ID.

        Raises DuplicateUserError if the username already exists and
        StoreError for any other constraint or connectivity failure.
        """
        values = {name: getattr(user, name) for name in _WRITABLE_FIELDS if getattr(user, name)}
        values["created_at"] = _now_iso()
        try:
            with self.engine.connect() as conn:
                result = conn.execute(_users.insert().values(**values))
                conn.commit()
                user_id = result.inserted_primary_key[0]
        except IntegrityError as exc:
            if user.username and _is_unique_violation(exc):
                raise DuplicateUserError(f"Username {user.username!r} already exists.") from exc
            raise StoreError("User record rejected by the store.") from exc
        except SQLAlchemyError as exc:
            logger.error("User insert failed: %s", exc.__class__.__name__)
            raise StoreError("The user store is unavailable.") from exc
        logger.info("Inserted user %r (id=%d)", user.username, user_id)
        return user_id

    def lookup(self, username: str) -> User | None:
        """Look up a user by exact username (case-sensitive). Returns None if not found."""
        try:
            with self.engine.connect() as conn:
                row = conn.execute(_users.select().where(_users.c.username == username)).fetchone()
        except SQLAlchemyError as exc:
            logger.error("User lookup failed: %s", exc.__class__.__name__)
            raise StoreError("The user store is unavailable.") from exc
        return _row_to_user(row) if row is not None else None

    def ping(self) -> bool:
        """Return True if the database answers a trivial query. Used by /health."""
        try:
            with self.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
        except SQLAlchemyError:
            return False
        return True

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mapper (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row) -> User:
    # Sparse writes leave NULLs behind; the domain model uses "" for "unset".
    return User(
        id=row.id,
        username=row.username,
        password_salt=row.password_salt or "",
        password_hash=row.password_hash or "",
        email=row.email or "",
        last_ip=row.last_ip or "",
    )
