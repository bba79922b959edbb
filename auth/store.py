"""
auth/store.py -- SQLAlchemy Core persistence layer for credentials and refresh tokens.

Pattern: Repository + Data Mapper. UserStore is the repository;
_row_to_credential / _row_to_refresh_token are the mappers. Services never
touch SQL directly -- they depend on the CredentialStore protocol below.

Security:
  All queries use bound parameters. No f-strings in SQL.

  UNIQUE(username), UNIQUE(email), and UNIQUE(token_hash) are enforced in the
  schema. The service-level existence checks exist only to produce a
  friendlier error; the constraint is what actually stops a concurrent
  duplicate registration, and it surfaces here as AlreadyExists.

Transactions:
  Every method on UserStore runs in its own short transaction
  (engine.begin(), auto-commit on exit). transaction() hands out a
  _BoundStore that runs every call on one connection and commits once at the
  end. Writes made through it (rotation's revoke+create) commit or roll back
  together. Under pysqlite the transaction only opens at the first write, so
  reads that precede it (registration's existence checks) are not isolated
  from concurrent writers.

Timestamps are stored as ISO 8601 UTC strings with microseconds so that
lexicographic comparison in SQL matches chronological order.

The database URL comes from the caller (Settings.database_url in the app and CLI).

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import AbstractContextManager, contextmanager, nullcontext
from datetime import datetime, timezone
from typing import Protocol

from sqlalchemy import Column, Integer, MetaData, String, Table, Text, create_engine, event, select, text
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from auth.errors import AlreadyExists, StorageError
from auth.ids import new_id
from auth.models import Credential, RefreshToken

logger = logging.getLogger("authgate.auth.store")

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("id", String(36), primary_key=True),
    Column("username", String(50), nullable=False, unique=True),
    Column("email", String(255), nullable=False, unique=True),
    Column("password_hash", Text, nullable=False),
    Column("created_at", String(32), nullable=False),
)

_refresh_tokens = Table(
    "refresh_tokens",
    _metadata,
    Column("id", String(36), primary_key=True),
    Column("user_id", String(36), nullable=False, index=True),
    Column("token_hash", String(64), nullable=False, unique=True),  # SHA-256 hex
    Column("expires_at", String(32), nullable=False, index=True),
    Column("revoked", Integer, nullable=False, server_default="0", index=True),
    Column("created_at", String(32), nullable=False),
)


# ---------------------------------------------------------------------------
# Contract
# ---------------------------------------------------------------------------


class CredentialStore(Protocol):
    """Persistence operations the auth services depend on.

    All operations are atomic at the single-row level. Implementations must
    raise AlreadyExists for a duplicate credential and StorageError for any
    other persistence failure.
    """

    def create_credential(self, credential: Credential) -> Credential: ...

    def exists_username(self, username: str) -> bool: ...

    def exists_email(self, email: str) -> bool: ...

    def find_by_username(self, username: str) -> Credential | None: ...

    def find_by_id(self, credential_id: str) -> Credential | None: ...

    def create_refresh_token(self, token: RefreshToken) -> RefreshToken: ...

    def find_by_hash(self, token_hash: str) -> RefreshToken | None: ...

    def revoke_by_hash(self, token_hash: str) -> bool: ...

    def revoke_all_for_credential(self, credential_id: str) -> int: ...

    def purge_refresh_tokens(self, now: datetime) -> int: ...

    def transaction(self) -> AbstractContextManager[CredentialStore]: ...


# ---------------------------------------------------------------------------
# WAL mode
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode for concurrent read safety.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _to_iso(value: datetime) -> str:
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def _from_iso(value: str) -> datetime:
    return datetime.fromisoformat(value)


def _now() -> datetime:
    return datetime.now(timezone.utc)


@contextmanager
def _translate_errors(operation: str) -> Iterator[None]:
    """Map SQLAlchemy failures onto the auth error taxonomy."""
    try:
        yield
    except IntegrityError as exc:
        if operation == "create_credential":
            raise AlreadyExists("username or email already exists") from exc
        logger.error("Integrity error during %s", operation)
        raise StorageError(f"{operation} violated a storage constraint") from exc
    except SQLAlchemyError as exc:
        logger.error("Database error during %s: %s", operation, exc.__class__.__name__)
        raise StorageError(f"{operation} failed") from exc


# ---------------------------------------------------------------------------
# Queries (shared by UserStore and _BoundStore)
# ---------------------------------------------------------------------------


class _StoreQueries:
    """Query implementations. Subclasses decide which connection to run on."""

    def _connect(self) -> AbstractContextManager[Connection]:
        raise NotImplementedError

    # ------------------------------------------------------------------
    # Credentials
    # ------------------------------------------------------------------

    def create_credential(self, credential: Credential) -> Credential:
        """Insert a credential and return it with id and created_at filled in.

        Raises AlreadyExists if the username or email is taken (UNIQUE
        constraint), including when a concurrent request won the race.
        """
        credential_id = credential.id or new_id()
        created_at = credential.created_at or _now()
        with _translate_errors("create_credential"), self._connect() as conn:
            conn.execute(
                _users.insert().values(
                    id=credential_id,
                    username=credential.username,
                    email=credential.email,
                    password_hash=credential.password_hash,
                    created_at=_to_iso(created_at),
                )
            )
        return Credential(
            id=credential_id,
            username=credential.username,
            email=credential.email,
            password_hash=credential.password_hash,
            created_at=created_at,
        )

    def exists_username(self, username: str) -> bool:
        with _translate_errors("exists_username"), self._connect() as conn:
            row = conn.execute(select(_users.c.id).where(_users.c.username == username).limit(1)).first()
        return row is not None

    def exists_email(self, email: str) -> bool:
        with _translate_errors("exists_email"), self._connect() as conn:
            row = conn.execute(select(_users.c.id).where(_users.c.email == email).limit(1)).first()
        return row is not None

    def find_by_username(self, username: str) -> Credential | None:
        """Look up a credential by exact username (case-sensitive)."""
        with _translate_errors("find_by_username"), self._connect() as conn:
            row = conn.execute(_users.select().where(_users.c.username == username)).fetchone()
        return _row_to_credential(row) if row is not None else None

    def find_by_id(self, credential_id: str) -> Credential | None:
        with _translate_errors("find_by_id"), self._connect() as conn:
            row = conn.execute(_users.select().where(_users.c.id == credential_id)).fetchone()
        return _row_to_credential(row) if row is not None else None

    # ------------------------------------------------------------------
    # Refresh tokens
    # ------------------------------------------------------------------

    def create_refresh_token(self, token: RefreshToken) -> RefreshToken:
        """Insert a new Active refresh token and return it with id/created_at set."""
        token_id = token.id or new_id()
        created_at = token.created_at or _now()
        with _translate_errors("create_refresh_token"), self._connect() as conn:
            conn.execute(
                _refresh_tokens.insert().values(
                    id=token_id,
                    user_id=token.credential_id,
                    token_hash=token.token_hash,
                    expires_at=_to_iso(token.expires_at),
                    revoked=0,
                    created_at=_to_iso(created_at),
                )
            )
        return RefreshToken(
            id=token_id,
            credential_id=token.credential_id,
            token_hash=token.token_hash,
            expires_at=token.expires_at,
            revoked=False,
            created_at=created_at,
        )

    def find_by_hash(self, token_hash: str) -> RefreshToken | None:
        """Look up a non-revoked refresh token by hash. O(1) via UNIQUE index.

        Expired-but-not-revoked rows ARE returned; the caller decides what to
        do with them (the rotator revokes them).
        """
        with _translate_errors("find_by_hash"), self._connect() as conn:
            row = conn.execute(
                _refresh_tokens.select().where(
                    (_refresh_tokens.c.token_hash == token_hash) & (_refresh_tokens.c.revoked == 0)
                )
            ).fetchone()
        return _row_to_refresh_token(row) if row is not None else None

    def revoke_by_hash(self, token_hash: str) -> bool:
        """Mark a refresh token revoked.

        Unknown or already-revoked hashes are a no-op, not an error. Returns
        True only if this call flipped an Active/Expired row to Revoked, which
        lets the rotator detect that a concurrent rotation got there first.
        """
        with _translate_errors("revoke_by_hash"), self._connect() as conn:
            result = conn.execute(
                _refresh_tokens.update()
                .where((_refresh_tokens.c.token_hash == token_hash) & (_refresh_tokens.c.revoked == 0))
                .values(revoked=1)
            )
        return result.rowcount > 0

    def revoke_all_for_credential(self, credential_id: str) -> int:
        """Revoke every Active token of a credential. Returns the number revoked."""
        with _translate_errors("revoke_all_for_credential"), self._connect() as conn:
            result = conn.execute(
                _refresh_tokens.update()
                .where((_refresh_tokens.c.user_id == credential_id) & (_refresh_tokens.c.revoked == 0))
                .values(revoked=1)
            )
        return result.rowcount

    def purge_refresh_tokens(self, now: datetime) -> int:
        """Delete expired or revoked rows. Returns number of rows removed."""
        with _translate_errors("purge_refresh_tokens"), self._connect() as conn:
            result = conn.execute(
                _refresh_tokens.delete().where(
                    (_refresh_tokens.c.expires_at < _to_iso(now)) | (_refresh_tokens.c.revoked == 1)
                )
            )
        return result.rowcount


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class UserStore(_StoreQueries):
    """Repository for Credential and RefreshToken entities.

    Usage:
        store = UserStore(settings.database_url)
        store.create_credential(Credential(username="alice", email="a@x.com", password_hash=h))
        with store.transaction() as tx:
            tx.revoke_by_hash(old_hash)
            tx.create_refresh_token(new_token)
        store.close()
    """

    def __init__(self, db_url: str) -> None:
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_wal_mode)
        _metadata.create_all(self.engine)

    def _connect(self) -> AbstractContextManager[Connection]:
        return self.engine.begin()

    @contextmanager
    def transaction(self) -> Iterator[CredentialStore]:
        """Run a sequence of store calls in one DB transaction.

        Commits when the block exits normally; rolls back if it raises.
        """
        with _translate_errors("transaction"), self.engine.begin() as conn:
            yield _BoundStore(conn)

    def ping(self) -> bool:
        """Return True if the database answers a trivial query."""
        try:
            with self.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
        except SQLAlchemyError:
            logger.exception("Database health check failed")
            return False
        return True

    def close(self) -> None:
        self.engine.dispose()


class _BoundStore(_StoreQueries):
    """Store view pinned to one open transaction (see UserStore.transaction)."""

    def __init__(self, conn: Connection) -> None:
        self._conn = conn

    def _connect(self) -> AbstractContextManager[Connection]:
        return nullcontext(self._conn)

    @contextmanager
    def transaction(self) -> Iterator[CredentialStore]:
        # Already inside a transaction; nested blocks join it.
        yield self


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_credential(row) -> Credential:
    return Credential(
        id=row.id,
        username=row.username,
        email=row.email,
        password_hash=row.password_hash,
        created_at=_from_iso(row.created_at),
    )


def _row_to_refresh_token(row) -> RefreshToken:
    return RefreshToken(
        id=row.id,
        credential_id=row.user_id,
        token_hash=row.token_hash,
        expires_at=_from_iso(row.expires_at),
        revoked=bool(row.revoked),
        created_at=_from_iso(row.created_at),
    )
