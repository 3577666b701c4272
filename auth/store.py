"""
auth/store.py -- Credential persistence for the authentication core.

Pattern: Repository + Data Mapper. CredentialStore is the contract the auth
service depends on; SqlCredentialStore and MemoryCredentialStore are the two
repositories behind it. _row_to_credential is the mapper. Route and service
code never touches SQL directly.

Contract:
  has_any()                 -- True iff at least one record exists
  find(username)            -- Credential or None
  add(record)               -- AlreadyExistsError on duplicate username
  update(username, record)  -- NotFoundError if absent; renames allowed;
                               AlreadyExistsError if the new name is taken

Every call reads the backing store fresh. Nothing is cached between calls.
Each write is a single transaction (SQL) or a single critical section
(memory), so two concurrent writers to one username leave one complete
record behind, never a mix of both.

I/O failures surface as CredentialStoreError. The auth service turns that
into InternalError; callers never see driver exceptions.

Security:
  All queries use bound parameters. No f-strings in SQL.

Layer rule: no imports from api/ or web/.
"""

from __future__ import annotations

import threading
from dataclasses import replace
from datetime import datetime, timezone
from typing import Protocol

from sqlalchemy import Column, Integer, MetaData, String, Table, Text, create_engine, event, select
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from auth.errors import AlreadyExistsError, NotFoundError
from auth.models import Credential

MEMORY_URL = "memory://"


class CredentialStoreError(Exception):
    """Raised when the backing store cannot be read or written."""


class CredentialStore(Protocol):
    def has_any(self) -> bool: ...

    def find(self, username: str) -> Credential | None: ...

    def add(self, record: Credential) -> None: ...

    def update(self, username: str, record: Credential) -> None: ...

    def close(self) -> None: ...


# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_credentials = Table(
    "credentials",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("username", String(255), nullable=False, unique=True),
    Column("password_hash", Text, nullable=False),
    Column("otp_secret", Text),  # NULL = password-only login
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32)),
)


# ---------------------------------------------------------------------------
# WAL mode
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode so readers are not blocked during writes.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


# ---------------------------------------------------------------------------
# SQL repository
# ---------------------------------------------------------------------------


class SqlCredentialStore:
    """SQLAlchemy Core credential repository.

    Usage:
        store = SqlCredentialStore("sqlite:///wolgate_auth.db")
        store.add(Credential(username="admin", password_hash=hash_password("secret")))
        record = store.find("admin")
        store.close()
    """

    def __init__(self, db_url: str) -> None:
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_wal_mode)
        try:
            _metadata.create_all(self.engine)
        except SQLAlchemyError as exc:
            raise CredentialStoreError("could not initialize credential store") from exc

    def has_any(self) -> bool:
        """Return True if at least one credential exists.

        Called by the route guard on every request, so it stops at the first row.
        """
        try:
            with self.engine.connect() as conn:
                row = conn.execute(select(_credentials.c.id).limit(1)).first()
        except SQLAlchemyError as exc:
            raise CredentialStoreError("credential lookup failed") from exc
        return row is not None

    def find(self, username: str) -> Credential | None:
        """Look up a credential by exact username (case-sensitive)."""
        try:
            with self.engine.connect() as conn:
                row = conn.execute(_credentials.select().where(_credentials.c.username == username)).fetchone()
        except SQLAlchemyError as exc:
            raise CredentialStoreError("credential lookup failed") from exc
        return _row_to_credential(row) if row is not None else None

    def add(self, record: Credential) -> None:
        """Insert a new credential.

        The UNIQUE constraint on username is the final arbiter when two
        first-run setups race; the loser gets AlreadyExistsError.
        """
        now = _now_iso()
        try:
            with self.engine.begin() as conn:
                conn.execute(
                    _credentials.insert().values(
                        username=record.username,
                        password_hash=record.password_hash,
                        otp_secret=record.otp_secret,
                        created_at=now,
                        updated_at=now,
                    )
                )
        except IntegrityError as exc:
            raise AlreadyExistsError() from exc
        except SQLAlchemyError as exc:
            raise CredentialStoreError("credential insert failed") from exc

    def update(self, username: str, record: Credential) -> None:
        """Replace the record stored under username with record.

        record.username may differ from username (rename). The whole row is
        written in one UPDATE inside one transaction.
        """
        try:
            with self.engine.begin() as conn:
                result = conn.execute(
                    _credentials.update()
                    .where(_credentials.c.username == username)
                    .values(
                        username=record.username,
                        password_hash=record.password_hash,
                        otp_secret=record.otp_secret,
                        updated_at=_now_iso(),
                    )
                )
        except IntegrityError as exc:
            raise AlreadyExistsError() from exc
        except SQLAlchemyError as exc:
            raise CredentialStoreError("credential update failed") from exc
        if result.rowcount == 0:
            raise NotFoundError()

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# In-memory repository
# ---------------------------------------------------------------------------


class MemoryCredentialStore:
    """Process-local credential repository.

    Backs tests and throwaway deployments (DATABASE_URL=memory://). Records
    are copied on the way in and out so callers can never mutate stored state.
    """

    def __init__(self) -> None:
        self._records: dict[str, Credential] = {}
        self._lock = threading.Lock()

    def has_any(self) -> bool:
        with self._lock:
            return bool(self._records)

    def find(self, username: str) -> Credential | None:
        with self._lock:
            record = self._records.get(username)
            return replace(record) if record is not None else None

    def add(self, record: Credential) -> None:
        with self._lock:
            if record.username in self._records:
                raise AlreadyExistsError()
            self._records[record.username] = replace(record)

    def update(self, username: str, record: Credential) -> None:
        with self._lock:
            if username not in self._records:
                raise NotFoundError()
            if record.username != username and record.username in self._records:
                raise AlreadyExistsError()
            del self._records[username]
            self._records[record.username] = replace(record)

    def close(self) -> None:
        with self._lock:
            self._records.clear()


def open_credential_store(db_url: str) -> CredentialStore:
    """Return the store implementation selected by db_url."""
    if db_url == MEMORY_URL:
        return MemoryCredentialStore()
    return SqlCredentialStore(db_url)


# ---------------------------------------------------------------------------
# Row mapper (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_credential(row) -> Credential:
    return Credential(
        username=row.username,
        password_hash=row.password_hash,
        otp_secret=row.otp_secret,
    )
