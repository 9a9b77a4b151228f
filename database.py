"""SQLAlchemy-powered data layer for the clipboard entry store."""

from __future__ import annotations

import logging
import os
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Mapping, Optional, Union
from uuid import uuid4

from sqlalchemy import Integer, Text, create_engine, delete, func, select
from sqlalchemy.engine import Connection
from sqlalchemy.exc import DatabaseError, IntegrityError, OperationalError
from sqlalchemy.orm import DeclarativeBase, Mapped, Session, mapped_column, sessionmaker

from security import hash_key, verify_key

logger = logging.getLogger(__name__)

# --------------------------------------------------------------------------------------
# Error taxonomy
# --------------------------------------------------------------------------------------


class SchemaError(RuntimeError):
    """Base class for failures while establishing the ``entries`` schema."""


class OpenError(SchemaError):
    """The database file could not be created or opened."""


class SchemaConflictError(SchemaError):
    """An ``entries`` table already exists and the initializer refused to reuse it."""


class EntryError(Exception):
    """Base class for entry store failures."""


class EntryNotFoundError(EntryError):
    def __init__(self, entry_id: str) -> None:
        super().__init__(f"No entry with id {entry_id!r}.")
        self.entry_id = entry_id


class DuplicateEntryError(EntryError):
    def __init__(self, entry_id: str) -> None:
        super().__init__(f"An entry with id {entry_id!r} already exists.")
        self.entry_id = entry_id


class InvalidEntryError(EntryError, ValueError):
    """Entry fields violate the row constraints or the key/flag pairing."""


class EntryNotEncryptedError(EntryError):
    def __init__(self, entry_id: str) -> None:
        super().__init__(f"Entry {entry_id!r} is not encrypted.")
        self.entry_id = entry_id


class KeyMismatchError(EntryError):
    def __init__(self, entry_id: str) -> None:
        super().__init__(f"Key does not match entry {entry_id!r}.")
        self.entry_id = entry_id


# --------------------------------------------------------------------------------------
# SQLAlchemy setup
# --------------------------------------------------------------------------------------

DB_PATH = Path(os.getenv("CLIPBOARD_DB_PATH", "db/clipboard.db"))
BUSY_TIMEOUT_MS = int(os.getenv("CLIPBOARD_DB_TIMEOUT_MS", "2000"))


def _build_engine(path: Path):
    return create_engine(
        f"sqlite:///{path}",
        future=True,
        connect_args={"check_same_thread": False, "timeout": BUSY_TIMEOUT_MS / 1000},
    )


engine = _build_engine(DB_PATH)
SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


def configure_database(db_path: Union[str, Path]) -> Path:
    """Point the module engine and session factory at another database file."""

    global DB_PATH, engine

    engine.dispose()
    DB_PATH = Path(db_path)
    engine = _build_engine(DB_PATH)
    SessionLocal.configure(bind=engine)
    return DB_PATH


class Base(DeclarativeBase):
    """Declarative base for all ORM models."""


class Entry(Base):
    __tablename__ = "entries"

    id: Mapped[str] = mapped_column(Text, primary_key=True, nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    encrypted: Mapped[int] = mapped_column(Integer, nullable=False)
    key: Mapped[Optional[str]] = mapped_column(Text, nullable=True)


# (name, affinity, notnull, pk) in column order.
ENTRIES_LAYOUT = (
    ("id", "TEXT", 1, 1),
    ("content", "TEXT", 1, 0),
    ("encrypted", "INTEGER", 1, 0),
    ("key", "TEXT", 0, 0),
)


# --------------------------------------------------------------------------------------
# Session helper
# --------------------------------------------------------------------------------------


@contextmanager
def session_scope() -> Iterator[Session]:
    """Provide a transactional scope around a series of operations."""

    session = SessionLocal()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


# --------------------------------------------------------------------------------------
# Schema initialization
# --------------------------------------------------------------------------------------


def _affinity(declared_type: str) -> str:
    """Collapse a declared column type to its SQLite affinity."""

    declared = (declared_type or "").upper()
    if "INT" in declared:
        return "INTEGER"
    if "CHAR" in declared or "CLOB" in declared or "TEXT" in declared:
        return "TEXT"
    if not declared or "BLOB" in declared:
        return "BLOB"
    if "REAL" in declared or "FLOA" in declared or "DOUB" in declared:
        return "REAL"
    return "NUMERIC"


def _table_info(connection: Connection) -> list[dict[str, object]]:
    rows = connection.exec_driver_sql(f"PRAGMA table_info({Entry.__tablename__})").all()
    return [
        {"name": row[1], "type": row[2], "notnull": int(row[3]), "pk": int(row[5])}
        for row in rows
    ]


def _layout_matches(columns: list[dict[str, object]]) -> bool:
    actual = tuple(
        (column["name"], _affinity(str(column["type"])), column["notnull"], column["pk"])
        for column in columns
    )
    return actual == ENTRIES_LAYOUT


def init_db(
    db_path: Union[str, Path, None] = None,
    *,
    if_not_exists: bool = True,
    create_parent: bool = False,
) -> Path:
    """Create the ``entries`` table and return the database path.

    With ``if_not_exists`` the call is a no-op when a compatible table is
    already present. Without it, an existing table is a conflict, matching a
    plain ``CREATE TABLE``. A missing parent directory is an open failure
    unless ``create_parent`` is set.
    """

    if db_path is not None:
        configure_database(db_path)
    path = DB_PATH

    if create_parent:
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise OpenError(f"Unable to create directory {path.parent}: {exc}") from exc

    try:
        connection = engine.connect()
    except DatabaseError as exc:
        raise OpenError(f"Unable to open database {path}: {exc.orig}") from exc

    with connection:
        try:
            with connection.begin():
                Base.metadata.create_all(bind=connection, checkfirst=if_not_exists)
                columns = _table_info(connection)
        except OperationalError as exc:
            if "already exists" in str(exc.orig):
                raise SchemaConflictError(f"Error: {exc.orig}") from exc
            raise OpenError(f"Unable to initialise database {path}: {exc.orig}") from exc
        except DatabaseError as exc:
            raise OpenError(f"Unable to initialise database {path}: {exc.orig}") from exc

    if not _layout_matches(columns):
        raise SchemaConflictError(
            f"Table {Entry.__tablename__!r} in {path} has an incompatible definition: "
            + ", ".join(f"{c['name']} {c['type']}" for c in columns)
        )

    logger.info("Schema ready at %s", path)
    return path


def describe_schema() -> list[dict[str, object]]:
    """Return the ``entries`` column layout in column order, or [] when absent."""

    try:
        with engine.connect() as connection:
            return _table_info(connection)
    except DatabaseError as exc:
        raise OpenError(f"Unable to open database {DB_PATH}: {exc.orig}") from exc


# --------------------------------------------------------------------------------------
# Serialization helpers
# --------------------------------------------------------------------------------------


def _serialize_entry(entry: Optional[Entry]) -> Optional[dict[str, object]]:
    """Public view of an entry; locked content is only released by ``unlock_entry``."""

    if not entry:
        return None
    return {
        "id": entry.id,
        "content": None if entry.encrypted else entry.content,
        "encrypted": bool(entry.encrypted),
    }


def _check_key_pairing(encrypted: bool, key: Optional[str]) -> None:
    if encrypted and key is None:
        raise InvalidEntryError("Encrypted entries need a key.")
    if not encrypted and key is not None:
        raise InvalidEntryError("Only encrypted entries may carry a key.")


def _flush_new_entry(session: Session, entry: Entry) -> None:
    """Add ``entry`` and surface constraint failures as store errors."""

    session.add(entry)
    try:
        session.flush()
    except IntegrityError as exc:
        message = str(exc.orig)
        if "UNIQUE" in message or "PRIMARY KEY" in message:
            raise DuplicateEntryError(entry.id) from exc
        if "NOT NULL" in message:
            raise InvalidEntryError(f"Missing required field: {message}") from exc
        raise


# --------------------------------------------------------------------------------------
# Entry helpers
# --------------------------------------------------------------------------------------


def add_entry(
    content: str,
    *,
    entry_id: Optional[str] = None,
    key: Optional[str] = None,
) -> Mapping[str, object]:
    """Store a clipboard entry, locking it behind ``key`` when one is given."""

    if key is not None and not key:
        raise InvalidEntryError("Key must not be empty.")
    if entry_id is not None and not entry_id:
        raise InvalidEntryError("Entry id must not be empty.")

    entry = Entry(
        id=entry_id or uuid4().hex,
        content=content,
        encrypted=int(key is not None),
        key=hash_key(key) if key is not None else None,
    )
    with session_scope() as session:
        _flush_new_entry(session, entry)
        logger.debug("Stored entry %s (encrypted=%s)", entry.id, bool(entry.encrypted))
        return _serialize_entry(entry)


def insert_entry_row(entry_id: str, content: str, encrypted: Union[bool, int], key: Optional[str]) -> None:
    """Insert a flat row as an external writer would, storing ``key`` verbatim."""

    _check_key_pairing(bool(encrypted), key)
    with session_scope() as session:
        _flush_new_entry(
            session,
            Entry(id=entry_id, content=content, encrypted=int(bool(encrypted)), key=key),
        )


def get_entry(entry_id: str) -> Optional[Mapping[str, object]]:
    """Fetch an entry by id without its key."""

    with session_scope() as session:
        return _serialize_entry(session.get(Entry, entry_id))


def fetch_entries(*, encrypted: Optional[bool] = None, limit: Optional[int] = None) -> list[Mapping[str, object]]:
    """Return entries ordered by id, optionally filtered by the encryption flag."""

    stmt = select(Entry).order_by(Entry.id.asc())
    if encrypted is not None:
        stmt = stmt.where(Entry.encrypted == int(encrypted))
    if limit is not None:
        stmt = stmt.limit(max(0, int(limit)))

    with session_scope() as session:
        return [_serialize_entry(entry) for entry in session.execute(stmt).scalars().all()]


def count_entries() -> int:
    with session_scope() as session:
        return session.scalar(select(func.count(Entry.id))) or 0


def unlock_entry(entry_id: str, key: str) -> str:
    """Return the content of an encrypted entry when ``key`` matches."""

    with session_scope() as session:
        entry = session.get(Entry, entry_id)
        if entry is None:
            raise EntryNotFoundError(entry_id)
        if not entry.encrypted or entry.key is None:
            raise EntryNotEncryptedError(entry_id)
        if not verify_key(key, entry.key):
            logger.warning("Rejected key for entry %s", entry_id)
            raise KeyMismatchError(entry_id)
        return entry.content


def update_entry(
    entry_id: str,
    *,
    content: Optional[str] = None,
    key: Optional[str] = None,
    clear_key: bool = False,
) -> Mapping[str, object]:
    """Update an entry with provided fields."""

    if key is not None and clear_key:
        raise InvalidEntryError("Cannot set and clear the key at once.")
    if key is not None and not key:
        raise InvalidEntryError("Key must not be empty.")

    with session_scope() as session:
        entry = session.get(Entry, entry_id)
        if entry is None:
            raise EntryNotFoundError(entry_id)
        if content is not None:
            entry.content = content
        if key is not None:
            entry.key = hash_key(key)
            entry.encrypted = 1
        if clear_key:
            entry.key = None
            entry.encrypted = 0
        return _serialize_entry(entry)


def delete_entry(entry_id: str) -> bool:
    """Delete an entry, returning whether a row was removed."""

    with session_scope() as session:
        result = session.execute(delete(Entry).where(Entry.id == entry_id))
        return bool(result.rowcount)
