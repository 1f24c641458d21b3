"""Position trackers that keep the migration position inside the target database."""

import logging
import os
import re
import socket
import sqlite3
import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any

from tinydb import TinyDB
from tinydb.table import Document

from .base import PositionTracker
from .errors import ConcurrentModificationError, StorageError
from .store import is_valid_sequence

logger = logging.getLogger(__name__)

IDENTIFIER_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _parse_position(value: object, table: str) -> str | None:
    """Validate a stored position value."""
    if value is None or value == "":
        return None
    if isinstance(value, int) and not isinstance(value, bool):
        value = str(value)
    if not isinstance(value, str) or not is_valid_sequence(value):
        raise StorageError(f"Tracking record in '{table}' is corrupt: {value!r}")
    return value


def _mismatch(table: str, expected: str | None, stored: str | None) -> ConcurrentModificationError:
    return ConcurrentModificationError(
        f"Position in '{table}' changed during the run: "
        f"expected {expected or 'none'}, found {stored or 'none'}"
    )


def _check_table_name(table: str) -> None:
    if not IDENTIFIER_RE.match(table):
        raise ValueError(f"Invalid migration table name: {table!r}")


class SQLPositionTracker(PositionTracker):
    """
    Tracks the position in a single-row table of a SQL database.

    The row also carries the run lock: ``hold()`` claims it with an atomic
    conditional UPDATE, and every position write is a compare-and-set inside
    a write transaction. Subclasses provide the dialect's statements and
    driver error types.

    Statements are written with ``?`` placeholders and rewritten to the
    driver's marker when it differs.
    """

    placeholder = "?"
    begin = "BEGIN"
    lock_clause = ""
    create_table = ""
    insert_row = ""
    errors: tuple[type[Exception], ...] = ()

    def __init__(self, conn: Any, table: str):
        """
        Initialize tracker.

        Args:
            conn: DB-API connection in autocommit mode
            table: Name of the tracking table
        """
        _check_table_name(table)
        self.conn = conn
        self.table = table
        self.owner = f"{socket.gethostname()}:{os.getpid()}:{uuid.uuid4().hex[:8]}"
        self._ready = False

    def _cursor(self) -> Any:
        return self.conn.cursor()

    def _execute(self, sql: str, params: tuple = ()) -> Any:
        if self.placeholder != "?":
            sql = sql.replace("?", self.placeholder)
        cursor = self._cursor()
        cursor.execute(sql, params)
        return cursor

    @contextmanager
    def _transaction(self) -> Iterator[None]:
        self._execute(self.begin)
        try:
            yield
        except BaseException:
            self.conn.rollback()
            raise
        else:
            self.conn.commit()

    def _ensure_table(self) -> None:
        if self._ready:
            return
        try:
            self._execute(self.create_table.format(table=self.table))
            self._execute(self.insert_row.format(table=self.table))
        except self.errors as e:
            raise StorageError(f"Could not create migration table '{self.table}': {e}") from e
        self._ready = True

    def _stored(self, for_update: bool = False) -> str | None:
        sql = f"SELECT sequence FROM {self.table} WHERE id = 1"
        if for_update:
            sql += self.lock_clause
        row = self._execute(sql).fetchone()
        if row is None:
            raise StorageError(f"Tracking record missing from '{self.table}'")
        return _parse_position(row[0], self.table)

    def current(self) -> str | None:
        self._ensure_table()
        try:
            return self._stored()
        except self.errors as e:
            raise StorageError(f"Could not read migration position: {e}") from e

    def _write(self, sequence: str | None, expected: str | None) -> None:
        self._ensure_table()
        try:
            with self._transaction():
                stored = self._stored(for_update=True)
                if stored != expected:
                    raise _mismatch(self.table, expected, stored)
                self._execute(
                    f"UPDATE {self.table} SET sequence = ?, updated_at = ? WHERE id = 1",
                    (sequence, _now()),
                )
        except self.errors as e:
            raise StorageError(f"Could not write migration position: {e}") from e
        logger.debug(f"Position in '{self.table}' moved {expected or 'none'} -> {sequence or 'none'}")

    def advance(self, sequence: str, *, expected: str | None) -> None:
        self._write(sequence, expected)

    def retreat(self, sequence: str | None, *, expected: str | None) -> None:
        self._write(sequence, expected)

    @contextmanager
    def hold(self) -> Iterator[None]:
        self._ensure_table()
        try:
            cursor = self._execute(
                f"UPDATE {self.table} SET locked_by = ?, locked_at = ? "
                "WHERE id = 1 AND locked_by IS NULL",
                (self.owner, _now()),
            )
            claimed = cursor.rowcount == 1
            holder = None
            if not claimed:
                holder = self._execute(
                    f"SELECT locked_by, locked_at FROM {self.table} WHERE id = 1"
                ).fetchone()
        except self.errors as e:
            raise StorageError(f"Could not lock migration table '{self.table}': {e}") from e

        if not claimed:
            locked_by, locked_at = holder if holder else (None, None)
            raise ConcurrentModificationError(
                f"Migration table '{self.table}' is locked by {locked_by} since {locked_at}. "
                "If that run is no longer alive, clear the lock with 'jay unlock'."
            )

        logger.debug(f"Acquired migration lock as {self.owner}")
        try:
            yield
        finally:
            try:
                # An unfinished transaction would swallow the release.
                if self.conn.in_transaction:
                    self.conn.rollback()
                self._execute(
                    f"UPDATE {self.table} SET locked_by = NULL, locked_at = NULL "
                    "WHERE id = 1 AND locked_by = ?",
                    (self.owner,),
                )
                logger.debug("Released migration lock")
            except self.errors as e:
                logger.warning(f"Could not release migration lock on '{self.table}': {e}")

    def release(self) -> bool:
        self._ensure_table()
        try:
            cursor = self._execute(
                f"UPDATE {self.table} SET locked_by = NULL, locked_at = NULL "
                "WHERE id = 1 AND locked_by IS NOT NULL"
            )
        except self.errors as e:
            raise StorageError(f"Could not unlock migration table '{self.table}': {e}") from e
        return cursor.rowcount == 1


class SQLitePositionTracker(SQLPositionTracker):
    """
    Tracks the position in a SQLite table.

    Expects a connection opened with ``isolation_level=None``. Position
    writes take the database write lock up front with ``BEGIN IMMEDIATE``.
    """

    begin = "BEGIN IMMEDIATE"
    create_table = """
        CREATE TABLE IF NOT EXISTS {table} (
            id INTEGER PRIMARY KEY CHECK (id = 1),
            sequence TEXT,
            locked_by TEXT,
            locked_at TEXT,
            updated_at TEXT
        )
    """
    insert_row = "INSERT OR IGNORE INTO {table} (id) VALUES (1)"
    errors = (sqlite3.Error,)


class MySQLPositionTracker(SQLPositionTracker):
    """
    Tracks the position in a MySQL table.

    Position writes lock the tracking row with ``SELECT ... FOR UPDATE``
    before comparing it.
    """

    placeholder = "%s"
    begin = "START TRANSACTION"
    lock_clause = " FOR UPDATE"
    create_table = """
        CREATE TABLE IF NOT EXISTS {table} (
            id TINYINT NOT NULL PRIMARY KEY,
            sequence VARCHAR(32) NULL,
            locked_by VARCHAR(255) NULL,
            locked_at VARCHAR(40) NULL,
            updated_at VARCHAR(40) NULL
        ) ENGINE=InnoDB
    """
    insert_row = "INSERT IGNORE INTO {table} (id) VALUES (1)"

    def __init__(self, conn: Any, table: str, errors: tuple[type[Exception], ...]):
        """
        Initialize tracker.

        Args:
            conn: ``mysql.connector`` connection with autocommit enabled
            table: Name of the tracking table
            errors: Driver exception types to report as storage errors
        """
        super().__init__(conn, table)
        self.errors = errors

    def _cursor(self) -> Any:
        return self.conn.cursor(buffered=True)


class TinyDBPositionTracker(PositionTracker):
    """
    Tracks the position in a TinyDB table.

    The position lives in a single document with doc_id=1. TinyDB offers no
    locking, so concurrent runs are detected by re-reading the document
    right before each write.
    """

    def __init__(self, db: TinyDB, table: str):
        """
        Initialize tracker.

        Args:
            db: TinyDB database instance
            table: Name of the tracking table
        """
        _check_table_name(table)
        self.db = db
        self.table = table
        self.records = db.table(table)

    def current(self) -> str | None:
        try:
            result = self.records.get(doc_id=1)
        except (OSError, ValueError) as e:
            raise StorageError(f"Could not read migration position: {e}") from e
        if result and isinstance(result, dict):
            return _parse_position(result.get("sequence"), self.table)
        return None

    def _write(self, sequence: str | None, expected: str | None) -> None:
        stored = self.current()
        if stored != expected:
            raise _mismatch(self.table, expected, stored)

        data = {"sequence": sequence, "updated_at": _now()}
        try:
            if self.records.get(doc_id=1):
                self.records.update(data, doc_ids=[1])
            else:
                self.records.insert(Document(data, doc_id=1))
        except (OSError, ValueError) as e:
            raise StorageError(f"Could not write migration position: {e}") from e
        logger.debug(f"Position in '{self.table}' moved {expected or 'none'} -> {sequence or 'none'}")

    def advance(self, sequence: str, *, expected: str | None) -> None:
        self._write(sequence, expected)

    def retreat(self, sequence: str | None, *, expected: str | None) -> None:
        self._write(sequence, expected)
