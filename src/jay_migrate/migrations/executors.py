"""Executors that run migration bodies, one per supported database dialect."""

import json
import logging
import sqlite3
from collections.abc import Callable
from pathlib import Path
from typing import Any

from tinydb import Query, TinyDB
from tinydb.operations import delete

from .base import Executor, PositionTracker
from .errors import ExecutionError, StorageError
from .tracker import MySQLPositionTracker, SQLitePositionTracker, TinyDBPositionTracker

logger = logging.getLogger(__name__)

OPEN_TRANSACTION = "Body left a transaction open; end it with COMMIT"


class SQLiteExecutor(Executor):
    """Runs SQL scripts against a SQLite database file."""

    dialect = "sqlite"
    extension = "sql"

    def __init__(self, database: str, timeout: float = 5.0):
        """
        Open the database.

        Args:
            database: Path to the database file, or ``:memory:``
            timeout: Seconds to wait for another connection's write lock

        Raises:
            StorageError: If the database cannot be opened
        """
        self.database = database
        try:
            # Autocommit mode: transactions are opened explicitly by the
            # tracker or by the migration bodies themselves.
            self.conn = sqlite3.connect(database, timeout=timeout, isolation_level=None)
        except sqlite3.Error as e:
            raise StorageError(f"Could not open SQLite database {database}: {e}") from e

    def execute(self, body: str) -> None:
        try:
            self.conn.executescript(body)
        except sqlite3.Error as e:
            if self.conn.in_transaction:
                self.conn.rollback()
            raise ExecutionError(str(e)) from e

        if self.conn.in_transaction:
            self.conn.rollback()
            raise ExecutionError(OPEN_TRANSACTION)

    def tracker(self, table: str) -> PositionTracker:
        return SQLitePositionTracker(self.conn, table)

    def close(self) -> None:
        self.conn.close()


class MySQLExecutor(Executor):
    """
    Runs SQL scripts against a MySQL or MariaDB database.

    Uses ``mysql.connector`` from the ``mysql-connector-python`` package::

        pip install 'jay-migrate[mysql]'

    The driver is imported when the executor is opened, so the other
    dialects work without it installed. MySQL commits DDL statements
    implicitly; when a body fails, the statements before the failing one
    stay applied.
    """

    dialect = "mysql"
    extension = "sql"

    def __init__(
        self,
        database: str,
        host: str = "127.0.0.1",
        port: int = 3306,
        user: str | None = None,
        password: str | None = None,
        timeout: int = 10,
    ):
        """
        Connect to the database.

        Args:
            database: Database (schema) name
            host: Server host name
            port: Server port
            user: Account name
            password: Account password
            timeout: Seconds to wait for the connection

        Raises:
            StorageError: If the driver is missing or the server cannot be reached
        """
        self.database = database
        try:
            import mysql.connector
        except ImportError:
            raise StorageError(
                "mysql-connector-python is required for the mysql dialect. "
                "Install with: pip install 'jay-migrate[mysql]'"
            ) from None

        self.errors: tuple[type[Exception], ...] = (mysql.connector.Error,)
        options: dict[str, Any] = {
            "host": host,
            "port": port,
            "database": database,
            "autocommit": True,
            "connection_timeout": timeout,
        }
        if user is not None:
            options["user"] = user
        if password is not None:
            options["password"] = password

        try:
            self.conn = mysql.connector.connect(**options)
        except mysql.connector.Error as e:
            raise StorageError(
                f"Could not connect to MySQL database {database} on {host}:{port}: {e}"
            ) from e

    def execute(self, body: str) -> None:
        cursor = self.conn.cursor()
        try:
            # Every statement of the script yields its own result; stepping
            # through them surfaces errors raised by later statements.
            cursor.execute(body)
            while True:
                if cursor.with_rows:
                    cursor.fetchall()
                if not cursor.nextset():
                    break
        except self.errors as e:
            if self.conn.in_transaction:
                self.conn.rollback()
            raise ExecutionError(str(e)) from e
        finally:
            cursor.close()

        if self.conn.in_transaction:
            self.conn.rollback()
            raise ExecutionError(OPEN_TRANSACTION)

    def tracker(self, table: str) -> PositionTracker:
        return MySQLPositionTracker(self.conn, table, self.errors)

    def close(self) -> None:
        self.conn.close()


class TinyDBExecutor(Executor):
    """
    Applies JSON operation documents to a TinyDB database.

    A body is one JSON object or a list of them, applied in order. Supported
    operations::

        {"op": "insert", "table": "users", "documents": [{...}, ...]}
        {"op": "add_field", "table": "users", "field": "email", "default": ""}
        {"op": "remove_field", "table": "users", "field": "email"}
        {"op": "rename_field", "table": "users", "from": "mail", "to": "email"}
        {"op": "drop_table", "table": "users"}

    TinyDB has no transactions; operations that ran before a failing one
    stay applied.
    """

    dialect = "tinydb"
    extension = "json"

    def __init__(self, database: str):
        """
        Open the database.

        Args:
            database: Path to the TinyDB JSON file (created if missing)

        Raises:
            StorageError: If the file cannot be opened or is not valid JSON
        """
        self.database = database
        try:
            Path(database).parent.mkdir(parents=True, exist_ok=True)
            self.db = TinyDB(database, indent=2)
        except (OSError, ValueError) as e:
            raise StorageError(f"Could not open TinyDB database {database}: {e}") from e

        self._operations: dict[str, Callable[[dict[str, Any]], None]] = {
            "insert": self._insert,
            "add_field": self._add_field,
            "remove_field": self._remove_field,
            "rename_field": self._rename_field,
            "drop_table": self._drop_table,
        }

    def _insert(self, operation: dict[str, Any]) -> None:
        documents = operation["documents"]
        if not isinstance(documents, list):
            raise TypeError("'documents' must be a list")
        self.db.table(operation["table"]).insert_multiple(documents)

    def _add_field(self, operation: dict[str, Any]) -> None:
        field = operation["field"]
        self.db.table(operation["table"]).update(
            {field: operation.get("default")}, ~(Query()[field].exists())
        )

    def _remove_field(self, operation: dict[str, Any]) -> None:
        field = operation["field"]
        self.db.table(operation["table"]).update(delete(field), Query()[field].exists())

    def _rename_field(self, operation: dict[str, Any]) -> None:
        old, new = operation["from"], operation["to"]

        def transform(document: dict) -> None:
            document[new] = document.pop(old)

        self.db.table(operation["table"]).update(transform, Query()[old].exists())

    def _drop_table(self, operation: dict[str, Any]) -> None:
        self.db.drop_table(operation["table"])

    def execute(self, body: str) -> None:
        try:
            operations = json.loads(body)
        except json.JSONDecodeError as e:
            raise ExecutionError(f"Body is not valid JSON: {e}") from e

        if isinstance(operations, dict):
            operations = [operations]
        if not isinstance(operations, list):
            raise ExecutionError("Body must be a JSON object or a list of objects")

        for index, operation in enumerate(operations, start=1):
            if not isinstance(operation, dict):
                raise ExecutionError(f"Operation {index} is not a JSON object")
            op = operation.get("op")
            handler = self._operations.get(op) if isinstance(op, str) else None
            if handler is None:
                raise ExecutionError(f"Operation {index} has unknown op: {operation.get('op')!r}")
            try:
                handler(operation)
            except KeyError as e:
                raise ExecutionError(f"Operation {index} ({operation['op']}) is missing {e}") from e
            except (TypeError, ValueError, OSError) as e:
                raise ExecutionError(f"Operation {index} ({operation['op']}) failed: {e}") from e
            logger.debug(f"Applied {operation['op']} on {operation.get('table')}")

    def tracker(self, table: str) -> PositionTracker:
        return TinyDBPositionTracker(self.db, table)

    def close(self) -> None:
        self.db.close()


EXECUTORS: dict[str, type[Executor]] = {
    SQLiteExecutor.dialect: SQLiteExecutor,
    TinyDBExecutor.dialect: TinyDBExecutor,
    MySQLExecutor.dialect: MySQLExecutor,
}


def create_executor(dialect: str, database: str, **options: Any) -> Executor:
    """
    Open an executor for a configured dialect.

    Args:
        dialect: One of the keys of ``EXECUTORS``
        database: Database location understood by that executor
        **options: Connection settings for server dialects (host, port, user, password)

    Returns:
        Connected executor

    Raises:
        ValueError: If the dialect is not supported
        StorageError: If the database cannot be opened
    """
    executor_class = EXECUTORS.get(dialect)
    if executor_class is None:
        supported = ", ".join(sorted(EXECUTORS))
        raise ValueError(f"Unsupported dialect '{dialect}' (supported: {supported})")
    return executor_class(database, **options)
