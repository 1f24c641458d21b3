"""Tests for the MySQL dialect, run against a SQLite-backed stand-in connection."""

import re
import sqlite3
import sys
from pathlib import Path

import pytest

from jay_migrate.migrations import (
    EXECUTORS,
    ConcurrentModificationError,
    ExecutionError,
    MigrationRunner,
    MySQLExecutor,
    MySQLPositionTracker,
    StorageError,
    create_executor,
)


class DriverError(Exception):
    """Stands in for ``mysql.connector.Error`` when the driver is not needed."""


# MySQL-only syntax mapped onto SQLite
REWRITES = [
    (re.compile(r"\s+FOR UPDATE$"), ""),
    (re.compile(r"^START TRANSACTION$"), "BEGIN IMMEDIATE"),
    (re.compile(r"^INSERT IGNORE"), "INSERT OR IGNORE"),
    (re.compile(r"\s*ENGINE=InnoDB$"), ""),
]


class FakeCursor:
    def __init__(self, conn: "FakeConnection"):
        self.conn = conn
        self.with_rows = False
        try:
            self._cursor = conn.raw.cursor()
        except sqlite3.Error as e:
            raise conn.error(str(e)) from e

    def execute(self, sql: str, params: tuple = ()) -> None:
        statement = sql.strip()
        self.conn.statements.append(statement)
        for pattern, replacement in REWRITES:
            statement = pattern.sub(replacement, statement)
        try:
            self._cursor.execute(statement.replace("%s", "?"), params)
        except sqlite3.Error as e:
            raise self.conn.error(str(e)) from e
        self.with_rows = self._cursor.description is not None

    @property
    def rowcount(self) -> int:
        return self._cursor.rowcount

    def fetchone(self):
        return self._cursor.fetchone()

    def fetchall(self):
        return self._cursor.fetchall()

    def nextset(self) -> None:
        return None

    def close(self) -> None:
        self._cursor.close()


class FakeConnection:
    """Autocommit connection with the parts of the mysql.connector API the dialect uses."""

    def __init__(self, path: Path, error: type[Exception] = DriverError):
        self.raw = sqlite3.connect(str(path), isolation_level=None)
        self.error = error
        self.statements: list[str] = []

    def cursor(self, buffered: bool = False) -> FakeCursor:
        return FakeCursor(self)

    @property
    def in_transaction(self) -> bool:
        return self.raw.in_transaction

    def commit(self) -> None:
        self.raw.commit()

    def rollback(self) -> None:
        self.raw.rollback()

    def close(self) -> None:
        self.raw.close()


@pytest.fixture
def conn(database_path: Path):
    conn = FakeConnection(database_path)
    yield conn
    conn.close()


def _tracker(conn: FakeConnection) -> MySQLPositionTracker:
    return MySQLPositionTracker(conn, "migration", (DriverError,))


class TestMySQLPositionTracker:
    """Tests for the MySQL tracking table."""

    def test_creates_table(self, conn: FakeConnection) -> None:
        """Test the tracking table and its single row are created on first use."""
        assert _tracker(conn).current() is None

        assert conn.statements[0].startswith("CREATE TABLE IF NOT EXISTS migration")
        assert conn.statements[0].endswith("ENGINE=InnoDB")
        assert conn.statements[1] == "INSERT IGNORE INTO migration (id) VALUES (1)"

    def test_advance_and_retreat(self, conn: FakeConnection) -> None:
        """Test writes are visible to a fresh tracker."""
        tracker = _tracker(conn)

        tracker.advance("20160630_020000.000000", expected=None)
        tracker.retreat(None, expected="20160630_020000.000000")
        tracker.advance("20160630_020000.000000", expected=None)

        assert _tracker(conn).current() == "20160630_020000.000000"

    def test_write_locks_tracking_row(self, conn: FakeConnection) -> None:
        """Test the compare-and-set reads the row with FOR UPDATE inside a transaction."""
        _tracker(conn).advance("0001", expected=None)

        index = conn.statements.index("START TRANSACTION")
        assert conn.statements[index + 1] == "SELECT sequence FROM migration WHERE id = 1 FOR UPDATE"
        assert conn.statements[index + 2].startswith("UPDATE migration SET sequence = %s")
        assert not conn.in_transaction

    def test_compare_and_set(self, conn: FakeConnection) -> None:
        """Test a stale expected position is rejected and the transaction rolled back."""
        tracker = _tracker(conn)
        tracker.advance("0001", expected=None)

        with pytest.raises(ConcurrentModificationError, match="expected none, found 0001"):
            tracker.advance("0002", expected=None)

        assert not conn.in_transaction
        assert tracker.current() == "0001"

    def test_second_holder_rejected(self, conn: FakeConnection, database_path: Path) -> None:
        """Test only one connection can hold the run lock."""
        other = FakeConnection(database_path)
        try:
            with _tracker(conn).hold():
                with pytest.raises(ConcurrentModificationError, match="locked by"):
                    with _tracker(other).hold():
                        pass
            with _tracker(other).hold():
                pass
        finally:
            other.close()

    def test_driver_errors_are_storage_errors(self, database_path: Path) -> None:
        """Test a dead connection surfaces as a storage error."""
        conn = FakeConnection(database_path)
        tracker = _tracker(conn)
        conn.close()

        with pytest.raises(StorageError):
            tracker.current()


class TestMySQLExecutor:
    """Tests for opening the MySQL dialect."""

    def test_registered(self) -> None:
        """Test the dialect is known without importing the driver."""
        assert EXECUTORS["mysql"] is MySQLExecutor
        assert MySQLExecutor.extension == "sql"

    def test_missing_driver(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Test a clear error when mysql-connector-python is not installed."""
        monkeypatch.setitem(sys.modules, "mysql.connector", None)

        with pytest.raises(StorageError, match="pip install 'jay-migrate\\[mysql\\]'"):
            create_executor("mysql", "app", host="db", port=3306, user="root", password=None)


class TestMySQLExecutorWithDriver:
    """Tests that go through mysql.connector with the connection replaced."""

    @pytest.fixture
    def connector(self, monkeypatch: pytest.MonkeyPatch, database_path: Path):
        connector = pytest.importorskip("mysql.connector")
        calls = []

        def connect(**options):
            calls.append(options)
            return FakeConnection(database_path, error=connector.Error)

        monkeypatch.setattr(connector, "connect", connect)
        return calls

    def test_connect_options(self, connector) -> None:
        """Test autocommit is on and unset credentials are left to the driver."""
        with create_executor("mysql", "app", host="db", port=3307, user=None, password=None):
            pass

        assert connector == [
            {
                "host": "db",
                "port": 3307,
                "database": "app",
                "autocommit": True,
                "connection_timeout": 10,
            }
        ]

    def test_unreachable_server(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Test connection failures are storage errors."""
        connector = pytest.importorskip("mysql.connector")

        def refuse(**options):
            raise connector.Error("Can't connect to MySQL server")

        monkeypatch.setattr(connector, "connect", refuse)

        with pytest.raises(StorageError, match="Could not connect to MySQL database app on db:3306"):
            MySQLExecutor("app", host="db")

    def test_failing_body(self, connector) -> None:
        """Test driver errors from a body become execution errors."""
        with MySQLExecutor("app") as executor:
            with pytest.raises(ExecutionError, match="no such table"):
                executor.execute("DROP TABLE missing")

    def test_unterminated_transaction(self, connector) -> None:
        """Test a body that leaves a transaction open is rolled back and rejected."""
        with MySQLExecutor("app") as executor:
            with pytest.raises(ExecutionError, match="transaction open"):
                executor.execute("START TRANSACTION")

            assert not executor.conn.in_transaction

    def test_runner(self, connector, write_migration, migration_folder: Path) -> None:
        """Test a full up and down cycle through the MySQL dialect."""
        write_migration("0001", "create_users", "CREATE TABLE users (id INTEGER)", "DROP TABLE users")
        write_migration(
            "0002",
            "add_email",
            "ALTER TABLE users ADD COLUMN email TEXT",
            "ALTER TABLE users DROP COLUMN email",
        )

        with MySQLExecutor("app") as executor:
            runner = MigrationRunner(
                executor, executor.tracker("migration"), migration_folder, extension="sql"
            )

            result = runner.up_all()
            assert result.ok
            assert runner.tracker.current() == "0002"

            result = runner.down_all()
            assert result.ok
            assert runner.tracker.current() is None
            assert runner.tracker.release() is False
