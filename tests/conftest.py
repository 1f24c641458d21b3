"""Shared fixtures for jay-migrate tests."""

from collections.abc import Callable, Iterator
from pathlib import Path

import pytest

from jay_migrate.migrations import MigrationRunner, SQLiteExecutor

WriteMigration = Callable[..., Path]


@pytest.fixture
def migration_folder(tmp_path: Path) -> Path:
    """Empty migration folder."""
    folder = tmp_path / "migrations"
    folder.mkdir()
    return folder


@pytest.fixture
def write_migration(migration_folder: Path) -> WriteMigration:
    """Write an up/down pair; pass down=None to leave out the down file."""

    def write(
        sequence: str,
        description: str,
        up: str,
        down: str | None = "",
        extension: str = "sql",
    ) -> Path:
        up_path = migration_folder / f"{sequence}_{description}.up.{extension}"
        up_path.write_text(up, encoding="utf-8")
        if down is not None:
            down_path = migration_folder / f"{sequence}_{description}.down.{extension}"
            down_path.write_text(down, encoding="utf-8")
        return up_path

    return write


@pytest.fixture
def database_path(tmp_path: Path) -> Path:
    return tmp_path / "test.db"


@pytest.fixture
def sqlite_executor(database_path: Path) -> Iterator[SQLiteExecutor]:
    executor = SQLiteExecutor(str(database_path))
    yield executor
    executor.close()


@pytest.fixture
def runner(sqlite_executor: SQLiteExecutor, migration_folder: Path) -> MigrationRunner:
    return MigrationRunner(
        sqlite_executor,
        sqlite_executor.tracker("migration"),
        migration_folder,
        extension="sql",
    )


@pytest.fixture
def users_migrations(write_migration: WriteMigration) -> None:
    """The two-step users/email migration set."""
    write_migration(
        "0001",
        "create_users",
        "CREATE TABLE users (id INTEGER PRIMARY KEY, name TEXT);",
        "DROP TABLE users;",
    )
    write_migration(
        "0002",
        "add_email",
        "ALTER TABLE users ADD COLUMN email TEXT;",
        "ALTER TABLE users DROP COLUMN email;",
    )
