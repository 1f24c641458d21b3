"""Tests for migration discovery."""

from pathlib import Path

import pytest

from jay_migrate.migrations import Direction, DiscoveryError, list_migrations


class TestListMigrations:
    """Tests for list_migrations function."""

    def test_empty_folder(self, migration_folder: Path) -> None:
        """Test an empty folder yields an empty set."""
        assert list_migrations(migration_folder) == []

    def test_pairs_and_orders(self, migration_folder: Path, write_migration) -> None:
        """Test up/down halves are grouped and sorted by sequence."""
        write_migration("0002", "add_email", "ALTER ...", "ALTER back")
        write_migration("0001", "create_users", "CREATE ...", "DROP ...")

        steps = list_migrations(migration_folder)

        assert [step.sequence for step in steps] == ["0001", "0002"]
        assert steps[0].description == "create_users"
        assert steps[0].up_body == "CREATE ..."
        assert steps[0].down_body == "DROP ..."
        assert steps[0].name == "0001_create_users"
        assert steps[0].down_path == migration_folder / "0001_create_users.down.sql"

    def test_timestamp_sequences(self, migration_folder: Path, write_migration) -> None:
        """Test scaffolder-style timestamps keep the underscore inside the sequence."""
        write_migration("20160630_020000.000000", "init", "CREATE ...", "DROP ...")
        write_migration("20160701_090000.000001", "add_index", "CREATE INDEX", "DROP INDEX")

        steps = list_migrations(migration_folder)

        assert [(step.sequence, step.description) for step in steps] == [
            ("20160630_020000.000000", "init"),
            ("20160701_090000.000001", "add_index"),
        ]

    def test_missing_down_is_irreversible(self, migration_folder: Path, write_migration) -> None:
        """Test an up file alone is a step with an empty down body."""
        write_migration("0001", "seed", "INSERT ...", down=None)

        (step,) = list_migrations(migration_folder)

        assert step.down_body == ""
        assert step.down_path is None
        assert not step.reversible
        assert step.filename(Direction.DOWN) == "0001_seed.down.sql"

    def test_ignores_other_files(self, migration_folder: Path, write_migration) -> None:
        """Test unrelated files and directories are skipped."""
        write_migration("0001", "create_users", "CREATE ...", "DROP ...")
        (migration_folder / "README.md").write_text("notes")
        (migration_folder / "0001_create_users.up.sql.bak").write_text("x")
        (migration_folder / "0003_nested.up.sql").mkdir()

        steps = list_migrations(migration_folder)

        assert [step.sequence for step in steps] == ["0001"]

    def test_hand_written_descriptions(self, migration_folder: Path, write_migration) -> None:
        """Test descriptions outside the scaffolder's slug alphabet are still migrations."""
        write_migration("20160630_020000.000000", "create_users", "CREATE ...", "DROP ...")
        write_migration("20160630_020001.000000", "add-email", "ALTER ...", "ALTER back")
        write_migration("20160630_020002.000000", "AddIndex_v1.2", "CREATE INDEX", "DROP INDEX")

        steps = list_migrations(migration_folder)

        assert [step.description for step in steps] == ["create_users", "add-email", "AddIndex_v1.2"]
        assert steps[1].down_body == "ALTER back"

    def test_extension_filter(self, migration_folder: Path, write_migration) -> None:
        """Test only the configured extension is read."""
        write_migration("0001", "create_users", "CREATE ...", "DROP ...")
        write_migration("0002", "seed", "[]", "[]", extension="json")

        assert [s.sequence for s in list_migrations(migration_folder, "sql")] == ["0001"]
        assert [s.sequence for s in list_migrations(migration_folder, "json")] == ["0002"]


class TestDiscoveryErrors:
    """Tests for folders that cannot be turned into an ordered set."""

    def test_missing_folder(self, tmp_path: Path) -> None:
        """Test a nonexistent folder."""
        with pytest.raises(DiscoveryError, match="not found"):
            list_migrations(tmp_path / "missing")

    def test_folder_is_a_file(self, tmp_path: Path) -> None:
        """Test a file path in place of the folder."""
        path = tmp_path / "migrations"
        path.write_text("")

        with pytest.raises(DiscoveryError):
            list_migrations(path)

    @pytest.mark.parametrize(
        "name",
        ["0002_Bad Name.up.sql", "0002.up.sql", "0002_.up.sql", "0002_add email.down.sql"],
    )
    def test_malformed_name(self, migration_folder: Path, write_migration, name: str) -> None:
        """Test a file shaped like a migration but not parseable stops discovery."""
        write_migration("0001", "create_users", "CREATE ...", "DROP ...")
        (migration_folder / name).write_text("x")

        with pytest.raises(DiscoveryError, match="Malformed migration file name"):
            list_migrations(migration_folder)

    def test_malformed_name_other_extension(self, migration_folder: Path, write_migration) -> None:
        """Test the extension filter applies before the name check."""
        write_migration("0001", "create_users", "CREATE ...", "DROP ...")
        (migration_folder / "0002_Bad Name.up.json").write_text("[]")

        assert [step.sequence for step in list_migrations(migration_folder, "sql")] == ["0001"]

    def test_down_without_up(self, migration_folder: Path) -> None:
        """Test an orphaned down file."""
        (migration_folder / "0001_create_users.down.sql").write_text("DROP ...")

        with pytest.raises(DiscoveryError, match="without a matching up file"):
            list_migrations(migration_folder)

    def test_duplicate_sequence(self, migration_folder: Path, write_migration) -> None:
        """Test two up files sharing a sequence."""
        write_migration("0001", "create_users", "CREATE ...", "DROP ...")
        write_migration("0001", "create_posts", "CREATE ...", "DROP ...")

        with pytest.raises(DiscoveryError, match="Duplicate (up|down) files"):
            list_migrations(migration_folder)

    def test_numerically_equal_sequences(self, migration_folder: Path, write_migration) -> None:
        """Test 1 and 001 are the same migration number."""
        write_migration("1", "create_users", "CREATE ...", "DROP ...")
        write_migration("001", "create_posts", "CREATE ...", "DROP ...")

        with pytest.raises(DiscoveryError, match="same migration number"):
            list_migrations(migration_folder)

    def test_halves_disagree(self, migration_folder: Path) -> None:
        """Test up and down files with different descriptions."""
        (migration_folder / "0001_create_users.up.sql").write_text("CREATE ...")
        (migration_folder / "0001_create_people.down.sql").write_text("DROP ...")

        with pytest.raises(DiscoveryError, match="disagree"):
            list_migrations(migration_folder)
