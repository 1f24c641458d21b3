"""CLI interface for jay-migrate."""

import logging
import signal
import sys
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.table import Table

from . import __version__
from .config import CONFIG_ENV_VAR, Config, create_default_config, get_config_path, load_config
from .migrations import (
    EXECUTORS,
    MigrationRunner,
    RunResult,
    ScaffoldError,
    StatusResult,
    StorageError,
    create_executor,
    create_migration,
    format_run_result,
    format_status,
)
from .utils import ensure_dir

console = Console()


def _fail(message: str) -> None:
    console.print(f"[red]Error:[/red] {escape(message)}")
    sys.exit(1)


@click.group()
@click.version_option(version=__version__)
@click.option(
    "--config",
    type=click.Path(dir_okay=False, path_type=Path),
    help=f"Path to the jay.toml config file (default: ${CONFIG_ENV_VAR} or ./jay.toml)",
)
@click.option("-v", "--verbose", is_flag=True, help="Log every step and position update")
@click.pass_context
def cli(ctx: click.Context, config: Path | None, verbose: bool) -> None:
    """jay: Migrate a database to different states using 'up' and 'down' files."""
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config

    if verbose:
        logging.basicConfig(
            level=logging.DEBUG,
            format="%(message)s",
            handlers=[RichHandler(console=console, show_path=False)],
        )

    # init writes the config file, everything else needs a valid one
    if ctx.invoked_subcommand == "init":
        return

    try:
        ctx.obj["config"] = load_config(config)
    except (FileNotFoundError, ValueError, OSError) as e:
        _fail(f"Configuration: {e}")


@contextmanager
def _open_runner(
    config: Config, cancel_event: threading.Event | None = None
) -> Iterator[MigrationRunner]:
    """Open the configured database and wrap it in a runner."""
    try:
        executor = create_executor(
            config.dialect, config.database, **config.connection_options()
        )
        tracker = executor.tracker(config.table)
    except (StorageError, ValueError) as e:
        _fail(str(e))

    with executor:
        yield MigrationRunner(
            executor,
            tracker,
            config.folder,
            extension=config.extension,
            cancel_event=cancel_event,
        )


def _migrate(ctx: click.Context, operation: str) -> None:
    """Run one mutating operation, print what it did and map failure to exit 1."""
    config = ctx.obj["config"]
    cancel_event = threading.Event()

    def request_cancel(signum: int, frame: object) -> None:
        console.print("[yellow]Interrupted:[/yellow] stopping after the current step...")
        cancel_event.set()

    previous_handler = signal.signal(signal.SIGINT, request_cancel)
    try:
        with _open_runner(config, cancel_event) as runner:
            result = runner.run(operation)
    finally:
        signal.signal(signal.SIGINT, previous_handler)

    assert isinstance(result, RunResult)  # Type narrowing for type checker

    console.print(format_run_result(result), end="", markup=False, highlight=False)
    if not result.ok:
        _fail(str(result.error))


@cli.command()
@click.option(
    "--dialect",
    type=click.Choice(sorted(EXECUTORS)),
    default="sqlite",
    help="Database dialect to configure",
)
@click.option("--force", "-f", is_flag=True, help="Overwrite an existing config file")
@click.pass_context
def init(ctx: click.Context, dialect: str, force: bool) -> None:
    """
    Create a jay.toml config file and an empty migration folder.

    Examples:

        \b
        # SQLite database next to the config file
        jay init

        \b
        # TinyDB document store
        jay --config ./db/jay.toml init --dialect tinydb

        \b
        # MySQL server; set host, user and password in the file afterwards
        jay init --dialect mysql
    """
    path = ctx.obj["config_path"] or get_config_path()
    if path.exists() and not force:
        _fail(f"Config file already exists: {path} (use --force to overwrite)")

    config = create_default_config(dialect)
    try:
        config.save(path)
        ensure_dir(path.resolve().parent / config.folder)
    except OSError as e:
        _fail(f"Could not write config: {e}")

    console.print(f"[green]✓[/green] Created {path}")
    console.print(f"Set your environment variable, {CONFIG_ENV_VAR}, to:")
    console.print(str(path.resolve()), markup=False, highlight=False)


@cli.command()
@click.argument("description")
@click.pass_context
def make(ctx: click.Context, description: str) -> None:
    """
    Create a migration file pair.

    Spaces in DESCRIPTION are converted to underscores and all characters
    are made lowercase.

    Examples:

        \b
        jay make "create users table"
    """
    config = ctx.obj["config"]
    try:
        up_path, down_path = create_migration(config.folder, description, config.extension)
    except ScaffoldError as e:
        _fail(str(e))

    console.print(f"[green]✓[/green] Created {escape(up_path.name)}")
    console.print(f"[green]✓[/green] Created {escape(down_path.name)}")


@cli.command()
@click.pass_context
def up(ctx: click.Context) -> None:
    """Apply only the next 'up' file to advance the database one iteration."""
    _migrate(ctx, "up-one")


@cli.command("all")
@click.pass_context
def up_all(ctx: click.Context) -> None:
    """Run all 'up' files to advance the database to the latest."""
    _migrate(ctx, "up-all")


@cli.command()
@click.pass_context
def down(ctx: click.Context) -> None:
    """Apply only the current 'down' file to roll the database back one iteration."""
    _migrate(ctx, "down-one")


@cli.command()
@click.pass_context
def reset(ctx: click.Context) -> None:
    """Run all 'down' files to roll the database back to empty."""
    _migrate(ctx, "down-all")


@cli.command()
@click.pass_context
def refresh(ctx: click.Context) -> None:
    """
    Run all 'down' files and then all 'up' files.

    If any 'down' file fails the refresh stops there; no 'up' file is run.
    """
    _migrate(ctx, "refresh")


@cli.command()
@click.option("--all", "show_all", is_flag=True, help="List every migration with its state")
@click.pass_context
def status(ctx: click.Context, show_all: bool) -> None:
    """
    View the last 'up' file performed on the database.

    Examples:

        \b
        jay status
        jay status --all
    """
    config = ctx.obj["config"]
    with _open_runner(config) as runner:
        result = runner.status()

    if not result.ok:
        _fail(str(result.error))

    console.print(format_status(result), end="", markup=False, highlight=False)
    if show_all:
        _display_status_table(result)


@cli.command()
@click.pass_context
def unlock(ctx: click.Context) -> None:
    """
    Clear the migration lock left by a run that crashed.

    Only use this when no other jay process is migrating the database.
    """
    config = ctx.obj["config"]
    with _open_runner(config) as runner:
        try:
            released = runner.tracker.release()
        except StorageError as e:
            _fail(str(e))

    if released:
        console.print("[green]✓[/green] Migration lock cleared")
    else:
        console.print("Migration table was not locked.")


def _display_status_table(result: StatusResult) -> None:
    """Display every migration and whether it is applied."""
    table = Table(title="Migrations")
    table.add_column("Sequence", style="cyan")
    table.add_column("Description", style="magenta")
    table.add_column("State")
    table.add_column("Reversible")

    for step in result.applied:
        state = "[green]✓ Applied[/green]"
        if result.current is not None and step.sequence == result.current.sequence:
            state += " [blue](current)[/blue]"
        table.add_row(step.sequence, step.description, state, "yes" if step.reversible else "no")

    for step in result.pending:
        table.add_row(
            step.sequence,
            step.description,
            "[yellow]Pending[/yellow]",
            "yes" if step.reversible else "no",
        )

    console.print(table)


if __name__ == "__main__":
    cli()
