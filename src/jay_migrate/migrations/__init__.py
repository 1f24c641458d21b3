"""Versioned schema migrations driven by up/down file pairs."""

from .base import Executor, PositionTracker
from .errors import (
    ConcurrentModificationError,
    DiscoveryError,
    ExecutionError,
    IrreversibleStepError,
    MigrationCancelled,
    MigrationError,
    ScaffoldError,
    StorageError,
    UnknownPositionError,
)
from .executors import EXECUTORS, MySQLExecutor, SQLiteExecutor, TinyDBExecutor, create_executor
from .models import Direction, MigrationStep, RunResult, StatusResult, StepOutcome
from .output import format_run_result, format_status
from .runner import MigrationRunner
from .scaffold import create_migration, next_sequence, normalize_description
from .store import list_migrations
from .tracker import (
    MySQLPositionTracker,
    SQLitePositionTracker,
    SQLPositionTracker,
    TinyDBPositionTracker,
)

__all__ = [
    "ConcurrentModificationError",
    "Direction",
    "DiscoveryError",
    "EXECUTORS",
    "ExecutionError",
    "Executor",
    "IrreversibleStepError",
    "MigrationCancelled",
    "MigrationError",
    "MigrationRunner",
    "MigrationStep",
    "MySQLExecutor",
    "MySQLPositionTracker",
    "PositionTracker",
    "RunResult",
    "SQLiteExecutor",
    "SQLitePositionTracker",
    "SQLPositionTracker",
    "ScaffoldError",
    "StatusResult",
    "StepOutcome",
    "StorageError",
    "TinyDBExecutor",
    "TinyDBPositionTracker",
    "UnknownPositionError",
    "create_executor",
    "create_migration",
    "format_run_result",
    "format_status",
    "list_migrations",
    "next_sequence",
    "normalize_description",
]
