"""Migration runner that applies and reverts migration steps."""

import logging
import threading
from collections.abc import Callable
from pathlib import Path

from .base import Executor, PositionTracker
from .errors import (
    DiscoveryError,
    ExecutionError,
    IrreversibleStepError,
    MigrationCancelled,
    MigrationError,
    UnknownPositionError,
)
from .models import Direction, MigrationStep, RunResult, StatusResult, StepOutcome, sequence_key
from .store import list_migrations

logger = logging.getLogger(__name__)

Plan = list[tuple[MigrationStep, Direction]]
Planner = Callable[[list[MigrationStep], int], Plan]


def _plan_up_one(steps: list[MigrationStep], applied: int) -> Plan:
    return [(step, Direction.UP) for step in steps[applied : applied + 1]]


def _plan_up_all(steps: list[MigrationStep], applied: int) -> Plan:
    return [(step, Direction.UP) for step in steps[applied:]]


def _plan_down_one(steps: list[MigrationStep], applied: int) -> Plan:
    if applied == 0:
        return []
    return [(steps[applied - 1], Direction.DOWN)]


def _plan_down_all(steps: list[MigrationStep], applied: int) -> Plan:
    return [(step, Direction.DOWN) for step in reversed(steps[:applied])]


def _plan_refresh(steps: list[MigrationStep], applied: int) -> Plan:
    return _plan_down_all(steps, applied) + _plan_up_all(steps, 0)


class MigrationRunner:
    """
    Runs migrations against one database.

    Every mutating operation holds the tracker's lock for its whole duration,
    applies its steps one at a time and moves the stored position right after
    each step commits. The first failure stops the run; nothing is retried or
    reverted automatically.
    """

    def __init__(
        self,
        executor: Executor,
        tracker: PositionTracker,
        folder: Path,
        extension: str | None = None,
        cancel_event: threading.Event | None = None,
    ):
        """
        Initialize migration runner.

        Args:
            executor: Executor for the target database dialect
            tracker: Position tracker stored in the same database
            folder: Folder holding the migration files
            extension: Only consider migration files with this extension
            cancel_event: When set, the run stops before its next step
        """
        self.executor = executor
        self.tracker = tracker
        self.folder = folder
        self.extension = extension
        self.cancel_event = cancel_event or threading.Event()

    def _load(self) -> tuple[list[MigrationStep], str | None, int]:
        """Discover the migration set and locate the stored position in it."""
        steps = list_migrations(self.folder, self.extension)
        position = self.tracker.current()
        if position is None:
            return steps, None, 0

        key = sequence_key(position)
        for index, step in enumerate(steps):
            if step.key == key:
                return steps, position, index + 1

        raise UnknownPositionError(
            f"Stored position {position} does not match any migration in {self.folder}; "
            "the tracking record or the migration folder was changed by hand"
        )

    @staticmethod
    def _validate(plan: Plan) -> None:
        """Reject a plan before anything runs."""
        for step, direction in plan:
            if direction is Direction.DOWN and not step.reversible:
                raise IrreversibleStepError(
                    f"Migration {step.name} has no down body and cannot be rolled back"
                )
            if direction is Direction.UP and not step.up_body.strip():
                raise DiscoveryError(f"Migration {step.filename(Direction.UP)} is empty")

    def _apply(
        self,
        step: MigrationStep,
        direction: Direction,
        target: str | None,
        result: RunResult,
    ) -> None:
        filename = step.filename(direction)
        logger.info(f"Migration {direction.value}: {filename}")

        try:
            self.executor.execute(step.body(direction))
        except ExecutionError as e:
            result.steps.append(
                StepOutcome(step=step, direction=direction, succeeded=False, error=str(e))
            )
            raise ExecutionError(
                f"Migration {direction.value} failed on {filename}: {e}", step_name=step.name
            ) from e

        try:
            if direction is Direction.UP:
                self.tracker.advance(target, expected=result.position_after)
            else:
                self.tracker.retreat(target, expected=result.position_after)
        except MigrationError as e:
            result.steps.append(
                StepOutcome(
                    step=step,
                    direction=direction,
                    succeeded=False,
                    error=f"{filename} ran but the position could not be recorded: {e}",
                )
            )
            raise

        result.steps.append(StepOutcome(step=step, direction=direction, succeeded=True))
        result.position_after = target

    def _run(self, operation: str, planner: Planner) -> RunResult:
        result = RunResult(operation=operation)
        try:
            with self.tracker.hold():
                steps, position, applied = self._load()
                result.position_before = result.position_after = position

                plan = planner(steps, applied)
                self._validate(plan)
                logger.debug(f"{operation}: {len(plan)} step(s) planned from {position or 'none'}")

                previous = {
                    step.sequence: steps[index - 1].sequence if index else None
                    for index, step in enumerate(steps)
                }
                for step, direction in plan:
                    if self.cancel_event.is_set():
                        raise MigrationCancelled(
                            f"Cancelled before {step.filename(direction)}"
                        )
                    target = step.sequence if direction is Direction.UP else previous[step.sequence]
                    self._apply(step, direction, target, result)
        except MigrationError as e:
            logger.error(f"{operation} failed: {e}")
            result.error = e

        return result

    def up_one(self) -> RunResult:
        """Apply the next pending migration."""
        return self._run("up-one", _plan_up_one)

    def up_all(self) -> RunResult:
        """Apply every pending migration in ascending order."""
        return self._run("up-all", _plan_up_all)

    def down_one(self) -> RunResult:
        """Revert the migration the position points at."""
        return self._run("down-one", _plan_down_one)

    def down_all(self) -> RunResult:
        """Revert every applied migration, newest first."""
        return self._run("down-all", _plan_down_all)

    def refresh(self) -> RunResult:
        """
        Revert everything, then apply everything, as one operation.

        A failure while reverting ends the run before any up step starts.
        """
        return self._run("refresh", _plan_refresh)

    def status(self) -> StatusResult:
        """Report the current position without changing anything."""
        try:
            steps, position, applied = self._load()
        except MigrationError as e:
            return StatusResult(error=e)

        return StatusResult(
            position=position,
            current=steps[applied - 1] if applied else None,
            applied=steps[:applied],
            pending=steps[applied:],
        )

    def run(self, operation: str) -> RunResult | StatusResult:
        """
        Run an operation by name.

        Args:
            operation: One of up-one, up-all, down-one, down-all, refresh, status

        Raises:
            ValueError: If the operation name is unknown
        """
        operations: dict[str, Callable[[], RunResult | StatusResult]] = {
            "up-one": self.up_one,
            "up-all": self.up_all,
            "down-one": self.down_one,
            "down-all": self.down_all,
            "refresh": self.refresh,
            "status": self.status,
        }
        if operation not in operations:
            raise ValueError(f"Unknown migration operation: {operation}")
        return operations[operation]()
