"""Data models shared by the migration engine."""

from decimal import Decimal
from enum import Enum
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field

from .errors import MigrationError


def sequence_key(sequence: str) -> Decimal:
    """
    Return the numeric ordering key of a sequence.

    ``0007`` and ``20160630_020000.000000`` both become decimals, so plain
    counters and timestamps order the same way whether or not they are
    zero-padded.
    """
    return Decimal(sequence.replace("_", ""))


class Direction(str, Enum):
    """Direction a step body is applied in."""

    UP = "up"
    DOWN = "down"


class MigrationStep(BaseModel):
    """One up/down pair discovered in the migration folder."""

    model_config = ConfigDict(frozen=True)

    sequence: str
    description: str
    up_body: str
    down_body: str = ""
    up_path: Path
    down_path: Path | None = None

    @property
    def name(self) -> str:
        """Return the file stem shared by both halves, without direction or extension."""
        return f"{self.sequence}_{self.description}"

    @property
    def key(self) -> Decimal:
        """Return the numeric ordering key of the sequence."""
        return sequence_key(self.sequence)

    @property
    def reversible(self) -> bool:
        """Whether the step has a non-empty down body."""
        return bool(self.down_body.strip())

    def body(self, direction: Direction) -> str:
        """Return the body to execute for ``direction``."""
        return self.up_body if direction is Direction.UP else self.down_body

    def filename(self, direction: Direction) -> str:
        """Return the file name holding the body for ``direction``."""
        if direction is Direction.DOWN and self.down_path is not None:
            return self.down_path.name
        if direction is Direction.DOWN:
            return self.up_path.name.replace(".up.", ".down.", 1)
        return self.up_path.name


class StepOutcome(BaseModel):
    """Result of executing one step during a run."""

    step: MigrationStep
    direction: Direction
    succeeded: bool
    error: str | None = None


class RunResult(BaseModel):
    """
    Everything a mutating operation did.

    ``steps`` lists, in execution order, every step that ran and whether it
    succeeded. After a failure the last entry is the failed step and
    ``position_after`` is the sequence left by the last success.
    """

    model_config = ConfigDict(arbitrary_types_allowed=True)

    operation: str
    steps: list[StepOutcome] = Field(default_factory=list)
    position_before: str | None = None
    position_after: str | None = None
    error: MigrationError | None = None

    @property
    def ok(self) -> bool:
        """Whether the operation finished without an error."""
        return self.error is None

    @property
    def applied(self) -> list[StepOutcome]:
        """Return the outcomes of the steps that succeeded."""
        return [outcome for outcome in self.steps if outcome.succeeded]

    def raise_for_error(self) -> None:
        """Raise the terminal error, if any."""
        if self.error is not None:
            raise self.error


class StatusResult(BaseModel):
    """Read-only view of where the database stands."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    position: str | None = None
    current: MigrationStep | None = None
    applied: list[MigrationStep] = Field(default_factory=list)
    pending: list[MigrationStep] = Field(default_factory=list)
    error: MigrationError | None = None

    @property
    def ok(self) -> bool:
        """Whether the operation finished without an error."""
        return self.error is None
