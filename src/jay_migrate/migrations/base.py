"""Base classes for database executors and position trackers."""

from abc import ABC, abstractmethod
from collections.abc import Iterator
from contextlib import contextmanager


class PositionTracker(ABC):
    """Persists the sequence of the last applied migration inside the database."""

    table: str

    @abstractmethod
    def current(self) -> str | None:
        """
        Read the current position.

        Returns:
            Sequence of the last applied step, or None if nothing is applied

        Raises:
            StorageError: If the record cannot be read or is corrupt
        """
        pass

    @abstractmethod
    def advance(self, sequence: str, *, expected: str | None) -> None:
        """
        Move the position forward to ``sequence``.

        Args:
            sequence: Sequence of the step whose up body just committed
            expected: Position this process believes is stored

        Raises:
            ConcurrentModificationError: If the stored position is not ``expected``
            StorageError: If the write fails
        """
        pass

    @abstractmethod
    def retreat(self, sequence: str | None, *, expected: str | None) -> None:
        """
        Move the position back to ``sequence`` (None for no migrations).

        Raises:
            ConcurrentModificationError: If the stored position is not ``expected``
            StorageError: If the write fails
        """
        pass

    @contextmanager
    def hold(self) -> Iterator[None]:
        """
        Guard a whole run against other processes.

        Backends without a locking primitive keep this default and rely on
        the compare-and-set in ``advance``/``retreat``.
        """
        yield

    def release(self) -> bool:
        """
        Clear a lock left behind by a crashed run.

        Returns:
            True if a lock was cleared
        """
        return False


class Executor(ABC):
    """Runs migration bodies against one database dialect."""

    dialect: str
    extension: str

    @abstractmethod
    def execute(self, body: str) -> None:
        """
        Run one step body.

        Args:
            body: Up or down body as read from the migration file

        Raises:
            ExecutionError: If the database rejects the body
        """
        pass

    @abstractmethod
    def tracker(self, table: str) -> PositionTracker:
        """Return the position tracker stored in ``table`` of this database."""
        pass

    def close(self) -> None:
        """Release the database handle."""
        pass

    def __enter__(self) -> "Executor":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()
