"""Exceptions raised by the migration engine."""


class MigrationError(Exception):
    """Base class for every migration failure."""

    pass


class DiscoveryError(MigrationError):
    """
    Raised when the migration folder cannot be turned into an ordered set.

    Covers a missing folder, duplicate or conflicting sequences, a down file
    without its up file, and steps with an empty up body.
    """

    pass


class StorageError(MigrationError):
    """Raised when the tracking record cannot be read or written."""

    pass


class UnknownPositionError(StorageError):
    """Raised when the stored position names a sequence that is not on disk."""

    pass


class ExecutionError(MigrationError):
    """Raised when a step body fails against the database."""

    def __init__(self, message: str, step_name: str | None = None):
        super().__init__(message)
        self.step_name = step_name


class IrreversibleStepError(MigrationError):
    """Raised when a rollback targets a step that has no down body."""

    pass


class ConcurrentModificationError(MigrationError):
    """
    Raised when another process holds the migration lock or moved the
    position between our read and our write.
    """

    pass


class ScaffoldError(MigrationError):
    """Raised when a new migration pair cannot be written."""

    pass


class MigrationCancelled(MigrationError):
    """Raised at a step boundary after cancellation was requested."""

    pass
