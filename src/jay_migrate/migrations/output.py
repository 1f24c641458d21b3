"""Plain-text rendering of migration results."""

from .models import Direction, RunResult, StatusResult

NOTHING_TO_DO = {
    "up-one": "No migrations to apply.",
    "up-all": "No migrations to apply.",
    "down-one": "No migrations to roll back.",
    "down-all": "No migrations to roll back.",
    "refresh": "No migrations found.",
}


def format_run_result(result: RunResult) -> str:
    """Render the steps a run executed, one line each."""
    lines = []
    for outcome in result.steps:
        filename = outcome.step.filename(outcome.direction)
        if outcome.succeeded:
            lines.append(f"Migration {outcome.direction.value}: {filename}")
        else:
            lines.append(f"Migration {outcome.direction.value} failed: {filename}")
            if outcome.error:
                lines.append(f"  {outcome.error}")

    if not result.steps and result.ok:
        lines.append(NOTHING_TO_DO.get(result.operation, "Nothing to do."))

    if result.position_before != result.position_after:
        lines.append(
            f"Position: {result.position_before or 'none'} -> {result.position_after or 'none'}"
        )

    return "\n".join(lines) + "\n"


def format_status(status: StatusResult) -> str:
    """Render the last applied migration, as ``jay status`` prints it."""
    if status.current is None:
        last = "none (no migrations applied)"
    else:
        last = status.current.filename(Direction.UP)
    lines = [f"Last migration: {last}"]
    if status.pending:
        lines.append(f"Pending migrations: {len(status.pending)}")
    return "\n".join(lines) + "\n"
