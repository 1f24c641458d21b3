"""Creation of new, empty migration file pairs."""

import logging
import re
from collections.abc import Iterable
from datetime import datetime, timedelta
from pathlib import Path

from .errors import ScaffoldError
from .models import sequence_key
from .store import FILENAME_RE

logger = logging.getLogger(__name__)

SEQUENCE_FORMAT = "%Y%m%d_%H%M%S.%f"

# Exclusive-create retries before giving up on a folder another process keeps writing to.
MAX_ATTEMPTS = 100


def normalize_description(description: str) -> str:
    """
    Turn a free-form description into a file name slug.

    Example:
        "  Add Email column! " -> "add_email_column"
    """
    slug = re.sub(r"\s+", "_", description.strip().lower())
    slug = re.sub(r"[^a-z0-9_]", "", slug)
    return re.sub(r"_+", "_", slug).strip("_")


def next_sequence(existing: Iterable[str], now: datetime) -> str:
    """
    Pick a timestamp sequence strictly greater than every existing one.

    Args:
        existing: Sequences already present in the folder
        now: Current time

    Returns:
        Sequence in ``YYYYMMDD_HHMMSS.ffffff`` form

    Raises:
        ScaffoldError: If a non-timestamp sequence already sorts after any timestamp
    """
    highest = max(existing, key=sequence_key, default=None)
    candidate = now.strftime(SEQUENCE_FORMAT)
    if highest is None or sequence_key(candidate) > sequence_key(highest):
        return candidate

    # Same microsecond as the newest migration, or the clock is behind it.
    try:
        last = datetime.strptime(highest, SEQUENCE_FORMAT)
    except ValueError:
        raise ScaffoldError(f"Cannot generate a timestamp sequence after {highest}") from None
    return (last + timedelta(microseconds=1)).strftime(SEQUENCE_FORMAT)


def _existing_sequences(folder: Path) -> set[str]:
    sequences = set()
    for path in folder.iterdir():
        match = FILENAME_RE.match(path.name)
        if match:
            sequences.add(match["sequence"])
    return sequences


def _discard(path: Path) -> None:
    try:
        path.unlink()
    except OSError as e:
        logger.warning(f"Could not remove partial migration file {path}: {e}")


def create_migration(
    folder: Path,
    description: str,
    extension: str = "sql",
    now: datetime | None = None,
) -> tuple[Path, Path]:
    """
    Create an empty up/down pair for a new migration.

    Args:
        folder: Migration folder
        description: Free-form description, normalized into the file names
        extension: File extension for the dialect
        now: Time used for the sequence (default: current time)

    Returns:
        Paths of the new up and down files

    Raises:
        ScaffoldError: If the description is empty or the files cannot be written
    """
    slug = normalize_description(description)
    if not slug:
        raise ScaffoldError(f"Migration description {description!r} has no usable characters")

    try:
        existing = _existing_sequences(folder)
    except OSError as e:
        raise ScaffoldError(f"Could not read migration folder {folder}: {e}") from e

    for _ in range(MAX_ATTEMPTS):
        sequence = next_sequence(existing, now or datetime.now())
        existing.add(sequence)
        up_path = folder / f"{sequence}_{slug}.up.{extension}"
        down_path = folder / f"{sequence}_{slug}.down.{extension}"

        try:
            up_path.open("x", encoding="utf-8").close()
        except FileExistsError:
            continue
        except OSError as e:
            raise ScaffoldError(f"Could not create {up_path}: {e}") from e

        try:
            down_path.open("x", encoding="utf-8").close()
        except FileExistsError:
            _discard(up_path)
            continue
        except OSError as e:
            _discard(up_path)
            raise ScaffoldError(f"Could not create {down_path}: {e}") from e

        logger.info(f"Created migration {sequence}_{slug}")
        return up_path, down_path

    raise ScaffoldError(f"Could not find a free migration sequence in {folder}")
