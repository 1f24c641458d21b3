"""Discovery of migration files on disk."""

import logging
import re
from decimal import Decimal
from pathlib import Path

from .errors import DiscoveryError
from .models import MigrationStep, sequence_key

logger = logging.getLogger(__name__)

# Timestamp form written by the scaffolder, or a plain counter such as 0001.
SEQUENCE_PATTERN = r"\d{8}_\d{6}\.\d{6}|\d+"
SEQUENCE_RE = re.compile(rf"^(?:{SEQUENCE_PATTERN})$")

FILENAME_RE = re.compile(
    rf"^(?P<sequence>{SEQUENCE_PATTERN})_(?P<description>\S+?)"
    r"\.(?P<direction>up|down)\.(?P<extension>[A-Za-z0-9]+)$"
)

# Anything that starts with a digit and ends like a migration half. Such a
# file failing FILENAME_RE is a broken migration, not an unrelated file.
CANDIDATE_RE = re.compile(r"^\d.*\.(?:up|down)\.(?P<extension>[A-Za-z0-9]+)$")


def is_valid_sequence(value: str) -> bool:
    """Check whether ``value`` is a well-formed sequence identifier."""
    return bool(SEQUENCE_RE.match(value))


def _read(path: Path) -> str:
    try:
        return path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        raise DiscoveryError(f"Could not read migration file {path}: {e}") from e


def list_migrations(folder: Path, extension: str | None = None) -> list[MigrationStep]:
    """
    Build the ordered migration set from a folder.

    Args:
        folder: Directory holding ``<sequence>_<description>.(up|down).<ext>`` files
        extension: Only consider files with this extension when given

    Returns:
        Steps sorted by ascending sequence

    Raises:
        DiscoveryError: If the folder is missing, a migration file name is
            malformed or the contents are ambiguous
    """
    if not folder.is_dir():
        raise DiscoveryError(f"Migration folder not found: {folder}")

    ups: dict[str, Path] = {}
    downs: dict[str, Path] = {}
    seen_keys: dict[Decimal, str] = {}

    for path in sorted(folder.iterdir()):
        if not path.is_file():
            continue

        match = FILENAME_RE.match(path.name)
        if not match:
            candidate = CANDIDATE_RE.match(path.name)
            if candidate and (not extension or candidate["extension"] == extension):
                raise DiscoveryError(
                    f"Malformed migration file name: {path.name} "
                    "(expected <sequence>_<description>.up|down.<ext>)"
                )
            logger.debug(f"Ignoring {path.name}: not a migration file")
            continue
        if extension and match["extension"] != extension:
            logger.debug(f"Ignoring {path.name}: extension is not .{extension}")
            continue

        sequence = match["sequence"]
        key = sequence_key(sequence)
        if key in seen_keys and seen_keys[key] != sequence:
            raise DiscoveryError(
                f"Sequences {seen_keys[key]} and {sequence} are the same migration number"
            )
        seen_keys[key] = sequence

        halves = ups if match["direction"] == "up" else downs
        if sequence in halves:
            raise DiscoveryError(
                f"Duplicate {match['direction']} files for sequence {sequence}: "
                f"{halves[sequence].name} and {path.name}"
            )
        halves[sequence] = path

    orphans = sorted(set(downs) - set(ups), key=sequence_key)
    if orphans:
        names = ", ".join(downs[sequence].name for sequence in orphans)
        raise DiscoveryError(f"Down files without a matching up file: {names}")

    steps = []
    for sequence, up_path in ups.items():
        description = FILENAME_RE.match(up_path.name)["description"]
        down_path = downs.get(sequence)
        if down_path is not None:
            down_description = FILENAME_RE.match(down_path.name)["description"]
            if down_description != description:
                raise DiscoveryError(
                    f"Up and down files for sequence {sequence} disagree: "
                    f"{up_path.name} and {down_path.name}"
                )

        steps.append(
            MigrationStep(
                sequence=sequence,
                description=description,
                up_body=_read(up_path),
                down_body=_read(down_path) if down_path is not None else "",
                up_path=up_path,
                down_path=down_path,
            )
        )

    steps.sort(key=lambda step: step.key)
    logger.debug(f"Discovered {len(steps)} migration(s) in {folder}")
    return steps
