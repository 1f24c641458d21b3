"""Small filesystem helpers."""

import os
from pathlib import Path


def expand_path(path: str | Path) -> Path:
    """
    Expand ``~`` and environment variables in a path.

    Args:
        path: Path string or Path

    Returns:
        Expanded Path (not resolved, relative paths stay relative)
    """
    return Path(os.path.expandvars(str(path))).expanduser()


def ensure_dir(path: Path) -> Path:
    """
    Create a directory (and parents) if it doesn't exist.

    Args:
        path: Directory path

    Returns:
        The same path
    """
    path.mkdir(parents=True, exist_ok=True)
    return path
