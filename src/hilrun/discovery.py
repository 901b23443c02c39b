# Copyright (c) Syntropy Systems
"""Test program discovery."""
from __future__ import annotations

from pathlib import Path

from hilrun.models.session import TestCase


def discover_tests(directory: Path, pattern: str = "*.rs") -> tuple[TestCase, ...]:
    """Find test programs in directory, one TestCase per matching file.

    The test name is the file name without its extension. Results are
    sorted by name so discovery order is stable across runs.
    """
    if not directory.is_dir():
        msg = f"Not a directory: {directory}"
        raise NotADirectoryError(msg)

    names = sorted({path.stem for path in directory.glob(pattern) if path.is_file()})
    return tuple(TestCase(name=name) for name in names)
