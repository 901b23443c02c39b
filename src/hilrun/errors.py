# Copyright (c) Syntropy Systems
"""Exception types raised by hilrun components."""
from __future__ import annotations

from typing import Literal


class HilrunError(Exception):
    """Base class for hilrun errors."""


class ConfigError(HilrunError):
    """Invalid or unreadable configuration."""


class ResourceBusyError(HilrunError):
    """A device or rig handle is already held by an in-flight run."""


class ExecutionError(HilrunError):
    """No verdict could be obtained (launch failure, rig unreachable)."""


class BuildError(HilrunError):
    """The build tool failed or exceeded its time budget.

    The tool's output is carried verbatim; hilrun does not interpret
    compiler diagnostics.
    """

    kind: Literal["failed", "timeout"]
    returncode: int | None
    output: str

    def __init__(
        self,
        message: str,
        *,
        kind: Literal["failed", "timeout"] = "failed",
        returncode: int | None = None,
        output: str = "",
    ) -> None:
        super().__init__(message)
        self.kind = kind
        self.returncode = returncode
        self.output = output
