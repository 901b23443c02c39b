# Copyright (c) Syntropy Systems
"""Process runner with process-group termination and orphan prevention."""
from __future__ import annotations

import contextlib
import ctypes
import logging
import os
import signal
import subprocess
import sys
import time
from dataclasses import dataclass
from typing import IO, TYPE_CHECKING

if TYPE_CHECKING:
    from pathlib import Path

logger = logging.getLogger(__name__)


def setup_pdeathsig() -> None:
    """Set PDEATHSIG so child dies when parent dies.

    Keeps a flashing tool from holding the debug probe after hilrun crashes.
    Only works on Linux.
    """
    if sys.platform != "linux":
        return
    try:
        libc = ctypes.CDLL("libc.so.6", use_errno=True)
        pr_set_pdeathsig = 1
        libc.prctl(pr_set_pdeathsig, signal.SIGKILL)
    except (AttributeError, OSError):
        return


@dataclass(frozen=True)
class ProcessResult:
    """Outcome of a finished (or killed) child process."""

    returncode: int | None
    output: str
    timed_out: bool = False
    # Separate stderr, when the channel does not merge it into output
    stderr: str = ""

    @property
    def ok(self) -> bool:
        return not self.timed_out and self.returncode == 0


class ProcessRunner:
    """Runs one command in its own process group.

    Features:
    - Uses start_new_session=True so the whole tree can be signalled
    - Sets PDEATHSIG on Linux to prevent orphans
    - Merges stderr into stdout, either captured or exposed as a stream
    - Provides graceful and forceful termination of the group
    """

    command_argv: list[str]
    workdir: Path | None
    env: dict[str, str]
    _process: subprocess.Popen[bytes] | None
    _exit_code: int | None

    def __init__(
        self,
        command_argv: list[str],
        workdir: Path | None = None,
        env: dict[str, str] | None = None,
    ) -> None:
        """Initialize a process runner.

        Args:
            command_argv: Command as list of argv tokens (no shell)
            workdir: Working directory to run the command in
            env: Additional environment variables

        """
        self.command_argv = command_argv
        self.workdir = workdir

        self.env = os.environ.copy()
        if env:
            self.env.update(env)

        self._process = None
        self._exit_code = None

    def start(self) -> None:
        """Start the process with stdout and stderr merged into a pipe.

        Raises OSError if the executable cannot be launched.
        """
        logger.debug("Starting %s", " ".join(self.command_argv))
        self._process = subprocess.Popen(  # noqa: S603
            self.command_argv,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            stdin=subprocess.DEVNULL,
            env=self.env,
            cwd=str(self.workdir) if self.workdir is not None else None,
            start_new_session=True,  # Creates new process group
            preexec_fn=setup_pdeathsig if sys.platform == "linux" else None,  # noqa: PLW1509
        )

    @property
    def stdout(self) -> IO[bytes]:
        """Live merged output of the running process."""
        if self._process is None or self._process.stdout is None:
            msg = "Process has not been started"
            raise RuntimeError(msg)
        return self._process.stdout

    def run(self, timeout: float, grace_period: float = 5.0) -> ProcessResult:
        """Start the process and wait for it, killing the group on timeout."""
        self.start()
        assert self._process is not None
        try:
            out, _ = self._process.communicate(timeout=timeout)
        except subprocess.TimeoutExpired:
            logger.warning(
                "Timed out after %.1fs: %s", timeout, " ".join(self.command_argv)
            )
            code = self.kill(grace_period=grace_period)
            out = self._drain()
            return ProcessResult(returncode=code, output=_decode(out), timed_out=True)
        self._exit_code = self._process.returncode
        return ProcessResult(returncode=self._exit_code, output=_decode(out))

    def wait(self, timeout: float | None = None) -> int:
        """Wait for the process to finish and return exit code."""
        if self._process is None:
            return self._exit_code or 0

        code = self._process.wait(timeout=timeout)
        self._exit_code = code
        return code

    def kill(self, grace_period: float = 5.0) -> int:
        """Kill the process group.

        First sends SIGTERM to the process group, waits for grace_period,
        then sends SIGKILL if still alive.

        Args:
            grace_period: Seconds to wait after SIGTERM before SIGKILL

        Returns:
            Exit code (negative signal number if killed)

        """
        if self._process is None:
            return self._exit_code or 0

        if self._process.poll() is not None:
            exit_code = self._process.returncode or 0
            self._exit_code = exit_code
            self._kill_group(self._process.pid, signal.SIGKILL)
            return exit_code

        pgid = self._process.pid

        self._kill_group(pgid, signal.SIGTERM)

        deadline = time.monotonic() + grace_period
        while time.monotonic() < deadline:
            if self._process.poll() is not None:
                exit_code = self._process.returncode or 0
                self._exit_code = exit_code
                # Leader gone; sweep stragglers left in the group
                self._kill_group(pgid, signal.SIGKILL)
                return exit_code
            time.sleep(0.1)

        # Still alive - SIGKILL
        self._kill_group(pgid, signal.SIGKILL)

        with contextlib.suppress(subprocess.TimeoutExpired):
            _ = self._process.wait(timeout=5.0)

        exit_code = self._process.returncode or -signal.SIGKILL
        self._exit_code = exit_code
        return exit_code

    def close(self) -> None:
        """Release the output pipe."""
        if self._process is not None and self._process.stdout is not None:
            with contextlib.suppress(OSError):
                self._process.stdout.close()

    @staticmethod
    def _kill_group(pgid: int, sig: signal.Signals) -> None:
        # With start_new_session the leader's pid is the group id
        with contextlib.suppress(OSError, ProcessLookupError):
            os.killpg(pgid, sig)

    def _drain(self) -> bytes:
        if self._process is None:
            return b""
        try:
            out, _ = self._process.communicate(timeout=5.0)
        except (subprocess.TimeoutExpired, OSError, ValueError):
            return b""
        return out or b""

    @property
    def is_running(self) -> bool:
        """Check if the process is still running."""
        if self._process is None:
            return False
        return self._process.poll() is None


def _decode(data: bytes | None) -> str:
    if not data:
        return ""
    return data.decode("utf-8", errors="replace")
