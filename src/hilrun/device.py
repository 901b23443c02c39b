# Copyright (c) Syntropy Systems
"""Execution of built artifacts on a locally attached device."""
from __future__ import annotations

import contextlib
import logging
import subprocess
import time
from typing import TYPE_CHECKING

from hilrun.build import render_argv
from hilrun.models.session import Outcome, RunResult
from hilrun.parser import OutputParser, Verdict
from hilrun.resources import ExclusiveHandle
from hilrun.runner import ProcessRunner

if TYPE_CHECKING:
    from collections.abc import Callable
    from pathlib import Path

    from hilrun.build import Artifact
    from hilrun.config import DeviceConfig

logger = logging.getLogger(__name__)


class DeviceHandle(ExclusiveHandle):
    """The single debug probe / device link; one in-flight run at a time."""

    def __init__(self, name: str = "device") -> None:
        super().__init__(name)


def probe_attached(device: DeviceConfig) -> bool:
    """Check whether a device is attached using the configured detect command."""
    if not device.detect_command:
        return False
    runner = ProcessRunner(device.detect_command)
    try:
        result = runner.run(timeout=device.detect_timeout, grace_period=1.0)
    except OSError as e:
        logger.info("Device probe %r unavailable: %s", device.detect_command[0], e)
        return False
    finally:
        runner.close()

    if not result.ok:
        logger.info("Device probe failed (exit code %s)", result.returncode)
        return False
    return device.absent_marker not in result.output


class DeviceRunner:
    """Launches an artifact on the device and streams its output to the parser.

    The device handle is held for the whole run and released exactly once;
    the run process is terminated on every exit path.
    """

    command: list[str]
    workdir: Path
    parser: OutputParser
    device: DeviceHandle
    grace_period: float

    def __init__(
        self,
        command: list[str],
        workdir: Path,
        parser: OutputParser,
        device: DeviceHandle,
        grace_period: float = 5.0,
        on_line: Callable[[str], None] | None = None,
    ) -> None:
        self.command = command
        self.workdir = workdir
        self.parser = parser
        self.device = device
        self.grace_period = grace_period
        self.on_line = on_line

    def run(self, artifact: Artifact) -> RunResult:
        test_case, profile = artifact.test_case, artifact.profile
        argv = render_argv(self.command, test_case, profile, artifact.path)
        started = time.monotonic()

        with self.device:
            runner = ProcessRunner(argv, workdir=self.workdir)
            try:
                runner.start()
            except OSError as e:
                return RunResult(
                    test_case=test_case,
                    profile=profile,
                    outcome=Outcome.EXECUTION_ERROR,
                    duration_ms=_elapsed_ms(started),
                    detail=f"Cannot launch {argv[0]!r}: {e}",
                )

            try:
                parsed = self.parser.parse_stream(
                    runner.stdout, timeout=profile.run_timeout, on_line=self.on_line
                )
            finally:
                exit_code = self._stop(runner)

        detail: str | None = None
        if parsed.verdict is Verdict.TIMEOUT:
            detail = f"No marker within {profile.run_timeout:g}s; process terminated"
        elif parsed.verdict is Verdict.INDETERMINATE:
            detail = f"Output ended without a marker (exit code {exit_code})"
        elif parsed.verdict.terminal and parsed.line is not None:
            detail = parsed.line.strip()

        return RunResult(
            test_case=test_case,
            profile=profile,
            outcome=parsed.verdict.outcome,
            duration_ms=_elapsed_ms(started),
            detail=detail,
            output=parsed.output,
        )

    def _stop(self, runner: ProcessRunner) -> int:
        try:
            # A process that closed its output is normally about to exit
            if runner.is_running:
                with contextlib.suppress(subprocess.TimeoutExpired):
                    _ = runner.wait(timeout=0.5)
            return runner.kill(grace_period=self.grace_period)
        finally:
            runner.close()


def _elapsed_ms(started: float) -> int:
    return int((time.monotonic() - started) * 1000)
