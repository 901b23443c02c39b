# Copyright (c) Syntropy Systems
"""Sequential build-then-run orchestration over the test matrix."""
from __future__ import annotations

import logging
import time
from enum import Enum
from typing import TYPE_CHECKING

from hilrun.build import BuildDriver
from hilrun.device import DeviceHandle, DeviceRunner, probe_attached
from hilrun.errors import BuildError, ConfigError, ExecutionError
from hilrun.models.session import Outcome, RunResult, RunSession
from hilrun.parser import MarkerSet, OutputParser

if TYPE_CHECKING:
    from collections.abc import Sequence
    from pathlib import Path

    from hilrun.config import HilrunConfig
    from hilrun.models.session import BuildProfile, TestCase
    from hilrun.report import Reporter

logger = logging.getLogger(__name__)


class Mode(str, Enum):
    """Where the suite executes."""

    AUTO = "auto"
    LOCAL = "local"
    REMOTE = "remote"


def resolve_mode(mode: Mode, config: HilrunConfig) -> Mode:
    """Pick local or remote execution.

    AUTO runs locally when a device is attached and falls back to the
    remote rig otherwise.
    """
    if mode is not Mode.AUTO:
        return mode
    if probe_attached(config.device):
        logger.info("Device attached locally")
        return Mode.LOCAL
    if config.remote.configured:
        logger.info("No local device; using remote rig %s", config.remote.host)
        return Mode.REMOTE
    msg = "No device attached and no remote rig configured (remote.host)"
    raise ConfigError(msg)


class Orchestrator:
    """Builds and runs every (test, profile) pair, one at a time.

    Only one physical device link exists, so a pair's build-then-run
    cycle finishes (or times out) before the next begins. Failures are
    recorded per pair and never abort the remaining suite.
    """

    tests: tuple[TestCase, ...]
    profiles: tuple[BuildProfile, ...]
    builder: BuildDriver
    device_runner: DeviceRunner
    reporter: Reporter | None

    def __init__(
        self,
        tests: Sequence[TestCase],
        profiles: Sequence[BuildProfile],
        builder: BuildDriver,
        device_runner: DeviceRunner,
        reporter: Reporter | None = None,
    ) -> None:
        self.tests = tuple(tests)
        self.profiles = tuple(profiles)
        self.builder = builder
        self.device_runner = device_runner
        self.reporter = reporter

    @classmethod
    def from_config(
        cls,
        config: HilrunConfig,
        workdir: Path,
        tests: Sequence[TestCase],
        profiles: Sequence[BuildProfile],
        reporter: Reporter | None = None,
        device: DeviceHandle | None = None,
    ) -> Orchestrator:
        try:
            markers = MarkerSet.from_lists(config.success_markers, config.failure_markers)
        except ValueError as e:
            raise ConfigError(str(e)) from e
        builder = BuildDriver(
            config.build_command,
            workdir,
            artifact_template=config.artifact_path,
            grace_period=config.kill_grace_period,
        )
        device_runner = DeviceRunner(
            config.run_command,
            workdir,
            OutputParser(markers),
            device or DeviceHandle(),
            grace_period=config.kill_grace_period,
        )
        return cls(tests, profiles, builder, device_runner, reporter)

    def run(self) -> RunSession:
        session = RunSession(self.tests, self.profiles)
        logger.info(
            "Running %d test(s) x %d profile(s)", len(self.tests), len(self.profiles)
        )
        for test_case in self.tests:
            for profile in self.profiles:
                if self.reporter is not None:
                    self.reporter.start(test_case, profile)
                result = self.run_one(test_case, profile)
                session.record(result)
                if self.reporter is not None:
                    self.reporter.result(result)
        session.finalize()
        return session

    def run_one(self, test_case: TestCase, profile: BuildProfile) -> RunResult:
        """Build then run a single pair, turning errors into a result."""
        started = time.monotonic()
        try:
            artifact = self.builder.build(test_case, profile)
        except BuildError as e:
            logger.warning("%s", e)
            return RunResult(
                test_case=test_case,
                profile=profile,
                outcome=Outcome.BUILD_ERROR,
                duration_ms=int((time.monotonic() - started) * 1000),
                detail=str(e),
                output=e.output or None,
            )

        try:
            return self.device_runner.run(artifact)
        except ExecutionError as e:
            logger.warning("%s", e)
            return RunResult(
                test_case=test_case,
                profile=profile,
                outcome=Outcome.EXECUTION_ERROR,
                duration_ms=int((time.monotonic() - started) * 1000),
                detail=str(e),
            )
