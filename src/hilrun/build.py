# Copyright (c) Syntropy Systems
"""Build driver: one external build invocation per (test, profile)."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING

from hilrun.errors import BuildError
from hilrun.runner import ProcessRunner

if TYPE_CHECKING:
    from hilrun.models.session import BuildProfile, TestCase

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Artifact:
    """Handle to a loadable build output."""

    test_case: TestCase
    profile: BuildProfile
    path: Path | None = None


def render_argv(
    template: list[str],
    test_case: TestCase,
    profile: BuildProfile,
    artifact: Path | None = None,
) -> list[str]:
    """Substitute placeholders token by token and append the profile flags."""
    values = {
        "test": test_case.name,
        "profile": profile.name,
        "artifact": str(artifact) if artifact is not None else "",
    }
    argv = [token.format(**values) for token in template]
    argv.extend(profile.flags)
    return argv


class BuildDriver:
    """Invokes the build tool under a wall-clock timeout.

    Any non-zero exit is reported as a BuildError carrying the tool's
    output verbatim. On timeout the tool's whole process tree is killed.
    """

    command: list[str]
    workdir: Path
    artifact_template: str | None
    grace_period: float

    def __init__(
        self,
        command: list[str],
        workdir: Path,
        artifact_template: str | None = None,
        grace_period: float = 5.0,
    ) -> None:
        self.command = command
        self.workdir = workdir
        self.artifact_template = artifact_template
        self.grace_period = grace_period

    def build(self, test_case: TestCase, profile: BuildProfile) -> Artifact:
        argv = render_argv(self.command, test_case, profile)
        logger.info("Building %s [%s]", test_case, profile)

        runner = ProcessRunner(argv, workdir=self.workdir)
        try:
            result = runner.run(timeout=profile.build_timeout, grace_period=self.grace_period)
        except OSError as e:
            msg = f"Cannot launch build tool {argv[0]!r}: {e}"
            raise BuildError(msg) from e
        finally:
            runner.close()

        if result.timed_out:
            msg = f"Build of {test_case} [{profile}] timed out after {profile.build_timeout:g}s"
            raise BuildError(msg, kind="timeout", returncode=result.returncode, output=result.output)
        if result.returncode != 0:
            msg = f"Build of {test_case} [{profile}] exited with code {result.returncode}"
            raise BuildError(msg, returncode=result.returncode, output=result.output)

        return Artifact(test_case=test_case, profile=profile, path=self._artifact_path(test_case, profile))

    def _artifact_path(self, test_case: TestCase, profile: BuildProfile) -> Path | None:
        if not self.artifact_template:
            return None
        rendered = self.artifact_template.format(test=test_case.name, profile=profile.name)
        return self.workdir / rendered
