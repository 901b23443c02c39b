# Copyright (c) Syntropy Systems
"""Test matrix, run results and session records."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import TYPE_CHECKING, Optional

from pydantic import Field

from .base import FrozenModel, HilrunBaseModel

if TYPE_CHECKING:
    from collections.abc import Iterable, Iterator, Sequence


class Outcome(str, Enum):
    """Terminal outcome of one (test, profile) run."""

    PASS = "pass"
    FAIL = "fail"
    TIMEOUT = "timeout"
    BUILD_ERROR = "build_error"
    EXECUTION_ERROR = "execution_error"

    @property
    def label(self) -> str:
        return self.value.replace("_", " ").upper()


class RestorePolicy(str, Enum):
    """When the rig is reverted to its baseline snapshot."""

    BEFORE = "before"
    AFTER = "after"
    BOTH = "both"

    @property
    def before(self) -> bool:
        return self in (RestorePolicy.BEFORE, RestorePolicy.BOTH)

    @property
    def after(self) -> bool:
        return self in (RestorePolicy.AFTER, RestorePolicy.BOTH)


class TestCase(FrozenModel):
    """A discovered test program, identified by its name."""

    __test__ = False

    name: str

    def __str__(self) -> str:
        return self.name


class BuildProfile(FrozenModel):
    """A build configuration every test must independently pass under."""

    name: str
    flags: tuple[str, ...] = ()
    build_timeout: float = 180.0
    run_timeout: float = 60.0

    def __str__(self) -> str:
        return self.name


DEBUG = BuildProfile(name="debug")
RELEASE = BuildProfile(name="release", flags=("--release",))
DEFAULT_PROFILES: tuple[BuildProfile, ...] = (DEBUG, RELEASE)


class RigState(FrozenModel):
    """Named baseline snapshot of a remote rig plus its restore policy."""

    vm: str
    snapshot: str
    restore_policy: RestorePolicy = RestorePolicy.BOTH


class RunResult(FrozenModel):
    """Verdict for one (test, profile) pair; never revised once created."""

    test_case: TestCase
    profile: BuildProfile
    outcome: Outcome
    duration_ms: int = 0
    detail: Optional[str] = None
    output: Optional[str] = None

    @property
    def passed(self) -> bool:
        return self.outcome is Outcome.PASS

    @property
    def key(self) -> tuple[str, str]:
        return (self.test_case.name, self.profile.name)


class SessionReport(HilrunBaseModel):
    """Serializable snapshot of a finalized session."""

    started_at: str
    finished_at: Optional[str] = None
    tests: list[str] = Field(default_factory=list)
    profiles: list[str] = Field(default_factory=list)
    results: list[RunResult] = Field(default_factory=list)
    total: int
    passed: int
    failed: int
    outcome: Outcome


class RunSession:
    """Ordered results for the fixed (test x profile) matrix of one session.

    Results are appended as runs complete. Each pair may be recorded once;
    after finalize() the session is immutable.
    """

    tests: tuple[TestCase, ...]
    profiles: tuple[BuildProfile, ...]
    started_at: str
    finished_at: str | None

    def __init__(
        self,
        tests: Iterable[TestCase],
        profiles: Iterable[BuildProfile],
    ) -> None:
        self.tests = tuple(tests)
        self.profiles = tuple(profiles)
        self.started_at = _now()
        self.finished_at = None
        self._results: list[RunResult] = []
        self._seen: set[tuple[str, str]] = set()
        self._expected = {
            (test.name, profile.name)
            for test in self.tests
            for profile in self.profiles
        }

    def record(self, result: RunResult) -> None:
        """Append a result for a pair that has not been recorded yet."""
        if self.finalized:
            msg = "Session is finalized"
            raise RuntimeError(msg)
        if result.key not in self._expected:
            msg = f"{result.test_case} [{result.profile}] is not part of this session"
            raise ValueError(msg)
        if result.key in self._seen:
            msg = f"{result.test_case} [{result.profile}] already has a result"
            raise ValueError(msg)
        self._seen.add(result.key)
        self._results.append(result)

    def finalize(self) -> None:
        if not self.finalized:
            self.finished_at = _now()

    @property
    def finalized(self) -> bool:
        return self.finished_at is not None

    @property
    def results(self) -> Sequence[RunResult]:
        return tuple(self._results)

    def __iter__(self) -> Iterator[RunResult]:
        return iter(self.results)

    def __len__(self) -> int:
        return len(self._results)

    @property
    def expected_count(self) -> int:
        return len(self._expected)

    @property
    def complete(self) -> bool:
        return self._seen == self._expected

    @property
    def failed(self) -> list[RunResult]:
        return [r for r in self._results if not r.passed]

    @property
    def failed_count(self) -> int:
        return len(self.failed)

    @property
    def success_count(self) -> int:
        return len(self._results) - self.failed_count

    @property
    def outcome(self) -> Outcome:
        """PASS only when every expected pair ran and passed."""
        if self.complete and not self.failed:
            return Outcome.PASS
        return Outcome.FAIL

    @property
    def exit_code(self) -> int:
        return 0 if self.outcome is Outcome.PASS else 1

    def to_report(self) -> SessionReport:
        return SessionReport(
            started_at=self.started_at,
            finished_at=self.finished_at,
            tests=[t.name for t in self.tests],
            profiles=[p.name for p in self.profiles],
            results=list(self._results),
            total=len(self._results),
            passed=self.success_count,
            failed=self.failed_count,
            outcome=self.outcome,
        )


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()
