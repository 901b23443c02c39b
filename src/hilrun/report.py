# Copyright (c) Syntropy Systems
"""Per-test status lines, end-of-session summary and JSON reports."""
from __future__ import annotations

from typing import TYPE_CHECKING

from rich.console import Console
from rich.markup import escape

from hilrun.models.session import Outcome
from hilrun.remote import FAILED_BANNER, PASSED_BANNER

if TYPE_CHECKING:
    from pathlib import Path

    from hilrun.models.session import BuildProfile, RunResult, RunSession, TestCase
    from hilrun.remote import RemoteResult

SUMMARY_RULE = "========END OF TESTS SUMMARY========"

STATUS_STYLES = {
    Outcome.PASS: "green",
    Outcome.FAIL: "red",
    Outcome.TIMEOUT: "yellow",
    Outcome.BUILD_ERROR: "red",
    Outcome.EXECUTION_ERROR: "magenta",
}


def format_duration(duration_ms: int) -> str:
    """Format a run duration for status lines."""
    total_seconds = duration_ms / 1000
    if total_seconds < 60:
        return f"{total_seconds:.1f}s"
    minutes = int(total_seconds // 60)
    seconds = int(total_seconds % 60)
    return f"{minutes}m {seconds}s"


def pair_label(test_case: TestCase | str, profile: BuildProfile | str) -> str:
    return f"{test_case} [{profile}]"


class Reporter:
    """Prints session progress in the format remote callers grep for.

    Banner lines are printed without markup so their text stays literal
    when the output is buffered and scanned on another host.
    """

    console: Console

    def __init__(self, console: Console | None = None, verbose: bool = False) -> None:
        self.console = console or Console(highlight=False, soft_wrap=True)
        self.verbose = verbose
        self._counter = 0

    def start(self, test_case: TestCase, profile: BuildProfile) -> None:
        self._counter += 1
        self.console.print(
            f"Executing test {self._counter}: {pair_label(test_case, profile)}",
            markup=False,
        )

    def result(self, result: RunResult) -> None:
        style = STATUS_STYLES[result.outcome]
        label = escape(pair_label(result.test_case, result.profile))
        duration = format_duration(result.duration_ms)
        self.console.print(f"[{style}]{result.outcome.label}[/{style}] {label} ({duration})")
        if result.detail and not result.passed:
            self.console.print(f"  {result.detail}", markup=False, style="dim")
        if self.verbose and result.output and not result.passed:
            self.console.print(result.output, markup=False, style="dim")

    def summary(self, session: RunSession) -> int:
        """Print the end-of-session summary and return the exit code."""
        self.console.print()
        self.console.print(SUMMARY_RULE, markup=False)
        total = len(session)
        self.console.print(f"{session.success_count} / {total} tests passed", markup=False)
        self.console.print()

        if session.exit_code != 0:
            self.console.print(f"{FAILED_BANNER} ", markup=False, style="red")
            for result in ordered_failures(session):
                self.console.print(pair_label(result.test_case, result.profile), markup=False)
            missing = session.expected_count - total
            if missing > 0:
                self.console.print(f"{missing} run(s) produced no result", markup=False)
        else:
            self.console.print(PASSED_BANNER, markup=False, style="green")
        return session.exit_code

    def remote_summary(self, result: RemoteResult) -> int:
        """Relay a remote session's output and verdict; return the exit code."""
        if result.output:
            self.console.print(result.output.rstrip("\n"), markup=False)
        self.console.print()
        if result.restores:
            self.console.print(f"Rig restores issued: {', '.join(result.restores)}", markup=False, style="dim")
        if result.outcome is Outcome.PASS:
            self.console.print("[green]Remote session passed[/green]")
        elif result.outcome is Outcome.FAIL:
            self.console.print(f"[red]Remote session failed[/red] ({len(result.failures)} failing run(s))")
            for test, profile in result.failures:
                self.console.print(f"  {pair_label(test, profile)}", markup=False)
        else:
            detail = escape(result.detail or "no verdict obtained")
            self.console.print(f"[magenta]Remote execution error:[/magenta] {detail}")
        return result.exit_code


def ordered_failures(session: RunSession) -> list[RunResult]:
    """Failed results grouped by profile, then in discovery order."""
    rank = {profile.name: i for i, profile in enumerate(session.profiles)}
    order = {test.name: i for i, test in enumerate(session.tests)}
    return sorted(
        session.failed,
        key=lambda r: (rank.get(r.profile.name, len(rank)), order.get(r.test_case.name, len(order))),
    )


def write_report(session: RunSession, path: Path) -> None:
    """Write the session as JSON."""
    path.parent.mkdir(parents=True, exist_ok=True)
    _ = path.write_text(session.to_report().model_dump_json(indent=2) + "\n")
