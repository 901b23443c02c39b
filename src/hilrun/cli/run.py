# Copyright (c) Syntropy Systems
"""hilrun run command."""
from __future__ import annotations

from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.markup import escape

from hilrun.config import load_config
from hilrun.discovery import discover_tests
from hilrun.errors import HilrunError
from hilrun.log import setup_logging
from hilrun.remote import RemoteBridge
from hilrun.report import Reporter, write_report
from hilrun.session import Mode, Orchestrator, resolve_mode

console = Console(highlight=False, soft_wrap=True)


def run(
    directory: Path = typer.Argument(
        Path(),
        help="Directory containing the test programs (default: current directory)",
    ),
    profile: Optional[list[str]] = typer.Option(
        None,
        "--profile", "-p",
        help="Profile to run (repeatable; default: all configured profiles)",
    ),
    mode: Mode = typer.Option(
        Mode.AUTO,
        "--mode", "-m",
        envvar="HILRUN_MODE",
        help="Run on a local device, the remote rig, or pick automatically",
    ),
    config_file: Optional[Path] = typer.Option(
        None,
        "--config", "-c",
        envvar="HILRUN_CONFIG",
        help="Config file (default: nearest .hilrun/config.yaml)",
    ),
    report: Optional[Path] = typer.Option(
        None,
        "--report", "-r",
        help="Write the session results as JSON",
    ),
    remote_host: Optional[str] = typer.Option(
        None,
        "--remote-host",
        envvar="HILRUN_REMOTE_HOST",
        help="Rig controller address (overrides remote.host)",
    ),
    remote_user: Optional[str] = typer.Option(
        None,
        "--remote-user",
        envvar="HILRUN_REMOTE_USER",
        help="Rig controller user (overrides remote.user)",
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose", "-v",
        help="Log debug output and show device output of failed runs",
    ),
) -> None:
    """
    Discover, build and run every test under every profile.

    Exits 0 only when every (test, profile) run passed.

    Examples:

        # Run everything in the current directory
        hilrun run

        # Only the release profile, on the remote rig
        hilrun run --profile release --mode remote
    """
    _ = setup_logging(verbose)
    workdir = directory.resolve()
    reporter = Reporter(console=console, verbose=verbose)

    try:
        config = load_config(workdir, config_file)
        if remote_host:
            config.remote.host = remote_host
        if remote_user:
            config.remote.user = remote_user

        profiles = config.select_profiles(profile)
        resolved = resolve_mode(mode, config)

        if resolved is Mode.REMOTE:
            if report is not None:
                console.print("[yellow]Warning:[/yellow] --report is ignored in remote mode")
            bridge = RemoteBridge.from_config(
                config.remote, profiles=[p.name for p in profiles] if profile else None
            )
            result = bridge.run()
            raise typer.Exit(reporter.remote_summary(result))

        tests = discover_tests(workdir, config.test_glob)
        if not tests:
            console.print(
                f"[red]Error:[/red] No tests matching {escape(config.test_glob)} in {escape(str(workdir))}"
            )
            raise typer.Exit(1)

        orchestrator = Orchestrator.from_config(
            config, workdir, tests, profiles, reporter=reporter
        )
        session = orchestrator.run()
    except (HilrunError, NotADirectoryError) as e:
        console.print(f"[red]Error:[/red] {escape(str(e))}")
        raise typer.Exit(1) from e

    if report is not None:
        write_report(session, report)
        console.print(f"[dim]Report written to {escape(str(report))}[/dim]")

    raise typer.Exit(reporter.summary(session))
