# Copyright (c) Syntropy Systems
"""hilrun list command."""
from __future__ import annotations

from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

from hilrun.config import load_config
from hilrun.discovery import discover_tests
from hilrun.errors import HilrunError

console = Console()


def list_tests(
    directory: Path = typer.Argument(
        Path(),
        help="Directory containing the test programs (default: current directory)",
    ),
    config_file: Optional[Path] = typer.Option(
        None,
        "--config", "-c",
        envvar="HILRUN_CONFIG",
        help="Config file (default: nearest .hilrun/config.yaml)",
    ),
) -> None:
    """Show the tests and profiles a run would cover."""
    workdir = directory.resolve()
    try:
        config = load_config(workdir, config_file)
        tests = discover_tests(workdir, config.test_glob)
    except (HilrunError, NotADirectoryError) as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1) from e

    if not tests:
        console.print(f"[dim]No tests matching {config.test_glob}[/dim]")
        return

    table = Table(title=f"{len(tests)} test(s) in {workdir}")
    table.add_column("#", style="dim")
    table.add_column("Test")
    table.add_column("Profiles")

    profile_names = ", ".join(p.name for p in config.profiles)
    for i, test in enumerate(tests, start=1):
        table.add_row(str(i), test.name, profile_names)

    console.print(table)
    runs = len(tests) * len(config.profiles)
    console.print(f"[dim]{runs} run(s) per session[/dim]")
