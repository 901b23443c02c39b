# Copyright (c) Syntropy Systems
"""hilrun doctor command."""

import shutil
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console

from hilrun.config import find_config_path, load_config
from hilrun.device import probe_attached
from hilrun.errors import ConfigError
from hilrun.parser import MarkerSet

console = Console()


def doctor(
    directory: Path = typer.Argument(
        Path(),
        help="Project directory to check (default: current directory)",
    ),
) -> None:
    """Check hilrun setup and diagnose issues.

    Verifies:
    - configuration loads and markers are valid
    - build and run tools are on PATH
    - a device is attached, or a remote rig is configured
    """
    issues: list[str] = []
    warnings: list[str] = []
    workdir = directory.resolve()

    config_path: Optional[Path] = find_config_path(workdir)
    if config_path is None:
        console.print("[dim]•[/dim] No config file found, using defaults")
        console.print("  Run [bold]hilrun init[/bold] to create one")
    else:
        console.print(f"[green]✓[/green] Config: {config_path}")

    try:
        config = load_config(workdir)
    except ConfigError as e:
        console.print(f"[red]✗[/red] {e}")
        raise typer.Exit(1) from e

    try:
        _ = MarkerSet.from_lists(config.success_markers, config.failure_markers)
        console.print(
            "[green]✓[/green] Markers: "
            f"{len(config.success_markers)} success, {len(config.failure_markers)} failure"
        )
    except ValueError as e:
        console.print(f"[red]✗[/red] Markers: {e}")
        issues.append(f"Invalid markers: {e}")

    for label, argv in (("Build tool", config.build_command), ("Run tool", config.run_command)):
        tool = argv[0] if argv else ""
        if tool and shutil.which(tool):
            console.print(f"[green]✓[/green] {label}: {tool}")
        else:
            console.print(f"[red]✗[/red] {label} not found: {tool or '(empty)'}")
            issues.append(f"{label} missing")

    attached = probe_attached(config.device)
    if attached:
        console.print("[green]✓[/green] Device attached")
    else:
        console.print("[yellow]⚠[/yellow] No device attached locally")

    remote = config.remote
    if remote.configured:
        console.print(f"[green]✓[/green] Remote rig: {remote.user or ''}@{remote.host}:{remote.port}")
        if not remote.vm:
            console.print("[red]✗[/red] remote.vm is not set; baseline restore impossible")
            issues.append("remote.vm missing")
        if remote.key_file and not Path(remote.key_file).expanduser().exists():
            console.print(f"[red]✗[/red] Key file not found: {remote.key_file}")
            issues.append("SSH key file missing")
    elif not attached:
        warnings.append("No device attached and no remote rig configured")

    console.print()
    if issues:
        console.print(f"[red]Found {len(issues)} issue(s)[/red]")
        for issue in issues:
            console.print(f"  - {issue}")
    elif warnings:
        console.print(f"[yellow]Found {len(warnings)} warning(s)[/yellow]")
        for warning in warnings:
            console.print(f"  - {warning}")
    else:
        console.print("[green]All checks passed[/green]")
