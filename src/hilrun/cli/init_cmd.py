# Copyright (c) Syntropy Systems
"""hilrun init command."""

from pathlib import Path

import typer
from rich.console import Console

from hilrun.config import CONFIG_DIR_NAME, CONFIG_FILE_NAME, DEFAULT_CONFIG_YAML

console = Console()


def init(
    path: Path = typer.Argument(
        Path(),
        help="Directory to initialize (default: current directory)",
    ),
) -> None:
    """Create a .hilrun directory with a default configuration."""
    target = path.resolve()
    hilrun_dir = target / CONFIG_DIR_NAME
    config_path = hilrun_dir / CONFIG_FILE_NAME

    if config_path.exists():
        console.print(f"[yellow]Already initialized:[/yellow] {hilrun_dir}")
        return

    hilrun_dir.mkdir(parents=True, exist_ok=True)
    _ = config_path.write_text(DEFAULT_CONFIG_YAML)

    console.print(f"[green]Initialized hilrun project:[/green] {hilrun_dir}")
    console.print(f"  [dim]config:[/dim] {config_path}")
