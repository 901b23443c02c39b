# Copyright (c) Syntropy Systems
"""hilrun parse command."""
from __future__ import annotations

import sys
from typing import Optional

import typer
from rich.console import Console
from rich.markup import escape

from hilrun.parser import (
    DEFAULT_FAILURE_MARKER,
    DEFAULT_SUCCESS_MARKER,
    MarkerSet,
    OutputParser,
    Verdict,
)

console = Console(highlight=False, soft_wrap=True)
err_console = Console(stderr=True, highlight=False)


def parse(
    success: Optional[list[str]] = typer.Option(
        None,
        "--success", "-s",
        help=f"Success marker (repeatable; default: {DEFAULT_SUCCESS_MARKER})",
    ),
    failure: Optional[list[str]] = typer.Option(
        None,
        "--failure", "-f",
        help=f"Failure marker (repeatable; default: {DEFAULT_FAILURE_MARKER})",
    ),
    timeout: Optional[float] = typer.Option(
        None,
        "--timeout", "-t",
        help="Fail with a timeout if no marker arrives within this many seconds",
    ),
    quiet: bool = typer.Option(
        False,
        "--quiet", "-q",
        help="Do not echo input lines",
    ),
) -> None:
    """
    Read device output on stdin and exit with its verdict.

    Exits 0 when a success marker is seen first and 1 on a failure
    marker, a timeout, or end of input without any marker.

    Example:

        cargo run --bin hello-world | hilrun parse -s TEST-SUCCESS -f TEST-FAIL
    """
    try:
        markers = MarkerSet.from_lists(
            success or [DEFAULT_SUCCESS_MARKER],
            failure or [DEFAULT_FAILURE_MARKER],
        )
    except ValueError as e:
        err_console.print(f"[red]Error:[/red] {escape(str(e))}")
        raise typer.Exit(1) from e

    parser = OutputParser(markers)
    echo = None if quiet else _echo

    if timeout is None:
        result = parser.parse(sys.stdin, on_line=echo)
    else:
        result = parser.parse_stream(sys.stdin, timeout=timeout, on_line=echo)

    if result.verdict is Verdict.PASS:
        err_console.print(f"[green]PASS[/green] ({escape(result.marker or '')})")
    elif result.verdict is Verdict.FAIL:
        err_console.print(f"[red]FAIL[/red] ({escape(result.marker or '')})")
    elif result.verdict is Verdict.TIMEOUT:
        err_console.print(f"[yellow]TIMEOUT[/yellow] no marker within {timeout:g}s")
    else:
        err_console.print("[red]FAIL[/red] input ended without a marker")

    raise typer.Exit(0 if result.verdict is Verdict.PASS else 1)


def _echo(line: str) -> None:
    console.print(line, markup=False)
