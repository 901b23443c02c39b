# Copyright (c) Syntropy Systems
"""Logging setup for the hilrun CLI."""
from __future__ import annotations

import logging

from rich.console import Console
from rich.logging import RichHandler

LOGGER_NAME = "hilrun"


def setup_logging(verbose: bool = False) -> logging.Logger:
    """Route hilrun's loggers to stderr through rich.

    Progress for humans goes to stdout via the reporter; diagnostics go
    to stderr so remote callers scanning stdout only see the report.
    """
    logger = logging.getLogger(LOGGER_NAME)
    for handler in list(logger.handlers):
        if isinstance(handler, RichHandler):
            logger.removeHandler(handler)

    handler = RichHandler(
        console=Console(stderr=True),
        show_path=False,
        rich_tracebacks=verbose,
    )
    handler.setFormatter(logging.Formatter("%(message)s"))
    logger.addHandler(handler)
    logger.setLevel(logging.DEBUG if verbose else logging.WARNING)
    logger.propagate = False
    return logger
