# Copyright (c) Syntropy Systems
"""Main CLI entry point for hilrun."""

import typer

from hilrun.cli.doctor import doctor
from hilrun.cli.init_cmd import init
from hilrun.cli.list_cmd import list_tests
from hilrun.cli.parse import parse
from hilrun.cli.run import run

app = typer.Typer(
    name="hilrun",
    help=(
        "Hardware-in-the-loop firmware tests. Build every test under every "
        "profile, run it on the device, get one exit status."
    ),
    no_args_is_help=True,
    add_completion=False,
)

# Register commands
_ = app.command()(run)
_ = app.command(name="list")(list_tests)
_ = app.command()(parse)
_ = app.command()(init)
_ = app.command()(doctor)


if __name__ == "__main__":
    app()
