"""Typer CLI for dev-prism - Main entry point."""

import typer

from . import __version__
from .commands import (
    allocate,
    destroy,
    info,
    list_cmd,
    prune,
    register,
    remove,
    reservations,
    reserve,
    unreserve,
)

app = typer.Typer(
    name="dev-prism",
    help="Session & port registry for parallel development environments",
    no_args_is_help=True,
)


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        typer.echo(f"dev-prism version {__version__}")
        raise typer.Exit()


@app.callback()
def main_callback(
    version: bool = typer.Option(
        False,
        "--version",
        "-v",
        help="Show version and exit",
        callback=version_callback,
        is_eager=True,
    ),
) -> None:
    """Session & port registry for parallel development environments."""
    pass


# Register all commands
app.command()(register)
app.command(name="list")(list_cmd)
app.command()(info)
app.command()(allocate)
app.command()(destroy)
app.command()(remove)
app.command()(reserve)
app.command()(unreserve)
app.command()(reservations)
app.command()(prune)


def main() -> None:
    """Main entry point."""
    app()
