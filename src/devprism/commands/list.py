"""List command - show active sessions."""

import typer

from .common import console, get_db, resolve_project, sessions_table


def list_cmd(
    all: bool = typer.Option(False, "-a", "--all", help="Show all projects, not just current"),
    project: str | None = typer.Option(None, "--project", help="Project root"),
) -> None:
    """List active sessions.

    Examples:
        dev-prism list
        dev-prism list --all
    """
    with get_db() as db:
        if all:
            sessions = db.list_all()
        else:
            sessions = db.list_by_project(resolve_project(project))

        if not sessions:
            console.print("[yellow]No sessions found[/yellow]")
            return

        console.print(sessions_table(db, sessions, show_project=all))
