"""Destroy and remove commands - end sessions."""

import typer

from .common import console, error, get_db, registry_errors, resolve_project, success


def destroy(
    session_id: str | None = typer.Argument(None, help="Session to destroy"),
    all: bool = typer.Option(False, "--all", help="Destroy all sessions of the project"),
    project: str | None = typer.Option(None, "--project", help="Project root"),
) -> None:
    """Destroy session(s) and release their ports.

    The session record is kept (soft delete) until pruned with --purge.

    Examples:
        dev-prism destroy 001
        dev-prism destroy --all
    """
    project_root = resolve_project(project)

    with get_db() as db, registry_errors():
        if all:
            sessions = db.list_by_project(project_root)
            for session in sessions:
                db.mark_destroyed(project_root, session.session_id)
            success(f"Destroyed {len(sessions)} session(s)")
        elif session_id:
            if db.mark_destroyed(project_root, session_id):
                success(f"Session {session_id} destroyed")
            else:
                console.print(f"[yellow]No active session {session_id}[/yellow]")
        else:
            error("Specify a session id or use --all")
            raise typer.Exit(1)


def remove(
    session_id: str = typer.Argument(..., help="Session to remove permanently"),
    project: str | None = typer.Option(None, "--project", help="Project root"),
) -> None:
    """Permanently delete a session record and its ports."""
    with get_db() as db, registry_errors():
        if db.remove_session(resolve_project(project), session_id):
            success(f"Session {session_id} removed")
        else:
            console.print(f"[yellow]No session {session_id}[/yellow]")
