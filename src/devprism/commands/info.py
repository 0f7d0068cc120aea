"""Info command - show one session."""

import typer

from .common import console, get_db, ports_table, resolve_session


def info(
    session_id: str | None = typer.Argument(None, help="Session id (default: session of cwd)"),
    project: str | None = typer.Option(None, "--project", help="Project root"),
) -> None:
    """Show a session and its ports.

    Without an id, shows the session whose directory is the current one.
    """
    with get_db() as db:
        session = resolve_session(db, session_id, project)
        allocations = db.get_port_allocations(session.session_id)

    console.print(f"[bold]Session:[/bold] {session.session_id}")
    console.print(f"  [dim]Project:[/dim]   {session.project_root}")
    console.print(f"  [dim]Directory:[/dim] {session.session_dir}")
    console.print(f"  [dim]Branch:[/dim]    {session.branch or '-'}")
    console.print(f"  [dim]Mode:[/dim]      {session.mode}{' (in place)' if session.in_place else ''}")
    console.print(f"  [dim]Created:[/dim]   {session.created_at}")

    if allocations:
        console.print(ports_table(allocations))
    else:
        console.print("[dim]No ports allocated[/dim]")
