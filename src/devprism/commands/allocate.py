"""Allocate command - book ports for an existing session."""

from pathlib import Path

import typer

from ..config import load_project_config
from .common import console, get_allocator, get_db, ports_table, registry_errors, resolve_session


def allocate(
    services: list[str] | None = typer.Argument(None, help="Services (default: config ports)"),
    session_id: str | None = typer.Option(None, "--session", help="Session id (default: cwd)"),
    project: str | None = typer.Option(None, "--project", help="Project root"),
    quiet: bool = typer.Option(False, "-q", "--quiet", help="Output SERVICE=PORT lines"),
) -> None:
    """Allocate ports for a session's services.

    Services already allocated keep their port.

    Examples:
        dev-prism allocate postgres app
        dev-prism allocate --session 002 redis
    """
    with get_db() as db:
        session = resolve_session(db, session_id, project)
        with registry_errors():
            if not services:
                services = load_project_config(Path(session.project_root)).ports
            allocations = get_allocator(db).allocate(session.session_id, services)

    if quiet:
        for alloc in allocations:
            print(f"{alloc.service}={alloc.port}")
        return

    if not allocations:
        console.print("[yellow]No services to allocate[/yellow]")
        return
    console.print(ports_table(allocations, title=f"Session {session.session_id} Ports"))
