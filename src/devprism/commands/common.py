"""Common utilities for CLI commands."""

from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

import typer
from rich.table import Table

from ..allocator import PortAllocator
from ..config import get_port_range
from ..console import console, debug, error, error_console, info, success, warning
from ..context import get_project_context
from ..db import Database, PortAllocation, SessionRow
from ..errors import RegistryError

# Re-export console utilities
__all__ = [
    "console",
    "error_console",
    "debug",
    "info",
    "success",
    "warning",
    "error",
    "get_db",
    "get_allocator",
    "registry_errors",
    "resolve_project",
    "resolve_session",
    "ports_table",
    "sessions_table",
]


@contextmanager
def registry_errors() -> Iterator[None]:
    """Turn registry and config errors into a red message and exit code 1."""
    try:
        yield
    except (RegistryError, ValueError) as e:
        error(str(e))
        raise typer.Exit(1)


def get_db() -> Database:
    """Get database instance."""
    with registry_errors():
        return Database()


def get_allocator(db: Database) -> PortAllocator:
    """Get an allocator honouring DEV_PRISM_PORT_RANGE."""
    with registry_errors():
        return PortAllocator(db, port_range=get_port_range())


def resolve_project(project: str | None) -> str:
    """Absolute project root from an option, or the current project."""
    if project:
        return str(Path(project).resolve())
    return get_project_context().root


def resolve_session(db: Database, session_id: str | None, project: str | None) -> SessionRow:
    """Find the session named on the command line, or the one owning the cwd.

    Exits with code 1 if there is none.
    """
    if session_id is None:
        session = db.find_by_dir(str(Path.cwd().resolve()))
        if session is None:
            error("No session for the current directory. Pass a session id.")
            raise typer.Exit(1)
        return session

    session = db.find_session(resolve_project(project), session_id)
    if session is None:
        error(f"Session {session_id} not found.")
        raise typer.Exit(1)
    return session


def ports_table(allocations: list[PortAllocation], title: str = "Ports") -> Table:
    table = Table(title=title)
    table.add_column("Service", style="green")
    table.add_column("Port", style="yellow")
    for alloc in allocations:
        table.add_row(alloc.service, str(alloc.port))
    return table


def sessions_table(db: Database, sessions: list[SessionRow], show_project: bool) -> Table:
    table = Table(title="Sessions")
    table.add_column("Session", style="cyan")
    if show_project:
        table.add_column("Project", style="blue")
    table.add_column("Branch", style="magenta")
    table.add_column("Mode")
    table.add_column("Directory", style="dim")
    table.add_column("Ports", style="yellow")

    for session in sessions:
        ports = ", ".join(
            f"{a.service}:{a.port}" for a in db.get_port_allocations(session.session_id)
        )
        row = [session.session_id]
        if show_project:
            row.append(session.project_root)
        row.append(session.branch or "-")
        row.append(session.mode + (" (in place)" if session.in_place else ""))
        row.append(session.session_dir)
        row.append(ports or "-")
        table.add_row(*row)
    return table
