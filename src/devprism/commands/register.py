"""Register command - record a new session and book its ports."""

from pathlib import Path

import typer

from ..config import load_project_config
from ..context import default_branch_name, get_project_context, next_session_id
from ..errors import RegistryError
from .common import (
    console,
    error,
    get_allocator,
    get_db,
    info,
    ports_table,
    registry_errors,
    success,
)


def register(
    session_id: str | None = typer.Argument(None, help="Session id (default: next free 001-999)"),
    session_dir: str | None = typer.Option(None, "--dir", help="Session working directory"),
    branch: str | None = typer.Option(None, "-b", "--branch", help="Git branch of the session"),
    mode: str = typer.Option("docker", "--mode", help="docker or native"),
    in_place: bool = typer.Option(False, "--in-place", help="Session runs in the project itself"),
    services: list[str] | None = typer.Option(
        None, "-s", "--service", help="Service to book (repeatable, default: config ports)"
    ),
    quiet: bool = typer.Option(False, "-q", "--quiet", help="Output only the session id"),
) -> None:
    """Register a session for the current project and allocate its ports.

    Examples:
        dev-prism register
        dev-prism register 007 --branch feature/auth
        dev-prism register --in-place --mode native -s app -s postgres
    """
    ctx = get_project_context()
    project_root = Path(ctx.root)
    with registry_errors():
        config = load_project_config(project_root)
    sessions_dir = config.sessions_path(project_root)

    with get_db() as db:
        allocator = get_allocator(db)

        with registry_errors():
            if session_id is None:
                session_id = next_session_id(db.used_session_ids(), sessions_dir)

            if in_place:
                workdir = str(project_root)
                branch_name = branch if branch is not None else (ctx.branch or "")
            else:
                workdir = str(Path(session_dir).resolve()) if session_dir else str(
                    sessions_dir / f"session-{session_id}"
                )
                branch_name = branch if branch is not None else default_branch_name(session_id)

            session = db.insert_session(
                session_id,
                str(project_root),
                workdir,
                branch=branch_name,
                mode=mode,
                in_place=in_place,
            )

        try:
            allocations = allocator.allocate(session.session_id, services or config.ports)
        except (RegistryError, ValueError) as e:
            error(str(e))
            # Do not leave a session behind without its ports
            with registry_errors():
                db.mark_destroyed(session.project_root, session.session_id)
            raise typer.Exit(1)

    if quiet:
        print(session.session_id)
        return

    success(f"Session {session.session_id} registered")
    info(f"  [dim]Directory:[/dim] {session.session_dir}")
    if session.branch:
        info(f"  [dim]Branch:[/dim]    {session.branch}")
    if allocations:
        console.print(ports_table(allocations))
