"""Reservation commands - withhold ports from allocation."""

import typer
from rich.table import Table

from .common import console, get_db, registry_errors, success


def reserve(
    port: int = typer.Argument(..., help="Port to reserve"),
    reason: str = typer.Option("", "-r", "--reason", help="Why the port is withheld"),
) -> None:
    """Reserve a port so it is never allocated automatically.

    Examples:
        dev-prism reserve 5432 --reason "system postgres"
    """
    with get_db() as db, registry_errors():
        db.reserve_port(port, reason)
    success(f"Reserved {port}")


def unreserve(port: int = typer.Argument(..., help="Port to release")) -> None:
    """Remove a port reservation."""
    with get_db() as db, registry_errors():
        removed = db.unreserve_port(port)
    if removed:
        success(f"Unreserved {port}")
    else:
        console.print(f"[yellow]Port {port} was not reserved[/yellow]")


def reservations() -> None:
    """List reserved ports."""
    with get_db() as db:
        rows = db.list_reservations()

    if not rows:
        console.print("[yellow]No reservations[/yellow]")
        return

    table = Table(title="Reserved Ports")
    table.add_column("Port", style="yellow")
    table.add_column("Reason", style="green")
    table.add_column("Since", style="dim")
    for row in rows:
        table.add_row(str(row.port), row.reason or "-", row.created_at)
    console.print(table)
