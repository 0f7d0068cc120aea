"""Prune command - destroy orphaned sessions and purge destroyed ones."""

import typer

from ..pruner import Pruner
from .common import console, get_db, info, registry_errors, success


def prune(
    dry_run: bool = typer.Option(False, "--dry-run", "-n", help="Show what would be removed"),
    purge: bool = typer.Option(False, "--purge", help="Also delete destroyed session records"),
    days: int | None = typer.Option(
        None, "--days", help="With --purge, only records destroyed more than N days ago"
    ),
    force: bool = typer.Option(False, "--force", "-f", help="Skip confirmation"),
) -> None:
    """Destroy sessions whose directory no longer exists.

    Examples:
        dev-prism prune --dry-run
        dev-prism prune
        dev-prism prune --purge --days 30
    """
    with get_db() as db, registry_errors():
        pruner = Pruner(db)

        # Always dry run first
        orphans = pruner.prune(dry_run=True).removed
        destroyed = pruner.purge_destroyed(days=days, dry_run=True).removed if purge else []

        if not orphans and not destroyed:
            success("Nothing to prune")
            return

        if orphans:
            console.print(f"[yellow]Would destroy {len(orphans)} orphaned session(s):[/yellow]")
            for session in orphans:
                info(f"  - {session.session_id}: {session.session_dir}")
        if destroyed:
            console.print(f"[yellow]Would purge {len(destroyed)} destroyed record(s):[/yellow]")
            for session in destroyed:
                info(f"  - {session.session_id}: {session.project_root}")

        if dry_run:
            console.print("\n[dim]Run without --dry-run to remove.[/dim]")
            return

        if not force:
            confirm = typer.confirm("Proceed?")
            if not confirm:
                console.print("[yellow]Cancelled[/yellow]")
                return

        result = pruner.prune(dry_run=False)
        for message in result.errors:
            console.print(f"[red]{message}[/red]")
        purged = pruner.purge_destroyed(days=days).removed if purge else []

        success(
            f"Destroyed {len(result.removed)} session(s), purged {len(purged)} record(s)"
        )
