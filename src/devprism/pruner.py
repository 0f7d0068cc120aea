"""Cleanup logic for orphaned and destroyed sessions."""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path

from .db import Database, SessionRow
from .errors import RegistryError


@dataclass
class PruneResult:
    """Result of a prune operation."""

    removed: list[SessionRow]  # Sessions destroyed or purged
    kept: list[SessionRow]  # Sessions left alone
    errors: list[str]  # Errors encountered


class Pruner:
    """Clean up sessions whose working directory is gone."""

    def __init__(self, db: Database) -> None:
        """Initialize pruner.

        Args:
            db: Database instance
        """
        self.db = db

    def prune(self, dry_run: bool = False) -> PruneResult:
        """Soft-destroy active sessions whose session_dir no longer exists.

        Destroying a session releases its ports.

        Args:
            dry_run: If True, don't destroy, just report what would be destroyed

        Returns:
            PruneResult with details of operation
        """
        result = PruneResult(removed=[], kept=[], errors=[])

        for session in self.db.list_all():
            if not self._is_orphan(session):
                result.kept.append(session)
                continue
            try:
                if not dry_run:
                    self.db.mark_destroyed(session.project_root, session.session_id)
                result.removed.append(session)
            except RegistryError as e:
                result.errors.append(f"{session.session_id}: {e}")

        return result

    def purge_destroyed(self, days: int | None = None, dry_run: bool = False) -> PruneResult:
        """Permanently remove destroyed sessions.

        Args:
            days: Only purge sessions destroyed more than N days ago
            dry_run: If True, don't delete, just report what would be deleted

        Returns:
            PruneResult with details of operation
        """
        before = None
        if days is not None:
            cutoff = datetime.now(timezone.utc) - timedelta(days=days)
            before = cutoff.isoformat(timespec="microseconds")

        result = PruneResult(removed=self.db.list_destroyed(before=before), kept=[], errors=[])
        if not dry_run and result.removed:
            self.db.purge_destroyed(before=before)
        return result

    def _is_orphan(self, session: SessionRow) -> bool:
        """A session is orphaned once its working directory is gone."""
        return not Path(session.session_dir).exists()
