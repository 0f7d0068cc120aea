"""Project detection and session naming helpers for dev-prism."""

import subprocess
from dataclasses import dataclass
from datetime import date
from pathlib import Path

from .errors import SessionIdsExhausted

MAX_SESSION_NUMBER = 999


@dataclass
class ProjectContext:
    """Project the current directory belongs to."""

    root: str  # Absolute path of the project (git top-level if any)
    branch: str | None  # Current git branch


def get_project_context(path: Path | None = None) -> ProjectContext:
    """Detect the project for a directory.

    Uses the git top-level directory when inside a repository, otherwise
    the resolved path itself.

    Args:
        path: Path to analyze. Defaults to current working directory.

    Returns:
        ProjectContext object
    """
    path = (path or Path.cwd()).resolve()
    toplevel = _get_git_toplevel(path)
    root = Path(toplevel).resolve() if toplevel else path
    return ProjectContext(root=str(root), branch=_get_git_branch(path))


def _run_git(path: Path, *args: str) -> str | None:
    """Run a git command and return stripped stdout, or None on failure."""
    try:
        result = subprocess.run(
            ["git", *args],
            cwd=path,
            capture_output=True,
            text=True,
            timeout=5,
        )
    except (subprocess.SubprocessError, FileNotFoundError):
        return None
    if result.returncode != 0:
        return None
    return result.stdout.strip() or None


def _get_git_toplevel(path: Path) -> str | None:
    return _run_git(path, "rev-parse", "--show-toplevel")


def _get_git_branch(path: Path) -> str | None:
    """Get the current git branch.

    Args:
        path: Path inside a git repository

    Returns:
        Branch name or None if not a git repo or HEAD is detached
    """
    return _run_git(path, "branch", "--show-current")


def next_session_id(used: set[str], sessions_dir: Path | None = None) -> str:
    """Pick the lowest free session id in 001-999.

    Ids whose ``session-XXX`` directory still exists under sessions_dir are
    skipped, since they are left over from an earlier session.

    Args:
        used: Ids held by active sessions
        sessions_dir: Directory holding session worktrees

    Returns:
        Zero-padded three-digit id

    Raises:
        SessionIdsExhausted: If every id is taken
    """
    for number in range(1, MAX_SESSION_NUMBER + 1):
        session_id = f"{number:03d}"
        if session_id in used:
            continue
        if sessions_dir is not None and (sessions_dir / f"session-{session_id}").exists():
            continue
        return session_id
    raise SessionIdsExhausted(f"No available session ids (001-{MAX_SESSION_NUMBER} all in use)")


def default_branch_name(session_id: str, today: date | None = None) -> str:
    """Branch name for a new session, e.g. ``session/2025-01-01/001``."""
    today = today or date.today()
    return f"session/{today.isoformat()}/{session_id}"
