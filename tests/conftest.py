"""Test fixtures and configuration."""

import sqlite3
import subprocess
import tempfile
from pathlib import Path

import pytest

from devprism.db import Database

LEGACY_SESSIONS_TABLE = """
    CREATE TABLE sessions (
        id            INTEGER PRIMARY KEY AUTOINCREMENT,
        session_id    TEXT NOT NULL,
        project_root  TEXT NOT NULL,
        session_dir   TEXT NOT NULL,
        branch        TEXT NOT NULL DEFAULT '',
        mode          TEXT NOT NULL DEFAULT 'docker',
        in_place      INTEGER NOT NULL DEFAULT 0,
        created_at    TEXT NOT NULL DEFAULT (datetime('now')),
        destroyed_at  TEXT,
        UNIQUE(session_id, project_root)
    );
"""


class ScriptedScanner:
    """Scanner returning a fixed sequence of probe results."""

    def __init__(self, ports, bindable=None):
        self.ports = list(ports)
        self.bindable = bindable
        self.probes = 0

    def probe_free_port(self):
        self.probes += 1
        return self.ports.pop(0)

    def is_port_bindable(self, port):
        if self.bindable is None:
            return True
        return port in self.bindable


@pytest.fixture
def temp_dir():
    """Temporary directory for tests."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def scripted_scanner():
    """Factory for scanners with predetermined probe results."""
    return ScriptedScanner


@pytest.fixture
def db_path(temp_dir):
    return temp_dir / "registry.db"


@pytest.fixture
def mock_db(db_path):
    """Database instance for tests."""
    db = Database(db_path)
    yield db
    db.close()


@pytest.fixture
def make_legacy_db(temp_dir):
    """Build a registry file with an older sessions layout.

    Usage: make_legacy_db(rows, table=LEGACY_SESSIONS_TABLE) where rows are
    tuples of (session_id, project_root, session_dir[, created_at[, destroyed_at]]).
    """

    def _make(rows, table=LEGACY_SESSIONS_TABLE, name="legacy.db"):
        path = temp_dir / name
        conn = sqlite3.connect(str(path))
        conn.executescript(table)
        for row in rows:
            columns = ["session_id", "project_root", "session_dir", "created_at", "destroyed_at"]
            columns = columns[: len(row)]
            placeholders = ", ".join("?" for _ in row)
            conn.execute(
                f"INSERT INTO sessions ({', '.join(columns)}) VALUES ({placeholders})",
                row,
            )
        conn.commit()
        conn.close()
        return path

    return _make


@pytest.fixture
def registry_env(db_path, monkeypatch):
    """Point the CLI at a temporary registry file."""
    monkeypatch.setenv("DEV_PRISM_DB", str(db_path))
    monkeypatch.delenv("DEV_PRISM_PORT_RANGE", raising=False)
    monkeypatch.delenv("DEV_PRISM_BUSY_TIMEOUT", raising=False)
    return db_path


@pytest.fixture
def mock_git_repo(temp_dir):
    """Create a mock git repository for testing."""
    repo_dir = temp_dir / "repo"
    repo_dir.mkdir()

    subprocess.run(["git", "init"], cwd=repo_dir, capture_output=True, check=True)
    subprocess.run(
        ["git", "config", "user.email", "test@example.com"],
        cwd=repo_dir,
        capture_output=True,
        check=True,
    )
    subprocess.run(
        ["git", "config", "user.name", "Test User"],
        cwd=repo_dir,
        capture_output=True,
        check=True,
    )

    (repo_dir / "README.md").write_text("# Test")
    subprocess.run(["git", "add", "."], cwd=repo_dir, capture_output=True, check=True)
    subprocess.run(
        ["git", "commit", "-m", "Initial commit"],
        cwd=repo_dir,
        capture_output=True,
        check=True,
    )

    # Create branch
    subprocess.run(
        ["git", "checkout", "-b", "main"],
        cwd=repo_dir,
        capture_output=True,
        check=False,  # May fail if already on main
    )

    return repo_dir
