"""Database layer for dev-prism - SQLite-based session & port registry."""

import sqlite3
from collections.abc import Iterable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from . import schema
from .config import get_busy_timeout, get_db_path
from .console import debug, warning
from .errors import DuplicateSession, SessionNotFound, StoreUnavailable

SESSION_MODES = ("docker", "native")


def utc_now() -> str:
    """Current time as an ISO-8601 UTC string with microseconds."""
    return datetime.now(timezone.utc).isoformat(timespec="microseconds")


@dataclass
class SessionRow:
    """A row of the sessions table."""

    id: int
    session_id: str
    project_root: str
    session_dir: str
    branch: str
    mode: str
    in_place: bool
    created_at: str
    destroyed_at: str | None

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "SessionRow":
        return cls(
            id=row["id"],
            session_id=row["session_id"],
            project_root=row["project_root"],
            session_dir=row["session_dir"],
            branch=row["branch"],
            mode=row["mode"],
            in_place=bool(row["in_place"]),
            created_at=row["created_at"],
            destroyed_at=row["destroyed_at"],
        )

    @property
    def active(self) -> bool:
        return self.destroyed_at is None


@dataclass
class PortAllocation:
    """A committed (session, service, port) binding."""

    session_id: str
    service: str
    port: int


@dataclass
class Reservation:
    """A port withheld from automatic allocation."""

    port: int
    reason: str
    created_at: str


class Database:
    """SQLite registry of sessions, port allocations and reservations.

    Every process opens its own ``Database``; the file is the only shared
    state. Writes run in ``BEGIN IMMEDIATE`` transactions so concurrent
    writers queue on SQLite's lock for at most ``busy_timeout`` seconds.
    """

    def __init__(self, db_path: Path | None = None, busy_timeout: float | None = None) -> None:
        """Open the registry, creating or migrating the schema.

        Args:
            db_path: Path to the SQLite database file. If None, uses default location.
            busy_timeout: Seconds to wait for a lock. If None, uses configured value.

        Raises:
            StoreUnavailable: If the file cannot be used as a registry
        """
        self.db_path = Path(db_path) if db_path is not None else get_db_path()
        self.busy_timeout = get_busy_timeout() if busy_timeout is None else busy_timeout

        try:
            self.db_path.parent.mkdir(parents=True, exist_ok=True, mode=0o700)
        except OSError as e:
            raise StoreUnavailable(f"Cannot create registry directory: {e}") from e

        self._conn: sqlite3.Connection | None = self._connect()
        try:
            self._init_schema()
            self._enable_foreign_keys()
        except BaseException:
            self.close()
            raise

    def __enter__(self) -> "Database":
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()

    def close(self) -> None:
        """Close the underlying connection. Safe to call twice."""
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    @property
    def closed(self) -> bool:
        return self._conn is None

    def _connect(self) -> sqlite3.Connection:
        """Open the connection and switch the journal to WAL."""
        try:
            conn = sqlite3.connect(
                str(self.db_path), timeout=self.busy_timeout, isolation_level=None
            )
        except sqlite3.Error as e:
            raise StoreUnavailable(f"Cannot open registry {self.db_path}: {e}") from e

        conn.row_factory = sqlite3.Row
        try:
            journal_mode = conn.execute("PRAGMA journal_mode=WAL").fetchone()[0]
        except sqlite3.DatabaseError as e:
            conn.close()
            raise StoreUnavailable(f"Cannot read registry {self.db_path}: {e}") from e

        if str(journal_mode).lower() == "off":
            conn.close()
            raise StoreUnavailable("Registry journal is disabled, writes would not be atomic")
        debug(f"opened {self.db_path} (journal_mode={journal_mode})")
        return conn

    def _enable_foreign_keys(self) -> None:
        conn = self._get_connection()
        conn.execute("PRAGMA foreign_keys = ON")
        if conn.execute("PRAGMA foreign_keys").fetchone()[0] != 1:
            raise StoreUnavailable("SQLite build does not enforce foreign keys")

    def _init_schema(self) -> None:
        """Create the schema, migrating older layouts in one transaction."""
        try:
            with self.transaction() as conn:
                dropped = schema.ensure_schema(conn)
        except sqlite3.DatabaseError as e:
            raise StoreUnavailable(f"Failed to migrate registry {self.db_path}: {e}") from e

        if dropped:
            warning(
                f"Registry migration dropped {dropped} session(s) "
                "whose id was already in use by an older session"
            )

    def _get_connection(self) -> sqlite3.Connection:
        """Get the open database connection."""
        if self._conn is None:
            raise StoreUnavailable("Registry is closed")
        return self._conn

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """Run a block inside ``BEGIN IMMEDIATE`` ... ``COMMIT``.

        Any exception rolls the whole block back and propagates.

        Raises:
            StoreUnavailable: If the write lock cannot be taken or the commit fails
        """
        conn = self._get_connection()
        try:
            conn.execute("BEGIN IMMEDIATE")
        except sqlite3.DatabaseError as e:
            raise StoreUnavailable(f"Registry is unavailable: {e}") from e

        try:
            yield conn
        except BaseException:
            if conn.in_transaction:
                conn.execute("ROLLBACK")
            raise

        try:
            conn.execute("COMMIT")
        except sqlite3.DatabaseError as e:
            if conn.in_transaction:
                conn.execute("ROLLBACK")
            raise StoreUnavailable(f"Failed to commit registry write: {e}") from e

    def _fetch_session(self, query: str, params: tuple[Any, ...]) -> SessionRow | None:
        row = self._get_connection().execute(query, params).fetchone()
        return SessionRow.from_row(row) if row else None

    def _fetch_sessions(self, query: str, params: tuple[Any, ...] = ()) -> list[SessionRow]:
        cursor = self._get_connection().execute(query, params)
        return [SessionRow.from_row(row) for row in cursor.fetchall()]

    # Sessions

    def insert_session(
        self,
        session_id: str,
        project_root: str,
        session_dir: str,
        branch: str = "",
        mode: str = "docker",
        in_place: bool = False,
    ) -> SessionRow:
        """Register a new active session.

        Args:
            session_id: Identifier, unique among active sessions of all projects
            project_root: Absolute path of the owning project
            session_dir: Absolute path of the session's working directory
            branch: Git branch of the session
            mode: "docker" or "native"
            in_place: True if the session runs in the project directory itself

        Returns:
            The inserted row

        Raises:
            DuplicateSession: If an active session already uses session_id
            ValueError: If mode is unknown
        """
        if mode not in SESSION_MODES:
            raise ValueError(f"Unknown session mode '{mode}', expected docker or native")

        with self.transaction() as conn:
            try:
                cursor = conn.execute(
                    """
                    INSERT INTO sessions (
                        session_id, project_root, session_dir, branch, mode,
                        in_place, created_at
                    ) VALUES (?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        session_id,
                        project_root,
                        session_dir,
                        branch,
                        mode,
                        int(in_place),
                        utc_now(),
                    ),
                )
            except sqlite3.IntegrityError as e:
                if "UNIQUE" not in str(e):
                    raise
                raise DuplicateSession(session_id) from e
            row = conn.execute(
                "SELECT * FROM sessions WHERE id = ?", (cursor.lastrowid,)
            ).fetchone()
        return SessionRow.from_row(row)

    def find_session(self, project_root: str, session_id: str) -> SessionRow | None:
        """Get the active session with this id in a project."""
        return self._fetch_session(
            """
            SELECT * FROM sessions
            WHERE project_root = ? AND session_id = ? AND destroyed_at IS NULL
            """,
            (project_root, session_id),
        )

    def find_by_dir(self, session_dir: str) -> SessionRow | None:
        """Get the active session working in a directory.

        If several active sessions share the directory, the newest wins.
        """
        return self._fetch_session(
            """
            SELECT * FROM sessions
            WHERE session_dir = ? AND destroyed_at IS NULL
            ORDER BY created_at DESC, id DESC
            LIMIT 1
            """,
            (session_dir,),
        )

    def list_by_project(self, project_root: str) -> list[SessionRow]:
        """Active sessions of one project, ordered by session_id."""
        return self._fetch_sessions(
            """
            SELECT * FROM sessions
            WHERE project_root = ? AND destroyed_at IS NULL
            ORDER BY session_id
            """,
            (project_root,),
        )

    def list_all(self) -> list[SessionRow]:
        """Active sessions of all projects."""
        return self._fetch_sessions(
            """
            SELECT * FROM sessions
            WHERE destroyed_at IS NULL
            ORDER BY project_root, session_id
            """
        )

    def used_session_ids(self) -> set[str]:
        """Ids held by active sessions across all projects."""
        cursor = self._get_connection().execute(
            "SELECT session_id FROM sessions WHERE destroyed_at IS NULL"
        )
        return {row["session_id"] for row in cursor.fetchall()}

    def mark_destroyed(self, project_root: str, session_id: str) -> bool:
        """Soft-delete an active session and release its ports.

        Returns:
            True if a row was destroyed, False if no active row matched
        """
        with self.transaction() as conn:
            cursor = conn.execute(
                """
                UPDATE sessions SET destroyed_at = ?
                WHERE project_root = ? AND session_id = ? AND destroyed_at IS NULL
                """,
                (utc_now(), project_root, session_id),
            )
            return cursor.rowcount > 0

    def remove_session(self, project_root: str, session_id: str) -> bool:
        """Permanently delete every row (active or destroyed) for this key.

        Returns:
            True if anything was deleted
        """
        with self.transaction() as conn:
            cursor = conn.execute(
                "DELETE FROM sessions WHERE project_root = ? AND session_id = ?",
                (project_root, session_id),
            )
            return cursor.rowcount > 0

    def list_destroyed(self, before: str | None = None) -> list[SessionRow]:
        """Destroyed sessions, optionally only those destroyed before a timestamp."""
        if before is None:
            return self._fetch_sessions(
                """
                SELECT * FROM sessions
                WHERE destroyed_at IS NOT NULL
                ORDER BY destroyed_at
                """
            )
        return self._fetch_sessions(
            """
            SELECT * FROM sessions
            WHERE destroyed_at IS NOT NULL AND destroyed_at < ?
            ORDER BY destroyed_at
            """,
            (before,),
        )

    def purge_destroyed(self, before: str | None = None) -> int:
        """Hard-delete destroyed sessions.

        Args:
            before: Only purge rows destroyed before this ISO timestamp

        Returns:
            Number of rows deleted
        """
        with self.transaction() as conn:
            if before is None:
                cursor = conn.execute("DELETE FROM sessions WHERE destroyed_at IS NOT NULL")
            else:
                cursor = conn.execute(
                    "DELETE FROM sessions WHERE destroyed_at IS NOT NULL AND destroyed_at < ?",
                    (before,),
                )
            return cursor.rowcount

    # Port allocations

    def create_allocations(
        self, session_id: str, allocations: Iterable[tuple[str, int]]
    ) -> None:
        """Insert (service, port) bindings for an active session atomically.

        Args:
            session_id: Owning session
            allocations: (service, port) pairs

        Raises:
            SessionNotFound: If session_id is not an active session
            sqlite3.IntegrityError: If a port or service is already taken or
                a port is reserved; nothing is written in that case
        """
        created_at = utc_now()
        with self.transaction() as conn:
            row = conn.execute(
                "SELECT id FROM sessions WHERE session_id = ? AND destroyed_at IS NULL",
                (session_id,),
            ).fetchone()
            if row is None:
                raise SessionNotFound(session_id)
            conn.executemany(
                """
                INSERT INTO port_allocations (session_ref, service, port, created_at)
                VALUES (?, ?, ?, ?)
                """,
                [(row["id"], service, port, created_at) for service, port in allocations],
            )

    def get_port_allocations(self, session_id: str) -> list[PortAllocation]:
        """Allocations of an active session in the order they were made."""
        cursor = self._get_connection().execute(
            """
            SELECT s.session_id, pa.service, pa.port
            FROM port_allocations AS pa
            JOIN sessions AS s ON s.id = pa.session_ref
            WHERE s.session_id = ? AND s.destroyed_at IS NULL
            ORDER BY pa.rowid
            """,
            (session_id,),
        )
        return [
            PortAllocation(session_id=row["session_id"], service=row["service"], port=row["port"])
            for row in cursor.fetchall()
        ]

    def allocated_ports(self) -> set[int]:
        """Ports held by active sessions."""
        cursor = self._get_connection().execute(
            """
            SELECT pa.port
            FROM port_allocations AS pa
            JOIN sessions AS s ON s.id = pa.session_ref
            WHERE s.destroyed_at IS NULL
            """
        )
        return {row["port"] for row in cursor.fetchall()}

    # Reservations

    def reserve_port(self, port: int, reason: str = "") -> None:
        """Withhold a port from allocation, overwriting any previous reason."""
        _check_port(port)
        with self.transaction() as conn:
            conn.execute(
                """
                INSERT INTO reservations (port, reason, created_at)
                VALUES (?, ?, ?)
                ON CONFLICT(port) DO UPDATE SET reason = excluded.reason
                """,
                (port, reason, utc_now()),
            )

    def unreserve_port(self, port: int) -> bool:
        """Drop a reservation.

        Returns:
            True if the port was reserved
        """
        with self.transaction() as conn:
            cursor = conn.execute("DELETE FROM reservations WHERE port = ?", (port,))
            return cursor.rowcount > 0

    def reserved_ports(self) -> set[int]:
        cursor = self._get_connection().execute("SELECT port FROM reservations")
        return {row["port"] for row in cursor.fetchall()}

    def list_reservations(self) -> list[Reservation]:
        cursor = self._get_connection().execute(
            "SELECT port, reason, created_at FROM reservations ORDER BY port"
        )
        return [
            Reservation(port=row["port"], reason=row["reason"], created_at=row["created_at"])
            for row in cursor.fetchall()
        ]


def _check_port(port: int) -> None:
    if not 1 <= port <= 65535:
        raise ValueError(f"Port {port} is outside 1-65535")


def open_database(db_path: Path | None = None) -> Database:
    """Open the registry at db_path (default location if None)."""
    return Database(db_path)
