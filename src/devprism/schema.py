"""Schema creation and versioned migration for the session registry.

Every function here expects to run inside an open ``BEGIN IMMEDIATE``
transaction owned by the caller, so a failed migration leaves the file at
its previous generation.

Session table generations:

- ``legacy``: ``UNIQUE(session_id, project_root)``, the same id may live in
  several projects.
- ``global``: table-level ``UNIQUE(session_id)``, destroyed rows keep their
  id forever.
- ``current``: partial unique index on ``session_id`` over active rows.
"""

import sqlite3

from .console import debug
from .errors import StoreUnavailable

SCHEMA_VERSION = 2

GENERATION_EMPTY = "empty"
GENERATION_LEGACY = "legacy"
GENERATION_GLOBAL = "global"
GENERATION_CURRENT = "current"

ACTIVE_ID_INDEX = "idx_sessions_active_id"

REQUIRED_SESSION_COLUMNS = {"session_id", "project_root", "session_dir", "created_at"}
REQUIRED_ALLOCATION_COLUMNS = {"session_ref", "service", "port"}

# Columns older layouts may lack, with the value used when copying them forward
OPTIONAL_SESSION_COLUMNS = {
    "branch": "''",
    "mode": "'docker'",
    "in_place": "0",
    "destroyed_at": "NULL",
}

SESSIONS_TABLE = """
    CREATE TABLE {name} (
        id            INTEGER PRIMARY KEY,
        session_id    TEXT NOT NULL,
        project_root  TEXT NOT NULL,
        session_dir   TEXT NOT NULL,
        branch        TEXT NOT NULL DEFAULT '',
        mode          TEXT NOT NULL DEFAULT 'docker',
        in_place      INTEGER NOT NULL DEFAULT 0,
        created_at    TEXT NOT NULL,
        destroyed_at  TEXT
    )
"""

SESSION_INDEXES = [
    f"""
    CREATE UNIQUE INDEX IF NOT EXISTS {ACTIVE_ID_INDEX}
        ON sessions(session_id) WHERE destroyed_at IS NULL
    """,
    "CREATE INDEX IF NOT EXISTS idx_sessions_project ON sessions(project_root)",
    "CREATE INDEX IF NOT EXISTS idx_sessions_dir ON sessions(session_dir)",
]

SUPPORT_TABLES = [
    """
    CREATE TABLE IF NOT EXISTS port_allocations (
        session_ref  INTEGER NOT NULL REFERENCES sessions(id) ON DELETE CASCADE,
        service      TEXT NOT NULL,
        port         INTEGER NOT NULL UNIQUE,
        created_at   TEXT NOT NULL,
        PRIMARY KEY (session_ref, service)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS reservations (
        port        INTEGER PRIMARY KEY,
        reason      TEXT NOT NULL DEFAULT '',
        created_at  TEXT NOT NULL
    )
    """,
]

# Soft destroy is an UPDATE, so the FK cascade is mirrored by a trigger
DESTROY_TRIGGER = """
    CREATE TRIGGER IF NOT EXISTS trg_sessions_destroyed
    AFTER UPDATE OF destroyed_at ON sessions
    WHEN NEW.destroyed_at IS NOT NULL AND OLD.destroyed_at IS NULL
    BEGIN
        DELETE FROM port_allocations WHERE session_ref = NEW.id;
    END
"""

# Raises sqlite3.IntegrityError, same as losing a port to another session
RESERVED_PORT_TRIGGER = """
    CREATE TRIGGER IF NOT EXISTS trg_allocations_reserved
    BEFORE INSERT ON port_allocations
    WHEN EXISTS (SELECT 1 FROM reservations WHERE port = NEW.port)
    BEGIN
        SELECT RAISE(ABORT, 'port is reserved');
    END
"""


def table_exists(conn: sqlite3.Connection, table: str) -> bool:
    cursor = conn.execute(
        "SELECT name FROM sqlite_master WHERE type='table' AND name = ?", (table,)
    )
    return cursor.fetchone() is not None


def table_columns(conn: sqlite3.Connection, table: str) -> set[str]:
    return {row[1] for row in conn.execute(f"PRAGMA table_info({table})").fetchall()}


def _unique_indexes(conn: sqlite3.Connection, table: str) -> list[tuple[str, list[str], bool]]:
    """List unique indexes as (name, columns, is_partial)."""
    indexes = []
    for row in conn.execute(f"PRAGMA index_list({table})").fetchall():
        # seq, name, unique, origin, partial
        name, unique, partial = row[1], row[2], row[4]
        if not unique:
            continue
        columns = [
            info[2]
            for info in conn.execute(
                "SELECT * FROM pragma_index_info(?)", (name,)
            ).fetchall()
        ]
        indexes.append((name, columns, bool(partial)))
    return indexes


def detect_generation(conn: sqlite3.Connection) -> str:
    """Work out which uniqueness rule the sessions table carries.

    Args:
        conn: Open connection

    Returns:
        One of the GENERATION_* constants

    Raises:
        StoreUnavailable: If the sessions table is not one this registry knows
    """
    if not table_exists(conn, "sessions"):
        return GENERATION_EMPTY

    missing = REQUIRED_SESSION_COLUMNS - table_columns(conn, "sessions")
    if missing:
        raise StoreUnavailable(
            f"Unrecognized sessions table, missing columns: {', '.join(sorted(missing))}"
        )

    generation = GENERATION_LEGACY
    for name, columns, partial in _unique_indexes(conn, "sessions"):
        if set(columns) == {"session_id", "project_root"}:
            return GENERATION_LEGACY
        if columns == ["session_id"]:
            if partial and name == ACTIVE_ID_INDEX:
                generation = GENERATION_CURRENT
            elif not partial:
                generation = GENERATION_GLOBAL
    return generation


def _check_allocations_table(conn: sqlite3.Connection) -> None:
    if not table_exists(conn, "port_allocations"):
        return
    missing = REQUIRED_ALLOCATION_COLUMNS - table_columns(conn, "port_allocations")
    if missing:
        raise StoreUnavailable(
            "Unrecognized port_allocations table, missing columns: "
            + ", ".join(sorted(missing))
        )


def _create_support_objects(conn: sqlite3.Connection) -> None:
    for statement in SESSION_INDEXES + SUPPORT_TABLES:
        conn.execute(statement)
    conn.execute(DESTROY_TRIGGER)
    conn.execute(RESERVED_PORT_TRIGGER)


def _copy_expression(column: str, columns: set[str]) -> str:
    default = OPTIONAL_SESSION_COLUMNS[column]
    if column not in columns:
        return default
    if default == "NULL":
        return f"s.{column}"
    return f"COALESCE(s.{column}, {default})"


def rebuild_sessions(conn: sqlite3.Connection) -> int:
    """Rewrite the sessions table under the current uniqueness rule.

    Destroyed rows are copied as-is. Among active rows sharing a
    ``session_id`` only the earliest ``created_at`` survives, ties going
    to the lowest rowid.

    Args:
        conn: Connection inside an open transaction

    Returns:
        Number of active rows dropped as duplicates
    """
    columns = table_columns(conn, "sessions")
    if "destroyed_at" in columns:
        active_s = "s.destroyed_at IS NULL"
        active_o = "o.destroyed_at IS NULL"
    else:
        active_s = active_o = "1"

    conn.execute("DROP TABLE IF EXISTS sessions_new")
    conn.execute(SESSIONS_TABLE.format(name="sessions_new"))
    conn.execute(
        f"""
        INSERT INTO sessions_new (
            id, session_id, project_root, session_dir, branch, mode,
            in_place, created_at, destroyed_at
        )
        SELECT
            s.rowid, s.session_id, s.project_root, s.session_dir,
            {_copy_expression("branch", columns)},
            {_copy_expression("mode", columns)},
            {_copy_expression("in_place", columns)},
            s.created_at,
            {_copy_expression("destroyed_at", columns)}
        FROM sessions AS s
        WHERE NOT ({active_s}) OR NOT EXISTS (
            SELECT 1 FROM sessions AS o
            WHERE o.session_id = s.session_id
              AND {active_o}
              AND (o.created_at < s.created_at
                   OR (o.created_at = s.created_at AND o.rowid < s.rowid))
        )
        ORDER BY s.rowid
        """
    )

    before = conn.execute("SELECT COUNT(*) FROM sessions").fetchone()[0]
    after = conn.execute("SELECT COUNT(*) FROM sessions_new").fetchone()[0]

    conn.execute("DROP TABLE sessions")
    conn.execute("ALTER TABLE sessions_new RENAME TO sessions")

    if table_exists(conn, "port_allocations"):
        conn.execute(
            """
            DELETE FROM port_allocations
            WHERE session_ref NOT IN (
                SELECT id FROM sessions WHERE destroyed_at IS NULL
            )
            """
        )

    return before - after


def ensure_schema(conn: sqlite3.Connection) -> int:
    """Create or migrate the registry schema.

    Idempotent: on a store already at the current generation only the
    ``IF NOT EXISTS`` statements run.

    Args:
        conn: Connection inside an open transaction

    Returns:
        Number of session rows dropped by a migration (0 if none ran)
    """
    _check_allocations_table(conn)
    generation = detect_generation(conn)
    debug(f"sessions table generation: {generation}")

    dropped = 0
    if generation == GENERATION_EMPTY:
        conn.execute(SESSIONS_TABLE.format(name="sessions"))
    elif generation != GENERATION_CURRENT:
        dropped = rebuild_sessions(conn)
        debug(f"migrated sessions table from {generation}, dropped {dropped} row(s)")

    _create_support_objects(conn)

    if conn.execute("PRAGMA user_version").fetchone()[0] != SCHEMA_VERSION:
        conn.execute(f"PRAGMA user_version = {SCHEMA_VERSION}")
    return dropped
