"""Tests for database module."""

import sqlite3

import pytest

from devprism.db import Database
from devprism.errors import DuplicateSession, SessionNotFound, StoreUnavailable


def test_db_initialization(mock_db):
    """Test database is properly initialized."""
    conn = mock_db._get_connection()
    tables = {
        row["name"]
        for row in conn.execute("SELECT name FROM sqlite_master WHERE type='table'")
    }
    assert {"sessions", "port_allocations", "reservations"} <= tables

    assert conn.execute("PRAGMA foreign_keys").fetchone()[0] == 1
    assert conn.execute("PRAGMA user_version").fetchone()[0] == 2


def test_reopen_is_idempotent(db_path):
    """Opening an existing registry keeps its data."""
    with Database(db_path) as db:
        db.insert_session("001", "/p", "/s/001")

    with Database(db_path) as db:
        assert db.find_session("/p", "001") is not None


def test_insert_session(mock_db):
    """Test inserting a session returns the stored row."""
    row = mock_db.insert_session(
        "001",
        "/projects/my-app",
        "/sessions/session-001",
        branch="session/2025-01-01/001",
        mode="native",
        in_place=True,
    )

    assert row.id > 0
    assert row.session_id == "001"
    assert row.project_root == "/projects/my-app"
    assert row.session_dir == "/sessions/session-001"
    assert row.branch == "session/2025-01-01/001"
    assert row.mode == "native"
    assert row.in_place is True
    assert row.created_at
    assert row.destroyed_at is None


def test_insert_session_defaults(mock_db):
    """Test optional fields get their defaults."""
    row = mock_db.insert_session("001", "/p", "/s/001")

    assert row.branch == ""
    assert row.mode == "docker"
    assert row.in_place == 0
    assert row.active


def test_insert_rejects_unknown_mode(mock_db):
    with pytest.raises(ValueError):
        mock_db.insert_session("001", "/p", "/s/001", mode="podman")


def test_duplicate_session_same_project(mock_db):
    """Test that the same id cannot be active twice in a project."""
    mock_db.insert_session("001", "/p", "/s/001")

    with pytest.raises(DuplicateSession):
        mock_db.insert_session("001", "/p", "/s/001-dup")


def test_duplicate_session_other_project(mock_db):
    """Test that session ids are unique across projects."""
    mock_db.insert_session("001", "/projects/app-a", "/s/a/001")

    with pytest.raises(DuplicateSession):
        mock_db.insert_session("001", "/projects/app-b", "/s/b/001")


def test_session_id_reusable_after_destroy(mock_db):
    """Test that a destroyed id can be taken by a new session."""
    mock_db.insert_session("001", "/a", "/s/a/001")
    assert mock_db.mark_destroyed("/a", "001")

    row = mock_db.insert_session("001", "/b", "/s/b/001")

    assert row.project_root == "/b"
    assert mock_db.find_session("/b", "001") is not None
    assert mock_db.find_session("/a", "001") is None


def test_find_session(mock_db):
    mock_db.insert_session("001", "/p", "/s/001")

    session = mock_db.find_session("/p", "001")
    assert session is not None
    assert session.session_id == "001"

    assert mock_db.find_session("/p", "999") is None
    assert mock_db.find_session("/other", "001") is None


def test_find_by_dir(mock_db):
    mock_db.insert_session("001", "/p", "/s/001")

    session = mock_db.find_by_dir("/s/001")
    assert session is not None
    assert session.session_id == "001"

    assert mock_db.find_by_dir("/unknown") is None


def test_find_by_dir_ignores_destroyed(mock_db):
    mock_db.insert_session("001", "/p", "/s/001")
    mock_db.mark_destroyed("/p", "001")

    assert mock_db.find_by_dir("/s/001") is None


def test_list_by_project(mock_db):
    """Test listing returns active sessions of one project ordered by id."""
    mock_db.insert_session("002", "/p", "/s/002")
    mock_db.insert_session("001", "/p", "/s/001")
    mock_db.insert_session("003", "/other", "/s/003")
    mock_db.insert_session("004", "/p", "/s/004")
    mock_db.mark_destroyed("/p", "004")

    sessions = mock_db.list_by_project("/p")
    assert [s.session_id for s in sessions] == ["001", "002"]


def test_list_all(mock_db):
    mock_db.insert_session("001", "/a", "/s/a/001")
    mock_db.insert_session("002", "/b", "/s/b/002")
    mock_db.insert_session("003", "/b", "/s/b/003")
    mock_db.mark_destroyed("/b", "003")

    sessions = mock_db.list_all()
    assert [(s.project_root, s.session_id) for s in sessions] == [("/a", "001"), ("/b", "002")]


def test_used_session_ids(mock_db):
    """Test used ids cover active sessions across projects."""
    mock_db.insert_session("001", "/a", "/s/a/001")
    mock_db.insert_session("003", "/b", "/s/b/003")
    mock_db.insert_session("005", "/a", "/s/a/005")
    mock_db.mark_destroyed("/b", "003")

    assert mock_db.used_session_ids() == {"001", "005"}


def test_mark_destroyed(mock_db):
    """Test soft delete hides the session and is not repeatable."""
    mock_db.insert_session("001", "/p", "/s/001")

    assert mock_db.mark_destroyed("/p", "001") is True
    assert mock_db.find_session("/p", "001") is None
    assert mock_db.list_all() == []

    assert mock_db.mark_destroyed("/p", "001") is False
    assert mock_db.mark_destroyed("/p", "999") is False


def test_mark_destroyed_keeps_row(mock_db):
    mock_db.insert_session("001", "/p", "/s/001")
    mock_db.mark_destroyed("/p", "001")

    destroyed = mock_db.list_destroyed()
    assert len(destroyed) == 1
    assert destroyed[0].destroyed_at is not None


def test_mark_destroyed_cascades_to_allocations(mock_db):
    """Test destroying a session releases its ports."""
    mock_db.insert_session("001", "/p", "/s/001")
    mock_db.insert_session("002", "/p", "/s/002")
    mock_db.create_allocations("001", [("postgres", 40001), ("app", 40002)])
    mock_db.create_allocations("002", [("postgres", 40003)])

    mock_db.mark_destroyed("/p", "001")

    assert mock_db.allocated_ports() == {40003}
    count = mock_db._get_connection().execute(
        "SELECT COUNT(*) FROM port_allocations"
    ).fetchone()[0]
    assert count == 1


def test_remove_session(mock_db):
    """Test hard delete removes the row and its allocations."""
    mock_db.insert_session("001", "/p", "/s/001")
    mock_db.create_allocations("001", [("postgres", 40001)])

    assert mock_db.remove_session("/p", "001") is True
    assert mock_db.find_session("/p", "001") is None
    assert mock_db.list_destroyed() == []
    assert mock_db.allocated_ports() == set()

    assert mock_db.remove_session("/p", "999") is False


def test_remove_destroyed_session(mock_db):
    mock_db.insert_session("001", "/p", "/s/001")
    mock_db.mark_destroyed("/p", "001")

    assert mock_db.remove_session("/p", "001") is True
    assert mock_db.list_destroyed() == []


def test_purge_destroyed(mock_db):
    mock_db.insert_session("001", "/p", "/s/001")
    mock_db.insert_session("002", "/p", "/s/002")
    mock_db.mark_destroyed("/p", "001")

    assert mock_db.purge_destroyed() == 1
    assert mock_db.list_destroyed() == []
    assert mock_db.find_session("/p", "002") is not None


def test_purge_destroyed_before(mock_db):
    mock_db.insert_session("001", "/p", "/s/001")
    mock_db.mark_destroyed("/p", "001")

    assert mock_db.purge_destroyed(before="2000-01-01T00:00:00+00:00") == 0
    assert len(mock_db.list_destroyed()) == 1


def test_create_allocations(mock_db):
    mock_db.insert_session("001", "/p", "/s/001")
    mock_db.create_allocations("001", [("postgres", 40001), ("app", 40002)])

    allocations = mock_db.get_port_allocations("001")
    assert [(a.service, a.port) for a in allocations] == [("postgres", 40001), ("app", 40002)]
    assert mock_db.allocated_ports() == {40001, 40002}


def test_create_allocations_unknown_session(mock_db):
    with pytest.raises(SessionNotFound):
        mock_db.create_allocations("404", [("postgres", 40001)])


def test_create_allocations_destroyed_session(mock_db):
    mock_db.insert_session("001", "/p", "/s/001")
    mock_db.mark_destroyed("/p", "001")

    with pytest.raises(SessionNotFound):
        mock_db.create_allocations("001", [("postgres", 40001)])


def test_unique_port_constraint(mock_db):
    """Test that ports must be unique across sessions."""
    mock_db.insert_session("001", "/p", "/s/001")
    mock_db.insert_session("002", "/p", "/s/002")
    mock_db.create_allocations("001", [("postgres", 40001)])

    with pytest.raises(sqlite3.IntegrityError):
        mock_db.create_allocations("002", [("redis", 40010), ("postgres", 40001)])

    # Nothing from the failed batch was written
    assert mock_db.get_port_allocations("002") == []


def test_unique_session_service_constraint(mock_db):
    mock_db.insert_session("001", "/p", "/s/001")
    mock_db.create_allocations("001", [("postgres", 40001)])

    with pytest.raises(sqlite3.IntegrityError):
        mock_db.create_allocations("001", [("postgres", 40002)])


def test_reserve_and_unreserve(mock_db):
    """Test reservations can be added and removed."""
    mock_db.reserve_port(5432, "manual")
    assert mock_db.reserved_ports() == {5432}

    assert mock_db.unreserve_port(5432) is True
    assert mock_db.reserved_ports() == set()
    assert mock_db.unreserve_port(5432) is False


def test_reserve_overwrites_reason(mock_db):
    mock_db.reserve_port(5432, "manual")
    mock_db.reserve_port(5432, "system postgres")

    reservations = mock_db.list_reservations()
    assert len(reservations) == 1
    assert reservations[0].reason == "system postgres"


def test_reserve_rejects_invalid_port(mock_db):
    with pytest.raises(ValueError):
        mock_db.reserve_port(0)
    with pytest.raises(ValueError):
        mock_db.reserve_port(70000)


def test_reservations_independent_of_sessions(mock_db):
    mock_db.reserve_port(6379, "redis")
    mock_db.insert_session("001", "/p", "/s/001")
    mock_db.mark_destroyed("/p", "001")
    mock_db.purge_destroyed()

    assert mock_db.reserved_ports() == {6379}


def test_reserved_port_cannot_be_allocated(mock_db):
    """Test that the store itself refuses allocations on reserved ports."""
    mock_db.insert_session("001", "/p", "/s/001")
    mock_db.reserve_port(41005, "manual")

    with pytest.raises(sqlite3.IntegrityError):
        mock_db.create_allocations("001", [("postgres", 41004), ("app", 41005)])

    assert mock_db.allocated_ports() == set()


def test_insert_not_null_violation_is_not_duplicate(mock_db):
    with pytest.raises(sqlite3.IntegrityError):
        mock_db.insert_session("001", None, "/s/001")

    assert mock_db.used_session_ids() == set()


def test_corrupt_file_is_unavailable(temp_dir):
    """Test that a non-database file is reported as unavailable."""
    path = temp_dir / "corrupt.db"
    path.write_bytes(b"this is definitely not a sqlite database" * 100)

    with pytest.raises(StoreUnavailable):
        Database(path)


def test_directory_path_is_unavailable(temp_dir):
    with pytest.raises(StoreUnavailable):
        Database(temp_dir)


def test_closed_database(db_path):
    db = Database(db_path)
    db.close()
    db.close()

    assert db.closed
    with pytest.raises(StoreUnavailable):
        db.list_all()


def test_changes_visible_across_connections(db_path):
    """Test a commit in one handle is seen by another open handle."""
    with Database(db_path) as first, Database(db_path) as second:
        first.insert_session("001", "/p", "/s/001")
        first.create_allocations("001", [("postgres", 40001)])

        assert second.find_session("/p", "001") is not None
        assert second.allocated_ports() == {40001}

        second.mark_destroyed("/p", "001")
        assert first.allocated_ports() == set()


def test_duplicate_across_connections(db_path):
    with Database(db_path) as first, Database(db_path) as second:
        first.insert_session("001", "/a", "/s/a/001")

        with pytest.raises(DuplicateSession):
            second.insert_session("001", "/b", "/s/b/001")


def test_busy_writer_times_out(db_path):
    """Test a writer gives up after the busy timeout instead of hanging."""
    with Database(db_path) as holder, Database(db_path, busy_timeout=0.1) as waiter:
        with holder.transaction():
            with pytest.raises(StoreUnavailable):
                waiter.insert_session("001", "/p", "/s/001")

        # Lock released, the write goes through now
        waiter.insert_session("001", "/p", "/s/001")


def test_transaction_rolls_back_on_error(mock_db):
    mock_db.insert_session("001", "/p", "/s/001")

    with pytest.raises(RuntimeError):
        with mock_db.transaction() as conn:
            conn.execute("DELETE FROM sessions")
            raise RuntimeError("boom")

    assert mock_db.find_session("/p", "001") is not None
