"""
Tests for schema convergence.

converge() must bring an old database up to the declared schema without
dropping anything; create_fresh() builds a clean one.
"""

import sqlite3

import pytest

from lib import schema
from lib.schema_engine import converge, create_fresh, make_alter_safe


@pytest.fixture
def conn():
    c = sqlite3.connect(":memory:")
    yield c
    c.close()


def _tables(conn) -> set[str]:
    return {r[0] for r in conn.execute("SELECT name FROM sqlite_master WHERE type = 'table'")}


def _columns(conn, table) -> set[str]:
    return {r[1] for r in conn.execute(f"PRAGMA table_info([{table}])")}


# =============================================================================
# ALTER-safe column definitions
# =============================================================================


class TestMakeAlterSafe:
    @pytest.mark.parametrize(
        "col_def,expected",
        [
            ("TEXT PRIMARY KEY", "TEXT"),
            ("TEXT NOT NULL", "TEXT NOT NULL DEFAULT ''"),
            ("TEXT NOT NULL DEFAULT 'todo'", "TEXT NOT NULL DEFAULT 'todo'"),
            ("TEXT REFERENCES profiles(id) ON DELETE CASCADE", "TEXT"),
            ("TEXT UNIQUE", "TEXT"),
        ],
    )
    def test_strips_unsupported_clauses(self, col_def, expected):
        assert make_alter_safe(col_def) == expected

    def test_expression_default_is_dropped(self):
        safe = make_alter_safe("TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%SZ', 'now'))")
        assert "strftime" not in safe
        assert safe == "TEXT NOT NULL DEFAULT ''"


# =============================================================================
# create_fresh / converge
# =============================================================================


class TestCreateFresh:
    def test_creates_every_declared_table(self, conn):
        results = create_fresh(conn)
        assert results["errors"] == []
        assert set(schema.TABLES) <= _tables(conn)
        assert conn.execute("PRAGMA user_version").fetchone()[0] == schema.SCHEMA_VERSION

    def test_drops_existing_tables(self, conn):
        conn.execute("CREATE TABLE leftovers (id TEXT)")
        create_fresh(conn)
        assert "leftovers" not in _tables(conn)

    def test_one_active_pending_per_user(self, conn):
        create_fresh(conn)
        insert = (
            "INSERT INTO assistant_pending_actions "
            "(id, user_id, intent_type, status, expires_at) VALUES (?, 'u1', 'create_task', ?, '2099-01-01')"
        )
        conn.execute(insert, ("p1", "pending"))
        conn.execute(insert, ("p2", "cancelled"))
        with pytest.raises(sqlite3.IntegrityError):
            conn.execute(insert, ("p3", "pending"))


class TestConverge:
    def test_empty_db_gets_all_tables(self, conn):
        results = converge(conn)
        assert set(results["tables_created"]) == set(schema.TABLES)
        assert results["errors"] == []

    def test_adds_missing_columns_and_keeps_rows(self, conn):
        conn.execute("CREATE TABLE audit_logs (id TEXT PRIMARY KEY, action TEXT NOT NULL)")
        conn.execute("INSERT INTO audit_logs (id, action) VALUES ('a1', 'kept')")

        results = converge(conn)

        assert "audit_logs.details" in results["columns_added"]
        assert "audit_logs.created_at" in results["columns_added"]
        assert {name for name, _ in schema.TABLES["audit_logs"]["columns"]} <= _columns(conn, "audit_logs")
        assert conn.execute("SELECT action FROM audit_logs WHERE id = 'a1'").fetchone()[0] == "kept"

    def test_is_idempotent(self, conn):
        converge(conn)
        again = converge(conn)
        assert again["tables_created"] == []
        assert again["columns_added"] == []
        assert again["indexes_created"] == []

    def test_views_are_left_alone(self, conn):
        conn.execute("CREATE VIEW notifications AS SELECT 1 AS id")
        results = converge(conn)
        assert "notifications" in results["skipped_views"]
