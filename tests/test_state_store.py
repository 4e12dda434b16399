"""
Tests for the persistence layer: safe SQL builders and StateStore.

Covers:
- Identifier validation in every builder
- CRUD round trips and JSON encoding of dict/list values
- transaction() atomicity
- get_store() rebuilt when the DB path changes
"""

import json
import sqlite3

import pytest

from lib import safe_sql, state_store
from lib.state_store import StateStore, get_store, new_id, now_iso
from tests.fixtures.fixture_db import ESTHER_ID, YOUTH_ID

# =============================================================================
# safe_sql
# =============================================================================


class TestSafeSql:
    def test_builders(self):
        assert safe_sql.select("tasks", where="id = ?") == "SELECT * FROM tasks WHERE id = ?"
        assert safe_sql.insert("tasks", ["id", "title"]) == "INSERT INTO tasks (id,title) VALUES (?,?)"
        assert safe_sql.insert_or_ignore("tasks", ["id"]).startswith("INSERT OR IGNORE INTO tasks")
        assert safe_sql.update("tasks", ["status"]) == "UPDATE tasks SET status = ? WHERE id = ?"
        assert safe_sql.delete("tasks") == "DELETE FROM tasks WHERE id = ?"
        assert safe_sql.select_count("tasks") == "SELECT COUNT(*) as c FROM tasks"

    @pytest.mark.parametrize(
        "build",
        [
            lambda: safe_sql.select("tasks; DROP TABLE tasks"),
            lambda: safe_sql.insert("tasks", ["title)--"]),
            lambda: safe_sql.update("tasks", ["status = 'done'"]),
            lambda: safe_sql.delete("1tasks"),
            lambda: safe_sql.contains_ci("lower(title)"),
        ],
    )
    def test_rejects_unsafe_identifiers(self, build):
        with pytest.raises(ValueError):
            build()

    def test_contains_ci_accepts_qualified_column(self):
        assert safe_sql.contains_ci("t.title") == "instr(lower(t.title), lower(?)) > 0"

    def test_in_placeholders(self):
        assert safe_sql.in_placeholders(3) == "?,?,?"
        with pytest.raises(ValueError):
            safe_sql.in_placeholders(0)


# =============================================================================
# StateStore
# =============================================================================


class TestStateStore:
    def test_insert_encodes_json(self, store):
        row_id = store.insert(
            "audit_logs",
            {"id": new_id(), "user_id": ESTHER_ID, "action": "x", "entity_type": "task", "details": {"a": [1]}},
        )
        assert json.loads(store.get("audit_logs", row_id)["details"]) == {"a": [1]}

    def test_update(self, store):
        assert store.update("programmes", YOUTH_ID, {"status": "paused", "updated_at": now_iso()})
        assert store.get("programmes", YOUTH_ID)["status"] == "paused"
        assert not store.update("programmes", YOUTH_ID, {})

    def test_delete_row(self, store):
        row_id = store.insert("audit_logs", {"id": new_id(), "action": "x", "entity_type": "task"})
        assert store.delete("audit_logs", row_id)
        assert store.get("audit_logs", row_id) is None
        assert not store.delete("audit_logs", row_id)

    def test_query_helpers(self, store):
        assert store.query_one("SELECT name FROM programmes WHERE id = ?", [YOUTH_ID])["name"]
        assert store.query_one("SELECT name FROM programmes WHERE id = ?", ["missing"]) is None
        assert store.count("profiles") == 5
        assert store.count("profiles", "role = ?", ["member"]) == 3
        assert store.execute("UPDATE profiles SET email = NULL WHERE role = ?", ["admin"]) == 1

    def test_transaction_rolls_back(self, store):
        before = store.count("audit_logs")
        with pytest.raises(sqlite3.IntegrityError):
            with store.transaction() as conn:
                store.insert("audit_logs", {"id": "dup", "action": "x", "entity_type": "task"}, conn=conn)
                store.insert("audit_logs", {"id": "dup", "action": "y", "entity_type": "task"}, conn=conn)
        assert store.count("audit_logs") == before

    def test_now_iso_format(self):
        stamp = now_iso()
        assert len(stamp) == 20 and stamp.endswith("Z") and stamp[10] == "T"


class TestGetStore:
    @pytest.fixture(autouse=True)
    def reset_shared(self, monkeypatch):
        monkeypatch.setattr(state_store, "_store", None)

    def test_shared_instance(self, tmp_path):
        db = str(tmp_path / "a.db")
        assert get_store(db) is get_store(db)

    def test_rebuilt_for_new_path(self, tmp_path):
        first = get_store(str(tmp_path / "a.db"))
        second = get_store(str(tmp_path / "b.db"))
        assert second is not first
        assert second.db_path.endswith("b.db")

    def test_default_path_is_converged(self, isolate_app_home):
        store = get_store()
        assert store.db_path.endswith("default.db")
        assert store.count("assistant_pending_actions") == 0
