"""
State Store - the single persistence entry point for the assistant.
Every component reads and writes through here.
"""

import json
import logging
import sqlite3
import threading
import uuid
from collections.abc import Generator
from contextlib import contextmanager
from datetime import UTC, datetime

from lib import db as db_module
from lib import safe_sql

logger = logging.getLogger(__name__)

TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%SZ"


def now_iso(moment: datetime | None = None) -> str:
    """UTC timestamp in the storage format."""
    return (moment or datetime.now(UTC)).strftime(TIMESTAMP_FORMAT)


def new_id() -> str:
    return str(uuid.uuid4())


def _encode(value):
    return json.dumps(value) if isinstance(value, dict | list) else value


class StateStore:
    """
    SQLite-backed store. Connections are opened per operation; there is
    no in-memory state shared between requests.
    """

    def __init__(self, db_path: str | None = None):
        self.db_path = str(db_path or db_module.get_db_path_str())
        logger.info("StateStore initializing with DB: %s", self.db_path)
        db_module.ensure_migrations(self.db_path)

    @contextmanager
    def _get_conn(self) -> Generator[sqlite3.Connection, None, None]:
        """Connection context: commit on success, rollback on error."""
        conn = db_module.connect(self.db_path)
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def transaction(self):
        """Run several statements atomically on one connection."""
        return self._get_conn()

    # ==================== CRUD Operations ====================

    def insert(self, table: str, data: dict, conn: sqlite3.Connection | None = None) -> str:
        """Insert a row. Returns ID."""
        columns = list(data.keys())
        sql = safe_sql.insert(table, columns)
        values = [_encode(v) for v in data.values()]
        if conn is not None:
            conn.execute(sql, values)
        else:
            with self._get_conn() as c:
                c.execute(sql, values)
        return data.get("id", "")

    def get(self, table: str, id: str) -> dict | None:
        """Get a single row by ID."""
        sql = safe_sql.select(table, where="id = ?")
        with self._get_conn() as conn:
            row = conn.execute(sql, [id]).fetchone()
            return dict(row) if row else None

    def update(self, table: str, id: str, data: dict) -> bool:
        """Update a row by ID."""
        if not data:
            return False
        sql = safe_sql.update(table, list(data.keys()))
        values = [_encode(v) for v in data.values()]
        values.append(id)
        with self._get_conn() as conn:
            return conn.execute(sql, values).rowcount > 0

    def delete(self, table: str, id: str) -> bool:
        """Delete a row by ID."""
        with self._get_conn() as conn:
            return conn.execute(safe_sql.delete(table), [id]).rowcount > 0

    def query(self, sql: str, params: list | None = None) -> list[dict]:
        """Execute raw query. Returns list of dicts."""
        with self._get_conn() as conn:
            rows = conn.execute(sql, params or []).fetchall()
            return [dict(row) for row in rows]

    def query_one(self, sql: str, params: list | None = None) -> dict | None:
        rows = self.query(sql, params)
        return rows[0] if rows else None

    def execute(self, sql: str, params: list | None = None) -> int:
        """Execute a write statement. Returns affected row count."""
        with self._get_conn() as conn:
            return conn.execute(sql, params or []).rowcount

    def count(self, table: str, where: str | None = None, params: list | None = None) -> int:
        """Count rows."""
        sql = safe_sql.select_count(table, where=where)
        with self._get_conn() as conn:
            row = conn.execute(sql, params or []).fetchone()
            return row["c"] if row else 0


# Process-wide accessor, rebuilt when the configured DB path changes.
_store: StateStore | None = None
_store_lock = threading.Lock()


def get_store(db_path: str | None = None) -> StateStore:
    """Get the shared state store."""
    global _store
    wanted = str(db_path or db_module.get_db_path_str())
    with _store_lock:
        if _store is None or _store.db_path != wanted:
            _store = StateStore(wanted)
        return _store
