"""
Centralized Database Access for the operations assistant.

Single source of truth for:
- DB path resolution
- Connection factory
- Schema convergence (delegated to schema_engine)
- Startup validation

Schema is declared in lib/schema. Convergence logic lives in
lib/schema_engine. This module wires them together.
"""

import logging
import sqlite3
import threading
from collections.abc import Generator
from contextlib import contextmanager
from pathlib import Path

from lib import paths, schema, schema_engine

logger = logging.getLogger(__name__)

# ============================================================
# DB PATH RESOLUTION
# ============================================================


def get_db_path() -> Path:
    """
    Get the canonical DB path.

    Resolution order:
    1. OPS_ASSISTANT_DB env var (explicit override)
    2. ~/.ops_assistant/data/ops_assistant.db
    """
    return paths.db_path()


def get_db_path_str() -> str:
    return str(get_db_path())


# ============================================================
# CONNECTION FACTORY
# ============================================================


def connect(db_path: str | Path | None = None, row_factory: bool = True) -> sqlite3.Connection:
    """Open a configured connection. Caller owns closing it."""
    path = Path(db_path) if db_path else get_db_path()
    path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(str(path), timeout=10)
    if row_factory:
        conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys=ON")
    return conn


@contextmanager
def get_connection(
    db_path: str | Path | None = None,
    row_factory: bool = True,
) -> Generator[sqlite3.Connection, None, None]:
    """
    Get a database connection with proper setup.

    Usage:
        with get_connection() as conn:
            conn.execute(...)
    """
    conn = connect(db_path, row_factory=row_factory)
    try:
        yield conn
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    finally:
        conn.close()


# ============================================================
# SCHEMA INTROSPECTION
# ============================================================


def table_exists(conn: sqlite3.Connection, table: str) -> bool:
    cursor = conn.execute("SELECT name FROM sqlite_master WHERE type='table' AND name=?", (table,))
    return cursor.fetchone() is not None


def get_schema_version(conn: sqlite3.Connection) -> int:
    """Get current schema version from PRAGMA user_version."""
    cursor = conn.execute("PRAGMA user_version")
    return cursor.fetchone()[0]


# ============================================================
# SCHEMA CONVERGENCE: delegates to schema_engine
# ============================================================


def run_migrations(conn: sqlite3.Connection) -> dict:
    """Converge the database schema to match lib/schema declarations."""
    previous_version = get_schema_version(conn)
    results = schema_engine.converge(conn)
    results["previous_version"] = previous_version
    return results


# ============================================================
# STARTUP ENTRY POINT
# ============================================================

_CRITICAL_TABLES = (
    "profiles",
    "programmes",
    "tasks",
    "audit_logs",
    "assistant_pending_actions",
)

# Paths already converged in this process
_migrated_paths: set[str] = set()
_migrate_lock = threading.Lock()


def run_startup_migrations(db_path: str | Path | None = None) -> dict:
    """
    Run schema convergence. Safe to call multiple times.
    Logs comprehensive startup info.
    """
    path = Path(db_path) if db_path else get_db_path()

    logger.info("Assistant database startup: path=%s exists=%s", path, path.exists())
    logger.info("Target SCHEMA_VERSION: %s", schema.SCHEMA_VERSION)

    with get_connection(path) as conn:
        version_before = get_schema_version(conn)
        logger.info("Current user_version: %s", version_before)

        results = run_migrations(conn)

        if results.get("tables_created"):
            logger.info("Tables created: %s", results["tables_created"])
        if results.get("columns_added"):
            logger.info("Columns added: %s", results["columns_added"])
        if results.get("indexes_created"):
            logger.info("Indexes created: %d", len(results["indexes_created"]))
        if results.get("errors"):
            logger.warning("Convergence errors: %s", results["errors"])

        for critical in _CRITICAL_TABLES:
            if not table_exists(conn, critical):
                logger.error("MISSING %s", critical)

        logger.info("Final user_version: %s", results.get("schema_version"))

    _migrated_paths.add(str(path))
    return results


def ensure_migrations(db_path: str | Path | None = None) -> None:
    """Ensure schema has converged for *db_path* once per process."""
    key = str(Path(db_path) if db_path else get_db_path())
    if key in _migrated_paths:
        return
    with _migrate_lock:
        if key not in _migrated_paths:
            run_startup_migrations(key)
