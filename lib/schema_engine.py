"""
Schema Convergence Engine: introspect, diff, apply.

Reads the declarative schema from lib/schema and converges any SQLite
database to match. Two entry points:

  converge(conn)      existing DBs, adds missing tables/columns/indexes.
  create_fresh(conn)  new and test DBs, drops everything and creates clean.

The engine never drops tables or columns on an existing DB.
"""

import logging
import re
import sqlite3

from lib import schema

logger = logging.getLogger(__name__)


# ────────────────────────────────────────────────────────────
# SQLite ALTER TABLE column-safety
# ────────────────────────────────────────────────────────────

# Clauses that are valid in CREATE TABLE but not in ALTER TABLE ADD COLUMN
_STRIP_PATTERNS = [
    re.compile(r"\bPRIMARY\s+KEY\b", re.IGNORECASE),
    re.compile(r"\bAUTOINCREMENT\b", re.IGNORECASE),
    re.compile(r"\bUNIQUE\b", re.IGNORECASE),
    re.compile(r"\bREFERENCES\s+\w+\s*\([^)]*\)(\s+ON\s+DELETE\s+\w+)?", re.IGNORECASE),
    re.compile(r"\bCHECK\s*\([^)]*\)", re.IGNORECASE),
]

# ALTER TABLE ADD COLUMN rejects non-constant defaults such as strftime('now')
_EXPR_DEFAULT_RE = re.compile(r"\bDEFAULT\s*\(.*\)", re.IGNORECASE)


def make_alter_safe(col_def: str) -> str:
    """
    Transform a CREATE TABLE column definition into one safe for
    ALTER TABLE ADD COLUMN.

    SQLite restrictions on ALTER TABLE ADD COLUMN:
      - Cannot be PRIMARY KEY, UNIQUE or carry REFERENCES / CHECK
      - Default must be a constant
      - NOT NULL requires a DEFAULT
    """
    safe = col_def
    for pattern in _STRIP_PATTERNS:
        safe = pattern.sub("", safe)
    safe = _EXPR_DEFAULT_RE.sub("", safe)

    safe = re.sub(r"\s{2,}", " ", safe).strip()

    has_not_null = re.search(r"\bNOT\s+NULL\b", safe, re.IGNORECASE)
    has_default = re.search(r"\bDEFAULT\b", safe, re.IGNORECASE)
    if has_not_null and not has_default:
        safe = safe + " DEFAULT ''"

    return safe


# ────────────────────────────────────────────────────────────
# Introspection helpers
# ────────────────────────────────────────────────────────────


def _get_existing_tables(conn: sqlite3.Connection) -> dict[str, str]:
    """Return {name: type} for all tables and views in sqlite_master."""
    cursor = conn.execute("SELECT name, type FROM sqlite_master WHERE type IN ('table', 'view')")
    return {row[0]: row[1] for row in cursor.fetchall()}


def _get_existing_columns(conn: sqlite3.Connection, table: str) -> set[str]:
    try:
        cursor = conn.execute(f"PRAGMA table_info([{table}])")  # nosec B608
        return {row[1] for row in cursor.fetchall()}
    except sqlite3.OperationalError:
        return set()


def _get_existing_indexes(conn: sqlite3.Connection) -> set[str]:
    cursor = conn.execute(
        "SELECT name FROM sqlite_master WHERE type = 'index' AND name NOT LIKE 'sqlite_%'"
    )
    return {row[0] for row in cursor.fetchall()}


# ────────────────────────────────────────────────────────────
# DDL builders
# ────────────────────────────────────────────────────────────


def _build_create_sql(table_name: str, table_def: dict) -> str:
    """Build a CREATE TABLE IF NOT EXISTS statement from schema declaration."""
    parts = [f"    {col_name} {col_ddl}" for col_name, col_ddl in table_def["columns"]]
    for unique_cols in table_def.get("unique", []):
        parts.append(f"    UNIQUE({', '.join(unique_cols)})")
    body = ",\n".join(parts)
    return f"CREATE TABLE IF NOT EXISTS [{table_name}] (\n{body}\n)"


def _build_index_sql(name: str, table: str, cols: str, where: str | None, unique: bool) -> str:
    kind = "UNIQUE INDEX" if unique else "INDEX"
    where_clause = f" WHERE {where}" if where else ""
    return f"CREATE {kind} IF NOT EXISTS [{name}] ON [{table}]({cols}){where_clause}"


def _all_indexes() -> list[tuple[str, str, str, str | None, bool]]:
    return [(*idx, False) for idx in schema.INDEXES] + [
        (*idx, True) for idx in schema.UNIQUE_INDEXES
    ]


def _create_indexes(
    conn: sqlite3.Connection,
    results: dict,
    existing_objects: dict[str, str],
    existing_indexes: set[str],
) -> None:
    for idx_name, idx_table, idx_cols, idx_where, unique in _all_indexes():
        if idx_name in existing_indexes:
            continue
        if existing_objects.get(idx_table) != "table":
            continue
        try:
            conn.execute(_build_index_sql(idx_name, idx_table, idx_cols, idx_where, unique))
            results["indexes_created"].append(idx_name)
        except sqlite3.OperationalError as e:
            err = f"CREATE INDEX {idx_name}: {e}"
            results["errors"].append(err)
            logger.warning("schema_engine: %s", err)
        except sqlite3.IntegrityError as e:
            # Existing rows violate a unique index; leave the DB as-is.
            err = f"CREATE UNIQUE INDEX {idx_name}: {e}"
            results["errors"].append(err)
            logger.warning("schema_engine: %s", err)


# ────────────────────────────────────────────────────────────
# converge: the main entry point for existing databases
# ────────────────────────────────────────────────────────────


def converge(conn: sqlite3.Connection) -> dict:
    """
    Converge an existing database to match schema.TABLES.

    Algorithm:
      1. Introspect sqlite_master for existing tables/views.
      2. For each declared table: CREATE when missing, otherwise
         ADD COLUMN for every declared column the table lacks.
      3. Create missing indexes (plain and unique).
      4. Set PRAGMA user_version.

    Returns a results dict for logging.
    """
    results = {
        "tables_created": [],
        "columns_added": [],
        "indexes_created": [],
        "skipped_views": [],
        "errors": [],
    }

    existing_objects = _get_existing_tables(conn)
    existing_indexes = _get_existing_indexes(conn)

    for table_name, table_def in schema.TABLES.items():
        obj_type = existing_objects.get(table_name)

        if obj_type == "view":
            results["skipped_views"].append(table_name)
            continue

        if obj_type is None:
            try:
                conn.execute(_build_create_sql(table_name, table_def))
                results["tables_created"].append(table_name)
                logger.info("schema_engine: created table %s", table_name)
            except sqlite3.OperationalError as e:
                err = f"CREATE TABLE {table_name}: {e}"
                results["errors"].append(err)
                logger.warning("schema_engine: %s", err)
            continue

        existing_cols = _get_existing_columns(conn, table_name)
        for col_name, col_ddl in table_def["columns"]:
            if col_name in existing_cols:
                continue
            safe_ddl = make_alter_safe(col_ddl)
            try:
                conn.execute(
                    f"ALTER TABLE [{table_name}] ADD COLUMN [{col_name}] {safe_ddl}"  # nosec B608
                )
                col_ref = f"{table_name}.{col_name}"
                results["columns_added"].append(col_ref)
                logger.info("schema_engine: added column %s", col_ref)
            except sqlite3.OperationalError as e:
                err = f"ADD COLUMN {table_name}.{col_name}: {e}"
                results["errors"].append(err)
                logger.warning("schema_engine: %s", err)

    _create_indexes(conn, results, _get_existing_tables(conn), existing_indexes)

    conn.execute(f"PRAGMA user_version = {schema.SCHEMA_VERSION}")  # nosec B608
    results["schema_version"] = schema.SCHEMA_VERSION
    return results


# ────────────────────────────────────────────────────────────
# create_fresh: for new databases and test fixtures
# ────────────────────────────────────────────────────────────


def create_fresh(conn: sqlite3.Connection) -> dict:
    """
    Create all tables from scratch in an empty database.

    Drops ALL existing tables and views first. Use only for brand-new
    databases and test fixtures (tests/fixtures/fixture_db.py).
    """
    results = {"tables_created": [], "indexes_created": [], "errors": []}

    cursor = conn.execute(
        "SELECT name, type FROM sqlite_master WHERE type IN ('table', 'view') "
        "AND name NOT LIKE 'sqlite_%'"
    )
    existing = cursor.fetchall()

    conn.execute("PRAGMA foreign_keys=OFF")
    for name, obj_type in existing:
        if obj_type == "view":
            conn.execute(f"DROP VIEW IF EXISTS [{name}]")  # nosec B608
    for name, obj_type in existing:
        if obj_type == "table":
            conn.execute(f"DROP TABLE IF EXISTS [{name}]")  # nosec B608
    conn.execute("PRAGMA foreign_keys=ON")

    for table_name, table_def in schema.TABLES.items():
        try:
            conn.execute(_build_create_sql(table_name, table_def))
            results["tables_created"].append(table_name)
        except sqlite3.OperationalError as e:
            err = f"CREATE TABLE {table_name}: {e}"
            results["errors"].append(err)
            logger.warning("schema_engine: create_fresh %s", err)

    _create_indexes(conn, results, _get_existing_tables(conn), set())

    conn.execute(f"PRAGMA user_version = {schema.SCHEMA_VERSION}")  # nosec B608
    results["schema_version"] = schema.SCHEMA_VERSION
    return results
