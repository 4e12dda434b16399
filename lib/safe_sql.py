"""
Centralized SQL construction with validated identifiers.

Table and column names are validated against _SAFE_IDENTIFIER_RE before
interpolation. Values are always passed as parameterized ``?``, never
interpolated.

SQLite does not support parameterized identifiers (``?`` works only for
values), so every f-string in this file is a validated-identifier
interpolation.
"""

# ruff: noqa: S608
# All identifiers validated via _validate() before interpolation.

from __future__ import annotations

import re

_SAFE_IDENTIFIER_RE = re.compile(r"^[a-zA-Z_][a-zA-Z0-9_]*$")


def _validate(name: str) -> str:
    """Return *name* unchanged if it is a safe SQL identifier, else raise ValueError."""
    if not _SAFE_IDENTIFIER_RE.match(name):
        raise ValueError(f"Invalid SQL identifier: {name!r}")
    return name


_QUALIFIED_RE = re.compile(r"^([a-zA-Z_][a-zA-Z0-9_]*\.)?[a-zA-Z_][a-zA-Z0-9_]*$")


def _validate_column(name: str) -> str:
    """Like _validate but also accepts a ``table.column`` reference."""
    if not _QUALIFIED_RE.match(name):
        raise ValueError(f"Invalid SQL column reference: {name!r}")
    return name


# ────────────────────────────────────────────────────────────
# DML: SELECT, INSERT, UPDATE, DELETE, COUNT
# ────────────────────────────────────────────────────────────


def select(
    table: str,
    columns: str = "*",
    where: str | None = None,
    order_by: str | None = None,
    suffix: str = "",
) -> str:
    """Build SELECT with validated table name.

    *columns* is a raw column expression (e.g. ``"*"`` or ``"id, name"``).
    *where* is a raw WHERE clause without the keyword (e.g. ``"id = ?"``)
    and must use ``?`` for all values.
    """
    sql = f"SELECT {columns} FROM {_validate(table)}"
    if where:
        sql += f" WHERE {where}"
    if order_by:
        sql += f" ORDER BY {order_by}"
    if suffix:
        sql += f" {suffix}"
    return sql


def select_count(table: str, where: str | None = None) -> str:
    """Build SELECT COUNT(*) with validated table name."""
    sql = f"SELECT COUNT(*) as c FROM {_validate(table)}"
    if where:
        sql += f" WHERE {where}"
    return sql


def insert(table: str, columns: list[str]) -> str:
    """Build INSERT with validated table+column names."""
    _validate(table)
    for col in columns:
        _validate(col)
    cols = ",".join(columns)
    placeholders = ",".join(["?" for _ in columns])
    return f"INSERT INTO {table} ({cols}) VALUES ({placeholders})"


def insert_or_ignore(table: str, columns: list[str]) -> str:
    """Build INSERT OR IGNORE with validated table+column names."""
    return insert(table, columns).replace("INSERT INTO", "INSERT OR IGNORE INTO", 1)


def update(table: str, set_columns: list[str], where: str = "id = ?") -> str:
    """Build UPDATE SET with validated table+column names."""
    _validate(table)
    for col in set_columns:
        _validate(col)
    sets = ",".join(f"{col} = ?" for col in set_columns)
    return f"UPDATE {table} SET {sets} WHERE {where}"


def delete(table: str, where: str = "id = ?") -> str:
    """Build DELETE with validated table name."""
    return f"DELETE FROM {_validate(table)} WHERE {where}"


# ────────────────────────────────────────────────────────────
# Helpers: IN-list placeholders, text matching
# ────────────────────────────────────────────────────────────


def in_placeholders(count: int) -> str:
    """Return ``?,?,?`` for use in ``IN (...)`` clauses."""
    if count <= 0:
        raise ValueError(f"IN clause needs at least 1 placeholder, got {count}")
    return ",".join("?" for _ in range(count))


def contains_ci(column: str) -> str:
    """Case-insensitive substring test on *column*; binds one ``?`` needle."""
    return f"instr(lower({_validate_column(column)}), lower(?)) > 0"

