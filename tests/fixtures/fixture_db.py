"""
Fixture Database Factory for deterministic assistant tests.

Creates a temp SQLite DB with the declared schema + seeded data.
Tests MUST use this fixture, never the user's real assistant database.

Design:
- Schema comes from schema_engine.create_fresh (same DDL as production)
- Seed data is from tests/fixtures/assistant_seed.json (pinned, committed)
- Ids are UUIDs because confirmation payloads are UUID-validated
- Overdue/future dates are far from today (2020 / 2099) so results
  don't drift with the calendar
"""

import json
import sqlite3
from pathlib import Path
from typing import Any

from lib import schema, schema_engine

SEED_PATH = Path(__file__).parent / "assistant_seed.json"

# Profiles
ADMIN_ID = "0b7e5a10-0000-4000-8000-000000000001"
MANAGER_ID = "0b7e5a10-0000-4000-8000-000000000002"
ESTHER_ID = "0b7e5a10-0000-4000-8000-000000000003"
SAMUEL_ID = "0b7e5a10-0000-4000-8000-000000000004"
FATMATA_ID = "0b7e5a10-0000-4000-8000-000000000005"

# Programmes
YOUTH_ID = "9a3c7e30-0000-4000-8000-000000000001"
SABITEK_ID = "9a3c7e30-0000-4000-8000-000000000002"
HEALTH_ID = "9a3c7e30-0000-4000-8000-000000000003"
LEGACY_ID = "9a3c7e30-0000-4000-8000-000000000004"

# Tasks
BUDGET_TASK_ID = "c4e8b240-0000-4000-8000-000000000001"
TRAINING_TASK_ID = "c4e8b240-0000-4000-8000-000000000002"
PROJECTOR_TASK_ID = "c4e8b240-0000-4000-8000-000000000003"
DEMO_NOTES_TASK_ID = "c4e8b240-0000-4000-8000-000000000004"
OUTREACH_TASK_ID = "c4e8b240-0000-4000-8000-000000000005"
SABITEK_TASK_ID = "c4e8b240-0000-4000-8000-000000000006"
DEMO_AGENDA_TASK_ID = "c4e8b240-0000-4000-8000-000000000007"

_DANGEROUS_PATHS = (".ops_assistant/data/ops_assistant.db",)


def guard_no_live_db(db_path: str | Path) -> None:
    """Fail loudly if tests try to build fixtures over the real database."""
    path_str = str(db_path)
    if any(p in path_str for p in _DANGEROUS_PATHS):
        raise RuntimeError(
            f"DETERMINISM VIOLATION: Test attempted to use the live DB at {db_path}.\n"
            "Tests must use fixture DB only. See tests/fixtures/fixture_db.py."
        )


def load_seed_data() -> dict[str, Any]:
    """Load pinned seed data from assistant_seed.json."""
    if not SEED_PATH.exists():
        raise FileNotFoundError(f"Seed data not found: {SEED_PATH}")
    return json.loads(SEED_PATH.read_text())


def create_fixture_db(db_path: str | Path) -> sqlite3.Connection:
    """
    Create a fresh fixture DB at *db_path* and seed it.

    Returns an open connection; the caller closes it.
    """
    guard_no_live_db(db_path)
    conn = sqlite3.connect(str(db_path))

    results = schema_engine.create_fresh(conn)
    if results["errors"]:
        conn.close()
        raise RuntimeError(f"Fixture schema failed: {results['errors']}")

    seed = load_seed_data()
    # Declaration order keeps foreign keys satisfied
    for table in schema.TABLES:
        for row in seed.get(table, []):
            columns = list(row.keys())
            conn.execute(
                f"INSERT INTO [{table}] ({', '.join(columns)}) "  # nosec B608
                f"VALUES ({', '.join('?' for _ in columns)})",
                list(row.values()),
            )
    conn.commit()
    return conn


def get_fixture_db_path(tmp_dir: str | Path) -> Path:
    """Create a seeded fixture DB inside *tmp_dir* and return its path."""
    db_path = Path(tmp_dir) / "assistant_fixture.db"
    create_fixture_db(db_path).close()
    return db_path
