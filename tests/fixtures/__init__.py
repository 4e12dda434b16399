"""
Test fixtures for deterministic testing.

This module provides:
- fixture_db: Creates temp SQLite databases with pinned seed data
- assistant_seed.json: Pinned profiles, programmes, tasks and check-ins
"""

from .fixture_db import create_fixture_db, get_fixture_db_path, guard_no_live_db

__all__ = ["create_fixture_db", "get_fixture_db_path", "guard_no_live_db"]
