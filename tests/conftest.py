"""
Test configuration: repo root on sys.path, isolation from the real
assistant database, and shared fixtures.

Every test runs with OPS_ASSISTANT_HOME / OPS_ASSISTANT_DB pointed at a
temp directory, so anything that falls back to the default store path
lands in tmp instead of ~/.ops_assistant.
"""

import sys
from pathlib import Path

import pytest

# Add repo root to sys.path so tests can import lib.*, api.*, cli.*
REPO_ROOT = Path(__file__).parent.parent
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from lib.paths import APP_ENV_DB, APP_ENV_HOME  # noqa: E402

# =============================================================================
# DETERMINISM GUARD: keep tests off the real database
# =============================================================================


@pytest.fixture(autouse=True)
def isolate_app_home(tmp_path, monkeypatch):
    """Point the app home and default DB at a per-test temp directory."""
    home = tmp_path / "ops_home"
    monkeypatch.setenv(APP_ENV_HOME, str(home))
    monkeypatch.setenv(APP_ENV_DB, str(home / "data" / "default.db"))
    yield home


# =============================================================================
# FIXTURE DB
# =============================================================================


@pytest.fixture
def fixture_db_path(tmp_path):
    """Fresh seeded DB per test; playbooks and confirmations mutate it."""
    from tests.fixtures.fixture_db import get_fixture_db_path

    return get_fixture_db_path(tmp_path)


@pytest.fixture
def store(fixture_db_path):
    from lib.state_store import StateStore

    return StateStore(str(fixture_db_path))


@pytest.fixture
def telemetry(store):
    """Telemetry that writes synchronously."""
    from lib.assistant.telemetry import Telemetry, run_inline

    return Telemetry(store, dispatch=run_inline)


@pytest.fixture
def fallback_classifier():
    """Classifier with no API client: deterministic rules only."""
    from lib.assistant.classifier import IntentClassifier

    return IntentClassifier(api_key="")


@pytest.fixture
def engine(store, fallback_classifier):
    """Chat engine with inline background work and the rule-based classifier."""
    from lib.assistant.chat import ChatEngine
    from lib.assistant.telemetry import run_inline

    return ChatEngine(store, classifier=fallback_classifier, dispatch=run_inline)
