from __future__ import annotations

import os
from pathlib import Path

APP_ENV_HOME = "OPS_ASSISTANT_HOME"
APP_ENV_DB = "OPS_ASSISTANT_DB"


def app_home() -> Path:
    """
    User-writable home for the assistant.
    Override with OPS_ASSISTANT_HOME.
    """
    if os.environ.get(APP_ENV_HOME):
        return Path(os.environ[APP_ENV_HOME]).expanduser().resolve()
    return (Path.home() / ".ops_assistant").resolve()


def config_file() -> Path:
    """Optional YAML overrides. Not created automatically."""
    return app_home() / "config" / "assistant.yaml"


def data_dir() -> Path:
    d = app_home() / "data"
    d.mkdir(parents=True, exist_ok=True)
    return d


def db_path() -> Path:
    """
    Canonical DB path.

    Resolution order:
    1. OPS_ASSISTANT_DB env var (explicit override)
    2. ~/.ops_assistant/data/ops_assistant.db (default)
    """
    if os.environ.get(APP_ENV_DB):
        return Path(os.environ[APP_ENV_DB]).expanduser().resolve()
    return data_dir() / "ops_assistant.db"
