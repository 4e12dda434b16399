"""
Centralized configuration for the operations assistant.

All tunables that vary by deployment belong here. Each value resolves in
order: environment variable, then ``<app_home>/config/assistant.yaml``
(lower-cased key), then the built-in default.
"""

import logging
import os

import yaml

from lib import paths

logger = logging.getLogger(__name__)


def _load_yaml_overrides() -> dict:
    """Load optional YAML overrides, empty dict when absent or unreadable."""
    config_path = paths.config_file()
    if not config_path.exists():
        return {}
    try:
        with open(config_path) as f:
            data = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as exc:
        logger.error("Failed to load assistant config %s: %s", config_path, exc)
        return {}
    if not isinstance(data, dict):
        logger.warning("Ignoring assistant config %s: top level is not a mapping", config_path)
        return {}
    return data


_OVERRIDES = _load_yaml_overrides()


def _setting(name: str, default, cast=str):
    raw = os.environ.get(name)
    if raw is None:
        raw = _OVERRIDES.get(name.lower())
    if raw is None:
        return default
    try:
        return cast(raw)
    except (TypeError, ValueError):
        logger.warning("Invalid value for %s: %r, using default %r", name, raw, default)
        return default


def _as_bool(value) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in ("1", "true", "yes", "on")


# ============================================================
# Intent classifier
# ============================================================

ANTHROPIC_API_KEY: str = os.environ.get("ANTHROPIC_API_KEY", "")
"""API key for the classification service. Empty means fallback-only."""

CLASSIFIER_MODEL: str = _setting("CLASSIFIER_MODEL", "claude-3-haiku-20240307")
"""Model used for intent classification."""

CLASSIFIER_TIMEOUT_SECONDS: float = _setting("CLASSIFIER_TIMEOUT_SECONDS", 10.0, float)
"""Hard timeout for one classification call."""

CLASSIFIER_MAX_RETRIES: int = _setting("CLASSIFIER_MAX_RETRIES", 1, int)
"""Retries on transient failure. Never more than one."""

CLASSIFIER_BACKOFF_SECONDS: float = _setting("CLASSIFIER_BACKOFF_SECONDS", 0.5, float)
"""Base backoff between attempts, multiplied by the attempt number."""

CLASSIFIER_MAX_TOKENS: int = _setting("CLASSIFIER_MAX_TOKENS", 512, int)
"""Output token cap for the classification response."""

CLASSIFIER_HISTORY_TURNS: int = min(_setting("CLASSIFIER_HISTORY_TURNS", 6, int), 8)
"""Conversation turns sent with each classification call (capped at 8)."""

LOW_CONFIDENCE_FLOOR: float = _setting("LOW_CONFIDENCE_FLOOR", 0.4, float)
"""Below this, non-write intents get a rephrase prompt instead of a tool run."""

# ============================================================
# Pending conversation state
# ============================================================

PENDING_TTL_MINUTES: int = _setting("PENDING_TTL_MINUTES", 5, int)
"""Minutes of inactivity before a pending action expires."""

PENDING_RETENTION_HOURS: int = _setting("PENDING_RETENTION_HOURS", 24, int)
"""Terminal pending records older than this are purged."""

# ============================================================
# Entity resolution
# ============================================================

FUZZY_THRESHOLD: float = _setting("FUZZY_THRESHOLD", 0.3, float)
"""Minimum similarity for a fuzzy candidate to be returned."""

RESOLVE_THRESHOLD: float = _setting("RESOLVE_THRESHOLD", 0.25, float)
"""Minimum similarity considered when resolving a named reference."""

RESOLVE_CONFIDENT_SCORE: float = _setting("RESOLVE_CONFIDENT_SCORE", 0.5, float)
"""Top score at or above which a reference resolves without asking."""

# ============================================================
# Runtime
# ============================================================

BACKGROUND_WORKERS: int = _setting("BACKGROUND_WORKERS", 2, int)
"""Thread pool size for fire-and-forget work (telemetry, purge)."""

LOG_LEVEL: str = _setting("LOG_LEVEL", "INFO").upper()
"""Root log level."""

LOG_JSON: bool | None = _setting("LOG_JSON", None, _as_bool)
"""Force JSON (true) or human (false) logs. Unset auto-detects from the TTY."""

CORS_ORIGINS: list[str] = [
    o.strip() for o in _setting("CORS_ORIGINS", "*").split(",") if o.strip()
]
"""Allowed CORS origins, comma separated."""

PORT: int = _setting("PORT", 8420, int)
"""HTTP port for the API server."""
