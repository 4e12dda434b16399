"""
Input sanitisation for assistant requests and confirmation payloads.

Everything arriving from the client passes through here before it reaches
the classifier, a tool or a database write.
"""

import re
from datetime import datetime

MAX_MESSAGE_LENGTH = 500
MAX_TITLE_LENGTH = 200
MAX_DESCRIPTION_LENGTH = 1000
MAX_QUERY_LENGTH = 200
MAX_HISTORY_ENTRIES = 10

VALID_TASK_STATUSES = ("todo", "in_progress", "pending_review", "done", "blocked")
VALID_PROGRAMME_STATUSES = ("draft", "active", "paused", "completed", "archived")
VALID_PRIORITIES = ("low", "medium", "high", "urgent")
VALID_PROGRAMME_FIELDS = ("name", "description", "start_date", "end_date")

_TAG_RE = re.compile(r"<[^>]*>")
_ENTITY_RE = re.compile(r"&[a-z]+;", re.IGNORECASE)
# Control characters except \t \n \r
_CONTROL_RE = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]")
_UUID_RE = re.compile(
    r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$", re.IGNORECASE
)
_ISO_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")


def strip_html(value: str) -> str:
    value = _TAG_RE.sub("", value)
    value = _ENTITY_RE.sub("", value)
    value = _CONTROL_RE.sub("", value)
    return value.strip()


def sanitize_text(value, max_length: int = MAX_TITLE_LENGTH) -> str:
    """Non-strings become ``""``; strings are stripped of markup and truncated."""
    if not isinstance(value, str):
        return ""
    return strip_html(value)[:max_length]


def sanitize_message(value) -> str:
    return sanitize_text(value, MAX_MESSAGE_LENGTH)


def sanitize_query(value) -> str:
    return sanitize_text(value, MAX_QUERY_LENGTH)


def is_valid_uuid(value) -> bool:
    return isinstance(value, str) and bool(_UUID_RE.match(value))


def parse_uuid(value) -> str | None:
    return value if is_valid_uuid(value) else None


def is_valid_iso_date(value) -> bool:
    """``YYYY-MM-DD`` that is also a real calendar date."""
    if not isinstance(value, str) or not _ISO_DATE_RE.match(value):
        return False
    try:
        datetime.strptime(value, "%Y-%m-%d")
    except ValueError:
        return False
    return True


def sanitize_history(history) -> list[dict]:
    """Keep the last MAX_HISTORY_ENTRIES user/assistant turns with content."""
    if not isinstance(history, list):
        return []
    kept = []
    for entry in history:
        if not isinstance(entry, dict):
            continue
        if entry.get("role") not in ("user", "assistant"):
            continue
        content = sanitize_message(entry.get("content"))
        if content:
            kept.append({"role": entry["role"], "content": content})
    return kept[-MAX_HISTORY_ENTRIES:]


def validate_enum(value, allowed, default: str | None = None) -> str | None:
    """Lower-cased *value* when it is in *allowed*, otherwise *default*."""
    if not isinstance(value, str):
        return default
    lowered = value.strip().lower()
    return lowered if lowered in allowed else default
