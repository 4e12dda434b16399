"""
Missing-field detection, follow-up prompts and value normalization.

Write intents are completed field by field: detect_missing_fields() lists
what still needs asking, follow_up_question()/field_label()/field_example()
phrase the prompt, and normalize_field_value() turns the user's reply into
the canonical stored value.
"""

import calendar
import re
from datetime import datetime
from typing import Any

GENERIC_TITLES = frozenset({"", "task", "new task", "a task", "new", "the task"})
GENERIC_PROGRAMME_NAMES = frozenset(
    {"", "programme", "new programme", "a programme", "program", "new program"}
)

# Write tools that go through the missing-field flow
WRITE_TOOLS = (
    "create_task",
    "update_task_status",
    "create_programme",
    "update_programme_status",
    "update_programme_fields",
)


def _text(params: dict[str, Any], key: str) -> str:
    value = params.get(key)
    return str(value).strip() if value is not None else ""


def detect_missing_fields(tool: str, params: dict[str, Any]) -> list[str]:
    """Fields still to ask for, in the order they should be asked."""
    missing: list[str] = []

    if tool == "create_task":
        if _text(params, "title").lower() in GENERIC_TITLES:
            missing.append("title")
        # Optional but worth asking; "medium" is the classifier's default, not a choice
        if not _text(params, "priority") or _text(params, "priority") == "medium":
            missing.append("priority")
        if not _text(params, "due_date"):
            missing.append("due_date")
        if not _text(params, "programme_name"):
            missing.append("programme_name")
        if not _text(params, "assignee_name"):
            missing.append("assignee_name")

    elif tool == "update_task_status":
        if not _text(params, "task_title"):
            missing.append("task_title")
        if not _text(params, "new_status"):
            missing.append("new_status")

    elif tool == "create_programme":
        if _text(params, "name").lower() in GENERIC_PROGRAMME_NAMES:
            missing.append("name")
        if not _text(params, "description"):
            missing.append("description")
        if not _text(params, "start_date"):
            missing.append("start_date")
        if not _text(params, "end_date"):
            missing.append("end_date")

    elif tool == "update_programme_status":
        if not _text(params, "programme_name"):
            missing.append("programme_name")
        if not _text(params, "new_status"):
            missing.append("programme_status")

    elif tool == "update_programme_fields":
        if not _text(params, "programme_name"):
            missing.append("programme_name")
        if not _text(params, "update_field"):
            missing.append("update_field")
        if not _text(params, "update_value"):
            missing.append("update_value")

    return missing


# Required fields carry no skip hint
_QUESTIONS = {
    "title": "What should the task be called?",
    "task_title": "Which task do you want to update?",
    "new_status": "What status? Options: todo, in progress, done, blocked.",
    "name": "What should the programme be called?",
    "priority": 'What priority? (low / medium / high / urgent), or say "skip"',
    "due_date": 'When is it due? (e.g. 2026-03-15), or say "skip"',
    "programme_name": 'Which programme does this belong to? Or say "skip"',
    "programme_status": "What status? Options: draft, active, paused, completed, archived.",
    "assignee_name": 'Who should this be assigned to? Or say "skip"',
    "description": 'Brief description of the programme, or say "skip"',
    "start_date": 'Start date? (e.g. 2026-03-01), or say "skip"',
    "end_date": 'End date? (e.g. 2026-06-30), or say "skip"',
    "target_name": "Which programme?",
    "update_field": "Which field? Options: name, description, start_date, end_date.",
    "update_value": "What should the new value be?",
}

_LABELS = {
    "title": "Task title",
    "task_title": "Task name",
    "new_status": "Status",
    "name": "Programme name",
    "priority": "Priority",
    "due_date": "Due date",
    "programme_name": "Programme",
    "programme_status": "Programme status",
    "assignee_name": "Assignee",
    "description": "Description",
    "start_date": "Start date",
    "end_date": "End date",
    "target_name": "Programme name",
    "update_field": "Field to update",
    "update_value": "New value",
}

_EXAMPLES = {
    "title": 'e.g. "Review Q1 budget"',
    "task_title": 'e.g. "Weekly demo notes"',
    "new_status": 'e.g. "done" or "in progress"',
    "name": 'e.g. "Youth Tech Training"',
    "priority": "low / medium / high / urgent",
    "due_date": 'e.g. "2026-03-15" or "skip"',
    "programme_name": 'e.g. "Digital Skills Pilot" or "skip"',
    "programme_status": 'e.g. "active" or "paused"',
    "assignee_name": 'e.g. "Esther" or "skip"',
    "description": 'e.g. "Digital literacy for secondary schools"',
    "start_date": 'e.g. "2026-03-01" or "skip"',
    "end_date": 'e.g. "2026-06-30" or "skip"',
    "target_name": 'e.g. "Sabitek" or "Youth Digital Skills"',
    "update_field": "name / description / start_date / end_date",
    "update_value": 'e.g. "2026-06-30" or "New programme name"',
}


def follow_up_question(field: str) -> str:
    return _QUESTIONS.get(field, f"What is the {field}?")


def field_label(field: str) -> str:
    return _LABELS.get(field, field)


def field_example(field: str) -> str:
    return _EXAMPLES.get(field, "")


# ============================================================
# Value normalization
# ============================================================

_PRIORITY_ALIASES = {
    "low": "low",
    "l": "low",
    "medium": "medium",
    "med": "medium",
    "m": "medium",
    "high": "high",
    "h": "high",
    "urgent": "urgent",
    "u": "urgent",
    "critical": "urgent",
}

TASK_STATUS_ALIASES = {
    "todo": "todo",
    "to do": "todo",
    "to-do": "todo",
    "in progress": "in_progress",
    "in_progress": "in_progress",
    "doing": "in_progress",
    "review": "pending_review",
    "pending review": "pending_review",
    "pending_review": "pending_review",
    "done": "done",
    "complete": "done",
    "completed": "done",
    "finished": "done",
    "blocked": "blocked",
    "stuck": "blocked",
}

PROGRAMME_STATUS_ALIASES = {
    "complete": "completed",
    "finished": "completed",
    "done": "completed",
    "closed": "completed",
    "pause": "paused",
    "on hold": "paused",
    "activate": "active",
    "live": "active",
    "archive": "archived",
}

_UPDATE_FIELD_ALIASES = {
    "name": "name",
    "programme name": "name",
    "rename": "name",
    "title": "name",
    "description": "description",
    "desc": "description",
    "about": "description",
    "start date": "start_date",
    "start_date": "start_date",
    "start": "start_date",
    "end date": "end_date",
    "end_date": "end_date",
    "end": "end_date",
    "closing date": "end_date",
    "close date": "end_date",
    "deadline": "end_date",
}

_MONTHS = {
    "january": 1,
    "february": 2,
    "march": 3,
    "april": 4,
    "may": 5,
    "june": 6,
    "july": 7,
    "august": 8,
    "september": 9,
    "october": 10,
    "november": 11,
    "december": 12,
    "jan": 1,
    "feb": 2,
    "mar": 3,
    "apr": 4,
    "jun": 6,
    "jul": 7,
    "aug": 8,
    "sep": 9,
    "sept": 9,
    "oct": 10,
    "nov": 11,
    "dec": 12,
}

_ISO_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
_DMY_RE = re.compile(r"^(\d{1,2})[/-](\d{1,2})[/-](\d{4})$")
_MONTH_DAY_YEAR_RE = re.compile(r"^([a-z]+)\s+(\d{1,2}),?\s+(\d{4})$", re.IGNORECASE)
_DAY_MONTH_YEAR_RE = re.compile(r"^(\d{1,2})\s+([a-z]+),?\s+(\d{4})$", re.IGNORECASE)
_MONTH_YEAR_RE = re.compile(r"^([a-z]+)\s+(\d{4})$", re.IGNORECASE)


def _iso(year: int, month: int, day: int) -> str | None:
    try:
        return datetime(year, month, day).strftime("%Y-%m-%d")
    except ValueError:
        return None


def normalize_date_value(value: str) -> str:
    """
    Best-effort natural-language date to ``YYYY-MM-DD``.

    ISO passes through; ``DD/MM/YYYY`` and ``DD-MM-YYYY``; ``Month D, YYYY``
    and ``D Month YYYY``; ``Month YYYY`` becomes the last day of that month.
    Anything else is returned as typed for the caller to reject.
    """
    trimmed = value.strip()
    if _ISO_RE.match(trimmed):
        return trimmed

    m = _DMY_RE.match(trimmed)
    if m:
        return _iso(int(m.group(3)), int(m.group(2)), int(m.group(1))) or trimmed

    m = _MONTH_DAY_YEAR_RE.match(trimmed)
    if m and m.group(1).lower() in _MONTHS:
        return _iso(int(m.group(3)), _MONTHS[m.group(1).lower()], int(m.group(2))) or trimmed

    m = _DAY_MONTH_YEAR_RE.match(trimmed)
    if m and m.group(2).lower() in _MONTHS:
        return _iso(int(m.group(3)), _MONTHS[m.group(2).lower()], int(m.group(1))) or trimmed

    m = _MONTH_YEAR_RE.match(trimmed)
    if m and m.group(1).lower() in _MONTHS:
        year, month = int(m.group(2)), _MONTHS[m.group(1).lower()]
        return _iso(year, month, calendar.monthrange(year, month)[1]) or trimmed

    return trimmed


def normalize_field_value(field: str, value: str) -> str:
    """Canonical value for a reply to a missing-field question."""
    lower = value.strip().lower()

    if field == "priority":
        return _PRIORITY_ALIASES.get(lower, "medium")

    if field == "new_status":
        return TASK_STATUS_ALIASES.get(lower, value.strip())

    if field == "programme_status":
        return PROGRAMME_STATUS_ALIASES.get(lower, lower)

    if field in ("due_date", "start_date", "end_date"):
        return normalize_date_value(value)

    if field == "update_field":
        return _UPDATE_FIELD_ALIASES.get(lower, value.strip())

    return value.strip()
