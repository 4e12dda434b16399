"""Helpers shared by the assistant tools: roles, team scope, dates, labels."""

from datetime import date, datetime, timedelta

from lib import safe_sql
from lib.security.rbac import Role, role_from_value, sees_all_profiles
from lib.state_store import StateStore

TASK_STATUSES = ("todo", "in_progress", "pending_review", "done", "blocked")
PROGRAMME_STATUSES = ("draft", "active", "paused", "completed", "archived")
PRIORITIES = ("low", "medium", "high", "urgent")

STATUS_LABELS = {
    "todo": "To Do",
    "in_progress": "In Progress",
    "pending_review": "Pending Review",
    "done": "Done",
    "blocked": "Blocked",
}

PROGRAMME_STATUS_LABELS = {
    "draft": "Draft",
    "active": "Active",
    "paused": "Paused",
    "completed": "Completed",
    "archived": "Archived",
}

# Task columns plus the owning programme's name
TASK_WITH_PROGRAMME = (
    "SELECT t.id, t.title, t.status, t.priority, t.due_date, p.name AS programme_name "
    "FROM tasks t LEFT JOIN programmes p ON p.id = t.programme_id"
)


def plural(count: int, word: str) -> str:
    return f"{count} {word}" if count == 1 else f"{count} {word}s"


def today_iso() -> str:
    return date.today().isoformat()


def week_start(day: date | None = None) -> str:
    """Monday of the week containing *day*."""
    day = day or date.today()
    return (day - timedelta(days=day.weekday())).isoformat()


def format_date(value: str | None) -> str:
    """``2026-03-05`` or a full timestamp -> ``5 Mar``. Unparseable values pass through."""
    if not value:
        return ""
    try:
        parsed = datetime.strptime(value[:10], "%Y-%m-%d")
    except ValueError:
        return value
    return f"{parsed.day} {parsed.strftime('%b')}"


def get_user_role(store: StateStore, user_id: str) -> Role:
    row = store.query_one(safe_sql.select("profiles", "role", where="id = ?"), [user_id])
    return role_from_value(row["role"] if row else None)


def get_report_ids(store: StateStore, user_id: str, role: Role) -> list[str]:
    """Everyone else for admins; direct reports from the hierarchy for managers."""
    if sees_all_profiles(role):
        rows = store.query(
            safe_sql.select("profiles", "id", where="id != ?", order_by="full_name, id"),
            [user_id],
        )
        return [r["id"] for r in rows]
    rows = store.query(
        safe_sql.select("hierarchy", "member_id", where="manager_id = ?", order_by="member_id"),
        [user_id],
    )
    return [r["member_id"] for r in rows]


def assigned_task_ids(store: StateStore, user_ids: list[str]) -> list[str]:
    """Distinct task ids assigned to any of *user_ids*, in first-seen order."""
    if not user_ids:
        return []
    rows = store.query(
        safe_sql.select(
            "task_assignees",
            "task_id",
            where=f"user_id IN ({safe_sql.in_placeholders(len(user_ids))})",
            order_by="created_at, id",
        ),
        list(user_ids),
    )
    return list(dict.fromkeys(r["task_id"] for r in rows))


def task_detail(task: dict, include_status: bool = True) -> str:
    """``status · priority · due 5 Mar · Programme``"""
    parts = [task["status"]] if include_status else []
    parts.append(task["priority"])
    if task.get("due_date"):
        parts.append(f"due {format_date(task['due_date'])}")
    if task.get("programme_name"):
        parts.append(task["programme_name"])
    return " · ".join(parts)


def param(params: dict, key: str) -> str:
    """A tool parameter as stripped text; missing or None gives ``""``."""
    value = params.get(key)
    return str(value).strip() if value is not None else ""
