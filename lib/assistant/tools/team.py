"""Manager-facing team views and the playbook entry point."""

import logging
from collections import defaultdict

from lib import safe_sql
from lib.assistant import playbooks, resolver
from lib.assistant.models import ResultItem, ToolResult
from lib.assistant.tools.common import (
    TASK_WITH_PROGRAMME,
    assigned_task_ids,
    format_date,
    get_report_ids,
    get_user_role,
    param,
    plural,
    today_iso,
)
from lib.security.rbac import Role, has_role
from lib.state_store import StateStore

logger = logging.getLogger(__name__)

TEAM_OVERDUE_LIMIT = 20


def _assignee_names(store: StateStore, task_ids: list[str], user_ids: list[str]) -> dict[str, list[str]]:
    """task_id -> names of the given users assigned to it."""
    if not task_ids or not user_ids:
        return {}
    rows = store.query(
        "SELECT ta.task_id, p.full_name, p.username FROM task_assignees ta "
        "JOIN profiles p ON p.id = ta.user_id "
        f"WHERE ta.task_id IN ({safe_sql.in_placeholders(len(task_ids))}) "
        f"AND ta.user_id IN ({safe_sql.in_placeholders(len(user_ids))}) "
        "ORDER BY p.full_name, p.id",
        list(task_ids) + list(user_ids),
    )
    names: dict[str, list[str]] = defaultdict(list)
    for r in rows:
        names[r["task_id"]].append(resolver.user_label(r))
    return names


def get_team_overdue(store: StateStore, user_id: str, params: dict) -> ToolResult:
    role = get_user_role(store, user_id)
    if not has_role(role, Role.MANAGER):
        return ToolResult(
            text='Team overdue view is available for managers and above. Use "My overdue" to see your own.'
        )

    report_ids = get_report_ids(store, user_id, role)
    if not report_ids:
        return ToolResult(text="You have no direct reports yet.")

    task_ids = assigned_task_ids(store, report_ids)
    if not task_ids:
        return ToolResult(text="No tasks assigned to your team.")

    rows = store.query(
        f"{TASK_WITH_PROGRAMME} WHERE t.id IN ({safe_sql.in_placeholders(len(task_ids))}) "
        "AND t.due_date < ? AND t.status != 'done' ORDER BY t.due_date, t.id LIMIT ?",
        task_ids + [today_iso(), TEAM_OVERDUE_LIMIT],
    )
    if not rows:
        return ToolResult(text="No overdue tasks across your team. Everyone is on track!")

    names = _assignee_names(store, [t["id"] for t in rows], report_ids)
    items = []
    for t in rows:
        parts = [f"Due: {format_date(t['due_date'])}"]
        if t["priority"] != "medium":
            parts.append(t["priority"])
        if t["programme_name"]:
            parts.append(t["programme_name"])
        if names.get(t["id"]):
            parts.append("→ " + ", ".join(names[t["id"]]))
        items.append(ResultItem(label=t["title"], detail=" · ".join(parts), href=f"/tasks/{t['id']}"))

    return ToolResult(text=f"{plural(len(rows), 'overdue task')} across your team:", items=items)


def get_team_summary(store: StateStore, user_id: str, params: dict) -> ToolResult:
    role = get_user_role(store, user_id)
    if not has_role(role, Role.MANAGER):
        return ToolResult(text="Team summary is available for managers and above.")

    report_ids = get_report_ids(store, user_id, role)
    if not report_ids:
        return ToolResult(text="You have no direct reports yet.")

    task_ids = assigned_task_ids(store, report_ids)
    if not task_ids:
        return ToolResult(text="No tasks assigned to your team yet.")

    where = f"id IN ({safe_sql.in_placeholders(len(task_ids))})"
    values: list = list(task_ids)
    programme_name = param(params, "programme_name")
    if programme_name:
        matches = resolver.search_programmes(store, programme_name, best_only=True)
        if matches:
            where += " AND programme_id = ?"
            values.append(matches[0].item["id"])

    tasks = store.query(safe_sql.select("tasks", "id, status, due_date", where=where), values)
    if not tasks:
        return ToolResult(text="No tasks found for your team.")

    counts: dict[str, int] = defaultdict(int)
    for t in tasks:
        counts[t["status"]] += 1
    today = today_iso()
    overdue = sum(1 for t in tasks if t["due_date"] and t["due_date"] < today and t["status"] != "done")
    total = len(tasks)
    pct = round(counts["done"] / total * 100)

    lines = [
        f"Team summary across {plural(len(report_ids), 'member')}:",
        "",
        f"Total tasks: {total}",
        f"✓ Done: {counts['done']} ({pct}%)",
        f"→ In progress: {counts['in_progress']}",
        f"○ To do: {counts['todo']}",
        f"⏳ Pending review: {counts['pending_review']}",
        f"⚠ Blocked: {counts['blocked']}",
        f"🔴 Overdue: {overdue}" if overdue else "No overdue tasks.",
    ]

    items = []
    if counts["blocked"]:
        items.append(
            ResultItem(label=f"{counts['blocked']} blocked", detail="View blocked tasks", href="/tasks?status=blocked")
        )
    if overdue:
        items.append(ResultItem(label=f"{overdue} overdue", detail="View overdue tasks", href="/tasks?status=overdue"))

    return ToolResult(text="\n".join(lines), items=items)


def run_playbook(store: StateStore, user_id: str, params: dict) -> ToolResult:
    """Registry entry only; the chat engine intercepts playbooks before tools run."""
    playbook_id = param(params, "playbook_id")
    playbook = playbooks.get_playbook(playbook_id)
    if not playbook:
        return ToolResult(text=f'Unknown playbook "{playbook_id}".')
    return ToolResult(text=f'Starting "{playbook.name}".')
