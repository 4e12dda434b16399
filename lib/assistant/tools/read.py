"""
Read-only assistant tools.

Every handler takes (store, user_id, params) and returns a ToolResult whose
items are labelled deep links. Searches try a substring query first and
fall back to fuzzy ranking when that finds nothing.
"""

import logging

from lib import safe_sql
from lib.assistant import resolver
from lib.assistant.models import ResultItem, ToolResult
from lib.assistant.resolver import EntityKind
from lib.assistant.tools.common import (
    TASK_WITH_PROGRAMME,
    assigned_task_ids,
    format_date,
    get_report_ids,
    get_user_role,
    param,
    plural,
    task_detail,
    today_iso,
    week_start,
)
from lib.security.rbac import Role, has_role
from lib.state_store import StateStore

logger = logging.getLogger(__name__)

SEARCH_LIMIT = 10
MY_TASKS_LIMIT = 15
BLOCKERS_LIMIT = 15
FUZZY_SEARCH_THRESHOLD = 0.25


def _close_results(query: str, matches: list, kind: EntityKind) -> ToolResult:
    return ToolResult(
        text=f'No exact match for "{query}", but found {len(matches)} close '
        f"result{'' if len(matches) == 1 else 's'}:",
        items=[resolver.describe_match(kind, m) for m in matches],
    )


# ============================================================
# Searches
# ============================================================


def search_tasks(store: StateStore, user_id: str, params: dict) -> ToolResult:
    query = param(params, "query")
    status = param(params, "status")
    priority = param(params, "priority")

    clauses, values = [], []
    if query:
        clauses.append(f"({safe_sql.contains_ci('t.title')} OR {safe_sql.contains_ci('t.description')})")
        values += [query, query]
    if status:
        clauses.append("t.status = ?")
        values.append(status)
    if priority:
        clauses.append("t.priority = ?")
        values.append(priority)

    sql = TASK_WITH_PROGRAMME
    if clauses:
        sql += " WHERE " + " AND ".join(clauses)
    sql += " ORDER BY t.created_at DESC, t.id LIMIT ?"
    rows = store.query(sql, values + [SEARCH_LIMIT])

    if not rows and query:
        matches = resolver.search_tasks(
            store, query, threshold=FUZZY_SEARCH_THRESHOLD, limit=SEARCH_LIMIT
        )
        if matches:
            return _close_results(query, matches, EntityKind.TASK)
        return ToolResult(text=f'No tasks found matching "{query}".')

    if not rows:
        return ToolResult(text="No tasks found matching your search.")

    return ToolResult(
        text=f"Found {plural(len(rows), 'task')}:",
        items=[
            ResultItem(label=t["title"], detail=task_detail(t), href=f"/tasks/{t['id']}")
            for t in rows
        ],
    )


def search_programmes(store: StateStore, user_id: str, params: dict) -> ToolResult:
    query = param(params, "query")
    status = param(params, "status")

    clauses, values = [], []
    if query:
        clauses.append(f"({safe_sql.contains_ci('name')} OR {safe_sql.contains_ci('description')})")
        values += [query, query]
    if status:
        clauses.append("status = ?")
        values.append(status)

    rows = store.query(
        safe_sql.select(
            "programmes",
            "id, name, status, description",
            where=" AND ".join(clauses) or None,
            order_by="created_at DESC, id",
            suffix="LIMIT ?",
        ),
        values + [SEARCH_LIMIT],
    )

    if not rows and query:
        matches = resolver.search_programmes(
            store, query, threshold=FUZZY_SEARCH_THRESHOLD, limit=SEARCH_LIMIT
        )
        if matches:
            return _close_results(query, matches, EntityKind.PROGRAMME)
        return ToolResult(text=f'No programmes found matching "{query}".')

    if not rows:
        return ToolResult(text="No programmes found.")

    return ToolResult(
        text=f"Found {plural(len(rows), 'programme')}:",
        items=[
            ResultItem(label=p["name"], detail=p["status"], href=f"/programmes/{p['id']}")
            for p in rows
        ],
    )


def search_users(store: StateStore, user_id: str, params: dict) -> ToolResult:
    query = param(params, "query")
    role = param(params, "role")

    clauses, values = [], []
    if query:
        clauses.append(
            "("
            + " OR ".join(safe_sql.contains_ci(c) for c in ("full_name", "username", "email"))
            + ")"
        )
        values += [query] * 3
    if role:
        clauses.append("role = ?")
        values.append(role)

    rows = store.query(
        safe_sql.select(
            "profiles",
            "id, full_name, username, email, role",
            where=" AND ".join(clauses) or None,
            order_by="full_name, id",
            suffix="LIMIT ?",
        ),
        values + [SEARCH_LIMIT],
    )

    if not rows and query:
        matches = resolver.search_users(
            store, query, threshold=FUZZY_SEARCH_THRESHOLD, limit=SEARCH_LIMIT
        )
        if matches:
            return _close_results(query, matches, EntityKind.USER)
        return ToolResult(text=f'No team members found matching "{query}".')

    if not rows:
        return ToolResult(text="No team members found.")

    return ToolResult(
        text=f"Found {plural(len(rows), 'team member')}:",
        items=[
            ResultItem(
                label=resolver.user_label(p),
                detail=p["role"] + (f" · {p['email']}" if p.get("email") else ""),
                href="/team",
            )
            for p in rows
        ],
    )


# ============================================================
# My work
# ============================================================


def _my_tasks(store: StateStore, user_id: str, where: str, values: list, order: str) -> list[dict] | None:
    """Tasks assigned to *user_id* matching *where*; None when nothing is assigned at all."""
    task_ids = assigned_task_ids(store, [user_id])
    if not task_ids:
        return None
    sql = (
        f"{TASK_WITH_PROGRAMME} WHERE t.id IN ({safe_sql.in_placeholders(len(task_ids))})"
        + (f" AND {where}" if where else "")
        + f" ORDER BY {order} LIMIT ?"
    )
    return store.query(sql, task_ids + values + [MY_TASKS_LIMIT])


def get_my_overdue_tasks(store: StateStore, user_id: str, params: dict) -> ToolResult:
    rows = _my_tasks(
        store,
        user_id,
        "t.due_date IS NOT NULL AND t.due_date < ? AND t.status != 'done'",
        [today_iso()],
        "t.due_date, t.id",
    )
    if rows is None:
        return ToolResult(text="You have no assigned tasks.")
    if not rows:
        return ToolResult(text="No overdue tasks. You're on track.")
    return ToolResult(
        text=f"You have {plural(len(rows), 'overdue task')}:",
        items=[
            ResultItem(
                label=t["title"],
                detail=task_detail(t, include_status=False),
                href=f"/tasks/{t['id']}",
            )
            for t in rows
        ],
    )


def get_my_tasks(store: StateStore, user_id: str, params: dict) -> ToolResult:
    status = param(params, "status")
    rows = _my_tasks(
        store,
        user_id,
        "t.status = ?" if status else "",
        [status] if status else [],
        # undated tasks last
        "t.due_date IS NULL, t.due_date, t.id",
    )
    if rows is None:
        return ToolResult(text="You have no assigned tasks.")
    if not rows:
        return ToolResult(
            text=f'No tasks with status "{status}".' if status else "No tasks assigned to you."
        )
    suffix = f" ({status})" if status else ""
    return ToolResult(
        text=f"You have {plural(len(rows), 'task')}{suffix}:",
        items=[
            ResultItem(label=t["title"], detail=task_detail(t), href=f"/tasks/{t['id']}")
            for t in rows
        ],
    )


# ============================================================
# Team status
# ============================================================


def get_checkin_status(store: StateStore, user_id: str, params: dict) -> ToolResult:
    week = param(params, "week_start") or week_start()
    role = get_user_role(store, user_id)

    if not has_role(role, Role.MANAGER):
        own = store.query_one(
            safe_sql.select("checkins", "id, mood, submitted_at", where="user_id = ? AND week_start = ?"),
            [user_id, week],
        )
        if own:
            return ToolResult(
                text=f"You submitted your check-in for this week (mood: {own['mood']}).",
                items=[
                    ResultItem(
                        label="View your check-in",
                        detail=f"Submitted {format_date(own['submitted_at'])}",
                        href="/checkins",
                    )
                ],
            )
        return ToolResult(
            text="You haven't submitted your check-in for this week yet.",
            items=[
                ResultItem(
                    label="Submit check-in now",
                    detail="Weekly check-in",
                    href=f"/checkins/new?week={week}",
                )
            ],
        )

    report_ids = get_report_ids(store, user_id, role)
    if not report_ids:
        return ToolResult(text="No team members found.")

    marks = safe_sql.in_placeholders(len(report_ids))
    profiles = store.query(
        safe_sql.select(
            "profiles", "id, full_name, username", where=f"id IN ({marks})", order_by="full_name, id"
        ),
        report_ids,
    )
    checkins = store.query(
        safe_sql.select("checkins", "user_id, mood", where=f"week_start = ? AND user_id IN ({marks})"),
        [week] + report_ids,
    )
    mood_by_user = {c["user_id"]: c["mood"] for c in checkins}

    submitted: list[ResultItem] = []
    missed: list[ResultItem] = []
    for p in profiles:
        name = resolver.user_label(p)
        if p["id"] in mood_by_user:
            submitted.append(
                ResultItem(label=f"✓ {name}", detail=f"mood: {mood_by_user[p['id']] or '-'}", href="/checkins")
            )
        else:
            missed.append(ResultItem(label=f"✗ {name}", detail="Not submitted", href="/checkins"))

    return ToolResult(
        text=f"Week of {week}: {len(submitted)}/{len(report_ids)} submitted, {len(missed)} missed.",
        items=missed + submitted,
    )


def get_programme_health(store: StateStore, user_id: str, params: dict) -> ToolResult:
    name = param(params, "programme_name") or param(params, "query")
    if not name:
        return ToolResult(
            text="Which programme would you like a health summary for?",
            clarify_field="programme_name",
        )

    matches = resolver.search_programmes(store, name, best_only=True)
    if not matches:
        return ToolResult(text=f'No programme found matching "{name}".')

    prog = matches[0].item
    tasks = store.query(
        safe_sql.select("tasks", "id, title, status, due_date", where="programme_id = ?", order_by="due_date, id"),
        [prog["id"]],
    )
    if not tasks:
        return ToolResult(
            text=f"{prog['name']} ({prog['status']}) has no tasks yet.",
            items=[ResultItem(label=prog["name"], detail=prog["status"], href=f"/programmes/{prog['id']}")],
        )

    today = today_iso()
    total = len(tasks)
    done = sum(1 for t in tasks if t["status"] == "done")
    overdue = [t for t in tasks if t["due_date"] and t["due_date"] < today and t["status"] != "done"]
    blocked = sum(1 for t in tasks if t["status"] == "blocked")
    in_progress = sum(1 for t in tasks if t["status"] == "in_progress")
    pct = round(done / total * 100)

    items = [ResultItem(label=f"View {prog['name']}", detail=f"{total} tasks", href=f"/programmes/{prog['id']}")]
    items += [
        ResultItem(
            label=f"⚠ {t['title']}",
            detail=f"overdue · due {format_date(t['due_date'])}",
            href=f"/tasks/{t['id']}",
        )
        for t in overdue[:5]
    ]
    return ToolResult(
        text=(
            f"{prog['name']} ({prog['status']}): {done}/{total} tasks done ({pct}%). "
            f"{len(overdue)} overdue, {blocked} blocked, {in_progress} in progress."
        ),
        items=items,
    )


def get_blockers(store: StateStore, user_id: str, params: dict) -> ToolResult:
    programme_name = param(params, "programme_name")
    where, values = "t.status = 'blocked'", []
    if programme_name:
        matches = resolver.search_programmes(store, programme_name, best_only=True)
        if matches:
            where += " AND t.programme_id = ?"
            values.append(matches[0].item["id"])

    rows = store.query(
        f"{TASK_WITH_PROGRAMME} WHERE {where} ORDER BY t.due_date IS NULL, t.due_date, t.id LIMIT ?",
        values + [BLOCKERS_LIMIT],
    )
    if not rows:
        return ToolResult(text="No blocked tasks found.")
    return ToolResult(
        text=f"{plural(len(rows), 'blocked task')}:",
        items=[
            ResultItem(
                label=t["title"],
                detail=task_detail(t, include_status=False),
                href=f"/tasks/{t['id']}",
            )
            for t in rows
        ],
    )


# ============================================================
# Navigation and help
# ============================================================

NAV_MAP: dict[str, ResultItem] = {
    "dashboard": ResultItem(label="Dashboard", detail="Overview", href="/"),
    "tasks": ResultItem(label="Tasks", detail="View and manage all tasks", href="/tasks"),
    "programmes": ResultItem(label="Programmes", detail="View and manage programmes", href="/programmes"),
    "team": ResultItem(label="Team", detail="Team directory and roles", href="/team"),
    "checkins": ResultItem(label="Check-ins", detail="Weekly check-ins", href="/checkins"),
    "check-ins": ResultItem(label="Check-ins", detail="Weekly check-ins", href="/checkins"),
    "messaging": ResultItem(label="Messaging", detail="Direct and group messages", href="/messaging"),
    "calendar": ResultItem(label="Calendar", detail="Events and meetings", href="/calendar"),
    "drive": ResultItem(label="Drive", detail="Shared files", href="/drive"),
    "analytics": ResultItem(label="Analytics", detail="Reports and metrics", href="/analytics"),
    "settings": ResultItem(label="Settings", detail="Your account settings", href="/settings"),
    "mail": ResultItem(label="Shared Mail", detail="Shared email inbox", href="/shared-mail"),
    "shared mail": ResultItem(label="Shared Mail", detail="Shared email inbox", href="/shared-mail"),
    "activity": ResultItem(label="Activity", detail="Activity log", href="/activity"),
}


def navigate(store: StateStore, user_id: str, params: dict) -> ToolResult:
    destination = param(params, "destination").lower()
    for key, item in NAV_MAP.items():
        if key in destination:
            return ToolResult(text="Here's where to go:", items=[item])
    unique = list({item.href: item for item in NAV_MAP.values()}.values())
    return ToolResult(text="Here are the main sections:", items=unique[:8])


HELP_TEXT = (
    "Here's what I can help with:\n"
    "• Create or search tasks and programmes\n"
    "• Check overdue items and blockers\n"
    "• Review team check-in status\n"
    "• Update task status or programme fields\n"
    "• Run playbooks (weekly review, close/start programme)\n"
    "• Navigate to any section\n\n"
    'Try: "Create a task", "Team summary", or "Weekly review".'
)

# (keywords, text, items) checked in order against the topic
_TOPICS: list[tuple[tuple[str, ...], str, list[ResultItem]]] = [
    (
        ("cancelled",),
        "Nothing to cancel. What can I help with?",
        [],
    ),
    (
        ("create task", "new task"),
        'To create a task, just say "Create a task to [description]". Or go to Tasks → New Task.',
        [ResultItem(label="Go to Tasks", detail="Create a new task", href="/tasks/new")],
    ),
    (
        ("create programme", "new programme"),
        "To create a programme, go to Programmes and click 'New Programme'. Requires Manager role or above.",
        [ResultItem(label="Go to Programmes", detail="Create a new programme", href="/programmes/new")],
    ),
    (
        ("calendar", "event", "meeting", "schedule"),
        "You can manage events in the Calendar section. Go to Calendar to create, view, or edit events and meetings.",
        [ResultItem(label="Go to Calendar", detail="View & create events", href="/calendar")],
    ),
    (
        ("message", "chat", "inbox"),
        "You can send and receive messages in the Messages section.",
        [ResultItem(label="Go to Messages", detail="View inbox & send messages", href="/messaging")],
    ),
    (
        ("report", "analytics", "dashboard"),
        "You can view reports and analytics from the Dashboard or Reports section.",
        [
            ResultItem(label="Go to Dashboard", detail="Overview & analytics", href="/"),
            ResultItem(label="Go to Reports", detail="Detailed reports", href="/analytics"),
        ],
    ),
    (
        ("check-in", "checkin", "standup"),
        "Check-ins let team members share weekly updates. Go to Check-ins to submit yours or view your team's.",
        [ResultItem(label="Go to Check-ins", detail="Submit or view check-ins", href="/checkins")],
    ),
    (
        ("setting", "profile", "account", "password"),
        "You can manage your profile and account settings from the Settings page.",
        [ResultItem(label="Go to Settings", detail="Profile & account", href="/settings")],
    ),
    (
        ("notification", "alert"),
        "Notifications show updates on tasks, programmes, and messages. Check the bell icon in the top bar or go to Notifications.",
        [ResultItem(label="Go to Notifications", detail="View all notifications", href="/notifications")],
    ),
    (
        ("help", "what can you do", "how do you work"),
        HELP_TEXT,
        [],
    ),
]


def general_answer(store: StateStore, user_id: str, params: dict) -> ToolResult:
    raw_topic = param(params, "topic")
    topic = raw_topic.lower()
    for keywords, text, items in _TOPICS:
        if any(k in topic for k in keywords):
            return ToolResult(text=text, items=list(items))
    return ToolResult(
        text=(
            f'I\'m not sure how to help with "{raw_topic or "that"}" specifically, but I can create '
            "tasks, search programmes, check overdue items, run weekly reviews, and more. "
            'Try asking something like "Create a task" or "Team summary".'
        ),
        items=[ResultItem(label="Go to Dashboard", detail="Main overview", href="/")],
    )
