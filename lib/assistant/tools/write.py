"""
Write-preview tools.

Nothing here mutates the domain tables. Each tool re-validates its fields,
resolves the entities it references and returns an ActionPreview whose
payload the confirm endpoint executes later. References that cannot be
pinned down come back as candidates with ``clarify_field`` set.
"""

import logging

from lib import safe_sql
from lib.assistant import resolver
from lib.assistant.fields import (
    GENERIC_PROGRAMME_NAMES,
    GENERIC_TITLES,
    TASK_STATUS_ALIASES,
    normalize_date_value,
)
from lib.assistant.models import ActionField, ActionPreview, ResultItem, ToolResult
from lib.assistant.preprocessor import strip_noise_words
from lib.assistant.resolver import EntityKind, MatchType, ResolveStatus
from lib.assistant.tools.common import (
    PRIORITIES,
    PROGRAMME_STATUS_LABELS,
    PROGRAMME_STATUSES,
    STATUS_LABELS,
    TASK_STATUSES,
    format_date,
    get_user_role,
    param,
)
from lib.security.rbac import Role, has_role
from lib.state_store import StateStore

logger = logging.getLogger(__name__)

# Below this a fuzzy best match is only offered as a suggestion
CONFIDENT_FUZZY_SCORE = 0.7
# Exact matches this close to the best one are treated as ties
EXACT_TIE_MARGIN = 0.15
SEARCH_THRESHOLD = 0.3

UPDATABLE_PROGRAMME_FIELDS = ("name", "description", "start_date", "end_date")
FIELD_DISPLAY = {
    "name": "Name",
    "description": "Description",
    "start_date": "Start date",
    "end_date": "End date",
}


def _manager_gate(store: StateStore, user_id: str, doing: str) -> ToolResult | None:
    if has_role(get_user_role(store, user_id), Role.MANAGER):
        return None
    return ToolResult(
        text=f"You don't have permission to {doing}. Only managers and above can do this."
    )


def _resolve_reference(
    store: StateStore, kind: EntityKind, query: str, field: str
) -> tuple[resolver.ResolveResult, ToolResult | None]:
    """Resolve a named reference; the second element is the reply to send when it fails."""
    result = resolver.resolve_entity(store, kind, query)
    if result.status == ResolveStatus.RESOLVED:
        return result, None

    noun = "team member" if kind == EntityKind.USER else kind.value
    if result.status == ResolveStatus.AMBIGUOUS:
        if kind == EntityKind.USER:
            text = f'Multiple matches for "{query}". Which one? Or say "skip".'
        else:
            text = 'Did you mean one of these? Type the exact name, or say "skip".'
        reply = ToolResult(
            text=text,
            items=result.suggestions,
            clarify_field=field,
        )
    else:
        reply = ToolResult(
            text=f'No {noun} found matching "{query}". Try a different name, or say "skip".',
            clarify_field=field,
        )
    return result, reply


# ============================================================
# Tasks
# ============================================================


def create_task(store: StateStore, user_id: str, params: dict) -> ToolResult:
    title = param(params, "title")
    if title.lower() in GENERIC_TITLES:
        return ToolResult(
            text='What should the task be called? For example: "Create a task called Review Q1 budget"',
            clarify_field="title",
        )

    description = param(params, "description")
    priority = param(params, "priority").lower()
    if priority not in PRIORITIES:
        priority = "medium"
    due_date = param(params, "due_date")
    if due_date:
        due_date = normalize_date_value(due_date)
    programme_name = param(params, "programme_name")
    assignee_name = param(params, "assignee_name")

    programme = None
    if programme_name:
        programme, reply = _resolve_reference(store, EntityKind.PROGRAMME, programme_name, "programme_name")
        if reply:
            return reply

    assignee = None
    if assignee_name:
        assignee, reply = _resolve_reference(store, EntityKind.USER, assignee_name, "assignee_name")
        if reply:
            return reply

    fields = [
        ActionField("Title", title),
        ActionField("Priority", priority),
        ActionField("Status", "todo"),
    ]
    if due_date:
        fields.append(ActionField("Due", due_date))
    if programme:
        fields.append(ActionField("Programme", programme.resolved_name))
    if assignee:
        fields.append(ActionField("Assignee", assignee.resolved_name))

    return ToolResult(
        text="Here's the task I'll create:",
        action=ActionPreview(
            action_type="create_task",
            title=f"Create: {title}",
            fields=fields,
            payload={
                "title": title,
                "description": description or None,
                "status": "todo",
                "priority": priority,
                "due_date": due_date or None,
                "programme_id": programme.resolved_id if programme else None,
                "assignee_id": assignee.resolved_id if assignee else user_id,
                "created_by": user_id,
                "evidence_required": False,
            },
        ),
    )


def update_task_status(store: StateStore, user_id: str, params: dict) -> ToolResult:
    raw_title = param(params, "task_title")
    new_status = param(params, "new_status")
    new_status = TASK_STATUS_ALIASES.get(new_status.lower(), new_status)

    if not raw_title:
        return ToolResult(
            text="Which task do you want to update? Give me the task name.",
            clarify_field="task_title",
        )
    if not new_status:
        return ToolResult(
            text="What status should I set? Options: todo, in_progress, pending_review, done, blocked.",
            clarify_field="new_status",
        )
    if new_status not in TASK_STATUSES:
        return ToolResult(
            text=f'"{new_status}" isn\'t a valid status. Options: {", ".join(TASK_STATUSES)}.',
            clarify_field="new_status",
        )

    task_title = strip_noise_words(raw_title)
    if not task_title:
        return ToolResult(
            text="I couldn't figure out which task you mean. What's the task name?",
            clarify_field="task_title",
        )

    matches = resolver.search_tasks(store, task_title, threshold=SEARCH_THRESHOLD, limit=5)
    if not matches:
        return ToolResult(
            text=f'No task found matching "{task_title}". Check the name and try again.',
            clarify_field="task_title",
        )

    best = matches[0]
    if best.match_type != MatchType.EXACT and best.score < CONFIDENT_FUZZY_SCORE and len(matches) > 1:
        return ToolResult(
            text=f'I couldn\'t find an exact match for "{task_title}". Did you mean one of these?',
            items=[resolver.describe_match(EntityKind.TASK, m) for m in matches],
            clarify_field="task_title",
        )

    if len(matches) > 1 and best.match_type == MatchType.EXACT and matches[1].match_type == MatchType.EXACT:
        close = [m for m in matches if m.score > best.score - EXACT_TIE_MARGIN]
        if len(close) > 1:
            return ToolResult(
                text=f'Found {len(close)} tasks matching "{task_title}". Which one?',
                items=[
                    ResultItem(label=m.item["title"], detail=m.item["status"], href=f"/tasks/{m.item['id']}")
                    for m in close
                ],
                clarify_field="task_title",
            )

    task = store.query_one(
        "SELECT t.id, t.title, t.status, p.name AS programme_name "
        "FROM tasks t LEFT JOIN programmes p ON p.id = t.programme_id WHERE t.id = ?",
        [best.item["id"]],
    )
    if not task:
        return ToolResult(text="Task not found.")

    fields = [
        ActionField("Task", task["title"]),
        ActionField("From", STATUS_LABELS.get(task["status"], task["status"])),
        ActionField("To", STATUS_LABELS[new_status]),
    ]
    if task["programme_name"]:
        fields.append(ActionField("Programme", task["programme_name"]))

    return ToolResult(
        text=f'Update status for "{task["title"]}":',
        action=ActionPreview(
            action_type="update_task_status",
            title=f"{task['title']} → {STATUS_LABELS[new_status]}",
            fields=fields,
            payload={"task_id": task["id"], "new_status": new_status},
        ),
    )


# ============================================================
# Programmes (manager and above)
# ============================================================


def create_programme(store: StateStore, user_id: str, params: dict) -> ToolResult:
    denied = _manager_gate(store, user_id, "create programmes")
    if denied:
        return denied

    name = param(params, "name")
    if name.lower() in GENERIC_PROGRAMME_NAMES:
        return ToolResult(text="What should the programme be called?", clarify_field="name")

    description = param(params, "description")
    status = param(params, "status").lower()
    if status not in PROGRAMME_STATUSES:
        status = "draft"
    start_date = normalize_date_value(param(params, "start_date")) if param(params, "start_date") else ""
    end_date = normalize_date_value(param(params, "end_date")) if param(params, "end_date") else ""

    fields = [ActionField("Name", name), ActionField("Status", status)]
    if description:
        fields.append(ActionField("Description", description))
    if start_date:
        fields.append(ActionField("Start date", format_date(start_date)))
    if end_date:
        fields.append(ActionField("End date", format_date(end_date)))

    return ToolResult(
        text="Here's the programme I'll create:",
        action=ActionPreview(
            action_type="create_programme",
            title=f"Create: {name}",
            fields=fields,
            payload={
                "name": name,
                "description": description or None,
                "status": status,
                "start_date": start_date or None,
                "end_date": end_date or None,
                "created_by": user_id,
            },
        ),
    )


def _find_programme(store: StateStore, query: str) -> tuple[dict | None, ToolResult | None]:
    """Best programme match for a write, or the clarification to send instead."""
    matches = resolver.search_programmes(store, query, threshold=SEARCH_THRESHOLD, limit=5)
    if not matches:
        return None, ToolResult(
            text=f'No programme found matching "{query}".', clarify_field="programme_name"
        )
    best = matches[0]
    if best.match_type != MatchType.EXACT and best.score < CONFIDENT_FUZZY_SCORE and len(matches) > 1:
        return None, ToolResult(
            text=f'No exact match for "{query}". Did you mean one of these?',
            items=[resolver.describe_match(EntityKind.PROGRAMME, m) for m in matches],
            clarify_field="programme_name",
        )
    return best.item, None


def update_programme_status(store: StateStore, user_id: str, params: dict) -> ToolResult:
    denied = _manager_gate(store, user_id, "update programme status")
    if denied:
        return denied

    programme_name = strip_noise_words(param(params, "programme_name"))
    new_status = param(params, "new_status").lower()

    if not programme_name:
        return ToolResult(text="Which programme do you want to update?", clarify_field="programme_name")
    if not new_status:
        return ToolResult(
            text="What status? Options: draft, active, paused, completed, archived.",
            clarify_field="programme_status",
        )
    if new_status not in PROGRAMME_STATUSES:
        return ToolResult(
            text=f'"{new_status}" isn\'t a valid programme status. Options: {", ".join(PROGRAMME_STATUSES)}.',
            clarify_field="programme_status",
        )

    programme, reply = _find_programme(store, programme_name)
    if reply:
        return reply

    if programme["status"] == new_status:
        return ToolResult(
            text=f'"{programme["name"]}" is already {new_status}.',
            items=[ResultItem(label=programme["name"], detail=new_status, href=f"/programmes/{programme['id']}")],
        )

    old_label = PROGRAMME_STATUS_LABELS.get(programme["status"], programme["status"])
    new_label = PROGRAMME_STATUS_LABELS[new_status]
    return ToolResult(
        text=f'Update status for "{programme["name"]}":',
        action=ActionPreview(
            action_type="update_programme_status",
            title=f"{programme['name']} → {new_label}",
            fields=[
                ActionField("Programme", programme["name"]),
                ActionField("From", old_label),
                ActionField("To", new_label),
            ],
            payload={
                "programme_id": programme["id"],
                "new_status": new_status,
                "old_status": programme["status"],
                "programme_name": programme["name"],
            },
        ),
    )


def update_programme_fields(store: StateStore, user_id: str, params: dict) -> ToolResult:
    denied = _manager_gate(store, user_id, "update programmes")
    if denied:
        return denied

    programme_name = strip_noise_words(param(params, "programme_name"))
    update_field = param(params, "update_field").lower()
    update_value = param(params, "update_value")

    if not programme_name:
        return ToolResult(text="Which programme do you want to update?", clarify_field="programme_name")
    if update_field not in UPDATABLE_PROGRAMME_FIELDS:
        return ToolResult(
            text=f"Which field do you want to change? Options: {', '.join(UPDATABLE_PROGRAMME_FIELDS)}.",
            clarify_field="update_field",
        )
    display = FIELD_DISPLAY[update_field]
    if not update_value:
        return ToolResult(text=f"What should the new {display.lower()} be?", clarify_field="update_value")

    if update_field in ("start_date", "end_date"):
        update_value = normalize_date_value(update_value)

    programme, reply = _find_programme(store, programme_name)
    if reply:
        return reply

    current = store.query_one(
        safe_sql.select("programmes", "id, name, description, start_date, end_date", where="id = ?"),
        [programme["id"]],
    )
    if not current:
        return ToolResult(text="Programme not found.")

    current_value = current[update_field] or "not set"
    if current_value == update_value:
        return ToolResult(
            text=f'"{current["name"]}" {display.lower()} is already "{update_value}".',
            items=[ResultItem(label=current["name"], detail=current_value, href=f"/programmes/{current['id']}")],
        )

    return ToolResult(
        text=f'Update {display.lower()} for "{current["name"]}":',
        action=ActionPreview(
            action_type="update_programme_fields",
            title=f"Update {current['name']}",
            fields=[
                ActionField("Programme", current["name"]),
                ActionField("Field", display),
                ActionField("From", current_value),
                ActionField("To", update_value),
            ],
            payload={
                "programme_id": current["id"],
                "programme_name": current["name"],
                "update_field": update_field,
                "update_value": update_value,
                "old_value": current[update_field],
            },
        ),
    )
