"""
Confirm Router - executes previewed assistant actions.

The only place the assistant writes domain records. Manages:
- Handler registration and dispatch by action type
- Payload re-validation (nothing from the preview is trusted)
- After/error hooks: telemetry, pending resolution, notifications
"""

import logging
import sqlite3
from collections.abc import Callable
from dataclasses import dataclass, field

from lib import safe_sql
from lib.assistant import notifications, sanitize
from lib.assistant.audit import SOURCE_ASSISTANT, write_audit
from lib.assistant.notifications import Notification
from lib.assistant.pending import PendingStore
from lib.assistant.telemetry import Telemetry
from lib.assistant.tools.common import STATUS_LABELS, get_user_role
from lib.security.rbac import Role, has_role
from lib.state_store import StateStore, new_id, now_iso

logger = logging.getLogger(__name__)

GENERIC_FAILURE = "Something went wrong executing the action."

PROGRAMME_FIELD_LABELS = {
    "name": "name",
    "description": "description",
    "start_date": "start date",
    "end_date": "end date",
}


class ConfirmError(Exception):
    """A payload the handler refuses; carries the HTTP status to answer with."""

    def __init__(self, status_code: int, message: str):
        super().__init__(message)
        self.status_code = status_code
        self.message = message


@dataclass
class ConfirmResult:
    """Result of executing a confirmed action."""

    success: bool
    message: str | None = None
    href: str | None = None
    error: str | None = None
    status_code: int = 200
    notifications: list[Notification] = field(default_factory=list)

    def to_dict(self) -> dict:
        if not self.success:
            return {"error": self.error}
        return {"success": True, "message": self.message, "href": self.href}


ConfirmHandler = Callable[[StateStore, str, dict], ConfirmResult]
# hook(user_id, action_type, payload, result)
ConfirmHook = Callable[[str, str, dict, ConfirmResult], None]


class ConfirmRouter:
    """Routes confirmed actions to registered handlers."""

    def __init__(self, store: StateStore):
        self.store = store
        self.handlers: dict[str, ConfirmHandler] = {}
        self.after_dispatch_hooks: list[ConfirmHook] = []
        self.on_dispatch_error_hooks: list[ConfirmHook] = []

    def register(self, action_type: str, handler: ConfirmHandler):
        self.handlers[action_type] = handler
        logger.debug("Registered confirm handler for action type: %s", action_type)

    def register_after_dispatch(self, hook: ConfirmHook):
        self.after_dispatch_hooks.append(hook)

    def register_on_error(self, hook: ConfirmHook):
        self.on_dispatch_error_hooks.append(hook)

    def _run_hooks(self, hooks: list[ConfirmHook], user_id: str, action_type: str, payload: dict, result: ConfirmResult):
        for hook in hooks:
            try:
                hook(user_id, action_type, payload, result)
            except (sqlite3.Error, ValueError, OSError) as e:
                logger.error("Confirm hook %s failed: %s", getattr(hook, "__name__", hook), e)

    def dispatch(self, user_id: str, action_type: str | None, payload: dict | None) -> ConfirmResult:
        if not action_type or not isinstance(payload, dict):
            return ConfirmResult(success=False, error="Missing action_type or payload", status_code=400)

        handler = self.handlers.get(action_type)
        if not handler:
            result = ConfirmResult(success=False, error=f"Unknown action: {action_type}", status_code=400)
            self._run_hooks(self.on_dispatch_error_hooks, user_id, action_type, payload, result)
            return result

        try:
            result = handler(self.store, user_id, payload)
        except ConfirmError as e:
            result = ConfirmResult(success=False, error=e.message, status_code=e.status_code)
        except (sqlite3.Error, ValueError, KeyError, OSError) as e:
            logger.error("Confirm handler %s failed: %s", action_type, e, exc_info=True)
            result = ConfirmResult(success=False, error=GENERIC_FAILURE, status_code=500)

        hooks = self.after_dispatch_hooks if result.success else self.on_dispatch_error_hooks
        self._run_hooks(hooks, user_id, action_type, payload, result)

        logger.info(
            "Action confirmed: %s, success=%s, status=%s", action_type, result.success, result.status_code
        )
        return result


def _require_manager(store: StateStore, user_id: str) -> None:
    if not has_role(get_user_role(store, user_id), Role.MANAGER):
        raise ConfirmError(403, "Permission denied. Manager+ required.")


# ============================================================
# Handlers
# ============================================================


def create_task(store: StateStore, user_id: str, payload: dict) -> ConfirmResult:
    title = sanitize.sanitize_text(payload.get("title"), sanitize.MAX_TITLE_LENGTH)
    if not title:
        raise ConfirmError(400, "Task title is required")

    description = sanitize.sanitize_text(payload.get("description"), sanitize.MAX_DESCRIPTION_LENGTH) or None
    assignee_id = sanitize.parse_uuid(payload.get("assignee_id")) or user_id
    programme_id = sanitize.parse_uuid(payload.get("programme_id"))
    status = sanitize.validate_enum(payload.get("status"), sanitize.VALID_TASK_STATUSES, "todo")
    priority = sanitize.validate_enum(payload.get("priority"), sanitize.VALID_PRIORITIES, "medium")
    due_date = payload.get("due_date") if sanitize.is_valid_iso_date(payload.get("due_date")) else None
    evidence_required = bool(payload.get("evidence_required"))

    if programme_id and not store.get("programmes", programme_id):
        raise ConfirmError(404, "Programme not found")

    task_id = new_id()
    with store.transaction() as conn:
        store.insert(
            "tasks",
            {
                "id": task_id,
                "title": title,
                "description": description,
                "status": status,
                "priority": priority,
                "due_date": due_date,
                "programme_id": programme_id,
                "assignee_id": assignee_id,
                "created_by": user_id,
                "evidence_required": int(evidence_required),
            },
            conn=conn,
        )
        store.insert(
            "task_assignees",
            {"id": new_id(), "task_id": task_id, "user_id": assignee_id, "assigned_by": user_id},
            conn=conn,
        )
        write_audit(
            store,
            user_id,
            "task_created",
            "task",
            task_id,
            {
                "source": SOURCE_ASSISTANT,
                "title": title,
                "assignee_count": 1,
                "evidence_required": evidence_required,
            },
            conn=conn,
        )

    pending_notes = []
    if assignee_id != user_id:
        pending_notes.append(notifications.task_assigned(task_id, title, assignee_id, user_id))
    return ConfirmResult(
        success=True,
        message=f'Task "{title}" created.',
        href=f"/tasks/{task_id}",
        notifications=pending_notes,
    )


def update_task_status(store: StateStore, user_id: str, payload: dict) -> ConfirmResult:
    task_id = sanitize.parse_uuid(payload.get("task_id"))
    if not task_id:
        raise ConfirmError(400, "Valid task_id is required")
    new_status = sanitize.validate_enum(payload.get("new_status"), sanitize.VALID_TASK_STATUSES)
    if not new_status:
        raise ConfirmError(400, f"Invalid status. Allowed: {', '.join(sanitize.VALID_TASK_STATUSES)}")

    task = store.get("tasks", task_id)
    if not task:
        raise ConfirmError(404, "Task not found")

    with store.transaction() as conn:
        conn.execute(safe_sql.update("tasks", ["status", "updated_at"]), [new_status, now_iso(), task_id])
        write_audit(
            store,
            user_id,
            "task_status_updated",
            "task",
            task_id,
            {
                "source": SOURCE_ASSISTANT,
                "title": task["title"],
                "from_status": task["status"],
                "to_status": new_status,
            },
            conn=conn,
        )

    assignees = store.query(
        safe_sql.select("task_assignees", "user_id", where="task_id = ? AND user_id != ?"),
        [task_id, user_id],
    )
    label = STATUS_LABELS[new_status]
    return ConfirmResult(
        success=True,
        message=f'"{task["title"]}" updated to {new_status}.',
        href=f"/tasks/{task_id}",
        notifications=[
            notifications.task_status_changed(task_id, task["title"], label, new_status, a["user_id"], user_id)
            for a in assignees
        ],
    )


def create_programme(store: StateStore, user_id: str, payload: dict) -> ConfirmResult:
    _require_manager(store, user_id)
    name = sanitize.sanitize_text(payload.get("name"), sanitize.MAX_TITLE_LENGTH)
    if not name:
        raise ConfirmError(400, "Programme name is required")

    description = sanitize.sanitize_text(payload.get("description"), sanitize.MAX_DESCRIPTION_LENGTH) or None
    status = sanitize.validate_enum(payload.get("status"), sanitize.VALID_PROGRAMME_STATUSES, "draft")
    start_date = payload.get("start_date") if sanitize.is_valid_iso_date(payload.get("start_date")) else None
    end_date = payload.get("end_date") if sanitize.is_valid_iso_date(payload.get("end_date")) else None

    programme_id = new_id()
    with store.transaction() as conn:
        store.insert(
            "programmes",
            {
                "id": programme_id,
                "name": name,
                "description": description,
                "status": status,
                "start_date": start_date,
                "end_date": end_date,
                "created_by": user_id,
            },
            conn=conn,
        )
        write_audit(
            store,
            user_id,
            "programme_created",
            "programme",
            programme_id,
            {"source": SOURCE_ASSISTANT, "name": name, "status": status},
            conn=conn,
        )
    return ConfirmResult(
        success=True, message=f'Programme "{name}" created.', href=f"/programmes/{programme_id}"
    )


def _programme_or_404(store: StateStore, payload: dict) -> dict:
    programme_id = sanitize.parse_uuid(payload.get("programme_id"))
    if not programme_id:
        raise ConfirmError(400, "Valid programme_id is required")
    programme = store.get("programmes", programme_id)
    if not programme:
        raise ConfirmError(404, "Programme not found")
    return programme


def update_programme_status(store: StateStore, user_id: str, payload: dict) -> ConfirmResult:
    _require_manager(store, user_id)
    if not sanitize.parse_uuid(payload.get("programme_id")):
        raise ConfirmError(400, "Valid programme_id is required")
    new_status = sanitize.validate_enum(payload.get("new_status"), sanitize.VALID_PROGRAMME_STATUSES)
    if not new_status:
        raise ConfirmError(400, f"Invalid status. Allowed: {', '.join(sanitize.VALID_PROGRAMME_STATUSES)}")
    programme = _programme_or_404(store, payload)

    with store.transaction() as conn:
        conn.execute(
            safe_sql.update("programmes", ["status", "updated_at"]), [new_status, now_iso(), programme["id"]]
        )
        write_audit(
            store,
            user_id,
            "programme_status_updated",
            "programme",
            programme["id"],
            {
                "source": SOURCE_ASSISTANT,
                "name": programme["name"],
                "from_status": programme["status"],
                "to_status": new_status,
            },
            conn=conn,
        )
    return ConfirmResult(
        success=True,
        message=f'"{programme["name"]}" updated to {new_status}.',
        href=f"/programmes/{programme['id']}",
    )


def update_programme_fields(store: StateStore, user_id: str, payload: dict) -> ConfirmResult:
    _require_manager(store, user_id)
    if not sanitize.parse_uuid(payload.get("programme_id")):
        raise ConfirmError(400, "Valid programme_id is required")
    update_field = sanitize.validate_enum(payload.get("update_field"), sanitize.VALID_PROGRAMME_FIELDS)
    if not update_field:
        raise ConfirmError(400, f"Invalid field. Allowed: {', '.join(sanitize.VALID_PROGRAMME_FIELDS)}")

    raw_value = payload.get("update_value")
    if update_field in ("start_date", "end_date"):
        if not sanitize.is_valid_iso_date(raw_value):
            raise ConfirmError(400, "Invalid date format. Use YYYY-MM-DD.")
        value = raw_value
    elif update_field == "name":
        value = sanitize.sanitize_text(raw_value, sanitize.MAX_TITLE_LENGTH)
    else:
        value = sanitize.sanitize_text(raw_value, sanitize.MAX_DESCRIPTION_LENGTH)
    if not value:
        raise ConfirmError(400, "update_value is required")

    if update_field == "name":
        duplicate = store.query_one(
            safe_sql.select("programmes", "id", where="lower(name) = lower(?) AND id != ?", suffix="LIMIT 1"),
            [value, payload["programme_id"]],
        )
        if duplicate:
            raise ConfirmError(409, f'A programme named "{value}" already exists.')

    programme = _programme_or_404(store, payload)
    with store.transaction() as conn:
        conn.execute(
            safe_sql.update("programmes", [update_field, "updated_at"]), [value, now_iso(), programme["id"]]
        )
        write_audit(
            store,
            user_id,
            "programme_field_updated",
            "programme",
            programme["id"],
            {
                "source": SOURCE_ASSISTANT,
                "name": programme["name"],
                "field": update_field,
                "from": programme[update_field],
                "to": value,
            },
            conn=conn,
        )
    return ConfirmResult(
        success=True,
        message=f'"{programme["name"]}" {PROGRAMME_FIELD_LABELS[update_field]} updated to "{value}".',
        href=f"/programmes/{programme['id']}",
    )


HANDLERS: dict[str, ConfirmHandler] = {
    "create_task": create_task,
    "update_task_status": update_task_status,
    "create_programme": create_programme,
    "update_programme_status": update_programme_status,
    "update_programme_fields": update_programme_fields,
}


def build_confirm_router(store: StateStore, telemetry: Telemetry, pending: PendingStore) -> ConfirmRouter:
    """Router with every handler plus the standard success and failure hooks."""
    router = ConfirmRouter(store)
    for action_type, handler in HANDLERS.items():
        router.register(action_type, handler)

    def record_success(user_id: str, action_type: str, payload: dict, result: ConfirmResult):
        telemetry.action_confirmed(user_id, action_type)
        pending.resolve_active(user_id)

    def dispatch_notifications(user_id: str, action_type: str, payload: dict, result: ConfirmResult):
        notifications.send(store, result.notifications)

    def record_failure(user_id: str, action_type: str, payload: dict, result: ConfirmResult):
        telemetry.action_failed(user_id, action_type, result.error or "")

    router.register_after_dispatch(record_success)
    router.register_after_dispatch(dispatch_notifications)
    router.register_on_error(record_failure)
    return router
