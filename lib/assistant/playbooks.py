"""
Playbook definitions.

A playbook is an ordered list of steps. ``check`` steps only present,
``action`` steps present a pending mutation and carry the ``execute``
that performs it, ``summary`` steps close the run. Steps read earlier
results from ``state.context`` and publish their own through the
presentation's ``context`` patch.
"""

import logging
from collections import Counter
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

from lib import safe_sql
from lib.assistant import resolver
from lib.assistant.audit import SOURCE_PLAYBOOK, write_audit
from lib.assistant.models import ActionField, ResultItem
from lib.assistant.tools.common import (
    PROGRAMME_STATUS_LABELS,
    STATUS_LABELS,
    format_date,
    get_report_ids,
    get_user_role,
    plural,
    today_iso,
    week_start,
)
from lib.security.rbac import Role
from lib.state_store import StateStore, new_id, now_iso

logger = logging.getLogger(__name__)


class StepType(StrEnum):
    CHECK = "check"
    ACTION = "action"
    SUMMARY = "summary"


@dataclass
class StepPresentation:
    text: str
    items: list[ResultItem] = field(default_factory=list)
    fields: list[ActionField] = field(default_factory=list)
    # Merged into PlaybookState.context before the next step runs
    context: dict[str, Any] = field(default_factory=dict)
    # Nothing to do here; the runner skips straight to the next step
    auto_skip: bool = False


@dataclass
class StepResult:
    success: bool
    message: str
    href: str | None = None
    context: dict[str, Any] = field(default_factory=dict)


@dataclass
class PlaybookState:
    playbook_id: str
    current_step: int = 0
    target_id: str | None = None
    target_name: str | None = None
    completed: list[int] = field(default_factory=list)
    skipped: list[int] = field(default_factory=list)
    context: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "playbook_id": self.playbook_id,
            "current_step": self.current_step,
            "target_id": self.target_id,
            "target_name": self.target_name,
            "completed": list(self.completed),
            "skipped": list(self.skipped),
            "context": dict(self.context),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "PlaybookState":
        return cls(
            playbook_id=data.get("playbook_id", ""),
            current_step=int(data.get("current_step") or 0),
            target_id=data.get("target_id"),
            target_name=data.get("target_name"),
            completed=list(data.get("completed") or []),
            skipped=list(data.get("skipped") or []),
            context=dict(data.get("context") or {}),
        )


Presenter = Callable[[StateStore, str, PlaybookState], StepPresentation]
Executor = Callable[[StateStore, str, PlaybookState], StepResult]


@dataclass
class Step:
    id: str
    title: str
    type: StepType
    present: Presenter
    execute: Executor | None = None

    def __post_init__(self):
        if self.type == StepType.ACTION and self.execute is None:
            raise ValueError(f"Action step {self.id!r} needs an execute function")
        if self.type != StepType.ACTION and self.execute is not None:
            raise ValueError(f"Only action steps may execute ({self.id!r} is {self.type})")


@dataclass
class PlaybookDef:
    id: str
    name: str
    description: str
    steps: list[Step]
    # Entity kind the run is bound to, or None
    requires_target: str | None = None
    required_roles: tuple[Role, ...] = (Role.MANAGER, Role.ADMIN, Role.SUPER_ADMIN)


def _programme(store: StateStore, programme_id: str | None) -> dict | None:
    if not programme_id:
        return None
    return store.query_one(
        safe_sql.select("programmes", "id, name, status, description", where="id = ?"),
        [programme_id],
    )


def _view_programme(state: PlaybookState) -> ResultItem:
    return ResultItem(
        label=f"View {state.target_name}", detail="Programme", href=f"/programmes/{state.target_id}"
    )


def _task_items(rows: list[dict]) -> list[ResultItem]:
    items = []
    for t in rows:
        detail = STATUS_LABELS.get(t["status"], t["status"])
        if t.get("due_date"):
            detail += f" · due {format_date(t['due_date'])}"
        if t.get("assignee_name"):
            detail += f" · {t['assignee_name']}"
        items.append(ResultItem(label=t["title"], detail=detail, href=f"/tasks/{t['id']}"))
    return items


# ============================================================
# close_programme
# ============================================================

OPEN_TASKS_SHOWN = 8


def _audit_tasks(store: StateStore, user_id: str, state: PlaybookState) -> StepPresentation:
    rows = store.query(
        safe_sql.select(
            "tasks",
            "id, title, status, due_date",
            where="programme_id = ? AND status != 'done'",
            order_by="due_date IS NULL, due_date, id",
        ),
        [state.target_id],
    )
    if not rows:
        return StepPresentation(
            text=f'All tasks in "{state.target_name}" are already done or there are none. '
            "Programme is ready to close.",
            fields=[ActionField("Programme", state.target_name), ActionField("Open tasks", "0")],
            context={"open_task_count": 0, "open_task_ids": []},
        )

    by_status = Counter(t["status"] for t in rows)
    breakdown = ", ".join(f"{n} {STATUS_LABELS.get(s, s).lower()}" for s, n in by_status.items())
    return StepPresentation(
        text=f'"{state.target_name}" has {plural(len(rows), "task")} still open ({breakdown}). '
        "These need to be resolved before closing.",
        items=_task_items(rows[:OPEN_TASKS_SHOWN]),
        fields=[
            ActionField("Programme", state.target_name),
            ActionField("Open tasks", str(len(rows))),
            ActionField("Breakdown", breakdown),
        ],
        context={"open_task_count": len(rows), "open_task_ids": [t["id"] for t in rows]},
    )


def _complete_tasks_present(store: StateStore, user_id: str, state: PlaybookState) -> StepPresentation:
    count = state.context.get("open_task_count", 0)
    if not count:
        return StepPresentation(
            text="No tasks to complete, auto-skipping.", context={"tasks_completed": 0}, auto_skip=True
        )
    return StepPresentation(
        text=f"Mark all {plural(count, 'open task')} as done?",
        fields=[
            ActionField("Action", f"Set {plural(count, 'task')} → Done"),
            ActionField("Programme", state.target_name),
        ],
    )


def _complete_tasks_execute(store: StateStore, user_id: str, state: PlaybookState) -> StepResult:
    task_ids = list(state.context.get("open_task_ids") or [])
    if not task_ids:
        return StepResult(success=True, message="No tasks to complete.", context={"tasks_completed": 0})

    now = now_iso()
    with store.transaction() as conn:
        updated = conn.execute(
            f"UPDATE tasks SET status = 'done', updated_at = ? "
            f"WHERE id IN ({safe_sql.in_placeholders(len(task_ids))}) AND status != 'done'",
            [now] + task_ids,
        ).rowcount
        write_audit(
            store,
            user_id,
            "tasks_bulk_completed",
            "programme",
            state.target_id,
            {
                "source": SOURCE_PLAYBOOK,
                "programme_name": state.target_name,
                "task_count": updated,
                "task_ids": task_ids,
            },
            conn=conn,
        )
    logger.info("Playbook marked %d task(s) done in programme %s", updated, state.target_id)
    return StepResult(
        success=True,
        message=f"{plural(updated, 'task')} marked as done.",
        context={"tasks_completed": updated},
    )


def _set_programme_status(
    store: StateStore, user_id: str, state: PlaybookState, new_status: str
) -> StepResult:
    programme = _programme(store, state.target_id)
    if not programme:
        return StepResult(success=False, message="Programme not found")
    with store.transaction() as conn:
        conn.execute(
            safe_sql.update("programmes", ["status", "updated_at"]),
            [new_status, now_iso(), state.target_id],
        )
        write_audit(
            store,
            user_id,
            "programme_status_updated",
            "programme",
            state.target_id,
            {
                "source": SOURCE_PLAYBOOK,
                "name": programme["name"],
                "from_status": programme["status"],
                "to_status": new_status,
            },
            conn=conn,
        )
    return StepResult(
        success=True,
        message=f'"{programme["name"]}" is now {PROGRAMME_STATUS_LABELS[new_status]}.',
        href=f"/programmes/{state.target_id}",
    )


def _close_status_present(store: StateStore, user_id: str, state: PlaybookState) -> StepPresentation:
    programme = _programme(store, state.target_id)
    current = programme["status"] if programme else "unknown"
    return StepPresentation(
        text=f'Update "{state.target_name}" status to Completed?',
        fields=[
            ActionField("Programme", state.target_name),
            ActionField("From", PROGRAMME_STATUS_LABELS.get(current, current)),
            ActionField("To", "Completed"),
        ],
    )


def _close_status_execute(store: StateStore, user_id: str, state: PlaybookState) -> StepResult:
    return _set_programme_status(store, user_id, state, "completed")


def _close_summary(store: StateStore, user_id: str, state: PlaybookState) -> StepPresentation:
    completed = state.context.get("tasks_completed", 0)
    return StepPresentation(
        text=f'✓ Programme "{state.target_name}" closed.\n\n'
        f"Tasks completed: {completed}\nStatus: Completed",
        items=[_view_programme(state)],
    )


CLOSE_PROGRAMME = PlaybookDef(
    id="close_programme",
    name="Close Programme",
    description="Archive open tasks and mark a programme as completed",
    requires_target="programme",
    steps=[
        Step("audit_tasks", "Review open tasks", StepType.CHECK, _audit_tasks),
        Step(
            "complete_tasks",
            "Complete open tasks",
            StepType.ACTION,
            _complete_tasks_present,
            _complete_tasks_execute,
        ),
        Step(
            "close_status",
            "Mark programme completed",
            StepType.ACTION,
            _close_status_present,
            _close_status_execute,
        ),
        Step("summary", "Summary", StepType.SUMMARY, _close_summary),
    ],
)


# ============================================================
# start_programme
# ============================================================


def _verify(store: StateStore, user_id: str, state: PlaybookState) -> StepPresentation:
    programme = _programme(store, state.target_id)
    if not programme:
        return StepPresentation(text="Programme not found.")
    if programme["status"] == "active":
        return StepPresentation(
            text=f'"{programme["name"]}" is already active.', context={"already_active": True}
        )
    return StepPresentation(
        text=f'Ready to activate "{programme["name"]}".',
        fields=[
            ActionField("Programme", programme["name"]),
            ActionField("Current status", PROGRAMME_STATUS_LABELS.get(programme["status"], programme["status"])),
            ActionField("Description", programme["description"] or "None"),
        ],
        context={"already_active": False},
    )


def _activate_present(store: StateStore, user_id: str, state: PlaybookState) -> StepPresentation:
    if state.context.get("already_active"):
        return StepPresentation(text="Programme already active, auto-skipping.", auto_skip=True)
    programme = _programme(store, state.target_id)
    current = programme["status"] if programme else "draft"
    return StepPresentation(
        text=f'Set "{state.target_name}" to Active?',
        fields=[
            ActionField("Programme", state.target_name),
            ActionField("Action", f"{PROGRAMME_STATUS_LABELS.get(current, current)} → Active"),
        ],
    )


def _activate_execute(store: StateStore, user_id: str, state: PlaybookState) -> StepResult:
    return _set_programme_status(store, user_id, state, "active")


def _kickoff_present(store: StateStore, user_id: str, state: PlaybookState) -> StepPresentation:
    return StepPresentation(
        text=f'Create a kickoff task for "{state.target_name}"?',
        fields=[
            ActionField("Task", f"Kickoff: {state.target_name}"),
            ActionField("Priority", "high"),
            ActionField("Programme", state.target_name),
        ],
    )


def _kickoff_execute(store: StateStore, user_id: str, state: PlaybookState) -> StepResult:
    task_id = new_id()
    title = f"Kickoff: {state.target_name}"
    with store.transaction() as conn:
        store.insert(
            "tasks",
            {
                "id": task_id,
                "title": title,
                "status": "todo",
                "priority": "high",
                "programme_id": state.target_id,
                "created_by": user_id,
                "assignee_id": user_id,
            },
            conn=conn,
        )
        store.insert(
            "task_assignees",
            {"id": new_id(), "task_id": task_id, "user_id": user_id, "assigned_by": user_id},
            conn=conn,
        )
        write_audit(
            store,
            user_id,
            "task_created",
            "task",
            task_id,
            {"source": SOURCE_PLAYBOOK, "title": title, "programme_id": state.target_id},
            conn=conn,
        )
    return StepResult(
        success=True,
        message="Kickoff task created.",
        href=f"/tasks/{task_id}",
        context={"kickoff_task_id": task_id},
    )


def _start_summary(store: StateStore, user_id: str, state: PlaybookState) -> StepPresentation:
    return StepPresentation(
        text=f'✓ "{state.target_name}" is active and ready.', items=[_view_programme(state)]
    )


START_PROGRAMME = PlaybookDef(
    id="start_programme",
    name="Start Programme",
    description="Activate a draft programme and create a kickoff task",
    requires_target="programme",
    steps=[
        Step("verify", "Check programme", StepType.CHECK, _verify),
        Step("activate", "Activate programme", StepType.ACTION, _activate_present, _activate_execute),
        Step("kickoff", "Create kickoff task", StepType.ACTION, _kickoff_present, _kickoff_execute),
        Step("summary", "Summary", StepType.SUMMARY, _start_summary),
    ],
)


# ============================================================
# weekly_review
# ============================================================

OVERDUE_SHOWN = 15
BLOCKERS_SHOWN = 10

_TEAM_TASKS = (
    "SELECT DISTINCT t.id, t.title, t.status, t.due_date, p.full_name AS assignee_name "
    "FROM tasks t JOIN task_assignees ta ON ta.task_id = t.id "
    "JOIN profiles p ON p.id = ta.user_id"
)


def _team_tasks(store: StateStore, report_ids: list[str], where: str, values: list, limit: int) -> list[dict]:
    rows = store.query(
        f"{_TEAM_TASKS} WHERE ta.user_id IN ({safe_sql.in_placeholders(len(report_ids))}) "
        f"AND {where} ORDER BY t.due_date IS NULL, t.due_date, t.id LIMIT ?",
        list(report_ids) + values + [limit],
    )
    # One row per task even when several reports share it
    return list({r["id"]: r for r in rows}.values())


def _team_task_count(store: StateStore, report_ids: list[str], where: str, values: list) -> int:
    row = store.query_one(
        "SELECT COUNT(DISTINCT t.id) AS n FROM tasks t JOIN task_assignees ta ON ta.task_id = t.id "
        f"WHERE ta.user_id IN ({safe_sql.in_placeholders(len(report_ids))}) AND {where}",
        list(report_ids) + values,
    )
    return row["n"] if row else 0


def _overdue(store: StateStore, user_id: str, state: PlaybookState) -> StepPresentation:
    report_ids = get_report_ids(store, user_id, get_user_role(store, user_id))
    if not report_ids:
        return StepPresentation(
            text="No direct reports found.",
            context={"report_ids": [], "overdue_count": 0, "team_size": 0},
        )

    where, values = "t.due_date < ? AND t.status != 'done'", [today_iso()]
    count = _team_task_count(store, report_ids, where, values)
    rows = _team_tasks(store, report_ids, where, values, OVERDUE_SHOWN) if count else []
    text = (
        f"{plural(count, 'overdue task')} across your team:"
        if count
        else "No overdue tasks. Your team is on track!"
    )
    return StepPresentation(
        text=text,
        items=_task_items(rows),
        fields=[ActionField("Team size", str(len(report_ids))), ActionField("Overdue", str(count))],
        context={"report_ids": report_ids, "overdue_count": count, "team_size": len(report_ids)},
    )


def _blockers(store: StateStore, user_id: str, state: PlaybookState) -> StepPresentation:
    report_ids = state.context.get("report_ids") or []
    if not report_ids:
        return StepPresentation(text="No team data available.", context={"blocker_count": 0})

    rows = _team_tasks(store, report_ids, "t.status = 'blocked'", [], BLOCKERS_SHOWN)
    return StepPresentation(
        text=f"{plural(len(rows), 'blocked task')}:" if rows else "No blocked tasks. All clear.",
        items=_task_items(rows),
        context={"blocker_count": len(rows)},
    )


def _checkins(store: StateStore, user_id: str, state: PlaybookState) -> StepPresentation:
    report_ids = state.context.get("report_ids") or []
    if not report_ids:
        return StepPresentation(text="No team data available.", context={"missed_checkins": 0})

    marks = safe_sql.in_placeholders(len(report_ids))
    submitted = {
        r["user_id"]
        for r in store.query(
            safe_sql.select("checkins", "user_id", where=f"week_start >= ? AND user_id IN ({marks})"),
            [week_start()] + list(report_ids),
        )
    }
    missing = [rid for rid in report_ids if rid not in submitted]
    if not missing:
        return StepPresentation(
            text="All team members have checked in this week.",
            fields=[ActionField("Checked in", f"{len(report_ids)}/{len(report_ids)}")],
            context={"missed_checkins": 0},
        )

    profiles = store.query(
        safe_sql.select(
            "profiles",
            "id, full_name, username",
            where=f"id IN ({safe_sql.in_placeholders(len(missing))})",
            order_by="full_name, id",
        ),
        missing,
    )
    return StepPresentation(
        text=f"{plural(len(missing), 'team member')} haven't checked in:",
        items=[
            ResultItem(label=resolver.user_label(p), detail="No check-in this week", href="/checkins")
            for p in profiles
        ],
        fields=[ActionField("Checked in", f"{len(report_ids) - len(missing)}/{len(report_ids)}")],
        context={"missed_checkins": len(missing)},
    )


def _review_summary(store: StateStore, user_id: str, state: PlaybookState) -> StepPresentation:
    ctx = state.context
    overdue = ctx.get("overdue_count", 0)
    blockers = ctx.get("blocker_count", 0)
    missed = ctx.get("missed_checkins", 0)
    closing = (
        "Everything looks good this week!"
        if not (overdue or blockers or missed)
        else "Consider following up on the items above."
    )
    return StepPresentation(
        text=f"✓ Weekly review complete for {ctx.get('team_size', 0)} team members.\n\n"
        f"Overdue tasks: {overdue}\nBlocked tasks: {blockers}\nMissed check-ins: {missed}\n\n{closing}"
    )


WEEKLY_REVIEW = PlaybookDef(
    id="weekly_review",
    name="Weekly Manager Review",
    description="Review overdue tasks, blockers, and check-in status across your team",
    requires_target=None,
    steps=[
        Step("overdue", "Overdue tasks", StepType.CHECK, _overdue),
        Step("blockers", "Blockers", StepType.CHECK, _blockers),
        Step("checkins", "Check-ins", StepType.CHECK, _checkins),
        Step("summary", "Summary", StepType.SUMMARY, _review_summary),
    ],
)


PLAYBOOKS: dict[str, PlaybookDef] = {p.id: p for p in (CLOSE_PROGRAMME, START_PROGRAMME, WEEKLY_REVIEW)}


def get_playbook(playbook_id: str | None) -> PlaybookDef | None:
    return PLAYBOOKS.get(playbook_id or "")
