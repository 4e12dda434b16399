"""
In-app notifications raised by confirmed assistant actions.

Rows go into ``notifications`` with an idempotency key; a retried
confirmation hits the unique key and is ignored instead of notifying
twice. Delivery beyond the table belongs to the notification service.
"""

import logging
import sqlite3
from dataclasses import dataclass

from lib import safe_sql
from lib.state_store import StateStore, new_id

logger = logging.getLogger(__name__)

TABLE = "notifications"

_COLUMNS = [
    "id",
    "user_id",
    "type",
    "title",
    "body",
    "href",
    "entity_type",
    "entity_id",
    "actor_id",
    "idempotency_key",
]


@dataclass
class Notification:
    user_id: str
    type: str
    title: str
    body: str
    href: str | None
    entity_type: str
    entity_id: str
    actor_id: str
    idempotency_key: str


def task_assigned(task_id: str, title: str, assignee_id: str, actor_id: str) -> Notification:
    return Notification(
        user_id=assignee_id,
        type="task_assigned",
        title="New task assigned",
        body=f'You\'ve been assigned to "{title}"',
        href=f"/tasks/{task_id}",
        entity_type="task",
        entity_id=task_id,
        actor_id=actor_id,
        idempotency_key=f"task_assigned:{task_id}:{assignee_id}",
    )


def task_status_changed(
    task_id: str, title: str, status_label: str, new_status: str, recipient_id: str, actor_id: str
) -> Notification:
    return Notification(
        user_id=recipient_id,
        type="task_status_changed",
        title="Task status updated",
        body=f'"{title}" is now {status_label}',
        href=f"/tasks/{task_id}",
        entity_type="task",
        entity_id=task_id,
        actor_id=actor_id,
        idempotency_key=f"task_status_changed:{task_id}:{new_status}:{recipient_id}",
    )


def send(store: StateStore, notifications: list[Notification]) -> int:
    """Insert *notifications*, skipping ones already sent. Returns how many were new."""
    if not notifications:
        return 0
    sql = safe_sql.insert_or_ignore(TABLE, _COLUMNS)
    created = 0
    try:
        with store.transaction() as conn:
            for n in notifications:
                created += conn.execute(
                    sql,
                    [
                        new_id(),
                        n.user_id,
                        n.type,
                        n.title,
                        n.body,
                        n.href,
                        n.entity_type,
                        n.entity_id,
                        n.actor_id,
                        n.idempotency_key,
                    ],
                ).rowcount
    except sqlite3.Error as e:
        logger.warning("Failed to record %d notification(s): %s", len(notifications), e)
        return 0
    logger.debug("Recorded %d of %d notification(s)", created, len(notifications))
    return created
