"""
Pending conversation state.

One active (status = pending) record per user holds either a draft intent
waiting on missing fields or the state of a running playbook. Records
expire after PENDING_TTL_MINUTES without activity; every update pushes
the expiry forward.
"""

import json
import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from enum import StrEnum
from typing import Any

from lib import config, safe_sql
from lib.state_store import StateStore, new_id, now_iso

logger = logging.getLogger(__name__)

TABLE = "assistant_pending_actions"

PLAYBOOK_INTENT = "run_playbook"


class PendingStatus(StrEnum):
    PENDING = "pending"
    RESOLVED = "resolved"
    CANCELLED = "cancelled"
    EXPIRED = "expired"


@dataclass
class PendingAction:
    id: str
    user_id: str
    intent_type: str
    draft_payload: dict[str, Any] = field(default_factory=dict)
    missing_fields: list[str] = field(default_factory=list)
    follow_up_question: str | None = None
    status: PendingStatus = PendingStatus.PENDING
    created_at: str | None = None
    updated_at: str | None = None
    expires_at: str | None = None

    @property
    def is_playbook(self) -> bool:
        return self.intent_type == PLAYBOOK_INTENT

    @property
    def next_field(self) -> str | None:
        return self.missing_fields[0] if self.missing_fields else None

    @classmethod
    def from_row(cls, row: dict) -> "PendingAction":
        return cls(
            id=row["id"],
            user_id=row["user_id"],
            intent_type=row["intent_type"],
            draft_payload=_load_json(row.get("draft_payload"), {}),
            missing_fields=_load_json(row.get("missing_fields"), []),
            follow_up_question=row.get("follow_up_question"),
            status=PendingStatus(row.get("status") or PendingStatus.PENDING),
            created_at=row.get("created_at"),
            updated_at=row.get("updated_at"),
            expires_at=row.get("expires_at"),
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "intent_type": self.intent_type,
            "draft_payload": self.draft_payload,
            "missing_fields": self.missing_fields,
            "follow_up_question": self.follow_up_question,
            "status": str(self.status),
            "created_at": self.created_at,
            "updated_at": self.updated_at,
            "expires_at": self.expires_at,
        }


def _load_json(raw, default):
    if raw is None or raw == "":
        return default
    if isinstance(raw, dict | list):
        return raw
    try:
        return json.loads(raw)
    except json.JSONDecodeError:
        logger.warning("Corrupt JSON in pending action column: %r", raw[:80])
        return default


def _expiry() -> str:
    return now_iso(datetime.now(UTC) + timedelta(minutes=config.PENDING_TTL_MINUTES))


class PendingStore:
    """Durable per-user pending actions on top of StateStore."""

    def __init__(self, store: StateStore):
        self.store = store

    def get_active(self, user_id: str) -> PendingAction | None:
        """Expire overdue records, then return the newest pending one."""
        now = now_iso()
        with self.store.transaction() as conn:
            expired = conn.execute(
                safe_sql.update(
                    TABLE,
                    ["status", "updated_at"],
                    where="user_id = ? AND status = ? AND expires_at IS NOT NULL AND expires_at < ?",
                ),
                [PendingStatus.EXPIRED, now, user_id, PendingStatus.PENDING, now],
            ).rowcount
            row = conn.execute(
                safe_sql.select(
                    TABLE,
                    where="user_id = ? AND status = ?",
                    order_by="created_at DESC, rowid DESC",
                    suffix="LIMIT 1",
                ),
                [user_id, PendingStatus.PENDING],
            ).fetchone()
        if expired:
            logger.info("Expired %d pending action(s) for user %s", expired, user_id)
        return PendingAction.from_row(dict(row)) if row else None

    def get(self, pending_id: str) -> PendingAction | None:
        row = self.store.get(TABLE, pending_id)
        return PendingAction.from_row(row) if row else None

    def create(
        self,
        user_id: str,
        intent_type: str,
        payload: dict[str, Any],
        missing_fields: list[str],
        follow_up: str | None,
    ) -> PendingAction:
        """
        Insert a new pending record.

        Any record still pending for the user is cancelled in the same
        transaction, so the one-active-per-user index never trips.
        """
        now = now_iso()
        record = PendingAction(
            id=new_id(),
            user_id=user_id,
            intent_type=intent_type,
            draft_payload=dict(payload),
            missing_fields=list(missing_fields),
            follow_up_question=follow_up,
            status=PendingStatus.PENDING,
            created_at=now,
            updated_at=now,
            expires_at=_expiry(),
        )
        with self.store.transaction() as conn:
            conn.execute(
                safe_sql.update(TABLE, ["status", "updated_at"], where="user_id = ? AND status = ?"),
                [PendingStatus.CANCELLED, now, user_id, PendingStatus.PENDING],
            )
            row = record.to_dict()
            self.store.insert(TABLE, row, conn=conn)
        logger.debug("Created pending %s (%s) for %s", record.id, intent_type, user_id)
        return record

    def update(self, pending_id: str, **changes) -> PendingAction | None:
        """
        Merge *changes* (draft_payload, missing_fields, follow_up_question)
        into the record and extend its expiry.
        """
        allowed = {"draft_payload", "missing_fields", "follow_up_question"}
        unknown = set(changes) - allowed
        if unknown:
            raise ValueError(f"Cannot update pending fields: {sorted(unknown)}")
        data = dict(changes)
        data["updated_at"] = now_iso()
        data["expires_at"] = _expiry()
        self.store.update(TABLE, pending_id, data)
        return self.get(pending_id)

    def _set_status(self, pending_id: str, status: PendingStatus) -> bool:
        return (
            self.store.execute(
                safe_sql.update(TABLE, ["status", "updated_at"], where="id = ? AND status = ?"),
                [status, now_iso(), pending_id, PendingStatus.PENDING],
            )
            > 0
        )

    def cancel(self, pending_id: str) -> bool:
        """Mark cancelled. Idempotent; terminal records are left untouched."""
        return self._set_status(pending_id, PendingStatus.CANCELLED)

    def resolve(self, pending_id: str) -> bool:
        """Mark resolved after a successful confirmation or playbook completion."""
        return self._set_status(pending_id, PendingStatus.RESOLVED)

    def resolve_active(self, user_id: str) -> bool:
        active = self.get_active(user_id)
        return self.resolve(active.id) if active else False

    def cancel_all(self, user_id: str) -> int:
        """Cancel every pending record of a user. Returns how many."""
        return self.store.execute(
            safe_sql.update(TABLE, ["status", "updated_at"], where="user_id = ? AND status = ?"),
            [PendingStatus.CANCELLED, now_iso(), user_id, PendingStatus.PENDING],
        )

    def purge_stale(self, user_id: str) -> int:
        """Delete terminal records not touched for PENDING_RETENTION_HOURS."""
        cutoff = now_iso(datetime.now(UTC) - timedelta(hours=config.PENDING_RETENTION_HOURS))
        deleted = self.store.execute(
            safe_sql.delete(TABLE, where="user_id = ? AND status != ? AND updated_at < ?"),
            [user_id, PendingStatus.PENDING, cutoff],
        )
        if deleted:
            logger.info("Purged %d stale pending action(s) for %s", deleted, user_id)
        return deleted
