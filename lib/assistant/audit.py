"""audit_logs rows written by confirmations, playbook steps and telemetry."""

import sqlite3

from lib.state_store import StateStore, new_id

TABLE = "audit_logs"

# details.source for writes the assistant performs
SOURCE_ASSISTANT = "assistant"
SOURCE_PLAYBOOK = "assistant_playbook"


def write_audit(
    store: StateStore,
    user_id: str,
    action: str,
    entity_type: str,
    entity_id: str | None,
    details: dict,
    conn: sqlite3.Connection | None = None,
) -> str:
    """Insert one audit row, inside *conn*'s transaction when given."""
    return store.insert(
        TABLE,
        {
            "id": new_id(),
            "user_id": user_id,
            "action": action,
            "entity_type": entity_type,
            "entity_id": entity_id,
            "details": details,
        },
        conn=conn,
    )
