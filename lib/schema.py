"""
Declarative Schema Definition for the operations assistant.

Every table and index the assistant reads or writes lives here. The
schema_engine reads this module and converges any database to match.

Adding a column = add one line here. The engine handles the rest.

Column definitions use CREATE TABLE syntax. The schema_engine derives
ALTER TABLE ADD COLUMN DDL from them (strips PK, adjusts NOT NULL, etc.).

Timestamps are ISO-8601 UTC strings (``YYYY-MM-DDTHH:MM:SSZ``) so that
lexical comparison matches chronological order.
"""

from collections import OrderedDict

# =============================================================================
# Schema version: bump when you change this file
# =============================================================================
SCHEMA_VERSION = 1

_NOW = "TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%SZ', 'now'))"

# =============================================================================
# Table Definitions
#
# Format: TABLES[name] = {"columns": [(col_name, col_ddl), ...],
#                         "unique": [(col, ...), ...]}   # optional
# =============================================================================

TABLES: dict[str, dict] = OrderedDict()

# ---------------------------------------------------------------------------
# People
# ---------------------------------------------------------------------------
TABLES["profiles"] = {
    "columns": [
        ("id", "TEXT PRIMARY KEY"),
        ("full_name", "TEXT NOT NULL"),
        ("username", "TEXT"),
        ("email", "TEXT"),
        # member | manager | admin | super_admin
        ("role", "TEXT NOT NULL DEFAULT 'member'"),
        ("created_at", _NOW),
    ],
}

TABLES["hierarchy"] = {
    "columns": [
        ("id", "TEXT PRIMARY KEY"),
        ("manager_id", "TEXT NOT NULL REFERENCES profiles(id)"),
        ("member_id", "TEXT NOT NULL REFERENCES profiles(id)"),
        ("created_at", _NOW),
    ],
    "unique": [("manager_id", "member_id")],
}

# ---------------------------------------------------------------------------
# Work
# ---------------------------------------------------------------------------
TABLES["programmes"] = {
    "columns": [
        ("id", "TEXT PRIMARY KEY"),
        ("name", "TEXT NOT NULL"),
        ("description", "TEXT"),
        # draft | active | paused | completed | archived
        ("status", "TEXT NOT NULL DEFAULT 'draft'"),
        ("start_date", "TEXT"),
        ("end_date", "TEXT"),
        ("created_by", "TEXT"),
        ("created_at", _NOW),
        ("updated_at", _NOW),
    ],
}

TABLES["tasks"] = {
    "columns": [
        ("id", "TEXT PRIMARY KEY"),
        ("title", "TEXT NOT NULL"),
        ("description", "TEXT"),
        # todo | in_progress | pending_review | done | blocked
        ("status", "TEXT NOT NULL DEFAULT 'todo'"),
        # low | medium | high | urgent
        ("priority", "TEXT NOT NULL DEFAULT 'medium'"),
        ("due_date", "TEXT"),
        ("programme_id", "TEXT REFERENCES programmes(id)"),
        ("assignee_id", "TEXT"),
        ("created_by", "TEXT"),
        ("evidence_required", "INTEGER NOT NULL DEFAULT 0"),
        ("created_at", _NOW),
        ("updated_at", _NOW),
    ],
}

TABLES["task_assignees"] = {
    "columns": [
        ("id", "TEXT PRIMARY KEY"),
        ("task_id", "TEXT NOT NULL REFERENCES tasks(id) ON DELETE CASCADE"),
        ("user_id", "TEXT NOT NULL"),
        ("assigned_by", "TEXT"),
        ("created_at", _NOW),
    ],
    "unique": [("task_id", "user_id")],
}

TABLES["checkins"] = {
    "columns": [
        ("id", "TEXT PRIMARY KEY"),
        ("user_id", "TEXT NOT NULL"),
        # Monday of the check-in week, YYYY-MM-DD
        ("week_start", "TEXT NOT NULL"),
        ("mood", "TEXT"),
        ("submitted_at", _NOW),
    ],
    "unique": [("user_id", "week_start")],
}

# ---------------------------------------------------------------------------
# Audit and telemetry
# ---------------------------------------------------------------------------
TABLES["audit_logs"] = {
    "columns": [
        ("id", "TEXT PRIMARY KEY"),
        ("user_id", "TEXT"),
        ("action", "TEXT NOT NULL"),
        ("entity_type", "TEXT NOT NULL"),
        ("entity_id", "TEXT"),
        ("details", "TEXT"),  # JSON object
        ("created_at", _NOW),
    ],
}

# ---------------------------------------------------------------------------
# Assistant conversation state
# ---------------------------------------------------------------------------
TABLES["assistant_pending_actions"] = {
    "columns": [
        ("id", "TEXT PRIMARY KEY"),
        ("user_id", "TEXT NOT NULL"),
        ("intent_type", "TEXT NOT NULL"),
        ("draft_payload", "TEXT NOT NULL DEFAULT '{}'"),  # JSON object
        ("missing_fields", "TEXT NOT NULL DEFAULT '[]'"),  # JSON list
        ("follow_up_question", "TEXT"),
        # pending | resolved | cancelled | expired
        ("status", "TEXT NOT NULL DEFAULT 'pending'"),
        ("created_at", _NOW),
        ("updated_at", _NOW),
        ("expires_at", "TEXT"),
    ],
}

# ---------------------------------------------------------------------------
# Notifications (written only by action confirmation)
# ---------------------------------------------------------------------------
TABLES["notifications"] = {
    "columns": [
        ("id", "TEXT PRIMARY KEY"),
        ("user_id", "TEXT NOT NULL"),
        ("type", "TEXT NOT NULL"),
        ("title", "TEXT NOT NULL"),
        ("body", "TEXT"),
        ("href", "TEXT"),
        ("entity_type", "TEXT"),
        ("entity_id", "TEXT"),
        ("actor_id", "TEXT"),
        ("idempotency_key", "TEXT UNIQUE"),
        ("read_at", "TEXT"),
        ("created_at", _NOW),
    ],
}

# =============================================================================
# Indexes
#
# Format: (index_name, table, columns_expr, where_clause_or_None)
# =============================================================================

INDEXES: list[tuple[str, str, str, str | None]] = [
    ("idx_profiles_username", "profiles", "username", None),
    ("idx_hierarchy_manager", "hierarchy", "manager_id", None),
    ("idx_programmes_status", "programmes", "status", None),
    ("idx_tasks_status", "tasks", "status", None),
    ("idx_tasks_due", "tasks", "due_date", None),
    ("idx_tasks_programme", "tasks", "programme_id", None),
    ("idx_task_assignees_user", "task_assignees", "user_id", None),
    ("idx_checkins_week", "checkins", "week_start", None),
    ("idx_audit_logs_entity", "audit_logs", "entity_type, created_at", None),
    ("idx_pending_user_status", "assistant_pending_actions", "user_id, status", None),
    ("idx_notifications_user", "notifications", "user_id, read_at", None),
]

# Unique indexes, same format. At most one pending action per user.
UNIQUE_INDEXES: list[tuple[str, str, str, str | None]] = [
    (
        "uq_pending_active_user",
        "assistant_pending_actions",
        "user_id",
        "status = 'pending'",
    ),
]
