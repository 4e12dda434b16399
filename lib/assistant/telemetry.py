"""
Assistant telemetry.

Events are written as audit_logs rows (action ``assistant_<event>``) off
the request path. Emission never raises: a failed write is logged and
dropped.
"""

import logging
import sqlite3
from collections.abc import Callable
from enum import StrEnum
from typing import Any

from lib.assistant.audit import write_audit
from lib.background_tasks import get_task_manager
from lib.state_store import StateStore

logger = logging.getLogger(__name__)

SOURCE = "assistant_telemetry"


class TelemetryEvent(StrEnum):
    PANEL_OPEN = "panel_open"
    PANEL_CLOSE = "panel_close"
    MESSAGE_SENT = "message_sent"
    INTENT_CLASSIFIED = "intent_classified"
    TOOL_EXECUTED = "tool_executed"
    ACTION_PREVIEWED = "action_previewed"
    ACTION_CONFIRMED = "action_confirmed"
    ACTION_FAILED = "action_failed"
    PLAYBOOK_STARTED = "playbook_started"
    PLAYBOOK_STEP_COMPLETED = "playbook_step_completed"
    PLAYBOOK_COMPLETED = "playbook_completed"
    PLAYBOOK_ABORTED = "playbook_aborted"
    PENDING_EXPIRED = "pending_expired"
    PENDING_CLEANED = "pending_cleaned"
    ERROR = "error"


# Events a client may report directly
CLIENT_EVENTS = frozenset({TelemetryEvent.PANEL_OPEN, TelemetryEvent.PANEL_CLOSE})

Dispatch = Callable[..., Any]


def _submit(func: Callable, *args: Any) -> Any:
    return get_task_manager().submit(func, *args)


class Telemetry:
    """
    Fire-and-forget event writer.

    ``dispatch`` defaults to the shared TaskManager; tests pass a function
    that calls straight through.
    """

    def __init__(self, store: StateStore, dispatch: Dispatch | None = None):
        self.store = store
        self.dispatch = dispatch or _submit

    def record(self, user_id: str, event: TelemetryEvent | str, metadata: dict | None = None) -> None:
        """Write one event synchronously. Failures are logged, never raised."""
        event = TelemetryEvent(event)
        details = {"source": SOURCE, "event_type": str(event), **(metadata or {})}
        try:
            write_audit(self.store, user_id, f"assistant_{event}", "assistant", None, details)
        except (sqlite3.Error, ValueError, OSError) as e:
            logger.warning("Telemetry write failed for %s: %s", event, e)

    def emit(self, user_id: str, event: TelemetryEvent | str, metadata: dict | None = None) -> None:
        try:
            self.dispatch(self.record, user_id, event, metadata)
        except RuntimeError as e:
            # Executor already shut down
            logger.warning("Telemetry dispatch failed for %s: %s", event, e)

    # ------------------------------------------------------------
    # Typed helpers
    # ------------------------------------------------------------

    def message_sent(self, user_id: str, message_length: int) -> None:
        self.emit(user_id, TelemetryEvent.MESSAGE_SENT, {"message_length": message_length})

    def intent_classified(self, user_id: str, tool: str, confidence: float, source: str) -> None:
        self.emit(
            user_id,
            TelemetryEvent.INTENT_CLASSIFIED,
            {"tool": tool, "confidence": confidence, "source": source},
        )

    def tool_executed(self, user_id: str, tool: str, duration_ms: int, success: bool) -> None:
        self.emit(
            user_id,
            TelemetryEvent.TOOL_EXECUTED,
            {"tool": tool, "duration_ms": duration_ms, "success": success},
        )

    def action_previewed(self, user_id: str, action_type: str) -> None:
        self.emit(user_id, TelemetryEvent.ACTION_PREVIEWED, {"action_type": action_type})

    def action_confirmed(self, user_id: str, action_type: str) -> None:
        self.emit(user_id, TelemetryEvent.ACTION_CONFIRMED, {"action_type": action_type})

    def action_failed(self, user_id: str, action_type: str, error: str) -> None:
        self.emit(user_id, TelemetryEvent.ACTION_FAILED, {"action_type": action_type, "error": error})

    def playbook_started(self, user_id: str, playbook_id: str, target: str | None) -> None:
        self.emit(user_id, TelemetryEvent.PLAYBOOK_STARTED, {"playbook_id": playbook_id, "target": target})

    def playbook_step_completed(self, user_id: str, playbook_id: str, step_id: str) -> None:
        self.emit(
            user_id,
            TelemetryEvent.PLAYBOOK_STEP_COMPLETED,
            {"playbook_id": playbook_id, "step_id": step_id},
        )

    def playbook_completed(
        self, user_id: str, playbook_id: str, steps_completed: int, steps_skipped: int
    ) -> None:
        self.emit(
            user_id,
            TelemetryEvent.PLAYBOOK_COMPLETED,
            {
                "playbook_id": playbook_id,
                "steps_completed": steps_completed,
                "steps_skipped": steps_skipped,
            },
        )

    def playbook_aborted(self, user_id: str, playbook_id: str, at_step: int) -> None:
        self.emit(user_id, TelemetryEvent.PLAYBOOK_ABORTED, {"playbook_id": playbook_id, "at_step": at_step})

    def pending_cleaned(self, user_id: str, cleaned_count: int) -> None:
        self.emit(user_id, TelemetryEvent.PENDING_CLEANED, {"cleaned_count": cleaned_count})

    def error(self, user_id: str, error: str, context: str) -> None:
        self.emit(user_id, TelemetryEvent.ERROR, {"error": error, "context": context})


def run_inline(func: Callable, *args: Any) -> None:
    """Dispatch that runs the work on the calling thread."""
    func(*args)
