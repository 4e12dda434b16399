"""
Chat engine: per-message orchestration.

One call to handle_message() runs the whole pipeline for a user turn:

  load pending state -> pre-process against it -> resolve a pending
  operation directly, or classify -> ask for missing fields, start a
  playbook, or run the tool -> persist whatever the reply is waiting on.

No state is kept on the engine between calls; everything that must
survive a turn is in the pending store.
"""

import logging
import sqlite3
import time
from collections.abc import Callable
from typing import Any

from lib import config
from lib.assistant import resolver
from lib.assistant.classifier import IntentClassifier, get_classifier
from lib.assistant.fields import (
    WRITE_TOOLS,
    detect_missing_fields,
    field_example,
    field_label,
    follow_up_question,
    normalize_field_value,
)
from lib.assistant.models import ChatResponse, ClarifyInfo, Intent, ToolResult
from lib.assistant.pending import PendingAction, PendingStore
from lib.assistant.playbook_runner import PlaybookRunner
from lib.assistant.playbooks import PlaybookState
from lib.assistant.preprocessor import PendingOp, PendingOpType, is_orphan_step_command, preprocess
from lib.assistant.resolver import EntityKind, ResolveStatus
from lib.assistant.telemetry import Telemetry
from lib.assistant.tools import execute_tool
from lib.background_tasks import get_task_manager
from lib.state_store import StateStore

logger = logging.getLogger(__name__)

LOW_CONFIDENCE_TEXT = (
    "I'm not sure what you need. Could you rephrase? For example:\n"
    '• "Create a task called Review budget"\n'
    '• "Show my overdue tasks"\n'
    '• "Who missed check-in?"'
)
ORPHAN_STEP_TEXT = (
    "Nothing to advance, no active playbook or pending action. "
    'Try a command like "weekly review" or "create task".'
)
PLAYBOOK_CANCELLED_TEXT = "Playbook cancelled. What else can I help with?"
CANCELLED_TEXT = "Cancelled. What else can I help with?"

# Missing-field names whose value lands under a different tool parameter
_FIELD_PARAMS = {"programme_status": "new_status"}

# Fields a user may answer with "skip"
_OPTIONAL_REFERENCES = {("create_task", "programme_name"), ("create_task", "assignee_name")}


def _submit(func: Callable, *args: Any) -> Any:
    return get_task_manager().submit(func, *args)


def playbook_guard_text(step_number: int) -> str:
    return (
        f"I'm in the middle of a playbook (step {step_number}). Here's what you can say:\n\n"
        '"next" or "continue": advance to the next step\n'
        '"skip": skip this step\n'
        '"abort": cancel the entire playbook'
    )


def _clarify(field: str, intent_type: str, example: str | None = None) -> ClarifyInfo:
    return ClarifyInfo(
        waiting_for=field_label(field),
        intent_type=intent_type,
        example=example if example is not None else field_example(field),
    )


class ChatEngine:
    """
    Args:
        store: Domain and pending-state storage.
        classifier: Anything with ``classify(message, page_context, history)``.
        telemetry: Event writer; built on *store* when omitted.
        dispatch: Background submitter for purges and telemetry.
    """

    def __init__(
        self,
        store: StateStore,
        classifier: IntentClassifier | None = None,
        telemetry: Telemetry | None = None,
        dispatch: Callable[..., Any] | None = None,
    ):
        self.store = store
        self.dispatch = dispatch or _submit
        self.classifier = classifier or get_classifier()
        self.telemetry = telemetry or Telemetry(store, self.dispatch)
        self.pending = PendingStore(store)
        self.runner = PlaybookRunner(store, self.pending, self.telemetry)

    # ------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------

    def handle_message(
        self,
        user_id: str,
        message: str,
        page_context: str = "",
        history: list[dict] | None = None,
    ) -> ChatResponse:
        self.telemetry.message_sent(user_id, len(message))
        try:
            self.dispatch(self._purge_stale, user_id)
        except RuntimeError as e:
            # Executor already shut down
            logger.warning("Stale pending purge not scheduled for %s: %s", user_id, e)

        active = self.pending.get_active(user_id)
        pre = preprocess(message, active)

        if active and pre.pending_op:
            return self._handle_pending_op(user_id, active, pre.pending_op)

        if active and active.is_playbook and not active.missing_fields:
            state = PlaybookState.from_dict(active.draft_payload)
            return ChatResponse(text=playbook_guard_text(state.current_step + 1))

        if is_orphan_step_command(message):
            if active:
                self.pending.cancel(active.id)
            return ChatResponse(text=ORPHAN_STEP_TEXT)

        intent = pre.intent or self.classifier.classify(pre.cleaned_message, page_context, history or [])
        self.telemetry.intent_classified(user_id, intent.tool, intent.confidence, intent.source)
        logger.info(
            "Intent %s (confidence %.2f, source %s) for %s",
            intent.tool,
            intent.confidence,
            intent.source,
            user_id,
        )
        return self._dispatch_intent(user_id, intent, active)

    def _dispatch_intent(self, user_id: str, intent: Intent, active: PendingAction | None) -> ChatResponse:
        tool, params = intent.tool, dict(intent.params)
        meta = {"tool": tool, "confidence": intent.confidence}

        if tool in WRITE_TOOLS:
            missing = detect_missing_fields(tool, params)
            if missing:
                if active:
                    self.pending.cancel(active.id)
                follow_up = intent.follow_up_question or follow_up_question(missing[0])
                self.pending.create(user_id, tool, params, missing, follow_up)
                return ChatResponse(text=follow_up, clarify=_clarify(missing[0], tool), meta=meta)

        if tool == "run_playbook":
            if active:
                self.pending.cancel(active.id)
            return self.runner.initialize(user_id, params.get("playbook_id", ""), params.get("target_name"))

        if intent.confidence < config.LOW_CONFIDENCE_FLOOR and tool not in WRITE_TOOLS:
            return ChatResponse(text=LOW_CONFIDENCE_TEXT, meta=meta)

        if active:
            self.pending.cancel(active.id)
        return self._run_and_reply(user_id, tool, params, meta)

    # ------------------------------------------------------------
    # Tool execution
    # ------------------------------------------------------------

    def _run_tool(self, user_id: str, tool: str, params: dict) -> ToolResult:
        started = time.monotonic()
        result = execute_tool(tool, self.store, user_id, params)
        duration_ms = int((time.monotonic() - started) * 1000)
        self.telemetry.tool_executed(user_id, tool, duration_ms, success=True)
        return result

    def _run_and_reply(self, user_id: str, tool: str, params: dict, meta: dict, prefix: str = "") -> ChatResponse:
        """
        Run *tool* and persist what its result waits on.

        A ``clarify_field`` re-enters the missing-field flow for that field; an
        action preview becomes the pending record a correction can re-preview.
        """
        result = self._run_tool(user_id, tool, params)

        if result.clarify_field:
            field = result.clarify_field
            draft = {k: v for k, v in params.items() if k != _FIELD_PARAMS.get(field, field)}
            self.pending.create(user_id, tool, draft, [field], result.text)
            example = result.items[0].label if result.items else None
            return ChatResponse(
                text=prefix + result.text,
                items=result.items,
                clarify=_clarify(field, tool, example),
                meta=meta,
            )

        if result.action:
            self.pending.create(user_id, tool, params, [], None)
            self.telemetry.action_previewed(user_id, result.action.action_type)

        return ChatResponse(text=prefix + result.text, items=result.items, action=result.action, meta=meta)

    # ------------------------------------------------------------
    # Pending operations
    # ------------------------------------------------------------

    def _handle_pending_op(self, user_id: str, active: PendingAction, op: PendingOp) -> ChatResponse:
        if op.type == PendingOpType.CANCEL:
            self.pending.cancel(active.id)
            if active.is_playbook:
                self._record_abort(user_id, active)
                return ChatResponse(text=PLAYBOOK_CANCELLED_TEXT)
            return ChatResponse(text=CANCELLED_TEXT)

        if op.type == PendingOpType.PLAYBOOK_ABORT:
            self.pending.cancel(active.id)
            self._record_abort(user_id, active)
            return ChatResponse(text=PLAYBOOK_CANCELLED_TEXT)

        if active.is_playbook and active.missing_fields:
            # Still waiting on the target; step words and corrections don't apply yet
            if op.type in (PendingOpType.PLAYBOOK_NEXT, PendingOpType.PLAYBOOK_SKIP):
                return ChatResponse(
                    text=active.follow_up_question or follow_up_question(active.next_field),
                    clarify=_clarify(active.next_field, active.intent_type),
                )
            if op.type == PendingOpType.CORRECTION:
                value = next(iter(op.corrections.values()), "")
                return self._fill_field(user_id, active, active.next_field, value)

        if op.type == PendingOpType.PLAYBOOK_NEXT:
            return self.runner.handle_step(user_id, active)
        if op.type == PendingOpType.PLAYBOOK_SKIP:
            return self.runner.handle_step(user_id, active, skip=True)

        if active.is_playbook and not active.missing_fields:
            state = PlaybookState.from_dict(active.draft_payload)
            return ChatResponse(text=playbook_guard_text(state.current_step + 1))

        if op.type == PendingOpType.FILL_FIELD:
            return self._fill_field(user_id, active, op.field_name or active.next_field, op.value or "")
        if op.type == PendingOpType.SKIP_FIELD:
            return self._skip_field(user_id, active)
        if op.type == PendingOpType.SKIP_ALL_FIELDS:
            return self._skip_all_fields(user_id, active)
        if op.type == PendingOpType.CORRECTION:
            return self._apply_correction(user_id, active, op.corrections)

        logger.warning("Unhandled pending op %s for %s", op.type, user_id)
        return ChatResponse(text=CANCELLED_TEXT)

    def _record_abort(self, user_id: str, active: PendingAction) -> None:
        state = PlaybookState.from_dict(active.draft_payload)
        self.telemetry.playbook_aborted(user_id, state.playbook_id, state.current_step)

    def _resolve_reference(self, active: PendingAction, field: str, value: str) -> tuple[str | None, ChatResponse | None]:
        """Canonical name for a programme/person reply, or the clarification to send."""
        kind = EntityKind.USER if field == "assignee_name" else EntityKind.PROGRAMME
        verdict = resolver.resolve_entity(self.store, kind, value)
        if verdict.status == ResolveStatus.RESOLVED:
            return verdict.resolved_name, None

        skip_hint = (active.intent_type, field) in _OPTIONAL_REFERENCES
        noun = "team member" if kind == EntityKind.USER else "programme"
        if verdict.status == ResolveStatus.NOT_FOUND:
            text = f'No {noun} found matching "{value}". Try a different name'
            text += ', or say "skip".' if skip_hint else "."
        elif kind == EntityKind.USER:
            text = f'Multiple matches for "{value}". Which one?' + (' Or say "skip".' if skip_hint else "")
        else:
            text = "Did you mean one of these? Type the exact name" + (', or say "skip".' if skip_hint else ".")

        example = verdict.suggestions[0].label if verdict.suggestions else None
        return None, ChatResponse(
            text=text,
            items=verdict.suggestions,
            clarify=_clarify(field, active.intent_type, example),
        )

    def _fill_field(self, user_id: str, active: PendingAction, field: str, raw: str) -> ChatResponse:
        value = normalize_field_value(field, raw)

        if field in ("programme_name", "assignee_name") or (field == "target_name" and active.is_playbook):
            resolved, reply = self._resolve_reference(active, field, value)
            if reply:
                return reply
            value = resolved

        payload = {**active.draft_payload, _FIELD_PARAMS.get(field, field): value}
        remaining = [f for f in active.missing_fields if f != field]

        if remaining:
            follow_up = follow_up_question(remaining[0])
            self.pending.update(
                active.id, draft_payload=payload, missing_fields=remaining, follow_up_question=follow_up
            )
            return ChatResponse(text=follow_up, clarify=_clarify(remaining[0], active.intent_type))

        self.pending.update(active.id, draft_payload=payload, missing_fields=[], follow_up_question=None)
        if active.is_playbook:
            self.pending.cancel(active.id)
            return self.runner.initialize(user_id, payload.get("playbook_id", ""), value)

        return self._complete_draft(user_id, active, payload)

    def _complete_draft(self, user_id: str, active: PendingAction, payload: dict, prefix: str = "") -> ChatResponse:
        """All fields answered: close the draft and run its tool."""
        self.pending.resolve(active.id)
        return self._run_and_reply(
            user_id, active.intent_type, payload, {"tool": active.intent_type, "confidence": 1.0}, prefix
        )

    def _skip_field(self, user_id: str, active: PendingAction) -> ChatResponse:
        skipped = active.next_field
        remaining = active.missing_fields[1:]
        if active.is_playbook:
            # The target cannot be skipped
            self.pending.cancel(active.id)
            return self.runner.initialize(user_id, active.draft_payload.get("playbook_id", ""), None)

        prefix = f"Skipped {field_label(skipped).lower()}. "
        if remaining:
            follow_up = follow_up_question(remaining[0])
            self.pending.update(active.id, missing_fields=remaining, follow_up_question=follow_up)
            return ChatResponse(text=prefix + follow_up, clarify=_clarify(remaining[0], active.intent_type))
        return self._complete_draft(user_id, active, active.draft_payload, prefix)

    def _skip_all_fields(self, user_id: str, active: PendingAction) -> ChatResponse:
        if active.is_playbook:
            return self._skip_field(user_id, active)
        labels = ", ".join(field_label(f).lower() for f in active.missing_fields)
        response = self._complete_draft(user_id, active, active.draft_payload)
        if response.action:
            response.text = f"Skipped {labels}. Here's the preview:"
        else:
            response.text = f"Skipped {labels}. {response.text}"
        return response

    def _apply_correction(self, user_id: str, active: PendingAction, corrections: dict[str, str]) -> ChatResponse:
        payload = {**active.draft_payload, **corrections}
        remaining = [f for f in active.missing_fields if f not in corrections]
        if remaining:
            follow_up = follow_up_question(remaining[0])
            self.pending.update(
                active.id, draft_payload=payload, missing_fields=remaining, follow_up_question=follow_up
            )
            return ChatResponse(
                text=f"Updated. {follow_up}", clarify=_clarify(remaining[0], active.intent_type)
            )
        return self._complete_draft(user_id, active, payload, "Updated. ")

    # ------------------------------------------------------------
    # Background
    # ------------------------------------------------------------

    def _purge_stale(self, user_id: str) -> None:
        try:
            purged = self.pending.purge_stale(user_id)
        except sqlite3.Error as e:
            logger.warning("Stale pending purge failed for %s: %s", user_id, e)
            return
        if purged:
            self.telemetry.pending_cleaned(user_id, purged)

    def reset_session(self, user_id: str) -> int:
        """Cancel every active pending record of *user_id* (panel reopened)."""
        cancelled = self.pending.cancel_all(user_id)
        self.telemetry.pending_cleaned(user_id, cancelled)
        return cancelled
