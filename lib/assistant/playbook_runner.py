"""
Playbook runner: the step state machine behind guided workflows.

The run's PlaybookState lives in the user's pending record
(intent_type ``run_playbook``), so every transition is persisted before
the reply goes out and a run survives across requests.
"""

import logging
import sqlite3

from lib import safe_sql
from lib.assistant import playbooks, resolver
from lib.assistant.fields import field_example, field_label
from lib.assistant.models import (
    ActionPreview,
    ChatResponse,
    ClarifyInfo,
    PlaybookProgress,
    ResultItem,
)
from lib.assistant.pending import PLAYBOOK_INTENT, PendingAction, PendingStore
from lib.assistant.playbooks import PlaybookDef, PlaybookState, StepResult, StepType
from lib.assistant.resolver import ResolveStatus
from lib.assistant.telemetry import Telemetry
from lib.assistant.tools.common import get_user_role
from lib.state_store import StateStore

logger = logging.getLogger(__name__)

TARGET_FIELD = "target_name"
TARGET_QUESTION = "Which programme?"
AVAILABLE_PROGRAMMES_SHOWN = 10

CHECK_HINT = '\n\nType "next" to continue, "skip" to skip, or "abort" to cancel.'
ACTION_HINT = '\n\nType "confirm" to execute, "skip" to skip, or "abort" to cancel.'


class PlaybookRunner:
    def __init__(self, store: StateStore, pending: PendingStore, telemetry: Telemetry):
        self.store = store
        self.pending = pending
        self.telemetry = telemetry

    # ------------------------------------------------------------
    # Start
    # ------------------------------------------------------------

    def _ask_target(self, user_id: str, playbook: PlaybookDef, text: str, items=None) -> ChatResponse:
        self.pending.create(
            user_id, PLAYBOOK_INTENT, {"playbook_id": playbook.id}, [TARGET_FIELD], TARGET_QUESTION
        )
        return ChatResponse(
            text=text,
            items=items or [],
            clarify=ClarifyInfo(
                waiting_for=field_label(TARGET_FIELD),
                intent_type=PLAYBOOK_INTENT,
                example=field_example(TARGET_FIELD),
            ),
        )

    def initialize(self, user_id: str, playbook_id: str, target_name: str | None = None) -> ChatResponse:
        """Start *playbook_id*, asking for or resolving its target first."""
        playbook = playbooks.get_playbook(playbook_id)
        if not playbook:
            return ChatResponse(text=f'Unknown playbook "{playbook_id}".')

        if get_user_role(self.store, user_id) not in playbook.required_roles:
            return ChatResponse(text="You don't have permission to run this playbook.")

        state = PlaybookState(playbook_id=playbook.id)
        target_name = (target_name or "").strip()

        if playbook.requires_target:
            if not target_name:
                return self._ask_target(user_id, playbook, f'Starting "{playbook.name}". {TARGET_QUESTION}')

            verdict = resolver.resolve_entity(self.store, playbook.requires_target, target_name)
            if verdict.status == ResolveStatus.NOT_FOUND:
                available = self.store.query(
                    safe_sql.select("programmes", "id, name, status", order_by="name, id", suffix="LIMIT ?"),
                    [AVAILABLE_PROGRAMMES_SHOWN],
                )
                return self._ask_target(
                    user_id,
                    playbook,
                    f'No programme found matching "{target_name}". Here are the available programmes:',
                    [ResultItem(label=p["name"], detail=p["status"], href=f"/programmes/{p['id']}") for p in available],
                )
            if verdict.status == ResolveStatus.AMBIGUOUS:
                return self._ask_target(user_id, playbook, "Did you mean one of these?", verdict.suggestions)

            state.target_id = verdict.resolved_id
            state.target_name = verdict.resolved_name
            state.context = {"target_id": state.target_id, "target_name": state.target_name}

        record = self.pending.create(user_id, PLAYBOOK_INTENT, state.to_dict(), [], None)
        self.telemetry.playbook_started(user_id, playbook.id, state.target_name)
        logger.info("Playbook %s started for %s (target %s)", playbook.id, user_id, state.target_id)
        return self.run_current_step(user_id, record.id, playbook, state)

    # ------------------------------------------------------------
    # Advance / skip
    # ------------------------------------------------------------

    def handle_step(self, user_id: str, record: PendingAction, skip: bool = False) -> ChatResponse:
        """Apply "next" (or "skip") to the current step and present what follows."""
        state = PlaybookState.from_dict(record.draft_payload)
        playbook = playbooks.get_playbook(state.playbook_id)
        if not playbook:
            self.pending.cancel(record.id)
            logger.warning("Pending %s references unknown playbook %r", record.id, state.playbook_id)
            return ChatResponse(text="Playbook not found. State cleared.")

        index = state.current_step
        if index >= len(playbook.steps):
            self.pending.cancel(record.id)
            return ChatResponse(text="Playbook complete.")

        step = playbook.steps[index]
        prefix = ""
        if skip:
            self._mark(state.skipped, state, index)
        elif step.type == StepType.ACTION:
            result = self._execute(user_id, step, state)
            if not result.success:
                return ChatResponse(
                    text=f'Step failed: {result.message}. Try again or say "skip" to skip this step.',
                    playbook_progress=self.build_progress(playbook, state),
                )
            state.context.update(result.context)
            self._mark(state.completed, state, index)
            self.telemetry.playbook_step_completed(user_id, playbook.id, step.id)
            prefix = f"✓ {result.message}\n\n"
        else:
            self._mark(state.completed, state, index)
            self.telemetry.playbook_step_completed(user_id, playbook.id, step.id)

        state.current_step += 1
        if state.current_step >= len(playbook.steps):
            self._complete(user_id, record.id, playbook, state)
            return ChatResponse(text=f"{prefix}Playbook complete!")

        self.pending.update(record.id, draft_payload=state.to_dict())
        response = self.run_current_step(user_id, record.id, playbook, state)
        response.text = prefix + response.text
        return response

    def _execute(self, user_id: str, step: playbooks.Step, state: PlaybookState) -> StepResult:
        try:
            return step.execute(self.store, user_id, state)
        except (sqlite3.Error, ValueError, KeyError) as e:
            logger.error("Playbook step %s failed: %s", step.id, e, exc_info=True)
            return StepResult(success=False, message="the change could not be saved")

    @staticmethod
    def _mark(bucket: list[int], state: PlaybookState, index: int) -> None:
        # A step is recorded once, in exactly one of completed/skipped
        if index not in state.completed and index not in state.skipped:
            bucket.append(index)

    def _complete(self, user_id: str, pending_id: str, playbook: PlaybookDef, state: PlaybookState) -> None:
        self.pending.resolve(pending_id)
        self.telemetry.playbook_completed(user_id, playbook.id, len(state.completed), len(state.skipped))
        logger.info("Playbook %s completed for %s", playbook.id, user_id)

    # ------------------------------------------------------------
    # Present
    # ------------------------------------------------------------

    def run_current_step(
        self, user_id: str, pending_id: str, playbook: PlaybookDef, state: PlaybookState
    ) -> ChatResponse:
        """
        Present the current step.

        Auto-skipping steps are passed over without waiting for input and a
        summary step completes the run inline. Bounded by the step count.
        """
        while state.current_step < len(playbook.steps):
            index = state.current_step
            step = playbook.steps[index]
            presentation = step.present(self.store, user_id, state)
            state.context.update(presentation.context)

            if presentation.auto_skip:
                logger.debug("Playbook %s auto-skipping step %s", playbook.id, step.id)
                self._mark(state.skipped, state, index)
                state.current_step += 1
                self.pending.update(pending_id, draft_payload=state.to_dict())
                continue

            if step.type == StepType.SUMMARY:
                self._mark(state.completed, state, index)
                self.pending.update(pending_id, draft_payload=state.to_dict())
                self._complete(user_id, pending_id, playbook, state)
                return ChatResponse(
                    text=presentation.text,
                    items=presentation.items,
                    playbook_progress=self.build_progress(playbook, state),
                )

            self.pending.update(pending_id, draft_payload=state.to_dict())

            text = presentation.text
            action = None
            if step.type == StepType.ACTION:
                if presentation.fields:
                    action = ActionPreview(
                        action_type="playbook_step",
                        title=step.title,
                        fields=presentation.fields,
                        payload={"step_id": step.id, "playbook_id": playbook.id},
                    )
                text += ACTION_HINT
            else:
                if presentation.fields:
                    text += "\n\n" + "\n".join(f"{f.label}: {f.value}" for f in presentation.fields)
                text += CHECK_HINT

            return ChatResponse(
                text=text,
                items=presentation.items,
                action=action,
                playbook_progress=self.build_progress(playbook, state),
            )

        # Every remaining step auto-skipped
        self._complete(user_id, pending_id, playbook, state)
        return ChatResponse(text="Playbook complete!", playbook_progress=self.build_progress(playbook, state))

    @staticmethod
    def build_progress(playbook: PlaybookDef, state: PlaybookState) -> PlaybookProgress:
        if state.current_step < len(playbook.steps):
            step = playbook.steps[state.current_step]
            title, step_type = step.title, str(step.type)
        else:
            title, step_type = "Complete", str(StepType.SUMMARY)
        return PlaybookProgress(
            playbook_name=playbook.name,
            current_step=state.current_step,
            total_steps=len(playbook.steps),
            step_title=title,
            step_type=step_type,
            completed=list(state.completed),
            skipped=list(state.skipped),
        )
