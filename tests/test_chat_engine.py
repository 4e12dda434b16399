"""
Conversation tests for the chat engine.

Each test drives handle_message() turn by turn against the seeded fixture
DB with the rule-based classifier, the way the panel would.

Covers:
- Missing-field flow: fill, skip, skip all, corrections, reference checks
- Previews never write domain rows
- Cancel, orphan step words, low confidence
- Playbooks through chat: target prompt, steps, guard, abort
"""

from unittest.mock import MagicMock

import pytest

from lib import config
from lib.assistant.chat import (
    CANCELLED_TEXT,
    LOW_CONFIDENCE_TEXT,
    ORPHAN_STEP_TEXT,
    PLAYBOOK_CANCELLED_TEXT,
    ChatEngine,
)
from lib.assistant.models import Intent
from lib.assistant.telemetry import run_inline
from tests.fixtures.fixture_db import (
    BUDGET_TASK_ID,
    DEMO_AGENDA_TASK_ID,
    ESTHER_ID,
    MANAGER_ID,
    SAMUEL_ID,
    YOUTH_ID,
)


@pytest.fixture
def say(engine):
    """say(user_id, message) -> ChatResponse"""

    def _say(user_id, message, history=None):
        return engine.handle_message(user_id, message, "Dashboard", history)

    return _say


def _audit_actions(store) -> list[str]:
    return [r["action"] for r in store.query("SELECT action FROM audit_logs")]


# =============================================================================
# Missing-field flow
# =============================================================================


class TestCreateTaskConversation:
    def test_field_by_field_to_preview(self, say, engine, store):
        r = say(ESTHER_ID, "create task")
        assert r.text == "What should the task be called?"
        assert r.clarify.waiting_for == "Task title"
        assert r.clarify.intent_type == "create_task"

        r = say(ESTHER_ID, "Review onboarding docs")
        assert r.text.startswith("What priority?")

        r = say(ESTHER_ID, "high")
        assert r.text.startswith("When is it due?")

        r = say(ESTHER_ID, "15/03/2026")
        assert r.text == 'Which programme does this belong to? Or say "skip"'

        r = say(ESTHER_ID, "youth digital")
        assert r.text.startswith("Who should this be assigned to?")

        tasks_before = store.count("tasks")
        r = say(ESTHER_ID, "samuel")
        assert r.text == "Here's the task I'll create:"
        payload = r.action.payload
        assert payload["title"] == "Review onboarding docs"
        assert payload["priority"] == "high"
        assert payload["due_date"] == "2026-03-15"
        assert payload["programme_id"] == YOUTH_ID
        assert payload["assignee_id"] == SAMUEL_ID
        assert store.count("tasks") == tasks_before

        # The preview itself is the pending record a correction can re-run
        active = engine.pending.get_active(ESTHER_ID)
        assert active.intent_type == "create_task"
        assert active.missing_fields == []

    def test_skip_and_skip_all(self, say):
        say(ESTHER_ID, "create task")
        say(ESTHER_ID, "Review onboarding docs")
        say(ESTHER_ID, "high")

        r = say(ESTHER_ID, "skip")
        assert r.text == 'Skipped due date. Which programme does this belong to? Or say "skip"'

        r = say(ESTHER_ID, "skip all")
        assert r.text == "Skipped programme, assignee. Here's the preview:"
        assert r.action.action_type == "create_task"
        assert r.action.payload["priority"] == "high"
        assert r.action.payload["assignee_id"] == ESTHER_ID
        assert r.action.payload["programme_id"] is None

    def test_rename_while_fields_missing(self, say):
        say(ESTHER_ID, "create task")
        say(ESTHER_ID, "Review budget")
        r = say(ESTHER_ID, "rename to Annual budget report")
        assert r.text.startswith("Updated. What priority?")

    def test_correction_re_previews(self, say):
        say(ESTHER_ID, "create task")
        say(ESTHER_ID, "Annual budget report")
        say(ESTHER_ID, "skip all")

        r = say(ESTHER_ID, "no budget in the title")
        assert r.text == "Updated. Here's the task I'll create:"
        assert r.action.payload["title"] == "Annual report"

    def test_unknown_programme_keeps_asking(self, say, engine):
        say(ESTHER_ID, "create task")
        say(ESTHER_ID, "Book venue")
        say(ESTHER_ID, "low")
        say(ESTHER_ID, "skip")

        r = say(ESTHER_ID, "zzqx")
        assert r.text == 'No programme found matching "zzqx". Try a different name, or say "skip".'
        assert r.clarify.waiting_for == "Programme"
        assert engine.pending.get_active(ESTHER_ID).next_field == "programme_name"

    def test_new_command_abandons_draft(self, say, engine):
        say(ESTHER_ID, "create task")
        r = say(ESTHER_ID, "show my tasks")
        assert r.text == "You have 3 tasks:"
        assert engine.pending.get_active(ESTHER_ID) is None

    def test_classifier_follow_up_is_used(self, store):
        classifier = MagicMock()
        classifier.classify.return_value = Intent(
            tool="create_task",
            params={"title": "Budget"},
            confidence=0.9,
            follow_up_question="How urgent is it?",
            source="classifier",
        )
        engine = ChatEngine(store, classifier=classifier, dispatch=run_inline)
        r = engine.handle_message(ESTHER_ID, "make a budget task", "Tasks", [])
        assert r.text == "How urgent is it?"
        assert r.clarify.waiting_for == "Priority"
        classifier.classify.assert_called_once_with("make a budget task", "Tasks", [])


# =============================================================================
# Task status
# =============================================================================


class TestTaskStatusConversation:
    def test_mark_done_preview(self, say):
        r = say(ESTHER_ID, "mark review q1 budget as done")
        assert r.action.action_type == "update_task_status"
        assert r.action.title == "Review Q1 budget → Done"
        assert r.action.payload == {"task_id": BUDGET_TASK_ID, "new_status": "done"}
        assert r.meta == {"tool": "update_task_status", "confidence": 0.7}

    def test_tie_then_pick(self, say):
        r = say(ESTHER_ID, "mark weekly demo as done")
        assert r.text == 'Found 2 tasks matching "weekly demo". Which one?'
        assert r.clarify.waiting_for == "Task name"
        assert r.clarify.example in ("Weekly demo notes", "Weekly demo agenda")

        r = say(ESTHER_ID, "Weekly demo agenda")
        assert r.action.payload == {"task_id": DEMO_AGENDA_TASK_ID, "new_status": "done"}

    def test_member_cannot_pause_programme(self, say, engine):
        r = say(ESTHER_ID, "pause youth digital skills programme")
        assert r.text == (
            "You don't have permission to update programme status. Only managers and above can do this."
        )
        assert r.action is None
        assert engine.pending.get_active(ESTHER_ID) is None

    def test_manager_pause_preview(self, say):
        r = say(MANAGER_ID, "pause youth digital skills programme")
        assert r.action.title == "Youth Digital Skills → Paused"

    def test_invalid_programme_status_asks_for_programme_status(self, store):
        classifier = MagicMock()
        classifier.classify.return_value = Intent(
            tool="update_programme_status",
            params={"programme_name": "Youth Digital Skills", "new_status": "closed"},
            confidence=0.9,
            source="classifier",
        )
        engine = ChatEngine(store, classifier=classifier, dispatch=run_inline)

        r = engine.handle_message(MANAGER_ID, "set youth digital skills to closed", "Programmes", [])
        assert r.text.startswith('"closed" isn\'t a valid programme status.')
        assert r.clarify.waiting_for == "Programme status"
        assert engine.pending.get_active(MANAGER_ID).missing_fields == ["programme_status"]

        # Programme statuses are not folded into task statuses ("completed" is not "done")
        r = engine.handle_message(MANAGER_ID, "completed", "Programmes", [])
        assert r.action.action_type == "update_programme_status"
        assert r.action.payload["new_status"] == "completed"
        assert r.action.title == "Youth Digital Skills → Completed"
        classifier.classify.assert_called_once()


# =============================================================================
# Replies without tools
# =============================================================================


class TestShortReplies:
    def test_chip_read(self, say, store):
        r = say(ESTHER_ID, "my overdue")
        assert r.text == "You have 1 overdue task:"
        assert r.items[0].detail == "high · due 15 Jan · Youth Digital Skills"
        actions = _audit_actions(store)
        assert "assistant_message_sent" in actions
        assert "assistant_intent_classified" in actions
        assert "assistant_tool_executed" in actions

    def test_low_confidence(self, say):
        assert say(ESTHER_ID, "blah blah").text == LOW_CONFIDENCE_TEXT

    def test_cancel_without_pending(self, say):
        assert say(ESTHER_ID, "cancel").text == "Nothing to cancel. What can I help with?"

    def test_cancel_draft(self, say, engine):
        say(ESTHER_ID, "create task")
        assert say(ESTHER_ID, "never mind").text == CANCELLED_TEXT
        assert engine.pending.get_active(ESTHER_ID) is None

        # The cancelled draft does not come back on the next command
        r = say(ESTHER_ID, "show my tasks")
        assert r.text == "You have 3 tasks:"
        assert r.clarify is None
        assert engine.pending.get_active(ESTHER_ID) is None

    def test_reply_after_executor_shutdown(self, store, fallback_classifier, telemetry, caplog):
        def closed(func, *args):
            raise RuntimeError("cannot schedule new futures after shutdown")

        engine = ChatEngine(store, classifier=fallback_classifier, telemetry=telemetry, dispatch=closed)
        r = engine.handle_message(ESTHER_ID, "show my tasks", "Dashboard", [])
        assert r.text == "You have 3 tasks:"
        assert "Stale pending purge not scheduled" in caplog.text

    def test_orphan_step_word(self, say):
        assert say(ESTHER_ID, "next").text == ORPHAN_STEP_TEXT

    def test_reset_session(self, say, engine):
        say(ESTHER_ID, "create task")
        assert engine.reset_session(ESTHER_ID) == 1
        assert engine.pending.get_active(ESTHER_ID) is None
        assert engine.reset_session(ESTHER_ID) == 0


# =============================================================================
# Playbooks through chat
# =============================================================================


class TestPlaybookConversation:
    def test_close_programme(self, say, engine, store):
        r = say(MANAGER_ID, "close programme")
        assert r.text == 'Starting "Close Programme". Which programme?'
        assert r.clarify.waiting_for == "Programme name"

        r = say(MANAGER_ID, "Youth Digital Skills")
        assert r.text.startswith('"Youth Digital Skills" has 3 tasks still open')
        assert r.playbook_progress.current_step == 0

        r = say(MANAGER_ID, "next")
        assert r.text.startswith("Mark all 3 open tasks as done?")
        assert r.action.action_type == "playbook_step"

        r = say(MANAGER_ID, "confirm")
        assert r.text.startswith("✓ 3 tasks marked as done.\n\n")

        r = say(MANAGER_ID, "confirm")
        assert '✓ Programme "Youth Digital Skills" closed.' in r.text
        assert r.playbook_progress.completed == [0, 1, 2, 3]

        assert store.get("programmes", YOUTH_ID)["status"] == "completed"
        assert store.get("tasks", BUDGET_TASK_ID)["status"] == "done"
        assert engine.pending.get_active(MANAGER_ID) is None

    def test_ambiguous_target_then_exact_name(self, say, engine, monkeypatch):
        monkeypatch.setattr(config, "RESOLVE_CONFIDENT_SCORE", 0.99)
        say(MANAGER_ID, "close programme")

        r = say(MANAGER_ID, "it")
        assert r.text == "Did you mean one of these? Type the exact name."
        assert [i.label for i in r.items] == ["Sabitek Pilot", "Youth Digital Skills", "Community Health Outreach"]
        assert r.clarify.waiting_for == "Programme name"
        assert r.clarify.example == "Sabitek Pilot"
        assert engine.pending.get_active(MANAGER_ID).missing_fields == ["target_name"]

        r = say(MANAGER_ID, "Sabitek Pilot")
        assert r.text.startswith('"Sabitek Pilot" has 1 task still open')
        assert r.playbook_progress.playbook_name == "Close Programme"
        active = engine.pending.get_active(MANAGER_ID)
        assert active.missing_fields == []
        assert active.draft_payload["target_name"] == "Sabitek Pilot"

    def test_step_words_wait_for_target(self, say):
        r = say(MANAGER_ID, "close programme zzqx")
        assert r.text == 'No programme found matching "zzqx". Here are the available programmes:'

        r = say(MANAGER_ID, "next")
        assert r.text == "Which programme?"
        assert r.clarify.waiting_for == "Programme name"

    def test_weekly_review(self, say):
        r = say(MANAGER_ID, "weekly review")
        assert r.text.startswith("2 overdue tasks across your team:")

        assert say(MANAGER_ID, "skip").text.startswith("1 blocked task:")
        assert say(MANAGER_ID, "next").text.startswith("2 team members haven't checked in:")

        r = say(MANAGER_ID, "next")
        assert r.text.startswith("✓ Weekly review complete for 2 team members.")
        assert r.playbook_progress.skipped == [0]
        assert r.playbook_progress.completed == [1, 2, 3]

    def test_guard_during_playbook(self, say, engine):
        say(MANAGER_ID, "weekly review")
        r = say(MANAGER_ID, "show my tasks")
        assert r.text.startswith("I'm in the middle of a playbook (step 1).")
        assert engine.pending.get_active(MANAGER_ID).is_playbook

    def test_abort(self, say, engine, store):
        say(MANAGER_ID, "weekly review")
        assert say(MANAGER_ID, "abort").text == PLAYBOOK_CANCELLED_TEXT
        assert engine.pending.get_active(MANAGER_ID) is None
        assert "assistant_playbook_aborted" in _audit_actions(store)

    def test_member_cannot_start(self, say):
        assert say(ESTHER_ID, "weekly review").text == "You don't have permission to run this playbook."
