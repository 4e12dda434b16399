"""
Tests for the deterministic pre-processor.

Covers:
- Cancel words with and without pending state
- Playbook step control
- Field skip / skip-all / fill
- Name corrections
- Chip commands and orphan step words
"""

import pytest

from lib.assistant.pending import PendingAction
from lib.assistant.preprocessor import (
    PendingOp,
    PendingOpType,
    is_orphan_step_command,
    is_skip_word,
    looks_like_new_command,
    preprocess,
    strip_noise_words,
)


def _draft(intent_type="create_task", missing=None, **payload) -> PendingAction:
    return PendingAction(
        id="p-1",
        user_id="u-1",
        intent_type=intent_type,
        draft_payload=payload,
        missing_fields=list(missing or []),
    )


def _playbook(missing=None) -> PendingAction:
    return _draft("run_playbook", missing, playbook_id="weekly_review")


# =============================================================================
# Cancel
# =============================================================================


class TestCancel:
    @pytest.mark.parametrize("word", ["cancel", "Stop", "never mind", "forget it", "nvm"])
    def test_cancel_with_pending(self, word):
        result = preprocess(word, _draft(missing=["title"]))
        assert result.pending_op.type == PendingOpType.CANCEL
        assert result.intent is None

    def test_cancel_without_pending_is_an_answer(self):
        result = preprocess("cancel", None)
        assert result.pending_op is None
        assert result.intent.tool == "general_answer"
        assert result.intent.params == {"topic": "cancelled"}
        assert result.intent.source == "preprocessor"


# =============================================================================
# Playbook control
# =============================================================================


class TestPlaybookControl:
    @pytest.mark.parametrize(
        "message,expected",
        [
            ("abort", PendingOpType.PLAYBOOK_ABORT),
            ("stop playbook", PendingOpType.PLAYBOOK_ABORT),
            ("skip", PendingOpType.PLAYBOOK_SKIP),
            ("skip step", PendingOpType.PLAYBOOK_SKIP),
            ("next", PendingOpType.PLAYBOOK_NEXT),
            ("go ahead", PendingOpType.PLAYBOOK_NEXT),
            ("Confirm", PendingOpType.PLAYBOOK_NEXT),
        ],
    )
    def test_step_words(self, message, expected):
        assert preprocess(message, _playbook()).pending_op.type == expected

    def test_step_words_ignored_without_playbook(self):
        result = preprocess("abort", _draft(missing=[]))
        assert result.pending_op is None

    def test_target_answer_is_a_fill(self):
        result = preprocess("Youth Digital Skills", _playbook(missing=["target_name"]))
        assert result.pending_op.type == PendingOpType.FILL_FIELD
        assert result.pending_op.field_name == "target_name"


# =============================================================================
# Missing fields
# =============================================================================


class TestFieldOps:
    @pytest.mark.parametrize("word", ["skip", "no", "none", "-", "n/a", "next", "skip this"])
    def test_skip_field(self, word):
        result = preprocess(word, _draft(missing=["due_date"]))
        assert result.pending_op.type == PendingOpType.SKIP_FIELD

    @pytest.mark.parametrize("phrase", ["skip all", "skip the rest", "skip remaining", "Skip everything"])
    def test_skip_all(self, phrase):
        result = preprocess(phrase, _draft(missing=["due_date", "programme_name"]))
        assert result.pending_op.type == PendingOpType.SKIP_ALL_FIELDS

    def test_ops_do_not_share_corrections(self):
        first = PendingOp(PendingOpType.CANCEL)
        first.corrections["title"] = "Budget"
        assert PendingOp(PendingOpType.CANCEL).corrections == {}
        assert PendingOp(PendingOpType.SKIP_FIELD).field_name is None

    def test_fill_uses_first_missing_field(self):
        result = preprocess("  Review onboarding docs ", _draft(missing=["title", "priority"], title=""))
        op = result.pending_op
        assert op.type == PendingOpType.FILL_FIELD
        assert op.field_name == "title"
        assert op.value == "Review onboarding docs"

    def test_new_command_is_not_a_fill(self):
        result = preprocess("show my tasks", _draft(missing=["priority"]))
        assert result.pending_op is None
        assert result.intent.tool == "get_my_tasks"

    def test_skip_word_without_missing_fields_is_not_a_skip(self):
        result = preprocess("none", _draft(missing=[]))
        assert result.pending_op is None


# =============================================================================
# Corrections
# =============================================================================


class TestCorrections:
    def test_remove_word_from_title(self):
        pending = _draft(missing=[], title="Annual budget report")
        op = preprocess("no budget in the title", pending).pending_op
        assert op.type == PendingOpType.CORRECTION
        assert op.corrections == {"title": "Annual report"}

    def test_rename(self):
        pending = _draft(missing=["priority"], title="Quarterly report")
        op = preprocess('rename to "Annual report"', pending).pending_op
        assert op.corrections == {"title": "Annual report"}

    def test_programme_uses_name_field(self):
        pending = _draft("create_programme", missing=[], name="Youth Tech")
        op = preprocess("call it Youth Tech Academy", pending).pending_op
        assert op.corrections == {"name": "Youth Tech Academy"}

    def test_no_prefix_removes_fragment(self):
        pending = _draft(missing=[], title="Review draft budget")
        op = preprocess("no draft", pending).pending_op
        assert op.corrections == {"title": "Review budget"}

    def test_actually(self):
        pending = _draft(missing=[], title="Plan")
        op = preprocess("actually Plan the kickoff", pending).pending_op
        assert op.corrections == {"title": "Plan the kickoff"}


# =============================================================================
# Chips and helpers
# =============================================================================


class TestChips:
    def test_chip_is_case_insensitive(self):
        result = preprocess("My Overdue", None)
        assert result.intent.tool == "get_my_overdue_tasks"
        assert result.intent.confidence == 1.0

    def test_playbook_chip(self):
        result = preprocess("close programme", None)
        assert result.intent.tool == "run_playbook"
        assert result.intent.params == {"playbook_id": "close_programme", "target_name": ""}

    def test_chip_params_are_copied(self):
        first = preprocess("create task", None)
        first.intent.params["title"] = "mutated"
        assert preprocess("create task", None).intent.params == {"title": ""}

    def test_unmatched_is_normalized(self):
        result = preprocess("  find   the   budget  ", None)
        assert result.intent is None
        assert result.pending_op is None
        assert result.cleaned_message == "find the budget"


class TestHelpers:
    @pytest.mark.parametrize("message", ["next", "OK", "skip step", "abort", "go ahead"])
    def test_orphan_step_words(self, message):
        assert is_orphan_step_command(message)

    def test_sentence_is_not_orphan(self):
        assert not is_orphan_step_command("next week's tasks")

    def test_skip_word(self):
        assert is_skip_word("skip")
        assert not is_skip_word("skipper")

    def test_new_command(self):
        assert looks_like_new_command("create a task")
        assert not looks_like_new_command("high")

    def test_strip_noise_words(self):
        assert strip_noise_words("the status of my Budget task") == "Budget"
