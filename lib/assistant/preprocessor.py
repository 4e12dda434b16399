"""
Deterministic pre-processor.

Runs before any external classification and performs no I/O. In order:

  1. Cancel words
  2. Playbook step control (abort / skip / next) while a playbook runs
  3. Field skip, corrections and field fills while fields are missing
  4. Exact chip commands

Anything unmatched falls through with a whitespace-normalized message.
"""

import re
from dataclasses import dataclass, field
from enum import StrEnum

from lib.assistant.models import Intent
from lib.assistant.pending import PendingAction, PendingStatus


class PendingOpType(StrEnum):
    FILL_FIELD = "fill_field"
    CORRECTION = "correction"
    SKIP_FIELD = "skip_field"
    SKIP_ALL_FIELDS = "skip_all_fields"
    CANCEL = "cancel"
    PLAYBOOK_NEXT = "playbook_next"
    PLAYBOOK_SKIP = "playbook_skip"
    PLAYBOOK_ABORT = "playbook_abort"


@dataclass
class PendingOp:
    type: PendingOpType
    field_name: str | None = None
    value: str | None = None
    corrections: dict[str, str] = field(default_factory=dict)


@dataclass
class PreProcessResult:
    intent: Intent | None = None
    pending_op: PendingOp | None = None
    cleaned_message: str = ""
    original_message: str = ""


_CANCEL_RE = re.compile(r"^(cancel|stop|never\s*mind|forget\s*it|nvm)$", re.IGNORECASE)

_PLAYBOOK_ABORT_RE = re.compile(r"^(abort|quit|exit|stop\s+playbook)$", re.IGNORECASE)
_PLAYBOOK_SKIP_RE = re.compile(r"^(skip\s*(step|this)?|pass)$", re.IGNORECASE)
_PLAYBOOK_NEXT_RE = re.compile(
    r"^(next|continue|ok|okay|yes|go|go\s*ahead|proceed|sure|yep|yeah|y|confirm|confirmed)$",
    re.IGNORECASE,
)

_SKIP_WORD_RE = re.compile(r"^(skip|no|none|default|-|n/a|na|pass|next)$")
_SKIP_PHRASE_RE = re.compile(r"^skip\s+(all|the\s+rest|remaining|everything|this|it)", re.IGNORECASE)
_SKIP_ALL_RE = re.compile(r"^skip\s+(all|the\s+rest|remaining|everything)", re.IGNORECASE)

_QUOTE = "[\"“”]?"
_REMOVE_WORD_RE = re.compile(
    rf"(?:no|remove|delete|drop|without)\s+(?:the\s+)?(?:word\s+)?{_QUOTE}(.+?){_QUOTE}"
    r"\s+(?:in|from)\s+(?:the\s+)?(?:name|title)",
    re.IGNORECASE,
)
_RENAME_RE = re.compile(
    r"(?:rename\s+(?:it\s+)?to|change\s+(?:the\s+)?(?:name|title)\s+to|call\s+it"
    rf"|title\s+should\s+be|name\s+should\s+be)\s+{_QUOTE}(.+?){_QUOTE}\s*$",
    re.IGNORECASE,
)
_ACTUALLY_RE = re.compile(rf"^(?:actually|i\s+meant?)\s+{_QUOTE}(.+?){_QUOTE}\s*$", re.IGNORECASE)

# Messages starting like this are new requests, not answers to a question
_COMMAND_PATTERNS = [
    re.compile(p)
    for p in (
        r"^create\s",
        r"^make\s",
        r"^add\s",
        r"^show\s",
        r"^find\s",
        r"^search\s",
        r"^list\s",
        r"^get\s",
        r"^mark\s",
        r"^change\s+status",
        r"^update\s+status",
        r"^who\s",
        r"^what\s",
        r"^where\s",
        r"^how\s",
        r"^my\s+overdue",
        r"^my\s+tasks",
        r"^blockers",
        r"^check-?ins?$",
        r"^navigate",
        r"^go\s+to",
        r"^team\s",
        r"^pause\s",
        r"^activate\s",
        r"^archive\s",
        r"^close\s",
        r"^start\s",
        r"^launch\s",
        r"^weekly\s+review",
        r"^weekly\s+manager",
        r"^run\s",
    )
]


def _chip(tool: str, confidence: float = 1.0, **params) -> Intent:
    return Intent(tool=tool, params=params, confidence=confidence)


# Exact full-message shortcuts (quick-action chips and common phrasings)
CHIP_MAP: dict[str, Intent] = {
    "my overdue": _chip("get_my_overdue_tasks"),
    "show my overdue tasks": _chip("get_my_overdue_tasks"),
    "show my overdue": _chip("get_my_overdue_tasks"),
    "overdue tasks": _chip("get_my_overdue_tasks"),
    "overdue": _chip("get_my_overdue_tasks", 0.9),
    "check-ins": _chip("get_checkin_status"),
    "checkins": _chip("get_checkin_status"),
    "check ins": _chip("get_checkin_status"),
    "who missed check-in": _chip("get_checkin_status"),
    "who missed check-in this week": _chip("get_checkin_status"),
    "who missed checkin": _chip("get_checkin_status"),
    "who missed check in": _chip("get_checkin_status"),
    "blockers": _chip("get_blockers"),
    "what is blocking my team": _chip("get_blockers"),
    "what is blocking my team?": _chip("get_blockers"),
    "blocked tasks": _chip("get_blockers"),
    "my tasks": _chip("get_my_tasks"),
    "show my tasks": _chip("get_my_tasks"),
    "create task": _chip("create_task", title=""),
    "create a task": _chip("create_task", title=""),
    "create programme": _chip("create_programme", name=""),
    "create a programme": _chip("create_programme", name=""),
    "create program": _chip("create_programme", name=""),
    "team overdue": _chip("get_team_overdue"),
    "team summary": _chip("get_team_summary"),
    "how is my team doing": _chip("get_team_summary"),
    "how is my team doing?": _chip("get_team_summary"),
    "weekly review": _chip("run_playbook", playbook_id="weekly_review"),
    "weekly manager review": _chip("run_playbook", playbook_id="weekly_review"),
    "close programme": _chip("run_playbook", playbook_id="close_programme", target_name=""),
    "start programme": _chip("run_playbook", playbook_id="start_programme", target_name=""),
}

_ORPHAN_STEP_RE = re.compile(
    r"^(next|continue|ok|okay|confirm|skip|skip step|pass|proceed|go ahead|abort)$",
    re.IGNORECASE,
)

_NOISE_RE = re.compile(
    r"\b(task|tasks|the|a|an|my|our|status|of|please|show|find|search|get|list|all)\b",
    re.IGNORECASE,
)


def preprocess(message: str, pending: PendingAction | None) -> PreProcessResult:
    """Classify *message* deterministically against the active pending state."""
    original = message.strip()
    lower = original.lower()
    cleaned = re.sub(r"\s+", " ", original).strip()

    def result(**kwargs) -> PreProcessResult:
        return PreProcessResult(cleaned_message=cleaned, original_message=original, **kwargs)

    if _CANCEL_RE.match(lower):
        if pending:
            return result(pending_op=PendingOp(PendingOpType.CANCEL))
        return result(
            intent=Intent(
                tool="general_answer",
                params={"topic": "cancelled"},
                confidence=1.0,
                source="preprocessor",
            )
        )

    if pending and pending.status == PendingStatus.PENDING:
        if pending.is_playbook:
            if _PLAYBOOK_ABORT_RE.match(lower):
                return result(pending_op=PendingOp(PendingOpType.PLAYBOOK_ABORT))
            if _PLAYBOOK_SKIP_RE.match(lower):
                return result(pending_op=PendingOp(PendingOpType.PLAYBOOK_SKIP))
            if _PLAYBOOK_NEXT_RE.match(lower):
                return result(pending_op=PendingOp(PendingOpType.PLAYBOOK_NEXT))

        if pending.missing_fields and is_skip_word(lower):
            if _SKIP_ALL_RE.match(lower.strip()):
                return result(pending_op=PendingOp(PendingOpType.SKIP_ALL_FIELDS))
            return result(pending_op=PendingOp(PendingOpType.SKIP_FIELD))

        correction = detect_correction(original, lower, pending)
        if correction:
            return result(pending_op=correction)

        if pending.missing_fields and not looks_like_new_command(lower):
            return result(
                pending_op=PendingOp(
                    PendingOpType.FILL_FIELD, field_name=pending.missing_fields[0], value=original
                )
            )

    chip = CHIP_MAP.get(lower)
    if chip:
        return result(
            intent=Intent(
                tool=chip.tool,
                params=dict(chip.params),
                confidence=chip.confidence,
                source="preprocessor",
            )
        )

    return result()


def name_field_for(intent_type: str) -> str:
    """The primary name-like draft field for an intent."""
    return "name" if intent_type == "create_programme" else "title"


def _remove_word(text: str, word: str) -> str:
    stripped = re.sub(rf"\b{re.escape(word)}\b", "", text, flags=re.IGNORECASE)
    return re.sub(r"\s+", " ", stripped).strip()


def detect_correction(original: str, lower: str, pending: PendingAction) -> PendingOp | None:
    """Recognize edits to the draft's name field ("no X in the name", "rename to X", ...)."""
    name_field = name_field_for(pending.intent_type)
    current = str(pending.draft_payload.get(name_field) or "")

    def correction(value: str) -> PendingOp:
        return PendingOp(PendingOpType.CORRECTION, corrections={name_field: value})

    m = _REMOVE_WORD_RE.search(lower)
    if m:
        return correction(_remove_word(current, m.group(1).strip()))

    m = _RENAME_RE.search(original)
    if m:
        return correction(m.group(1).strip())

    if lower.startswith("no ") and current:
        after_no = original[3:].strip()
        if after_no and after_no.lower() in current.lower():
            new_name = _remove_word(current, after_no)
            if new_name and new_name != current:
                return correction(new_name)

    m = _ACTUALLY_RE.match(original)
    if m:
        return correction(m.group(1).strip())

    return None


def looks_like_new_command(lower: str) -> bool:
    return any(p.search(lower) for p in _COMMAND_PATTERNS)


def is_skip_word(lower: str) -> bool:
    trimmed = lower.strip()
    return bool(_SKIP_WORD_RE.match(trimmed) or _SKIP_PHRASE_RE.match(trimmed))


def is_orphan_step_command(message: str) -> bool:
    """Step-control words that mean nothing without a running playbook."""
    return bool(_ORPHAN_STEP_RE.match(message.strip()))


def strip_noise_words(query: str) -> str:
    """Drop filler words from a search query."""
    return re.sub(r"\s+", " ", _NOISE_RE.sub("", query)).strip()
