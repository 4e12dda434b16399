"""
Intent classification.

Primary path: one call to the Anthropic Messages API with a fixed
instruction prompt, the recent conversation and the message, under a hard
timeout. Transient failures (timeout, connection, 429, 5xx) are retried
once after a short backoff. Anything else, or exhausted retries, drops to
fallback_classify(): keyword and regex rules over the same tool surface,
which always returns an Intent.

Without ANTHROPIC_API_KEY the classifier is fallback-only.
"""

import json
import logging
import re
import time
from collections.abc import Callable
from typing import Any

import anthropic
import httpx

from lib import config
from lib.assistant.models import Intent

logger = logging.getLogger(__name__)

TOOL_NAMES = (
    "search_tasks",
    "search_programmes",
    "search_users",
    "get_my_overdue_tasks",
    "get_my_tasks",
    "get_checkin_status",
    "get_programme_health",
    "get_blockers",
    "navigate",
    "general_answer",
    "create_task",
    "update_task_status",
    "create_programme",
    "update_programme_status",
    "update_programme_fields",
    "get_team_overdue",
    "get_team_summary",
    "run_playbook",
)

SYSTEM_PROMPT = """You classify messages sent to the operations assistant of a team-management product.
Turn the user's message into exactly one structured tool call. Recent conversation is included for context.

Tools

Read:
- search_tasks: { query?, status?, priority? }
- search_programmes: { query?, status? }
- search_users: { query?, role? }
- get_my_overdue_tasks: {}
- get_my_tasks: { status? }
- get_checkin_status: { week_start? }
- get_programme_health: { programme_name }
- get_blockers: { programme_name? }
- navigate: { destination }
- general_answer: { topic }

Write (these only prepare a preview, the user confirms separately):
- create_task: { title, description?, priority?, due_date?, programme_name?, assignee_name? }
- update_task_status: { task_title, new_status }
- create_programme: { name, description?, status?, start_date?, end_date? }
- update_programme_status: { programme_name, new_status }
- update_programme_fields: { programme_name, update_field, update_value }

Manager insight (manager, admin, super_admin):
- get_team_overdue: {}
- get_team_summary: { programme_name? }

Guided playbooks (manager, admin, super_admin):
- run_playbook: { playbook_id, target_name? }
  playbook_id is one of "close_programme", "start_programme", "weekly_review".
  close_programme and start_programme need target_name (the programme name).

Task statuses: todo, in_progress, pending_review, done, blocked
Programme statuses: draft, active, paused, completed, archived
Priorities: low, medium, high, urgent

Rules
1. Reply with a single JSON object and nothing else. No markdown, no code fences.
2. Choose the one tool that best matches the main request.
3. Use the conversation: if the assistant just asked a question, the message is probably the answer, so complete that action.
4. List required fields the message does not supply in missing_fields and put a question in follow_up_question.
5. create_task titles drop command words (create, task, make, new, add, please, a, the).
   "Create a task to review budget" gives title "Review budget". "Create task called Monthly report" gives title "Monthly report".
6. update_task_status: drop filler such as "task", "the", "a", "status of" from task_title.
7. Handle one action per message. "create X and mark it done" is only create_task.
8. Open requests such as "what should I do next?" or "help me" map to get_my_overdue_tasks.
9. When confidence is below 0.5, ask for clarification in follow_up_question.
10. create_programme follows the same naming rules. With no name given, set name to "".
11. update_programme_status: "pause Youth Tech" gives programme_name "Youth Tech", new_status "paused".
12. update_programme_fields covers "change/update/set the end date of X to Y", "rename X to Y" and "update description of X".
    update_field is one of name, description, start_date, end_date.
    "change end date of sabitek to march 2026" gives programme_name "sabitek", update_field "end_date", update_value "2026-03-31".
13. "team overdue" and "my team's overdue tasks" map to get_team_overdue. "team summary" and "how is my team doing" map to get_team_summary.
14. "close programme X" maps to run_playbook close_programme with target_name X. "start programme Y" or "launch Y" maps to start_programme.
    "weekly review" and "manager review" map to weekly_review.

Reply format:
{"tool": "tool_name", "params": {}, "confidence": 0.85, "missing_fields": [], "follow_up_question": null}"""

_FENCE_RE = re.compile(r"```(?:json)?\n?")


def parse_classification(text: str) -> Intent:
    """Parse the model's reply. Raises ValueError when it is not a JSON object."""
    cleaned = _FENCE_RE.sub("", text).strip()
    try:
        parsed = json.loads(cleaned)
    except json.JSONDecodeError:
        match = re.search(r"\{.*\}", cleaned, re.DOTALL)
        if not match:
            raise ValueError(f"No JSON object in classifier reply: {cleaned[:80]!r}") from None
        parsed = json.loads(match.group())

    if not isinstance(parsed, dict):
        raise ValueError("Classifier reply is not a JSON object")

    tool = parsed.get("tool")
    params = parsed.get("params")
    confidence = parsed.get("confidence")
    missing = parsed.get("missing_fields")
    follow_up = parsed.get("follow_up_question")

    if isinstance(confidence, bool) or not isinstance(confidence, int | float):
        confidence = 0.5

    return Intent(
        tool=tool if isinstance(tool, str) and tool else "general_answer",
        params=params if isinstance(params, dict) else {},
        confidence=max(0.0, min(1.0, float(confidence))),
        missing_fields=[str(f) for f in missing] if isinstance(missing, list) else [],
        follow_up_question=follow_up if isinstance(follow_up, str) and follow_up else None,
        source="classifier",
    )


def is_transient(exc: BaseException) -> bool:
    """Timeouts, connection failures, 429 and 5xx are worth one retry."""
    if isinstance(
        exc,
        anthropic.APITimeoutError
        | anthropic.APIConnectionError
        | anthropic.RateLimitError
        | anthropic.InternalServerError,
    ):
        return True
    if isinstance(exc, anthropic.APIStatusError):
        return exc.status_code == 429 or exc.status_code >= 500
    return isinstance(exc, httpx.TimeoutException | httpx.TransportError | TimeoutError)


def format_history(history: list[dict], turns: int) -> str:
    recent = history[-turns:] if turns > 0 else []
    if not recent:
        return ""
    lines = [
        f"{'User' if m.get('role') == 'user' else 'Assistant'}: {m.get('content', '')}"
        for m in recent
    ]
    return "\nConversation history:\n" + "\n".join(lines) + "\n"


class IntentClassifier:
    """
    External classification with bounded retry and a total fallback.

    Args:
        client: Object with an Anthropic-compatible ``messages.create``.
            Built from ANTHROPIC_API_KEY when omitted.
        sleep: Backoff sleeper, replaceable in tests.
    """

    def __init__(
        self,
        client: Any = None,
        api_key: str | None = None,
        model: str | None = None,
        timeout: float | None = None,
        max_retries: int | None = None,
        backoff: float | None = None,
        history_turns: int | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.model = model or config.CLASSIFIER_MODEL
        self.timeout = config.CLASSIFIER_TIMEOUT_SECONDS if timeout is None else timeout
        self.max_retries = min(
            1, config.CLASSIFIER_MAX_RETRIES if max_retries is None else max_retries
        )
        self.backoff = config.CLASSIFIER_BACKOFF_SECONDS if backoff is None else backoff
        self.history_turns = min(
            8, config.CLASSIFIER_HISTORY_TURNS if history_turns is None else history_turns
        )
        self._sleep = sleep
        self._client = client
        key = config.ANTHROPIC_API_KEY if api_key is None else api_key
        if self._client is None and key:
            # The SDK's own retries are off; this class owns the retry budget.
            self._client = anthropic.Anthropic(api_key=key, timeout=self.timeout, max_retries=0)

    @property
    def available(self) -> bool:
        return self._client is not None

    def _call(self, prompt: str) -> str:
        response = self._client.messages.create(
            model=self.model,
            max_tokens=config.CLASSIFIER_MAX_TOKENS,
            system=SYSTEM_PROMPT,
            messages=[{"role": "user", "content": prompt}],
            timeout=self.timeout,
        )
        return response.content[0].text.strip()

    def classify(self, message: str, page_context: str = "", history: list[dict] | None = None) -> Intent:
        """Classify *message*. Never raises for service or parse failures."""
        history = history or []
        if not self.available:
            logger.debug("Classifier unavailable, using fallback")
            return fallback_classify(message, history)

        prompt = (
            f"Page context: {page_context or 'Unknown'}\n"
            f"{format_history(history, self.history_turns)}\n"
            f'User message: "{message}"\n\nJSON:'
        )

        for attempt in range(self.max_retries + 1):
            try:
                return parse_classification(self._call(prompt))
            except (
                anthropic.APIError,
                httpx.HTTPError,
                TimeoutError,
                ValueError,
                KeyError,
                IndexError,
                AttributeError,
            ) as e:
                transient = is_transient(e)
                logger.warning(
                    "Classifier attempt %d failed (%s, transient=%s): %s",
                    attempt + 1,
                    type(e).__name__,
                    transient,
                    e,
                )
                if not transient or attempt >= self.max_retries:
                    break
                self._sleep(self.backoff * (attempt + 1))

        logger.warning("Classifier failed, using deterministic fallback")
        return fallback_classify(message, history)


# ============================================================
# Deterministic fallback
# ============================================================

_PROGRAMME_WORD = ("programme", "program")
_Q = "[\"“”]?"
_PROGRAMME_NAMED_RE = re.compile(
    rf"(?:named|called|with\s+name)\s+{_Q}(.+?){_Q}(?:\s+(?:and|with|start|end).*)?$", re.IGNORECASE
)
_TASK_NAMED_RE = re.compile(
    rf"(?:named|called|with\s+name)\s+{_Q}(.+?){_Q}(?:\s+(?:and|with|due|priority).*)?$",
    re.IGNORECASE,
)
_TASK_TO_RE = re.compile(
    r"(?:create\s+(?:a\s+)?task\s+(?:to\s+|for\s+))(.*?)(?:\s+(?:and|due|priority).*)?$",
    re.IGNORECASE,
)
_STATUS_WORDS = r"(done|complete|finished|in[_ ]progress|blocked|todo|to do)"


def _has_any(text: str, words) -> bool:
    return any(w in text for w in words)


def _intent(tool: str, confidence: float, **params) -> Intent:
    return Intent(tool=tool, params=params, confidence=confidence, source="fallback")


def _fallback_programme_fields(message: str, lower: str) -> Intent | None:
    update_field = ""
    if _has_any(lower, ("end date", "closing date", "end_date")):
        update_field = "end_date"
    elif _has_any(lower, ("start date", "start_date")):
        update_field = "start_date"
    elif "rename" in lower or ("change" in lower and "name" in lower):
        update_field = "name"
    elif "description" in lower:
        update_field = "description"

    programme_name = ""
    update_value = ""
    m = re.search(r"(?:of|for)\s+(.+?)\s+to\s+(.+?)$", message, re.IGNORECASE)
    if m:
        programme_name = re.sub(r"\b(the|programme|program)\b|'s\b", "", m.group(1), flags=re.IGNORECASE).strip()
        update_value = m.group(2).strip()
    m = re.search(r"rename\s+(.+?)\s+to\s+(.+?)$", message, re.IGNORECASE)
    if m:
        programme_name = re.sub(r"\b(the|programme|program)\b", "", m.group(1), flags=re.IGNORECASE).strip()
        update_value = m.group(2).strip()
        update_field = "name"

    if not update_field:
        return None

    missing = []
    if not programme_name:
        missing.append("programme_name")
    if not update_value:
        missing.append("update_value")
    if not programme_name:
        follow_up = "Which programme?"
    elif not update_value:
        follow_up = f"What should the new {update_field.replace('_', ' ')} be?"
    else:
        follow_up = None

    intent = _intent(
        "update_programme_fields",
        0.7,
        programme_name=programme_name,
        update_field=update_field,
        update_value=update_value,
    )
    intent.missing_fields = missing
    intent.follow_up_question = follow_up
    return intent


def _strip_playbook_target(message: str, verbs: str) -> str:
    target = re.sub(rf"^({verbs})\s+(the\s+)?", "", message, flags=re.IGNORECASE)
    target = re.sub(r"\s+and\s+.*", "", target, flags=re.IGNORECASE)
    return re.sub(r"\s+(programme|program)\s*$", "", target, flags=re.IGNORECASE).strip()


def fallback_classify(message: str, history: list[dict] | None = None) -> Intent:
    """Rule-based classification. Total: always returns an Intent."""
    lower = message.lower()
    stripped = message.strip()

    last_assistant = next(
        (m for m in reversed(history or []) if m.get("role") == "assistant"), None
    )
    last_al = (last_assistant or {}).get("content", "").lower()

    # Answers to the question the assistant just asked
    if "what should the task be called" in last_al or "give me a title" in last_al:
        return _intent("create_task", 0.9, title=stripped)
    if "which task" in last_al:
        return _intent("update_task_status", 0.7, task_title=stripped, new_status="done")
    if "what should the programme be called" in last_al or "programme name" in last_al:
        return _intent("create_programme", 0.9, name=stripped)

    mentions_programme = _has_any(lower, _PROGRAMME_WORD)

    if "create" in lower and mentions_programme:
        m = _PROGRAMME_NAMED_RE.search(message)
        name = m.group(1).strip() if m else ""
        intent = _intent("create_programme", 0.8, name=name)
        if not name:
            intent.missing_fields = ["name"]
            intent.follow_up_question = "What should the programme be called?"
        return intent

    if _has_any(lower, ("pause", "activate", "archive", "complete")) and mentions_programme:
        new_status = "active"
        if "pause" in lower:
            new_status = "paused"
        if "archive" in lower:
            new_status = "archived"
        if "complete" in lower:
            new_status = "completed"
        if "draft" in lower:
            new_status = "draft"
        name = re.sub(
            r"^(pause|activate|archive|complete|update|change\s+status\s+of)\s+(the\s+)?",
            "",
            message,
            flags=re.IGNORECASE,
        )
        name = re.sub(r"\s+(programme|program)\s*$", "", name, flags=re.IGNORECASE)
        name = re.sub(
            r"\s+(to\s+)(paused|active|archived|completed|draft)\s*$", "", name, flags=re.IGNORECASE
        ).strip()
        return _intent("update_programme_status", 0.7, programme_name=name, new_status=new_status)

    if (
        _has_any(lower, ("change", "update", "set", "rename"))
        and _has_any(lower, ("date", "name", "description", "rename"))
        and (mentions_programme or "task" not in lower)
    ):
        intent = _fallback_programme_fields(message, lower)
        if intent:
            return intent

    if "team" in lower and "overdue" in lower:
        return _intent("get_team_overdue", 0.8)
    if ("team" in lower and "summary" in lower) or "how is my team" in lower:
        return _intent("get_team_summary", 0.8)

    if _has_any(lower, ("weekly review", "manager review", "weekly check")):
        return _intent("run_playbook", 0.85, playbook_id="weekly_review")
    if _has_any(lower, ("close", "shut down", "wrap up")) and mentions_programme:
        target = re.sub(
            r"^(close|shut\s+down|wrap\s+up)\s+(the\s+)?(programme|program)\s*",
            "",
            message,
            flags=re.IGNORECASE,
        ).strip()
        return _intent("run_playbook", 0.8, playbook_id="close_programme", target_name=target)
    if _has_any(lower, ("start", "launch", "kick off")) and mentions_programme:
        target = re.sub(
            r"^(start|launch|kick\s+off)\s+(the\s+)?(programme|program)\s*",
            "",
            message,
            flags=re.IGNORECASE,
        ).strip()
        return _intent("run_playbook", 0.8, playbook_id="start_programme", target_name=target)
    if re.match(r"^(close|shut\s+down|wrap\s+up)\s+", lower) and "task" not in lower:
        target = _strip_playbook_target(message, r"close|shut\s+down|wrap\s+up")
        if target:
            return _intent("run_playbook", 0.7, playbook_id="close_programme", target_name=target)
    if re.match(r"^(start|launch|kick\s+off)\s+", lower) and "task" not in lower:
        target = _strip_playbook_target(message, r"start|launch|kick\s+off")
        if target:
            return _intent("run_playbook", 0.7, playbook_id="start_programme", target_name=target)

    if "create" in lower and "task" in lower:
        named = _TASK_NAMED_RE.search(message)
        to_match = _TASK_TO_RE.search(message)
        title = (named.group(1).strip() if named else "") or (
            to_match.group(1).strip() if to_match else ""
        )
        intent = _intent("create_task", 0.8, title=title)
        if not title:
            intent.missing_fields = ["title"]
            intent.follow_up_question = "What should the task be called?"
        return intent

    if (
        "mark" in lower and _has_any(lower, ("done", "progress", "blocked"))
    ) or _has_any(lower, ("change status", "update status")):
        new_status = "done"
        if "in progress" in lower or "in_progress" in lower:
            new_status = "in_progress"
        if "blocked" in lower:
            new_status = "blocked"
        if "todo" in lower:
            new_status = "todo"
        title = re.sub(
            r"^(mark|complete|finish|change|update)\s+(the\s+)?(status\s+of\s+)?",
            "",
            message,
            flags=re.IGNORECASE,
        )
        title = re.sub(rf"\s+(as\s+)?{_STATUS_WORDS}\s*$", "", title, flags=re.IGNORECASE)
        title = re.sub(rf"\s+(to\s+){_STATUS_WORDS}\s*$", "", title, flags=re.IGNORECASE)
        title = re.sub(r"\s+task\s*$", "", title, flags=re.IGNORECASE)
        title = title.strip().strip("\"'“” ").strip()
        return _intent("update_task_status", 0.7, task_title=title, new_status=new_status)

    if _has_any(lower, ("what should i do", "help me", "what next")):
        return _intent("get_my_overdue_tasks", 0.7)

    if "overdue" in lower:
        return _intent("get_my_overdue_tasks", 0.8)
    if "my task" in lower:
        return _intent("get_my_tasks", 0.8)
    if _has_any(lower, ("check-in", "checkin", "check in")):
        return _intent("get_checkin_status", 0.7)
    if "block" in lower:
        return _intent("get_blockers", 0.7)
    if mentions_programme:
        if _has_any(lower, ("health", "status", "summary")):
            return _intent("get_programme_health", 0.6)
        return _intent("search_programmes", 0.6, query=message)
    if "task" in lower:
        return _intent("search_tasks", 0.6, query=message)
    if _has_any(lower, ("team", "who", "member")):
        return _intent("search_users", 0.6, query=message)
    if _has_any(lower, ("where", "how do i", "navigate")):
        return _intent("navigate", 0.6, destination=message)

    return _intent("general_answer", 0.3, topic=message)


_default_classifier: IntentClassifier | None = None


def get_classifier() -> IntentClassifier:
    """Shared classifier built from configuration."""
    global _default_classifier
    if _default_classifier is None:
        _default_classifier = IntentClassifier()
    return _default_classifier


def classify_intent(message: str, page_context: str = "", history: list[dict] | None = None) -> Intent:
    return get_classifier().classify(message, page_context, history)
