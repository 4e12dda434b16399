"""Shared value types for the assistant pipeline."""

from dataclasses import dataclass, field
from typing import Any


@dataclass
class Intent:
    """A classified request: which tool to run and with what parameters."""

    tool: str
    params: dict[str, Any] = field(default_factory=dict)
    confidence: float = 0.5
    missing_fields: list[str] = field(default_factory=list)
    follow_up_question: str | None = None
    # preprocessor | classifier | fallback
    source: str = ""

    def to_dict(self) -> dict:
        d = {"tool": self.tool, "params": self.params, "confidence": self.confidence}
        if self.missing_fields:
            d["missing_fields"] = self.missing_fields
        if self.follow_up_question:
            d["follow_up_question"] = self.follow_up_question
        return d


@dataclass
class ResultItem:
    """A read-only, labelled deep link."""

    label: str
    detail: str | None = None
    href: str | None = None

    def to_dict(self) -> dict:
        d: dict[str, Any] = {"label": self.label}
        if self.detail is not None:
            d["detail"] = self.detail
        if self.href is not None:
            d["href"] = self.href
        return d


@dataclass
class ActionField:
    label: str
    value: str

    def to_dict(self) -> dict:
        return {"label": self.label, "value": self.value}


@dataclass
class ActionPreview:
    """An unexecuted mutation awaiting explicit confirmation."""

    action_type: str
    title: str
    fields: list[ActionField] = field(default_factory=list)
    payload: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "action_type": self.action_type,
            "title": self.title,
            "fields": [f.to_dict() for f in self.fields],
            "payload": self.payload,
        }


@dataclass
class ClarifyInfo:
    """Mirrors the missing-field prompt the conversation is waiting on."""

    waiting_for: str
    intent_type: str
    example: str | None = None

    def to_dict(self) -> dict:
        d = {"waiting_for": self.waiting_for, "intent_type": self.intent_type}
        if self.example:
            d["example"] = self.example
        return d


@dataclass
class PlaybookProgress:
    playbook_name: str
    current_step: int
    total_steps: int
    step_title: str
    step_type: str
    completed: list[int] = field(default_factory=list)
    skipped: list[int] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "playbook_name": self.playbook_name,
            "current_step": self.current_step,
            "total_steps": self.total_steps,
            "step_title": self.step_title,
            "step_type": self.step_type,
            "completed": list(self.completed),
            "skipped": list(self.skipped),
        }


@dataclass
class ToolResult:
    """
    What a tool hands back to the conversation layer.

    ``clarify_field`` is set when a referenced entity could not be pinned
    down; the caller re-enters the missing-field flow for that field with
    ``items`` as the candidates.
    """

    text: str
    items: list[ResultItem] = field(default_factory=list)
    action: ActionPreview | None = None
    clarify_field: str | None = None

    def to_dict(self) -> dict:
        return {
            "text": self.text,
            "items": [i.to_dict() for i in self.items],
            "action": self.action.to_dict() if self.action else None,
        }


@dataclass
class ChatResponse:
    """Body of one assistant reply."""

    text: str
    items: list[ResultItem] = field(default_factory=list)
    action: ActionPreview | None = None
    clarify: ClarifyInfo | None = None
    playbook_progress: PlaybookProgress | None = None
    meta: dict[str, Any] | None = None

    def to_dict(self) -> dict:
        d: dict[str, Any] = {
            "text": self.text,
            "items": [i.to_dict() for i in self.items],
            "action": self.action.to_dict() if self.action else None,
        }
        if self.clarify:
            d["clarify"] = self.clarify.to_dict()
        if self.playbook_progress:
            d["playbook_progress"] = self.playbook_progress.to_dict()
        if self.meta:
            d["meta"] = self.meta
        return d
