"""
Pydantic request and response models for the assistant API.

These give FastAPI the type information it needs to generate accurate
OpenAPI schemas and to reject malformed bodies with 422.
"""

from typing import Any

from pydantic import BaseModel, Field

# ==== Chat ====


class HistoryEntry(BaseModel):
    role: str
    content: str = ""


class ChatRequest(BaseModel):
    """One user turn."""

    message: str = Field(default="", description="Free-text message")
    page_context: str = Field(default="", description="Dashboard page the message was sent from")
    history: list[HistoryEntry] = Field(default_factory=list, description="Recent turns, oldest first")


class ChatResponseModel(BaseModel):
    """Assistant reply. ``action`` is a preview, never an executed change."""

    text: str
    items: list[dict[str, Any]] = Field(default_factory=list)
    action: dict[str, Any] | None = None
    clarify: dict[str, Any] | None = None
    playbook_progress: dict[str, Any] | None = None
    meta: dict[str, Any] | None = None


# ==== Confirmation ====


class ConfirmRequest(BaseModel):
    action_type: str | None = Field(default=None, description="Previewed action type")
    payload: dict[str, Any] | None = Field(default=None, description="Previewed action payload")


class ConfirmResponse(BaseModel):
    success: bool
    message: str | None = None
    href: str | None = None


# ==== Telemetry / session ====


class TelemetryRequest(BaseModel):
    event_type: str
    metadata: dict[str, Any] = Field(default_factory=dict)


class OkResponse(BaseModel):
    ok: bool = True


class ResetResponse(BaseModel):
    cancelled: int


class HealthResponse(BaseModel):
    status: str = Field(description="ok")
