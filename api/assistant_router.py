"""
Assistant API Router: chat, action confirmation and telemetry.

Endpoints:
- POST /api/assistant/chat: handle one user message
- POST /api/assistant/action/confirm: execute a previewed action
- POST /api/assistant/telemetry: client-side panel events
- POST /api/assistant/session/reset: cancel the caller's pending state
- GET /api/assistant/health: liveness
"""

import logging

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import JSONResponse

from api.auth import require_user
from api.response_models import (
    ChatRequest,
    ChatResponseModel,
    ConfirmRequest,
    ConfirmResponse,
    HealthResponse,
    OkResponse,
    ResetResponse,
    TelemetryRequest,
)
from lib.assistant import sanitize
from lib.assistant.chat import ChatEngine
from lib.assistant.confirm import ConfirmRouter, build_confirm_router
from lib.assistant.telemetry import CLIENT_EVENTS, TelemetryEvent
from lib.state_store import get_store

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/assistant", tags=["assistant"])

CHAT_FAILURE = "Something went wrong. Please try again."

# Global instances, built on first use
_engine: ChatEngine | None = None
_confirm_router: ConfirmRouter | None = None


def get_engine() -> ChatEngine:
    """Get or create the global chat engine."""
    global _engine
    if _engine is None:
        _engine = ChatEngine(get_store())
    return _engine


def get_confirm_router() -> ConfirmRouter:
    """Get or create the global confirm router (shares the engine's telemetry and pending store)."""
    global _confirm_router
    if _confirm_router is None:
        engine = get_engine()
        _confirm_router = build_confirm_router(engine.store, engine.telemetry, engine.pending)
    return _confirm_router


# Endpoints


@router.post("/chat", response_model=ChatResponseModel, response_model_exclude_none=True)
def chat(
    body: ChatRequest,
    user_id: str = Depends(require_user),
    engine: ChatEngine = Depends(get_engine),
):
    """Interpret one message and reply with results, a preview, or a question."""
    message = sanitize.sanitize_message(body.message)
    if not message:
        return JSONResponse(status_code=400, content={"error": "Message is required"})

    page_context = sanitize.sanitize_text(body.page_context, sanitize.MAX_QUERY_LENGTH)
    history = sanitize.sanitize_history([h.model_dump() for h in body.history])
    try:
        return engine.handle_message(user_id, message, page_context, history).to_dict()
    except Exception as e:
        logger.error(f"Error handling assistant message: {str(e)}", exc_info=True)
        engine.telemetry.error(user_id, str(e)[:200], "chat")
        return JSONResponse(status_code=500, content={"error": CHAT_FAILURE})


@router.post("/action/confirm", response_model=ConfirmResponse, response_model_exclude_none=True)
def confirm_action(
    body: ConfirmRequest,
    user_id: str = Depends(require_user),
    confirm: ConfirmRouter = Depends(get_confirm_router),
):
    """Execute a previewed action. The only endpoint that writes domain records."""
    result = confirm.dispatch(user_id, body.action_type, body.payload)
    if not result.success:
        return JSONResponse(status_code=result.status_code, content=result.to_dict())
    return result.to_dict()


@router.post("/telemetry", response_model=OkResponse)
def record_telemetry(
    body: TelemetryRequest,
    user_id: str = Depends(require_user),
    engine: ChatEngine = Depends(get_engine),
):
    """Accept panel open/close events from the client."""
    if body.event_type not in CLIENT_EVENTS:
        raise HTTPException(status_code=400, detail=f"Unsupported event type: {body.event_type}")
    engine.telemetry.emit(user_id, TelemetryEvent(body.event_type), body.metadata)
    return {"ok": True}


@router.post("/session/reset", response_model=ResetResponse)
def reset_session(user_id: str = Depends(require_user), engine: ChatEngine = Depends(get_engine)):
    """Cancel every active pending record of the caller."""
    try:
        return {"cancelled": engine.reset_session(user_id)}
    except Exception as e:
        logger.error(f"Error resetting assistant session: {str(e)}")
        raise HTTPException(status_code=500, detail="Internal server error") from e


@router.get("/health", response_model=HealthResponse)
def health():
    return {"status": "ok"}
