"""
Caller identity for the assistant API.

Authentication happens upstream: the gateway verifies the session and
forwards the caller's profile id in the ``X-User-Id`` header.

Usage:
    from api.auth import require_user

    @router.post("/chat")
    def chat(body: ChatRequest, user_id: str = Depends(require_user)): ...
"""

import logging

from fastapi import HTTPException, Request

logger = logging.getLogger(__name__)

USER_HEADER = "X-User-Id"


def require_user(request: Request) -> str:
    """
    FastAPI dependency returning the caller's profile id.

    Raises HTTPException 401 when the gateway did not identify the caller.
    """
    user_id = (request.headers.get(USER_HEADER) or "").strip()
    if not user_id:
        logger.warning("Rejected %s %s: missing %s", request.method, request.url.path, USER_HEADER)
        raise HTTPException(
            status_code=401,
            detail="Unauthorized",
            headers={"WWW-Authenticate": "Gateway"},
        )
    request.state.user_id = user_id
    return user_id
