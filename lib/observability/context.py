"""
Request context management with context variables.
"""

import contextvars
import uuid
from typing import Optional

_request_id_var: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar(
    "request_id", default=None
)
_user_id_var: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar(
    "user_id", default=None
)


def get_request_id() -> Optional[str]:
    """Get the current request ID from context."""
    return _request_id_var.get()


def set_request_id(request_id: str) -> contextvars.Token:
    """Set the request ID in context. Returns token for reset."""
    return _request_id_var.set(request_id)


def get_user_id() -> Optional[str]:
    """Get the calling user's ID from context, if a request set one."""
    return _user_id_var.get()


def generate_request_id() -> str:
    return f"req-{uuid.uuid4().hex[:16]}"


class RequestContext:
    """
    Context manager for request-scoped operations.

    Usage:
        with RequestContext() as ctx:
            logger.info("Processing")  # includes ctx.request_id

        with RequestContext(request_id="req-abc123", user_id="u-1"):
            ...
    """

    def __init__(self, request_id: Optional[str] = None, user_id: Optional[str] = None):
        self.request_id = request_id or generate_request_id()
        self.user_id = user_id
        self._tokens: list[tuple[contextvars.ContextVar, contextvars.Token]] = []

    def __enter__(self) -> "RequestContext":
        self._tokens.append((_request_id_var, _request_id_var.set(self.request_id)))
        if self.user_id:
            self._tokens.append((_user_id_var, _user_id_var.set(self.user_id)))
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        while self._tokens:
            var, token = self._tokens.pop()
            var.reset(token)
