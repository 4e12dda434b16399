"""
ASGI middleware for correlation ID tracking.
"""

import logging

from lib.observability.context import RequestContext, generate_request_id

logger = logging.getLogger(__name__)


def _header(scope, name: bytes) -> str | None:
    for key, value in scope.get("headers", []):
        if key.lower() == name:
            try:
                return value.decode("utf-8")
            except UnicodeDecodeError as e:
                logger.warning("Could not decode %s header: %s", name.decode(), e)
                return None
    return None


class CorrelationIdMiddleware:
    """
    Middleware for adding request ID (and caller id) to logs.

    Usage in server.py:
        from lib.observability.middleware import CorrelationIdMiddleware
        app.add_middleware(CorrelationIdMiddleware)

    All logs within a request include the request_id in context, and the
    response carries it back as X-Request-ID.
    """

    def __init__(self, app):
        self.app = app

    async def __call__(self, scope, receive, send):
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        request_id = _header(scope, b"x-request-id") or generate_request_id()
        user_id = _header(scope, b"x-user-id")

        async def send_with_request_id(message):
            if message["type"] == "http.response.start":
                headers_list = list(message.get("headers", []))
                headers_list.append((b"x-request-id", request_id.encode("utf-8")))
                message["headers"] = headers_list
            await send(message)

        with RequestContext(request_id=request_id, user_id=user_id):
            await self.app(scope, receive, send_with_request_id)
