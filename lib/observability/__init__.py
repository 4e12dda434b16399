"""
Observability module: structured logging and request correlation.

Usage:
    from lib.observability import get_logger, RequestContext

    logger = get_logger(__name__)
    logger.info("Classified intent", extra={"tool": "get_my_tasks"})

    with RequestContext(user_id="u-1") as ctx:
        logger.info("Request started")  # carries ctx.request_id and user_id
"""

from .context import RequestContext, get_request_id, get_user_id, set_request_id
from .logging import HumanFormatter, JSONFormatter, configure_logging, get_logger
from .middleware import CorrelationIdMiddleware

__all__ = [
    # Logging
    "get_logger",
    "configure_logging",
    "JSONFormatter",
    "HumanFormatter",
    # Context
    "RequestContext",
    "get_request_id",
    "get_user_id",
    "set_request_id",
    # Middleware
    "CorrelationIdMiddleware",
]
