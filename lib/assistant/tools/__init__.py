"""
Assistant tool registry.

Maps tool names to handlers with the signature
``handler(store, user_id, params) -> ToolResult``. Read tools query,
write tools only build previews.
"""

import logging
from collections.abc import Callable

from lib.assistant.models import ToolResult
from lib.assistant.tools import read, team, write
from lib.state_store import StateStore

logger = logging.getLogger(__name__)

ToolHandler = Callable[[StateStore, str, dict], ToolResult]

TOOLS: dict[str, ToolHandler] = {
    "search_tasks": read.search_tasks,
    "search_programmes": read.search_programmes,
    "search_users": read.search_users,
    "get_my_overdue_tasks": read.get_my_overdue_tasks,
    "get_my_tasks": read.get_my_tasks,
    "get_checkin_status": read.get_checkin_status,
    "get_programme_health": read.get_programme_health,
    "get_blockers": read.get_blockers,
    "navigate": read.navigate,
    "general_answer": read.general_answer,
    "get_team_overdue": team.get_team_overdue,
    "get_team_summary": team.get_team_summary,
    "create_task": write.create_task,
    "update_task_status": write.update_task_status,
    "create_programme": write.create_programme,
    "update_programme_status": write.update_programme_status,
    "update_programme_fields": write.update_programme_fields,
    "run_playbook": team.run_playbook,
}


def execute_tool(tool: str, store: StateStore, user_id: str, params: dict | None) -> ToolResult:
    """Run *tool*; unknown tools and handler failures come back as plain replies."""
    handler = TOOLS.get(tool)
    if not handler:
        logger.warning("Unknown assistant tool requested: %s", tool)
        return ToolResult(text="I don't know how to do that yet.")
    try:
        return handler(store, user_id, dict(params or {}))
    except Exception as e:
        logger.error("Tool %s failed for %s: %s", tool, user_id, e, exc_info=True)
        return ToolResult(text="Something went wrong running that query. Please try again.")
