"""
Thread-safe fire-and-forget task manager.

Used for work that must never delay or fail a request: telemetry writes
and stale pending-action purges.

Features:
- TaskManager: submit callables to a ThreadPoolExecutor and track status
- Each task runs inside its own error boundary (failures are logged, never raised)
- Completed task history is dropped after one hour
"""

import logging
import threading
import uuid
from collections.abc import Callable
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import wait as wait_futures
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import StrEnum
from typing import Any

from lib import config

logger = logging.getLogger(__name__)


class TaskStatusEnum(StrEnum):
    """Task status values."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class TaskStatus:
    """Task status snapshot."""

    id: str
    name: str
    status: TaskStatusEnum
    submitted_at: datetime
    completed_at: datetime | None = None
    error: str | None = None


class TaskManager:
    """
    Background task manager with a bounded worker pool.

    Submitting never blocks on the task itself; a failing task marks
    itself FAILED and logs, the caller never sees the exception.
    """

    def __init__(self, max_workers: int = 2):
        self.max_workers = max_workers
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="assistant-bg"
        )
        self._tasks: dict[str, dict[str, Any]] = {}
        self._futures: dict[str, Future] = {}
        self._lock = threading.RLock()
        self._history_ttl = timedelta(hours=1)

    def submit(self, func: Callable, *args: Any, **kwargs: Any) -> str:
        """
        Submit a background task for execution.

        Returns:
            Task ID (UUID)
        """
        task_id = str(uuid.uuid4())

        with self._lock:
            self._tasks[task_id] = {
                "id": task_id,
                "name": getattr(func, "__name__", "task"),
                "status": TaskStatusEnum.PENDING,
                "submitted_at": datetime.now(),
                "completed_at": None,
                "error": None,
            }
            self._futures[task_id] = self._executor.submit(
                self._run_task, task_id, func, args, kwargs
            )
            self._cleanup_old_tasks()

        logger.debug("Task %s (%s) submitted", task_id, self._tasks[task_id]["name"])
        return task_id

    def _run_task(self, task_id: str, func: Callable, args: tuple, kwargs: dict) -> None:
        with self._lock:
            self._tasks[task_id]["status"] = TaskStatusEnum.RUNNING

        try:
            func(*args, **kwargs)
        except Exception as e:
            with self._lock:
                self._tasks[task_id]["error"] = str(e)
                self._tasks[task_id]["status"] = TaskStatusEnum.FAILED
                self._tasks[task_id]["completed_at"] = datetime.now()
            logger.warning("Background task %s failed: %s", task_id, e)
            return

        with self._lock:
            self._tasks[task_id]["status"] = TaskStatusEnum.COMPLETED
            self._tasks[task_id]["completed_at"] = datetime.now()

    def get_status(self, task_id: str) -> TaskStatus | None:
        """Status snapshot of a task, or None if unknown."""
        with self._lock:
            task = self._tasks.get(task_id)
            if task is None:
                return None
            return TaskStatus(
                id=task["id"],
                name=task["name"],
                status=task["status"],
                submitted_at=task["submitted_at"],
                completed_at=task["completed_at"],
                error=task["error"],
            )

    def wait(self, timeout: float | None = None) -> None:
        """Block until every submitted task has finished (shutdown and tests)."""
        with self._lock:
            futures = list(self._futures.values())
        wait_futures(futures, timeout=timeout)

    def _cleanup_old_tasks(self) -> None:
        """Remove completed tasks older than TTL. Must be called with lock held."""
        now = datetime.now()
        expired = [
            task_id
            for task_id, task in self._tasks.items()
            if task["completed_at"] is not None and (now - task["completed_at"]) > self._history_ttl
        ]
        for task_id in expired:
            del self._tasks[task_id]
            self._futures.pop(task_id, None)

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)
        logger.info("TaskManager executor shutdown")


_task_manager: TaskManager | None = None
_task_manager_lock = threading.Lock()


def get_task_manager() -> TaskManager:
    """Get or create global TaskManager instance."""
    global _task_manager
    if _task_manager is None:
        with _task_manager_lock:
            if _task_manager is None:
                _task_manager = TaskManager(max_workers=config.BACKGROUND_WORKERS)
    return _task_manager


def shutdown_task_manager() -> None:
    global _task_manager
    with _task_manager_lock:
        if _task_manager is not None:
            _task_manager.shutdown(wait=True)
            _task_manager = None
