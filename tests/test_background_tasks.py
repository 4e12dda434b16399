"""
Tests for the background task manager.

Tests cover:
- Task submission and ID generation
- Task lifecycle (pending → running → completed)
- Failed task tracking and error containment
- Status retrieval and history cleanup
- Global instance lifecycle
"""

import threading
from datetime import datetime, timedelta

import pytest

from lib import background_tasks
from lib.background_tasks import TaskManager, TaskStatusEnum, get_task_manager, shutdown_task_manager


class TestTaskManager:
    """Tests for TaskManager class."""

    @pytest.fixture
    def task_manager(self):
        """Create a TaskManager instance for testing."""
        manager = TaskManager(max_workers=2)
        yield manager
        manager.shutdown(wait=True)

    def test_custom_max_workers(self):
        """Test TaskManager with custom max_workers."""
        manager = TaskManager(max_workers=4)
        assert manager.max_workers == 4
        manager.shutdown(wait=True)

    def test_submit_runs_with_args(self, task_manager):
        """Test that a submitted task runs with its arguments."""
        seen = []

        def record(a, b, c=None):
            seen.append((a, b, c))

        task_id = task_manager.submit(record, 1, 2, c=3)
        task_manager.wait(timeout=5)

        assert isinstance(task_id, str) and task_id
        assert seen == [(1, 2, 3)]
        status = task_manager.get_status(task_id)
        assert status.status == TaskStatusEnum.COMPLETED
        assert status.name == "record"
        assert status.completed_at is not None
        assert status.error is None

    def test_unique_ids(self, task_manager):
        """Test that every submission gets its own ID."""
        ids = {task_manager.submit(lambda: None) for _ in range(10)}
        task_manager.wait(timeout=5)
        assert len(ids) == 10

    def test_failure_is_contained(self, task_manager):
        """Test that a failing task is marked FAILED and never raises."""

        def explode():
            raise RuntimeError("boom")

        task_id = task_manager.submit(explode)
        task_manager.wait(timeout=5)

        status = task_manager.get_status(task_id)
        assert status.status == TaskStatusEnum.FAILED
        assert status.error == "boom"

    def test_running_status(self, task_manager):
        """Test that a blocked task reports RUNNING until released."""
        started = threading.Event()
        release = threading.Event()

        def blocker():
            started.set()
            release.wait(timeout=5)

        task_id = task_manager.submit(blocker)
        assert started.wait(timeout=5)
        assert task_manager.get_status(task_id).status == TaskStatusEnum.RUNNING
        release.set()
        task_manager.wait(timeout=5)
        assert task_manager.get_status(task_id).status == TaskStatusEnum.COMPLETED

    def test_unknown_task(self, task_manager):
        """Test status lookup of an unknown ID."""
        assert task_manager.get_status("nope") is None

    def test_history_cleanup(self, task_manager):
        """Test that finished tasks older than the TTL are dropped on the next submit."""
        old_id = task_manager.submit(lambda: None)
        task_manager.wait(timeout=5)
        with task_manager._lock:
            task_manager._tasks[old_id]["completed_at"] = datetime.now() - timedelta(hours=2)

        task_manager.submit(lambda: None)
        task_manager.wait(timeout=5)
        assert task_manager.get_status(old_id) is None

    def test_submit_after_shutdown_raises(self):
        """Test that submitting to a shut-down manager raises RuntimeError."""
        manager = TaskManager(max_workers=1)
        manager.shutdown(wait=True)
        with pytest.raises(RuntimeError):
            manager.submit(lambda: None)


class TestGlobalTaskManager:
    """Tests for the process-wide instance."""

    def test_singleton(self):
        """Test that get_task_manager returns one shared instance."""
        try:
            assert get_task_manager() is get_task_manager()
        finally:
            shutdown_task_manager()

    def test_shutdown_resets(self):
        """Test that shutdown drops the instance so the next call rebuilds it."""
        first = get_task_manager()
        shutdown_task_manager()
        assert background_tasks._task_manager is None
        try:
            assert get_task_manager() is not first
        finally:
            shutdown_task_manager()
