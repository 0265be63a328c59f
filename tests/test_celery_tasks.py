"""
Celery tasks - app/workers/tasks.py

Covers:
- event loop handling in sync tasks
- every beat entry points at a registered task
- each periodic task runs its tick with a task-scoped session factory
"""
import asyncio
from contextlib import asynccontextmanager
from unittest.mock import AsyncMock, patch

import pytest

from app.core.logging import get_correlation_id
from app.workers import tasks
from app.workers.celery_app import celery_app


@asynccontextmanager
async def _fake_task_session_factory():
    yield "task-session-factory"


@pytest.fixture
def task_factory():
    with patch("app.workers.tasks.task_session_factory", _fake_task_session_factory):
        yield


class TestEventLoop:

    @pytest.mark.unit
    def test_run_async_returns_result(self) -> None:
        async def tick():
            return {"claimed": 2}

        assert tasks.run_async(tick()) == {"claimed": 2}

    @pytest.mark.unit
    def test_run_async_sets_fresh_correlation_id(self) -> None:
        async def tick():
            return get_correlation_id()

        first = tasks.run_async(tick())
        second = tasks.run_async(tick())

        assert first != second

    @pytest.mark.unit
    def test_get_event_loop_closes_and_cancels(self) -> None:
        async def forever():
            await asyncio.sleep(3600)

        with tasks.get_event_loop() as loop:
            leftover = loop.create_task(forever())
            loop.run_until_complete(asyncio.sleep(0))

        assert leftover.cancelled()
        assert loop.is_closed()


class TestBeatSchedule:

    @pytest.mark.unit
    def test_beat_entries_are_registered_tasks(self) -> None:
        schedule = celery_app.conf.beat_schedule

        assert set(schedule) == {
            "process-integration-queue",
            "process-resync-jobs",
            "dispatch-analytics-webhooks",
        }
        for entry in schedule.values():
            assert entry["task"] in celery_app.tasks
            assert entry["schedule"] > 0


class TestPeriodicTasks:

    @pytest.mark.unit
    def test_process_integration_queue(self, task_factory) -> None:
        with patch(
            "app.workers.tasks.run_queue_tick",
            new_callable=AsyncMock,
            return_value={"claimed": 1, "completed": 1},
        ) as tick:
            result = tasks.process_integration_queue()

        assert result == {"claimed": 1, "completed": 1}
        tick.assert_awaited_once_with("task-session-factory")

    @pytest.mark.unit
    def test_process_resync_jobs(self, task_factory) -> None:
        with patch(
            "app.workers.tasks.run_resync_tick",
            new_callable=AsyncMock,
            return_value={"claimed": 0},
        ) as tick:
            assert tasks.process_resync_jobs() == {"claimed": 0}

        tick.assert_awaited_once_with("task-session-factory")

    @pytest.mark.unit
    def test_dispatch_analytics_webhooks(self, task_factory) -> None:
        with patch(
            "app.workers.tasks.run_webhook_tick",
            new_callable=AsyncMock,
            return_value={"delivered": 3, "failed": 0},
        ) as tick:
            assert tasks.dispatch_analytics_webhooks() == {"delivered": 3, "failed": 0}

        tick.assert_awaited_once_with("task-session-factory")

