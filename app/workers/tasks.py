"""
Celery Tasks for the background workers

Each periodic task runs one tick of a worker on a fresh event loop with its
own engine. The ticks are the same functions the embedded scheduler runs.
"""
import asyncio
from contextlib import contextmanager

from app.core.logging import get_logger, set_correlation_id
from app.db.database import task_session_factory
from app.workers.celery_app import celery_app
from app.workers.jobs import run_queue_tick, run_resync_tick, run_webhook_tick

logger = get_logger(__name__)


@contextmanager
def get_event_loop():
    """
    Context manager for proper event loop handling in Celery tasks.
    Creates a new event loop and ensures proper cleanup to prevent resource leaks.
    """
    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    try:
        yield loop
    finally:
        try:
            # Cancel all pending tasks
            pending = asyncio.all_tasks(loop)
            for task in pending:
                task.cancel()
            if pending:
                loop.run_until_complete(asyncio.gather(*pending, return_exceptions=True))
        finally:
            loop.run_until_complete(loop.shutdown_asyncgens())
            loop.close()


def run_async(coro):
    """Helper to run async code in sync Celery task with proper cleanup"""
    set_correlation_id()

    with get_event_loop() as loop:
        return loop.run_until_complete(coro)


@celery_app.task(name="app.workers.tasks.process_integration_queue")
def process_integration_queue():
    """Push claimable queue items to the external system"""

    async def _process():
        async with task_session_factory() as session_factory:
            return await run_queue_tick(session_factory)

    return run_async(_process())


@celery_app.task(name="app.workers.tasks.process_resync_jobs")
def process_resync_jobs():
    """Emit the next snapshot page of every due resync job"""

    async def _process():
        async with task_session_factory() as session_factory:
            return await run_resync_tick(session_factory)

    return run_async(_process())


@celery_app.task(name="app.workers.tasks.dispatch_analytics_webhooks")
def dispatch_analytics_webhooks():
    """Deliver pending analytics events to subscriber webhooks"""

    async def _dispatch():
        async with task_session_factory() as session_factory:
            return await run_webhook_tick(session_factory)

    return run_async(_dispatch())
