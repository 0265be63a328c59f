"""
Tick functions shared by the embedded scheduler and the Celery tasks.

Each tick does one bounded unit of work against a session factory and
returns a summary dict. Everything a tick needs to remember between runs
lives in the database, so any number of processes can run the same tick.
"""
from typing import Any, Callable

from app.domain.services.external_client import ExternalSystemClient
from app.domain.services.integration_queue_service import IntegrationQueueWorker
from app.domain.services.resync_service import ResyncJobProcessor
from app.domain.services.webhook_dispatcher import WebhookDispatcher

SessionFactory = Callable[[], Any]


async def run_queue_tick(
    session_factory: SessionFactory,
    client: ExternalSystemClient | None = None,
) -> dict[str, int]:
    return await IntegrationQueueWorker(session_factory, client=client).run_once()


async def run_resync_tick(session_factory: SessionFactory) -> dict[str, int]:
    return await ResyncJobProcessor(session_factory).run_once()


async def run_webhook_tick(session_factory: SessionFactory) -> dict[str, int]:
    return await WebhookDispatcher(session_factory).run_once()
