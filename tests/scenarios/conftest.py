"""
Fixtures and helpers for end-to-end scenarios.

Provides:
- Worker fixtures wired to the fake external system and a recording subscriber
- Short drivers that run worker ticks until there is nothing left to do
- DB assertions (document status, queue items, delivered events)
"""
import json

import httpx
import pytest
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.clock import utcnow
from app.db.models.analytics import OrgWebhook
from app.db.models.document import Document, DocumentStatus
from app.db.models.integration_queue import IntegrationQueueItem, QueueItemStatus
from app.domain.services.integration_queue_service import IntegrationQueueWorker
from app.domain.services.resync_service import ResyncJobProcessor
from app.domain.services.webhook_dispatcher import WebhookDispatcher


# ============================================================================
# Subscriber endpoint
# ============================================================================

class RecordingSubscriber:
    """Webhook endpoint that stores every batch; ``down`` makes it answer 503"""

    def __init__(self) -> None:
        self.requests: list[httpx.Request] = []
        self.acknowledged: list[dict] = []
        self.down = False

    def _handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.down:
            return httpx.Response(503, text="maintenance")
        self.acknowledged.append(json.loads(request.content))
        return httpx.Response(200, json={"ok": True})

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self._handle)

    def delivered_events(self) -> list[dict]:
        """Events of acknowledged batches, in arrival order"""
        return [event for batch in self.acknowledged for event in batch["events"]]


@pytest.fixture
def subscriber() -> RecordingSubscriber:
    return RecordingSubscriber()


# ============================================================================
# Workers
# ============================================================================

@pytest.fixture
def queue_worker(session_factory, external_system) -> IntegrationQueueWorker:
    return IntegrationQueueWorker(session_factory, client=external_system.client(), concurrency=1)


@pytest.fixture
def resync_processor(session_factory) -> ResyncJobProcessor:
    return ResyncJobProcessor(session_factory)


@pytest.fixture
def webhook_dispatcher(session_factory, subscriber) -> WebhookDispatcher:
    return WebhookDispatcher(session_factory, transport=subscriber.transport, concurrency=1)


async def drain_resync(processor: ResyncJobProcessor, max_ticks: int = 20) -> int:
    """Run resync ticks until no job is due; returns the number of ticks"""
    for tick in range(max_ticks):
        if (await processor.run_once())["claimed"] == 0:
            return tick
    raise AssertionError("resync jobs did not finish")


async def drain_webhooks(
    dispatcher: WebhookDispatcher,
    db: AsyncSession,
    max_ticks: int = 20,
) -> int:
    """Deliver until every webhook reports idle; due times are reset between ticks"""
    for tick in range(max_ticks):
        summary = await dispatcher.run_once()
        if summary["delivered"] == 0 and summary["failed"] == 0:
            return tick
        await make_webhooks_due(db)
    raise AssertionError("webhooks did not drain")


async def make_webhooks_due(db: AsyncSession) -> None:
    result = await db.execute(select(OrgWebhook).execution_options(populate_existing=True))
    for webhook in result.scalars().all():
        webhook.next_retry_at = utcnow()
    await db.commit()


# ============================================================================
# DB assertions
# ============================================================================

async def assert_document_status(
    db: AsyncSession,
    document_id: int,
    expected: DocumentStatus,
) -> Document:
    result = await db.execute(
        select(Document).where(Document.id == document_id).execution_options(populate_existing=True)
    )
    document = result.scalar_one()
    assert document.status == expected, (
        f"document {document_id}: expected {expected.value}, got {document.status}"
    )
    return document


async def assert_queue_count(
    db: AsyncSession,
    document_id: int,
    status: QueueItemStatus,
    expected: int,
) -> None:
    count = await db.scalar(
        select(func.count(IntegrationQueueItem.id)).where(
            IntegrationQueueItem.document_id == document_id,
            IntegrationQueueItem.status == status,
        )
    )
    assert count == expected, f"expected {expected} {status.value} items, got {count}"
