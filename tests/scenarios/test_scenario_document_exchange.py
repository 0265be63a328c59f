"""
Scenario 1: a document goes from the portal to the external accounting system

Covers:
- freeze over HTTP -> queue tick -> SentToExternal with the external reference
- posting and a later status refresh
- an external outage that exhausts the item, then an operator retry
- manual resend producing a new item with its own idempotency key
"""
import json

import pytest

from app.db.models.document import DocumentStatus
from app.db.models.integration_queue import QueueItemStatus, QueueOperation
from app.domain.services.integration_queue_service import (
    IntegrationQueueService,
    refresh_external_status,
)

from tests.conftest import ADMIN_HEADERS, json_response, raise_timeout
from tests.scenarios.conftest import assert_document_status, assert_queue_count


@pytest.mark.scenario
class TestDocumentExchange:

    async def test_freeze_send_post_refresh(
        self, test_client, db_session, sample_document, queue_worker, external_system
    ) -> None:
        # --- freeze over HTTP ---
        response = await test_client.post(f"/api/documents/{sample_document.id}/freeze")
        assert response.status_code == 200
        idempotency_key = response.json()["queue_item"]["idempotency_key"]
        await assert_document_status(db_session, sample_document.id, DocumentStatus.QUEUED_TO_EXTERNAL)

        # --- queue tick pushes it out ---
        await queue_worker.run_once()

        document = await assert_document_status(
            db_session, sample_document.id, DocumentStatus.SENT_TO_EXTERNAL
        )
        assert document.external_ref == "EXT-1"
        sent = json.loads(external_system.requests[0].content)
        assert sent["idempotencyKey"] == idempotency_key
        assert sent["externalType"] == "СчетНаОплату"
        await assert_queue_count(db_session, sample_document.id, QueueItemStatus.COMPLETED, 1)

        # --- post it ---
        external_system.always(json_response(externalRef="EXT-1", status="Posted"))
        await IntegrationQueueService(db_session).enqueue(
            sample_document.id, QueueOperation.POST_DOCUMENT
        )
        await queue_worker.run_once()
        await assert_document_status(db_session, sample_document.id, DocumentStatus.POSTED_EXTERNALLY)

        # --- accountant unposts it on their side ---
        external_system.always(json_response(externalRef="EXT-1", status="Unposted"))
        await refresh_external_status(db_session, external_system.client(), sample_document.id)
        await assert_document_status(db_session, sample_document.id, DocumentStatus.UNPOSTED_EXTERNALLY)

        # editable again once unposted
        response = await test_client.get(f"/api/documents/{sample_document.id}/transitions")
        assert response.json()["editable"] is True

    async def test_outage_then_operator_retry(
        self, test_client, db_session, sample_document, queue_worker, external_system
    ) -> None:
        external_system.always(raise_timeout)
        await test_client.post(f"/api/documents/{sample_document.id}/freeze")

        for _ in range(3):
            await queue_worker.run_once()

        await assert_queue_count(db_session, sample_document.id, QueueItemStatus.FAILED, 1)
        document = await assert_document_status(
            db_session, sample_document.id, DocumentStatus.QUEUED_TO_EXTERNAL
        )
        assert "timed out" in document.external_error

        # external system is back
        external_system.always(json_response(externalRef="EXT-7", status="Accepted"))
        items = await test_client.get(
            "/api/queue/items",
            params={"status": "Failed", "document_id": sample_document.id},
            headers=ADMIN_HEADERS,
        )
        [item] = items.json()
        assert item["attempts"] == 3

        retry = await test_client.post(f"/api/queue/items/{item['id']}/retry", headers=ADMIN_HEADERS)
        assert retry.json()["attempts"] == 0

        await queue_worker.run_once()

        document = await assert_document_status(
            db_session, sample_document.id, DocumentStatus.SENT_TO_EXTERNAL
        )
        assert document.external_ref == "EXT-7"
        assert document.external_error is None
        await assert_queue_count(db_session, sample_document.id, QueueItemStatus.COMPLETED, 1)

    async def test_manual_resend_is_a_new_push(
        self, test_client, db_session, sample_document, queue_worker, external_system
    ) -> None:
        await test_client.post(f"/api/documents/{sample_document.id}/freeze")
        await queue_worker.run_once()

        resend = await test_client.post(
            "/api/queue/resend", json={"document_id": sample_document.id}, headers=ADMIN_HEADERS
        )
        assert resend.status_code == 201
        await queue_worker.run_once()

        await assert_queue_count(db_session, sample_document.id, QueueItemStatus.COMPLETED, 2)
        keys = [json.loads(r.content)["idempotencyKey"] for r in external_system.requests]
        assert len(keys) == 2
        assert keys[0] != keys[1]
        await assert_document_status(db_session, sample_document.id, DocumentStatus.SENT_TO_EXTERNAL)

        stats = await test_client.get("/api/queue/stats", headers=ADMIN_HEADERS)
        assert stats.json()["Completed"] == 2
