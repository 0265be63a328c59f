"""
Integration Queue - durable outbound queue to the external accounting system.

Enqueue stores a payload snapshot; workers claim items with a single
conditional UPDATE so two workers never process the same item, push them to
the external system and apply the outcome to the document.
"""
from __future__ import annotations

import asyncio
from datetime import datetime, timedelta
from typing import Any, Callable

from sqlalchemy import and_, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.clock import utcnow
from app.core.config import settings
from app.core.exceptions import (
    ExternalSystemError,
    MissingExternalReferenceError,
    OperationNotImplementedError,
    QueueItemNotFoundError,
    QueueItemNotRetryableError,
)
from app.core.logging import get_logger, log_async_operation, set_correlation_id
from app.db.models.document import (
    Document,
    DocumentStatus,
    DocumentVersion,
    ExternalStatus,
    HistorySource,
)
from app.db.models.integration_queue import (
    IntegrationQueueItem,
    QueueItemStatus,
    QueueOperation,
)
from app.db.models.organization import Organization
from app.domain.services.external_client import (
    ExternalOperationResult,
    ExternalSystemClient,
)
from app.domain.services.payload_builder import PayloadBuilder
from app.domain.services.reference_lookup import ReferenceLookup
from app.state_machine.manager import DocumentStatusManager

logger = get_logger(__name__)

MAX_ERROR_LENGTH = 2000

# External status reported by the accounting system -> portal status
EXTERNAL_TO_PORTAL_STATUS: dict[ExternalStatus, DocumentStatus] = {
    ExternalStatus.ACCEPTED: DocumentStatus.ACCEPTED_BY_EXTERNAL,
    ExternalStatus.POSTED: DocumentStatus.POSTED_EXTERNALLY,
    ExternalStatus.UNPOSTED: DocumentStatus.UNPOSTED_EXTERNALLY,
    ExternalStatus.REJECTED: DocumentStatus.REJECTED_BY_EXTERNAL,
    ExternalStatus.ERROR: DocumentStatus.REJECTED_BY_EXTERNAL,
}


def _claimable(now: datetime):
    """Pending, Failed with attempts left, or Processing under an expired claim"""
    stale_before = now - timedelta(seconds=settings.QUEUE_CLAIM_TIMEOUT_SECONDS)
    return or_(
        IntegrationQueueItem.status == QueueItemStatus.PENDING,
        and_(
            IntegrationQueueItem.status == QueueItemStatus.FAILED,
            IntegrationQueueItem.attempts < IntegrationQueueItem.max_attempts,
        ),
        and_(
            IntegrationQueueItem.status == QueueItemStatus.PROCESSING,
            IntegrationQueueItem.claimed_at < stale_before,
        ),
    )


class IntegrationQueueService:
    """Queue operations on one session: enqueue, claim, outcome bookkeeping, operator actions"""

    def __init__(
        self,
        db: AsyncSession,
        payload_builder: PayloadBuilder | None = None,
        max_attempts: int | None = None,
    ):
        self.db = db
        self.payload_builder = payload_builder or PayloadBuilder(ReferenceLookup(db))
        self.max_attempts = max_attempts or settings.QUEUE_MAX_ATTEMPTS

    async def enqueue(
        self,
        document_id: int,
        operation: QueueOperation | str,
        *,
        freshness_token: str | None = None,
        commit: bool = True,
    ) -> IntegrationQueueItem:
        """
        Snapshot the document's current version into a new Pending item.

        Never deduplicates: every call is a new item with its own attempts,
        which is what manual resend relies on. The idempotency key lets the
        external system drop repeated side effects.
        """
        operation = QueueOperation(operation)
        document = await DocumentStatusManager(self.db).get_document(document_id)

        organization_name = await self.db.scalar(
            select(Organization.name).where(Organization.id == document.organization_id)
        )
        version_data = await self.db.scalar(
            select(DocumentVersion.data).where(
                DocumentVersion.document_id == document.id,
                DocumentVersion.version == document.current_version,
            )
        )

        payload = await self.payload_builder.build(
            document, organization_name, version_data, freshness_token
        )

        item = IntegrationQueueItem(
            document_id=document.id,
            operation=operation,
            status=QueueItemStatus.PENDING,
            attempts=0,
            max_attempts=self.max_attempts,
            payload=payload,
            idempotency_key=payload["idempotencyKey"],
        )
        self.db.add(item)
        await self.db.flush()

        logger.info(
            "Document enqueued for external system",
            extra_data={
                "queue_item_id": item.id,
                "document_id": document.id,
                "operation": operation.value,
                "idempotency_key": item.idempotency_key,
            }
        )

        if commit:
            await self.db.commit()
        return item

    async def claim_batch(self, limit: int | None = None) -> list[IntegrationQueueItem]:
        """
        Atomically move up to ``limit`` claimable items to Processing, oldest first.

        Candidates are picked with FOR UPDATE SKIP LOCKED and the status is
        re-checked in the UPDATE itself; only ids returned by this statement
        belong to the caller.
        """
        limit = limit or settings.QUEUE_BATCH_SIZE
        now = utcnow()
        candidates = (
            select(IntegrationQueueItem.id)
            .where(_claimable(now))
            .order_by(IntegrationQueueItem.created_at, IntegrationQueueItem.id)
            .limit(limit)
            .with_for_update(skip_locked=True)
        )
        result = await self.db.execute(
            update(IntegrationQueueItem)
            .where(IntegrationQueueItem.id.in_(candidates), _claimable(now))
            .values(status=QueueItemStatus.PROCESSING, claimed_at=now)
            .returning(IntegrationQueueItem.id)
            .execution_options(synchronize_session=False)
        )
        claimed_ids = list(result.scalars().all())
        await self.db.commit()

        if not claimed_ids:
            return []

        items = await self.db.execute(
            select(IntegrationQueueItem)
            .where(IntegrationQueueItem.id.in_(claimed_ids))
            .order_by(IntegrationQueueItem.created_at, IntegrationQueueItem.id)
            .execution_options(populate_existing=True)
        )
        return list(items.scalars().all())

    async def get_item(self, item_id: int) -> IntegrationQueueItem:
        result = await self.db.execute(
            select(IntegrationQueueItem)
            .where(IntegrationQueueItem.id == item_id)
            .execution_options(populate_existing=True)
        )
        item = result.scalar_one_or_none()
        if item is None:
            raise QueueItemNotFoundError(item_id)
        return item

    async def mark_completed(self, item: IntegrationQueueItem) -> None:
        now = utcnow()
        item.status = QueueItemStatus.COMPLETED
        item.last_error = None
        item.processed_at = now
        item.completed_at = now
        await self.db.commit()

    async def mark_failed(self, item_id: int, error: str) -> IntegrationQueueItem:
        """
        Count a failed attempt.

        Back to Pending while attempts remain (the next tick picks it up again
        in created_at order), Failed at the ceiling. The document keeps its
        status; only its external_error shows what went wrong.
        """
        item = await self.get_item(item_id)
        error = (error or "unknown error")[:MAX_ERROR_LENGTH]

        item.attempts += 1
        item.last_error = error
        item.processed_at = utcnow()
        if item.attempts >= item.max_attempts:
            item.status = QueueItemStatus.FAILED
        else:
            item.status = QueueItemStatus.PENDING

        document = await self.db.get(Document, item.document_id)
        if document is not None:
            document.external_error = error

        await self.db.commit()

        log = logger.error if item.status == QueueItemStatus.FAILED else logger.warning
        log(
            "Queue item attempt failed",
            extra_data={
                "queue_item_id": item.id,
                "document_id": item.document_id,
                "attempts": item.attempts,
                "max_attempts": item.max_attempts,
                "status": item.status.value,
                "error": error,
            }
        )
        return item

    async def retry_queue_item(self, item_id: int) -> IntegrationQueueItem:
        """
        Operator action: give a Failed item a fresh set of attempts.

        The reset is conditional on the status, so an item a worker is
        processing right now (or has completed) is never put back in line.
        """
        result = await self.db.execute(
            update(IntegrationQueueItem)
            .where(
                IntegrationQueueItem.id == item_id,
                IntegrationQueueItem.status == QueueItemStatus.FAILED,
            )
            .values(
                status=QueueItemStatus.PENDING,
                attempts=0,
                last_error=None,
                claimed_at=None,
                processed_at=None,
                completed_at=None,
            )
            .returning(IntegrationQueueItem.id)
            .execution_options(synchronize_session=False)
        )
        reset = result.scalar_one_or_none() is not None
        await self.db.commit()

        item = await self.get_item(item_id)
        if not reset:
            raise QueueItemNotRetryableError(item.id, QueueItemStatus(item.status).value)

        logger.info(
            "Queue item reset for retry",
            extra_data={"queue_item_id": item.id, "document_id": item.document_id}
        )
        return item

    async def resend_document(self, document_id: int) -> IntegrationQueueItem:
        """Operator action: push the current version again as a new item"""
        return await self.enqueue(document_id, QueueOperation.UPSERT_DOCUMENT)

    async def get_stats(self) -> dict[str, int]:
        result = await self.db.execute(
            select(IntegrationQueueItem.status, func.count(IntegrationQueueItem.id))
            .group_by(IntegrationQueueItem.status)
        )
        stats = {status.value: 0 for status in QueueItemStatus}
        for status, count in result.all():
            stats[QueueItemStatus(status).value] = count
        stats["total"] = sum(stats.values())
        return stats

    async def list_items(
        self,
        status: QueueItemStatus | None = None,
        document_id: int | None = None,
        limit: int = 50,
    ) -> list[IntegrationQueueItem]:
        stmt = select(IntegrationQueueItem)
        if status is not None:
            stmt = stmt.where(IntegrationQueueItem.status == status)
        if document_id is not None:
            stmt = stmt.where(IntegrationQueueItem.document_id == document_id)
        result = await self.db.execute(
            stmt.order_by(IntegrationQueueItem.created_at.desc(), IntegrationQueueItem.id.desc())
            .limit(limit)
        )
        return list(result.scalars().all())


def _require_success(operation: str, result: ExternalOperationResult) -> None:
    if not result.success:
        raise ExternalSystemError(
            message=result.error_message or f"{operation} was rejected",
            details={"operation": operation, "error_code": result.error_code},
            transient=False,
        )


@log_async_operation("refresh_external_status")
async def refresh_external_status(
    db: AsyncSession,
    client: ExternalSystemClient,
    document_id: int,
) -> Document:
    """
    Pull the external status of a sent document and mirror it on the portal
    status when the lifecycle allows the move.
    """
    manager = DocumentStatusManager(db)
    document = await manager.get_document(document_id)
    if not document.external_ref:
        raise MissingExternalReferenceError(document.id)

    result = await client.get_document_status(document.external_ref)
    _require_success("get_document_status", result)

    if result.status is not None:
        document.external_status = result.status
        target = EXTERNAL_TO_PORTAL_STATUS.get(result.status)
        if target is not None:
            await manager.apply_outcome(
                document,
                target,
                source=HistorySource.EXTERNAL,
                comment=result.error_message,
            )
        if result.status in (ExternalStatus.REJECTED, ExternalStatus.ERROR):
            document.external_error = result.error_message
    await db.commit()
    return document


class IntegrationQueueWorker:
    """
    One tick of the outbound queue: claim a batch, then process the items
    concurrently, each in its own session so one failure never rolls back
    another item's outcome.
    """

    def __init__(
        self,
        session_factory: Callable[[], Any],
        client: ExternalSystemClient | None = None,
        batch_size: int | None = None,
        concurrency: int | None = None,
    ):
        self._session_factory = session_factory
        self._client = client or ExternalSystemClient()
        self._batch_size = batch_size or settings.QUEUE_BATCH_SIZE
        self._concurrency = concurrency or settings.QUEUE_CONCURRENCY

    async def run_once(self) -> dict[str, int]:
        set_correlation_id()

        async with self._session_factory() as db:
            items = await IntegrationQueueService(db).claim_batch(self._batch_size)
        if not items:
            return {"claimed": 0, "completed": 0, "failed": 0}

        semaphore = asyncio.Semaphore(self._concurrency)

        async def guarded(item_id: int) -> bool:
            async with semaphore:
                return await self.process_item(item_id)

        results = await asyncio.gather(
            *(guarded(item.id) for item in items), return_exceptions=True
        )
        for item, outcome in zip(items, results):
            if isinstance(outcome, BaseException):
                logger.error(
                    "Queue item bookkeeping failed",
                    extra_data={"queue_item_id": item.id, "error": str(outcome)},
                    exc_info=outcome,
                )

        completed = sum(1 for r in results if r is True)
        summary = {
            "claimed": len(items),
            "completed": completed,
            "failed": len(items) - completed,
        }
        logger.info("Integration queue tick finished", extra_data=summary)
        return summary

    async def process_item(self, item_id: int) -> bool:
        """
        Push one item claimed by this tick; returns True when it completed.

        Callers must hold the claim (ids from claim_batch). If the bookkeeping
        below fails the item stays Processing until QUEUE_CLAIM_TIMEOUT_SECONDS
        pass, then claim_batch hands it out again.
        """
        async with self._session_factory() as db:
            service = IntegrationQueueService(db)
            try:
                item = await service.get_item(item_id)
                await self._dispatch(db, item)
            except Exception as exc:
                await db.rollback()
                await service.mark_failed(item_id, str(exc))
                return False

            await service.mark_completed(item)
            logger.info(
                "Queue item completed",
                extra_data={
                    "queue_item_id": item.id,
                    "document_id": item.document_id,
                    "operation": QueueOperation(item.operation).value,
                }
            )
            return True

    async def _dispatch(self, db: AsyncSession, item: IntegrationQueueItem) -> None:
        operation = QueueOperation(item.operation)
        manager = DocumentStatusManager(db)
        document = await manager.get_document(item.document_id)

        if operation == QueueOperation.UPSERT_DOCUMENT:
            result = await self._client.upsert_document(item.payload)
            _require_success("upsert_document", result)
            if not (result.external_ref or document.external_ref):
                raise ExternalSystemError(
                    message="upsert_document response carries no document reference",
                    transient=False,
                )
            document.external_ref = result.external_ref or document.external_ref
            document.external_status = result.status or ExternalStatus.ACCEPTED
            document.external_error = None
            document.sent_at = utcnow()
            await manager.apply_outcome(
                document, DocumentStatus.SENT_TO_EXTERNAL, source=HistorySource.QUEUE
            )

        elif operation == QueueOperation.POST_DOCUMENT:
            if not document.external_ref:
                raise MissingExternalReferenceError(document.id)
            result = await self._client.post_document(document.external_ref)
            _require_success("post_document", result)
            document.external_status = result.status or ExternalStatus.POSTED
            document.external_error = None
            await manager.apply_outcome(
                document, DocumentStatus.POSTED_EXTERNALLY, source=HistorySource.EXTERNAL
            )

        else:
            raise OperationNotImplementedError(operation.value)
