"""
Document Service - user-driven document lifecycle.

Freezing is the hand-off to the integration pipeline: the current version is
locked, an UpsertDocument item is queued and the document moves to
QueuedToExternal, all in one transaction.
"""
from datetime import date
from decimal import Decimal
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.clock import utcnow
from app.core.exceptions import DocumentNotEditableError, InvalidStatusTransitionError
from app.core.logging import get_logger
from app.db.models.document import (
    Document,
    DocumentStatus,
    DocumentVersion,
    HistorySource,
)
from app.db.models.integration_queue import IntegrationQueueItem, QueueOperation
from app.domain.services.integration_queue_service import IntegrationQueueService
from app.state_machine.document_status import (
    available_transitions,
    is_editable,
    is_final_status,
    user_transitions,
)
from app.state_machine.manager import DocumentStatusManager

logger = get_logger(__name__)


class DocumentService:
    def __init__(self, db: AsyncSession, queue: IntegrationQueueService | None = None):
        self.db = db
        self.status_manager = DocumentStatusManager(db)
        self.queue = queue or IntegrationQueueService(db)

    async def create_document(
        self,
        organization_id: int,
        document_type: str,
        number: str,
        document_date: date,
        *,
        counterparty_name: str | None = None,
        counterparty_inn: str | None = None,
        amount: Decimal | float | None = None,
        currency: str = "RUB",
        data: dict[str, Any] | None = None,
    ) -> Document:
        """Create a Draft document with its first version"""
        document = Document(
            organization_id=organization_id,
            type=document_type,
            number=number,
            date=document_date,
            counterparty_name=counterparty_name,
            counterparty_inn=counterparty_inn,
            amount=amount,
            currency=currency,
            status=DocumentStatus.DRAFT,
            current_version=1,
        )
        self.db.add(document)
        await self.db.flush()
        self.db.add(DocumentVersion(document_id=document.id, version=1, data=dict(data or {})))
        await self.db.commit()
        return document

    async def get_current_version(self, document: Document) -> DocumentVersion | None:
        result = await self.db.execute(
            select(DocumentVersion).where(
                DocumentVersion.document_id == document.id,
                DocumentVersion.version == document.current_version,
            )
        )
        return result.scalar_one_or_none()

    async def update_content(self, document_id: int, data: dict[str, Any]) -> DocumentVersion:
        """
        Replace the content of an editable document.

        A frozen version is never modified; editing after a round trip to the
        external system starts a new version.
        """
        document = await self.status_manager.get_document(document_id)
        if not is_editable(document.status):
            raise DocumentNotEditableError(document.id, DocumentStatus(document.status).value)

        version = await self.get_current_version(document)
        if version is None or version.is_frozen:
            document.current_version = (document.current_version or 0) + 1
            version = DocumentVersion(
                document_id=document.id, version=document.current_version, data=dict(data)
            )
            self.db.add(version)
        else:
            version.data = dict(data)
        await self.db.commit()
        return version

    async def freeze(self, document_id: int) -> tuple[Document, IntegrationQueueItem]:
        """Lock the current version and queue it for the external system"""
        document = await self.status_manager.get_document(document_id, for_update=True)
        await self.status_manager.transition_to(
            document, DocumentStatus.FROZEN, source=HistorySource.USER
        )

        now = utcnow()
        version = await self.get_current_version(document)
        if version is not None:
            version.is_frozen = True
            version.frozen_at = now
        document.frozen_at = now

        try:
            item = await self.queue.enqueue(
                document.id, QueueOperation.UPSERT_DOCUMENT, commit=False
            )
        except Exception:
            await self.db.rollback()
            raise

        await self.status_manager.transition_to(
            document, DocumentStatus.QUEUED_TO_EXTERNAL, source=HistorySource.QUEUE
        )
        await self.db.commit()

        logger.info(
            "Document frozen and queued",
            extra_data={"document_id": document.id, "queue_item_id": item.id}
        )
        return document, item

    async def change_status(
        self,
        document_id: int,
        target: DocumentStatus,
        comment: str | None = None,
    ) -> Document:
        """
        User-requested transition.

        Automatic statuses can't be picked by hand; Frozen goes through
        ``freeze`` so the document is always queued when it gets there.
        """
        target = DocumentStatus(target)
        document = await self.status_manager.get_document(document_id)

        if target == DocumentStatus.FROZEN:
            document, _ = await self.freeze(document_id)
            return document

        current = DocumentStatus(document.status)
        if target not in user_transitions(current):
            raise InvalidStatusTransitionError(
                current.value, target.value, [s.value for s in user_transitions(current)]
            )

        await self.status_manager.transition_to(
            document, target, source=HistorySource.USER, comment=comment
        )
        await self.db.commit()
        return document

    async def describe_transitions(self, document_id: int) -> dict[str, Any]:
        document = await self.status_manager.get_document(document_id)
        status = DocumentStatus(document.status)
        return {
            "document_id": document.id,
            "status": status.value,
            "editable": is_editable(status),
            "final": is_final_status(status),
            "available": [s.value for s in available_transitions(status)],
            "user_available": [s.value for s in user_transitions(status)],
        }
