"""
Document Status Manager - applies transitions to persisted documents
"""
from collections import deque

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select

from app.core.exceptions import DocumentNotFoundError
from app.core.logging import get_logger
from app.db.models.document import Document, DocumentHistory, DocumentStatus, HistorySource
from app.state_machine.document_status import validate_transition
from app.state_machine.states import AUTOMATIC_STATUSES, DOCUMENT_TRANSITIONS

logger = get_logger(__name__)


def _automatic_path(
    from_status: DocumentStatus, to_status: DocumentStatus
) -> list[DocumentStatus] | None:
    """
    Shortest chain of legal steps from ``from_status`` to ``to_status`` whose
    intermediate statuses are all automatic, or None.
    """
    queue = deque([(from_status, [])])
    seen = {from_status}
    while queue:
        current, path = queue.popleft()
        for nxt in DOCUMENT_TRANSITIONS.get(current, ()):
            if nxt == to_status:
                return path + [nxt]
            if nxt in AUTOMATIC_STATUSES and nxt not in seen:
                seen.add(nxt)
                queue.append((nxt, path + [nxt]))
    return None


class DocumentStatusManager:
    """
    Validates and records document status changes.

    Changes are flushed, not committed: the caller owns the transaction so a
    status change lands together with the queue item or version it belongs to.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_document(self, document_id: int, *, for_update: bool = False) -> Document:
        stmt = select(Document).where(Document.id == document_id)
        if for_update:
            stmt = stmt.with_for_update()
        result = await self.db.execute(stmt)
        document = result.scalar_one_or_none()
        if document is None:
            raise DocumentNotFoundError(document_id)
        return document

    async def transition_to(
        self,
        document: Document,
        target: DocumentStatus,
        *,
        source: HistorySource = HistorySource.USER,
        comment: str | None = None,
    ) -> Document:
        """Apply one legal transition; raises InvalidStatusTransitionError otherwise"""
        current = DocumentStatus(document.status)
        target = DocumentStatus(target)
        validate_transition(current, target)

        document.status = target
        self.db.add(
            DocumentHistory(
                document_id=document.id,
                from_status=current.value,
                to_status=target.value,
                source=source,
                comment=comment,
            )
        )
        await self.db.flush()

        logger.info(
            "Document status changed",
            extra_data={
                "document_id": document.id,
                "from_status": current.value,
                "to_status": target.value,
                "source": source.value,
            }
        )
        return document

    async def apply_outcome(
        self,
        document: Document,
        target: DocumentStatus,
        *,
        source: HistorySource,
        comment: str | None = None,
    ) -> bool:
        """
        Move a document to an outcome-driven status.

        Walks through automatic intermediate statuses (Frozen reaches
        SentToExternal via QueuedToExternal). Returns False and leaves the
        status alone when the document is already there or no such path
        exists, e.g. a resend of a document that is already posted.
        """
        current = DocumentStatus(document.status)
        target = DocumentStatus(target)
        if current == target:
            return False

        path = _automatic_path(current, target)
        if path is None:
            logger.warning(
                "Outcome status not reachable, keeping current status",
                extra_data={
                    "document_id": document.id,
                    "current_status": current.value,
                    "target_status": target.value,
                }
            )
            return False

        for step in path:
            await self.transition_to(document, step, source=source, comment=comment)
        return True

    async def get_history(self, document_id: int) -> list[DocumentHistory]:
        result = await self.db.execute(
            select(DocumentHistory)
            .where(DocumentHistory.document_id == document_id)
            .order_by(DocumentHistory.created_at, DocumentHistory.id)
        )
        return list(result.scalars().all())
