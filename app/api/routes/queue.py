"""
Integration queue operator endpoints.

All routes require the X-Admin-API-Key header.
"""
from datetime import datetime

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, field_serializer
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.dependencies.admin_auth import require_admin_api_key
from app.db.database import get_db
from app.db.models.document import DocumentStatus, ExternalStatus
from app.db.models.integration_queue import QueueItemStatus, QueueOperation
from app.domain.services.external_client import ExternalSystemClient
from app.domain.services.integration_queue_service import (
    IntegrationQueueService,
    refresh_external_status,
)

router = APIRouter(dependencies=[Depends(require_admin_api_key)])


class QueueItemResponse(BaseModel):
    id: int
    document_id: int
    operation: QueueOperation
    status: QueueItemStatus
    attempts: int
    max_attempts: int
    last_error: str | None
    idempotency_key: str
    created_at: datetime | None
    processed_at: datetime | None
    completed_at: datetime | None

    model_config = {"from_attributes": True}

    @field_serializer("operation", "status")
    def serialize_enum(self, v) -> str:
        return getattr(v, "value", v)


class ResendRequest(BaseModel):
    document_id: int


class DocumentStatusResponse(BaseModel):
    id: int
    status: DocumentStatus
    external_ref: str | None
    external_status: ExternalStatus
    external_error: str | None

    model_config = {"from_attributes": True}

    @field_serializer("status", "external_status")
    def serialize_enum(self, v) -> str:
        return getattr(v, "value", v)


@router.get("/stats", response_model=dict[str, int])
async def queue_stats(db: AsyncSession = Depends(get_db)) -> dict[str, int]:
    """Item counts per status plus the total"""
    return await IntegrationQueueService(db).get_stats()


@router.get("/items", response_model=list[QueueItemResponse])
async def list_queue_items(
    status: QueueItemStatus | None = None,
    document_id: int | None = None,
    limit: int = Query(default=50, ge=1, le=500),
    db: AsyncSession = Depends(get_db)
) -> list[QueueItemResponse]:
    return await IntegrationQueueService(db).list_items(status, document_id, limit)


@router.post("/items/{item_id}/retry", response_model=QueueItemResponse)
async def retry_queue_item(
    item_id: int,
    db: AsyncSession = Depends(get_db)
) -> QueueItemResponse:
    """Reset attempts of a Failed item and put it back in line; 409 for any other status"""
    return await IntegrationQueueService(db).retry_queue_item(item_id)


@router.post("/resend", response_model=QueueItemResponse, status_code=201)
async def resend_document(
    payload: ResendRequest,
    db: AsyncSession = Depends(get_db)
) -> QueueItemResponse:
    """Queue the document's current version again as a new item"""
    return await IntegrationQueueService(db).resend_document(payload.document_id)


@router.post("/documents/{document_id}/refresh-status", response_model=DocumentStatusResponse)
async def refresh_document_status(
    document_id: int,
    db: AsyncSession = Depends(get_db)
) -> DocumentStatusResponse:
    """Ask the external system for the document's status and mirror it"""
    return await refresh_external_status(db, ExternalSystemClient(), document_id)
