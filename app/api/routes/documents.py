"""
Document API Routes
"""
from datetime import date, datetime
from decimal import Decimal
from typing import Any

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field, field_serializer
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.database import get_db
from app.db.models.document import DocumentStatus
from app.domain.services.document_service import DocumentService

router = APIRouter()


class DocumentCreate(BaseModel):
    """Schema for creating a Draft document"""
    organization_id: int
    type: str = Field(min_length=1, max_length=64)
    number: str = Field(min_length=1, max_length=64)
    document_date: date
    counterparty_name: str | None = None
    counterparty_inn: str | None = Field(default=None, max_length=20)
    amount: Decimal | None = None
    currency: str = Field(default="RUB", min_length=3, max_length=3)
    data: dict[str, Any] = Field(default_factory=dict)


class DocumentResponse(BaseModel):
    id: int
    organization_id: int
    type: str
    number: str
    status: DocumentStatus
    current_version: int
    external_ref: str | None
    external_error: str | None
    frozen_at: datetime | None
    sent_at: datetime | None

    model_config = {"from_attributes": True}

    @field_serializer("status")
    def serialize_status(self, v: DocumentStatus) -> str:
        return DocumentStatus(v).value


class QueueItemRef(BaseModel):
    id: int
    idempotency_key: str

    model_config = {"from_attributes": True}


class FreezeResponse(BaseModel):
    document: DocumentResponse
    queue_item: QueueItemRef


class StatusChangeRequest(BaseModel):
    status: DocumentStatus
    comment: str | None = Field(default=None, max_length=1000)


class TransitionsResponse(BaseModel):
    document_id: int
    status: str
    editable: bool
    final: bool
    available: list[str]
    user_available: list[str]


@router.post("", response_model=DocumentResponse, status_code=201)
async def create_document(
    payload: DocumentCreate,
    db: AsyncSession = Depends(get_db)
) -> DocumentResponse:
    document = await DocumentService(db).create_document(
        payload.organization_id,
        payload.type,
        payload.number,
        payload.document_date,
        counterparty_name=payload.counterparty_name,
        counterparty_inn=payload.counterparty_inn,
        amount=payload.amount,
        currency=payload.currency,
        data=payload.data,
    )
    return document


@router.get("/{document_id}", response_model=DocumentResponse)
async def get_document(
    document_id: int,
    db: AsyncSession = Depends(get_db)
) -> DocumentResponse:
    return await DocumentService(db).status_manager.get_document(document_id)


@router.post("/{document_id}/freeze", response_model=FreezeResponse)
async def freeze_document(
    document_id: int,
    db: AsyncSession = Depends(get_db)
) -> FreezeResponse:
    """Lock the current version and queue it for the external system"""
    document, item = await DocumentService(db).freeze(document_id)
    return FreezeResponse(
        document=DocumentResponse.model_validate(document),
        queue_item=QueueItemRef.model_validate(item),
    )


@router.post("/{document_id}/status", response_model=DocumentResponse)
async def change_document_status(
    document_id: int,
    payload: StatusChangeRequest,
    db: AsyncSession = Depends(get_db)
) -> DocumentResponse:
    return await DocumentService(db).change_status(document_id, payload.status, payload.comment)


@router.get("/{document_id}/transitions", response_model=TransitionsResponse)
async def get_document_transitions(
    document_id: int,
    db: AsyncSession = Depends(get_db)
) -> TransitionsResponse:
    return await DocumentService(db).describe_transitions(document_id)
