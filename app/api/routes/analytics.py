"""
Analytics reference data and subscriber administration
"""
from datetime import datetime
from typing import Any

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field, field_validator
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.dependencies.admin_auth import require_admin_api_key
from app.db.database import get_db
from app.domain.services.analytics_service import AnalyticsService

router = APIRouter()


class AnalyticsTypeCreate(BaseModel):
    code: str = Field(min_length=1, max_length=64)
    name: str = Field(min_length=1, max_length=255)


class AnalyticsTypeResponse(BaseModel):
    id: int
    code: str
    name: str
    is_active: bool

    model_config = {"from_attributes": True}


class AnalyticsValueUpsert(BaseModel):
    type_code: str = Field(min_length=1, max_length=64)
    code: str = Field(min_length=1, max_length=128)
    name: str = Field(min_length=1, max_length=500)
    attrs: dict[str, Any] = Field(default_factory=dict)
    is_active: bool = True


class AnalyticsValueResponse(BaseModel):
    id: int
    type_id: int
    code: str
    name: str
    attrs: dict[str, Any]
    is_active: bool
    modified_at: datetime

    model_config = {"from_attributes": True}


class SubscriptionUpdate(BaseModel):
    enabled: bool = True


class SubscriptionResponse(BaseModel):
    organization_id: int
    type_id: int
    is_enabled: bool

    model_config = {"from_attributes": True}


class WebhookConfig(BaseModel):
    url: str = Field(min_length=1, max_length=2000)
    secret: str = Field(min_length=16, max_length=255)
    is_active: bool = True

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        v = v.strip()
        if not v.startswith(("http://", "https://")):
            raise ValueError("Webhook URL must start with http:// or https://")
        return v


class WebhookResponse(BaseModel):
    """The secret is never echoed back"""
    organization_id: int
    url: str
    is_active: bool
    last_delivered_seq: int
    fail_count: int
    last_error: str | None
    next_retry_at: datetime

    model_config = {"from_attributes": True}


class ResyncResponse(BaseModel):
    organization_id: int
    jobs_created: int


@router.post(
    "/types",
    response_model=AnalyticsTypeResponse,
    status_code=201,
    dependencies=[Depends(require_admin_api_key)],
)
async def create_analytics_type(
    payload: AnalyticsTypeCreate,
    db: AsyncSession = Depends(get_db)
) -> AnalyticsTypeResponse:
    return await AnalyticsService(db).create_type(payload.code, payload.name)


@router.post(
    "/values",
    response_model=AnalyticsValueResponse,
    dependencies=[Depends(require_admin_api_key)],
)
async def upsert_analytics_value(
    payload: AnalyticsValueUpsert,
    db: AsyncSession = Depends(get_db)
) -> AnalyticsValueResponse:
    """Write a value; subscribers get an Upsert or Deactivate event"""
    return await AnalyticsService(db).upsert_value(
        payload.type_code, payload.code, payload.name, payload.attrs, payload.is_active
    )


@router.put("/orgs/{org_id}/subscriptions/{type_id}", response_model=SubscriptionResponse)
async def set_subscription(
    org_id: int,
    type_id: int,
    payload: SubscriptionUpdate,
    db: AsyncSession = Depends(get_db)
) -> SubscriptionResponse:
    return await AnalyticsService(db).set_subscription(org_id, type_id, payload.enabled)


@router.put("/orgs/{org_id}/webhook", response_model=WebhookResponse)
async def configure_webhook(
    org_id: int,
    payload: WebhookConfig,
    db: AsyncSession = Depends(get_db)
) -> WebhookResponse:
    """Set the delivery endpoint; every enabled type is replayed as snapshots"""
    return await AnalyticsService(db).upsert_webhook(
        org_id, payload.url, payload.secret, payload.is_active
    )


@router.post("/orgs/{org_id}/resync", response_model=ResyncResponse, status_code=202)
async def request_resync(
    org_id: int,
    db: AsyncSession = Depends(get_db)
) -> ResyncResponse:
    jobs = await AnalyticsService(db).request_resync(org_id)
    return ResyncResponse(organization_id=org_id, jobs_created=jobs)
