"""
Analytics Service - reference data writes and subscriber administration.

Every value write appends its event in the same transaction. Enabling a
subscription, configuring a webhook or asking for a resync queues resync jobs
so the subscriber gets a full copy of the types it can see.
"""
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.clock import utcnow
from app.core.config import settings
from app.core.exceptions import (
    AnalyticsTypeNotFoundError,
    OrganizationNotFoundError,
    ValidationException,
)
from app.core.logging import get_logger
from app.db.models.analytics import (
    AnalyticsEventType,
    AnalyticsSubscription,
    AnalyticsType,
    AnalyticsValue,
    OrgWebhook,
    ResyncJob,
    ResyncJobStatus,
)
from app.db.models.organization import Organization
from app.domain.services.event_log import EventLog, NewEvent, value_event_payload

logger = get_logger(__name__)


class AnalyticsService:
    def __init__(self, db: AsyncSession):
        self.db = db
        self.event_log = EventLog(db)

    # ==================== Types and values ====================

    async def create_type(self, code: str, name: str) -> AnalyticsType:
        code = code.strip().upper()
        existing = await self.db.scalar(select(AnalyticsType).where(AnalyticsType.code == code))
        if existing is not None:
            raise ValidationException(f"Analytics type {code} already exists", field="code")

        analytics_type = AnalyticsType(code=code, name=name, is_active=True)
        self.db.add(analytics_type)
        await self.db.commit()
        return analytics_type

    async def get_type(self, type_id: int) -> AnalyticsType:
        analytics_type = await self.db.get(AnalyticsType, type_id)
        if analytics_type is None:
            raise AnalyticsTypeNotFoundError(type_id)
        return analytics_type

    async def get_type_by_code(self, code: str) -> AnalyticsType:
        analytics_type = await self.db.scalar(
            select(AnalyticsType).where(AnalyticsType.code == code.strip().upper())
        )
        if analytics_type is None:
            raise AnalyticsTypeNotFoundError(code)
        return analytics_type

    async def upsert_value(
        self,
        type_code: str,
        code: str,
        name: str,
        attrs: dict[str, Any] | None = None,
        is_active: bool = True,
    ) -> AnalyticsValue:
        """Insert or update a value and log an Upsert (active) or Deactivate event"""
        analytics_type = await self.get_type_by_code(type_code)

        value = await self.db.scalar(
            select(AnalyticsValue).where(
                AnalyticsValue.type_id == analytics_type.id,
                AnalyticsValue.code == code,
            )
        )
        now = utcnow()
        if value is None:
            value = AnalyticsValue(type_id=analytics_type.id, code=code, created_at=now)
            self.db.add(value)
        value.name = name
        value.attrs = dict(attrs or {})
        value.is_active = is_active
        value.modified_at = now
        await self.db.flush()

        event_type = AnalyticsEventType.UPSERT if is_active else AnalyticsEventType.DEACTIVATE
        await self.event_log.append([
            NewEvent(
                type_id=analytics_type.id,
                value_id=value.id,
                event_type=event_type,
                payload=value_event_payload(event_type, analytics_type.code, value),
            )
        ])
        await self.db.commit()

        logger.info(
            "Analytics value written",
            extra_data={
                "type_code": analytics_type.code,
                "value_id": value.id,
                "event_type": event_type.value,
            }
        )
        return value

    # ==================== Subscriptions and webhooks ====================

    async def _require_organization(self, organization_id: int) -> None:
        if await self.db.get(Organization, organization_id) is None:
            raise OrganizationNotFoundError(organization_id)

    async def set_subscription(
        self, organization_id: int, type_id: int, enabled: bool
    ) -> AnalyticsSubscription:
        await self._require_organization(organization_id)
        await self.get_type(type_id)

        subscription = await self.db.scalar(
            select(AnalyticsSubscription).where(
                AnalyticsSubscription.organization_id == organization_id,
                AnalyticsSubscription.type_id == type_id,
            )
        )
        if subscription is None:
            subscription = AnalyticsSubscription(organization_id=organization_id, type_id=type_id)
            self.db.add(subscription)
        subscription.is_enabled = enabled
        subscription.updated_at = utcnow()
        await self.db.flush()

        if enabled:
            await self.create_resync_jobs(organization_id, [type_id], commit=False)
        await self.db.commit()
        return subscription

    async def upsert_webhook(
        self,
        organization_id: int,
        url: str,
        secret: str,
        is_active: bool = True,
    ) -> OrgWebhook:
        """
        Configure the organization's endpoint and replay everything it can see.

        The delivery cursor is kept; the replay arrives as Snapshot events
        after it. A reconfigured endpoint is retried right away.
        """
        await self._require_organization(organization_id)

        webhook = await self.db.scalar(
            select(OrgWebhook).where(OrgWebhook.organization_id == organization_id)
        )
        if webhook is None:
            webhook = OrgWebhook(organization_id=organization_id, last_delivered_seq=0)
            self.db.add(webhook)
        webhook.url = url
        webhook.secret = secret
        webhook.is_active = is_active
        webhook.fail_count = 0
        webhook.last_error = None
        webhook.next_retry_at = utcnow()
        await self.db.flush()

        await self.create_resync_jobs(
            organization_id, await self.enabled_type_ids(organization_id), commit=False
        )
        await self.db.commit()
        return webhook

    async def request_resync(self, organization_id: int) -> int:
        await self._require_organization(organization_id)
        return await self.create_resync_jobs(
            organization_id, await self.enabled_type_ids(organization_id)
        )

    async def enabled_type_ids(self, organization_id: int) -> list[int]:
        result = await self.db.execute(
            select(AnalyticsSubscription.type_id).where(
                AnalyticsSubscription.organization_id == organization_id,
                AnalyticsSubscription.is_enabled.is_(True),
            )
        )
        return list(result.scalars().all())

    async def create_resync_jobs(
        self,
        organization_id: int,
        type_ids: list[int],
        *,
        commit: bool = True,
    ) -> int:
        """Queue a resync per type unless one is already pending or running"""
        if not type_ids:
            return 0

        result = await self.db.execute(
            select(ResyncJob.type_id).where(
                ResyncJob.organization_id == organization_id,
                ResyncJob.type_id.in_(type_ids),
                ResyncJob.status.in_([ResyncJobStatus.PENDING, ResyncJobStatus.PROCESSING]),
            )
        )
        running = set(result.scalars().all())

        now = utcnow()
        created = 0
        for type_id in dict.fromkeys(type_ids):
            if type_id in running:
                continue
            self.db.add(
                ResyncJob(
                    organization_id=organization_id,
                    type_id=type_id,
                    status=ResyncJobStatus.PENDING,
                    batch_size=settings.RESYNC_DEFAULT_BATCH_SIZE,
                    fail_count=0,
                    next_retry_at=now,
                )
            )
            created += 1

        if commit:
            await self.db.commit()
        else:
            await self.db.flush()

        if created:
            logger.info(
                "Resync jobs created",
                extra_data={"organization_id": organization_id, "jobs": created}
            )
        return created
