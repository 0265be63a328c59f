"""
Webhook Dispatcher - streams analytics events to subscriber endpoints.

Body:
    {"orgId": ..., "fromSeq": ..., "toSeq": ...,
     "events": [{"seq", "typeCode", "eventType", "payload", "createdAt"}, ...]}

Header ``x-ecof-signature``: lowercase hex HMAC-SHA256 of the exact body
bytes, keyed by the subscriber's secret. Delivery is at-least-once: the
cursor only moves after a 2xx, so a failed batch is read and sent again.
"""
from __future__ import annotations

import asyncio
import hashlib
import hmac
import json
from datetime import timedelta
from typing import Any, Callable

import httpx
from sqlalchemy import and_, exists, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.backoff import next_retry_at
from app.core.clock import utcnow
from app.core.config import settings
from app.core.exceptions import WebhookDeliveryError
from app.core.logging import get_logger, set_correlation_id
from app.db.models.analytics import (
    AnalyticsEvent,
    AnalyticsSubscription,
    AnalyticsType,
    OrgWebhook,
)

logger = get_logger(__name__)

MAX_ERROR_LENGTH = 2000
MAX_RESPONSE_CHARS = 500

OUTCOME_DELIVERED = "delivered"
OUTCOME_IDLE = "idle"
OUTCOME_FAILED = "failed"


def sign_payload(body: bytes, secret: str) -> str:
    return hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()


def verify_signature(body: bytes, secret: str, signature: str | None) -> bool:
    """Subscriber-side check of the signature header"""
    if not signature:
        return False
    expected = sign_payload(body, secret)
    return hmac.compare_digest(expected, signature.strip().lower())


def build_batch_body(organization_id: int, events: list[dict[str, Any]]) -> bytes:
    """Serialize once; the signature is computed over these exact bytes"""
    return json.dumps(
        {
            "orgId": organization_id,
            "fromSeq": events[0]["seq"],
            "toSeq": events[-1]["seq"],
            "events": events,
        },
        ensure_ascii=False,
        separators=(",", ":"),
        default=str,
    ).encode("utf-8")


class WebhookDispatcher:
    def __init__(
        self,
        session_factory: Callable[[], Any],
        *,
        transport: httpx.AsyncBaseTransport | None = None,
        timeout: float | None = None,
        claim_limit: int | None = None,
        event_batch_size: int | None = None,
        concurrency: int | None = None,
    ):
        self._session_factory = session_factory
        self._transport = transport
        self._timeout = timeout or settings.WEBHOOK_TIMEOUT_SECONDS
        self._claim_limit = claim_limit or settings.WEBHOOK_CLAIM_BATCH
        self._event_batch_size = event_batch_size or settings.WEBHOOK_EVENT_BATCH_SIZE
        self._concurrency = concurrency or settings.WEBHOOK_CONCURRENCY

    async def claim_subscriptions(self, db: AsyncSession, limit: int | None = None) -> list[int]:
        """
        Claim due webhooks, stalest first.

        The claim itself pushes next_retry_at out by the grace window, so a
        second dispatcher skips them while this one has the POST in flight,
        without a lock held across the network call.
        """
        now = utcnow()
        due = and_(OrgWebhook.is_active.is_(True), OrgWebhook.next_retry_at <= now)
        candidates = (
            select(OrgWebhook.id)
            .where(due)
            .order_by(OrgWebhook.updated_at, OrgWebhook.id)
            .limit(limit or self._claim_limit)
            .with_for_update(skip_locked=True)
        )
        result = await db.execute(
            update(OrgWebhook)
            .where(OrgWebhook.id.in_(candidates), due)
            .values(next_retry_at=now + timedelta(seconds=settings.WEBHOOK_CLAIM_GRACE_SECONDS))
            .returning(OrgWebhook.id)
            .execution_options(synchronize_session=False)
        )
        claimed = list(result.scalars().all())
        await db.commit()
        return claimed

    async def fetch_events(self, db: AsyncSession, webhook: OrgWebhook) -> list[dict[str, Any]]:
        """Next events after the cursor, limited to types the organization has enabled"""
        enabled = exists().where(
            AnalyticsSubscription.organization_id == webhook.organization_id,
            AnalyticsSubscription.type_id == AnalyticsEvent.type_id,
            AnalyticsSubscription.is_enabled.is_(True),
        )
        result = await db.execute(
            select(AnalyticsEvent, AnalyticsType.code)
            .join(AnalyticsType, AnalyticsType.id == AnalyticsEvent.type_id)
            .where(AnalyticsEvent.seq > webhook.last_delivered_seq, enabled)
            .order_by(AnalyticsEvent.seq)
            .limit(self._event_batch_size)
        )
        return [
            {
                "seq": event.seq,
                "typeCode": type_code,
                "eventType": event.event_type.value,
                "payload": event.payload,
                "createdAt": event.created_at.isoformat() if event.created_at else None,
            }
            for event, type_code in result.all()
        ]

    async def run_once(self) -> dict[str, int]:
        set_correlation_id()
        async with self._session_factory() as db:
            webhook_ids = await self.claim_subscriptions(db)

        summary = {"claimed": len(webhook_ids), OUTCOME_DELIVERED: 0, OUTCOME_IDLE: 0, OUTCOME_FAILED: 0}
        if not webhook_ids:
            return summary

        semaphore = asyncio.Semaphore(self._concurrency)

        async def guarded(webhook_id: int) -> str:
            async with semaphore:
                return await self.deliver(webhook_id)

        results = await asyncio.gather(
            *(guarded(webhook_id) for webhook_id in webhook_ids), return_exceptions=True
        )
        for webhook_id, outcome in zip(webhook_ids, results):
            if isinstance(outcome, BaseException):
                summary[OUTCOME_FAILED] += 1
                logger.error(
                    "Webhook bookkeeping failed",
                    extra_data={"webhook_id": webhook_id, "error": str(outcome)},
                    exc_info=outcome,
                )
            else:
                summary[outcome] += 1

        logger.info("Webhook tick finished", extra_data=summary)
        return summary

    async def deliver(self, webhook_id: int) -> str:
        """Send one batch to one subscriber and move its cursor or back it off"""
        async with self._session_factory() as db:
            webhook = await db.get(OrgWebhook, webhook_id)
            if webhook is None or not webhook.is_active:
                return OUTCOME_IDLE

            events = await self.fetch_events(db, webhook)
            # Nothing is held open while the POST is in flight
            await db.commit()
            if not events:
                return OUTCOME_IDLE

            from_seq, to_seq = events[0]["seq"], events[-1]["seq"]
            body = build_batch_body(webhook.organization_id, events)

            try:
                await self._post(webhook.url, body, sign_payload(body, webhook.secret))
            except Exception as exc:
                await self._record_failure(db, webhook, exc)
                return OUTCOME_FAILED

            webhook.last_delivered_seq = max(webhook.last_delivered_seq or 0, to_seq)
            webhook.fail_count = 0
            webhook.last_error = None
            webhook.next_retry_at = utcnow()
            await db.commit()

            logger.info(
                "Webhook batch delivered",
                extra_data={
                    "webhook_id": webhook.id,
                    "organization_id": webhook.organization_id,
                    "from_seq": from_seq,
                    "to_seq": to_seq,
                    "events": len(events),
                }
            )
            return OUTCOME_DELIVERED

    async def _post(self, url: str, body: bytes, signature: str) -> None:
        headers = {
            "content-type": "application/json",
            settings.WEBHOOK_SIGNATURE_HEADER: signature,
        }
        async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
            response = await client.post(url, content=body, headers=headers)
        if not response.is_success:
            raise WebhookDeliveryError(
                url,
                f"Webhook HTTP {response.status_code}: {response.text[:MAX_RESPONSE_CHARS]}",
                status_code=response.status_code,
            )

    async def _record_failure(self, db: AsyncSession, webhook: OrgWebhook, exc: Exception) -> None:
        """Cursor stays put; the same batch is re-read on the next attempt"""
        webhook.fail_count = (webhook.fail_count or 0) + 1
        webhook.last_error = (str(exc) or type(exc).__name__)[:MAX_ERROR_LENGTH]
        webhook.next_retry_at = next_retry_at(
            webhook.fail_count - 1,
            base_seconds=settings.WEBHOOK_RETRY_BASE_SECONDS,
            max_backoff_seconds=settings.WEBHOOK_MAX_BACKOFF_SECONDS,
        )
        await db.commit()

        logger.error(
            "Webhook delivery failed",
            extra_data={
                "webhook_id": webhook.id,
                "organization_id": webhook.organization_id,
                "fail_count": webhook.fail_count,
                "next_retry_at": webhook.next_retry_at,
                "error": webhook.last_error,
            }
        )
