"""
Resync Job Processor - backfills Snapshot events for one (organization, type) pair.

A job walks the type's values in (modified_at, id) order, one page per tick,
and stores the last emitted row as its cursor. Rows inserted or updated
while a job runs get a newer modified_at and therefore land after the cursor:
they are emitted once, and rows already emitted are never revisited.
"""
from __future__ import annotations

from datetime import timedelta
from typing import Any, Callable

from sqlalchemy import and_, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.backoff import next_retry_at
from app.core.clock import utcnow
from app.core.config import settings
from app.core.logging import get_logger, set_correlation_id
from app.db.models.analytics import (
    AnalyticsEventType,
    AnalyticsSubscription,
    AnalyticsType,
    AnalyticsValue,
    ResyncJob,
    ResyncJobStatus,
)
from app.domain.services.event_log import EventLog, NewEvent, value_event_payload

logger = get_logger(__name__)

MAX_ERROR_LENGTH = 2000

OUTCOME_PAGE = "page"
OUTCOME_COMPLETED = "completed"
OUTCOME_FAILED = "failed"
OUTCOME_ERROR = "error"


def clamp_batch_size(batch_size: int | None) -> int:
    size = batch_size or settings.RESYNC_DEFAULT_BATCH_SIZE
    return min(max(size, settings.RESYNC_MIN_BATCH_SIZE), settings.RESYNC_MAX_BATCH_SIZE)


class ResyncJobProcessor:
    def __init__(
        self,
        session_factory: Callable[[], Any],
        *,
        claim_limit: int | None = None,
        event_log_factory: Callable[[AsyncSession], EventLog] = EventLog,
    ):
        self._session_factory = session_factory
        self._claim_limit = claim_limit or settings.RESYNC_CLAIM_BATCH
        self._event_log_factory = event_log_factory

    async def claim_jobs(self, db: AsyncSession, limit: int | None = None) -> list[int]:
        """
        Claim due jobs, oldest first, in one conditional UPDATE.

        Pending jobs and Processing jobs between pages are both due once
        next_retry_at has passed. The claim pushes next_retry_at out by the
        grace window, so a job whose worker died mid-page comes back later.
        """
        now = utcnow()
        due = and_(
            ResyncJob.status.in_([ResyncJobStatus.PENDING, ResyncJobStatus.PROCESSING]),
            ResyncJob.next_retry_at <= now,
        )
        candidates = (
            select(ResyncJob.id)
            .where(due)
            .order_by(ResyncJob.created_at, ResyncJob.id)
            .limit(limit or self._claim_limit)
            .with_for_update(skip_locked=True)
        )
        result = await db.execute(
            update(ResyncJob)
            .where(ResyncJob.id.in_(candidates), due)
            .values(
                status=ResyncJobStatus.PROCESSING,
                next_retry_at=now + timedelta(seconds=settings.RESYNC_CLAIM_GRACE_SECONDS),
            )
            .returning(ResyncJob.id, ResyncJob.created_at)
            .execution_options(synchronize_session=False)
        )
        claimed = sorted(result.all(), key=lambda row: (row.created_at, row.id))
        await db.commit()
        return [row.id for row in claimed]

    async def run_once(self) -> dict[str, int]:
        """
        Claim and process one page of each due job.

        Jobs run one after another: every page takes the event log lock, so
        running them side by side would only queue on it.
        """
        set_correlation_id()
        async with self._session_factory() as db:
            job_ids = await self.claim_jobs(db)

        summary = {"claimed": len(job_ids), OUTCOME_PAGE: 0, OUTCOME_COMPLETED: 0, OUTCOME_FAILED: 0, OUTCOME_ERROR: 0}
        for job_id in job_ids:
            summary[await self.process_job(job_id)] += 1

        if job_ids:
            logger.info("Resync tick finished", extra_data=summary)
        return summary

    async def process_job(self, job_id: int) -> str:
        async with self._session_factory() as db:
            job = await db.get(ResyncJob, job_id)
            if job is None:
                return OUTCOME_ERROR
            try:
                outcome = await self._process_page(db, job)
                await db.commit()
                return outcome
            except Exception as exc:
                await db.rollback()
                await self._record_failure(db, job_id, exc)
                return OUTCOME_ERROR

    async def _process_page(self, db: AsyncSession, job: ResyncJob) -> str:
        now = utcnow()

        subscribed = await db.scalar(
            select(AnalyticsSubscription.id).where(
                AnalyticsSubscription.organization_id == job.organization_id,
                AnalyticsSubscription.type_id == job.type_id,
                AnalyticsSubscription.is_enabled.is_(True),
            )
        )
        if subscribed is None:
            job.status = ResyncJobStatus.COMPLETED
            logger.info(
                "Resync job skipped, subscription disabled",
                extra_data={"job_id": job.id, "organization_id": job.organization_id, "type_id": job.type_id}
            )
            return OUTCOME_COMPLETED

        analytics_type = await db.get(AnalyticsType, job.type_id)
        if analytics_type is None:
            job.status = ResyncJobStatus.FAILED
            job.last_error = "analytics type not found"
            return OUTCOME_FAILED

        stmt = select(AnalyticsValue).where(AnalyticsValue.type_id == job.type_id)
        if job.cursor_modified_at is not None and job.cursor_value_id is not None:
            stmt = stmt.where(
                or_(
                    AnalyticsValue.modified_at > job.cursor_modified_at,
                    and_(
                        AnalyticsValue.modified_at == job.cursor_modified_at,
                        AnalyticsValue.id > job.cursor_value_id,
                    ),
                )
            )
        result = await db.execute(
            stmt.order_by(AnalyticsValue.modified_at, AnalyticsValue.id)
            .limit(clamp_batch_size(job.batch_size))
        )
        rows = list(result.scalars().all())

        if not rows:
            job.status = ResyncJobStatus.COMPLETED
            job.next_retry_at = now
            logger.info(
                "Resync job completed",
                extra_data={"job_id": job.id, "organization_id": job.organization_id, "type_id": job.type_id}
            )
            return OUTCOME_COMPLETED

        await self._event_log_factory(db).append(
            NewEvent(
                type_id=analytics_type.id,
                value_id=row.id,
                event_type=AnalyticsEventType.SNAPSHOT,
                payload=value_event_payload(AnalyticsEventType.SNAPSHOT, analytics_type.code, row),
            )
            for row in rows
        )

        last = rows[-1]
        job.cursor_modified_at = last.modified_at
        job.cursor_value_id = last.id
        job.fail_count = 0
        job.last_error = None
        job.next_retry_at = now

        logger.debug(
            "Resync page emitted",
            extra_data={"job_id": job.id, "rows": len(rows), "cursor_value_id": last.id}
        )
        return OUTCOME_PAGE

    async def _record_failure(self, db: AsyncSession, job_id: int, exc: Exception) -> None:
        """Back off and leave the job claimable; resync is never given up on"""
        job = await db.get(ResyncJob, job_id)
        if job is None:
            return
        job.fail_count = (job.fail_count or 0) + 1
        job.last_error = str(exc)[:MAX_ERROR_LENGTH] or type(exc).__name__
        job.status = ResyncJobStatus.PENDING
        job.next_retry_at = next_retry_at(
            job.fail_count - 1,
            base_seconds=settings.RESYNC_RETRY_BASE_SECONDS,
            max_backoff_seconds=settings.RESYNC_MAX_BACKOFF_SECONDS,
        )
        await db.commit()

        logger.error(
            "Resync job failed",
            extra_data={
                "job_id": job.id,
                "organization_id": job.organization_id,
                "type_id": job.type_id,
                "fail_count": job.fail_count,
                "next_retry_at": job.next_retry_at,
                "error": job.last_error,
            },
            exc_info=exc,
        )
