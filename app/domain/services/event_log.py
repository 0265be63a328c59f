"""
Analytics event log - the single append path for replication events
"""
from dataclasses import dataclass
from typing import Any, Iterable

from sqlalchemy import insert, text
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.models.analytics import AnalyticsEvent, AnalyticsEventType, AnalyticsValue

# Arbitrary constant shared by every writer of analytics_events
EVENT_LOG_LOCK_KEY = 0x45564C47


@dataclass(frozen=True)
class NewEvent:
    type_id: int
    value_id: int | None
    event_type: AnalyticsEventType
    payload: dict[str, Any]


def value_event_payload(
    event_type: AnalyticsEventType, type_code: str, value: AnalyticsValue
) -> dict[str, Any]:
    """Event body as subscribers receive it, for Upsert/Deactivate/Snapshot alike"""
    return {
        "eventType": event_type.value,
        "typeCode": type_code,
        "value": {
            "id": value.id,
            "code": value.code,
            "name": value.name,
            "attrs": value.attrs or {},
            "isActive": bool(value.is_active),
            "updatedAt": value.modified_at.isoformat() if value.modified_at else None,
        },
    }


class EventLog:
    """
    Append-only writer for analytics_events.

    Dispatchers read "seq > cursor" and advance past what they saw, so a
    lower seq must never become visible after a higher one. On PostgreSQL
    writers serialize on a transaction-scoped advisory lock, which makes seq
    order equal commit order. SQLite already allows one writer at a time.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    async def _lock(self) -> None:
        if self.db.get_bind().dialect.name == "postgresql":
            await self.db.execute(
                text("SELECT pg_advisory_xact_lock(:key)"), {"key": EVENT_LOG_LOCK_KEY}
            )

    async def append(self, events: Iterable[NewEvent]) -> int:
        """Insert events in the caller's transaction; returns how many were written"""
        rows = [
            {
                "type_id": event.type_id,
                "value_id": event.value_id,
                "event_type": event.event_type,
                "payload": event.payload,
            }
            for event in events
        ]
        if not rows:
            return 0
        await self._lock()
        await self.db.execute(insert(AnalyticsEvent), rows)
        return len(rows)
