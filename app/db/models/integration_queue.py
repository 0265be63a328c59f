"""
Integration Queue Model - durable outbound jobs for the external accounting system
"""
import enum
from sqlalchemy import Column, Integer, String, DateTime, Enum as SQLEnum, JSON, Text, ForeignKey, Index

from app.core.clock import utcnow
from app.db.database import Base


class QueueOperation(str, enum.Enum):
    UPSERT_DOCUMENT = "UpsertDocument"
    POST_DOCUMENT = "PostDocument"
    CANCEL_DOCUMENT = "CancelDocument"


class QueueItemStatus(str, enum.Enum):
    PENDING = "Pending"
    PROCESSING = "Processing"
    COMPLETED = "Completed"
    FAILED = "Failed"


class IntegrationQueueItem(Base):
    """
    One push of one document version.

    Rows are never deleted; completed and failed items stay as the audit trail
    an operator uses to decide between retry and resend.
    """

    __tablename__ = "integration_queue"
    __table_args__ = (
        Index("ix_integration_queue_status_created_at", "status", "created_at"),
    )

    id = Column(Integer, primary_key=True, index=True)
    document_id = Column(Integer, ForeignKey("documents.id"), nullable=False, index=True)
    operation = Column(SQLEnum(QueueOperation), nullable=False)

    status = Column(SQLEnum(QueueItemStatus), nullable=False, default=QueueItemStatus.PENDING)
    attempts = Column(Integer, nullable=False, default=0)
    max_attempts = Column(Integer, nullable=False, default=3)
    last_error = Column(Text, nullable=True)

    payload = Column(JSON, nullable=False)
    idempotency_key = Column(String(128), nullable=False, index=True)

    # Timestamps
    created_at = Column(DateTime, default=utcnow)
    claimed_at = Column(DateTime, nullable=True)
    processed_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)
