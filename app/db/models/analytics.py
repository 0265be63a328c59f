"""
Analytics Models - reference data, its event log and subscriber delivery state
"""
import enum
from sqlalchemy import (
    Column,
    Integer,
    BigInteger,
    String,
    Boolean,
    DateTime,
    JSON,
    Text,
    ForeignKey,
    Index,
    UniqueConstraint,
    Enum as SQLEnum,
)

from app.core.clock import utcnow
from app.db.database import Base


class AnalyticsEventType(str, enum.Enum):
    UPSERT = "Upsert"
    DEACTIVATE = "Deactivate"
    SNAPSHOT = "Snapshot"


class ResyncJobStatus(str, enum.Enum):
    PENDING = "Pending"
    PROCESSING = "Processing"
    COMPLETED = "Completed"
    FAILED = "Failed"


class AnalyticsType(Base):
    __tablename__ = "analytics_types"

    id = Column(Integer, primary_key=True, index=True)
    code = Column(String(64), nullable=False, unique=True)
    name = Column(String(255), nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, default=utcnow)


class AnalyticsValue(Base):
    __tablename__ = "analytics_values"
    __table_args__ = (
        UniqueConstraint("type_id", "code", name="uq_analytics_values_type_code"),
        # resync pages walk (modified_at, id) per type
        Index("ix_analytics_values_type_modified_id", "type_id", "modified_at", "id"),
    )

    id = Column(Integer, primary_key=True, index=True)
    type_id = Column(Integer, ForeignKey("analytics_types.id"), nullable=False)
    code = Column(String(128), nullable=False)
    name = Column(String(500), nullable=False)
    attrs = Column(JSON, nullable=False, default=dict)
    is_active = Column(Boolean, nullable=False, default=True)

    created_at = Column(DateTime, default=utcnow)
    modified_at = Column(DateTime, nullable=False, default=utcnow)


class AnalyticsEvent(Base):
    """
    Append-only replication log.

    ``seq`` is the only ordering subscribers rely on. Rows are written
    exclusively through EventLog.append.
    """

    __tablename__ = "analytics_events"

    # SQLite only autoincrements INTEGER PRIMARY KEY
    seq = Column(BigInteger().with_variant(Integer, "sqlite"), primary_key=True, autoincrement=True)
    type_id = Column(Integer, ForeignKey("analytics_types.id"), nullable=False, index=True)
    value_id = Column(Integer, ForeignKey("analytics_values.id"), nullable=True)
    event_type = Column(SQLEnum(AnalyticsEventType), nullable=False)
    payload = Column(JSON, nullable=False)
    created_at = Column(DateTime, default=utcnow)


class AnalyticsSubscription(Base):
    __tablename__ = "analytics_subscriptions"
    __table_args__ = (
        UniqueConstraint("organization_id", "type_id", name="uq_analytics_subscriptions_org_type"),
    )

    id = Column(Integer, primary_key=True, index=True)
    organization_id = Column(Integer, ForeignKey("organizations.id"), nullable=False, index=True)
    type_id = Column(Integer, ForeignKey("analytics_types.id"), nullable=False)
    is_enabled = Column(Boolean, nullable=False, default=True)

    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)


class ResyncJob(Base):
    """Backfill of one (organization, type) pair, one page per tick"""

    __tablename__ = "analytics_resync_jobs"
    __table_args__ = (
        Index("ix_analytics_resync_jobs_status_next_retry", "status", "next_retry_at"),
    )

    id = Column(Integer, primary_key=True, index=True)
    organization_id = Column(Integer, ForeignKey("organizations.id"), nullable=False, index=True)
    type_id = Column(Integer, ForeignKey("analytics_types.id"), nullable=False)

    status = Column(SQLEnum(ResyncJobStatus), nullable=False, default=ResyncJobStatus.PENDING)

    # Last emitted row, exclusive lower bound of the next page
    cursor_modified_at = Column(DateTime, nullable=True)
    cursor_value_id = Column(Integer, nullable=True)
    batch_size = Column(Integer, nullable=False, default=1000)

    fail_count = Column(Integer, nullable=False, default=0)
    last_error = Column(Text, nullable=True)
    next_retry_at = Column(DateTime, nullable=False, default=utcnow)

    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)


class OrgWebhook(Base):
    """Delivery endpoint and cursor of one subscriber organization"""

    __tablename__ = "analytics_org_webhooks"

    id = Column(Integer, primary_key=True, index=True)
    organization_id = Column(Integer, ForeignKey("organizations.id"), nullable=False, unique=True)
    url = Column(String(2000), nullable=False)
    secret = Column(String(255), nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)

    last_delivered_seq = Column(BigInteger, nullable=False, default=0)
    fail_count = Column(Integer, nullable=False, default=0)
    last_error = Column(Text, nullable=True)
    next_retry_at = Column(DateTime, nullable=False, default=utcnow)

    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)
