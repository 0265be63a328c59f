"""
Document Models - business documents, their frozen snapshots and status history
"""
import enum
from sqlalchemy import (
    Column,
    Integer,
    String,
    Date,
    DateTime,
    Numeric,
    Text,
    Boolean,
    JSON,
    ForeignKey,
    UniqueConstraint,
    Enum as SQLEnum,
)

from app.core.clock import utcnow
from app.db.database import Base


class DocumentStatus(str, enum.Enum):
    DRAFT = "Draft"
    VALIDATED = "Validated"
    FROZEN = "Frozen"
    QUEUED_TO_EXTERNAL = "QueuedToExternal"
    SENT_TO_EXTERNAL = "SentToExternal"
    ACCEPTED_BY_EXTERNAL = "AcceptedByExternal"
    POSTED_EXTERNALLY = "PostedExternally"
    UNPOSTED_EXTERNALLY = "UnpostedExternally"
    REJECTED_BY_EXTERNAL = "RejectedByExternal"
    CANCELLED = "Cancelled"


class ExternalStatus(str, enum.Enum):
    """Document state as last reported by the external accounting system"""
    NONE = "None"
    ACCEPTED = "Accepted"
    POSTED = "Posted"
    UNPOSTED = "Unposted"
    REJECTED = "Rejected"
    ERROR = "Error"


class HistorySource(str, enum.Enum):
    USER = "user"
    QUEUE = "queue"
    EXTERNAL = "external"


class Document(Base):
    """Business document owned by an organization"""

    __tablename__ = "documents"

    id = Column(Integer, primary_key=True, index=True)
    organization_id = Column(Integer, ForeignKey("organizations.id"), nullable=False, index=True)

    # Key into the document type registry (ReceiptGoods, SaleServices, ...)
    type = Column(String(64), nullable=False)
    number = Column(String(64), nullable=False)
    date = Column(Date, nullable=False)

    counterparty_name = Column(String(255), nullable=True)
    counterparty_inn = Column(String(20), nullable=True)
    amount = Column(Numeric(18, 2), nullable=True)
    currency = Column(String(3), nullable=False, default="RUB")

    status = Column(SQLEnum(DocumentStatus), nullable=False, default=DocumentStatus.DRAFT, index=True)
    current_version = Column(Integer, nullable=False, default=1)

    # External system fields, written only by the integration queue
    external_ref = Column(String(100), nullable=True, index=True)
    external_status = Column(SQLEnum(ExternalStatus), nullable=False, default=ExternalStatus.NONE)
    external_error = Column(Text, nullable=True)

    # Timestamps
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)
    frozen_at = Column(DateTime, nullable=True)
    sent_at = Column(DateTime, nullable=True)


class DocumentVersion(Base):
    """Content snapshot; the one at ``Document.current_version`` is what gets sent"""

    __tablename__ = "document_versions"
    __table_args__ = (
        UniqueConstraint("document_id", "version", name="uq_document_versions_document_version"),
    )

    id = Column(Integer, primary_key=True, index=True)
    document_id = Column(Integer, ForeignKey("documents.id"), nullable=False, index=True)
    version = Column(Integer, nullable=False)

    # items, warehouseId, accountId, contractId and type-specific optional fields
    data = Column(JSON, nullable=False, default=dict)

    is_frozen = Column(Boolean, nullable=False, default=False)
    frozen_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=utcnow)


class DocumentHistory(Base):
    """Append-only log of applied status transitions"""

    __tablename__ = "document_history"

    id = Column(Integer, primary_key=True, index=True)
    document_id = Column(Integer, ForeignKey("documents.id"), nullable=False, index=True)
    from_status = Column(String(32), nullable=False)
    to_status = Column(String(32), nullable=False)
    source = Column(SQLEnum(HistorySource), nullable=False, default=HistorySource.USER)
    comment = Column(String(1000), nullable=True)
    created_at = Column(DateTime, default=utcnow, index=True)
