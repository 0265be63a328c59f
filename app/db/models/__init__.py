"""
Database Models
"""
from app.db.models.organization import Organization
from app.db.models.reference import Warehouse, BankAccount, Contract
from app.db.models.document import Document, DocumentVersion, DocumentHistory
from app.db.models.integration_queue import IntegrationQueueItem
from app.db.models.analytics import (
    AnalyticsType,
    AnalyticsValue,
    AnalyticsEvent,
    AnalyticsSubscription,
    ResyncJob,
    OrgWebhook,
)

__all__ = [
    "Organization",
    "Warehouse",
    "BankAccount",
    "Contract",
    "Document",
    "DocumentVersion",
    "DocumentHistory",
    "IntegrationQueueItem",
    "AnalyticsType",
    "AnalyticsValue",
    "AnalyticsEvent",
    "AnalyticsSubscription",
    "ResyncJob",
    "OrgWebhook",
]
