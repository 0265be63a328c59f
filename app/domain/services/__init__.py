"""
Domain Services
"""
from app.domain.services.document_service import DocumentService
from app.domain.services.integration_queue_service import (
    IntegrationQueueService,
    IntegrationQueueWorker,
)
from app.domain.services.external_client import ExternalSystemClient
from app.domain.services.payload_builder import PayloadBuilder
from app.domain.services.analytics_service import AnalyticsService
from app.domain.services.event_log import EventLog
from app.domain.services.resync_service import ResyncJobProcessor
from app.domain.services.webhook_dispatcher import WebhookDispatcher

__all__ = [
    "DocumentService",
    "IntegrationQueueService",
    "IntegrationQueueWorker",
    "ExternalSystemClient",
    "PayloadBuilder",
    "AnalyticsService",
    "EventLog",
    "ResyncJobProcessor",
    "WebhookDispatcher",
]
