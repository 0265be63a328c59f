"""
Custom Exception Hierarchy

Structured exceptions shared by the API layer and the background workers.
Workers persist ``str(exc)`` on the failing queue item / job / webhook, so
messages are written to be readable by an operator without the logs.
"""
from typing import Any
from enum import Enum


class ErrorCode(str, Enum):
    """Standard error codes for API responses"""

    # General errors (1xxx)
    INTERNAL_ERROR = "ERR_1000"
    VALIDATION_ERROR = "ERR_1001"
    NOT_FOUND = "ERR_1002"
    UNAUTHORIZED = "ERR_1004"

    # Document errors (2xxx)
    DOCUMENT_NOT_FOUND = "ERR_2001"
    UNKNOWN_DOCUMENT_TYPE = "ERR_2002"
    PAYLOAD_INVALID = "ERR_2003"
    DOCUMENT_NOT_EDITABLE = "ERR_2004"

    # Integration queue errors (3xxx)
    QUEUE_ITEM_NOT_FOUND = "ERR_3001"
    MISSING_EXTERNAL_REFERENCE = "ERR_3002"
    OPERATION_NOT_IMPLEMENTED = "ERR_3003"
    QUEUE_ITEM_NOT_RETRYABLE = "ERR_3004"

    # Analytics errors (4xxx)
    ANALYTICS_TYPE_NOT_FOUND = "ERR_4001"
    ORGANIZATION_NOT_FOUND = "ERR_4002"
    WEBHOOK_DELIVERY_FAILED = "ERR_4003"

    # External service errors (5xxx)
    EXTERNAL_SYSTEM_ERROR = "ERR_5001"
    EXTERNAL_SERVICE_UNAVAILABLE = "ERR_5003"
    EXTERNAL_SERVICE_TIMEOUT = "ERR_5004"

    # State machine errors (6xxx)
    INVALID_STATE_TRANSITION = "ERR_6001"


class AppException(Exception):
    """Base exception for all application errors"""

    def __init__(
        self,
        message: str,
        error_code: ErrorCode = ErrorCode.INTERNAL_ERROR,
        status_code: int = 500,
        details: dict[str, Any] | None = None
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.status_code = status_code
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to dictionary for API response"""
        return {
            "error": {
                "code": self.error_code.value,
                "message": self.message,
                "details": self.details
            }
        }


class ValidationException(AppException):
    """Raised when input validation fails"""

    def __init__(
        self,
        message: str,
        field: str | None = None,
        details: dict[str, Any] | None = None
    ):
        super().__init__(
            message=message,
            error_code=ErrorCode.VALIDATION_ERROR,
            status_code=400,
            details=details
        )
        if field:
            self.details["field"] = field


class NotFoundException(AppException):
    """Raised when a requested resource is not found"""

    def __init__(
        self,
        resource: str,
        identifier: Any,
        error_code: ErrorCode = ErrorCode.NOT_FOUND
    ):
        super().__init__(
            message=f"{resource} not found: {identifier}",
            error_code=error_code,
            status_code=404,
            details={"resource": resource, "identifier": str(identifier)}
        )


class DocumentNotFoundError(NotFoundException):
    def __init__(self, document_id: int):
        super().__init__("Document", document_id, ErrorCode.DOCUMENT_NOT_FOUND)


class QueueItemNotFoundError(NotFoundException):
    def __init__(self, item_id: int):
        super().__init__("Queue item", item_id, ErrorCode.QUEUE_ITEM_NOT_FOUND)


class AnalyticsTypeNotFoundError(NotFoundException):
    def __init__(self, identifier: int | str):
        super().__init__("Analytics type", identifier, ErrorCode.ANALYTICS_TYPE_NOT_FOUND)


class OrganizationNotFoundError(NotFoundException):
    def __init__(self, organization_id: int):
        super().__init__("Organization", organization_id, ErrorCode.ORGANIZATION_NOT_FOUND)


class DocumentException(AppException):
    """
    Permanent document errors.

    Retrying these without changing the document will fail the same way;
    queue items still count the attempt so they end up Failed for an operator.
    """

    def __init__(
        self,
        message: str,
        error_code: ErrorCode,
        document_id: int | None = None,
        details: dict[str, Any] | None = None
    ):
        super().__init__(
            message=message,
            error_code=error_code,
            status_code=400,
            details=details
        )
        if document_id:
            self.details["document_id"] = document_id


class UnknownDocumentTypeError(DocumentException):
    """Raised when no payload shape is registered for a document type"""

    def __init__(self, document_type: str, document_id: int | None = None):
        super().__init__(
            message=f"Unknown document type: {document_type}",
            error_code=ErrorCode.UNKNOWN_DOCUMENT_TYPE,
            document_id=document_id,
            details={"document_type": document_type}
        )


class PayloadValidationError(DocumentException):
    """Raised when a document misses fields its type requires"""

    def __init__(self, document_type: str, missing: list[str], document_id: int | None = None):
        super().__init__(
            message=f"Document of type {document_type} is missing required fields: {', '.join(missing)}",
            error_code=ErrorCode.PAYLOAD_INVALID,
            document_id=document_id,
            details={"document_type": document_type, "missing": list(missing)}
        )


class DocumentNotEditableError(DocumentException):
    def __init__(self, document_id: int, status: str):
        super().__init__(
            message=f"Document {document_id} cannot be changed in status {status}",
            error_code=ErrorCode.DOCUMENT_NOT_EDITABLE,
            document_id=document_id,
            details={"status": status}
        )


class MissingExternalReferenceError(DocumentException):
    """Raised when posting a document the external system has not accepted yet"""

    def __init__(self, document_id: int):
        super().__init__(
            message=f"Document {document_id} has no external reference; upsert it first",
            error_code=ErrorCode.MISSING_EXTERNAL_REFERENCE,
            document_id=document_id
        )


class OperationNotImplementedError(AppException):
    """Raised for queue operations that are recognized but not supported yet"""

    def __init__(self, operation: str):
        super().__init__(
            message=f"Operation {operation} is not implemented",
            error_code=ErrorCode.OPERATION_NOT_IMPLEMENTED,
            status_code=501,
            details={"operation": operation}
        )


class QueueItemNotRetryableError(AppException):
    """Only Failed items can be reset; anything else may still be owned by a worker"""

    def __init__(self, item_id: int, status: str):
        super().__init__(
            message=f"Queue item {item_id} is {status}, only Failed items can be retried",
            error_code=ErrorCode.QUEUE_ITEM_NOT_RETRYABLE,
            status_code=409,
            details={"item_id": item_id, "status": status}
        )


class ExternalServiceException(AppException):
    """Base exception for external service errors"""

    # Transient errors are worth retrying without operator action
    transient: bool = True

    def __init__(
        self,
        service_name: str,
        message: str,
        error_code: ErrorCode = ErrorCode.EXTERNAL_SERVICE_UNAVAILABLE,
        details: dict[str, Any] | None = None
    ):
        super().__init__(
            message=message,
            error_code=error_code,
            status_code=503,
            details=details
        )
        self.details["service"] = service_name


class ExternalSystemError(ExternalServiceException):
    """Raised when the external accounting system rejects or fails a call"""

    def __init__(
        self,
        message: str,
        details: dict[str, Any] | None = None,
        *,
        transient: bool = True
    ):
        super().__init__(
            service_name="external-system",
            message=f"External system error: {message}",
            error_code=ErrorCode.EXTERNAL_SYSTEM_ERROR,
            details=details
        )
        self.transient = transient

    @classmethod
    def from_response(
        cls,
        operation: str,
        response: Any,
        *,
        message: str | None = None,
        max_response_chars: int = 500
    ) -> "ExternalSystemError":
        """
        Build an error from an HTTP response.

        5xx responses are transient, anything else is treated as permanent.

        Args:
            operation: Name of the call (upsert_document, post_document, ...)
            response: Response object (httpx.Response)
            message: Custom message (built from the status code if omitted)
            max_response_chars: Cap on the stored response text
        """
        status_code = getattr(response, "status_code", None)
        response_text = getattr(response, "text", "") or ""
        return cls(
            message=message or f"{operation} returned status {status_code}",
            details={
                "operation": operation,
                "status_code": status_code,
                "response_text": response_text[:max_response_chars],
            },
            transient=status_code is None or status_code >= 500,
        )


class WebhookDeliveryError(ExternalServiceException):
    """Raised when a subscriber endpoint does not acknowledge a batch"""

    def __init__(self, url: str, message: str, status_code: int | None = None):
        super().__init__(
            service_name="webhook",
            message=message,
            error_code=ErrorCode.WEBHOOK_DELIVERY_FAILED,
            details={"url": url, "status_code": status_code}
        )


class ServiceTimeoutError(ExternalServiceException):
    """Raised when external service times out"""

    def __init__(self, service_name: str, timeout_seconds: float):
        super().__init__(
            service_name=service_name,
            message=f"{service_name} request timed out after {timeout_seconds}s",
            error_code=ErrorCode.EXTERNAL_SERVICE_TIMEOUT,
            details={"timeout_seconds": timeout_seconds}
        )


class CircuitBreakerOpenError(ExternalServiceException):
    """Raised when circuit breaker is open"""

    def __init__(self, service_name: str, retry_after_seconds: float):
        super().__init__(
            service_name=service_name,
            message=f"{service_name} is temporarily unavailable (circuit breaker open)",
            error_code=ErrorCode.EXTERNAL_SERVICE_UNAVAILABLE,
            details={"retry_after_seconds": retry_after_seconds}
        )


class InvalidStatusTransitionError(AppException):
    """Raised when a document status transition is not allowed"""

    def __init__(self, current_status: str, target_status: str, allowed: list[str]):
        if current_status == target_status:
            message = f"Document is already in status '{current_status}'"
        else:
            message = f"Invalid transition from '{current_status}' to '{target_status}'"
        super().__init__(
            message=message,
            error_code=ErrorCode.INVALID_STATE_TRANSITION,
            status_code=400,
            details={
                "current_status": current_status,
                "target_status": target_status,
                "allowed": list(allowed),
            }
        )
        self.current_status = current_status
        self.target_status = target_status
        self.allowed = list(allowed)
