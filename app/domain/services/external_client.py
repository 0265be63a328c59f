"""
External accounting system client.

Endpoints (basic auth):
- POST {base}/documents              create/update a document from its payload
- POST {base}/documents/{ref}/post   post an accepted document
- GET  {base}/documents/{ref}/status current external status
- GET  {base}/health                 liveness
"""
from __future__ import annotations

import asyncio
import re
from dataclasses import dataclass, field
from typing import Any

import httpx

from app.core.circuit_breaker import CircuitBreaker, get_external_system_circuit_breaker
from app.core.config import settings
from app.core.exceptions import ExternalSystemError, ServiceTimeoutError
from app.core.logging import get_logger
from app.db.models.document import ExternalStatus

logger = get_logger(__name__)

SERVICE_NAME = "external-system"

_UUID_RE = re.compile(r"^[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{12}$")


def normalize_external_ref(ref: str | None) -> str:
    """
    Reduce an external document reference to the bare id the API accepts.

    The web client hands out refs like ``Документ.ПоступлениеТоваровУслуг,<uuid>``;
    only the part after the last comma is kept, and UUIDs lose their dashes.
    """
    if not isinstance(ref, str):
        return ""
    value = ref.strip()
    if "," in value:
        value = value.rsplit(",", 1)[1].strip()
    if _UUID_RE.match(value):
        value = value.replace("-", "")
    return value


def _parse_status(value: Any) -> ExternalStatus | None:
    if not value:
        return None
    try:
        return ExternalStatus(str(value))
    except ValueError:
        logger.warning(
            "Unknown external document status",
            extra_data={"status": value}
        )
        return None


@dataclass
class ExternalOperationResult:
    success: bool
    external_ref: str | None = None
    status: ExternalStatus | None = None
    error_code: str | None = None
    error_message: str | None = None
    raw: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_body(cls, body: Any) -> "ExternalOperationResult":
        if not isinstance(body, dict):
            return cls(success=False, error_message="Unexpected response body from external system")
        ref = body.get("externalRef") or body.get("uhDocumentRef") or body.get("ref")
        return cls(
            success=bool(body.get("success", True)),
            external_ref=normalize_external_ref(ref) or None,
            status=_parse_status(body.get("status")),
            error_code=body.get("errorCode"),
            error_message=body.get("errorMessage"),
            raw=body,
        )


class ExternalSystemClient:
    """
    HTTP client for the external accounting system.

    Every call is bounded by a timeout and retried with exponential backoff
    on timeouts, network errors and 5xx responses. 4xx responses raise at
    once. The whole retry loop runs inside the external-system circuit
    breaker, so a dead service costs one breaker failure per call.
    """

    def __init__(
        self,
        base_url: str | None = None,
        username: str | None = None,
        password: str | None = None,
        timeout: float | None = None,
        max_attempts: int | None = None,
        retry_delay: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        circuit_breaker: CircuitBreaker | None = None,
    ) -> None:
        self._base_url = (base_url or settings.EXTERNAL_API_URL).rstrip("/")
        username = settings.EXTERNAL_API_USERNAME if username is None else username
        password = settings.EXTERNAL_API_PASSWORD if password is None else password
        self._auth = httpx.BasicAuth(username, password) if username else None
        self._timeout = timeout if timeout is not None else settings.EXTERNAL_API_TIMEOUT_SECONDS
        self._max_attempts = max(1, max_attempts or settings.EXTERNAL_API_MAX_ATTEMPTS)
        self._retry_delay = (
            retry_delay if retry_delay is not None else settings.EXTERNAL_API_RETRY_DELAY_SECONDS
        )
        self._transport = transport
        self._circuit_breaker = circuit_breaker or get_external_system_circuit_breaker()

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self._base_url,
            auth=self._auth,
            timeout=self._timeout,
            transport=self._transport,
        )

    async def _backoff(self, attempt: int, operation: str, reason: dict[str, Any]) -> None:
        delay = self._retry_delay * (2 ** attempt)
        logger.warning(
            f"Transient error in {operation}, retrying",
            extra_data={
                **reason,
                "operation": operation,
                "attempt": attempt + 1,
                "max_attempts": self._max_attempts,
                "backoff_seconds": delay,
            }
        )
        if delay > 0:
            await asyncio.sleep(delay)

    async def _request_with_retry(
        self,
        method: str,
        path: str,
        operation: str,
        json: dict[str, Any] | None = None,
    ) -> httpx.Response:
        last_attempt = self._max_attempts - 1

        async with self._client() as client:
            for attempt in range(self._max_attempts):
                try:
                    response = await client.request(method, path, json=json)
                except httpx.TimeoutException:
                    if attempt < last_attempt:
                        await self._backoff(attempt, operation, {"timeout": True})
                        continue
                    raise ServiceTimeoutError(SERVICE_NAME, self._timeout)
                except httpx.RequestError as exc:
                    if attempt < last_attempt:
                        await self._backoff(attempt, operation, {"error": str(exc)})
                        continue
                    raise ExternalSystemError(
                        message=f"{operation} network error: {exc}",
                        details={"network_error": True, "attempts": self._max_attempts},
                    )

                if response.is_success:
                    return response

                if response.status_code >= 500 and attempt < last_attempt:
                    await self._backoff(attempt, operation, {"status_code": response.status_code})
                    continue

                raise ExternalSystemError.from_response(operation, response)

        # range() above always returns or raises
        raise ExternalSystemError(message=f"{operation} made no attempts")

    async def _call(
        self,
        method: str,
        path: str,
        operation: str,
        json: dict[str, Any] | None = None,
    ) -> ExternalOperationResult:
        response = await self._circuit_breaker.execute(
            self._request_with_retry, method, path, operation, json
        )
        try:
            body = response.json()
        except ValueError:
            body = None
        result = ExternalOperationResult.from_body(body)

        logger.debug(
            f"External system {operation} answered",
            extra_data={
                "operation": operation,
                "success": result.success,
                "external_ref": result.external_ref,
                "status": result.status.value if result.status else None,
            }
        )
        return result

    async def upsert_document(self, payload: dict[str, Any]) -> ExternalOperationResult:
        return await self._call("POST", "/documents", "upsert_document", json=payload)

    async def post_document(self, external_ref: str) -> ExternalOperationResult:
        return await self._call("POST", f"/documents/{external_ref}/post", "post_document")

    async def get_document_status(self, external_ref: str) -> ExternalOperationResult:
        return await self._call("GET", f"/documents/{external_ref}/status", "get_document_status")

    async def health(self) -> bool:
        """Single unretried probe; used by the readiness endpoint"""
        try:
            async with self._client() as client:
                response = await client.get("/health")
            return response.is_success
        except httpx.HTTPError as exc:
            logger.warning(
                "External system health check failed",
                extra_data={"error": str(exc)}
            )
            return False
