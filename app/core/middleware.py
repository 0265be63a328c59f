"""
HTTP middleware and exception handlers.

Request path, outermost first:
    SecurityHeaders -> CorrelationId -> RequestLogging -> routes

Every error leaves the API as ``{"error": {"code", "message", "details"}}``
with the request's X-Correlation-ID echoed back.
"""
import time
from typing import Awaitable, Callable

from fastapi import FastAPI, Request, Response
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from app.core.exceptions import AppException, ErrorCode
from app.core.logging import get_correlation_id, get_logger, set_correlation_id

logger = get_logger(__name__)

CORRELATION_HEADER = "X-Correlation-ID"

# Query parameters never written to the request log
MASKED_QUERY_PARAMS = frozenset({"secret", "token", "api_key", "password"})

HSTS_VALUE = "max-age=31536000; includeSubDomains"

CallNext = Callable[[Request], Awaitable[Response]]


def _safe_query_params(request: Request) -> dict[str, str]:
    params = {}
    for key, value in request.query_params.items():
        params[key] = "***" if key.lower() in MASKED_QUERY_PARAMS else value
    return params


def _elapsed(started: float) -> float:
    return round(time.monotonic() - started, 4)


class CorrelationIdMiddleware(BaseHTTPMiddleware):
    """Binds the caller's X-Correlation-ID (or a new one) to the request"""

    async def dispatch(self, request: Request, call_next: CallNext) -> Response:
        request.state.correlation_id = set_correlation_id(
            request.headers.get(CORRELATION_HEADER)
        )
        response = await call_next(request)
        response.headers[CORRELATION_HEADER] = request.state.correlation_id
        return response


class RequestLoggingMiddleware(BaseHTTPMiddleware):

    async def dispatch(self, request: Request, call_next: CallNext) -> Response:
        started = time.monotonic()
        route = f"{request.method} {request.url.path}"
        logger.info(
            f"-> {route}",
            extra_data={
                "query_params": _safe_query_params(request),
                "client_host": getattr(request.client, "host", None),
            },
        )

        try:
            response = await call_next(request)
        except Exception as exc:
            logger.error(
                f"<- {route} raised {type(exc).__name__}",
                extra_data={"duration_seconds": _elapsed(started)},
                exc_info=True,
            )
            raise

        log = logger.warning if response.status_code >= 400 else logger.info
        log(
            f"<- {route} {response.status_code}",
            extra_data={
                "status_code": response.status_code,
                "duration_seconds": _elapsed(started),
            },
        )
        return response


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """nosniff on every response; HSTS only when not in DEBUG (plain HTTP locally)"""

    def __init__(self, app: FastAPI, *, debug: bool = False) -> None:
        super().__init__(app)
        self._headers = {"X-Content-Type-Options": "nosniff"}
        if not debug:
            self._headers["Strict-Transport-Security"] = HSTS_VALUE

    async def dispatch(self, request: Request, call_next: CallNext) -> Response:
        response = await call_next(request)
        response.headers.update(self._headers)
        return response


def _error_response(status_code: int, body: dict) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=body,
        headers={CORRELATION_HEADER: get_correlation_id()},
    )


async def app_exception_handler(request: Request, exc: AppException) -> JSONResponse:
    logger.warning(
        f"{exc.error_code.value} on {request.url.path}: {exc.message}",
        extra_data={"error_code": exc.error_code.value, "details": exc.details},
    )
    return _error_response(exc.status_code, exc.to_dict())


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Anything that is not an AppException: log it, answer with a bare 500"""
    logger.error(
        f"Unhandled {type(exc).__name__} on {request.url.path}",
        extra_data={"error": str(exc)},
        exc_info=exc,
    )
    return _error_response(
        500,
        AppException(
            message="An unexpected error occurred",
            error_code=ErrorCode.INTERNAL_ERROR,
            status_code=500,
        ).to_dict(),
    )


def setup_middleware(app: FastAPI) -> None:
    from app.core.config import settings

    # add_middleware wraps, so the last one added runs first
    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(CorrelationIdMiddleware)
    app.add_middleware(SecurityHeadersMiddleware, debug=settings.DEBUG)


def setup_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(AppException, app_exception_handler)
    app.add_exception_handler(Exception, generic_exception_handler)
