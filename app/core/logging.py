"""
Logging setup for the portal.

Records go to stdout, as JSON lines in production or as a plain pipe-separated
line while developing. Each line carries the correlation ID of the current
context. HTTP requests take it from the X-Correlation-ID header (see
app.core.middleware); queue, resync and webhook ticks set a fresh one, so a
whole claim/process/commit cycle can be grepped out of the logs.

Use ``get_logger(__name__)`` and pass structured fields as ``extra_data``::

    logger.info("Queue item completed", extra_data={"queue_item_id": item.id})
"""
import json
import logging
import sys
import time
import uuid
from contextvars import ContextVar
from datetime import datetime, timezone
from functools import wraps
from typing import Any

correlation_id_var: ContextVar[str] = ContextVar("correlation_id", default="")

PLAIN_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | [%(correlation_id)s] | %(message)s"

# Third-party loggers that are too chatty at the application level
LIBRARY_LEVELS = {
    "httpx": logging.WARNING,
    "httpcore": logging.WARNING,
    "sqlalchemy.engine": logging.WARNING,
    "celery": logging.INFO,
}


class JSONFormatter(logging.Formatter):
    """One JSON object per record"""

    def format(self, record: logging.LogRecord) -> str:
        created = datetime.fromtimestamp(record.created, tz=timezone.utc)
        entry: dict[str, Any] = {
            "timestamp": created.isoformat(timespec="milliseconds").replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "location": f"{record.module}.{record.funcName}:{record.lineno}",
        }

        if cid := correlation_id_var.get():
            entry["correlation_id"] = cid
        extra_data = getattr(record, "extra_data", None)
        if extra_data:
            entry["extra"] = extra_data
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(entry, ensure_ascii=False, default=str)


class StructuredLogger(logging.Logger):
    """``logging.Logger`` whose level methods also take ``extra_data=``"""

    def _log(self, level, msg, args, exc_info=None, extra=None, stack_info=False,
             stacklevel=1, extra_data: dict[str, Any] | None = None):
        if extra_data:
            extra = {**(extra or {}), "extra_data": extra_data}
        # +1 so findCaller skips this frame and reports the real call site
        super()._log(level, msg, args, exc_info=exc_info, extra=extra,
                     stack_info=stack_info, stacklevel=stacklevel + 1)


logging.setLoggerClass(StructuredLogger)


class CorrelationIdFilter(logging.Filter):
    """Exposes ``%(correlation_id)s`` to the plain-text format"""

    def filter(self, record: logging.LogRecord) -> bool:
        record.correlation_id = correlation_id_var.get() or "-"
        return True


def _stdout_handler(json_format: bool) -> logging.Handler:
    handler = logging.StreamHandler(sys.stdout)
    if json_format:
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(logging.Formatter(PLAIN_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))
        handler.addFilter(CorrelationIdFilter())
    return handler


def setup_logging(
    level: str = "INFO",
    json_format: bool = True,
    app_name: str = "doc-exchange"
) -> None:
    """
    Replace the root handlers with a single stdout handler.

    Args:
        level: level name, case-insensitive
        json_format: JSON lines when True, plain text otherwise
        app_name: name given to the installed handler
    """
    numeric_level = logging.getLevelName(level.upper())

    handler = _stdout_handler(json_format)
    handler.set_name(app_name)
    handler.setLevel(numeric_level)

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(numeric_level)

    for name, library_level in LIBRARY_LEVELS.items():
        logging.getLogger(name).setLevel(library_level)


def generate_correlation_id() -> str:
    return uuid.uuid4().hex[:8]


def set_correlation_id(correlation_id: str | None = None) -> str:
    """Bind ``correlation_id`` (or a new one) to the current context and return it"""
    correlation_id = correlation_id or generate_correlation_id()
    correlation_id_var.set(correlation_id)
    return correlation_id


def get_correlation_id() -> str:
    """Current correlation ID; one is created and bound if the context has none"""
    return correlation_id_var.get() or set_correlation_id()


def get_logger(name: str) -> StructuredLogger:
    return logging.getLogger(name)  # type: ignore[return-value]


def log_async_operation(operation_name: str):
    """Log start, outcome and duration of the decorated coroutine function"""
    def decorator(func):
        op_logger = get_logger(func.__module__)

        @wraps(func)
        async def wrapper(*args, **kwargs):
            started = time.monotonic()
            op_logger.debug(f"{operation_name} started", extra_data={"operation": operation_name})
            try:
                result = await func(*args, **kwargs)
            except Exception as exc:
                op_logger.error(
                    f"{operation_name} failed: {exc}",
                    extra_data={
                        "operation": operation_name,
                        "duration_seconds": round(time.monotonic() - started, 4),
                    },
                    exc_info=True,
                )
                raise
            op_logger.info(
                f"{operation_name} completed",
                extra_data={
                    "operation": operation_name,
                    "duration_seconds": round(time.monotonic() - started, 4),
                },
            )
            return result

        return wrapper
    return decorator
