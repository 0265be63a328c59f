"""
Health checks - database and external accounting system.

Two levels:
- liveness: the process is up (no dependency checks)
- readiness: every dependency the workers need is reachable
"""
from typing import Any

from sqlalchemy import text

from app.core.logging import get_logger
from app.db.database import AsyncSessionLocal
from app.domain.services.external_client import ExternalSystemClient

logger = get_logger(__name__)

_STATUS_HEALTHY = "healthy"
_STATUS_DEGRADED = "degraded"

_CHECK_OK = "ok"

# No infrastructure details in the public response
_ERROR_DB = "error: db_unavailable"
_ERROR_EXTERNAL = "error: external_system_unavailable"


async def _check_db(session_factory=AsyncSessionLocal) -> str:
    try:
        async with session_factory() as session:
            await session.execute(text("SELECT 1"))
        return _CHECK_OK
    except Exception as e:
        logger.warning("Database health check failed", extra_data={"error": str(e)})
        return _ERROR_DB


async def _check_external_system(client: ExternalSystemClient | None = None) -> str:
    client = client or ExternalSystemClient()
    try:
        if await client.health():
            return _CHECK_OK
    except Exception as e:
        logger.warning("External system health check failed", extra_data={"error": str(e)})
    return _ERROR_EXTERNAL


async def check_readiness(
    session_factory=AsyncSessionLocal,
    client: ExternalSystemClient | None = None,
) -> dict[str, Any]:
    """
    Check every dependency.

    Returns the overall status ("healthy" or "degraded") and one entry per
    dependency: "ok" or "error: ...".
    """
    checks = {
        "db": await _check_db(session_factory),
        "external_system": await _check_external_system(client),
    }

    all_ok = all(v == _CHECK_OK for v in checks.values())
    if not all_ok:
        logger.warning("Readiness check degraded", extra_data=checks)

    return {"status": _STATUS_HEALTHY if all_ok else _STATUS_DEGRADED, **checks}
