"""
Document Exchange Portal - Main FastAPI Application
"""
from fastapi import FastAPI
from starlette.responses import JSONResponse

from app.core.config import settings
from app.core.logging import setup_logging, get_logger
from app.core.middleware import setup_middleware, setup_exception_handlers
from app.api.routes import router as api_router
from app.db.database import AsyncSessionLocal, engine, init_db
from app.domain.services.health_service import check_readiness
from app.workers.scheduler import WorkerScheduler

# Setup logging before anything else
setup_logging(
    level="DEBUG" if settings.DEBUG else "INFO",
    json_format=not settings.DEBUG,
    app_name=settings.APP_NAME
)

logger = get_logger(__name__)


_OPENAPI_TAGS = [
    {"name": "documents", "description": "Document lifecycle: create, freeze, status changes."},
    {"name": "queue", "description": "Operator view of the outbound queue to the external system."},
    {"name": "analytics", "description": "Reference data, subscriptions and webhook delivery settings."},
    {"name": "Health", "description": "Liveness and readiness probes."},
]


app = FastAPI(
    title=settings.APP_NAME,
    version="1.0.0",
    description=(
        "Portal side of the document exchange with the external accounting system, "
        "plus analytics reference data replication to subscriber webhooks."
    ),
    openapi_tags=_OPENAPI_TAGS,
)

# Setup middleware (correlation ID, request logging)
setup_middleware(app)
setup_exception_handlers(app)

app.include_router(api_router, prefix="/api")

scheduler = WorkerScheduler.default(AsyncSessionLocal)


@app.on_event("startup")
async def startup() -> None:
    """Create tables and start the embedded workers"""
    logger.info("Starting application", extra_data={"app_name": settings.APP_NAME})
    await init_db()
    logger.info("Database tables initialized")

    if settings.RUN_EMBEDDED_WORKERS:
        scheduler.start()


@app.on_event("shutdown")
async def shutdown() -> None:
    """Cleanup on shutdown"""
    logger.info("Shutting down application")
    await scheduler.stop()
    await engine.dispose()
    logger.info("Database connections disposed")


@app.get(
    "/health",
    summary="Liveness probe",
    description="The process is up. Dependencies are not checked.",
    tags=["Health"],
)
async def health_check() -> dict[str, str]:
    return {"status": "healthy"}


@app.get(
    "/health/ready",
    summary="Readiness probe",
    description=(
        "Checks the database and the external accounting system. "
        "Returns 200 with status=healthy, or 503 with status=degraded and the failing check."
    ),
    responses={
        200: {
            "description": "All dependencies are reachable",
            "content": {
                "application/json": {
                    "example": {"status": "healthy", "db": "ok", "external_system": "ok"}
                }
            },
        },
        503: {
            "description": "At least one dependency is unavailable",
            "content": {
                "application/json": {
                    "example": {
                        "status": "degraded",
                        "db": "ok",
                        "external_system": "error: external_system_unavailable",
                    }
                }
            },
        },
    },
    tags=["Health"],
)
async def readiness_check() -> JSONResponse:
    result = await check_readiness()
    status_code = 200 if result["status"] == "healthy" else 503
    return JSONResponse(content=result, status_code=status_code)
