"""
API Routes
"""
from fastapi import APIRouter

from app.api.routes.analytics import router as analytics_router
from app.api.routes.documents import router as documents_router
from app.api.routes.queue import router as queue_router

router = APIRouter()

router.include_router(documents_router, prefix="/documents", tags=["documents"])
router.include_router(queue_router, prefix="/queue", tags=["queue"])
router.include_router(analytics_router, prefix="/analytics", tags=["analytics"])
