from fastapi import APIRouter

from .endpoints import analytics, health

router = APIRouter()
router.include_router(health.router, tags=["Health"])
router.include_router(analytics.router)
