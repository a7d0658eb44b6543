"""
API routers for churnflow.
"""

from fastapi import APIRouter

from .admin import router as admin_router
from .churn import router as churn_router
from .health import router as health_router

# Main router that aggregates all sub-routers
router = APIRouter()

router.include_router(health_router)
router.include_router(churn_router)
router.include_router(admin_router)
