"""
Health check endpoints.
"""

from fastapi import APIRouter

from ..config import settings

router = APIRouter(tags=["Health"])


@router.get("/ping")
async def ping():
    """Simple endpoint to verify server is running."""
    return {"status": "ok", "message": "pong"}


@router.get("/health")
async def health():
    """Health check with database and auto-heal state."""
    from ..jobs.scheduler import get_heal_scheduler
    from ..storage.database import get_db_pool

    db_ready = get_db_pool().is_initialized
    scheduler = get_heal_scheduler()

    return {
        "status": "ok" if db_ready else "degraded",
        "services": {
            "database": {"connected": db_ready},
            "auto_heal": {
                "enabled": settings.auto_heal.enabled,
                "running": scheduler.is_running,
                "last_run": scheduler.last_summary,
            },
        },
    }
