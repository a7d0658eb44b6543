"""
Churnflow - churn follow-up server

The main FastAPI application entry point.
"""

# Load .env file FIRST, before any other imports
from pathlib import Path
from dotenv import load_dotenv
_env_root = Path(__file__).parent.parent
load_dotenv(_env_root / ".env", override=True)

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from . import __version__
from .api import router as api_router
from .config import settings
from .storage import db_settings
from .storage.database import close_database, init_database

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.log_level, logging.INFO),
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger = logging.getLogger("churnflow.main")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan handler.

    Opens the database pool and starts the auto-heal sweep on startup,
    stops both on shutdown.
    """
    # --- Startup ---
    logger.info("Churnflow starting up...")

    if db_settings.enabled:
        try:
            await init_database()
            logger.info("Database connection pool initialized")
        except Exception as e:
            # Requests answer 503 until the database is reachable
            logger.error("Failed to initialize database: %s", e)

    heal_scheduler = None
    if settings.auto_heal.enabled:
        try:
            from .jobs.scheduler import get_heal_scheduler

            heal_scheduler = get_heal_scheduler()
            await heal_scheduler.start(settings.auto_heal.interval_minutes)
        except Exception as e:
            logger.error("Failed to start auto-heal scheduler: %s", e)
            heal_scheduler = None

    logger.info("Churnflow startup complete")

    yield  # Application runs here

    # --- Shutdown ---
    logger.info("Churnflow shutting down...")

    if heal_scheduler:
        try:
            await heal_scheduler.stop()
        except Exception as e:
            logger.error("Error stopping auto-heal scheduler: %s", e)

    if db_settings.enabled:
        try:
            await close_database()
            logger.info("Database connection pool closed")
        except Exception as e:
            logger.error("Error closing database: %s", e)

    logger.info("Churnflow shutdown complete")


# Create the FastAPI application
app = FastAPI(
    title="Churnflow",
    description="Follow-up workflow for churned restaurant accounts.",
    version=__version__,
    lifespan=lifespan,
)

# Include API routers with /api/v1 prefix
app.include_router(api_router, prefix="/api/v1")
