"""
Ad Metrics Service

FastAPI app exposing the cached metrics layer to dashboards, report
rendering and scheduled email jobs.
"""

import logging
import os
import sys

from dotenv import load_dotenv
from fastapi import FastAPI

from admetrics.database import check_db_connection, init_db
from admetrics.service import build_warmer, close_orchestrator, get_orchestrator

from .metrics import router as metrics_router

load_dotenv()

# Configure logging to stdout
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    stream=sys.stdout,
    force=True,
)
logger = logging.getLogger(__name__)

# Quiet down chatty loggers
logging.getLogger("httpx").setLevel(logging.WARNING)
logging.getLogger("httpcore").setLevel(logging.WARNING)

app = FastAPI(
    title="Ad Metrics Service",
    description="Cached, coalesced social and search ad metrics",
    version="0.1.0",
)
app.include_router(metrics_router)

_warmer = None


# ============================================================================
# STARTUP / SHUTDOWN
# ============================================================================

@app.on_event("startup")
async def startup_event():
    """Initialize database and start the background warmer."""
    global _warmer

    logger.info("Initializing database...")
    try:
        init_db()
        if check_db_connection():
            logger.info("Database connection verified")
        else:
            logger.warning("Database connection check failed - continuing anyway")
    except Exception as e:
        logger.error(f"Database initialization failed: {e}")

    if os.getenv("CACHE_WARMING_ENABLED", "true").lower() == "true":
        _warmer = build_warmer(get_orchestrator())
        await _warmer.start_background_warmer()


@app.on_event("shutdown")
async def shutdown_event():
    if _warmer is not None:
        await _warmer.stop_background_warmer()
    await close_orchestrator()


@app.get("/health")
async def health():
    return {"status": "ok"}


# ============================================================================
# RUN SERVER
# ============================================================================

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "api.main:app",
        host="0.0.0.0",
        port=int(os.getenv("PORT", "8000")),
        reload=True,
    )
