"""
Live Tracking Sync - FastAPI Backend

Main application entry point and configuration.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from livetrack.api.sessions import (
    cache_router,
    legend_router,
    router as sessions_router,
    tracking_router,
)
from livetrack.services.sync_engine import get_engine


# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    # Startup
    logger.info("Starting Live Tracking Sync backend")
    engine = get_engine()
    stats = engine.get_cache_stats()
    logger.info(
        f"Local cache holds {stats.session_count} sessions "
        f"({stats.total_point_count} points, {stats.size_label})"
    )
    removed = engine.cache.clear_expired()
    if removed:
        logger.info(f"Evicted {removed} expired cache entries")

    yield

    # Shutdown
    logger.info("Shutting down Live Tracking Sync backend")
    await engine.stop()


# Create FastAPI app
app = FastAPI(
    title="Live Tracking Sync",
    description="""
    Near-real-time GPS traces of field worker sessions.

    ## Features
    - Incremental sync of per-session point streams from the point store
    - Local point cache with versioning and 24h retention
    - Speed-colored trace segments and session statistics
    - CSV export of session points

    ## Data Flow
    1. Set tracked sessions via POST /tracking
    2. List tracked sessions via GET /sessions
    3. Get segments via GET /sessions/{id}/segments
    4. Get statistics via GET /sessions/{id}/stats
    """,
    version="0.1.0",
    lifespan=lifespan,
)


# CORS middleware (allow all origins for development)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # In production, restrict this
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Include routers
app.include_router(tracking_router)
app.include_router(sessions_router)
app.include_router(legend_router)
app.include_router(cache_router)


@app.get("/")
async def root():
    """Root endpoint - basic health check."""
    return {
        "name": "Live Tracking Sync",
        "version": "0.1.0",
        "status": "running",
    }


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    engine = get_engine()

    return {
        "status": "healthy",
        "tracked_count": len(engine.tracked_ids()),
        "loaded_count": len(engine.view),
        "poll_interval_s": engine.config.poll_interval_s,
    }
