"""
Ad Report Sync
Main FastAPI application
"""
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager

from adsync.config import get_settings
from adsync.utils.logger import log
from adsync import __version__

# Import routers
from adsync.api import health, sync
from adsync.middleware.sync_trigger_middleware import SyncTriggerMiddleware

settings = get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown events"""
    # Startup
    log.info(f"Starting {settings.app_name} v{__version__}")
    log.info(f"Environment: {settings.environment}")

    from adsync.services.report_sync_service import get_report_sync_service
    service = app.dependency_overrides.get(get_report_sync_service, get_report_sync_service)()

    # Initialize database and clear a run left behind by a crashed process
    try:
        from adsync.models.base import init_db
        init_db()
        log.info("Database initialized")
        service.recover_stale_run()
    except Exception as e:
        log.error(f"Database initialization error: {str(e)}")

    if not service.connector or not service.connector.is_configured():
        log.warning("Yandex Direct credentials are not configured; syncs will fail until they are set")

    # Start the scheduler for automated report syncs
    scheduler_started = False
    if settings.enable_scheduler:
        try:
            from adsync.scheduler import start_scheduler
            start_scheduler()
            scheduler_started = True
        except Exception as e:
            log.error(f"Scheduler startup error: {str(e)}")

    yield

    # Shutdown
    if scheduler_started:
        from adsync.scheduler import stop_scheduler
        stop_scheduler()
    await service.shutdown()
    log.info("Shutting down application")


# Create FastAPI app
app = FastAPI(
    title=settings.app_name,
    version=__version__,
    description="""
    Incremental sync of Yandex Direct reports into a relational store.

    - Campaign daily performance
    - Search query performance
    - Display network placements

    Every run re-fetches a trailing window and atomically replaces it,
    so late-attributed conversions are picked up.
    """,
    lifespan=lifespan
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Configure appropriately for production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Opportunistic sync on dashboard traffic (no-op unless due)
app.add_middleware(SyncTriggerMiddleware)

# Include routers
app.include_router(health.router, tags=["health"])
app.include_router(sync.router)


@app.get("/")
async def root():
    """Service index"""
    return {
        "app_name": settings.app_name,
        "version": __version__,
        "endpoints": {
            "health": "GET /health",
            "sync_status": "GET /sync/status",
            "sync_trigger": "POST /sync/trigger?force=false",
            "sync_logs": "GET /sync/logs?hours=24&limit=50"
        }
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "adsync.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.debug
    )
