"""
Metric Sync Engine
Main FastAPI application
"""
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI

from metricsync import __version__
from metricsync.api import health, integrations, sync
from metricsync.config import get_settings
from metricsync.scheduler import SyncScheduler
from metricsync.services.backfill import BackfillRunner
from metricsync.services.metric_sync import DualGranularitySync
from metricsync.utils.logger import log


def create_app(
    sync_service: Optional[DualGranularitySync] = None,
    scheduler: Optional[SyncScheduler] = None,
    settings=None
) -> FastAPI:
    """
    Build the application.

    With no sync_service the real Google clients are wired at startup, which
    requires the OAuth client id and secret. Tests pass their own.
    """
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Startup and shutdown events"""
        # Startup
        log.info(f"Starting {settings.app_name} v{__version__}")
        log.info(f"Environment: {settings.environment}")

        if app.state.sync_service is None:
            # Missing OAuth client config is fatal; no tenant could ever refresh
            settings.require_oauth_client()

            from metricsync.models.base import init_db
            from metricsync.services.metric_sync import build_sync_service
            init_db()
            log.info("Database initialized")
            _attach(app, build_sync_service(settings), None, settings)

        if settings.scheduler_enabled:
            try:
                app.state.scheduler.start()
            except Exception as e:
                log.error(f"Scheduler startup error: {str(e)}")

        yield

        # Shutdown
        app.state.scheduler.shutdown()
        log.info("Shutting down application")

    app = FastAPI(
        title=settings.app_name,
        version=__version__,
        description="""
        Multi-tenant sync engine for Google Search Console and Google Analytics 4

        - Daily incremental sync of yesterday per tenant
        - Historical backfill with dry run
        - Granular and date-only totals stored side by side
        """,
        lifespan=lifespan
    )
    app.state.sync_service = None
    app.state.scheduler = None
    if sync_service is not None:
        _attach(app, sync_service, scheduler, settings)

    # Include routers
    app.include_router(health.router, tags=["health"])
    app.include_router(sync.router)
    app.include_router(integrations.router)

    return app


def _attach(app: FastAPI, sync_service: DualGranularitySync, scheduler: Optional[SyncScheduler], settings) -> None:
    app.state.sync_service = sync_service
    app.state.scheduler = scheduler or SyncScheduler(sync_service, settings=settings)
    app.state.backfill_runner = BackfillRunner(sync_service, settings=settings)


app = create_app()


if __name__ == "__main__":
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "metricsync.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.debug
    )
