"""
Health check and status endpoints
"""
from datetime import datetime

from fastapi import APIRouter, Request

from metricsync import __version__
from metricsync.config import get_settings

router = APIRouter()


@router.get("/health")
async def health_check():
    """Health check endpoint"""
    return {
        "status": "healthy",
        "timestamp": datetime.utcnow().isoformat(),
        "version": __version__
    }


@router.get("/status")
async def get_status(request: Request):
    """Get system status"""
    settings = get_settings()
    scheduler = getattr(request.app.state, "scheduler", None)
    return {
        "app_name": settings.app_name,
        "version": __version__,
        "environment": settings.environment,
        "scheduler": {
            "enabled": settings.scheduler_enabled,
            "running": bool(scheduler and scheduler.running),
            "timezone": settings.sync_timezone,
        },
        "timestamp": datetime.utcnow().isoformat()
    }
