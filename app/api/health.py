"""
Liveness and runtime status
"""
from datetime import datetime

from fastapi import APIRouter

from app import __version__
from app.config import get_settings
from app.scheduler import get_scheduled_jobs

settings = get_settings()

router = APIRouter()


@router.get("/health")
async def health_check():
    return {
        "status": "healthy",
        "timestamp": datetime.utcnow().isoformat(),
        "version": __version__
    }


@router.get("/status")
async def get_status():
    """Courier endpoint, scheduler state and registered jobs"""
    return {
        "app_name": settings.app_name,
        "version": __version__,
        "environment": settings.environment,
        "courier": {
            "api_url": settings.fancourier_api_url,
            "timeout_seconds": settings.fancourier_timeout_seconds,
        },
        "scheduler": {
            "enabled": settings.enable_scheduler,
            "awb_sync_schedule": settings.sync_awb_schedule,
            "jobs": get_scheduled_jobs(),
        },
        "timestamp": datetime.utcnow().isoformat()
    }
