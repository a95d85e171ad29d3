"""
Health check endpoint
"""
from fastapi import APIRouter

from adsync import __version__
from adsync.config import get_settings
from adsync.utils.helpers import utcnow

settings = get_settings()

router = APIRouter()


@router.get("/health")
async def health_check():
    """Liveness probe; does not touch the database or the upstream API"""
    return {
        "status": "healthy",
        "app_name": settings.app_name,
        "environment": settings.environment,
        "timestamp": utcnow().isoformat(),
        "version": __version__
    }
