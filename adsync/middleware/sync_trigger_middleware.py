"""Request-driven sync trigger: dashboard traffic starts a report sync when one is due."""
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

from adsync.config import get_settings
from adsync.services.report_sync_service import get_report_sync_service
from adsync.utils.logger import log

# Paths that never trigger a sync (the sync API itself and probes)
SKIP_PREFIXES = (
    "/sync",
    "/health",
    "/docs",
    "/openapi.json",
    "/redoc",
)


class SyncTriggerMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        path = request.url.path

        if get_settings().sync_on_request and not any(path.startswith(p) for p in SKIP_PREFIXES):
            # Same service the /sync routes resolve, including test overrides
            provider = request.app.dependency_overrides.get(
                get_report_sync_service, get_report_sync_service
            )
            # Reads are never blocked by the sync; a failing check only costs this request its trigger
            try:
                provider().trigger_if_due("request")
            except Exception as e:
                log.error(f"Request-driven sync trigger failed: {e}")

        return await call_next(request)
