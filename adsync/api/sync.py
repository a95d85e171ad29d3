"""
Report sync endpoints
"""
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import JSONResponse

from adsync.exceptions import ConfigurationMissing
from adsync.services.report_sync_service import (
    ALREADY_RUNNING,
    STARTED,
    ReportSyncService,
    get_report_sync_service,
)
from adsync.utils.logger import log

router = APIRouter(prefix="/sync", tags=["sync"])


@router.get("/status")
async def get_sync_status(service: ReportSyncService = Depends(get_report_sync_service)):
    """
    Current sync status row plus whether a run is active in this process
    """
    try:
        return service.get_status()
    except Exception as e:
        log.error(f"Get sync status error: {str(e)}")
        raise HTTPException(status_code=500, detail=str(e))


@router.post("/trigger")
async def trigger_sync(
    force: bool = Query(False, description="Run even if the sync interval has not elapsed"),
    service: ReportSyncService = Depends(get_report_sync_service),
):
    """
    Start a report sync in the background.

    Returns 202 when a run was started, 409 when one is already running and
    200 with status "not_due" when nothing needed to happen.
    Check progress at GET /sync/status
    """
    missing = service.missing_credentials()
    if missing:
        error = ConfigurationMissing(missing)
        log.error(f"Sync trigger rejected: {error}")
        raise HTTPException(status_code=500, detail=str(error))

    try:
        outcome = service.trigger(force=force, trigger="manual")
    except Exception as e:
        log.error(f"Sync trigger error: {str(e)}")
        raise HTTPException(status_code=500, detail=str(e))

    if outcome == STARTED:
        return JSONResponse(status_code=202, content={"status": outcome, "check_progress": "/sync/status"})
    if outcome == ALREADY_RUNNING:
        return JSONResponse(status_code=409, content={"status": outcome})
    return {"status": outcome}


@router.get("/logs")
async def get_sync_logs(
    status: Optional[str] = Query(None, description="Filter by status (completed, failed, skipped)"),
    hours: int = Query(24, description="Hours of history to retrieve"),
    limit: int = Query(50, ge=1, le=500, description="Maximum number of runs to return"),
    service: ReportSyncService = Depends(get_report_sync_service),
):
    """
    Recent report sync runs, newest first
    """
    try:
        runs = service.history.recent(limit=limit, hours=hours, status=status)
    except Exception as e:
        log.error(f"Get sync logs error: {str(e)}")
        raise HTTPException(status_code=500, detail=str(e))

    return {
        "count": len(runs),
        "filters": {"status": status, "hours": hours},
        "logs": runs,
    }
