"""Admin API endpoints for the background jobs."""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from database import get_db
from api.dependencies import (
    get_reference_service,
    get_refresh_service,
    get_scheduler,
    require_admin_key,
)
from models.sync_run import SyncRun
from schemas import (
    CancelResponse,
    JobsResponse,
    ReferenceCacheRefreshResponse,
    RefreshRequest,
    RefreshResponse,
    SyncRunResponse,
)
from services.job_lock import JobAlreadyRunningError
from services.refresh_service import RefreshService
from services.reference_data_service import ReferenceDataService
from services.scheduler import JobScheduler

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/api/admin",
    tags=["admin"],
    dependencies=[Depends(require_admin_key)],
)


@router.post("/refresh", response_model=RefreshResponse)
def trigger_refresh(
    body: Optional[RefreshRequest] = None,
    refresh_service: RefreshService = Depends(get_refresh_service),
):
    """Trigger an account refresh.

    With ``user_id`` the refresh runs synchronously and the response carries
    its outcome; without, the full batch starts in the background.

    Raises:
        HTTPException:
            - 409 Conflict: A full refresh is already running
    """
    user_id = body.user_id if body else None
    logger.info("Manual refresh requested (user=%s)", user_id or "all")
    result = refresh_service.trigger_refresh(user_id)
    if result.already_running:
        raise HTTPException(status_code=409, detail=result.message)
    return result.to_dict()


@router.post("/refresh/cancel", response_model=CancelResponse)
def cancel_refresh(refresh_service: RefreshService = Depends(get_refresh_service)):
    """Ask a running full refresh to stop before its next user."""
    if refresh_service.cancel():
        return {"success": True, "message": "Cancellation requested"}
    return {"success": False, "message": "No refresh is running"}


@router.get("/jobs", response_model=JobsResponse)
def list_jobs(
    scheduler: Optional[JobScheduler] = Depends(get_scheduler),
    refresh_service: RefreshService = Depends(get_refresh_service),
):
    """Scheduler and job status."""
    status = scheduler.status() if scheduler is not None else {"running": False, "jobs": []}
    return {
        "scheduler_running": status["running"],
        "timezone": status.get("timezone"),
        "account_refresh_running": refresh_service.is_running(),
        "jobs": status["jobs"],
    }


@router.get("/sync-runs", response_model=list[SyncRunResponse])
def list_sync_runs(
    limit: int = Query(default=20, ge=1, le=200),
    db: Session = Depends(get_db),
):
    """Most recent refresh runs, newest first."""
    return (
        db.query(SyncRun)
        .order_by(SyncRun.started_at.desc())
        .limit(limit)
        .all()
    )


@router.post("/reference-cache/refresh", response_model=ReferenceCacheRefreshResponse)
def refresh_reference_cache(
    reference_service: ReferenceDataService = Depends(get_reference_service),
):
    """Run the reference-data cache refresh now.

    Raises:
        HTTPException:
            - 409 Conflict: Another refresh of the cache is running
    """
    try:
        return reference_service.refresh_cache()
    except JobAlreadyRunningError as e:
        raise HTTPException(status_code=409, detail=str(e))
