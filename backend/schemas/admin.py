"""Pydantic schemas for the admin endpoints."""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel


class RefreshRequest(BaseModel):
    """Manual refresh trigger.  Omit ``user_id`` to refresh every user."""

    user_id: Optional[str] = None


class NormalizedErrorResponse(BaseModel):
    kind: str
    message: str
    action: str
    status: Optional[int] = None
    code: Optional[str] = None
    request_id: Optional[str] = None


class RefreshResponse(BaseModel):
    success: bool
    message: str
    sync_run_id: Optional[str] = None
    error: Optional[NormalizedErrorResponse] = None


class CancelResponse(BaseModel):
    success: bool
    message: str


class JobStatus(BaseModel):
    name: str
    schedule: str
    enabled: bool
    running: bool
    next_run_at: Optional[datetime] = None
    last_started_at: Optional[datetime] = None
    last_finished_at: Optional[datetime] = None
    last_error: Optional[str] = None
    run_count: int = 0
    skipped_count: int = 0


class JobsResponse(BaseModel):
    scheduler_running: bool
    timezone: Optional[str] = None
    account_refresh_running: bool
    jobs: list[JobStatus] = []


class ReferenceCacheRefreshResponse(BaseModel):
    refreshed: int
    missing: int
    failed: int
    purged: int
