"""Pydantic schemas for refresh run summaries."""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel


class SyncRunFailure(BaseModel):
    user_id: str
    provider: str
    kind: str
    message: str


class SyncRunResponse(BaseModel):
    """Summary of one account refresh run."""

    id: str
    trigger: str
    status: str
    started_at: datetime
    finished_at: Optional[datetime] = None
    duration_seconds: Optional[float] = None
    users_succeeded: int
    users_failed: int
    users_skipped: int
    accounts_refreshed: int
    accounts_failed: int
    failures: list[SyncRunFailure] = []
    error_message: Optional[str] = None

    model_config = {"from_attributes": True}
