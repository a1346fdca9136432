"""Pydantic schemas for API requests and responses."""

from schemas.admin import (
    CancelResponse,
    JobsResponse,
    JobStatus,
    ReferenceCacheRefreshResponse,
    RefreshRequest,
    RefreshResponse,
)
from schemas.connection import ConnectionResponse, ExternalAccountResponse
from schemas.sync_run import SyncRunFailure, SyncRunResponse
from schemas.webhook import WebhookAck, WebhookHealthResponse

__all__ = [
    "CancelResponse",
    "ConnectionResponse",
    "ExternalAccountResponse",
    "JobStatus",
    "JobsResponse",
    "ReferenceCacheRefreshResponse",
    "RefreshRequest",
    "RefreshResponse",
    "SyncRunFailure",
    "SyncRunResponse",
    "WebhookAck",
    "WebhookHealthResponse",
]
