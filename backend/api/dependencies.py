"""Shared FastAPI dependencies.

Long-lived services are built once in ``main.lifespan`` and kept on
``app.state``; tests replace these functions through
``app.dependency_overrides``.
"""

import hmac
from typing import Optional

from fastapi import Header, HTTPException, Request

from config import settings
from services.refresh_service import RefreshService
from services.reference_data_service import ReferenceDataService
from services.scheduler import JobScheduler
from services.webhook_service import WebhookService


def get_webhook_service(request: Request) -> WebhookService:
    return request.app.state.webhook_service


def get_refresh_service(request: Request) -> RefreshService:
    return request.app.state.refresh_service


def get_reference_service(request: Request) -> ReferenceDataService:
    return request.app.state.reference_service


def get_scheduler(request: Request) -> Optional[JobScheduler]:
    return getattr(request.app.state, "scheduler", None)


def require_admin_key(x_admin_key: Optional[str] = Header(default=None)) -> None:
    """Check the ``X-Admin-Key`` header against ``ADMIN_API_KEY``.

    With no key configured, access is allowed only in development.
    """
    expected = settings.ADMIN_API_KEY
    if not expected:
        if settings.is_development:
            return
        raise HTTPException(status_code=403, detail="Admin API is not configured")
    if not x_admin_key or not hmac.compare_digest(x_admin_key, expected):
        raise HTTPException(status_code=403, detail="Invalid admin key")
