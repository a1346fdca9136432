"""Pydantic schemas for webhook responses."""

from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel


class WebhookAck(BaseModel):
    """Unconditional acknowledgement returned to the provider."""

    ok: bool = True


class WebhookHealthResponse(BaseModel):
    status: Literal["healthy", "degraded", "unhealthy"]
    last_success_at: Optional[datetime] = None
    events_24h: int
    failures_24h: int
    avg_processing_ms: Optional[float] = None
