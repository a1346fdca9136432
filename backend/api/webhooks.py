"""Webhook API endpoints."""

import logging

from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from config import settings
from database import get_db
from api.dependencies import get_webhook_service
from schemas import WebhookAck, WebhookHealthResponse
from services.webhook_service import WebhookService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/webhooks", tags=["webhooks"])

# URL slug -> provider name
PROVIDER_SLUGS = {
    "snaptrade": "SnapTrade",
}


@router.get("/health", response_model=WebhookHealthResponse)
def webhook_health(
    db: Session = Depends(get_db),
    webhook_service: WebhookService = Depends(get_webhook_service),
):
    """Summarize recent webhook deliveries."""
    return webhook_service.health(db)


@router.post("/{provider}", response_model=WebhookAck)
async def receive_webhook(
    provider: str,
    request: Request,
    db: Session = Depends(get_db),
    webhook_service: WebhookService = Depends(get_webhook_service),
):
    """Receive a provider notification.

    Always returns 200 ``{"ok": true}``: failures are logged, never surfaced,
    so the provider does not retry.
    """
    provider_name = PROVIDER_SLUGS.get(provider.lower(), provider)
    try:
        body = await request.body()
        signature = request.headers.get(settings.WEBHOOK_SIGNATURE_HEADER)
        event = webhook_service.process(db, provider_name, body, signature)
        logger.debug("Webhook %s from %s: %s", event.event_id, provider_name, event.outcome)
    except Exception:
        db.rollback()
        logger.exception("Unhandled error processing %s webhook", provider_name)
    return WebhookAck()
