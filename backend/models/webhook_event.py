"""WebhookEvent model - durable log of inbound provider notifications."""

from sqlalchemy import JSON, Column, DateTime, Float, String, Text

from database import Base
from models.utils import generate_uuid, utcnow


class WebhookEvent(Base):
    """One webhook delivery, written before any state change it causes.

    ``event_id`` is not unique: replays are logged as their own rows with
    ``outcome="duplicate"``.
    """

    __tablename__ = "webhook_events"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    event_id = Column(String, nullable=True, index=True)
    provider_name = Column(String, nullable=False)
    raw_type = Column(String, nullable=True)
    canonical_type = Column(String, nullable=True)
    provider_identity = Column(String, nullable=True)
    user_id = Column(String, nullable=True, index=True)
    authorization_id = Column(String, nullable=True, index=True)
    event_created_at = Column(DateTime, nullable=True)
    payload = Column(JSON, nullable=True)
    outcome = Column(String, nullable=False, default="received")
    error = Column(Text, nullable=True)
    received_at = Column(DateTime, nullable=False, default=utcnow, index=True)
    processed_at = Column(DateTime, nullable=True)
    processing_ms = Column(Float, nullable=True)
