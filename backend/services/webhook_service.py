"""Webhook ingestion - verify, normalize, log, and apply provider notifications.

Each delivery is written to ``webhook_events`` and committed *before* any
connection state changes, so the log is a faithful audit trail even when
applying the event fails.  :meth:`WebhookService.process` never raises for
bad input; the API layer acknowledges every delivery with 200.
"""

import json
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Callable, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from integrations.parsing_utils import get_field, parse_timestamp
from models.utils import as_utc, utcnow
from models.webhook_event import WebhookEvent
from services.connection_state import ConnectionStateMachine, InvalidTransitionError
from services.credential_store import CredentialStore
from services.webhook_signature import (
    SECRET_FIELD,
    SignatureVerificationError,
    WebhookSignatureVerifier,
)

logger = logging.getLogger(__name__)


class CanonicalEventType(str, Enum):
    ATTEMPTED = "connection.attempted"
    ADDED = "connection.added"
    UPDATED = "connection.updated"
    BROKEN = "connection.broken"
    FIXED = "connection.fixed"
    DELETED = "connection.deleted"
    UNKNOWN = "unknown"


class WebhookOutcome(str, Enum):
    RECEIVED = "received"
    APPLIED = "applied"
    IGNORED = "ignored"
    DUPLICATE = "duplicate"
    UNMAPPED = "unmapped"
    UNKNOWN_USER = "unknown_user"
    INVALID_SIGNATURE = "invalid_signature"
    MALFORMED = "malformed"
    FAILED = "failed"


SUCCESS_OUTCOMES = frozenset(
    {WebhookOutcome.APPLIED.value, WebhookOutcome.IGNORED.value, WebhookOutcome.DUPLICATE.value}
)
FAILURE_OUTCOMES = frozenset(
    {
        WebhookOutcome.FAILED.value,
        WebhookOutcome.INVALID_SIGNATURE.value,
        WebhookOutcome.MALFORMED.value,
    }
)

# Provider event-type strings (lowercased) -> canonical type.
EVENT_TYPE_MAP: dict[str, CanonicalEventType] = {
    "attempted": CanonicalEventType.ATTEMPTED,
    "added": CanonicalEventType.ADDED,
    "updated": CanonicalEventType.UPDATED,
    "broken": CanonicalEventType.BROKEN,
    "fixed": CanonicalEventType.FIXED,
    "deleted": CanonicalEventType.DELETED,
    "connection.attempted": CanonicalEventType.ATTEMPTED,
    "connection.added": CanonicalEventType.ADDED,
    "connection.updated": CanonicalEventType.UPDATED,
    "connection.broken": CanonicalEventType.BROKEN,
    "connection.fixed": CanonicalEventType.FIXED,
    "connection.deleted": CanonicalEventType.DELETED,
    "connection_attempted": CanonicalEventType.ATTEMPTED,
    "connection_added": CanonicalEventType.ADDED,
    "connection_updated": CanonicalEventType.UPDATED,
    "connection_broken": CanonicalEventType.BROKEN,
    "connection_fixed": CanonicalEventType.FIXED,
    "connection_deleted": CanonicalEventType.DELETED,
    "connection.created": CanonicalEventType.ADDED,
    "connection.refreshed": CanonicalEventType.UPDATED,
    "account_holdings_updated": CanonicalEventType.UPDATED,
}

_ID_KEYS = ("id", "webhookId", "eventId", "event_id")
_TYPE_KEYS = ("type", "eventType", "event_type")
_CREATED_KEYS = ("created_at", "eventTimestamp", "createdAt", "timestamp")
_IDENTITY_KEYS = ("user_id", "userId")
_AUTHORIZATION_KEYS = (
    "authorization_id",
    "brokerage_authorization_id",
    "brokerageAuthorizationId",
    "brokerage_authorization",
)
_INSTITUTION_KEYS = ("institution_name", "brokerage", "brokerageName", "brokerage_name")
# The embedded secret is never persisted with the payload
_KNOWN_KEYS = frozenset(
    _ID_KEYS + _TYPE_KEYS + _CREATED_KEYS + _IDENTITY_KEYS + _AUTHORIZATION_KEYS + _INSTITUTION_KEYS
    + (SECRET_FIELD,)
)


class MalformedWebhookError(ValueError):
    """The delivery body is not a JSON object."""

    pass


@dataclass
class CanonicalWebhookEvent:
    """A provider notification in provider-agnostic form.

    ``user_id`` is resolved from ``provider_identity`` through the
    credential store, never taken from the payload.
    """

    provider_name: str
    type: CanonicalEventType
    raw_type: str | None
    event_id: str | None = None
    created_at: datetime | None = None
    provider_identity: str | None = None
    user_id: str | None = None
    authorization_id: str | None = None
    institution_name: str | None = None
    details: dict = field(default_factory=dict)


def map_event_type(raw_type) -> CanonicalEventType:
    """Map a provider event type to the canonical vocabulary."""
    if not raw_type:
        return CanonicalEventType.UNKNOWN
    return EVENT_TYPE_MAP.get(str(raw_type).strip().lower(), CanonicalEventType.UNKNOWN)


def _as_text(value) -> str | None:
    if value is None or value == "":
        return None
    if isinstance(value, dict):
        value = value.get("id")
        return str(value) if value else None
    return str(value)


def normalize_payload(provider_name: str, payload) -> CanonicalWebhookEvent:
    """Build a :class:`CanonicalWebhookEvent` from a decoded JSON body.

    Accepts both snake_case (``id``, ``type``, ``authorization_id``) and
    camelCase (``webhookId``, ``eventType``, ``brokerageAuthorizationId``)
    payloads.
    """
    if not isinstance(payload, dict):
        raise MalformedWebhookError("Webhook payload must be a JSON object")

    raw_type = get_field(payload, *_TYPE_KEYS)
    institution = get_field(payload, *_INSTITUTION_KEYS)
    if isinstance(institution, dict):
        institution = institution.get("name")

    return CanonicalWebhookEvent(
        provider_name=provider_name,
        type=map_event_type(raw_type),
        raw_type=str(raw_type) if raw_type is not None else None,
        event_id=_as_text(get_field(payload, *_ID_KEYS)),
        created_at=parse_timestamp(get_field(payload, *_CREATED_KEYS)),
        provider_identity=_as_text(get_field(payload, *_IDENTITY_KEYS)),
        authorization_id=_as_text(get_field(payload, *_AUTHORIZATION_KEYS)),
        institution_name=str(institution) if institution else None,
        details={k: v for k, v in payload.items() if k not in _KNOWN_KEYS},
    )


class WebhookService:
    """Ingests deliveries for any provider with a registered verifier."""

    def __init__(
        self,
        verifiers: Optional[dict[str, WebhookSignatureVerifier]] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        """Initialize with per-provider signature verifiers.

        Args:
            verifiers: Provider name -> verifier.  A provider with no
                       verifier has every delivery rejected.
            clock: Returns the current aware UTC time (tests).
        """
        self._verifiers = verifiers or {}
        self._clock = clock or utcnow

    def process(
        self,
        db: Session,
        provider_name: str,
        body: bytes,
        signature: str | None,
    ) -> WebhookEvent:
        """Verify, log, and apply one delivery.  Commits.

        Returns the logged :class:`WebhookEvent`; its ``outcome`` says what
        happened.
        """
        started = time.perf_counter()
        record = WebhookEvent(provider_name=provider_name, received_at=self._clock())

        try:
            self._verify(provider_name, body, signature)
        except SignatureVerificationError as e:
            logger.warning("Rejected %s webhook: %s", provider_name, e)
            return self._finish(db, record, WebhookOutcome.INVALID_SIGNATURE, started, str(e))

        try:
            event = normalize_payload(provider_name, json.loads(body or b"null"))
        except (ValueError, UnicodeDecodeError) as e:
            logger.warning("Malformed %s webhook: %s", provider_name, e)
            return self._finish(db, record, WebhookOutcome.MALFORMED, started, str(e))

        record.event_id = event.event_id
        record.raw_type = event.raw_type
        record.canonical_type = event.type.value
        record.provider_identity = event.provider_identity
        record.authorization_id = event.authorization_id
        record.event_created_at = event.created_at
        record.payload = event.details

        if event.type is CanonicalEventType.UNKNOWN:
            logger.warning(
                "Unmapped %s webhook type %r (event %s)",
                provider_name, event.raw_type, event.event_id,
            )
            return self._finish(db, record, WebhookOutcome.UNMAPPED, started)

        event.user_id = CredentialStore.resolve_user(
            db, provider_name, event.provider_identity
        )
        record.user_id = event.user_id
        if event.user_id is None:
            logger.warning(
                "No local user for %s identity %s (event %s)",
                provider_name, event.provider_identity, event.event_id,
            )
            return self._finish(db, record, WebhookOutcome.UNKNOWN_USER, started)

        if self._already_applied(db, provider_name, event.event_id):
            logger.info("Duplicate %s webhook %s skipped", provider_name, event.event_id)
            return self._finish(db, record, WebhookOutcome.DUPLICATE, started)

        # Durable log before mutation
        record.outcome = WebhookOutcome.RECEIVED.value
        db.add(record)
        db.commit()

        try:
            applied = self._apply(db, event)
        except Exception as e:
            db.rollback()
            logger.exception(
                "Failed to apply %s webhook %s (%s)",
                provider_name, event.event_id, event.type.value,
            )
            return self._finish(db, record, WebhookOutcome.FAILED, started, str(e))

        outcome = WebhookOutcome.APPLIED if applied else WebhookOutcome.IGNORED
        logger.info(
            "%s webhook %s %s for user %s: %s",
            provider_name, event.event_id, event.type.value, event.user_id, outcome.value,
        )
        return self._finish(db, record, outcome, started)

    def _verify(self, provider_name: str, body: bytes, signature: str | None) -> None:
        verifier = self._verifiers.get(provider_name)
        if verifier is None:
            raise SignatureVerificationError(f"No webhook verifier for provider {provider_name}")
        verifier.verify(body, signature)

    @staticmethod
    def _already_applied(db: Session, provider_name: str, event_id: str | None) -> bool:
        if not event_id:
            return False
        return (
            db.query(WebhookEvent.id)
            .filter(
                WebhookEvent.provider_name == provider_name,
                WebhookEvent.event_id == event_id,
                WebhookEvent.outcome == WebhookOutcome.APPLIED.value,
            )
            .first()
            is not None
        )

    def _finish(
        self,
        db: Session,
        record: WebhookEvent,
        outcome: WebhookOutcome,
        started: float,
        error: str | None = None,
    ) -> WebhookEvent:
        record.outcome = outcome.value
        record.error = error
        record.processed_at = self._clock()
        record.processing_ms = round((time.perf_counter() - started) * 1000, 3)
        db.add(record)
        db.commit()
        return record

    @staticmethod
    def _apply(db: Session, event: CanonicalWebhookEvent) -> bool:
        """Drive the state machine.  Returns True if state changed hands."""
        if event.type is CanonicalEventType.ATTEMPTED:
            return False
        if not event.authorization_id:
            logger.info("Webhook %s has no authorization id; nothing to apply", event.event_id)
            return False

        connection = ConnectionStateMachine.get(db, event.authorization_id)
        if connection is not None and connection.user_id != event.user_id:
            logger.warning(
                "Webhook %s: connection %s belongs to user %s, not %s; skipped",
                event.event_id, event.authorization_id, connection.user_id, event.user_id,
            )
            return False

        if event.type is CanonicalEventType.ADDED:
            try:
                ConnectionStateMachine.mark_added(
                    db,
                    event.user_id,
                    event.provider_name,
                    event.authorization_id,
                    event.institution_name,
                )
            except InvalidTransitionError as e:
                logger.info("Webhook %s ignored: %s", event.event_id, e)
                db.rollback()
                return False
            db.commit()
            return True

        if connection is None:
            logger.info(
                "Webhook %s: unknown connection %s; nothing to apply",
                event.event_id, event.authorization_id,
            )
            return False

        try:
            if event.type is CanonicalEventType.UPDATED:
                ConnectionStateMachine.mark_updated(db, event.authorization_id)
            elif event.type is CanonicalEventType.BROKEN:
                ConnectionStateMachine.mark_broken(db, event.authorization_id, "provider webhook")
            elif event.type is CanonicalEventType.FIXED:
                ConnectionStateMachine.mark_fixed(db, event.authorization_id)
            elif event.type is CanonicalEventType.DELETED:
                ConnectionStateMachine.delete(db, event.authorization_id)
        except InvalidTransitionError as e:
            logger.info("Webhook %s ignored: %s", event.event_id, e)
            db.rollback()
            return False

        db.commit()
        return True

    def health(self, db: Session) -> dict:
        """Summarize recent deliveries.

        ``unhealthy`` after more than 5 failures in 24 hours; ``degraded``
        after more than 2, or when the last success is over 24 hours old.
        """
        now = self._clock()
        since = now - timedelta(hours=24)

        recent = db.query(WebhookEvent).filter(WebhookEvent.received_at >= since)
        total_24h = recent.count()
        failures_24h = recent.filter(WebhookEvent.outcome.in_(FAILURE_OUTCOMES)).count()
        avg_ms = (
            db.query(func.avg(WebhookEvent.processing_ms))
            .filter(WebhookEvent.received_at >= since)
            .scalar()
        )
        last_success = (
            db.query(func.max(WebhookEvent.received_at))
            .filter(WebhookEvent.outcome.in_(SUCCESS_OUTCOMES))
            .scalar()
        )
        last_success = as_utc(last_success)

        if failures_24h > 5:
            status = "unhealthy"
        elif failures_24h > 2 or (
            last_success is not None and now - last_success > timedelta(hours=24)
        ):
            status = "degraded"
        else:
            status = "healthy"

        return {
            "status": status,
            "last_success_at": last_success,
            "events_24h": total_24h,
            "failures_24h": failures_24h,
            "avg_processing_ms": round(float(avg_ms), 3) if avg_ms is not None else None,
        }
