"""Verification of inbound SnapTrade webhook deliveries.

SnapTrade sends a ``Signature`` header holding the base64-encoded
HMAC-SHA256 of the JSON payload, keyed with the webhook secret.  The digest
is checked against the raw body and against the canonical JSON form
(sorted keys, compact separators) of the same payload, since the provider
signs the decoded object rather than our exact bytes.  Deliveries may also
carry the secret itself in a ``webhookSecret`` field; when present it must
match.
"""

import base64
import hashlib
import hmac
import json
import logging

logger = logging.getLogger(__name__)

SECRET_FIELD = "webhookSecret"


class SignatureVerificationError(Exception):
    """The delivery's signature or embedded secret is missing or wrong."""

    pass


def canonical_json(payload) -> bytes:
    """Compact, key-sorted JSON encoding of ``payload``."""
    return json.dumps(payload, separators=(",", ":"), sort_keys=True).encode()


def compute_signature(secret: str, message: bytes) -> str:
    """Base64 HMAC-SHA256 of ``message``."""
    digest = hmac.new(secret.encode(), message, hashlib.sha256).digest()
    return base64.b64encode(digest).decode()


def sign_payload(secret: str, body: bytes) -> str:
    """Produce a ``Signature`` header value for ``body``.  Used by tests and local tooling."""
    return compute_signature(secret, body)


def _decode(body: bytes):
    try:
        return json.loads(body)
    except (ValueError, UnicodeDecodeError):
        return None


class WebhookSignatureVerifier:
    """Verifies deliveries for one provider.

    With no secret configured, :meth:`verify` passes only when
    ``allow_unsigned`` is set (development); otherwise every delivery is
    rejected.
    """

    def __init__(self, secret: str | None, allow_unsigned: bool = False):
        self._secret = secret or None
        self.allow_unsigned = allow_unsigned

    @property
    def is_configured(self) -> bool:
        return self._secret is not None

    def verify(self, body: bytes, signature: str | None) -> None:
        """Raise :class:`SignatureVerificationError` unless ``body`` is authentic.

        A valid ``signature`` or a matching embedded secret is required; an
        embedded secret that does not match fails even with a valid signature.
        """
        if self._secret is None:
            if self.allow_unsigned:
                logger.warning("Webhook secret not configured; accepting unsigned delivery")
                return
            raise SignatureVerificationError("Webhook secret not configured")

        payload = _decode(body)
        embedded = payload.get(SECRET_FIELD) if isinstance(payload, dict) else None
        if embedded is not None:
            if not hmac.compare_digest(str(embedded).encode(), self._secret.encode()):
                raise SignatureVerificationError("Embedded webhook secret mismatch")

        if signature:
            candidates = [body]
            if payload is not None:
                candidates.append(canonical_json(payload))
            provided = signature.strip().encode()
            for message in candidates:
                expected = compute_signature(self._secret, message).encode()
                if hmac.compare_digest(expected, provided):
                    return
            raise SignatureVerificationError("Signature mismatch")

        if embedded is None:
            raise SignatureVerificationError("Missing signature header")
