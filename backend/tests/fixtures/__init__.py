"""Test fixtures and sample data."""
import json
from decimal import Decimal

import pytest
from sqlalchemy.orm import Session

from models import Connection, ExternalAccount, UserProviderCredential
from services.webhook_signature import sign_payload

WEBHOOK_SECRET = "test-webhook-secret"


def create_credential(
    db: Session,
    user_id: str = "user-a",
    provider_name: str = "SnapTrade",
    identity: str = "snap-user-a",
    secret: str = "secret-a",
) -> UserProviderCredential:
    """Insert a live credential and commit."""
    credential = UserProviderCredential(
        user_id=user_id,
        provider_name=provider_name,
        provider_identity=identity,
        provider_secret=secret,
    )
    db.add(credential)
    db.commit()
    return credential


def create_connection(
    db: Session,
    authorization_id: str = "auth-1",
    user_id: str = "user-a",
    status: str = "active",
    disabled: bool = False,
    provider_name: str = "SnapTrade",
    institution_name: str = "Test Brokerage",
) -> Connection:
    """Insert a connection row directly (bypassing the state machine) and commit."""
    connection = Connection(
        authorization_id=authorization_id,
        user_id=user_id,
        provider_name=provider_name,
        institution_name=institution_name,
        status=status,
        disabled=disabled,
    )
    db.add(connection)
    db.commit()
    return connection


def create_account(
    db: Session,
    connection: Connection,
    provider_account_id: str = "acc-1",
    name: str = "Brokerage Account",
    balance: Decimal | None = Decimal("50.00"),
) -> ExternalAccount:
    account = ExternalAccount(
        connection_id=connection.id,
        provider_account_id=provider_account_id,
        name=name,
        balance=balance,
        currency="USD",
        initial_sync_completed=True,
    )
    db.add(account)
    db.commit()
    return account


@pytest.fixture
def credential(db):
    """A live SnapTrade credential for user-a."""
    return create_credential(db)


@pytest.fixture
def connection(db):
    """An active connection for user-a."""
    return create_connection(db)


@pytest.fixture
def external_account(db, connection):
    """One account under the active connection."""
    return create_account(db, connection)


def webhook_payload(
    event_type: str = "CONNECTION_ADDED",
    event_id: str = "evt-1",
    identity: str = "snap-user-a",
    authorization_id: str | None = "auth-1",
    **extra,
) -> dict:
    """A SnapTrade-shaped (camelCase) webhook payload."""
    payload = {
        "webhookId": event_id,
        "eventType": event_type,
        "eventTimestamp": "2024-03-01T12:00:00Z",
        "userId": identity,
        "brokerageAuthorizationId": authorization_id,
        "brokerageName": "Test Brokerage",
    }
    payload.update(extra)
    return payload


def signed_delivery(payload, secret: str = WEBHOOK_SECRET):
    """Encode ``payload`` and sign it the way SnapTrade does.  Returns ``(body, signature)``."""
    body = payload if isinstance(payload, bytes) else json.dumps(payload).encode()
    return body, sign_payload(secret, body)
