"""Unit tests for SQLAlchemy models."""

from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy.exc import IntegrityError

from models import Connection, ExternalAccount, SyncRun, UserProviderCredential
from models.utils import as_utc, generate_uuid
from tests.fixtures import create_account


def test_credential_creation(credential):
    assert credential.id is not None
    assert credential.is_active is True
    assert credential.created_at is not None
    assert "live" in repr(credential)


def test_connection_defaults(db):
    conn = Connection(authorization_id="auth-x", user_id="user-a", provider_name="SnapTrade")
    db.add(conn)
    db.commit()
    assert conn.status == "pending"
    assert conn.disabled is False
    assert conn.created_at is not None


def test_authorization_id_unique(db, connection):
    db.add(Connection(authorization_id="auth-1", user_id="user-b", provider_name="SnapTrade"))
    with pytest.raises(IntegrityError):
        db.commit()
    db.rollback()


def test_account_unique_per_connection(db, connection, external_account):
    db.add(
        ExternalAccount(
            connection_id=connection.id, provider_account_id="acc-1", name="Duplicate"
        )
    )
    with pytest.raises(IntegrityError):
        db.commit()
    db.rollback()


def test_account_requires_connection(db):
    db.add(ExternalAccount(connection_id=generate_uuid(), provider_account_id="a", name="n"))
    with pytest.raises(IntegrityError):
        db.commit()
    db.rollback()


def test_connection_accounts_relationship(db, connection):
    create_account(db, connection, provider_account_id="acc-1")
    create_account(db, connection, provider_account_id="acc-2")
    db.refresh(connection)
    assert sorted(a.provider_account_id for a in connection.accounts) == ["acc-1", "acc-2"]
    assert connection.accounts[0].connection.id == connection.id


def test_rotated_credentials_coexist(db):
    now = datetime.now(timezone.utc)
    for i in range(3):
        db.add(
            UserProviderCredential(
                user_id="user-a",
                provider_name="SnapTrade",
                provider_identity=f"id-{i}",
                provider_secret="s",
                rotated_at=now - timedelta(days=i),
            )
        )
    db.commit()
    assert db.query(UserProviderCredential).count() == 3


def test_sync_run_duration():
    start = datetime(2024, 1, 1, 2, 0)
    run = SyncRun(trigger="scheduled", started_at=start, finished_at=start + timedelta(seconds=90))
    assert run.duration_seconds == 90.0
    assert SyncRun(trigger="scheduled", started_at=start).duration_seconds is None


def test_sync_run_failures_default_to_empty_list(db):
    run = SyncRun(trigger="scheduled", status="running")
    db.add(run)
    db.commit()
    db.expire_all()
    assert db.get(SyncRun, run.id).failures == []


def test_as_utc():
    naive = datetime(2024, 1, 1)
    assert as_utc(naive).tzinfo == timezone.utc
    aware = datetime(2024, 1, 1, tzinfo=timezone.utc)
    assert as_utc(aware) is aware
    assert as_utc(None) is None
