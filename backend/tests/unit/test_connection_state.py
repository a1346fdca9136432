"""Tests for the connection state machine."""

import pytest

from models import Connection, ExternalAccount
from integrations.exceptions import RawProviderError
from services.connection_state import (
    ConnectionNotFoundError,
    ConnectionStateMachine,
    ConnectionStatus,
    InvalidTransitionError,
)
from services.error_normalizer import normalize
from tests.fixtures import create_account, create_connection

AUTH_EXPIRED = normalize(RawProviderError(status=403, code="TOKEN_EXPIRED"))
DISABLED = normalize(RawProviderError(code="BROKERAGE_AUTHORIZATION_DISABLED"))
RATE_LIMITED = normalize(RawProviderError(status=429))
MISMATCH = normalize(RawProviderError(status=409))


class TestEnsure:

    def test_creates_pending(self, db):
        conn, created = ConnectionStateMachine.ensure(
            db, "user-a", "SnapTrade", "auth-new", "Questrade"
        )
        db.commit()
        assert created is True
        assert conn.status == "pending"
        assert conn.disabled is False
        assert conn.institution_name == "Questrade"

    def test_returns_existing(self, db, connection):
        conn, created = ConnectionStateMachine.ensure(db, "user-a", "SnapTrade", "auth-1")
        assert created is False
        assert conn.id == connection.id
        assert conn.status == "active"

    def test_updates_institution_name(self, db, connection):
        conn, _ = ConnectionStateMachine.ensure(
            db, "user-a", "SnapTrade", "auth-1", "Renamed Brokerage"
        )
        assert conn.institution_name == "Renamed Brokerage"


class TestWebhookTransitions:

    def test_added_creates_active(self, db):
        conn = ConnectionStateMachine.mark_added(db, "user-a", "SnapTrade", "auth-2", "Wealthsimple")
        db.commit()
        assert conn.status == "active"
        assert conn.disabled is False

    def test_added_twice_is_idempotent(self, db):
        ConnectionStateMachine.mark_added(db, "user-a", "SnapTrade", "auth-2")
        ConnectionStateMachine.mark_added(db, "user-a", "SnapTrade", "auth-2")
        db.commit()
        assert db.query(Connection).filter(Connection.authorization_id == "auth-2").count() == 1

    def test_added_clears_broken(self, db):
        create_connection(db, status="broken", disabled=True)
        conn = ConnectionStateMachine.mark_added(db, "user-a", "SnapTrade", "auth-1")
        assert conn.status == "active"
        assert conn.disabled is False

    def test_broken_sets_disabled(self, db, connection):
        conn = ConnectionStateMachine.mark_broken(db, "auth-1", "login expired")
        assert conn.status == "broken"
        assert conn.disabled is True

    def test_broken_replay(self, db, connection):
        ConnectionStateMachine.mark_broken(db, "auth-1")
        conn = ConnectionStateMachine.mark_broken(db, "auth-1")
        assert (conn.status, conn.disabled) == ("broken", True)

    def test_fixed_restores_active(self, db):
        create_connection(db, status="broken", disabled=True)
        conn = ConnectionStateMachine.mark_fixed(db, "auth-1")
        assert conn.status == "active"
        assert conn.disabled is False

    def test_updated_stamps_last_synced(self, db, connection):
        assert connection.last_synced_at is None
        conn = ConnectionStateMachine.mark_updated(db, "auth-1")
        assert conn.last_synced_at is not None
        assert conn.status == "active"

    def test_unknown_connection_returns_none(self, db):
        assert ConnectionStateMachine.mark_broken(db, "missing") is None
        assert ConnectionStateMachine.mark_fixed(db, "missing") is None
        assert ConnectionStateMachine.mark_updated(db, "missing") is None

    def test_suspended_connection_cannot_be_fixed(self, db):
        create_connection(db, status="disabled")
        with pytest.raises(InvalidTransitionError) as exc_info:
            ConnectionStateMachine.mark_fixed(db, "auth-1")
        assert exc_info.value.current == "disabled"
        assert exc_info.value.target == "active"


class TestDelete:

    def test_delete_cascades_accounts(self, db, connection, external_account):
        assert ConnectionStateMachine.delete(db, "auth-1") is True
        db.commit()
        assert db.query(Connection).count() == 0
        assert db.query(ExternalAccount).count() == 0

    def test_delete_missing(self, db):
        assert ConnectionStateMachine.delete(db, "missing") is False

    def test_delete_leaves_other_connections(self, db, connection):
        other = create_connection(db, authorization_id="auth-2")
        create_account(db, other, provider_account_id="acc-2")
        ConnectionStateMachine.delete(db, "auth-1")
        db.commit()
        assert [c.authorization_id for c in db.query(Connection).all()] == ["auth-2"]
        assert db.query(ExternalAccount).count() == 1


class TestRefreshTransitions:

    def test_listing_success_activates_pending(self, db):
        conn = create_connection(db, status="pending")
        assert ConnectionStateMachine.record_listing_success(db, conn) is True
        assert conn.status == "active"

    def test_listing_success_leaves_broken(self, db):
        conn = create_connection(db, status="broken", disabled=True)
        assert ConnectionStateMachine.record_listing_success(db, conn) is False
        assert conn.status == "broken"

    def test_sync_success_heals_broken(self, db):
        conn = create_connection(db, status="broken", disabled=True)
        assert ConnectionStateMachine.record_sync_success(db, conn) is True
        assert (conn.status, conn.disabled) == ("active", False)
        assert conn.last_synced_at is not None

    def test_sync_success_on_active_only_stamps(self, db, connection):
        assert ConnectionStateMachine.record_sync_success(db, connection) is False
        assert connection.last_synced_at is not None

    @pytest.mark.parametrize("error", [AUTH_EXPIRED, DISABLED])
    def test_breaking_errors(self, db, connection, error):
        assert ConnectionStateMachine.record_error(db, connection, error) is True
        assert (connection.status, connection.disabled) == ("broken", True)

    @pytest.mark.parametrize("error", [RATE_LIMITED, MISMATCH])
    def test_non_breaking_errors(self, db, connection, error):
        assert ConnectionStateMachine.record_error(db, connection, error) is False
        assert (connection.status, connection.disabled) == ("active", False)

    def test_error_does_not_touch_suspended(self, db):
        conn = create_connection(db, status="disabled")
        assert ConnectionStateMachine.record_error(db, conn, AUTH_EXPIRED) is False
        assert conn.status == "disabled"


class TestSuspension:

    def test_suspend_and_resume(self, db, connection):
        conn = ConnectionStateMachine.suspend(db, "auth-1")
        assert (conn.status, conn.disabled) == ("disabled", False)
        conn = ConnectionStateMachine.resume(db, "auth-1")
        assert (conn.status, conn.disabled) == (ConnectionStatus.PENDING.value, False)

    def test_suspend_clears_broken_flag(self, db):
        create_connection(db, status="broken", disabled=True)
        conn = ConnectionStateMachine.suspend(db, "auth-1")
        assert conn.disabled is False

    def test_resume_active_is_invalid(self, db, connection):
        with pytest.raises(InvalidTransitionError):
            ConnectionStateMachine.resume(db, "auth-1")

    def test_missing_connection(self, db):
        with pytest.raises(ConnectionNotFoundError):
            ConnectionStateMachine.suspend(db, "missing")


class TestListForUser:

    def test_only_users_connections(self, db):
        create_connection(db, authorization_id="auth-1", user_id="user-a")
        create_connection(db, authorization_id="auth-2", user_id="user-b")
        conns = ConnectionStateMachine.list_for_user(db, "user-a")
        assert [c.authorization_id for c in conns] == ["auth-1"]
