"""Connection state machine - the single writer of connection status.

States::

    pending --listing ok--> active --AuthExpired/ConnectionDisabled/webhook--> broken
       ^                      ^                                                  |
       |                      +------------- refresh ok / fixed webhook ---------+
       |
    disabled (local suspension; resume returns to pending)

    any --deleted webhook / user disconnect--> row removed

Every transition is an absolute assignment, so replaying the same input is
safe.  ``Connection.disabled`` tracks provider-side breakage and is only ever
true while ``status`` is ``broken``; local suspension uses the ``disabled``
*status* and leaves the flag false.

Callers own the transaction; methods ``flush()``.
"""

import logging
from enum import Enum

from sqlalchemy.orm import Session

from models.connection import Connection
from models.utils import utcnow
from services.error_normalizer import NormalizedError

logger = logging.getLogger(__name__)


class ConnectionStatus(str, Enum):
    PENDING = "pending"
    ACTIVE = "active"
    BROKEN = "broken"
    DISABLED = "disabled"
    DELETED = "deleted"


# Statuses in which the refresh batch fetches a connection's accounts.
REFRESHABLE_STATUSES = frozenset(
    {ConnectionStatus.PENDING, ConnectionStatus.ACTIVE, ConnectionStatus.BROKEN}
)

ALLOWED_TRANSITIONS: dict[ConnectionStatus, frozenset[ConnectionStatus]] = {
    ConnectionStatus.PENDING: frozenset(
        {ConnectionStatus.ACTIVE, ConnectionStatus.BROKEN, ConnectionStatus.DISABLED}
    ),
    ConnectionStatus.ACTIVE: frozenset(
        {ConnectionStatus.ACTIVE, ConnectionStatus.BROKEN, ConnectionStatus.DISABLED}
    ),
    ConnectionStatus.BROKEN: frozenset(
        {ConnectionStatus.ACTIVE, ConnectionStatus.BROKEN, ConnectionStatus.DISABLED}
    ),
    ConnectionStatus.DISABLED: frozenset(
        {ConnectionStatus.PENDING, ConnectionStatus.DISABLED}
    ),
}


class ConnectionNotFoundError(LookupError):
    """No connection exists for the given authorization id."""

    def __init__(self, authorization_id: str):
        self.authorization_id = authorization_id
        super().__init__(f"Connection {authorization_id} not found")


class InvalidTransitionError(ValueError):
    """The requested transition is not allowed from the current status."""

    def __init__(self, authorization_id: str, current: str, target: str):
        self.authorization_id = authorization_id
        self.current = current
        self.target = target
        super().__init__(
            f"Connection {authorization_id} cannot move from {current} to {target}"
        )


class ConnectionStateMachine:
    """Owns ``Connection.status`` and ``Connection.disabled``."""

    @staticmethod
    def get(db: Session, authorization_id: str) -> Connection | None:
        """Get a connection by its provider authorization id, or None."""
        return (
            db.query(Connection)
            .filter(Connection.authorization_id == authorization_id)
            .first()
        )

    @staticmethod
    def require(db: Session, authorization_id: str) -> Connection:
        """Get a connection or raise :class:`ConnectionNotFoundError`."""
        connection = ConnectionStateMachine.get(db, authorization_id)
        if connection is None:
            raise ConnectionNotFoundError(authorization_id)
        return connection

    @staticmethod
    def list_for_user(db: Session, user_id: str) -> list[Connection]:
        """All of a user's connections, oldest first."""
        return (
            db.query(Connection)
            .filter(Connection.user_id == user_id)
            .order_by(Connection.created_at)
            .all()
        )

    @staticmethod
    def _set_state(
        connection: Connection, target: ConnectionStatus, disabled: bool
    ) -> bool:
        """Apply a transition.  Returns True if anything changed."""
        current = ConnectionStatus(connection.status)
        if target not in ALLOWED_TRANSITIONS[current]:
            raise InvalidTransitionError(
                connection.authorization_id, current.value, target.value
            )
        if disabled and target is not ConnectionStatus.BROKEN:
            raise ValueError("disabled flag is only valid for broken connections")

        changed = current is not target or bool(connection.disabled) != disabled
        connection.status = target.value
        connection.disabled = disabled
        if changed:
            logger.info(
                "Connection %s: %s -> %s (disabled=%s)",
                connection.authorization_id, current.value, target.value, disabled,
            )
        return changed

    @staticmethod
    def ensure(
        db: Session,
        user_id: str,
        provider_name: str,
        authorization_id: str,
        institution_name: str | None = None,
    ) -> tuple[Connection, bool]:
        """Get or create a connection.  New connections start ``pending``.

        Returns ``(connection, created)``.
        """
        connection = ConnectionStateMachine.get(db, authorization_id)
        if connection is not None:
            if institution_name and connection.institution_name != institution_name:
                connection.institution_name = institution_name
            return connection, False

        connection = Connection(
            authorization_id=authorization_id,
            user_id=user_id,
            provider_name=provider_name,
            institution_name=institution_name,
            status=ConnectionStatus.PENDING.value,
            disabled=False,
        )
        db.add(connection)
        db.flush()
        logger.info(
            "Connection %s created for user %s (%s)",
            authorization_id, user_id, provider_name,
        )
        return connection, True

    # Webhook-driven transitions

    @staticmethod
    def mark_added(
        db: Session,
        user_id: str,
        provider_name: str,
        authorization_id: str,
        institution_name: str | None = None,
    ) -> Connection:
        """``connection.added``: status active, disabled cleared."""
        connection, _ = ConnectionStateMachine.ensure(
            db, user_id, provider_name, authorization_id, institution_name
        )
        ConnectionStateMachine._set_state(connection, ConnectionStatus.ACTIVE, False)
        db.flush()
        return connection

    @staticmethod
    def mark_updated(db: Session, authorization_id: str) -> Connection | None:
        """``connection.updated``: refresh the last-sync timestamp only."""
        connection = ConnectionStateMachine.get(db, authorization_id)
        if connection is None:
            return None
        connection.last_synced_at = utcnow()
        db.flush()
        return connection

    @staticmethod
    def mark_broken(db: Session, authorization_id: str, reason: str = "") -> Connection | None:
        """``connection.broken``: status broken, disabled set."""
        connection = ConnectionStateMachine.get(db, authorization_id)
        if connection is None:
            return None
        if ConnectionStateMachine._set_state(connection, ConnectionStatus.BROKEN, True):
            logger.warning("Connection %s broken: %s", authorization_id, reason or "provider notice")
        db.flush()
        return connection

    @staticmethod
    def mark_fixed(db: Session, authorization_id: str) -> Connection | None:
        """``connection.fixed``: status active, disabled cleared."""
        connection = ConnectionStateMachine.get(db, authorization_id)
        if connection is None:
            return None
        ConnectionStateMachine._set_state(connection, ConnectionStatus.ACTIVE, False)
        db.flush()
        return connection

    @staticmethod
    def delete(db: Session, authorization_id: str) -> bool:
        """Remove a connection and (by cascade) its accounts.

        Returns ``False`` if the connection did not exist.
        """
        connection = ConnectionStateMachine.get(db, authorization_id)
        if connection is None:
            return False
        user_id = connection.user_id
        db.delete(connection)
        db.flush()
        logger.info("Connection %s deleted for user %s", authorization_id, user_id)
        return True

    # Refresh-driven transitions

    @staticmethod
    def record_listing_success(db: Session, connection: Connection) -> bool:
        """The provider listed accounts for this authorization: pending -> active."""
        if connection.status != ConnectionStatus.PENDING.value:
            return False
        changed = ConnectionStateMachine._set_state(connection, ConnectionStatus.ACTIVE, False)
        db.flush()
        return changed

    @staticmethod
    def record_sync_success(db: Session, connection: Connection) -> bool:
        """An account under this authorization refreshed successfully.

        Self-heals broken connections and stamps ``last_synced_at``.
        """
        connection.last_synced_at = utcnow()
        changed = False
        if connection.status in (ConnectionStatus.PENDING.value, ConnectionStatus.BROKEN.value):
            changed = ConnectionStateMachine._set_state(
                connection, ConnectionStatus.ACTIVE, False
            )
        db.flush()
        return changed

    @staticmethod
    def record_error(db: Session, connection: Connection, error: NormalizedError) -> bool:
        """Apply a classified provider error.

        Only connection-breaking kinds change state; everything else
        (including ``UserMismatch``, a credential-level fault) is a no-op here.
        """
        if not error.breaks_connection:
            return False
        if connection.status == ConnectionStatus.DISABLED.value:
            return False
        changed = ConnectionStateMachine._set_state(connection, ConnectionStatus.BROKEN, True)
        if changed:
            logger.warning(
                "Connection %s broken by %s", connection.authorization_id, error.kind.value
            )
        db.flush()
        return changed

    # User-initiated suspension

    @staticmethod
    def suspend(db: Session, authorization_id: str) -> Connection:
        """Locally suspend a connection so refreshes skip it."""
        connection = ConnectionStateMachine.require(db, authorization_id)
        ConnectionStateMachine._set_state(connection, ConnectionStatus.DISABLED, False)
        db.flush()
        return connection

    @staticmethod
    def resume(db: Session, authorization_id: str) -> Connection:
        """Lift a local suspension; the next successful refresh re-activates."""
        connection = ConnectionStateMachine.require(db, authorization_id)
        ConnectionStateMachine._set_state(connection, ConnectionStatus.PENDING, False)
        db.flush()
        return connection
