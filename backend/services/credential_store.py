"""Credential store - per-user aggregation-provider identities and secrets."""

import logging

from sqlalchemy.orm import Session

from models.user_credential import UserProviderCredential
from models.utils import utcnow

logger = logging.getLogger(__name__)


class CredentialNotFoundError(LookupError):
    """No live credential exists for the requested (user, provider)."""

    def __init__(self, user_id: str, provider_name: str):
        self.user_id = user_id
        self.provider_name = provider_name
        super().__init__(f"No live {provider_name} credential for user {user_id}")


class CredentialStore:
    """Storage contract for provider credentials.

    At most one live (non-rotated) credential exists per (user, provider).
    Rotated rows are retained for audit and are never returned by
    :meth:`get`.  The store never contacts a provider.

    All methods ``flush()``; the caller owns the transaction.
    """

    @staticmethod
    def get(db: Session, user_id: str, provider_name: str) -> UserProviderCredential:
        """Return the live credential or raise :class:`CredentialNotFoundError`."""
        credential = CredentialStore.find(db, user_id, provider_name)
        if credential is None:
            raise CredentialNotFoundError(user_id, provider_name)
        return credential

    @staticmethod
    def find(db: Session, user_id: str, provider_name: str) -> UserProviderCredential | None:
        """Return the live credential, or ``None``."""
        return (
            db.query(UserProviderCredential)
            .filter(
                UserProviderCredential.user_id == user_id,
                UserProviderCredential.provider_name == provider_name,
                UserProviderCredential.rotated_at.is_(None),
            )
            .first()
        )

    @staticmethod
    def put(
        db: Session,
        user_id: str,
        provider_name: str,
        identity: str,
        secret: str,
    ) -> UserProviderCredential:
        """Store a new live credential, rotating any existing live one first."""
        if not identity or not secret:
            raise ValueError("identity and secret are required")

        existing = CredentialStore.find(db, user_id, provider_name)
        if existing is not None:
            existing.rotated_at = utcnow()
            # Flush the rotation before the insert so the live-row index holds
            db.flush()
            logger.info(
                "Rotated %s credential for user %s (identity %s)",
                provider_name, user_id, existing.provider_identity,
            )

        credential = UserProviderCredential(
            user_id=user_id,
            provider_name=provider_name,
            provider_identity=identity,
            provider_secret=secret,
        )
        db.add(credential)
        db.flush()
        logger.info(
            "Stored %s credential for user %s (identity %s)",
            provider_name, user_id, identity,
        )
        return credential

    @staticmethod
    def mark_rotated(db: Session, user_id: str, provider_name: str) -> bool:
        """Soft-invalidate the live credential after a mismatch.

        Returns ``True`` if a live credential was rotated, ``False`` if none
        existed (already rotated, or never stored).
        """
        credential = CredentialStore.find(db, user_id, provider_name)
        if credential is None:
            return False
        credential.rotated_at = utcnow()
        db.flush()
        logger.warning(
            "Marked %s credential rotated for user %s (identity %s); "
            "scheduled refreshes are suspended until re-registration",
            provider_name, user_id, credential.provider_identity,
        )
        return True

    @staticmethod
    def list_active(db: Session, provider_name: str | None = None) -> list[UserProviderCredential]:
        """All live credentials, ordered by user id for a stable batch order."""
        query = db.query(UserProviderCredential).filter(
            UserProviderCredential.rotated_at.is_(None)
        )
        if provider_name is not None:
            query = query.filter(UserProviderCredential.provider_name == provider_name)
        return query.order_by(
            UserProviderCredential.user_id, UserProviderCredential.provider_name
        ).all()

    @staticmethod
    def resolve_user(db: Session, provider_name: str, identity: str) -> str | None:
        """Reverse lookup: provider identity -> local user id.

        Prefers a live credential; falls back to the most recent rotated one
        so notifications that race a re-registration still reach their owner.
        """
        if not identity:
            return None
        credential = (
            db.query(UserProviderCredential)
            .filter(
                UserProviderCredential.provider_name == provider_name,
                UserProviderCredential.provider_identity == identity,
            )
            .order_by(
                UserProviderCredential.rotated_at.is_not(None),
                UserProviderCredential.created_at.desc(),
            )
            .first()
        )
        return credential.user_id if credential else None
