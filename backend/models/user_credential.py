"""UserProviderCredential model - one user's identity with one provider."""

from sqlalchemy import Column, DateTime, Index, String, text

from database import Base
from models.utils import generate_uuid, utcnow


class UserProviderCredential(Base):
    """A local user's identity/secret pair with an aggregation provider.

    Rotated rows are kept for audit.  The partial unique index allows any
    number of rotated rows but at most one live (``rotated_at IS NULL``) row
    per (user, provider).
    """

    __tablename__ = "user_provider_credentials"
    __table_args__ = (
        Index(
            "uix_live_credential_per_user_provider",
            "user_id",
            "provider_name",
            unique=True,
            sqlite_where=text("rotated_at IS NULL"),
            postgresql_where=text("rotated_at IS NULL"),
        ),
        Index("ix_credential_provider_identity", "provider_name", "provider_identity"),
    )

    id = Column(String(36), primary_key=True, default=generate_uuid)
    user_id = Column(String, nullable=False, index=True)
    provider_name = Column(String, nullable=False)  # e.g., "SnapTrade"
    provider_identity = Column(String, nullable=False)  # Provider-assigned user id
    provider_secret = Column(String, nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    rotated_at = Column(DateTime, nullable=True)  # NULL while live

    @property
    def is_active(self) -> bool:
        return self.rotated_at is None

    def __repr__(self) -> str:
        state = "live" if self.is_active else "rotated"
        return f"<UserProviderCredential {self.user_id}/{self.provider_name} {state}>"
