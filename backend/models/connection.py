"""Connection model - one external brokerage/bank authorization."""

from sqlalchemy import Boolean, Column, DateTime, String
from sqlalchemy.orm import relationship

from database import Base
from models.utils import generate_uuid, utcnow


class Connection(Base):
    """A single provider authorization (e.g. one brokerage login).

    ``status`` and ``disabled`` are written only through
    :class:`services.connection_state.ConnectionStateMachine`.
    """

    __tablename__ = "connections"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    authorization_id = Column(String, unique=True, index=True, nullable=False)
    user_id = Column(String, nullable=False, index=True)
    provider_name = Column(String, nullable=False)
    institution_name = Column(String, nullable=True)
    status = Column(String, nullable=False, default="pending")
    disabled = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)
    last_synced_at = Column(DateTime, nullable=True)

    accounts = relationship(
        "ExternalAccount",
        back_populates="connection",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )
