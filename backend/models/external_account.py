"""ExternalAccount model - local mirror of one provider account."""

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Numeric,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from database import Base
from models.utils import generate_uuid, utcnow


class ExternalAccount(Base):
    """A brokerage/bank account surfaced by a Connection.

    Rows are created and updated by refreshes but only removed when the
    parent connection is deleted.
    """

    __tablename__ = "external_accounts"
    __table_args__ = (
        UniqueConstraint(
            "connection_id", "provider_account_id", name="uix_connection_provider_account"
        ),
    )

    id = Column(String(36), primary_key=True, default=generate_uuid)
    connection_id = Column(
        String(36),
        ForeignKey("connections.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    provider_account_id = Column(String, nullable=False, index=True)
    name = Column(String, nullable=False)
    account_type = Column(String, nullable=True)
    account_number = Column(String, nullable=True)
    balance = Column(Numeric(18, 2), nullable=True)
    currency = Column(String(8), nullable=False, default="USD")
    positions = Column(JSON, nullable=True)  # list of position dicts from the last refresh
    last_holdings_sync_at = Column(DateTime, nullable=True)
    last_transactions_sync_at = Column(DateTime, nullable=True)
    initial_sync_completed = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    connection = relationship("Connection", back_populates="accounts")
