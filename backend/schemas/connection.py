"""Pydantic schemas for connections and their accounts."""

from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel


class ExternalAccountResponse(BaseModel):
    """One mirrored provider account."""

    id: str
    provider_account_id: str
    name: str
    account_type: Optional[str] = None
    account_number: Optional[str] = None
    balance: Optional[Decimal] = None
    currency: str
    positions: Optional[list[dict]] = None
    last_holdings_sync_at: Optional[datetime] = None
    last_transactions_sync_at: Optional[datetime] = None
    initial_sync_completed: bool

    model_config = {"from_attributes": True}


class ConnectionResponse(BaseModel):
    """A connection with its accounts."""

    id: str
    authorization_id: str
    user_id: str
    provider_name: str
    institution_name: Optional[str] = None
    status: str
    disabled: bool
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    last_synced_at: Optional[datetime] = None
    accounts: list[ExternalAccountResponse] = []

    model_config = {"from_attributes": True}
