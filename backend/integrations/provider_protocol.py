"""Provider protocol definitions for multi-provider support.

Aggregation providers hold one identity/secret pair per local user, so every
data call takes the user's credential explicitly rather than reading it
from settings.  Clients convert SDK failures into
:class:`~integrations.exceptions.ProviderError` subclasses before returning.
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import Protocol


@dataclass
class ProviderAccount:
    """Normalized account data from any provider."""

    id: str  # Provider's external ID for the account
    name: str  # Account name/nickname
    authorization_id: str  # The connection (brokerage login) this account belongs to
    institution: str  # Brokerage/bank name
    account_number: str | None = None
    account_type: str | None = None


@dataclass
class ProviderBalance:
    """Total balance of one account."""

    account_id: str
    amount: Decimal | None
    currency: str = "USD"


@dataclass
class ProviderPosition:
    """One position held in an account."""

    account_id: str
    symbol: str
    quantity: Decimal
    price: Decimal
    currency: str = "USD"
    name: str | None = None

    @property
    def market_value(self) -> Decimal:
        return self.quantity * self.price

    def to_dict(self) -> dict:
        return {
            "symbol": self.symbol,
            "name": self.name,
            "quantity": str(self.quantity),
            "price": str(self.price),
            "market_value": str(self.market_value),
            "currency": self.currency,
        }


@dataclass
class ProviderInstrument:
    """Reference data for a tradable instrument."""

    symbol: str
    description: str | None = None
    currency: str | None = None
    exchange: str | None = None
    instrument_type: str | None = None

    def to_dict(self) -> dict:
        return {
            "symbol": self.symbol,
            "description": self.description,
            "currency": self.currency,
            "exchange": self.exchange,
            "instrument_type": self.instrument_type,
        }


class ProviderClient(Protocol):
    """Protocol that all provider clients must implement."""

    @property
    def provider_name(self) -> str:
        """Return the provider name (e.g., 'SnapTrade').

        This name is stored on credentials and connections.
        """
        ...

    def is_configured(self) -> bool:
        """True if the application-level API credentials are present."""
        ...

    def list_accounts(self, identity: str, secret: str) -> list[ProviderAccount]:
        """Fetch every account visible to this user credential.

        Raises:
            ProviderError: If the provider call fails.
        """
        ...

    def get_balance(self, identity: str, secret: str, account_id: str) -> ProviderBalance:
        """Fetch the current total balance of one account."""
        ...

    def get_positions(
        self, identity: str, secret: str, account_id: str
    ) -> list[ProviderPosition]:
        """Fetch the current positions of one account."""
        ...

    def search_symbols(self, query: str) -> list[ProviderInstrument]:
        """Look up instruments by symbol/substring (no user credential needed)."""
        ...
