"""SnapTrade API client wrapper.

This module implements the ProviderClient protocol for SnapTrade.  It is the
only place that knows the shape of SnapTrade SDK responses and exceptions:
every SDK failure is converted here into a
:class:`~integrations.exceptions.ProviderError` carrying a
:class:`~integrations.exceptions.RawProviderError`.
"""

import json
import logging
from dataclasses import dataclass
from decimal import Decimal

from snaptrade_client import SnapTrade
from urllib3.exceptions import HTTPError as TransportError

from config import settings
from integrations.exceptions import (
    ProviderAPIError,
    ProviderAuthError,
    ProviderConnectionError,
    ProviderDataError,
    ProviderError,
    RawProviderError,
)
from integrations.parsing_utils import get_field, to_decimal, unwrap_body
from integrations.provider_protocol import (
    ProviderAccount,
    ProviderBalance,
    ProviderInstrument,
    ProviderPosition,
)

logger = logging.getLogger(__name__)

PROVIDER_NAME = "SnapTrade"


@dataclass
class SnapTradeRegistration:
    """Identity/secret pair returned when a SnapTrade user is registered."""

    identity: str
    secret: str


def _decode_body(body) -> dict:
    if body is None:
        return {}
    if isinstance(body, (bytes, bytearray)):
        body = body.decode("utf-8", errors="replace")
    if isinstance(body, str):
        try:
            body = json.loads(body)
        except ValueError:
            return {"detail": body}
    return body if isinstance(body, dict) else {}


def _header(headers, name: str) -> str | None:
    if not headers:
        return None
    try:
        items = headers.items()
    except AttributeError:
        return None
    for key, value in items:
        if str(key).lower() == name:
            return str(value)
    return None


def raw_error_from_exception(exc: Exception) -> RawProviderError:
    """Extract ``{status, code, message, request_id}`` from an SDK exception.

    SDK ``ApiException`` objects expose ``status``, ``reason``, ``body`` and
    ``headers``; transport failures surface as urllib3 or socket errors with
    no status at all.
    """
    if isinstance(exc, (TransportError, OSError)) and getattr(exc, "status", None) is None:
        return RawProviderError(transport_error=type(exc).__name__, message=str(exc))

    status = getattr(exc, "status", None)
    try:
        status = int(status) if status is not None else None
    except (TypeError, ValueError):
        status = None

    body = _decode_body(getattr(exc, "body", None))
    code = get_field(body, "code", "error_code", "errorCode")
    message = (
        get_field(body, "detail", "message", "error")
        or getattr(exc, "reason", None)
        or str(exc)
    )
    return RawProviderError(
        status=status,
        code=str(code) if code is not None else None,
        message=str(message),
        request_id=_header(getattr(exc, "headers", None), "x-request-id"),
    )


def to_provider_error(exc: Exception, operation: str) -> ProviderError:
    """Wrap an SDK exception in the matching ProviderError subclass."""
    raw = raw_error_from_exception(exc)
    text = f"SnapTrade {operation} failed: {raw.message}"
    if raw.transport_error:
        return ProviderConnectionError(text, provider_name=PROVIDER_NAME, raw=raw)
    return ProviderAPIError(text, provider_name=PROVIDER_NAME, raw=raw)


class SnapTradeClient:
    """Wrapper around the SnapTrade SDK.

    Implements the ProviderClient protocol with per-call user credentials.
    """

    def __init__(
        self,
        client_id: str | None = None,
        consumer_key: str | None = None,
        sdk=None,
    ):
        """Initialize the client with application credentials.

        Args:
            client_id: SnapTrade client ID (defaults to settings)
            consumer_key: SnapTrade consumer key (defaults to settings)
            sdk: Pre-built SDK object (tests)
        """
        self._client_id = client_id or settings.SNAPTRADE_CLIENT_ID
        self._consumer_key = consumer_key or settings.SNAPTRADE_CONSUMER_KEY
        self.client = sdk or SnapTrade(
            consumer_key=self._consumer_key,
            client_id=self._client_id,
        )

    @property
    def provider_name(self) -> str:
        """Return the provider name for database storage."""
        return PROVIDER_NAME

    def is_configured(self) -> bool:
        return bool(self._client_id and self._consumer_key)

    def _check_configured(self) -> None:
        if not self.is_configured():
            raise ProviderAuthError(
                "SnapTrade API credentials not configured. "
                "Set SNAPTRADE_CLIENT_ID and SNAPTRADE_CONSUMER_KEY in .env",
                provider_name=PROVIDER_NAME,
            )

    def _call(self, operation: str, fn, **kwargs):
        """Invoke an SDK method, converting every failure at this boundary."""
        self._check_configured()
        try:
            return unwrap_body(fn(**kwargs))
        except Exception as e:
            error = to_provider_error(e, operation)
            logger.debug(
                "SnapTrade %s failed (status=%s code=%s request_id=%s)",
                operation, error.raw.status, error.raw.code, error.raw.request_id,
            )
            raise error from e

    # Accounts

    def list_accounts(self, identity: str, secret: str) -> list[ProviderAccount]:
        accounts = self._call(
            "list accounts",
            self.client.account_information.list_user_accounts,
            user_id=identity,
            user_secret=secret,
        )
        if not isinstance(accounts, list):
            raise ProviderDataError(
                "SnapTrade account listing was not a list", provider_name=PROVIDER_NAME
            )

        result = []
        for account in accounts:
            account_id = get_field(account, "id")
            authorization = get_field(account, "brokerage_authorization")
            authorization_id = (
                get_field(authorization, "id")
                if isinstance(authorization, dict)
                else authorization
            )
            if not account_id or not authorization_id:
                logger.warning(
                    "Skipping SnapTrade account without id/authorization: %s", account_id
                )
                continue

            meta = get_field(account, "meta") or {}
            result.append(
                ProviderAccount(
                    id=str(account_id),
                    name=get_field(account, "name") or "Unknown Account",
                    authorization_id=str(authorization_id),
                    institution=get_field(account, "institution_name")
                    or self._extract_brokerage_name(authorization),
                    account_number=get_field(account, "number"),
                    account_type=get_field(account, "raw_type")
                    or get_field(meta, "type", "brokerage_account_type"),
                )
            )
        return result

    def _extract_brokerage_name(self, authorization) -> str:
        brokerage = get_field(authorization, "brokerage") if isinstance(authorization, dict) else None
        if isinstance(brokerage, str):
            return brokerage
        return get_field(brokerage, "name", default="Unknown")

    def get_balance(self, identity: str, secret: str, account_id: str) -> ProviderBalance:
        details = self._call(
            "get balance",
            self.client.account_information.get_user_account_details,
            user_id=identity,
            user_secret=secret,
            account_id=account_id,
        )
        total = get_field(get_field(details, "balance"), "total")
        currency = get_field(total, "currency", default="USD")
        if isinstance(currency, dict):
            currency = currency.get("code", "USD")
        return ProviderBalance(
            account_id=account_id,
            amount=to_decimal(get_field(total, "amount")),
            currency=str(currency),
        )

    def get_positions(
        self, identity: str, secret: str, account_id: str
    ) -> list[ProviderPosition]:
        positions = self._call(
            "get positions",
            self.client.account_information.get_user_account_positions,
            user_id=identity,
            user_secret=secret,
            account_id=account_id,
        )
        if not isinstance(positions, list):
            raise ProviderDataError(
                "SnapTrade positions response was not a list", provider_name=PROVIDER_NAME
            )

        result = []
        for position in positions:
            instrument = self._extract_instrument(get_field(position, "symbol"))
            result.append(
                ProviderPosition(
                    account_id=account_id,
                    symbol=instrument.symbol,
                    name=instrument.description,
                    quantity=to_decimal(get_field(position, "units")) or Decimal("0"),
                    price=to_decimal(get_field(position, "price")) or Decimal("0"),
                    currency=instrument.currency or "USD",
                )
            )
        return result

    def _extract_instrument(self, symbol_data) -> ProviderInstrument:
        """Unwrap SnapTrade's nested ``symbol.symbol`` objects."""
        while isinstance(get_field(symbol_data, "symbol"), dict):
            symbol_data = get_field(symbol_data, "symbol")

        if isinstance(symbol_data, str):
            return ProviderInstrument(symbol=symbol_data)

        def code_of(value):
            return get_field(value, "code") if isinstance(value, dict) else value

        return ProviderInstrument(
            symbol=str(get_field(symbol_data, "symbol", "raw_symbol", default="UNKNOWN")),
            description=get_field(symbol_data, "description"),
            currency=code_of(get_field(symbol_data, "currency")),
            exchange=code_of(get_field(symbol_data, "exchange")),
            instrument_type=code_of(get_field(symbol_data, "type")),
        )

    # Reference data

    def search_symbols(self, query: str) -> list[ProviderInstrument]:
        symbols = self._call(
            "search symbols",
            self.client.reference_data.get_symbols,
            substring=query,
        )
        if not isinstance(symbols, list):
            return []
        return [self._extract_instrument(symbol) for symbol in symbols]

    # User registration (used by scripts/link_user.py)

    def register_user(self, user_id: str) -> SnapTradeRegistration:
        body = self._call(
            "register user",
            self.client.authentication.register_snap_trade_user,
            user_id=user_id,
        )
        return self._registration_from(body, fallback_identity=user_id)

    def reset_user_secret(self, identity: str, secret: str) -> SnapTradeRegistration:
        body = self._call(
            "reset user secret",
            self.client.authentication.reset_snap_trade_user_secret,
            user_id=identity,
            user_secret=secret,
        )
        return self._registration_from(body, fallback_identity=identity)

    def _registration_from(self, body, fallback_identity: str) -> SnapTradeRegistration:
        identity = get_field(body, "userId", "user_id") or fallback_identity
        secret = get_field(body, "userSecret", "user_secret")
        if not secret:
            raise ProviderDataError(
                "SnapTrade registration response had no user secret",
                provider_name=PROVIDER_NAME,
            )
        return SnapTradeRegistration(identity=str(identity), secret=str(secret))
