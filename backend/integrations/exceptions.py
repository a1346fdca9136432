"""Typed exception hierarchy for provider errors.

Every exception raised out of a provider client carries a
:class:`RawProviderError` describing what the provider (or the transport)
actually said.  :mod:`services.error_normalizer` classifies that record into
a user-facing :class:`~services.error_normalizer.NormalizedError`.
"""

from dataclasses import dataclass


@dataclass
class RawProviderError:
    """Whatever could be extracted from a failed provider call.

    ``status`` is ``None`` when no HTTP response was received; in that case
    ``transport_error`` names the network failure (e.g. ``"ConnectTimeout"``).
    """

    status: int | None = None
    code: str | None = None
    message: str | None = None
    transport_error: str | None = None
    request_id: str | None = None


class ProviderError(Exception):
    """Base exception for all provider-related errors.

    Carries the provider name so callers can identify which provider failed,
    and the raw error details for classification.
    """

    def __init__(
        self,
        message: str,
        provider_name: str = "",
        raw: RawProviderError | None = None,
    ):
        self.provider_name = provider_name
        self.raw = raw or RawProviderError(message=message)
        super().__init__(message)


class ProviderAuthError(ProviderError):
    """Credentials missing, expired, or invalid (HTTP 401/403)."""

    pass


class ProviderConnectionError(ProviderError):
    """Network failures: timeouts, DNS resolution, connection refused.

    Retriable by default.
    """

    def __init__(
        self,
        message: str,
        provider_name: str = "",
        raw: RawProviderError | None = None,
        retriable: bool = True,
    ):
        self.retriable = retriable
        super().__init__(message, provider_name, raw)


class ProviderAPIError(ProviderError):
    """HTTP 4xx/5xx responses from the provider API."""

    @property
    def status_code(self) -> int | None:
        return self.raw.status

    @property
    def retriable(self) -> bool:
        """429 (rate limit) and 5xx errors are generally retriable."""
        if self.status_code is None:
            return False
        return self.status_code == 429 or self.status_code >= 500


class ProviderDataError(ProviderError):
    """Malformed or unparseable response from the provider."""

    pass
