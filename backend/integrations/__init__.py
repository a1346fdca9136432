"""External API integrations.

This package contains:
- Provider protocol: Common interface for aggregation providers
- Provider registry: Manages configured providers
- Exceptions: Typed provider errors carrying raw error details
- SnapTrade client: Integration with SnapTrade API
"""

from integrations.exceptions import ProviderError, RawProviderError
from integrations.provider_protocol import (
    ProviderAccount,
    ProviderBalance,
    ProviderClient,
    ProviderInstrument,
    ProviderPosition,
)
from integrations.provider_registry import ProviderRegistry, get_provider_registry

__all__ = [
    "ProviderAccount",
    "ProviderBalance",
    "ProviderClient",
    "ProviderError",
    "ProviderInstrument",
    "ProviderPosition",
    "ProviderRegistry",
    "RawProviderError",
    "get_provider_registry",
]
