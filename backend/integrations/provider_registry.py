"""Provider registry for managing aggregation providers.

The registry is responsible for:
- Initializing and tracking available providers
- Providing access to specific providers by name
- Listing all configured providers
"""

import importlib
import logging

from integrations.provider_protocol import ProviderClient

logger = logging.getLogger(__name__)

# Each tuple is (provider_name, module_path, class_name).
# Adding a new provider only requires appending one entry here.
PROVIDER_DEFINITIONS: list[tuple[str, str, str]] = [
    ("SnapTrade", "integrations.snaptrade_client", "SnapTradeClient"),
]

ALL_PROVIDER_NAMES: list[str] = [name for name, _, _ in PROVIDER_DEFINITIONS]


class ProviderRegistry:
    """Registry of provider clients keyed by provider name.

    Example:
        registry = get_provider_registry()
        if registry.is_configured("SnapTrade"):
            accounts = registry.get_provider("SnapTrade").list_accounts(identity, secret)
    """

    def __init__(self):
        """Initialize the registry with no providers.

        Call register_provider() to add providers, or use
        initialize_default_providers() to register every provider whose
        application credentials are present.
        """
        self._providers: dict[str, ProviderClient] = {}

    def register_provider(self, provider: ProviderClient) -> None:
        """Register a provider client under its ``provider_name``.

        Args:
            provider: A provider client implementing the ProviderClient protocol.
                Registering a second client with the same name replaces the first.
        """
        self._providers[provider.provider_name] = provider

    def get_provider(self, name: str) -> ProviderClient:
        """Get a provider by name.

        Args:
            name: The provider name as stored on credentials (e.g., 'SnapTrade').

        Returns:
            The provider client.

        Raises:
            ValueError: If the provider is not registered/configured.
        """
        if name not in self._providers:
            raise ValueError(f"Provider '{name}' is not configured")
        return self._providers[name]

    def list_providers(self) -> list[str]:
        """List the names of all registered providers."""
        return list(self._providers.keys())

    def is_configured(self, name: str) -> bool:
        """Check if a provider is registered.

        Refresh and reference-cache jobs skip credentials whose provider is
        not registered rather than failing them.

        Args:
            name: The provider name to check.

        Returns:
            True if the provider is registered, False otherwise.
        """
        return name in self._providers

    def initialize_default_providers(self) -> None:
        """Register every known provider whose API credentials are present.

        A provider whose SDK is missing or whose constructor fails is
        skipped; the rest still initialize.
        """
        for name, module_path, class_name in PROVIDER_DEFINITIONS:
            try:
                module = importlib.import_module(module_path)
            except ImportError:
                logger.debug("Provider skipped (not installed): %s", name)
                continue
            self._try_init_provider(name, getattr(module, class_name))

        names = self.list_providers()
        if names:
            logger.info("Active providers: %s", ", ".join(names))
        else:
            logger.warning("No providers configured")

    def _try_init_provider(self, name: str, cls: type) -> None:
        try:
            instance = cls()
            if instance.is_configured():
                self.register_provider(instance)
                logger.info("Provider registered: %s", name)
            else:
                logger.debug("Provider skipped (not configured): %s", name)
        except Exception:
            logger.warning("Provider failed to initialize: %s", name, exc_info=True)


def get_provider_registry() -> ProviderRegistry:
    """Create a registry with every configured provider registered."""
    registry = ProviderRegistry()
    registry.initialize_default_providers()
    return registry
