"""Unit tests for the provider registry."""

from unittest.mock import MagicMock, patch

import pytest

from integrations.provider_registry import (
    ALL_PROVIDER_NAMES,
    PROVIDER_DEFINITIONS,
    ProviderRegistry,
    get_provider_registry,
)
from tests.fixtures.mocks import MockSnapTradeClient


class TestProviderRegistry:
    """Tests for ProviderRegistry."""

    def test_empty_registry(self):
        """A new registry has no providers."""
        registry = ProviderRegistry()
        assert registry.list_providers() == []
        assert registry.is_configured("SnapTrade") is False

    def test_register_provider(self):
        registry = ProviderRegistry()
        provider = MockSnapTradeClient(name="TestProvider")
        registry.register_provider(provider)

        assert registry.list_providers() == ["TestProvider"]
        assert registry.get_provider("TestProvider") is provider
        assert registry.is_configured("TestProvider") is True

    def test_get_unknown_provider(self):
        with pytest.raises(ValueError, match="not configured"):
            ProviderRegistry().get_provider("Nope")

    def test_register_replaces_same_name(self):
        registry = ProviderRegistry()
        first = MockSnapTradeClient()
        second = MockSnapTradeClient()
        registry.register_provider(first)
        registry.register_provider(second)
        assert registry.get_provider("SnapTrade") is second


class TestDefaultProviders:

    def test_definitions(self):
        assert ALL_PROVIDER_NAMES == ["SnapTrade"]
        assert PROVIDER_DEFINITIONS[0][1] == "integrations.snaptrade_client"

    def test_configured_provider_registered(self):
        fake_cls = MagicMock(return_value=MockSnapTradeClient(configured=True))
        registry = ProviderRegistry()
        registry._try_init_provider("SnapTrade", fake_cls)
        assert registry.list_providers() == ["SnapTrade"]

    def test_unconfigured_provider_skipped(self):
        fake_cls = MagicMock(return_value=MockSnapTradeClient(configured=False))
        registry = ProviderRegistry()
        registry._try_init_provider("SnapTrade", fake_cls)
        assert registry.list_providers() == []

    def test_constructor_failure_skipped(self, caplog):
        fake_cls = MagicMock(side_effect=RuntimeError("sdk exploded"))
        registry = ProviderRegistry()
        registry._try_init_provider("SnapTrade", fake_cls)
        assert registry.list_providers() == []
        assert "failed to initialize" in caplog.text

    def test_get_provider_registry_uses_settings(self):
        with patch("integrations.snaptrade_client.settings") as mock_settings:
            mock_settings.SNAPTRADE_CLIENT_ID = ""
            mock_settings.SNAPTRADE_CONSUMER_KEY = ""
            with patch("integrations.snaptrade_client.SnapTrade"):
                registry = get_provider_registry()
        assert registry.list_providers() == []

    def test_get_provider_registry_registers_snaptrade(self):
        with patch("integrations.snaptrade_client.settings") as mock_settings:
            mock_settings.SNAPTRADE_CLIENT_ID = "cid"
            mock_settings.SNAPTRADE_CONSUMER_KEY = "ckey"
            with patch("integrations.snaptrade_client.SnapTrade"):
                registry = get_provider_registry()
        assert registry.list_providers() == ["SnapTrade"]
