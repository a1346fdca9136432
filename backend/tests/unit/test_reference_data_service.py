"""Tests for the reference-data cache."""

from datetime import datetime, timedelta, timezone

import pytest

from integrations.provider_protocol import ProviderInstrument
from services.job_lock import JobAlreadyRunningError, JobLockService
from services.reference_data_service import JOB_NAME, ExpiringCache, ReferenceDataService
from tests.fixtures.mocks import MockProviderRegistry, api_error

T0 = datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)


class FakeClock:

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now


def instrument(symbol: str, description: str = "") -> ProviderInstrument:
    return ProviderInstrument(symbol=symbol, description=description or symbol, currency="USD")


class TestExpiringCache:

    def test_set_and_get(self):
        cache = ExpiringCache(timedelta(hours=1), clock=FakeClock(T0))
        cache.set("AAPL", {"symbol": "AAPL"})
        assert cache.get("AAPL") == {"symbol": "AAPL"}
        assert cache.get("MSFT") is None

    def test_expiry(self):
        clock = FakeClock(T0)
        cache = ExpiringCache(timedelta(hours=1), clock=clock)
        cache.set("AAPL", {"symbol": "AAPL"})
        clock.now = T0 + timedelta(hours=1)
        assert cache.get("AAPL") is None
        assert len(cache) == 0

    def test_overwrite_extends_ttl(self):
        clock = FakeClock(T0)
        cache = ExpiringCache(timedelta(hours=1), clock=clock)
        cache.set("AAPL", {"v": 1})
        clock.now = T0 + timedelta(minutes=50)
        cache.set("AAPL", {"v": 2})
        clock.now = T0 + timedelta(minutes=90)
        assert cache.get("AAPL") == {"v": 2}

    def test_purge_expired(self):
        clock = FakeClock(T0)
        cache = ExpiringCache(timedelta(hours=1), clock=clock)
        cache.set("OLD", {})
        clock.now = T0 + timedelta(minutes=30)
        cache.set("NEW", {})
        clock.now = T0 + timedelta(minutes=61)
        assert cache.purge_expired() == 1
        assert len(cache) == 1


@pytest.fixture
def service(mock_provider_registry):
    return ReferenceDataService(
        ["aapl", "MSFT", "BRK.B"],
        provider_registry=mock_provider_registry,
        delay_seconds=0,
        clock=FakeClock(T0),
    )


class TestRefreshCache:

    def test_caches_exact_matches(self, service, mock_snaptrade_client):
        mock_snaptrade_client.instruments = {
            "AAPL": [instrument("AAPL", "Apple Inc"), instrument("AAPL.TO")],
            "MSFT": [instrument("MSFT")],
            "BRK.B": [instrument("BRK.A")],
        }

        summary = service.refresh_cache()

        assert summary == {"refreshed": 2, "missing": 1, "failed": 0, "purged": 0}
        assert service.get_instrument("aapl")["description"] == "Apple Inc"
        assert service.get_instrument("BRK.B") is None
        assert service.last_refreshed_at is not None

    def test_lookup_failure_does_not_stop_refresh(self, service, mock_snaptrade_client):
        mock_snaptrade_client.instruments = {"MSFT": [instrument("MSFT")]}
        mock_snaptrade_client.search_errors = {"AAPL": api_error(429)}

        summary = service.refresh_cache()

        assert summary["failed"] == 1
        assert summary["refreshed"] == 1
        assert service.get_instrument("MSFT") is not None

    def test_failed_lookup_keeps_previous_entry(self, service, mock_snaptrade_client):
        mock_snaptrade_client.instruments = {"AAPL": [instrument("AAPL")]}
        service.refresh_cache()
        mock_snaptrade_client.search_errors = {"AAPL": api_error(503)}
        service.refresh_cache()
        assert service.get_instrument("AAPL") is not None

    def test_pauses_between_lookups(self, mock_provider_registry):
        sleeps = []
        service = ReferenceDataService(
            ["AAPL", "MSFT", "VTI"],
            provider_registry=mock_provider_registry,
            delay_seconds=0.5,
            sleep=sleeps.append,
        )
        service.refresh_cache()
        assert sleeps == [0.5, 0.5]

    def test_unconfigured_provider(self):
        service = ReferenceDataService(["AAPL"], provider_registry=MockProviderRegistry())
        assert service.refresh_cache() == {"refreshed": 0, "missing": 0, "failed": 0, "purged": 0}
        assert service.last_refreshed_at is None


class TestLease:

    def test_refresh_blocked_by_other_holder(self, session_factory, mock_provider_registry):
        JobLockService(session_factory, ttl_seconds=600, holder_id="other").acquire(JOB_NAME)
        service = ReferenceDataService(
            ["AAPL"],
            provider_registry=mock_provider_registry,
            delay_seconds=0,
            lock_service=JobLockService(session_factory, ttl_seconds=600, holder_id="me"),
        )
        with pytest.raises(JobAlreadyRunningError):
            service.refresh_cache()

    def test_scheduled_run_swallows_conflict(self, session_factory, mock_provider_registry, mock_snaptrade_client):
        JobLockService(session_factory, ttl_seconds=600, holder_id="other").acquire(JOB_NAME)
        service = ReferenceDataService(
            ["AAPL"],
            provider_registry=mock_provider_registry,
            delay_seconds=0,
            lock_service=JobLockService(session_factory, ttl_seconds=600, holder_id="me"),
        )
        service.run_scheduled()
        assert mock_snaptrade_client.calls == []

    def test_lease_released(self, session_factory, mock_provider_registry):
        locks = JobLockService(session_factory, ttl_seconds=600, holder_id="me")
        service = ReferenceDataService(
            ["AAPL"], provider_registry=mock_provider_registry, delay_seconds=0, lock_service=locks
        )
        service.refresh_cache()
        assert locks.holder_of(JOB_NAME) is None
