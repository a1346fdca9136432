"""Reference-data cache - keeps popular instrument lookups warm.

The cache is an in-memory expiring map owned by the service instance (the
app keeps one on ``app.state``).  A scheduled job refreshes a fixed list of
symbols a few times per trading day; entries outlive a missed refresh until
their TTL runs out.
"""

import logging
import threading
import time
from datetime import datetime, timedelta
from typing import Callable, Optional

from integrations.exceptions import ProviderError
from integrations.provider_registry import ProviderRegistry, get_provider_registry
from models.utils import utcnow
from services.error_normalizer import normalize
from services.job_lock import JobAlreadyRunningError, JobLockService

logger = logging.getLogger(__name__)

JOB_NAME = "reference_cache"


class ExpiringCache:
    """Dict-like map whose entries expire ``ttl`` after they were written.

    Writers overwrite entries idempotently; the internal lock only protects
    the dict itself.
    """

    def __init__(self, ttl: timedelta, clock: Optional[Callable[[], datetime]] = None):
        self.ttl = ttl
        self._clock = clock or utcnow
        self._entries: dict[str, tuple[datetime, dict]] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> dict | None:
        """Cached value for ``key``, or None if absent or expired."""
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            expires_at, value = entry
            if expires_at <= self._clock():
                del self._entries[key]
                return None
            return value

    def set(self, key: str, value: dict) -> None:
        """Store ``value`` with a fresh TTL."""
        with self._lock:
            self._entries[key] = (self._clock() + self.ttl, value)

    def purge_expired(self) -> int:
        """Drop expired entries and return how many were removed."""
        now = self._clock()
        with self._lock:
            expired = [k for k, (expires_at, _) in self._entries.items() if expires_at <= now]
            for key in expired:
                del self._entries[key]
        return len(expired)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


class ReferenceDataService:
    """Warms and serves cached instrument reference data."""

    def __init__(
        self,
        symbols: list[str],
        provider_registry: Optional[ProviderRegistry] = None,
        provider_name: str = "SnapTrade",
        ttl_hours: int = 24,
        delay_seconds: float = 0.5,
        lock_service: Optional[JobLockService] = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.symbols = [s.upper() for s in symbols]
        self._registry = provider_registry
        self.provider_name = provider_name
        self.delay_seconds = delay_seconds
        self._locks = lock_service
        self._sleep = sleep
        self.cache = ExpiringCache(timedelta(hours=ttl_hours), clock=clock)
        self.last_refreshed_at: datetime | None = None

    @property
    def registry(self) -> ProviderRegistry:
        if self._registry is None:
            self._registry = get_provider_registry()
        return self._registry

    def get_instrument(self, symbol: str) -> dict | None:
        """Cached instrument for ``symbol``, or None if absent/expired."""
        return self.cache.get(symbol.upper())

    def run_scheduled(self) -> None:
        """Entry point for the scheduler."""
        try:
            self.refresh_cache()
        except JobAlreadyRunningError as e:
            logger.warning("Reference cache refresh skipped: %s", e)

    def refresh_cache(self) -> dict:
        """Look up every configured symbol and store the exact matches.

        Returns counts of refreshed, missing, failed and purged entries.

        Raises:
            JobAlreadyRunningError: If another process is refreshing.
        """
        if self._locks is not None:
            with self._locks.hold(JOB_NAME):
                return self._refresh()
        return self._refresh()

    def _refresh(self) -> dict:
        summary = {"refreshed": 0, "missing": 0, "failed": 0, "purged": 0}
        if not self.registry.is_configured(self.provider_name):
            logger.warning("Reference cache refresh skipped: %s not configured", self.provider_name)
            return summary

        provider = self.registry.get_provider(self.provider_name)
        logger.info("Reference cache refresh started (%d symbols)", len(self.symbols))
        for index, symbol in enumerate(self.symbols):
            if index > 0 and self.delay_seconds > 0:
                self._sleep(self.delay_seconds)
            try:
                matches = provider.search_symbols(symbol)
            except ProviderError as e:
                summary["failed"] += 1
                logger.warning(
                    "Reference lookup for %s failed: %s", symbol, normalize(e).kind.value
                )
                continue

            instrument = next((m for m in matches if m.symbol.upper() == symbol), None)
            if instrument is None:
                summary["missing"] += 1
                logger.debug("No exact reference match for %s", symbol)
                continue
            self.cache.set(symbol, instrument.to_dict())
            summary["refreshed"] += 1

        summary["purged"] = self.cache.purge_expired()
        self.last_refreshed_at = utcnow()
        logger.info(
            "Reference cache refresh finished: %d refreshed, %d missing, %d failed, %d purged",
            summary["refreshed"], summary["missing"], summary["failed"], summary["purged"],
        )
        return summary
