"""Database-backed leases that keep background jobs from overlapping.

A lease is a row in ``job_locks`` keyed by job name.  It is released when
the job finishes and can be taken over by another holder only after it has
expired, which covers a process that crashed mid-run.

Lease operations commit immediately (on their own session) so they are
visible to other processes regardless of the caller's transaction.
"""

import logging
import os
import socket
import uuid
from contextlib import contextmanager
from datetime import datetime, timedelta
from typing import Callable, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from models.job_lock import JobLock
from models.utils import utcnow

logger = logging.getLogger(__name__)


class JobAlreadyRunningError(RuntimeError):
    """Another holder owns an unexpired lease for this job."""

    def __init__(self, job_name: str, holder: str | None = None):
        self.job_name = job_name
        self.holder = holder
        super().__init__(f"Job '{job_name}' is already running" + (f" ({holder})" if holder else ""))


def default_holder_id() -> str:
    return f"{socket.gethostname()}:{os.getpid()}:{uuid.uuid4().hex[:8]}"


class JobLockService:
    """Acquire and release named leases.

    Example:
        locks = JobLockService(get_session_local(), ttl_seconds=6 * 3600)
        with locks.hold("account_refresh"):
            ...
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        ttl_seconds: int,
        holder_id: Optional[str] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self._session_factory = session_factory
        self.ttl = timedelta(seconds=ttl_seconds)
        self.holder_id = holder_id or default_holder_id()
        self._clock = clock or utcnow

    def acquire(self, job_name: str) -> bool:
        """Take the lease.  Returns False if someone else holds it."""
        now = self._clock()
        db = self._session_factory()
        try:
            lock = db.get(JobLock, job_name)
            if lock is None:
                db.add(
                    JobLock(
                        job_name=job_name,
                        holder=self.holder_id,
                        acquired_at=now,
                        expires_at=now + self.ttl,
                    )
                )
                try:
                    db.commit()
                except IntegrityError:
                    # Lost the insert race
                    db.rollback()
                    return False
                return True

            previous_holder = lock.holder
            # Compare in SQL: SQLite returns naive datetimes
            stolen = (
                db.query(JobLock)
                .filter(
                    JobLock.job_name == job_name,
                    JobLock.expires_at <= now,
                )
                .update(
                    {
                        JobLock.holder: self.holder_id,
                        JobLock.acquired_at: now,
                        JobLock.expires_at: now + self.ttl,
                    },
                    synchronize_session=False,
                )
            )
            db.commit()
            if stolen:
                logger.warning(
                    "Took over expired lease for %s from %s", job_name, previous_holder
                )
            return bool(stolen)
        finally:
            db.close()

    def release(self, job_name: str) -> None:
        """Drop the lease if this holder still owns it."""
        db = self._session_factory()
        try:
            db.query(JobLock).filter(
                JobLock.job_name == job_name, JobLock.holder == self.holder_id
            ).delete(synchronize_session=False)
            db.commit()
        finally:
            db.close()

    def holder_of(self, job_name: str) -> str | None:
        """Current holder of an unexpired lease, or None."""
        db = self._session_factory()
        try:
            lock = (
                db.query(JobLock)
                .filter(JobLock.job_name == job_name, JobLock.expires_at > self._clock())
                .first()
            )
            return lock.holder if lock else None
        finally:
            db.close()

    @contextmanager
    def hold(self, job_name: str):
        """Hold the lease for the duration of the block.

        Raises :class:`JobAlreadyRunningError` if it cannot be acquired.
        """
        if not self.acquire(job_name):
            raise JobAlreadyRunningError(job_name, self.holder_of(job_name))
        try:
            yield
        finally:
            self.release(job_name)
