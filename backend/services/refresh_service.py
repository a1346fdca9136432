"""Account refresh - reconcile the local account mirror with each provider.

The full batch walks every user with a live credential, one user at a time
with a fixed pause between users to stay under provider rate limits.  Each
user is committed independently, so one user's failure never aborts the
batch.  Provider errors are classified by :mod:`services.error_normalizer`
and fed to :class:`~services.connection_state.ConnectionStateMachine`;
a ``UserMismatch`` rotates the credential and stops that user.

Accounts missing from a listing are left alone: only an explicit
``connection.deleted`` notification or user disconnect removes them.
"""

import logging
import threading
import time
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Optional

from sqlalchemy.orm import Session

from integrations.exceptions import ProviderError
from integrations.provider_protocol import ProviderAccount, ProviderClient
from integrations.provider_registry import ProviderRegistry, get_provider_registry
from models.connection import Connection
from models.external_account import ExternalAccount
from models.sync_run import SyncRun
from models.utils import utcnow
from services.connection_state import (
    REFRESHABLE_STATUSES,
    ConnectionStateMachine,
    ConnectionStatus,
)
from services.credential_store import CredentialStore
from services.error_normalizer import ErrorKind, NormalizedError, normalize
from services.job_lock import JobAlreadyRunningError, JobLockService

logger = logging.getLogger(__name__)

JOB_NAME = "account_refresh"


@dataclass
class RefreshResult:
    """Caller-facing result of a manual trigger."""

    success: bool
    message: str
    sync_run_id: str | None = None
    error: NormalizedError | None = None
    already_running: bool = False

    def to_dict(self) -> dict:
        return {
            "success": self.success,
            "message": self.message,
            "sync_run_id": self.sync_run_id,
            "error": self.error.to_dict() if self.error else None,
        }


@dataclass(frozen=True)
class _CredentialRef:
    """Plain copy of a credential so the batch is not tied to ORM state."""

    user_id: str
    provider_name: str
    identity: str
    secret: str


@dataclass
class _CredentialOutcome:
    accounts_refreshed: int = 0
    accounts_failed: int = 0
    error: NormalizedError | None = None
    skipped: bool = False


@dataclass
class _RunTotals:
    users_succeeded: int = 0
    users_failed: int = 0
    users_skipped: int = 0
    accounts_refreshed: int = 0
    accounts_failed: int = 0
    failures: list[dict] = field(default_factory=list)


class RefreshService:
    """Runs full and single-user account refreshes."""

    def __init__(
        self,
        session_factory: Callable[[], Session],
        provider_registry: Optional[ProviderRegistry] = None,
        lock_service: Optional[JobLockService] = None,
        inter_user_delay: float = 1.0,
        sleep: Callable[[float], None] = time.sleep,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        """Initialize with injectable collaborators.

        Args:
            session_factory: Creates sessions for background work.
            provider_registry: Registry of configured providers. If None,
                              a default registry will be created on first use.
            lock_service: Cross-process lease for the batch. If None, only
                          the in-process guard applies.
            inter_user_delay: Seconds to pause between users.
            sleep: Sleep function (tests pass a no-op).
            clock: Returns the current aware UTC time.
        """
        self._session_factory = session_factory
        self._registry = provider_registry
        self._locks = lock_service
        self.inter_user_delay = inter_user_delay
        self._sleep = sleep
        self._clock = clock or utcnow
        self._run_lock = threading.Lock()
        self._cancel_event = threading.Event()
        self._thread: threading.Thread | None = None

    @property
    def registry(self) -> ProviderRegistry:
        """Get the provider registry, creating default if not provided."""
        if self._registry is None:
            self._registry = get_provider_registry()
        return self._registry

    def is_running(self) -> bool:
        """True while a full batch is executing in this process."""
        acquired = self._run_lock.acquire(blocking=False)
        if acquired:
            self._run_lock.release()
            return False
        return True

    def cancel(self) -> bool:
        """Ask a running batch to stop before its next user."""
        if not self.is_running():
            return False
        self._cancel_event.set()
        logger.info("Account refresh cancellation requested")
        return True

    def wait(self, timeout: float | None = None) -> None:
        """Wait for a batch started by :meth:`trigger_refresh` to finish."""
        if self._thread is not None:
            self._thread.join(timeout)

    # Triggers

    def run_scheduled(self) -> None:
        """Entry point for the scheduler."""
        try:
            self.run_batch(trigger="scheduled")
        except JobAlreadyRunningError as e:
            logger.warning("Scheduled account refresh skipped: %s", e)

    def trigger_refresh(self, user_id: str | None = None) -> RefreshResult:
        """Manual trigger.

        With ``user_id``, refreshes that user synchronously.  Without, starts
        the full batch in the background and returns immediately.
        """
        if user_id:
            return self.refresh_user(user_id)

        if self.is_running() or (self._locks and self._locks.holder_of(JOB_NAME)):
            return RefreshResult(
                success=False, message="Data refresh already running", already_running=True
            )

        self._thread = threading.Thread(
            target=self._run_manual_batch, name="manual-account-refresh", daemon=True
        )
        self._thread.start()
        return RefreshResult(success=True, message="Data refresh started for all users")

    def _run_manual_batch(self) -> None:
        try:
            self.run_batch(trigger="manual")
        except JobAlreadyRunningError as e:
            logger.warning("Manual account refresh skipped: %s", e)
        except Exception:
            logger.exception("Manual account refresh failed")

    # Full batch

    def run_batch(self, trigger: str = "scheduled") -> SyncRun:
        """Refresh every user with a live credential.

        Raises:
            JobAlreadyRunningError: If another batch holds the run lock.
        """
        if not self._run_lock.acquire(blocking=False):
            raise JobAlreadyRunningError(JOB_NAME, "this process")
        try:
            if self._locks is not None and not self._locks.acquire(JOB_NAME):
                raise JobAlreadyRunningError(JOB_NAME, self._locks.holder_of(JOB_NAME))
            try:
                self._cancel_event.clear()
                return self._execute_batch(trigger)
            finally:
                if self._locks is not None:
                    self._locks.release(JOB_NAME)
        finally:
            self._run_lock.release()

    def _execute_batch(self, trigger: str) -> SyncRun:
        db = self._session_factory()
        try:
            run = SyncRun(trigger=trigger, status="running", started_at=self._clock())
            db.add(run)
            db.commit()
            logger.info("Account refresh %s started (trigger=%s)", run.id, trigger)

            totals = _RunTotals()
            status = "completed"
            try:
                by_user = self._credentials_by_user(db)
                for index, (user_id, credentials) in enumerate(by_user.items()):
                    if self._cancel_event.is_set():
                        status = "cancelled"
                        logger.info("Account refresh %s cancelled before user %s", run.id, user_id)
                        break
                    if index > 0 and self.inter_user_delay > 0:
                        self._sleep(self.inter_user_delay)
                    self._refresh_user_credentials(db, user_id, credentials, totals)
            except Exception as e:
                db.rollback()
                status = "failed"
                run.error_message = str(e)
                logger.exception("Account refresh %s aborted", run.id)

            self._finish_run(db, run, status, totals)
            db.refresh(run)
            db.expunge(run)
            return run
        finally:
            db.close()

    def _credentials_by_user(self, db: Session) -> dict[str, list[_CredentialRef]]:
        by_user: dict[str, list[_CredentialRef]] = defaultdict(list)
        for credential in CredentialStore.list_active(db):
            by_user[credential.user_id].append(
                _CredentialRef(
                    user_id=credential.user_id,
                    provider_name=credential.provider_name,
                    identity=credential.provider_identity,
                    secret=credential.provider_secret,
                )
            )
        return dict(by_user)

    def _refresh_user_credentials(
        self,
        db: Session,
        user_id: str,
        credentials: list[_CredentialRef],
        totals: _RunTotals,
    ) -> list[_CredentialOutcome]:
        outcomes = []
        for ref in credentials:
            try:
                outcome = self._refresh_credential(db, ref)
                db.commit()
            except Exception as e:
                db.rollback()
                logger.exception(
                    "Unexpected error refreshing user %s (%s)", user_id, ref.provider_name
                )
                outcome = _CredentialOutcome(error=normalize(e))
            outcomes.append(outcome)

            totals.accounts_refreshed += outcome.accounts_refreshed
            totals.accounts_failed += outcome.accounts_failed
            if outcome.error is not None:
                totals.failures.append(
                    {
                        "user_id": user_id,
                        "provider": ref.provider_name,
                        "kind": outcome.error.kind.value,
                        "message": outcome.error.message,
                    }
                )

        if any(o.error is not None for o in outcomes):
            totals.users_failed += 1
        elif all(o.skipped for o in outcomes):
            totals.users_skipped += 1
        else:
            totals.users_succeeded += 1
        return outcomes

    def _finish_run(self, db: Session, run: SyncRun, status: str, totals: _RunTotals) -> None:
        run.status = status
        run.finished_at = self._clock()
        run.users_succeeded = totals.users_succeeded
        run.users_failed = totals.users_failed
        run.users_skipped = totals.users_skipped
        run.accounts_refreshed = totals.accounts_refreshed
        run.accounts_failed = totals.accounts_failed
        run.failures = totals.failures
        db.commit()

        logger.info(
            "Account refresh %s %s in %.1fs: %d users ok, %d failed, %d skipped; "
            "%d accounts refreshed, %d failed",
            run.id, status, run.duration_seconds or 0.0,
            totals.users_succeeded, totals.users_failed, totals.users_skipped,
            totals.accounts_refreshed, totals.accounts_failed,
        )
        for failure in totals.failures:
            logger.warning(
                "Account refresh %s: user %s (%s) failed with %s",
                run.id, failure["user_id"], failure["provider"], failure["kind"],
            )

    # Single user

    def refresh_user(self, user_id: str) -> RefreshResult:
        """Synchronously refresh one user's live credentials."""
        db = self._session_factory()
        try:
            credentials = self._credentials_by_user(db).get(user_id)
            if not credentials:
                return RefreshResult(success=False, message="User not found")

            run = SyncRun(trigger="manual_user", status="running", started_at=self._clock())
            db.add(run)
            db.commit()

            totals = _RunTotals()
            outcomes = self._refresh_user_credentials(db, user_id, credentials, totals)
            self._finish_run(db, run, "completed", totals)

            errors = [o.error for o in outcomes if o.error is not None]
            if errors:
                return RefreshResult(
                    success=False,
                    message=errors[0].message,
                    sync_run_id=run.id,
                    error=errors[0],
                )
            return RefreshResult(
                success=True,
                message=f"Data refresh completed for user {user_id}",
                sync_run_id=run.id,
            )
        finally:
            db.close()

    # Per-credential work

    def _refresh_credential(self, db: Session, ref: _CredentialRef) -> _CredentialOutcome:
        if not self.registry.is_configured(ref.provider_name):
            logger.warning(
                "Skipping user %s: provider %s is not configured",
                ref.user_id, ref.provider_name,
            )
            return _CredentialOutcome(skipped=True)
        provider = self.registry.get_provider(ref.provider_name)

        try:
            accounts = provider.list_accounts(ref.identity, ref.secret)
        except ProviderError as e:
            error = normalize(e)
            logger.warning(
                "Account listing failed for user %s (%s): %s",
                ref.user_id, ref.provider_name, error.kind.value,
            )
            if error.kind is ErrorKind.USER_MISMATCH:
                CredentialStore.mark_rotated(db, ref.user_id, ref.provider_name)
            return _CredentialOutcome(error=error)

        outcome = _CredentialOutcome()
        by_authorization: dict[str, list[ProviderAccount]] = defaultdict(list)
        for account in accounts:
            by_authorization[account.authorization_id].append(account)

        for authorization_id, remote_accounts in by_authorization.items():
            connection, _ = ConnectionStateMachine.ensure(
                db,
                ref.user_id,
                ref.provider_name,
                authorization_id,
                remote_accounts[0].institution,
            )
            if connection.user_id != ref.user_id:
                logger.warning(
                    "Connection %s belongs to user %s, not %s; skipped",
                    authorization_id, connection.user_id, ref.user_id,
                )
                continue
            if ConnectionStatus(connection.status) not in REFRESHABLE_STATUSES:
                logger.info("Connection %s is %s; skipped", authorization_id, connection.status)
                continue
            ConnectionStateMachine.record_listing_success(db, connection)

            for remote in remote_accounts:
                error = self._refresh_account(db, provider, ref, connection, remote)
                if error is None:
                    outcome.accounts_refreshed += 1
                    continue
                outcome.accounts_failed += 1
                if error.kind is ErrorKind.USER_MISMATCH:
                    CredentialStore.mark_rotated(db, ref.user_id, ref.provider_name)
                    outcome.error = error
                    return outcome
                ConnectionStateMachine.record_error(db, connection, error)

        return outcome

    def _refresh_account(
        self,
        db: Session,
        provider: ProviderClient,
        ref: _CredentialRef,
        connection: Connection,
        remote: ProviderAccount,
    ) -> NormalizedError | None:
        """Fetch and store one account.  Returns the classified error, if any."""
        try:
            balance = provider.get_balance(ref.identity, ref.secret, remote.id)
            positions = provider.get_positions(ref.identity, ref.secret, remote.id)
        except ProviderError as e:
            error = normalize(e)
            logger.warning(
                "Refresh of account %s (user %s) failed: %s",
                remote.id, ref.user_id, error.kind.value,
            )
            return error

        with db.begin_nested():
            account = (
                db.query(ExternalAccount)
                .filter(
                    ExternalAccount.connection_id == connection.id,
                    ExternalAccount.provider_account_id == remote.id,
                )
                .first()
            )
            if account is None:
                account = ExternalAccount(
                    connection_id=connection.id,
                    provider_account_id=remote.id,
                    name=remote.name,
                )
                db.add(account)
                logger.info("New account %s on connection %s", remote.id, connection.authorization_id)

            account.name = remote.name
            account.account_type = remote.account_type
            account.account_number = remote.account_number
            account.balance = balance.amount
            account.currency = balance.currency
            account.positions = [p.to_dict() for p in positions]
            account.last_holdings_sync_at = self._clock()
            account.initial_sync_completed = True
            ConnectionStateMachine.record_sync_success(db, connection)
        return None
