"""In-process cron scheduler for background jobs.

Jobs are described with standard five-field cron expressions
(``minute hour day-of-month month day-of-week``) evaluated in a configured
timezone.  A single daemon thread wakes up, fires any job whose slot has
arrived on its own worker thread, and computes the next slot.  A job whose
previous run is still executing skips the slot instead of overlapping.

This module must not import :mod:`config`; settings validation uses
:class:`CronSchedule` to reject bad expressions at load time.
"""

import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

logger = logging.getLogger(__name__)


class CronParseError(ValueError):
    """Raised for a cron expression the scheduler cannot evaluate."""

    pass


_MONTH_NAMES = {
    name: number
    for number, name in enumerate(
        ("JAN", "FEB", "MAR", "APR", "MAY", "JUN", "JUL", "AUG", "SEP", "OCT", "NOV", "DEC"),
        start=1,
    )
}
_WEEKDAY_NAMES = {
    name: number for number, name in enumerate(("SUN", "MON", "TUE", "WED", "THU", "FRI", "SAT"))
}


@dataclass(frozen=True)
class _Field:
    name: str
    low: int
    high: int
    names: Optional[dict[str, int]] = None

    def value(self, text: str) -> int | None:
        """Numeric value of a number or a three-letter name, or None."""
        if text.isdigit():
            return int(text)
        if self.names:
            return self.names.get(text.upper())
        return None


_FIELDS = (
    _Field("minute", 0, 59),
    _Field("hour", 0, 23),
    _Field("day of month", 1, 31),
    _Field("month", 1, 12, _MONTH_NAMES),
    _Field("day of week", 0, 7, _WEEKDAY_NAMES),
)

# Give up searching for a matching slot after this many years
# (e.g. "0 0 31 2 *" never fires).
_MAX_SEARCH_YEARS = 5


def _parse_field(text: str, field: _Field) -> frozenset[int]:
    values: set[int] = set()
    for part in text.split(","):
        if not part:
            raise CronParseError(f"Empty list item in {field.name} field: {text!r}")

        step = 1
        if "/" in part:
            part, step_text = part.split("/", 1)
            if not step_text.isdigit() or int(step_text) == 0:
                raise CronParseError(f"Invalid step in {field.name} field: {text!r}")
            step = int(step_text)

        if part == "*":
            start, end = field.low, field.high
        elif "-" in part:
            start_text, end_text = part.split("-", 1)
            start, end = field.value(start_text), field.value(end_text)
            if start is None or end is None:
                raise CronParseError(f"Invalid range in {field.name} field: {text!r}")
        elif field.value(part) is not None:
            start = field.value(part)
            # "5/15" means "from 5 to the end, every 15"
            end = field.high if step > 1 else start
        else:
            raise CronParseError(f"Invalid value in {field.name} field: {text!r}")

        if start < field.low or end > field.high or start > end:
            raise CronParseError(
                f"{field.name} value out of range {field.low}-{field.high}: {text!r}"
            )
        values.update(range(start, end + 1, step))
    return frozenset(values)


class CronSchedule:
    """A parsed five-field cron expression.

    Supports ``*``, single values, ranges (``1-5``), steps (``*/4``,
    ``0-30/10``), comma lists, and three-letter month and weekday names
    (``JAN``, ``MON-FRI``).  Day-of-week accepts both 0 and 7 for Sunday.
    As in classic cron, when both day-of-month and day-of-week are
    restricted a day matches if *either* matches; a field starting with
    ``*`` (including ``*/2``) counts as unrestricted.
    """

    def __init__(
        self,
        expression: str,
        minutes: frozenset[int],
        hours: frozenset[int],
        days: frozenset[int],
        months: frozenset[int],
        weekdays: frozenset[int],
        day_restricted: bool,
        weekday_restricted: bool,
    ):
        self.expression = expression
        self.minutes = minutes
        self.hours = hours
        self.days = days
        self.months = months
        self.weekdays = weekdays
        self._day_restricted = day_restricted
        self._weekday_restricted = weekday_restricted

    @classmethod
    def parse(cls, expression: str) -> "CronSchedule":
        """Parse ``expression`` or raise :class:`CronParseError`."""
        if not isinstance(expression, str):
            raise CronParseError(f"Cron expression must be a string, got {expression!r}")
        parts = expression.split()
        if len(parts) != 5:
            raise CronParseError(
                f"Cron expression must have 5 fields, got {len(parts)}: {expression!r}"
            )

        minutes, hours, days, months, weekdays = (
            _parse_field(text, field) for text, field in zip(parts, _FIELDS)
        )
        # Sunday is both 0 and 7
        weekdays = frozenset(0 if d == 7 else d for d in weekdays)

        return cls(
            expression=expression,
            minutes=minutes,
            hours=hours,
            days=days,
            months=months,
            weekdays=weekdays,
            day_restricted=not parts[2].startswith("*"),
            weekday_restricted=not parts[4].startswith("*"),
        )

    def _day_matches(self, dt: datetime) -> bool:
        # isoweekday(): Monday=1 .. Sunday=7; cron: Sunday=0
        cron_weekday = dt.isoweekday() % 7
        day_ok = dt.day in self.days
        weekday_ok = cron_weekday in self.weekdays
        if self._day_restricted and self._weekday_restricted:
            return day_ok or weekday_ok
        return day_ok and weekday_ok

    def matches(self, dt: datetime) -> bool:
        """True if the wall-clock minute of ``dt`` is a scheduled slot."""
        return (
            dt.month in self.months
            and self._day_matches(dt)
            and dt.hour in self.hours
            and dt.minute in self.minutes
        )

    def next_after(self, after: datetime, tz: timezone | ZoneInfo = timezone.utc) -> datetime:
        """Return the first scheduled slot strictly after ``after``.

        ``after`` must be timezone-aware.  Matching happens on wall-clock
        time in ``tz``; the result is returned as an aware UTC datetime.
        """
        if after.tzinfo is None:
            raise ValueError("next_after() requires a timezone-aware datetime")

        local = after.astimezone(tz).replace(tzinfo=None, second=0, microsecond=0)
        candidate = local + timedelta(minutes=1)
        limit = local + timedelta(days=366 * _MAX_SEARCH_YEARS)

        while candidate <= limit:
            if candidate.month not in self.months:
                year = candidate.year + (candidate.month == 12)
                month = candidate.month % 12 + 1
                candidate = candidate.replace(year=year, month=month, day=1, hour=0, minute=0)
                continue
            if not self._day_matches(candidate):
                candidate = (candidate + timedelta(days=1)).replace(hour=0, minute=0)
                continue
            if candidate.hour not in self.hours:
                candidate = (candidate + timedelta(hours=1)).replace(minute=0)
                continue
            if candidate.minute not in self.minutes:
                candidate += timedelta(minutes=1)
                continue

            result = candidate.replace(tzinfo=tz).astimezone(timezone.utc)
            if result > after:
                return result
            # DST fold mapped the slot back before ``after``
            candidate += timedelta(minutes=1)

        raise CronParseError(f"Cron expression never fires: {self.expression!r}")

    def __repr__(self) -> str:
        return f"CronSchedule({self.expression!r})"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def resolve_timezone(name: str) -> ZoneInfo:
    """Look up an IANA timezone, falling back to UTC with a warning."""
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning("Unknown timezone %r; scheduling in UTC", name)
        return ZoneInfo("UTC")


class ScheduledJob:
    """A named job bound to a cron schedule."""

    def __init__(
        self,
        name: str,
        schedule: CronSchedule,
        func: Callable[[], object],
        enabled: bool = True,
        on_cancel: Optional[Callable[[], None]] = None,
    ):
        self.name = name
        self.schedule = schedule
        self.func = func
        self.enabled = enabled
        self.on_cancel = on_cancel
        self.next_run_at: datetime | None = None
        self.last_started_at: datetime | None = None
        self.last_finished_at: datetime | None = None
        self.last_error: str | None = None
        self.run_count = 0
        self.skipped_count = 0
        self._thread: threading.Thread | None = None

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def join(self, timeout: float | None = None) -> None:
        """Wait for the current run (if any) to finish."""
        thread = self._thread
        if thread is not None:
            thread.join(timeout)

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "schedule": self.schedule.expression,
            "enabled": self.enabled,
            "running": self.is_running,
            "next_run_at": self.next_run_at,
            "last_started_at": self.last_started_at,
            "last_finished_at": self.last_finished_at,
            "last_error": self.last_error,
            "run_count": self.run_count,
            "skipped_count": self.skipped_count,
        }


class JobScheduler:
    """Fires registered jobs on their cron slots from a background thread.

    Example:
        scheduler = JobScheduler(timezone="America/New_York")
        scheduler.add_job("account_refresh", "0 2 * * *", refresh.run_scheduled)
        scheduler.start()
        ...
        scheduler.stop()
    """

    def __init__(
        self,
        timezone: str = "UTC",
        clock: Optional[Callable[[], datetime]] = None,
        poll_interval: float = 30.0,
    ):
        self.timezone_name = timezone
        self.tz = resolve_timezone(timezone)
        self._clock = clock or _utcnow
        self._poll_interval = poll_interval
        self._jobs: dict[str, ScheduledJob] = {}
        self._lock = threading.Lock()
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def add_job(
        self,
        name: str,
        expression: str,
        func: Callable[[], object],
        enabled: bool = True,
        on_cancel: Optional[Callable[[], None]] = None,
    ) -> ScheduledJob:
        """Register a job.  Raises :class:`CronParseError` for bad expressions."""
        job = ScheduledJob(name, CronSchedule.parse(expression), func, enabled, on_cancel)
        with self._lock:
            if name in self._jobs:
                raise ValueError(f"Job '{name}' is already registered")
            job.next_run_at = job.schedule.next_after(self._clock(), self.tz)
            self._jobs[name] = job
        logger.info(
            "Scheduled job %s (%s %s), next run %s",
            name, expression, self.timezone_name, job.next_run_at.isoformat(),
        )
        return job

    def get_job(self, name: str) -> ScheduledJob:
        """Look up a registered job.  Raises KeyError if unknown."""
        if name not in self._jobs:
            raise KeyError(f"Unknown job '{name}'")
        return self._jobs[name]

    def start(self) -> None:
        """Start the scheduling thread.  Calling twice is a no-op."""
        if self.is_running:
            return
        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._run_loop, name="job-scheduler", daemon=True
        )
        self._thread.start()
        logger.info("Job scheduler started with %d job(s)", len(self._jobs))

    def stop(self, timeout: float = 10.0) -> None:
        """Stop scheduling and ask running jobs to cancel.

        Running jobs are signalled through their ``on_cancel`` hook and given
        up to ``timeout`` seconds to wind down.
        """
        self._stop_event.set()
        for job in list(self._jobs.values()):
            if job.is_running and job.on_cancel is not None:
                job.on_cancel()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None
        for job in list(self._jobs.values()):
            job.join(timeout)
        logger.info("Job scheduler stopped")

    def start_job(self, name: str) -> None:
        """Re-enable a stopped job and schedule its next slot."""
        job = self.get_job(name)
        with self._lock:
            job.enabled = True
            job.next_run_at = job.schedule.next_after(self._clock(), self.tz)
        logger.info("Job %s enabled, next run %s", name, job.next_run_at.isoformat())

    def stop_job(self, name: str) -> None:
        """Disable a job.  A run already in progress is asked to cancel."""
        job = self.get_job(name)
        with self._lock:
            job.enabled = False
            job.next_run_at = None
        if job.is_running and job.on_cancel is not None:
            job.on_cancel()
        logger.info("Job %s disabled", name)

    def run_now(self, name: str) -> bool:
        """Fire a job immediately.  Returns False if it is already running."""
        job = self.get_job(name)
        with self._lock:
            if job.is_running:
                return False
            self._launch(job, self._clock())
        return True

    def tick(self, now: datetime | None = None) -> list[str]:
        """Fire every enabled job whose slot is due.  Returns the names fired."""
        now = now or self._clock()
        fired = []
        with self._lock:
            for job in self._jobs.values():
                if not job.enabled or job.next_run_at is None or job.next_run_at > now:
                    continue
                if job.is_running:
                    job.skipped_count += 1
                    logger.warning(
                        "Skipping %s slot at %s: previous run still in progress",
                        job.name, job.next_run_at.isoformat(),
                    )
                else:
                    self._launch(job, now)
                    fired.append(job.name)
                job.next_run_at = job.schedule.next_after(now, self.tz)
        return fired

    def status(self) -> dict:
        """Running flag, timezone, and per-job status."""
        with self._lock:
            return {
                "running": self.is_running,
                "timezone": self.timezone_name,
                "jobs": [job.to_dict() for job in self._jobs.values()],
            }

    def _launch(self, job: ScheduledJob, now: datetime) -> None:
        job.last_started_at = now
        job.run_count += 1
        job._thread = threading.Thread(
            target=self._run_job, args=(job,), name=f"job-{job.name}", daemon=True
        )
        job._thread.start()

    def _run_job(self, job: ScheduledJob) -> None:
        logger.info("Job %s starting", job.name)
        try:
            job.func()
            job.last_error = None
        except Exception as e:
            job.last_error = str(e)
            logger.exception("Job %s failed", job.name)
        finally:
            job.last_finished_at = self._clock()
            logger.info("Job %s finished", job.name)

    def _seconds_until_next(self) -> float:
        upcoming = [
            job.next_run_at
            for job in self._jobs.values()
            if job.enabled and job.next_run_at is not None
        ]
        if not upcoming:
            return self._poll_interval
        delta = (min(upcoming) - self._clock()).total_seconds()
        return max(0.0, min(delta, self._poll_interval))

    def _run_loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                self.tick()
            except Exception:
                logger.exception("Scheduler tick failed")
            self._stop_event.wait(self._seconds_until_next())
