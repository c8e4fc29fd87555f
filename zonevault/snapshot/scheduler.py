"""
Snapshot scheduler - recurring (cron) and one-shot deferred jobs.

One timer thread sleeps until the earliest job is due and hands due jobs to
a bounded worker pool. The registry is guarded by a single lock.
"""

import dataclasses
import logging
import threading
import uuid
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Dict, FrozenSet, List, Optional, Union

import pytz

from ..errors import ValidationError
from .models import utcnow

logger = logging.getLogger(__name__)

# Longest the timer thread sleeps without re-checking the registry
MAX_IDLE_SECONDS = 60.0

# Search horizon for the next cron match
MAX_LOOKAHEAD_DAYS = 366 * 5


# =============================================================================
# Cron expressions
# =============================================================================

_FIELDS = (
    ("minute", 0, 59),
    ("hour", 0, 23),
    ("day of month", 1, 31),
    ("month", 1, 12),
    ("day of week", 0, 7),
)


def _parse_field(text: str, name: str, low: int, high: int) -> FrozenSet[int]:
    values = set()
    for item in text.split(","):
        step = 1
        if "/" in item:
            item, step_text = item.split("/", 1)
            if not step_text.isdigit() or int(step_text) < 1:
                raise ValidationError(f"Invalid step in cron {name} field: {text!r}")
            step = int(step_text)

        if item == "*":
            start, end = low, high
        elif "-" in item:
            first, _, last = item.partition("-")
            if not first.isdigit() or not last.isdigit():
                raise ValidationError(f"Invalid range in cron {name} field: {text!r}")
            start, end = int(first), int(last)
        elif item.isdigit():
            start = int(item)
            # "5/15" means from 5 to the end of the range
            end = high if step > 1 else start
        else:
            raise ValidationError(f"Invalid cron {name} field: {text!r}")

        if start < low or end > high or start > end:
            raise ValidationError(f"Cron {name} field out of range {low}-{high}: {text!r}")
        values.update(range(start, end + 1, step))
    return frozenset(values)


@dataclass(frozen=True)
class CronSpec:
    """Five-field cron expression: minute hour day-of-month month day-of-week."""
    expression: str
    minutes: FrozenSet[int]
    hours: FrozenSet[int]
    days: FrozenSet[int]
    months: FrozenSet[int]
    weekdays: FrozenSet[int]          # 0 = Sunday
    days_restricted: bool = False
    weekdays_restricted: bool = False

    @classmethod
    def parse(cls, expression: str) -> "CronSpec":
        """
        Parse a cron expression.

        Supports `*`, numbers, lists, ranges and steps. Day of week 7 is Sunday.

        Raises:
            ValidationError: Malformed expression
        """
        parts = str(expression).split()
        if len(parts) != 5:
            raise ValidationError(
                f"Cron expression needs 5 fields (minute hour day month weekday): {expression!r}"
            )
        parsed = [
            _parse_field(part, name, low, high)
            for part, (name, low, high) in zip(parts, _FIELDS)
        ]
        weekdays = frozenset(d % 7 for d in parsed[4])
        return cls(
            expression=" ".join(parts),
            minutes=parsed[0],
            hours=parsed[1],
            days=parsed[2],
            months=parsed[3],
            weekdays=weekdays,
            days_restricted=not parts[2].startswith("*"),
            weekdays_restricted=not parts[4].startswith("*"),
        )

    def _day_matches(self, moment: datetime) -> bool:
        day_ok = moment.day in self.days
        # datetime.weekday(): Monday = 0; cron: Sunday = 0
        weekday_ok = (moment.weekday() + 1) % 7 in self.weekdays
        if self.days_restricted and self.weekdays_restricted:
            return day_ok or weekday_ok
        return day_ok and weekday_ok

    def next_after(self, after: datetime, tz=pytz.utc) -> datetime:
        """
        First matching time strictly after `after`.

        Args:
            after: Timezone-aware reference time
            tz: pytz timezone the expression is evaluated in

        Returns:
            Timezone-aware UTC datetime

        Raises:
            ValidationError: If the expression never matches (e.g. Feb 30)
        """
        local = after.astimezone(tz).replace(tzinfo=None, second=0, microsecond=0)
        moment = local + timedelta(minutes=1)
        horizon = local + timedelta(days=MAX_LOOKAHEAD_DAYS)

        while moment <= horizon:
            if moment.month not in self.months:
                year, month = (moment.year + 1, 1) if moment.month == 12 else (moment.year, moment.month + 1)
                moment = moment.replace(year=year, month=month, day=1, hour=0, minute=0)
                continue
            if not self._day_matches(moment):
                moment = (moment + timedelta(days=1)).replace(hour=0, minute=0)
                continue
            if moment.hour not in self.hours:
                moment = (moment + timedelta(hours=1)).replace(minute=0)
                continue
            if moment.minute not in self.minutes:
                moment += timedelta(minutes=1)
                continue

            candidate = tz.normalize(tz.localize(moment)).astimezone(pytz.utc)
            if candidate > after:
                return candidate
            moment += timedelta(minutes=1)

        raise ValidationError(f"Cron expression never matches: {self.expression!r}")

    def __str__(self) -> str:
        return self.expression


# =============================================================================
# Scheduler
# =============================================================================

@dataclass
class JobHandle:
    """Registered job as seen by callers."""
    id: str
    name: str
    next_run: datetime
    cron: Optional[str] = None        # None for one-shot jobs

    @property
    def one_shot(self) -> bool:
        return self.cron is None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "nextRun": self.next_run.isoformat(),
            "cron": self.cron,
            "oneShot": self.one_shot,
        }


@dataclass
class _Job:
    handle: JobHandle
    fn: Callable[[], object]
    spec: Optional[CronSpec] = None


class Scheduler:
    """Runs callables on cron schedules or once at a given time."""

    def __init__(
        self,
        max_workers: int = 5,
        timezone: str = "UTC",
        clock: Callable[[], datetime] = utcnow,
    ):
        """
        Initialize scheduler.

        Args:
            max_workers: Bound on concurrently running jobs
            timezone: IANA name cron expressions are evaluated in
            clock: Returns the current aware UTC time
        """
        try:
            self.tz = pytz.timezone(timezone)
        except pytz.UnknownTimeZoneError:
            raise ValidationError(f"Unknown timezone: {timezone!r}")
        self.clock = clock
        self._lock = threading.Lock()
        self._jobs: Dict[str, _Job] = {}
        self._wakeup = threading.Event()
        self._stopped = threading.Event()
        self._pool = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="scheduler")
        self._thread: Optional[threading.Thread] = None

    def __enter__(self):
        self.start()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.shutdown()
        return False

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    # =========================================================================
    # Registration
    # =========================================================================

    def schedule_recurring(
        self,
        spec: Union[str, CronSpec],
        fn: Callable[[], object],
        name: Optional[str] = None,
    ) -> JobHandle:
        """
        Run `fn` every time the cron expression matches.

        Raises:
            ValidationError: Malformed expression
        """
        cron = spec if isinstance(spec, CronSpec) else CronSpec.parse(spec)
        next_run = cron.next_after(self.clock(), self.tz)
        handle = JobHandle(id=uuid.uuid4().hex, name=name or cron.expression,
                           next_run=next_run, cron=cron.expression)
        self._register(_Job(handle=handle, fn=fn, spec=cron))
        logger.info("Scheduled recurring job %s (%s), next run %s", handle.name, cron, next_run)
        return dataclasses.replace(handle)

    def schedule_once(
        self,
        at: datetime,
        fn: Callable[[], object],
        name: Optional[str] = None,
    ) -> JobHandle:
        """
        Run `fn` once at `at`. Naive times are taken in the scheduler's timezone.

        Raises:
            ValidationError: If `at` is not in the future
        """
        if at.tzinfo is None:
            at = self.tz.localize(at)
        at = at.astimezone(pytz.utc)
        if at <= self.clock():
            raise ValidationError(f"Scheduled time must be in the future: {at.isoformat()}")

        handle = JobHandle(id=uuid.uuid4().hex, name=name or "one-shot", next_run=at)
        self._register(_Job(handle=handle, fn=fn))
        logger.info("Scheduled one-shot job %s at %s", handle.name, at)
        return dataclasses.replace(handle)

    def cancel(self, handle: Union[JobHandle, str]) -> bool:
        """Remove a job. Returns False if it was not registered."""
        job_id = handle.id if isinstance(handle, JobHandle) else handle
        with self._lock:
            job = self._jobs.pop(job_id, None)
        if job is None:
            return False
        self._wakeup.set()
        logger.info("Cancelled job %s", job.handle.name)
        return True

    def jobs(self) -> List[JobHandle]:
        """Registered jobs ordered by next run."""
        with self._lock:
            handles = [dataclasses.replace(job.handle) for job in self._jobs.values()]
        return sorted(handles, key=lambda h: h.next_run)

    def _register(self, job: _Job) -> None:
        with self._lock:
            self._jobs[job.handle.id] = job
        self._wakeup.set()

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def start(self) -> None:
        """Start the timer thread."""
        if self.running:
            return
        self._stopped.clear()
        self._thread = threading.Thread(target=self._run, name="scheduler-timer", daemon=True)
        self._thread.start()
        logger.debug("Scheduler started (%s)", self.tz.zone)

    def shutdown(self, wait: bool = True) -> None:
        """Stop the timer thread and the worker pool."""
        self._stopped.set()
        self._wakeup.set()
        if self._thread is not None:
            self._thread.join(timeout=5)
            self._thread = None
        self._pool.shutdown(wait=wait)
        logger.debug("Scheduler stopped")

    def run_pending(self, now: Optional[datetime] = None) -> List[Future]:
        """
        Dispatch every job that is due.

        Recurring jobs are moved to their next match; one-shot jobs leave the
        registry as they are dispatched.

        Returns:
            Futures of the dispatched runs
        """
        now = now or self.clock()
        due = []
        with self._lock:
            for job_id, job in list(self._jobs.items()):
                if job.handle.next_run > now:
                    continue
                due.append(job)
                if job.spec is None:
                    del self._jobs[job_id]
                else:
                    job.handle.next_run = job.spec.next_after(now, self.tz)

        return [self._pool.submit(self._invoke, job.handle.name, job.fn) for job in due]

    def _seconds_until_next(self) -> float:
        with self._lock:
            if not self._jobs:
                return MAX_IDLE_SECONDS
            earliest = min(job.handle.next_run for job in self._jobs.values())
        delay = (earliest - self.clock()).total_seconds()
        return max(0.0, min(delay, MAX_IDLE_SECONDS))

    def _run(self) -> None:
        while not self._stopped.is_set():
            try:
                self.run_pending()
            except RuntimeError:
                # Pool already shut down
                break
            self._wakeup.wait(self._seconds_until_next())
            self._wakeup.clear()

    @staticmethod
    def _invoke(name: str, fn: Callable[[], object]):
        logger.info("Running job %s", name)
        try:
            return fn()
        except Exception:
            logger.exception("Job %s failed", name)
            raise
