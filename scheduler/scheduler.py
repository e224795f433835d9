import asyncio
import logging
import threading
import time as monotonic_time
from dataclasses import dataclass, field
from datetime import datetime, time, timedelta
from typing import Any, Callable, Dict, List, Optional, Protocol

from .run_ledger import RunLedger

logger = logging.getLogger(__name__)

EPOCH = datetime(1970, 1, 1)

# A job receives the time of the slot it runs for and may return a details dict.
JobFunc = Callable[[datetime], Any]


class JobScheduler(Protocol):
    def register_interval(self, period: timedelta, job: JobFunc, name: str) -> None:
        ...

    def register_daily(self, at: time, job: JobFunc, name: str) -> None:
        ...


@dataclass
class ScheduledJob:
    name: str
    job: JobFunc
    period: Optional[timedelta] = None
    at: Optional[time] = None
    runs: int = 0
    failures: int = 0
    skipped: int = 0
    last_run: Optional[datetime] = None
    last_error: Optional[str] = None
    last_duration_ms: Optional[float] = None
    lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    @property
    def is_daily(self) -> bool:
        return self.at is not None

    def run_key(self, now: datetime) -> str:
        if self.is_daily:
            return now.date().isoformat()
        period = self.period.total_seconds()
        slot = int((now - EPOCH).total_seconds() // period)
        return (EPOCH + timedelta(seconds=slot * period)).isoformat()

    def next_run(self, now: datetime) -> datetime:
        if self.is_daily:
            candidate = datetime.combine(now.date(), self.at)
            if candidate <= now:
                candidate += timedelta(days=1)
            return candidate

        period = self.period.total_seconds()
        slot = int((now - EPOCH).total_seconds() // period) + 1
        return EPOCH + timedelta(seconds=slot * period)

    def missed_today(self, now: datetime) -> Optional[datetime]:
        """Today's slot for a daily job whose time has already passed."""
        if not self.is_daily:
            return None
        scheduled = datetime.combine(now.date(), self.at)
        return scheduled if scheduled <= now else None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "schedule": f"daily at {self.at.strftime('%H:%M')}" if self.is_daily
            else f"every {int(self.period.total_seconds())}s",
            "runs": self.runs,
            "failures": self.failures,
            "skipped": self.skipped,
            "last_run": self.last_run.isoformat() if self.last_run else None,
            "last_error": self.last_error,
            "last_duration_ms": self.last_duration_ms,
        }


class BaseScheduler:
    def __init__(self, run_ledger: Optional[RunLedger] = None, clock: Callable[[], datetime] = datetime.utcnow):
        self.run_ledger = run_ledger
        self.clock = clock
        self.jobs: Dict[str, ScheduledJob] = {}

    def register_interval(self, period: timedelta, job: JobFunc, name: str) -> None:
        if period.total_seconds() <= 0:
            raise ValueError(f"Interval for job {name} must be positive")
        self._register(ScheduledJob(name=name, job=job, period=period))

    def register_daily(self, at: time, job: JobFunc, name: str) -> None:
        self._register(ScheduledJob(name=name, job=job, at=at))

    def _register(self, scheduled: ScheduledJob):
        if scheduled.name in self.jobs:
            raise ValueError(f"Job {scheduled.name} is already registered")
        self.jobs[scheduled.name] = scheduled
        logger.info(f"Registered job {scheduled.name}")

    def _get_job(self, name: str) -> ScheduledJob:
        if name not in self.jobs:
            raise KeyError(f"Unknown job: {name}")
        return self.jobs[name]

    def _execute(self, scheduled: ScheduledJob, now: datetime) -> bool:
        """Run one slot of a job. Returns False when the run was skipped or failed."""
        if not scheduled.lock.acquire(blocking=False):
            scheduled.skipped += 1
            logger.warning(f"Job {scheduled.name} is still running, skipping this run")
            return False

        try:
            run_key = scheduled.run_key(now)
            if self.run_ledger is not None and not self.run_ledger.claim(scheduled.name, run_key):
                scheduled.skipped += 1
                return False

            logger.info(f"Running job {scheduled.name} ({run_key})")
            started = monotonic_time.monotonic()
            error = None
            details = None
            try:
                result = scheduled.job(now)
                if isinstance(result, dict):
                    details = result
                scheduled.runs += 1
            except Exception as e:
                error = str(e)
                scheduled.failures += 1
                logger.error(f"Job {scheduled.name} failed for run {run_key}: {e}")

            scheduled.last_run = now
            scheduled.last_error = error
            scheduled.last_duration_ms = round((monotonic_time.monotonic() - started) * 1000, 2)

            if self.run_ledger is not None:
                self.run_ledger.finish(scheduled.name, run_key, error=error, details=details)
            return error is None
        finally:
            scheduled.lock.release()

    def list_jobs(self) -> List[Dict[str, Any]]:
        return [scheduled.to_dict() for scheduled in self.jobs.values()]


class MeteringScheduler(BaseScheduler):
    """Asyncio driver: one loop per job, job bodies run in worker threads.

    Interval jobs fire on slot boundaries aligned to the epoch. Daily jobs fire
    at their wall-clock time (UTC) and, on start, catch up today's run if that
    time has already passed.
    """

    def __init__(self, run_ledger: Optional[RunLedger] = None, clock: Callable[[], datetime] = datetime.utcnow):
        super().__init__(run_ledger=run_ledger, clock=clock)
        self._tasks: List[asyncio.Task] = []
        self._running = False
        self.start_time: Optional[datetime] = None

    async def run_job(self, name: str, now: Optional[datetime] = None) -> bool:
        scheduled = self._get_job(name)
        return await asyncio.to_thread(self._execute, scheduled, now or self.clock())

    async def _job_loop(self, scheduled: ScheduledJob):
        missed = scheduled.missed_today(self.clock())
        if missed:
            try:
                await self.run_job(scheduled.name, now=missed)
            except Exception as e:
                logger.error(f"Catch-up run of {scheduled.name} failed: {e}")

        while self._running:
            now = self.clock()
            next_run = scheduled.next_run(now)
            await asyncio.sleep(max(0.0, (next_run - now).total_seconds()))
            if not self._running:
                break
            try:
                await self.run_job(scheduled.name, now=next_run)
            except Exception as e:
                logger.error(f"Error running job {scheduled.name}: {e}")

    async def start(self):
        if self._running:
            return
        self._running = True
        self.start_time = datetime.utcnow()
        for scheduled in self.jobs.values():
            self._tasks.append(asyncio.create_task(self._job_loop(scheduled)))
        logger.info(f"Scheduler started with {len(self.jobs)} jobs")

    async def stop(self):
        self._running = False
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []
        logger.info("Scheduler stopped")

    @property
    def is_running(self) -> bool:
        return self._running

    def get_metrics(self) -> Dict[str, Any]:
        uptime = (datetime.utcnow() - self.start_time).total_seconds() if self.start_time else 0
        return {
            "uptime_seconds": round(uptime, 2),
            "runs": sum(j.runs for j in self.jobs.values()),
            "failures": sum(j.failures for j in self.jobs.values()),
            "skipped": sum(j.skipped for j in self.jobs.values()),
            "jobs": self.list_jobs(),
        }


class ManualScheduler(BaseScheduler):
    """Runs registered jobs only when asked. Used by tests and one-shot CLI runs."""

    def run(self, name: str, now: Optional[datetime] = None) -> bool:
        return self._execute(self._get_job(name), now or self.clock())

    def run_all(self, now: Optional[datetime] = None) -> Dict[str, bool]:
        now = now or self.clock()
        return {name: self._execute(scheduled, now) for name, scheduled in self.jobs.items()}
