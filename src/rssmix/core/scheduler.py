"""
Periodic execution of the pipeline stages.

A stage runs as a StageJob: one pass, then a pause of the interval minus the
time the pass took. A standalone stage process drives its job with
``run_forever``; running all stages in one process hosts the jobs on an
APScheduler background scheduler instead.
"""

import threading
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Optional

from apscheduler.events import EVENT_JOB_ERROR, EVENT_JOB_EXECUTED, EVENT_JOB_MAX_INSTANCES, JobEvent
from apscheduler.executors.pool import ThreadPoolExecutor
from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

from rssmix.logger import get_logger

logger = get_logger(__name__)


def next_delay(interval_seconds: float, elapsed_seconds: float) -> float:
    """Pause before the next pass: the rest of the interval, never negative."""
    return max(0.0, interval_seconds - elapsed_seconds)


class StageJob:
    """A cancellable periodic job running one stage pass at a time."""

    def __init__(
        self,
        name: str,
        pass_fn: Callable[[], Any],
        interval_seconds: float,
        clock: Callable[[], float] = time.monotonic,
        wait: Optional[Callable[[float], bool]] = None,
    ):
        """Initialize stage job.

        Args:
            name: Stage name used in logs and as scheduler job id
            pass_fn: Runs one pass of the stage
            interval_seconds: Target time between pass starts
            clock: Monotonic clock measuring pass duration
            wait: Sleeps for the given seconds and returns True when the job
                was stopped meanwhile (default: wait on the stop event)
        """
        self.name = name
        self.pass_fn = pass_fn
        self.interval_seconds = interval_seconds
        self.clock = clock

        self._stop_event = threading.Event()
        self._wait = wait or self._stop_event.wait

        self.runs_count = 0
        self.errors_count = 0
        self.last_duration_seconds: Optional[float] = None
        self.last_result: Any = None
        self.last_error: Optional[str] = None
        self.last_run_time: Optional[datetime] = None

    @property
    def stopped(self) -> bool:
        return self._stop_event.is_set()

    def run_once(self) -> Any:
        """Run a single pass and record its duration.

        Errors escaping the pass are logged and counted; they never stop the
        job.

        Returns:
            Whatever the pass returned, or None if it raised
        """
        started = self.clock()
        self.last_run_time = datetime.now(timezone.utc)
        result = None
        try:
            result = self.pass_fn()
            self.last_error = None
        except Exception as e:
            self.errors_count += 1
            self.last_error = f"{type(e).__name__}: {e}"
            logger.exception(f"{self.name} pass failed: {e}")
        finally:
            self.last_duration_seconds = self.clock() - started
            self.runs_count += 1

        self.last_result = result
        return result

    def next_delay(self) -> float:
        """Pause before the next pass, based on the last pass duration."""
        return next_delay(self.interval_seconds, self.last_duration_seconds or 0.0)

    def run_forever(self, max_runs: Optional[int] = None) -> None:
        """Run passes until stopped.

        Args:
            max_runs: Stop after this many passes (None runs until stop())
        """
        logger.info(f"{self.name} started (every {self.interval_seconds}s)")
        while not self.stopped:
            self.run_once()
            if max_runs is not None and self.runs_count >= max_runs:
                break

            delay = self.next_delay()
            logger.debug(f"{self.name} sleeping {delay:.1f}s")
            if self._wait(delay):
                break
        logger.info(f"{self.name} stopped after {self.runs_count} passes")

    def stop(self) -> None:
        """Ask the job to stop; a running pass is finished first."""
        self._stop_event.set()


@dataclass
class JobStatus:
    """Status of a scheduled stage."""

    job_id: str
    name: str
    next_run_time: Optional[datetime]
    last_run_time: Optional[datetime]
    is_active: bool
    trigger: str
    runs_count: int = 0
    errors_count: int = 0
    last_duration_seconds: Optional[float] = None
    last_error: Optional[str] = None


@dataclass
class SchedulerStats:
    """Statistics for scheduler operations."""

    total_jobs: int = 0
    active_jobs: int = 0
    total_executions: int = 0
    failed_executions: int = 0
    skipped_executions: int = 0
    uptime_seconds: float = 0.0


class PipelineScheduler:
    """Hosts several stage jobs on an APScheduler background scheduler.

    Each stage gets its own interval trigger with a single instance, so a
    pass that overruns its interval is followed by the next one instead of
    running concurrently with it.
    """

    def __init__(self, timezone_name: str = "UTC", misfire_grace_time: int = 300):
        """Initialize pipeline scheduler.

        Args:
            timezone_name: Scheduler timezone
            misfire_grace_time: Seconds a late run may still start
        """
        self.misfire_grace_time = misfire_grace_time
        self.scheduler = BackgroundScheduler(
            executors={"default": ThreadPoolExecutor(max_workers=3)},
            timezone=timezone_name,
        )

        self.stats = SchedulerStats()
        self.start_time: Optional[datetime] = None
        self._jobs: dict[str, StageJob] = {}

        self.scheduler.add_listener(self._on_job_executed, EVENT_JOB_EXECUTED)
        self.scheduler.add_listener(self._on_job_error, EVENT_JOB_ERROR)
        self.scheduler.add_listener(self._on_job_skipped, EVENT_JOB_MAX_INSTANCES)

    def add_stage(self, job: StageJob, run_now: bool = True) -> str:
        """Schedule a stage job.

        Args:
            job: Stage job to run periodically
            run_now: Run the first pass immediately instead of after one interval

        Returns:
            Job ID
        """
        # next_run_time=None would add the job paused
        extra = {"next_run_time": datetime.now(timezone.utc)} if run_now else {}
        self.scheduler.add_job(
            func=job.run_once,
            trigger=IntervalTrigger(seconds=job.interval_seconds),
            id=job.name,
            name=f"Stage {job.name}",
            max_instances=1,
            coalesce=True,
            misfire_grace_time=self.misfire_grace_time,
            replace_existing=True,
            **extra,
        )
        self._jobs[job.name] = job
        logger.info(f"Added stage {job.name} (every {job.interval_seconds}s)")
        return job.name

    def remove_stage(self, job_id: str) -> bool:
        """Remove a scheduled stage.

        Returns:
            True if the stage was removed
        """
        try:
            self.scheduler.remove_job(job_id)
        except JobLookupError:
            logger.warning(f"Job {job_id} not found")
            return False
        self._jobs.pop(job_id, None)
        logger.info(f"Removed job {job_id}")
        return True

    def start(self) -> None:
        """Start the scheduler."""
        if not self.scheduler.running:
            self.scheduler.start()
            self.start_time = datetime.now()
            logger.info(f"Scheduler started with {len(self._jobs)} stages")
        else:
            logger.warning("Scheduler is already running")

    def stop(self, wait: bool = True) -> None:
        """Stop the scheduler.

        Args:
            wait: Whether to wait for running passes to complete
        """
        if self.scheduler.running:
            self.scheduler.shutdown(wait=wait)
            if self.start_time:
                self.stats.uptime_seconds = (datetime.now() - self.start_time).total_seconds()
            logger.info("Scheduler stopped")
        else:
            logger.warning("Scheduler is not running")

    def is_running(self) -> bool:
        """Check if the scheduler is running."""
        return self.scheduler.running

    def run_until(self, stop_event: threading.Event) -> None:
        """Start, block until ``stop_event`` is set, then stop.

        Args:
            stop_event: Event set by a signal handler or another thread
        """
        self.start()
        try:
            stop_event.wait()
        finally:
            self.stop()

    def get_all_jobs(self) -> list[JobStatus]:
        """Get status of all stages.

        Returns:
            List of JobStatus for all stages
        """
        statuses = []
        for job in self.scheduler.get_jobs():
            stage = self._jobs.get(job.id)
            statuses.append(JobStatus(
                job_id=job.id,
                name=job.name,
                next_run_time=getattr(job, "next_run_time", None),
                last_run_time=stage.last_run_time if stage else None,
                is_active=getattr(job, "next_run_time", None) is not None,
                trigger=str(job.trigger),
                runs_count=stage.runs_count if stage else 0,
                errors_count=stage.errors_count if stage else 0,
                last_duration_seconds=stage.last_duration_seconds if stage else None,
                last_error=stage.last_error if stage else None,
            ))
        return statuses

    def get_stats(self) -> SchedulerStats:
        """Get scheduler statistics."""
        jobs = self.scheduler.get_jobs()
        self.stats.total_jobs = len(jobs)
        self.stats.active_jobs = len(
            [j for j in jobs if getattr(j, "next_run_time", None) is not None]
        )
        if self.start_time and self.scheduler.running:
            self.stats.uptime_seconds = (datetime.now() - self.start_time).total_seconds()
        return self.stats

    def _on_job_executed(self, event: JobEvent) -> None:
        """Handle job executed event."""
        self.stats.total_executions += 1

    def _on_job_error(self, event: JobEvent) -> None:
        """Handle job error event.

        StageJob.run_once logs its own errors, so this only fires for errors
        raised around the pass.
        """
        self.stats.total_executions += 1
        self.stats.failed_executions += 1
        exception = getattr(event, "exception", None)
        if exception:
            logger.error(f"Job {event.job_id} failed: {type(exception).__name__}: {exception}")

    def _on_job_skipped(self, event: JobEvent) -> None:
        """Handle a run skipped because the previous pass is still going."""
        self.stats.skipped_executions += 1
        logger.debug(f"Job {event.job_id} still running, skipped one run")
