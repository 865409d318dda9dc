"""
Cron-driven execution of plugin jobs.

``JobScheduler`` owns an APScheduler ``AsyncIOScheduler`` with one cron job
per registered job key. A cron fire only *triggers* a run; the run itself is
an asyncio task the scheduler tracks so it can enforce each job's concurrency
ceiling, retry failed attempts on the declared backoff schedule and wait for
in-flight work during shutdown.
"""

from __future__ import annotations

import asyncio
import time
from typing import Any, Awaitable, Callable, Optional

from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.asyncio import AsyncIOScheduler

from plugdeck.observability.logging import (
    StructuredLogger, generate_run_id, scheduler_logger, set_request_context,
)
from plugdeck.observability.metrics import runtime_metrics
from plugdeck.plugins.errors import (
    ConcurrencyCeilingReached, RetryExhausted, SchedulerNotRunning, UnknownJob,
)
from plugdeck.plugins.manifest import Manifest

from .checkpoint import CheckpointStore, checkpoint_key
from .invoker import RouteInvoker, RouteResult
from .jobs import JobRunResult, JobSpec, JobState, ScheduledJob

SleepFn = Callable[[float], Awaitable[Optional[bool]]]


class JobScheduler:
    """Schedules, bounds, retries and checkpoints plugin job runs."""

    def __init__(self, checkpoints: CheckpointStore, invoker: RouteInvoker, *,
                 timezone: str = "UTC", sleep: Optional[SleepFn] = None,
                 misfire_grace_time: int = 30,
                 logger: StructuredLogger = scheduler_logger) -> None:
        self.checkpoints = checkpoints
        self.invoker = invoker
        self.timezone = timezone
        self.logger = logger
        self._sleep = sleep or self._interruptible_sleep

        self.scheduler = AsyncIOScheduler(
            timezone=timezone,
            job_defaults={
                'coalesce': True,             # Collapse missed fires into one
                'max_instances': 1,           # The callback only spawns a task
                'misfire_grace_time': misfire_grace_time,
            },
        )
        self.jobs: dict[str, ScheduledJob] = {}
        # In-flight runs per job key; outlives re-registration of the job
        self._running: dict[str, int] = {}
        self._tasks: set[asyncio.Task] = set()
        self._started = False
        self._shutdown_event = asyncio.Event()
        self._shutdown_task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._started and not self._shutdown_event.is_set()

    @property
    def shutting_down(self) -> bool:
        return self._shutdown_event.is_set()

    def start(self) -> None:
        """Start firing cron triggers. Must be called from a running event loop."""
        if self._shutdown_event.is_set():
            raise SchedulerNotRunning("Scheduler has been shut down")
        if not self._started:
            self.scheduler.start()
            self._started = True
            self.logger.info("Job scheduler started", jobs=len(self.jobs), timezone=self.timezone)

    # Registration

    def register_manifest(self, plugin_key: str, manifest: Manifest) -> list[str]:
        """Register every job of a plugin; an invalid job registers none of them."""
        if self._shutdown_event.is_set():
            raise SchedulerNotRunning("Scheduler is shutting down", plugin_key=plugin_key)

        specs = JobSpec.from_manifest(plugin_key, manifest)
        triggers = [(spec, spec.trigger(self.timezone)) for spec in specs]

        self.unregister_plugin(plugin_key)
        for spec, trigger in triggers:
            job = ScheduledJob(spec, running=self._running.get(spec.key, 0))
            self.jobs[spec.key] = job
            self.scheduler.add_job(
                self._fire,
                trigger=trigger,
                args=[spec.key],
                id=f"cron-{spec.key}",
                name=spec.key,
                replace_existing=True,
            )
            job.transition(JobState.IDLE)
            if job.running:
                job.transition(JobState.RUNNING)
            self.logger.job_registered(spec.key, spec.cron, spec.concurrency)

        runtime_metrics.set_registered(len(self.jobs))
        return [spec.key for spec in specs]

    def unregister_plugin(self, plugin_key: str) -> list[str]:
        """Remove a plugin's triggers. Runs already in flight are left to finish."""
        removed = []
        for key, job in list(self.jobs.items()):
            if job.spec.plugin_key != plugin_key:
                continue
            try:
                self.scheduler.remove_job(f"cron-{key}")
            except JobLookupError:
                self.logger.debug("Cron trigger already removed", job_key=key)
            job.transition(JobState.UNREGISTERED)
            del self.jobs[key]
            removed.append(key)
        if removed:
            self.logger.info("Plugin jobs unregistered", plugin_key=plugin_key, job_keys=removed)
            runtime_metrics.set_registered(len(self.jobs))
        return removed

    # Execution

    async def _fire(self, job_key: str) -> None:
        try:
            self.trigger(job_key)
        except ConcurrencyCeilingReached:
            pass  # counted and logged by trigger()
        except (SchedulerNotRunning, UnknownJob) as e:
            self.logger.info("Cron fire ignored", job_key=job_key, reason=str(e))

    def trigger(self, job_key: str) -> asyncio.Task:
        """Start one run of ``job_key`` and return its task.

        Raises ConcurrencyCeilingReached when the job already has
        ``concurrency`` runs in flight; the trigger is skipped, not queued.
        """
        if self._shutdown_event.is_set():
            raise SchedulerNotRunning("Scheduler is shutting down")
        job = self.jobs.get(job_key)
        if job is None:
            raise UnknownJob(f"Unknown job: {job_key}")

        # No await between the check and the increment
        if job.at_ceiling:
            job.skipped += 1
            runtime_metrics.record_job_skipped(job_key)
            self.logger.job_skipped(job_key, job.running, job.spec.concurrency)
            raise ConcurrencyCeilingReached(job_key, job.spec.concurrency, plugin_key=job.spec.plugin_key)
        self._set_running(job_key, job.running + 1)
        job.transition(JobState.RUNNING)

        task = asyncio.get_running_loop().create_task(self._run(job), name=f"job:{job_key}")
        job.tasks.add(task)
        self._tasks.add(task)
        task.add_done_callback(job.tasks.discard)
        task.add_done_callback(self._tasks.discard)
        return task

    def _set_running(self, job_key: str, count: int) -> None:
        if count > 0:
            self._running[job_key] = count
        else:
            self._running.pop(job_key, None)
        job = self.jobs.get(job_key)
        if job is not None:
            job.running = count
        runtime_metrics.set_running(job_key, count)

    async def _interruptible_sleep(self, delay: float) -> bool:
        """Sleep ``delay`` seconds; returns False if shutdown cut the wait short."""
        try:
            await asyncio.wait_for(self._shutdown_event.wait(), timeout=delay)
        except asyncio.TimeoutError:
            return True
        return False

    async def _read_cursor(self, spec: JobSpec) -> Any:
        if spec.cursor is None:
            return None
        try:
            return await self.checkpoints.get(checkpoint_key(spec.plugin_key, spec.cursor.key))
        except Exception as e:
            self.logger.warning(
                f"Checkpoint read failed, running full resync: {e}",
                job_key=spec.key, error_type=e.__class__.__name__,
            )
            return None

    async def _write_cursor(self, spec: JobSpec, cursor: Any) -> bool:
        if spec.cursor is None or cursor is None:
            return False
        try:
            await self.checkpoints.set(checkpoint_key(spec.plugin_key, spec.cursor.key), cursor, spec.cursor.ttl_sec)
        except Exception as e:
            self.logger.error(
                f"Checkpoint write failed: {e}",
                job_key=spec.key, error_type=e.__class__.__name__,
            )
            return False
        return True

    async def _attempt(self, spec: JobSpec, cursor: Any, attempt: int) -> RouteResult:
        payload = {"pluginKey": spec.plugin_key, "job": spec.name, "cursor": cursor, "attempt": attempt}
        try:
            return await asyncio.wait_for(
                self.invoker.invoke(spec.plugin_key, spec.route, payload),
                timeout=spec.timeout_sec,
            )
        except asyncio.TimeoutError:
            raise TimeoutError(f"Route {spec.route.path} exceeded {spec.timeout_sec}s")

    async def _run(self, job: ScheduledJob) -> JobRunResult:
        spec = job.spec
        set_request_context(plugin_key=spec.plugin_key, job_key=spec.key, run_id=generate_run_id())
        started = time.monotonic()
        attempts = retries = 0
        status = "exhausted"
        error: Optional[BaseException] = None
        outcome: Optional[RouteResult] = None

        try:
            cursor = await self._read_cursor(spec)
            allowed_retries = spec.retry.effective_retries
            while True:
                attempts += 1
                try:
                    outcome = await self._attempt(spec, cursor, attempts)
                    status = "success"
                    break
                except Exception as e:
                    error = e
                    if retries >= allowed_retries:
                        self.logger.job_attempt_failed(spec.key, attempts, e, None)
                        break
                    delay = spec.retry.delay_before(retries + 1)
                    self.logger.job_attempt_failed(spec.key, attempts, e, delay)
                    runtime_metrics.record_job_retry(spec.key)
                    retries += 1
                    completed = await self._sleep(delay)
                    if completed is False or self._shutdown_event.is_set():
                        status = "interrupted"
                        break
        finally:
            remaining = self._running.get(spec.key, 1) - 1
            self._set_running(spec.key, remaining)
            current = self.jobs.get(spec.key)
            if current is not None and current.state is JobState.RUNNING and remaining == 0:
                current.transition(JobState.IDLE)

        written = None
        if status == "success":
            error = None
            if await self._write_cursor(spec, outcome.cursor):
                written = outcome.cursor
        elif status == "exhausted":
            error = RetryExhausted(spec.key, attempts, error, plugin_key=spec.plugin_key)

        duration = time.monotonic() - started
        result = JobRunResult(
            job_key=spec.key,
            status=status,
            attempts=attempts,
            retries=retries,
            duration=duration,
            processed=outcome.processed if outcome else None,
            cursor=written,
            error=error,
        )
        job.runs += 1
        job.last_result = result
        runtime_metrics.record_job_run(spec.key, status, duration)
        self.logger.job_completed(spec.key, status, attempts, round(duration * 1000, 2))
        return result

    # Shutdown

    async def shutdown(self, timeout: Optional[float] = None) -> None:
        """Stop triggering, wait for in-flight runs and release resources.

        Safe to call more than once; later calls wait on the first shutdown.
        """
        if self._shutdown_task is not None:
            self.logger.shutdown_requested("shutdown", already_in_progress=True)
            await asyncio.shield(self._shutdown_task)
            return
        self.logger.shutdown_requested("shutdown", already_in_progress=False)
        self._shutdown_event.set()
        self._shutdown_task = asyncio.get_running_loop().create_task(self._shutdown(timeout))
        await asyncio.shield(self._shutdown_task)

    async def _shutdown(self, timeout: Optional[float]) -> None:
        if self._started:
            self.scheduler.shutdown(wait=False)

        pending = set(self._tasks)
        if pending:
            self.logger.info("Waiting for in-flight job runs", runs=len(pending))
            _, still_running = await asyncio.wait(pending, timeout=timeout)
            if still_running:
                self.logger.warning(
                    "Shutdown timeout reached with job runs still in flight",
                    runs=len(still_running),
                )

        for job in self.jobs.values():
            if job.state is not JobState.UNREGISTERED:
                job.transition(JobState.UNREGISTERED)
        runtime_metrics.set_registered(0)

        await self.invoker.close()
        await self.checkpoints.close()
        self.logger.info("Job scheduler stopped")

    def status(self) -> list[dict[str, Any]]:
        return [job.snapshot() for job in self.jobs.values()]
