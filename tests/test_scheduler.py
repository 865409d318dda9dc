#!/usr/bin/env python3
"""
Test suite for the job scheduler.

Covers job spec construction, registration with APScheduler, the
concurrency ceiling, retry/backoff, cursor checkpoints, the job state
machine and graceful shutdown.
"""

import asyncio

import pytest

from plugdeck.plugins.errors import (
    ConcurrencyCeilingReached, InvalidJobSpec, InvalidStateTransition, RetryExhausted,
    SchedulerNotRunning, UnknownJob,
)
from plugdeck.plugins.manifest import RetryPolicy, parse_manifest
from plugdeck.scheduler.checkpoint import MemoryCheckpointStore, checkpoint_key
from plugdeck.scheduler.invoker import RouteResult
from plugdeck.scheduler.jobs import JobSpec, JobState, ScheduledJob
from plugdeck.scheduler.service import JobScheduler

from conftest import FakeInvoker, job_manifest, manifest_doc


async def wait_for_calls(invoker, count, timeout=2.0):
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while len(invoker.calls) < count:
        assert loop.time() < deadline, f"expected {count} route calls, saw {len(invoker.calls)}"
        await asyncio.sleep(0.01)


class TestJobSpec:

    def test_from_manifest(self):
        specs = JobSpec.from_manifest("github", job_manifest(concurrency=3))
        assert len(specs) == 1
        spec = specs[0]
        assert spec.key == "github:sync"
        assert spec.route.path == "/sync"
        assert spec.concurrency == 3
        assert spec.retry.effective_retries == 0

    def test_undeclared_route(self):
        with pytest.raises(InvalidJobSpec, match="undeclared route"):
            JobSpec.from_manifest("github", job_manifest(route="/missing"))

    def test_bad_cron(self):
        with pytest.raises(InvalidJobSpec) as exc_info:
            JobSpec.from_manifest("github", job_manifest(cron="every five minutes"))
        assert exc_info.value.job_name == "sync"

    def test_concurrency_below_one(self):
        with pytest.raises(InvalidJobSpec, match="concurrency"):
            JobSpec.from_manifest("github", job_manifest(concurrency=0))

    def test_duplicate_job_names(self):
        manifest = parse_manifest(manifest_doc(
            routes=[{"method": "POST", "path": "/sync"}],
            jobs=[
                {"name": "sync", "route": "/sync", "cron": "* * * * *"},
                {"name": "sync", "route": "/sync", "cron": "0 * * * *"},
            ],
        ))
        with pytest.raises(InvalidJobSpec, match="Duplicate"):
            JobSpec.from_manifest("github", manifest)


class TestRetryPolicy:

    @pytest.mark.parametrize("max_retries,backoff,expected", [
        (5, (1, 2, 4), 3),
        (1, (1, 2, 4), 1),
        (3, (), 0),
        (0, (1,), 0),
    ])
    def test_effective_retries(self, max_retries, backoff, expected):
        assert RetryPolicy(max=max_retries, backoff_sec=backoff).effective_retries == expected

    def test_delay_before(self):
        policy = RetryPolicy(max=3, backoff_sec=(1, 2, 4))
        assert [policy.delay_before(i) for i in (1, 2, 3)] == [1.0, 2.0, 4.0]


class TestJobStateMachine:

    @pytest.fixture
    def job(self):
        return ScheduledJob(JobSpec.from_manifest("github", job_manifest())[0])

    def test_lifecycle(self, job):
        assert job.state is JobState.REGISTERED
        job.transition(JobState.IDLE)
        job.transition(JobState.RUNNING)
        job.transition(JobState.IDLE)
        job.transition(JobState.UNREGISTERED)
        assert job.state is JobState.UNREGISTERED

    def test_cannot_run_before_idle(self, job):
        with pytest.raises(InvalidStateTransition):
            job.transition(JobState.RUNNING)

    def test_unregistered_is_terminal(self, job):
        job.transition(JobState.UNREGISTERED)
        with pytest.raises(InvalidStateTransition):
            job.transition(JobState.IDLE)


class TestRegistration:

    def test_register_manifest(self, scheduler):
        keys = scheduler.register_manifest("github", job_manifest())

        assert keys == ["github:sync"]
        assert scheduler.jobs["github:sync"].state is JobState.IDLE
        aps_job = scheduler.scheduler.get_job("cron-github:sync")
        assert aps_job is not None
        assert aps_job.args == ("github:sync",)

    def test_registration_is_all_or_nothing(self, scheduler):
        manifest = parse_manifest(manifest_doc(
            routes=[{"method": "POST", "path": "/sync"}],
            jobs=[
                {"name": "good", "route": "/sync", "cron": "* * * * *"},
                {"name": "bad", "route": "/nowhere", "cron": "* * * * *"},
            ],
        ))
        with pytest.raises(InvalidJobSpec):
            scheduler.register_manifest("github", manifest)
        assert scheduler.jobs == {}
        assert scheduler.scheduler.get_jobs() == []

    def test_unregister_plugin(self, scheduler):
        scheduler.register_manifest("github", job_manifest())
        job = scheduler.jobs["github:sync"]

        assert scheduler.unregister_plugin("github") == ["github:sync"]
        assert job.state is JobState.UNREGISTERED
        assert scheduler.scheduler.get_job("cron-github:sync") is None
        with pytest.raises(UnknownJob):
            scheduler.trigger("github:sync")

    def test_reregistering_replaces_jobs(self, scheduler):
        scheduler.register_manifest("github", job_manifest(cron="0 * * * *"))
        scheduler.register_manifest("github", job_manifest(cron="30 * * * *"))
        assert scheduler.jobs["github:sync"].spec.cron == "30 * * * *"
        assert len(scheduler.scheduler.get_jobs()) == 1

    def test_unknown_job_is_a_key_error(self, scheduler):
        with pytest.raises(KeyError):
            scheduler.trigger("nope:sync")


class TestExecution:

    @pytest.mark.asyncio
    async def test_successful_run(self, scheduler, invoker):
        invoker.outcomes = [RouteResult(processed=7)]
        scheduler.register_manifest("github", job_manifest())

        result = await scheduler.trigger("github:sync")

        assert result.status == "success"
        assert (result.attempts, result.retries, result.processed) == (1, 0, 7)
        assert result.error is None
        assert invoker.calls == [{"plugin_key": "github", "path": "/sync", "pluginKey": "github",
                                  "job": "sync", "cursor": None, "attempt": 1}]
        job = scheduler.jobs["github:sync"]
        assert job.state is JobState.IDLE
        assert job.running == 0
        assert job.last_result is result

    @pytest.mark.asyncio
    async def test_concurrency_ceiling_skips_second_trigger(self, checkpoints, recording_sleep):
        gate = asyncio.Event()
        invoker = FakeInvoker(gate=gate)
        scheduler = JobScheduler(checkpoints, invoker, sleep=recording_sleep)
        scheduler.register_manifest("github", job_manifest(concurrency=1))

        first = scheduler.trigger("github:sync")
        with pytest.raises(ConcurrencyCeilingReached) as exc_info:
            scheduler.trigger("github:sync")
        assert exc_info.value.job_key == "github:sync"

        job = scheduler.jobs["github:sync"]
        assert job.state is JobState.RUNNING
        assert job.skipped == 1

        gate.set()
        result = await first
        assert result.status == "success"
        assert len(invoker.calls) == 1
        assert job.state is JobState.IDLE

    @pytest.mark.asyncio
    async def test_concurrency_allows_parallel_runs_up_to_ceiling(self, checkpoints, recording_sleep):
        gate = asyncio.Event()
        invoker = FakeInvoker(gate=gate)
        scheduler = JobScheduler(checkpoints, invoker, sleep=recording_sleep)
        scheduler.register_manifest("github", job_manifest(concurrency=2))

        tasks = [scheduler.trigger("github:sync"), scheduler.trigger("github:sync")]
        with pytest.raises(ConcurrencyCeilingReached):
            scheduler.trigger("github:sync")

        gate.set()
        results = await asyncio.gather(*tasks)
        assert [r.status for r in results] == ["success", "success"]
        assert (await scheduler.trigger("github:sync")).ok

    @pytest.mark.asyncio
    async def test_reregistration_keeps_in_flight_runs_under_ceiling(self, checkpoints, recording_sleep):
        gate = asyncio.Event()
        invoker = FakeInvoker(gate=gate)
        scheduler = JobScheduler(checkpoints, invoker, sleep=recording_sleep)
        scheduler.register_manifest("github", job_manifest(concurrency=1))

        first = scheduler.trigger("github:sync")
        await wait_for_calls(invoker, 1)

        scheduler.register_manifest("github", job_manifest(concurrency=1))
        job = scheduler.jobs["github:sync"]
        assert job.running == 1
        assert job.state is JobState.RUNNING
        with pytest.raises(ConcurrencyCeilingReached):
            scheduler.trigger("github:sync")
        assert job.skipped == 1

        gate.set()
        assert (await first).ok
        assert len(invoker.calls) == 1
        assert job.running == 0
        assert job.state is JobState.IDLE
        assert (await scheduler.trigger("github:sync")).ok

    @pytest.mark.asyncio
    async def test_unregister_then_register_counts_in_flight_run(self, checkpoints, recording_sleep):
        gate = asyncio.Event()
        invoker = FakeInvoker(gate=gate)
        scheduler = JobScheduler(checkpoints, invoker, sleep=recording_sleep)
        scheduler.register_manifest("github", job_manifest(concurrency=1))

        first = scheduler.trigger("github:sync")
        scheduler.unregister_plugin("github")
        scheduler.register_manifest("github", job_manifest(concurrency=1))
        with pytest.raises(ConcurrencyCeilingReached):
            scheduler.trigger("github:sync")

        gate.set()
        await first
        assert scheduler.jobs["github:sync"].state is JobState.IDLE

    @pytest.mark.asyncio
    async def test_cron_fire_at_ceiling_is_not_an_error(self, checkpoints, recording_sleep):
        gate = asyncio.Event()
        scheduler = JobScheduler(checkpoints, FakeInvoker(gate=gate), sleep=recording_sleep)
        scheduler.register_manifest("github", job_manifest())

        await scheduler._fire("github:sync")
        await scheduler._fire("github:sync")

        assert scheduler.jobs["github:sync"].skipped == 1
        gate.set()
        await asyncio.gather(*scheduler._tasks)

    @pytest.mark.asyncio
    async def test_retry_schedule_is_exhausted(self, scheduler, invoker, recording_sleep):
        invoker.outcomes = [RuntimeError("boom")] * 4
        scheduler.register_manifest("github", job_manifest(retry={"max": 5, "backoffSec": [1, 2, 4]}))

        result = await scheduler.trigger("github:sync")

        assert result.status == "exhausted"
        assert result.attempts == 4
        assert result.retries == 3
        assert recording_sleep.delays == [1, 2, 4]
        assert [c["attempt"] for c in invoker.calls] == [1, 2, 3, 4]
        assert isinstance(result.error, RetryExhausted)
        assert result.error.attempts == 4
        assert str(result.error.cause) == "boom"

    @pytest.mark.asyncio
    async def test_retry_then_success(self, scheduler, invoker, recording_sleep):
        invoker.outcomes = [RuntimeError("flaky"), RouteResult(processed=1)]
        scheduler.register_manifest("github", job_manifest(retry={"max": 2, "backoffSec": [3, 9]}))

        result = await scheduler.trigger("github:sync")

        assert result.status == "success"
        assert (result.attempts, result.retries) == (2, 1)
        assert recording_sleep.delays == [3]

    @pytest.mark.asyncio
    async def test_without_retry_policy_fails_once(self, scheduler, invoker, recording_sleep):
        invoker.outcomes = [RuntimeError("boom")]
        scheduler.register_manifest("github", job_manifest())

        result = await scheduler.trigger("github:sync")

        assert result.status == "exhausted"
        assert result.attempts == 1
        assert recording_sleep.delays == []

    @pytest.mark.asyncio
    async def test_route_timeout_counts_as_failed_attempt(self, checkpoints, recording_sleep):
        invoker = FakeInvoker(gate=asyncio.Event())
        scheduler = JobScheduler(checkpoints, invoker, sleep=recording_sleep)
        scheduler.register_manifest("github", job_manifest(timeoutSec=0.05))

        result = await scheduler.trigger("github:sync")

        assert result.status == "exhausted"
        assert isinstance(result.error.cause, TimeoutError)

    @pytest.mark.asyncio
    async def test_failing_run_does_not_affect_other_jobs(self, scheduler, invoker):
        invoker.outcomes = [RuntimeError("boom"), RouteResult(processed=2)]
        scheduler.register_manifest("github", job_manifest())
        scheduler.register_manifest("jira", job_manifest("jira"))

        failed, succeeded = await asyncio.gather(scheduler.trigger("github:sync"), scheduler.trigger("jira:sync"))

        assert failed.status == "exhausted"
        assert succeeded.status == "success"


class TestCheckpoints:

    @pytest.mark.asyncio
    async def test_cursor_round_trip(self, scheduler, invoker, checkpoints):
        invoker.outcomes = [RouteResult(cursor="2024-01-01T00:00:00Z"), RouteResult()]
        scheduler.register_manifest("github", job_manifest(cursor={"key": "since", "ttlSec": 60}))

        first = await scheduler.trigger("github:sync")
        second = await scheduler.trigger("github:sync")

        assert first.cursor == "2024-01-01T00:00:00Z"
        assert second.cursor is None
        assert [c["cursor"] for c in invoker.calls] == [None, "2024-01-01T00:00:00Z"]
        assert await checkpoints.get(checkpoint_key("github", "since")) == "2024-01-01T00:00:00Z"

    @pytest.mark.asyncio
    async def test_expired_cursor_means_full_resync(self, scheduler, invoker, clock):
        invoker.outcomes = [RouteResult(cursor={"page": 4}), RouteResult()]
        scheduler.register_manifest("github", job_manifest(cursor={"key": "since", "ttlSec": 60}))

        await scheduler.trigger("github:sync")
        clock.advance(61)
        await scheduler.trigger("github:sync")

        assert invoker.calls[1]["cursor"] is None

    @pytest.mark.asyncio
    async def test_checkpoint_write_failure_keeps_run_successful(self, invoker, recording_sleep):
        class FailingStore(MemoryCheckpointStore):
            async def set(self, key, value, ttl_sec):
                raise ConnectionError("redis down")

        invoker.outcomes = [RouteResult(cursor="c1")]
        scheduler = JobScheduler(FailingStore(), invoker, sleep=recording_sleep)
        scheduler.register_manifest("github", job_manifest(cursor={"key": "since", "ttlSec": 60}))

        result = await scheduler.trigger("github:sync")

        assert result.status == "success"
        assert result.cursor is None


class TestShutdown:

    @pytest.mark.asyncio
    async def test_start_and_shutdown(self, checkpoints, invoker):
        scheduler = JobScheduler(checkpoints, invoker)
        scheduler.register_manifest("github", job_manifest())
        scheduler.start()
        assert scheduler.running
        assert scheduler.scheduler.running

        await scheduler.shutdown()

        assert not scheduler.running
        assert not scheduler.scheduler.running
        assert invoker.closed
        assert scheduler.jobs["github:sync"].state is JobState.UNREGISTERED

    @pytest.mark.asyncio
    async def test_shutdown_is_idempotent(self, scheduler, invoker):
        scheduler.register_manifest("github", job_manifest())

        await asyncio.gather(scheduler.shutdown(), scheduler.shutdown())
        await scheduler.shutdown()

        assert invoker.closed
        with pytest.raises(SchedulerNotRunning):
            scheduler.trigger("github:sync")
        with pytest.raises(SchedulerNotRunning):
            scheduler.register_manifest("jira", job_manifest("jira"))
        with pytest.raises(SchedulerNotRunning):
            scheduler.start()

    @pytest.mark.asyncio
    async def test_shutdown_waits_for_in_flight_runs(self, checkpoints, recording_sleep):
        gate = asyncio.Event()
        invoker = FakeInvoker(gate=gate)
        scheduler = JobScheduler(checkpoints, invoker, sleep=recording_sleep)
        scheduler.register_manifest("github", job_manifest())
        task = scheduler.trigger("github:sync")
        await wait_for_calls(invoker, 1)

        shutdown = asyncio.create_task(scheduler.shutdown())
        await asyncio.sleep(0.05)
        assert not shutdown.done()

        gate.set()
        await shutdown
        assert task.result().status == "success"

    @pytest.mark.asyncio
    async def test_shutdown_interrupts_backoff_wait(self, checkpoints):
        invoker = FakeInvoker(outcomes=[RuntimeError("boom")])
        scheduler = JobScheduler(checkpoints, invoker)
        scheduler.register_manifest("github", job_manifest(retry={"max": 1, "backoffSec": [30]}))
        task = scheduler.trigger("github:sync")
        await wait_for_calls(invoker, 1)
        await asyncio.sleep(0.01)

        await asyncio.wait_for(scheduler.shutdown(), timeout=5)

        result = task.result()
        assert result.status == "interrupted"
        assert result.attempts == 1
        assert len(invoker.calls) == 1

    @pytest.mark.asyncio
    async def test_status_snapshot(self, scheduler, invoker):
        scheduler.register_manifest("github", job_manifest())
        await scheduler.trigger("github:sync")

        [snapshot] = scheduler.status()
        assert snapshot["job_key"] == "github:sync"
        assert snapshot["state"] == "idle"
        assert snapshot["runs"] == 1
        assert snapshot["last_result"]["status"] == "success"
