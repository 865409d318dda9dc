"""
Job specifications and per-job runtime state.

A ``JobSpec`` is built from a manifest's ``jobs`` declarations when the
scheduler registers a plugin; a ``ScheduledJob`` wraps it with the state
machine and counters the scheduler mutates while running it.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Any, Optional

from apscheduler.triggers.cron import CronTrigger

from plugdeck.plugins.errors import InvalidJobSpec, InvalidStateTransition
from plugdeck.plugins.manifest import CursorSpec, Manifest, RetryPolicy, Route

NO_RETRY = RetryPolicy()


def job_key_for(plugin_key: str, job_name: str) -> str:
    return f"{plugin_key}:{job_name}"


@dataclass(frozen=True)
class JobSpec:
    plugin_key: str
    name: str
    route: Route
    cron: str
    timeout_sec: float = 60.0
    concurrency: int = 1
    retry: RetryPolicy = NO_RETRY
    cursor: Optional[CursorSpec] = None

    @property
    def key(self) -> str:
        return job_key_for(self.plugin_key, self.name)

    def trigger(self, timezone: Any = "UTC") -> CronTrigger:
        return CronTrigger.from_crontab(self.cron, timezone=timezone)

    @classmethod
    def from_manifest(cls, plugin_key: str, manifest: Manifest) -> list["JobSpec"]:
        """Build every job of ``manifest``; any invalid job rejects them all."""
        routes = {}
        for route in manifest.routes:
            routes.setdefault(route.path, route)

        specs: list[JobSpec] = []
        seen: set[str] = set()
        for decl in manifest.jobs:
            if decl.name in seen:
                raise InvalidJobSpec(f"Duplicate job name {decl.name!r}",
                                     plugin_key=plugin_key, job_name=decl.name)
            seen.add(decl.name)

            route = routes.get(decl.route)
            if route is None:
                raise InvalidJobSpec(f"Job {decl.name!r} references undeclared route {decl.route!r}",
                                     plugin_key=plugin_key, job_name=decl.name)
            if decl.concurrency < 1:
                raise InvalidJobSpec(f"Job {decl.name!r} concurrency must be at least 1",
                                     plugin_key=plugin_key, job_name=decl.name)
            try:
                CronTrigger.from_crontab(decl.cron)
            except ValueError as e:
                raise InvalidJobSpec(f"Job {decl.name!r} has invalid cron {decl.cron!r}: {e}",
                                     plugin_key=plugin_key, job_name=decl.name)

            specs.append(cls(
                plugin_key=plugin_key,
                name=decl.name,
                route=route,
                cron=decl.cron,
                timeout_sec=decl.timeout_sec,
                concurrency=decl.concurrency,
                retry=decl.retry or NO_RETRY,
                cursor=decl.cursor,
            ))
        return specs


class JobState(enum.Enum):
    REGISTERED = "registered"
    IDLE = "idle"
    RUNNING = "running"
    UNREGISTERED = "unregistered"


_TRANSITIONS = {
    JobState.REGISTERED: {JobState.IDLE, JobState.UNREGISTERED},
    JobState.IDLE: {JobState.RUNNING, JobState.UNREGISTERED},
    JobState.RUNNING: {JobState.RUNNING, JobState.IDLE, JobState.UNREGISTERED},
    JobState.UNREGISTERED: set(),
}


@dataclass
class JobRunResult:
    job_key: str
    status: str  # success, exhausted or interrupted
    attempts: int
    retries: int
    duration: float
    processed: Optional[int] = None
    cursor: Any = None
    error: Optional[BaseException] = None

    @property
    def ok(self) -> bool:
        return self.status == "success"

    def to_dict(self) -> dict[str, Any]:
        return {
            "job_key": self.job_key,
            "status": self.status,
            "attempts": self.attempts,
            "retries": self.retries,
            "duration": round(self.duration, 3),
            "processed": self.processed,
            "error": str(self.error) if self.error else None,
        }


@dataclass
class ScheduledJob:
    spec: JobSpec
    state: JobState = JobState.REGISTERED
    running: int = 0
    skipped: int = 0
    runs: int = 0
    last_result: Optional[JobRunResult] = None
    tasks: set = field(default_factory=set)

    @property
    def key(self) -> str:
        return self.spec.key

    def transition(self, target: JobState) -> None:
        if target not in _TRANSITIONS[self.state]:
            raise InvalidStateTransition(
                f"Job {self.key}: illegal transition {self.state.value} -> {target.value}",
                plugin_key=self.spec.plugin_key,
            )
        self.state = target

    @property
    def at_ceiling(self) -> bool:
        return self.running >= self.spec.concurrency

    def snapshot(self) -> dict[str, Any]:
        return {
            "job_key": self.key,
            "cron": self.spec.cron,
            "state": self.state.value,
            "running": self.running,
            "concurrency": self.spec.concurrency,
            "skipped": self.skipped,
            "runs": self.runs,
            "last_result": self.last_result.to_dict() if self.last_result else None,
        }
