"""
Shared pytest fixtures for plugdeck tests.

Manifests are written into a temporary plugins directory per test; job
execution uses an in-memory route invoker and checkpoint store so no network
or Redis is needed.
"""

import json
import asyncio
from typing import Any, Dict, Optional

import pytest

from plugdeck.plugins.loader import ManifestLoader
from plugdeck.plugins.manifest import parse_manifest
from plugdeck.scheduler.checkpoint import MemoryCheckpointStore
from plugdeck.scheduler.invoker import RouteInvoker, RouteResult
from plugdeck.scheduler.service import JobScheduler


def manifest_doc(plugin_id: str = "github", **overrides) -> Dict[str, Any]:
    """A minimal valid plugin.json document."""
    doc = {
        "id": plugin_id,
        "name": plugin_id.title(),
        "version": "1.0.0",
        "description": f"{plugin_id} integration",
    }
    doc.update(overrides)
    return doc


def job_manifest(plugin_id: str = "github", **job_overrides):
    """A parsed manifest with one POST /sync route and one job bound to it."""
    job = {"name": "sync", "route": "/sync", "cron": "*/5 * * * *", "timeoutSec": 5, "concurrency": 1}
    job.update(job_overrides)
    return parse_manifest(manifest_doc(
        plugin_id,
        routes=[{"method": "POST", "path": "/sync", "auth": "plugin"}],
        jobs=[job],
    ))


class FakeInvoker(RouteInvoker):
    """Route invoker that records calls and replays scripted outcomes."""

    def __init__(self, outcomes=None, gate: Optional[asyncio.Event] = None):
        self.calls = []
        self.outcomes = list(outcomes or [])
        self.gate = gate
        self.closed = False

    async def invoke(self, plugin_key, route, payload):
        self.calls.append({"plugin_key": plugin_key, "path": route.path, **payload})
        if self.gate is not None:
            await self.gate.wait()
        outcome = self.outcomes.pop(0) if self.outcomes else RouteResult(processed=0)
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome

    async def close(self):
        self.closed = True


class RecordingSleep:
    """Sleep replacement that returns immediately and records each delay."""

    def __init__(self):
        self.delays = []

    async def __call__(self, delay):
        self.delays.append(delay)
        return True


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


@pytest.fixture
def plugins_dir(tmp_path):
    path = tmp_path / "plugins"
    path.mkdir()
    return path


@pytest.fixture
def write_manifest(plugins_dir):
    """Write ``plugins/{key}/plugin.json`` from a dict, overrides or raw text."""
    def _write(key: str, document: Optional[Dict[str, Any]] = None, *, raw: Optional[str] = None, **overrides):
        target = plugins_dir / key
        target.mkdir(parents=True, exist_ok=True)
        text = raw if raw is not None else json.dumps(document or manifest_doc(key, **overrides))
        (target / "plugin.json").write_text(text, encoding="utf-8")
        return target
    return _write


@pytest.fixture
def loader(plugins_dir):
    return ManifestLoader(plugins_dir, load_timeout=2.0)


@pytest.fixture
def invoker():
    return FakeInvoker()


@pytest.fixture
def recording_sleep():
    return RecordingSleep()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def checkpoints(clock):
    return MemoryCheckpointStore(clock=clock)


@pytest.fixture
def scheduler(checkpoints, invoker, recording_sleep):
    return JobScheduler(checkpoints, invoker, sleep=recording_sleep)
