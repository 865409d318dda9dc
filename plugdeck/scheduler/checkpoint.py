"""
Cursor checkpoint storage for incremental jobs.

A job that declares a ``cursor`` gets the last stored value handed to its
route on every run. A missing or expired checkpoint means the route should do
a full resync.
"""

from __future__ import annotations

import json
import time
from typing import Any, Callable, Optional

from redis.asyncio import Redis


def checkpoint_key(plugin_key: str, cursor_key: str) -> str:
    return f"cursor:{plugin_key}:{cursor_key}"


class CheckpointStore:
    """Key/value store with per-entry TTL."""

    async def get(self, key: str) -> Any:
        raise NotImplementedError

    async def set(self, key: str, value: Any, ttl_sec: int) -> None:
        raise NotImplementedError

    async def expire(self, key: str) -> None:
        raise NotImplementedError

    async def close(self) -> None:
        return None


class MemoryCheckpointStore(CheckpointStore):
    """In-process store. Only suitable for a single worker process."""

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._entries: dict[str, tuple[Any, float]] = {}

    async def get(self, key: str) -> Any:
        entry = self._entries.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if self._clock() >= expires_at:
            del self._entries[key]
            return None
        return value

    async def set(self, key: str, value: Any, ttl_sec: int) -> None:
        self._entries[key] = (value, self._clock() + ttl_sec)

    async def expire(self, key: str) -> None:
        self._entries.pop(key, None)

    async def close(self) -> None:
        self._entries.clear()


class RedisCheckpointStore(CheckpointStore):
    """Checkpoints shared between worker processes through Redis."""

    def __init__(self, client: Optional[Redis] = None, *, url: str = "redis://localhost:6379/0") -> None:
        self._client = client or Redis.from_url(url)

    async def get(self, key: str) -> Any:
        raw = await self._client.get(key)
        if raw is None:
            return None
        return json.loads(raw)

    async def set(self, key: str, value: Any, ttl_sec: int) -> None:
        await self._client.set(key, json.dumps(value), ex=ttl_sec)

    async def expire(self, key: str) -> None:
        await self._client.delete(key)

    async def close(self) -> None:
        await self._client.aclose()


def create_checkpoint_store(url: str) -> CheckpointStore:
    if url.startswith(("redis://", "rediss://")):
        return RedisCheckpointStore(url=url)
    if url.startswith("memory://"):
        return MemoryCheckpointStore()
    raise ValueError(f"Unsupported checkpoint store URL: {url}")
