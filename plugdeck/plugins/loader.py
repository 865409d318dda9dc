from __future__ import annotations

import asyncio
import functools
import json
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable

from plugdeck.observability.logging import StructuredLogger, loader_logger
from plugdeck.observability.metrics import runtime_metrics

from .errors import ManifestLoadTimeout, ManifestMalformed, ManifestNotFound, PluginRuntimeError
from .manifest import Manifest, parse_manifest

MANIFEST_FILENAME = "plugin.json"
PLUGIN_KEY_PATTERN = re.compile(r"^[a-zA-Z0-9._-]+$")


def is_valid_plugin_key(plugin_key: str) -> bool:
    return bool(PLUGIN_KEY_PATTERN.match(plugin_key)) and ".." not in plugin_key and plugin_key != "."


def load_manifest_file(path: str | Path, *, plugin_key: str | None = None) -> Manifest:
    """Read and parse one manifest file synchronously."""
    path = Path(path)
    try:
        raw = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        raise ManifestNotFound(f"Plugin manifest not found: {path}", plugin_key=plugin_key)
    except (OSError, UnicodeDecodeError) as e:
        raise ManifestNotFound(f"Plugin manifest unreadable: {path}: {e}", plugin_key=plugin_key)
    try:
        document = json.loads(raw)
    except json.JSONDecodeError as e:
        raise ManifestMalformed(f"Invalid JSON in {path}: {e}", plugin_key=plugin_key)
    return parse_manifest(document, plugin_key=plugin_key)


@dataclass
class LoadOutcome:
    plugin_key: str
    manifest: Manifest | None = None
    error: PluginRuntimeError | None = None

    @property
    def ok(self) -> bool:
        return self.manifest is not None


class ManifestLoader:
    """Reads plugin manifests from ``{plugins_dir}/{plugin_key}/plugin.json``.

    Manifests are read fresh on every call. Reads happen in the default
    executor and each one is bounded by ``load_timeout`` seconds.
    """

    def __init__(self, plugins_dir: str | Path, *, load_timeout: float = 5.0,
                 logger: StructuredLogger = loader_logger) -> None:
        self.plugins_dir = Path(plugins_dir)
        self.load_timeout = load_timeout
        self.logger = logger

    def manifest_path(self, plugin_key: str) -> Path:
        if not isinstance(plugin_key, str) or not is_valid_plugin_key(plugin_key):
            raise ManifestNotFound(f"Invalid plugin key: {plugin_key!r}", plugin_key=str(plugin_key))
        return self.plugins_dir / plugin_key / MANIFEST_FILENAME

    def discover(self) -> list[str]:
        if not self.plugins_dir.is_dir():
            return []
        return sorted(
            d.name for d in self.plugins_dir.iterdir()
            if d.is_dir() and is_valid_plugin_key(d.name) and (d / MANIFEST_FILENAME).is_file()
        )

    def read(self, plugin_key: str) -> Manifest:
        return load_manifest_file(self.manifest_path(plugin_key), plugin_key=plugin_key)

    async def load(self, plugin_key: str) -> Manifest:
        path = self.manifest_path(plugin_key)
        loop = asyncio.get_running_loop()
        try:
            manifest = await asyncio.wait_for(
                loop.run_in_executor(None, functools.partial(load_manifest_file, path, plugin_key=plugin_key)),
                timeout=self.load_timeout,
            )
        except asyncio.TimeoutError:
            runtime_metrics.record_manifest_load("timeout")
            raise ManifestLoadTimeout(
                f"Loading manifest for {plugin_key} exceeded {self.load_timeout}s",
                plugin_key=plugin_key,
            )
        except ManifestMalformed:
            runtime_metrics.record_manifest_load("malformed")
            raise
        except ManifestNotFound:
            runtime_metrics.record_manifest_load("not_found")
            raise
        runtime_metrics.record_manifest_load("ok")
        return manifest

    async def _outcome(self, plugin_key: str) -> LoadOutcome:
        try:
            return LoadOutcome(plugin_key, manifest=await self.load(plugin_key))
        except PluginRuntimeError as e:
            self.logger.manifest_load_failed(plugin_key, e)
            return LoadOutcome(plugin_key, error=e)

    async def load_many(self, plugin_keys: Iterable[str]) -> list[LoadOutcome]:
        """Load several manifests concurrently; failures are returned, not raised."""
        return list(await asyncio.gather(*(self._outcome(k) for k in plugin_keys)))
