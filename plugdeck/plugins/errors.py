"""
Error taxonomy for the plugin runtime.

Every error carries the plugin key it concerns (when known) so aggregate
operations can report and skip a single plugin without losing context.
"""

from __future__ import annotations

from typing import Any, Optional, Sequence


class PluginRuntimeError(Exception):
    """Base exception for plugin runtime errors."""

    def __init__(self, message: str, *, plugin_key: Optional[str] = None):
        self.plugin_key = plugin_key
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.__class__.__name__,
            "plugin_key": self.plugin_key,
            "message": str(self),
        }


# Manifest errors

class ManifestNotFound(PluginRuntimeError):
    """Raised when no manifest can be addressed for a plugin key."""


class ManifestLoadTimeout(ManifestNotFound):
    """Raised when reading a manifest takes longer than the load timeout."""


class ManifestMalformed(PluginRuntimeError):
    """Raised when a manifest exists but cannot be decoded into a Manifest."""


# Settings validation errors

class SchemaProgrammerError(PluginRuntimeError):
    """A defect in the plugin's own settings schema, not in user input."""

    def __init__(self, message: str, *, field: Optional[str] = None, plugin_key: Optional[str] = None):
        self.field = field
        super().__init__(message, plugin_key=plugin_key)


class ValidationFailed(PluginRuntimeError):
    """Raised with the complete list of violations for a settings object."""

    def __init__(self, errors: Sequence[Any], *, plugin_key: Optional[str] = None):
        self.errors = list(errors)
        fields = ", ".join(sorted({e.field for e in self.errors}))
        super().__init__(f"Configuration is invalid ({len(self.errors)} errors: {fields})", plugin_key=plugin_key)

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data["errors"] = [e.to_dict() for e in self.errors]
        return data


# Menu diagnostics (never raised by composition, returned and logged instead)

class MenuDepthExceeded(PluginRuntimeError):
    """A level-2 menu entry declared children; the grandchildren were dropped."""

    def __init__(self, plugin_key: str, path: str, dropped: int = 0):
        self.path = path
        self.dropped = dropped
        super().__init__(
            f"Maximum menu depth (2) exceeded in {plugin_key}: path {path} has children; "
            f"{dropped} level-3 entries truncated",
            plugin_key=plugin_key,
        )

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data.update(path=self.path, dropped=self.dropped)
        return data


class InvalidMenuItem(PluginRuntimeError):
    """A menu entry without a usable label or path; the entry was dropped."""

    def __init__(self, plugin_key: str, reason: str, parent: Optional[str] = None):
        self.parent = parent
        where = f" (parent: {parent})" if parent else ""
        super().__init__(f"Invalid menu item in {plugin_key}{where}: {reason}", plugin_key=plugin_key)


# Scheduler errors

class InvalidJobSpec(PluginRuntimeError):
    """Raised when a manifest job declaration cannot be scheduled."""

    def __init__(self, message: str, *, plugin_key: Optional[str] = None, job_name: Optional[str] = None):
        self.job_name = job_name
        super().__init__(message, plugin_key=plugin_key)


class UnknownJob(PluginRuntimeError, KeyError):
    """Raised when a job key is not registered with the scheduler."""

    def __str__(self) -> str:
        return self.args[0] if self.args else ""


class InvalidStateTransition(PluginRuntimeError):
    """Raised on an illegal job state machine transition."""


class SchedulerNotRunning(PluginRuntimeError):
    """Raised when a run is requested while the scheduler is shutting down."""


class ConcurrencyCeilingReached(PluginRuntimeError):
    """A trigger was skipped because the job is already at its concurrency ceiling."""

    def __init__(self, job_key: str, concurrency: int, *, plugin_key: Optional[str] = None):
        self.job_key = job_key
        self.concurrency = concurrency
        super().__init__(
            f"Job {job_key} already running {concurrency} instance(s); trigger skipped",
            plugin_key=plugin_key,
        )


class RetryExhausted(PluginRuntimeError):
    """Final failure of a run after its backoff schedule was consumed."""

    def __init__(self, job_key: str, attempts: int, cause: Optional[BaseException] = None,
                 *, plugin_key: Optional[str] = None):
        self.job_key = job_key
        self.attempts = attempts
        self.cause = cause
        super().__init__(
            f"Job {job_key} failed after {attempts} attempts: {cause}",
            plugin_key=plugin_key,
        )
