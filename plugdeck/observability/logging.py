"""
Structured JSON logging for the plugin runtime.

Provides correlation IDs through context variables and event-typed helper
methods for the loader, menu composer, scheduler and worker. Extra fields are
passed through the event sanitizer before they are written, since they often
carry plugin-sourced values.
"""

import json
import uuid
import logging
from datetime import datetime, timezone
from typing import Optional, Dict, Any
from contextvars import ContextVar

from plugdeck.security.sanitizer import sanitize

# Context variables for correlation
REQUEST_ID: ContextVar[Optional[str]] = ContextVar('request_id', default=None)
PLUGIN_KEY: ContextVar[Optional[str]] = ContextVar('plugin_key', default=None)
JOB_KEY: ContextVar[Optional[str]] = ContextVar('job_key', default=None)
RUN_ID: ContextVar[Optional[str]] = ContextVar('run_id', default=None)
WORKER_ID: ContextVar[Optional[str]] = ContextVar('worker_id', default=None)

_CONTEXT_VARS = {
    'request_id': REQUEST_ID,
    'plugin_key': PLUGIN_KEY,
    'job_key': JOB_KEY,
    'run_id': RUN_ID,
    'worker_id': WORKER_ID,
}

# Runtime identifiers written as-is; everything else passes through sanitize()
_PLAIN_FIELDS = frozenset(_CONTEXT_VARS) | {
    'event_type', 'error_type', 'diagnostic', 'plugins', 'skipped_plugins', 'job_keys',
}


class StructuredLogger:
    """Structured JSON logger with correlation IDs."""

    def __init__(self, name: str, level: int = logging.INFO):
        self.logger = logging.getLogger(name)
        self.logger.setLevel(level)

        # Remove any existing handlers to avoid duplicates
        for handler in self.logger.handlers[:]:
            self.logger.removeHandler(handler)

        handler = logging.StreamHandler()
        handler.setFormatter(self.JSONFormatter())
        self.logger.addHandler(handler)
        self.logger.propagate = False

    class JSONFormatter(logging.Formatter):
        """JSON formatter with correlation IDs and structured fields."""

        def format(self, record):
            log_entry = {
                'timestamp': datetime.now(timezone.utc).isoformat().replace('+00:00', 'Z'),
                'level': record.levelname,
                'logger': record.name,
                'message': record.getMessage(),
                'module': record.module,
                'function': record.funcName,
                'line': record.lineno,
                'process': record.process,
            }

            for name, var in _CONTEXT_VARS.items():
                value = var.get()
                if value:
                    log_entry[name] = value

            if hasattr(record, 'extra_fields'):
                fields = record.extra_fields
                log_entry.update(sanitize({k: v for k, v in fields.items() if k not in _PLAIN_FIELDS}))
                log_entry.update({k: v for k, v in fields.items() if k in _PLAIN_FIELDS})

            if record.exc_info:
                log_entry['exception'] = self.formatException(record.exc_info)
                log_entry['exception_type'] = record.exc_info[0].__name__ if record.exc_info[0] else None

            return json.dumps(log_entry, default=str)

    def _log_with_extras(self, level: int, message: str, **extra_fields):
        self.logger.log(level, message, extra={'extra_fields': extra_fields})

    def setLevel(self, level) -> None:
        self.logger.setLevel(level)

    def debug(self, message: str, **extra_fields):
        self._log_with_extras(logging.DEBUG, message, **extra_fields)

    def info(self, message: str, **extra_fields):
        self._log_with_extras(logging.INFO, message, **extra_fields)

    def warning(self, message: str, **extra_fields):
        self._log_with_extras(logging.WARNING, message, **extra_fields)

    def error(self, message: str, **extra_fields):
        self._log_with_extras(logging.ERROR, message, **extra_fields)

    def critical(self, message: str, **extra_fields):
        self._log_with_extras(logging.CRITICAL, message, **extra_fields)

    def exception(self, message: str, **extra_fields):
        """Log exception with traceback and extra fields."""
        self.logger.exception(message, extra={'extra_fields': extra_fields})

    # Specialized logging methods for runtime events
    def manifest_load_failed(self, plugin_key: str, error: Exception):
        self.warning(
            f"Skipping plugin {plugin_key}: {error}",
            plugin_key=plugin_key,
            error_type=error.__class__.__name__,
            error=str(error),
            event_type="manifest_load_failed"
        )

    def menu_diagnostic(self, plugin_key: str, diagnostic: Exception):
        self.error(
            str(diagnostic),
            plugin_key=plugin_key,
            diagnostic=diagnostic.__class__.__name__,
            event_type="menu_diagnostic"
        )

    def job_registered(self, job_key: str, cron: str, concurrency: int):
        self.info(
            "Job registered",
            job_key=job_key,
            cron=cron,
            concurrency=concurrency,
            event_type="job_registered"
        )

    def job_skipped(self, job_key: str, running: int, concurrency: int):
        self.info(
            "Trigger skipped, concurrency ceiling reached",
            job_key=job_key,
            running=running,
            concurrency=concurrency,
            event_type="job_skipped"
        )

    def job_attempt_failed(self, job_key: str, attempt: int, error: BaseException, retry_in: Optional[float]):
        self.warning(
            f"Job {job_key} attempt {attempt} failed: {error}",
            job_key=job_key,
            attempt=attempt,
            error_type=error.__class__.__name__,
            retry_in_seconds=retry_in,
            event_type="job_attempt_failed"
        )

    def job_completed(self, job_key: str, status: str, attempts: int, duration_ms: float):
        level = logging.INFO if status == "success" else logging.ERROR
        self._log_with_extras(
            level,
            f"Job run {status}",
            job_key=job_key,
            status=status,
            attempts=attempts,
            latency_ms=duration_ms,
            event_type="job_completed"
        )

    def shutdown_requested(self, reason: str, already_in_progress: bool):
        self.info(
            "Shutdown already in progress" if already_in_progress else f"Shutdown requested ({reason})",
            reason=reason,
            already_in_progress=already_in_progress,
            event_type="shutdown_requested"
        )


def set_request_context(request_id: str = None, plugin_key: str = None,
                        job_key: str = None, run_id: str = None,
                        worker_id: str = None):
    """Set context for logging correlation."""
    if request_id:
        REQUEST_ID.set(request_id)
    if plugin_key:
        PLUGIN_KEY.set(plugin_key)
    if job_key:
        JOB_KEY.set(job_key)
    if run_id:
        RUN_ID.set(run_id)
    if worker_id:
        WORKER_ID.set(worker_id)


def clear_request_context():
    """Clear all context variables."""
    for ctx_var in _CONTEXT_VARS.values():
        ctx_var.set(None)


def get_request_context() -> Dict[str, Optional[str]]:
    """Get current context as dictionary."""
    return {name: var.get() for name, var in _CONTEXT_VARS.items()}


def generate_request_id() -> str:
    return f"req-{uuid.uuid4().hex[:8]}"


def generate_run_id() -> str:
    return f"run-{uuid.uuid4().hex[:8]}"


def configure_logging(level: str = "INFO") -> None:
    """Apply one log level to every runtime logger."""
    numeric = getattr(logging, level.upper(), logging.INFO)
    for structured in (loader_logger, menu_logger, scheduler_logger, worker_logger, api_logger):
        structured.setLevel(numeric)


# Pre-configured loggers for different components
loader_logger = StructuredLogger("plugdeck.loader")
menu_logger = StructuredLogger("plugdeck.menu")
scheduler_logger = StructuredLogger("plugdeck.scheduler")
worker_logger = StructuredLogger("plugdeck.worker")
api_logger = StructuredLogger("plugdeck.api")
