# plugdeck/workers/runner.py
"""
Long-lived worker process that runs plugin jobs on their cron schedules.

Start with ``plugdeck worker`` or ``python -m plugdeck.workers.runner``.
SIGTERM and SIGINT trigger one graceful shutdown; repeated signals while it
is in progress are ignored.
"""

import asyncio
import signal
import sys
import uuid
from typing import Optional

from prometheus_client import start_http_server

from plugdeck.config import RuntimeSettings
from plugdeck.observability.logging import configure_logging, set_request_context, worker_logger
from plugdeck.observability.metrics import runtime_metrics
from plugdeck.plugins.errors import PluginRuntimeError
from plugdeck.plugins.loader import ManifestLoader
from plugdeck.scheduler.checkpoint import create_checkpoint_store
from plugdeck.scheduler.invoker import HttpRouteInvoker
from plugdeck.scheduler.service import JobScheduler
from plugdeck.workers.config import WorkerConfig, WorkerState

SHUTDOWN_SIGNALS = (signal.SIGTERM, signal.SIGINT)


class WorkerProcess:
    """Registers enabled plugins' jobs and supervises the scheduler."""

    def __init__(self, config: WorkerConfig, *, scheduler: Optional[JobScheduler] = None,
                 loader: Optional[ManifestLoader] = None):
        self.config = config
        self.logger = worker_logger
        self.state = WorkerState.STARTING
        self.loader = loader or config.settings.make_loader()
        self.scheduler = scheduler or JobScheduler(
            create_checkpoint_store(config.checkpoint_url),
            HttpRouteInvoker(config.route_base_url, mount_root=config.settings.mount_root),
            timezone=config.timezone,
            misfire_grace_time=config.misfire_grace_time,
        )
        self.registered: dict[str, list[str]] = {}
        self.failed: dict[str, str] = {}
        self._stop_event = asyncio.Event()

    async def startup(self) -> None:
        """Load enabled plugins concurrently and register their jobs."""
        set_request_context(worker_id=self.config.worker_id)
        keys = self.config.settings.plugin_keys(self.loader)
        self.logger.info(f"Worker {self.config.worker_id} starting", plugins=keys)

        for outcome in await self.loader.load_many(keys):
            if not outcome.ok:
                self.failed[outcome.plugin_key] = str(outcome.error)
                continue
            if not outcome.manifest.jobs:
                continue
            try:
                self.registered[outcome.plugin_key] = self.scheduler.register_manifest(
                    outcome.plugin_key, outcome.manifest
                )
            except PluginRuntimeError as e:
                self.logger.warning(
                    f"Skipping jobs of {outcome.plugin_key}: {e}",
                    plugin_key=outcome.plugin_key,
                    error_type=e.__class__.__name__,
                )
                self.failed[outcome.plugin_key] = str(e)

        if self.config.metrics_port:
            start_http_server(self.config.metrics_port, registry=runtime_metrics.registry)
            self.logger.info("Metrics endpoint listening", port=self.config.metrics_port)

        self.scheduler.start()
        self.state = WorkerState.READY
        self.logger.info(
            "Worker ready",
            jobs=sum(len(v) for v in self.registered.values()),
            skipped_plugins=sorted(self.failed),
        )

    def request_shutdown(self, reason: str = "signal") -> bool:
        """Ask the worker to stop. Returns False if a shutdown was already requested."""
        already = self._stop_event.is_set()
        self.logger.shutdown_requested(reason, already_in_progress=already)
        if already:
            return False
        self.state = WorkerState.STOPPING
        self._stop_event.set()
        return True

    def _loop_exception_handler(self, loop, context):
        error = context.get("exception")
        self.logger.error(
            f"Unhandled event loop error: {context.get('message')}",
            error=str(error) if error else None,
            error_type=error.__class__.__name__ if error else None,
        )
        self.request_shutdown("loop_fault")

    def install_signal_handlers(self, loop: asyncio.AbstractEventLoop) -> None:
        for sig in SHUTDOWN_SIGNALS:
            loop.add_signal_handler(sig, self.request_shutdown, sig.name)
        loop.set_exception_handler(self._loop_exception_handler)

    def remove_signal_handlers(self, loop: asyncio.AbstractEventLoop) -> None:
        for sig in SHUTDOWN_SIGNALS:
            loop.remove_signal_handler(sig)
        loop.set_exception_handler(None)

    async def run(self, *, install_signals: bool = True) -> int:
        """Run until shutdown is requested. Returns the process exit code."""
        loop = asyncio.get_running_loop()
        if install_signals:
            self.install_signal_handlers(loop)
        try:
            try:
                await self.startup()
            except Exception as e:
                self.state = WorkerState.ERROR
                self.logger.exception(f"Worker startup failed: {e}")
                await self.scheduler.shutdown(timeout=self.config.graceful_shutdown_timeout)
                return 1

            await self._stop_event.wait()
            self.logger.info(f"Worker {self.config.worker_id} shutting down gracefully")
            await self.scheduler.shutdown(timeout=self.config.graceful_shutdown_timeout)
            self.state = WorkerState.STOPPED
            self.logger.info(f"Worker {self.config.worker_id} shutdown complete", jobs=self.scheduler.status())
            return 0
        finally:
            if install_signals:
                self.remove_signal_handlers(loop)


def main(settings: Optional[RuntimeSettings] = None) -> int:
    """Main entry point for worker process."""
    worker_id = f"worker-{uuid.uuid4().hex[:12]}"
    try:
        config = WorkerConfig.from_environment(worker_id)
        if settings is not None:
            config.settings = settings
        configure_logging(config.settings.log_level)
        worker = WorkerProcess(config)
    except Exception as e:
        worker_logger.error(f"Fatal worker configuration error: {e}", error_type=e.__class__.__name__)
        return 1
    try:
        return asyncio.run(worker.run())
    except KeyboardInterrupt:
        return 0


if __name__ == "__main__":
    sys.exit(main())
