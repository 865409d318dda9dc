"""
Prometheus metrics for the plugin runtime.

Covers manifest loading, menu composition, settings validation and job
execution. All metrics live in a dedicated registry so tests and embedding
hosts do not collide with the default process registry.
"""

from prometheus_client import (
    Counter, Histogram, Gauge, CollectorRegistry, generate_latest,
    CONTENT_TYPE_LATEST
)

metrics_registry = CollectorRegistry()


class RuntimeMetrics:
    """Metrics for the plugin runtime."""

    def __init__(self, registry: CollectorRegistry = None):
        self.registry = registry or metrics_registry
        self._setup_metrics()

    def _setup_metrics(self):
        self.manifest_loads_total = Counter(
            'plugdeck_manifest_loads_total',
            'Manifest load attempts by outcome',
            ['outcome'],
            registry=self.registry
        )

        self.menu_diagnostics_total = Counter(
            'plugdeck_menu_diagnostics_total',
            'Non-fatal diagnostics emitted while composing menus',
            ['plugin_key', 'kind'],
            registry=self.registry
        )

        self.config_validations_total = Counter(
            'plugdeck_config_validations_total',
            'Settings validations by result',
            ['plugin_key', 'result'],
            registry=self.registry
        )

        self.job_runs_total = Counter(
            'plugdeck_job_runs_total',
            'Completed job runs by final status',
            ['job_key', 'status'],
            registry=self.registry
        )

        self.job_skipped_total = Counter(
            'plugdeck_job_skipped_total',
            'Triggers skipped because the job was at its concurrency ceiling',
            ['job_key'],
            registry=self.registry
        )

        self.job_retries_total = Counter(
            'plugdeck_job_retries_total',
            'Retry attempts scheduled after a failed job attempt',
            ['job_key'],
            registry=self.registry
        )

        self.job_duration = Histogram(
            'plugdeck_job_duration_seconds',
            'Wall time of a job run including retries',
            ['job_key', 'status'],
            buckets=(0.1, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 300.0, 600.0, float('inf')),
            registry=self.registry
        )

        self.jobs_running = Gauge(
            'plugdeck_jobs_running',
            'Job executions currently in flight',
            ['job_key'],
            registry=self.registry
        )

        self.jobs_registered = Gauge(
            'plugdeck_jobs_registered',
            'Jobs currently registered with the scheduler',
            registry=self.registry
        )

    def record_manifest_load(self, outcome: str):
        self.manifest_loads_total.labels(outcome=outcome).inc()

    def record_menu_diagnostic(self, plugin_key: str, kind: str):
        self.menu_diagnostics_total.labels(plugin_key=plugin_key, kind=kind).inc()

    def record_config_validation(self, plugin_key: str, valid: bool):
        self.config_validations_total.labels(
            plugin_key=plugin_key, result="valid" if valid else "invalid"
        ).inc()

    def record_job_run(self, job_key: str, status: str, duration: float):
        self.job_runs_total.labels(job_key=job_key, status=status).inc()
        self.job_duration.labels(job_key=job_key, status=status).observe(duration)

    def record_job_skipped(self, job_key: str):
        self.job_skipped_total.labels(job_key=job_key).inc()

    def record_job_retry(self, job_key: str):
        self.job_retries_total.labels(job_key=job_key).inc()

    def set_running(self, job_key: str, count: int):
        self.jobs_running.labels(job_key=job_key).set(count)

    def set_registered(self, count: int):
        self.jobs_registered.set(count)

    def export(self) -> bytes:
        return generate_latest(self.registry)

    @property
    def content_type(self) -> str:
        return CONTENT_TYPE_LATEST


runtime_metrics = RuntimeMetrics()
