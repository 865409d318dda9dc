"""
Observability package for plugdeck.

Structured JSON logging with correlation IDs and Prometheus metrics for the
manifest loader, menu composer, scheduler and worker.
"""

from .metrics import RuntimeMetrics, metrics_registry, runtime_metrics
from .logging import StructuredLogger, configure_logging, set_request_context, generate_request_id

__all__ = [
    "RuntimeMetrics",
    "metrics_registry",
    "runtime_metrics",
    "StructuredLogger",
    "configure_logging",
    "set_request_context",
    "generate_request_id",
]
