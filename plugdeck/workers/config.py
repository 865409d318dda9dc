"""
Configuration for the job worker process.
"""

import os
import enum
from dataclasses import dataclass, field
from typing import Optional

from plugdeck.config import RuntimeSettings


class WorkerState(enum.Enum):
    STARTING = "starting"
    READY = "ready"
    STOPPING = "stopping"
    STOPPED = "stopped"
    ERROR = "error"


def default_checkpoint_url() -> str:
    return os.environ.get("PLUGDECK_CHECKPOINT_URL") or os.environ.get("REDIS_URL") or "memory://"


@dataclass
class WorkerConfig:
    """Configuration for worker processes."""

    worker_id: str
    settings: RuntimeSettings = field(default_factory=RuntimeSettings)

    # Job execution
    checkpoint_url: str = "memory://"
    route_base_url: str = "http://localhost:3000"
    timezone: str = "UTC"
    misfire_grace_time: int = 30  # seconds

    # Operational limits
    graceful_shutdown_timeout: float = 30.0  # seconds

    # Observability
    metrics_port: Optional[int] = None

    @classmethod
    def from_environment(cls, worker_id: str) -> "WorkerConfig":
        """Create configuration from environment variables."""
        metrics_port = os.environ.get("PLUGDECK_METRICS_PORT")
        return cls(
            worker_id=worker_id,
            settings=RuntimeSettings.from_environment(),
            checkpoint_url=default_checkpoint_url(),
            route_base_url=os.environ.get("PLUGDECK_ROUTE_BASE_URL", "http://localhost:3000"),
            timezone=os.environ.get("TZ", "UTC"),
            misfire_grace_time=int(os.environ.get("PLUGDECK_MISFIRE_GRACE", "30")),
            graceful_shutdown_timeout=float(os.environ.get("PLUGDECK_SHUTDOWN_TIMEOUT", "30")),
            metrics_port=int(metrics_port) if metrics_port else None,
        )

    @classmethod
    def from_dict(cls, config_dict: dict) -> "WorkerConfig":
        """Create configuration from dictionary."""
        return cls(
            worker_id=config_dict["worker_id"],
            settings=RuntimeSettings.from_dict(config_dict.get("settings", {})),
            checkpoint_url=config_dict.get("checkpoint_url", "memory://"),
            route_base_url=config_dict.get("route_base_url", "http://localhost:3000"),
            timezone=config_dict.get("timezone", "UTC"),
            misfire_grace_time=config_dict.get("misfire_grace_time", 30),
            graceful_shutdown_timeout=config_dict.get("graceful_shutdown_timeout", 30.0),
            metrics_port=config_dict.get("metrics_port"),
        )
