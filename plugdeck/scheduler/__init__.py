from .checkpoint import CheckpointStore, MemoryCheckpointStore, RedisCheckpointStore, create_checkpoint_store
from .invoker import HttpRouteInvoker, RouteInvoker, RouteResult
from .jobs import JobRunResult, JobSpec, JobState
from .service import JobScheduler

__all__ = [
    "CheckpointStore",
    "HttpRouteInvoker",
    "JobRunResult",
    "JobScheduler",
    "JobSpec",
    "JobState",
    "MemoryCheckpointStore",
    "RedisCheckpointStore",
    "RouteInvoker",
    "RouteResult",
    "create_checkpoint_store",
]
