"""Services for rig-workspace."""

from .executor import CommandResult, ProcessExecutor
from .worker_pool import WorkerPool, get_default_pool
from .repository import Repository

__all__ = [
    "CommandResult",
    "ProcessExecutor",
    "WorkerPool",
    "get_default_pool",
    "Repository",
]
