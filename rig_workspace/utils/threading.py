"""Threading utilities for sizing the git worker pool."""

import os
import sys
from typing import Dict, Any, Optional

# git subprocesses are I/O bound; more threads than this only adds lock contention
MAX_WORKERS_GIL = 32
MAX_WORKERS_FREE_THREADING = 64


def is_free_threading_enabled() -> bool:
    """Detect if Python is running with the GIL disabled (3.13+ free-threading build)."""
    is_gil_enabled = getattr(sys, "_is_gil_enabled", None)
    if is_gil_enabled is None:
        return False
    return not is_gil_enabled()


def get_python_threading_mode() -> str:
    """Describe the interpreter's threading mode."""
    if not hasattr(sys, "_is_gil_enabled"):
        return "GIL-enabled (Python < 3.13)"
    return "free-threading" if is_free_threading_enabled() else "GIL-enabled"


def get_optimal_worker_count(user_specified: Optional[int] = None) -> int:
    """Calculate how many worker threads should run blocking git work.

    Args:
        user_specified: Explicit worker count, used as-is when positive

    Returns:
        Number of workers for the pool
    """
    if user_specified is not None and user_specified > 0:
        return user_specified

    cpu_count = os.cpu_count() or 1

    if is_free_threading_enabled():
        return min(MAX_WORKERS_FREE_THREADING, cpu_count * 2)

    # Threads mostly wait on git processes, so oversubscribe the CPUs a little
    return min(MAX_WORKERS_GIL, cpu_count + 4)


def get_threading_info() -> Dict[str, Any]:
    """Summarize threading configuration for debug output."""
    return {
        "mode": get_python_threading_mode(),
        "free_threading": is_free_threading_enabled(),
        "cpu_count": os.cpu_count() or 1,
        "optimal_workers": get_optimal_worker_count(),
        "python_version": f"{sys.version_info.major}.{sys.version_info.minor}.{sys.version_info.micro}",
    }
