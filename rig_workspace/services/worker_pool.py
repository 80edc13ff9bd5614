"""Bounded worker pool that turns blocking git work into awaitable units."""

import asyncio
import functools
from concurrent.futures import ThreadPoolExecutor
from threading import Lock
from typing import Awaitable, Callable, Optional, TypeVar

from rig_workspace.logging_config import get_logger
from rig_workspace.utils.threading import get_optimal_worker_count

logger = get_logger(__name__)

T = TypeVar("T")

_default_pool: Optional["WorkerPool"] = None
_default_pool_lock = Lock()


class WorkerPool:
    """Thread pool shared by repositories for process spawns and filesystem work.

    Work submitted through ``run`` can be cancelled while it is still queued.
    Once a thread has picked it up it runs to completion and a cancelled
    caller simply never sees the result.
    """

    def __init__(self, max_workers: Optional[int] = None):
        self.max_workers = get_optimal_worker_count(max_workers)
        self._executor = ThreadPoolExecutor(
            max_workers=self.max_workers, thread_name_prefix="rig-workspace"
        )
        self._background: set = set()  # Gated bodies whose callers went away
        logger.debug(f"Worker pool started with {self.max_workers} workers")

    async def run(self, fn: Callable[..., T], *args, **kwargs) -> T:
        """Run a blocking callable on the pool and await its result."""
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(self._executor, functools.partial(fn, *args, **kwargs))

    async def serialized(
        self,
        gate: asyncio.Lock,
        operation: str,
        body: Callable[[], Awaitable[T]],
    ) -> T:
        """Run ``body`` while holding ``gate``.

        The body runs as its own task. Cancelling the caller while the body
        is still waiting for the gate cancels it; cancelling after it acquired
        the gate leaves it running until it finishes, so the gate is never
        released under a half-done mutation.
        """
        launched = False

        async def gated() -> T:
            nonlocal launched
            async with gate:
                launched = True
                return await body()

        task = asyncio.ensure_future(gated())
        try:
            return await asyncio.shield(task)
        except asyncio.CancelledError:
            if not launched:
                task.cancel()
            elif not task.done():
                logger.debug(f"{operation} already launched; finishing it without a caller")
                self._background.add(task)
                task.add_done_callback(functools.partial(self._finish_background, operation))
            else:
                self._finish_background(operation, task)
            raise

    def _finish_background(self, operation: str, task: asyncio.Task) -> None:
        self._background.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.warning(f"{operation} failed after its caller was cancelled: {error}")

    @property
    def pending_background(self) -> int:
        """Number of gated operations still finishing for cancelled callers."""
        return len(self._background)

    def shutdown(self, wait: bool = True) -> None:
        """Stop accepting work and release the threads."""
        self._executor.shutdown(wait=wait)


def get_default_pool(max_workers: Optional[int] = None) -> WorkerPool:
    """Return the process-wide pool, creating it on first use."""
    global _default_pool
    with _default_pool_lock:
        if _default_pool is None:
            _default_pool = WorkerPool(max_workers)
        elif max_workers is not None:
            requested = get_optimal_worker_count(max_workers)
            if requested != _default_pool.max_workers:
                logger.warning(
                    f"Default worker pool already has {_default_pool.max_workers} workers; "
                    f"ignoring request for {requested}"
                )
        return _default_pool
