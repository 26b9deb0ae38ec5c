import asyncio
import logging
from typing import Any, Awaitable, Set

logger = logging.getLogger(__name__)


class BackgroundTaskQueue:
    """Detached side effects (audit writes, cache stores, learning hooks).

    Submitted coroutines run as independent tasks. Failures are logged and
    never reach the turn that submitted them. The queue keeps a reference to
    every pending task until it finishes.
    """

    def __init__(self):
        self._tasks: Set[asyncio.Task] = set()

    def __len__(self) -> int:
        return len(self._tasks)

    def submit(self, coro: Awaitable[Any], name: str = "background") -> asyncio.Task:
        task = asyncio.ensure_future(coro)
        task.set_name(name)
        self._tasks.add(task)
        task.add_done_callback(self._on_done)
        return task

    def _on_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            logger.debug(f"Background task {task.get_name()} was cancelled")
            return
        exc = task.exception()
        if exc is not None:
            logger.warning(f"Background task {task.get_name()} failed: {exc}")

    async def drain(self, timeout: float = 5.0) -> None:
        """Wait for pending tasks, cancelling whatever is still running after ``timeout``."""
        if not self._tasks:
            return
        pending = list(self._tasks)
        _, still_pending = await asyncio.wait(pending, timeout=timeout)
        for task in still_pending:
            task.cancel()
        if still_pending:
            logger.warning(f"Cancelled {len(still_pending)} background task(s) on shutdown")
