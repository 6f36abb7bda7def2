from typing import Awaitable, Callable, Optional, Set
import asyncio
import logging


class TaskTracker:
    """Runs fire-and-forget coroutines with a concurrency bound.

    Every submitted task is kept until it finishes so that shutdown can wait
    for it. Failures are logged, never raised to the submitter.
    """

    def __init__(self, limit: int = 4, stop_event: Optional[asyncio.Event] = None):
        self.limit = limit
        self.stop_event = stop_event or asyncio.Event()
        self._semaphore = asyncio.Semaphore(limit)
        self._tasks: Set[asyncio.Task] = set()

    @property
    def pending(self) -> int:
        return len(self._tasks)

    def submit(self, coro_fn: Callable[..., Awaitable], *args, name: Optional[str] = None) -> Optional[asyncio.Task]:
        """Schedule a coroutine function on the running loop.

        Args:
            coro_fn (Callable): The coroutine function to run.
            *args: Arguments passed to the coroutine function.
            name (str, optional): Task name, used in log messages.

        Returns:
            asyncio.Task: The scheduled task, None if the tracker is shut down.
        """
        if self.stop_event.is_set():
            logging.warning(f"Background task {name or coro_fn.__name__} rejected, shutting down")
            return None
        task = asyncio.create_task(self._run(coro_fn, *args), name=name)
        self._tasks.add(task)
        task.add_done_callback(self._on_done)
        return task

    async def join(self):
        """Wait until every task submitted so far has finished."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def shutdown(self, timeout: float = 10.0):
        """Refuse new work, wait for outstanding tasks, cancel what is left after the timeout."""
        self.stop_event.set()
        if not self._tasks:
            return
        done, pending = await asyncio.wait(list(self._tasks), timeout=timeout)
        for task in pending:
            task.cancel()
        if pending:
            logging.warning(f"Cancelled {len(pending)} background tasks still running after {timeout}s")
            await asyncio.gather(*pending, return_exceptions=True)

    async def _run(self, coro_fn: Callable[..., Awaitable], *args):
        async with self._semaphore:
            if self.stop_event.is_set():
                return None
            return await coro_fn(*args)

    def _on_done(self, task: asyncio.Task):
        self._tasks.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logging.error(f"Background task {task.get_name()} failed: {error}", exc_info=error)
