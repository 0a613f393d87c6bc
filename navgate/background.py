import asyncio
import logging
from typing import Awaitable, Callable, Dict, Optional

logger = logging.getLogger(__name__)


class BackgroundTasks:
    """
    Named fire-and-forget fetches scheduled from synchronous reads.

    At most one task per name is pending; scheduling while one is in flight
    returns the existing task. Without a running event loop nothing is
    scheduled and the caller keeps its fail-closed answer.
    """

    def __init__(self) -> None:
        self._tasks: Dict[str, asyncio.Task] = {}

    def spawn(self, name: str, factory: Callable[[], Awaitable[object]]) -> Optional[asyncio.Task]:
        existing = self._tasks.get(name)
        if existing is not None and not existing.done():
            return existing
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("No running event loop, background fetch skipped", extra={"task": name})
            return None

        task = loop.create_task(factory())
        self._tasks[name] = task
        task.add_done_callback(lambda finished: self._on_done(name, finished))
        return task

    def pending(self, name: str) -> bool:
        task = self._tasks.get(name)
        return task is not None and not task.done()

    def _on_done(self, name: str, task: asyncio.Task) -> None:
        if self._tasks.get(name) is task:
            del self._tasks[name]
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.warning(
                "Background fetch failed",
                extra={"task": name, "error": str(error)},
            )

    async def drain(self) -> None:
        """Wait for every currently scheduled task to settle."""
        while True:
            pending = [task for task in self._tasks.values() if not task.done()]
            if not pending:
                return
            await asyncio.gather(*pending, return_exceptions=True)

    def cancel_all(self) -> None:
        for task in list(self._tasks.values()):
            task.cancel()
        self._tasks = {}
