import asyncio
import logging
from typing import Any, Awaitable, Callable

logger = logging.getLogger(__name__)


class Refresher:
    """One recompute operation fed by any number of triggers.

    Every run takes a generation number. A result is published only if no
    newer run started in the meantime and the refresher has not been
    disposed, so overlapping runs are harmless and a late fetch cannot
    reach a view that has gone away.
    """

    def __init__(self, fetch: Callable[[], Awaitable[Any]], publish: Callable[[Any], None], name: str = "refresh"):
        self._fetch = fetch
        self._publish = publish
        self.name = name
        self.generation = 0
        self.disposed = False
        self._tasks: set[asyncio.Task] = set()

    async def run(self) -> bool:
        if self.disposed:
            return False
        self.generation += 1
        generation = self.generation
        result = await self._fetch()
        if self.disposed or generation != self.generation:
            logger.debug("%s: dropping stale result of run %s", self.name, generation)
            return False
        if result is None:
            return False
        self._publish(result)
        return True

    def trigger(self, *_: Any) -> asyncio.Task | None:
        if self.disposed:
            return None
        task = asyncio.get_running_loop().create_task(self.run())
        self._tasks.add(task)
        task.add_done_callback(self._finished)
        return task

    def _finished(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error("%s failed", self.name, exc_info=task.exception())

    def pending(self) -> list[asyncio.Task]:
        return [task for task in self._tasks if not task.done()]

    async def wait(self) -> None:
        while self.pending():
            await asyncio.gather(*self.pending(), return_exceptions=True)

    async def dispose(self) -> None:
        self.disposed = True
        self.generation += 1
        tasks = self.pending()
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
