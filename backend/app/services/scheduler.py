import asyncio
import logging
from typing import Awaitable, Callable, Dict, Set

logger = logging.getLogger(__name__)


class Scheduler:
    """
    Delayed callbacks on the running event loop, grouped by owner
    (a connection id, or "room" for room-wide actions) so that all of a
    connection's pending work can be cancelled when it goes away.
    """

    def __init__(self):
        self._tasks: Dict[str, Set[asyncio.Task]] = {}

    def call_later(self, delay: float, callback: Callable[[], Awaitable[None]], owner: str) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(self._run(delay, callback, owner))
        self._tasks.setdefault(owner, set()).add(task)
        task.add_done_callback(lambda t: self._forget(owner, t))
        return task

    async def _run(self, delay: float, callback: Callable[[], Awaitable[None]], owner: str):
        await asyncio.sleep(delay)
        try:
            await callback()
        except Exception as e:
            logger.error(f"Scheduled callback for {owner} failed: {e}", exc_info=True)

    def _forget(self, owner: str, task: asyncio.Task):
        tasks = self._tasks.get(owner)
        if tasks is None:
            return
        tasks.discard(task)
        if not tasks:
            self._tasks.pop(owner, None)

    def pending(self, owner: str = None) -> int:
        if owner is not None:
            return len(self._tasks.get(owner, ()))
        return sum(len(tasks) for tasks in self._tasks.values())

    def cancel_owner(self, owner: str) -> int:
        tasks = self._tasks.pop(owner, set())
        for task in tasks:
            task.cancel()
        return len(tasks)

    def cancel_all(self):
        for owner in list(self._tasks):
            self.cancel_owner(owner)

    async def drain(self):
        """Wait until every scheduled callback (including ones they schedule) has run."""
        while True:
            tasks = [t for group in self._tasks.values() for t in group if not t.done()]
            if not tasks:
                return
            await asyncio.gather(*tasks, return_exceptions=True)
