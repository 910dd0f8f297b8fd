"""
cachewatch - Cancellable timers on the running event loop
"""
import asyncio
import inspect
import logging
from typing import Any, Callable, Set

logger = logging.getLogger(__name__)


async def _run_callback(callback: Callable[[], Any], name: str):
    try:
        result = callback()
        if inspect.isawaitable(result):
            await result
    except asyncio.CancelledError:
        raise
    except Exception:
        logger.exception("Timer callback %s failed", name)


class TimerGroup:
    """Owns delayed and periodic tasks so they can be cancelled together"""

    def __init__(self, name: str = "timers"):
        self.name = name
        self._tasks: Set[asyncio.Task] = set()
        self._generation = 0

    def __len__(self) -> int:
        return len(self._tasks)

    def _track(self, coro, name: str) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    def call_later(self, delay: float, callback: Callable[[], Any], name: str = "call_later") -> asyncio.Task:
        """Run callback once after delay seconds"""
        async def runner():
            await asyncio.sleep(delay)
            await _run_callback(callback, name)

        return self._track(runner(), name)

    def call_every(self, interval: float, callback: Callable[[], Any], name: str = "call_every") -> asyncio.Task:
        """Run callback every interval seconds, first run after one interval"""
        generation = self._generation

        async def runner():
            while generation == self._generation:
                await asyncio.sleep(interval)
                await _run_callback(callback, name)

        return self._track(runner(), name)

    def cancel_all(self):
        """Cancel every task. A callback may call this on its own group; its
        task then finishes the current callback and stops repeating."""
        self._generation += 1
        try:
            current = asyncio.current_task()
        except RuntimeError:
            current = None
        for task in list(self._tasks):
            if task is not current:
                task.cancel()
        self._tasks.clear()
