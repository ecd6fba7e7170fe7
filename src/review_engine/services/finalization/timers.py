"""Single-owner registry of delayed asyncio actions."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Hashable

import structlog

logger = structlog.get_logger()


class TimerRegistry:
    """Keyed timers where scheduling a key first cancels its existing timer.

    Every timer is an asyncio task owned by the registry; it removes itself
    when it fires. ``close`` cancels whatever is still pending.
    """

    def __init__(self) -> None:
        self._tasks: dict[Hashable, asyncio.Task] = {}

    def __contains__(self, key: Hashable) -> bool:
        return key in self._tasks

    def __len__(self) -> int:
        return len(self._tasks)

    def schedule(
        self,
        key: Hashable,
        delay_seconds: float,
        action: Callable[[], Awaitable[object]],
    ) -> asyncio.Task:
        """Run ``action`` after ``delay_seconds`` (immediately when not positive)."""
        self.cancel(key)
        task = asyncio.get_running_loop().create_task(
            self._fire(key, max(0.0, delay_seconds), action)
        )
        self._tasks[key] = task
        return task

    def schedule_if_absent(
        self,
        key: Hashable,
        delay_seconds: float,
        action: Callable[[], Awaitable[object]],
    ) -> bool:
        """Schedule only when no timer is pending for ``key``."""
        if key in self._tasks:
            return False
        self.schedule(key, delay_seconds, action)
        return True

    def cancel(self, key: Hashable) -> bool:
        task = self._tasks.pop(key, None)
        if task is None:
            return False
        if task is not asyncio.current_task():
            task.cancel()
        return True

    async def close(self) -> None:
        tasks = list(self._tasks.values())
        self._tasks.clear()
        current = asyncio.current_task()
        for task in tasks:
            if task is not current:
                task.cancel()
        await asyncio.gather(*(t for t in tasks if t is not current), return_exceptions=True)

    async def _fire(
        self,
        key: Hashable,
        delay_seconds: float,
        action: Callable[[], Awaitable[object]],
    ) -> None:
        await asyncio.sleep(delay_seconds)
        if self._tasks.get(key) is asyncio.current_task():
            del self._tasks[key]
        try:
            await action()
        except Exception as e:
            logger.error("timer_action_failed", key=str(key), error=str(e))
