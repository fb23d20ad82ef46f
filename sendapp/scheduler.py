"""Deferred callbacks keyed by chat.

:class:`AsyncioScheduler` drives production timers from the running event
loop. :class:`VirtualScheduler` keeps the same contract against a
:class:`VirtualClock` so tests can step time explicitly.
"""

from __future__ import annotations

import asyncio
import heapq
import itertools
import logging
import time
from abc import ABC, abstractmethod
from typing import Awaitable, Callable, Hashable, List, Optional, Set, Tuple

from sendapp.utils.logging_helpers import LoggerLike


DeferredCallback = Callable[[], Awaitable[None]]


class Clock(ABC):
    @abstractmethod
    def monotonic(self) -> float:
        ...


class SystemClock(Clock):
    def monotonic(self) -> float:
        return time.monotonic()


class VirtualClock(Clock):
    def __init__(self, start: float = 0.0) -> None:
        self._now = float(start)

    @property
    def now(self) -> float:
        return self._now

    def monotonic(self) -> float:
        return self._now

    def advance(self, seconds: float) -> float:
        if seconds < 0:
            raise ValueError("cannot move a clock backwards")
        self._now += seconds
        return self._now

    def set(self, value: float) -> None:
        if value < self._now:
            raise ValueError("cannot move a clock backwards")
        self._now = value


class ScheduledTask:
    def __init__(self, key: Hashable, due_at: float) -> None:
        self.key = key
        self.due_at = due_at
        self.cancelled = False
        self._handle: Optional[asyncio.TimerHandle] = None

    def cancel(self) -> None:
        self.cancelled = True
        if self._handle is not None:
            self._handle.cancel()


class DeferredScheduler(ABC):
    def __init__(self, clock: Clock, *, logger: Optional[LoggerLike] = None) -> None:
        self.clock = clock
        self._logger = logger or logging.getLogger(__name__)

    @abstractmethod
    def schedule(
        self, key: Hashable, delay: float, callback: DeferredCallback
    ) -> ScheduledTask:
        """Run ``callback`` once, ``delay`` seconds from now."""

    async def _run_callback(self, task: ScheduledTask, callback: DeferredCallback) -> None:
        if task.cancelled:
            return
        try:
            await callback()
        except asyncio.CancelledError:
            raise
        except Exception:
            self._logger.exception(
                "Deferred callback failed",
                extra={
                    "category": "scheduler",
                    "operation": "deferred_callback",
                    "scheduler_key": repr(task.key),
                },
            )


class AsyncioScheduler(DeferredScheduler):
    def __init__(
        self,
        clock: Optional[Clock] = None,
        *,
        logger: Optional[LoggerLike] = None,
    ) -> None:
        super().__init__(clock or SystemClock(), logger=logger)
        self._tasks: Set[asyncio.Task] = set()
        self._pending: Set[ScheduledTask] = set()

    def schedule(
        self, key: Hashable, delay: float, callback: DeferredCallback
    ) -> ScheduledTask:
        loop = asyncio.get_running_loop()
        task = ScheduledTask(key, self.clock.monotonic() + max(delay, 0.0))
        task._handle = loop.call_later(max(delay, 0.0), self._spawn, task, callback)
        self._pending.add(task)
        return task

    def _spawn(self, task: ScheduledTask, callback: DeferredCallback) -> None:
        self._pending.discard(task)
        if task.cancelled:
            return
        running = asyncio.get_running_loop().create_task(
            self._run_callback(task, callback)
        )
        self._tasks.add(running)
        running.add_done_callback(self._tasks.discard)

    async def close(self) -> None:
        for task in list(self._pending):
            task.cancel()
        self._pending.clear()
        running = list(self._tasks)
        for task in running:
            task.cancel()
        if running:
            await asyncio.gather(*running, return_exceptions=True)


class VirtualScheduler(DeferredScheduler):
    def __init__(
        self,
        clock: Optional[VirtualClock] = None,
        *,
        logger: Optional[LoggerLike] = None,
    ) -> None:
        super().__init__(clock or VirtualClock(), logger=logger)
        self._queue: List[Tuple[float, int, ScheduledTask, DeferredCallback]] = []
        self._sequence = itertools.count()

    @property
    def pending_count(self) -> int:
        return sum(1 for _, _, task, _ in self._queue if not task.cancelled)

    def schedule(
        self, key: Hashable, delay: float, callback: DeferredCallback
    ) -> ScheduledTask:
        task = ScheduledTask(key, self.clock.monotonic() + max(delay, 0.0))
        heapq.heappush(self._queue, (task.due_at, next(self._sequence), task, callback))
        return task

    async def advance(self, seconds: float) -> None:
        """Move the clock forward, running callbacks as they fall due."""

        target = self.clock.monotonic() + seconds
        while self._queue and self._queue[0][0] <= target:
            due_at, _, task, callback = heapq.heappop(self._queue)
            if due_at > self.clock.monotonic():
                self.clock.set(due_at)
            await self._run_callback(task, callback)
        self.clock.set(max(target, self.clock.monotonic()))

    async def run_pending(self) -> None:
        await self.advance(0)
