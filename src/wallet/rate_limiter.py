"""
Rate Limiter

Token-paced async gate: work items start in submission order, at least
1/requests_per_second seconds apart. Nothing is rejected; callers simply
wait. A single drain task does the pacing, so concurrent submitters from
any number of tasks are safe.

Usage:
    limiter = RateLimiter(5)
    data = await limiter.submit(lambda: fetch(address))
"""

import asyncio
import time
from collections import deque
from typing import Any, Awaitable, Callable, Deque, Optional, Tuple

WorkFn = Callable[[], Awaitable[Any]]


class RateLimiter:

    def __init__(self, requests_per_second: float, name: str = "limiter"):
        if requests_per_second <= 0:
            raise ValueError("requests_per_second must be > 0")
        self.name = name
        self.requests_per_second = requests_per_second
        self.min_interval = 1.0 / requests_per_second

        self._queue: Deque[Tuple[WorkFn, asyncio.Future]] = deque()
        self._drain_task: Optional[asyncio.Task] = None
        self._last_start: Optional[float] = None
        self.processed = 0

    @property
    def pending(self) -> int:
        return len(self._queue)

    async def submit(self, fn: WorkFn) -> Any:
        """Queue `fn` and wait for its result (or its exception)."""
        loop = asyncio.get_running_loop()
        future = loop.create_future()
        self._queue.append((fn, future))

        if self._drain_task is None or self._drain_task.done():
            self._drain_task = loop.create_task(self._drain())

        return await future

    async def _drain(self):
        while self._queue:
            # Re-check after waking: sleep() may return a hair early
            while self._last_start is not None:
                wait = self.min_interval - (time.monotonic() - self._last_start)
                if wait <= 0:
                    break
                await asyncio.sleep(wait)

            fn, future = self._queue.popleft()
            self._last_start = time.monotonic()

            if future.cancelled():
                continue

            try:
                result = await fn()
            except Exception as e:
                if not future.cancelled():
                    future.set_exception(e)
            else:
                if not future.cancelled():
                    future.set_result(result)
            finally:
                self.processed += 1
