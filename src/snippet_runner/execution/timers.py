from __future__ import annotations

import asyncio
import heapq
import itertools
import time
from dataclasses import dataclass, field
from typing import Any, Callable

from .deadline import DeadlineExceeded


@dataclass(order=True, slots=True)
class _Timer:
    due: float
    seq: int
    handle: int = field(compare=False)
    callback: Callable[..., Any] = field(compare=False)
    args: tuple[Any, ...] = field(compare=False, default=())
    interval: float | None = field(compare=False, default=None)


class TimerScheduler:
    """Per-invocation timers with clamped delays.

    Single-shot delays are capped at `max_timeout_ms`; intervals are raised to
    at least `min_interval_ms`. Callbacks only run while `drain` is awaited.

    Example:
        ```python
        timers = TimerScheduler(min_interval_ms=100, max_timeout_ms=5000)
        timers.set_timeout(lambda: None, 60_000)  # fires after 5s
        ```
    """

    def __init__(
        self,
        *,
        min_interval_ms: int,
        max_timeout_ms: int,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Create an empty scheduler.

        Example:
            ```python
            timers = TimerScheduler(min_interval_ms=100, max_timeout_ms=5000)
            ```
        """
        self._min_interval_ms = min_interval_ms
        self._max_timeout_ms = max_timeout_ms
        self._clock = clock
        self._queue: list[_Timer] = []
        self._active: set[int] = set()
        self._handles = itertools.count(1)
        self._seq = itertools.count()

    def clamp_timeout(self, ms: Any) -> float:
        """Return the effective single-shot delay in milliseconds.

        Example:
            ```python
            timers.clamp_timeout(10_000)  # 5000
            ```
        """
        return min(max(float(ms or 0), 0.0), float(self._max_timeout_ms))

    def clamp_interval(self, ms: Any) -> float:
        """Return the effective repeat interval in milliseconds.

        Example:
            ```python
            timers.clamp_interval(1)  # 100
            ```
        """
        return max(float(ms or 0), float(self._min_interval_ms))

    def set_timeout(self, callback: Callable[..., Any], ms: Any = 0, *args: Any) -> int:
        """Schedule `callback(*args)` once; returns a handle.

        Example:
            ```python
            handle = timers.set_timeout(print, 250, "later")
            ```
        """
        return self._schedule(callback, self.clamp_timeout(ms), args, repeat=False)

    def set_interval(self, callback: Callable[..., Any], ms: Any = 0, *args: Any) -> int:
        """Schedule `callback(*args)` repeatedly until cleared; returns a handle.

        Example:
            ```python
            handle = timers.set_interval(tick, 100)
            ```
        """
        return self._schedule(callback, self.clamp_interval(ms), args, repeat=True)

    def clear(self, handle: Any) -> None:
        """Cancel a timer; unknown handles are ignored.

        Example:
            ```python
            timers.clear(handle)
            ```
        """
        self._active.discard(handle)

    @property
    def pending(self) -> int:
        """Return the number of timers still scheduled.

        Example:
            ```python
            assert timers.pending == 0
            ```
        """
        return len(self._active)

    async def drain(
        self,
        invoke: Callable[[Callable[..., Any], tuple[Any, ...]], None],
        deadline: float | None = None,
    ) -> None:
        """Fire due timers in order until none remain or `deadline` passes.

        `invoke(callback, args)` runs each callback so the caller can apply
        its own guards.

        Example:
            ```python
            await timers.drain(lambda cb, args: cb(*args), deadline=None)
            ```
        """
        while self._queue:
            timer = self._queue[0]
            if timer.handle not in self._active:
                heapq.heappop(self._queue)
                continue
            now = self._clock()
            if deadline is not None and timer.due > deadline:
                await asyncio.sleep(max(deadline - now, 0.0))
                raise DeadlineExceeded("pending timers exceeded the time limit")
            if timer.due > now:
                await asyncio.sleep(timer.due - now)
                continue
            heapq.heappop(self._queue)
            if timer.interval is None:
                self._active.discard(timer.handle)
            else:
                timer.due = self._clock() + timer.interval / 1000
                timer.seq = next(self._seq)
                heapq.heappush(self._queue, timer)
            invoke(timer.callback, timer.args)

    def _schedule(
        self,
        callback: Callable[..., Any],
        delay_ms: float,
        args: tuple[Any, ...],
        *,
        repeat: bool,
    ) -> int:
        """Push a timer onto the queue.

        Example:
            ```python
            handle = timers._schedule(print, 100.0, ("x",), repeat=False)
            ```
        """
        if not callable(callback):
            raise TypeError("timer callback must be callable")
        handle = next(self._handles)
        self._active.add(handle)
        heapq.heappush(
            self._queue,
            _Timer(
                due=self._clock() + delay_ms / 1000,
                seq=next(self._seq),
                handle=handle,
                callback=callback,
                args=args,
                interval=delay_ms if repeat else None,
            ),
        )
        return handle
