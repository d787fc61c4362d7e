from __future__ import annotations

import contextlib
import sys
import time
from types import FrameType
from typing import Any, Callable, Iterator


class DeadlineExceeded(BaseException):
    """Raised inside evaluated code once its wall-clock deadline has passed.

    Derives from BaseException so `except Exception` in user code cannot swallow it.
    """


def deadline_at(timeout_seconds: float, clock: Callable[[], float] = time.monotonic) -> float | None:
    """Return an absolute deadline, or None when `timeout_seconds` disables it.

    Example:
        ```python
        deadline = deadline_at(5)
        ```
    """
    if timeout_seconds <= 0:
        return None
    return clock() + timeout_seconds


@contextlib.contextmanager
def deadline_guard(
    deadline: float | None,
    clock: Callable[[], float] = time.monotonic,
) -> Iterator[None]:
    """Interrupt Python frames started inside the block once `deadline` passes.

    Only pure-Python code is interruptible; a long call into C runs to completion.
    A block that finishes after the deadline, for example because the interrupt
    was caught, still raises DeadlineExceeded on exit.

    Example:
        ```python
        with deadline_guard(deadline_at(2)):
            exec(code, scope)
        ```
    """
    if deadline is None:
        yield
        return

    def tracer(frame: FrameType, event: str, arg: Any) -> Any:
        """Raise DeadlineExceeded on any traced event past the deadline.

        Example:
            ```python
            sys.settrace(tracer)
            ```
        """
        if clock() > deadline:
            raise DeadlineExceeded("execution exceeded its time limit")
        return tracer

    previous = sys.gettrace()
    sys.settrace(tracer)
    try:
        yield
    finally:
        sys.settrace(previous)
    if clock() > deadline:
        raise DeadlineExceeded("execution exceeded its time limit")
