from __future__ import annotations

from typing import Any

from loguru import logger

from ..results import EventKind, ExecutionResult, Failure, OutputEvent, OutputSink


class EventStream:
    """Per-invocation wrapper that enforces the output sink ordering contract.

    Non-terminal events pass through in emission order. Exactly one terminal
    event may be emitted and nothing is delivered after it. Exceptions from
    the caller's sink are logged and dropped.

    Example:
        ```python
        stream = EventStream(print)
        stream.status("running")
        stream.finish(Success())
        ```
    """

    __slots__ = ("_sink", "_closed")

    def __init__(self, sink: OutputSink | None) -> None:
        """Wrap an optional sink callable.

        Example:
            ```python
            stream = EventStream(None)
            ```
        """
        self._sink = sink
        self._closed = False

    @property
    def closed(self) -> bool:
        """Return True once the terminal event has been emitted.

        Example:
            ```python
            assert not EventStream(None).closed
            ```
        """
        return self._closed

    def emit(self, kind: EventKind, payload: Any = None) -> None:
        """Deliver one event, dropping anything that follows the terminal event.

        Example:
            ```python
            stream.emit(EventKind.OUTPUT, "42\\n")
            ```
        """
        if self._closed:
            logger.warning("Dropping {} event emitted after the terminal event", kind.value)
            return
        if kind.terminal:
            self._closed = True
        if self._sink is None:
            return
        try:
            self._sink(OutputEvent(kind, payload))
        except Exception:
            logger.exception("Output sink raised while handling a {} event", kind.value)

    def status(self, message: str) -> None:
        """Emit a status event.

        Example:
            ```python
            stream.status("compiling and running remotely")
            ```
        """
        self.emit(EventKind.STATUS, message)

    def output(self, chunk: str) -> None:
        """Emit a raw output chunk.

        Example:
            ```python
            stream.output("partial")
            ```
        """
        self.emit(EventKind.OUTPUT, chunk)

    def finish(self, result: ExecutionResult) -> ExecutionResult:
        """Emit the terminal event for `result` and return it unchanged.

        Example:
            ```python
            return stream.finish(Failure("boom", FailurePhase.RUNTIME))
            ```
        """
        kind = EventKind.ERROR if isinstance(result, Failure) else EventKind.RESULT
        self.emit(kind, result)
        return result
