from __future__ import annotations

import asyncio
import time
import traceback
from typing import Protocol

from loguru import logger

from ..results import ExecutionResult, Failure, FailurePhase, OutputSink
from .events import EventStream

# Raised by the host rather than by evaluated code; never converted into a result.
HOST_INTERRUPTS = (KeyboardInterrupt, asyncio.CancelledError)


def elapsed_ms(started: float) -> float:
    """Return milliseconds elapsed since a `time.perf_counter()` reading.

    Example:
        ```python
        started = time.perf_counter()
        took = elapsed_ms(started)
        ```
    """
    return round((time.perf_counter() - started) * 1000, 2)


class Executor(Protocol):
    language: str

    async def load_runtime(self) -> None:
        """Prepare the language runtime; only the first call does any work.

        Example:
            ```python
            await executor.load_runtime()
            ```
        """
        ...

    async def execute(
        self,
        source_code: str,
        output_sink: OutputSink | None = None,
        *,
        stdin: str = "",
    ) -> ExecutionResult:
        """Run one snippet and return its terminal result; never raises.

        Example:
            ```python
            result = await executor.execute("print(1)", print)
            ```
        """
        ...


class BaseExecutor:
    """Shared lifecycle for executors: guarded one-time runtime load and a catch-all boundary.

    Subclasses implement `_run` and optionally `_load_runtime`.

    Example:
        ```python
        class EchoExecutor(BaseExecutor):
            language = "echo"

            async def _run(self, source_code, stream, *, stdin, started):
                return stream.finish(Success(result_value=source_code))
        ```
    """

    language = ""

    def __init__(self) -> None:
        """Initialize the runtime-loaded flag and its guard.

        Example:
            ```python
            executor = PythonExecutor()
            ```
        """
        self._runtime_loaded = False
        self._load_lock: asyncio.Lock | None = None
        self._lock_loop: asyncio.AbstractEventLoop | None = None

    @property
    def runtime_loaded(self) -> bool:
        """Return True once `load_runtime` has completed successfully.

        Example:
            ```python
            await executor.load_runtime()
            assert executor.runtime_loaded
            ```
        """
        return self._runtime_loaded

    async def load_runtime(self) -> None:
        """Run `_load_runtime` at most once; concurrent callers share the first load.

        A failed load leaves the flag unset so a later call can retry.

        Example:
            ```python
            await asyncio.gather(executor.load_runtime(), executor.load_runtime())
            ```
        """
        if self._runtime_loaded:
            return
        async with self._lock_for_running_loop():
            if self._runtime_loaded:
                return
            await self._load_runtime()
            self._runtime_loaded = True
            logger.info("Runtime for '{}' loaded", self.language)

    def _lock_for_running_loop(self) -> asyncio.Lock:
        """Return the load lock, replacing it when called from a different event loop.

        Example:
            ```python
            async with executor._lock_for_running_loop():
                ...
            ```
        """
        loop = asyncio.get_running_loop()
        if self._load_lock is None or self._lock_loop is not loop:
            self._load_lock = asyncio.Lock()
            self._lock_loop = loop
        return self._load_lock

    def reset_runtime(self) -> None:
        """Forget the loaded runtime so the next `load_runtime` call builds a fresh one.

        Example:
            ```python
            executor.reset_runtime()
            assert not executor.runtime_loaded
            ```
        """
        self._runtime_loaded = False

    async def _load_runtime(self) -> None:
        """Load the runtime; the default is a no-op for host-native languages.

        Example:
            ```python
            await executor._load_runtime()
            ```
        """
        return None

    async def execute(
        self,
        source_code: str,
        output_sink: OutputSink | None = None,
        *,
        stdin: str = "",
    ) -> ExecutionResult:
        """Run one snippet, converting any unexpected exception into a runtime failure.

        Example:
            ```python
            result = await PythonExecutor().execute("print('hi')")
            ```
        """
        stream = EventStream(output_sink)
        started = time.perf_counter()
        try:
            return await self._run(source_code, stream, stdin=stdin, started=started)
        except HOST_INTERRUPTS:
            raise
        except BaseException as exc:
            logger.exception("Executor '{}' raised unexpectedly", self.language)
            return stream.finish(
                Failure(
                    error_message=f"{type(exc).__name__}: {exc}",
                    phase=FailurePhase.RUNTIME,
                    error_detail=traceback.format_exc(),
                    execution_time_ms=elapsed_ms(started),
                )
            )

    async def _run(
        self,
        source_code: str,
        stream: EventStream,
        *,
        stdin: str,
        started: float,
    ) -> ExecutionResult:
        """Execute the snippet; subclasses must override.

        Example:
            ```python
            result = await executor._run("1", EventStream(None), stdin="", started=time.perf_counter())
            ```
        """
        raise NotImplementedError
