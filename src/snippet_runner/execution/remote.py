from __future__ import annotations

import asyncio
import traceback
from typing import Callable

import httpx
from loguru import logger

from ..results import ConsoleLine, ExecutionResult, Failure, FailurePhase, Success
from ..settings import RunnerSettings
from .engine import BaseExecutor, elapsed_ms
from .events import EventStream
from .fallback import FallbackInterpreter, InterpreterConfig, ProgramTimeout, resolve_interpreter_factory
from .preprocess import preprocess_source
from .types import CompileServiceReply

NO_OUTPUT = "(no output)"
DEGRADED_NOTE = "executed via fallback interpreter; some language features unsupported"
KILLED_NOTE = "execution was terminated after exceeding the time limit"
# Extra time an interpreter gets to stop a program itself before it is abandoned.
FALLBACK_KILL_GRACE_SECONDS = 2.0


def _stderr_lines(stderr: str) -> tuple[ConsoleLine, ...]:
    """Split captured standard error into error-tagged console lines.

    Example:
        ```python
        _stderr_lines("warning: x\\n")  # (ConsoleLine("error", "warning: x"),)
        ```
    """
    return tuple(ConsoleLine("error", line) for line in stderr.splitlines())


class CppExecutor(BaseExecutor):
    """Run C++ through a remote compile service, falling back to a local interpreter.

    Only an unreachable service (a transport error) triggers the fallback;
    compile and run failures reported by the service are returned as-is.

    Example:
        ```python
        executor = CppExecutor(RunnerSettings(compile_service_url="http://compile:3000"))
        result = await executor.execute(source, print)
        ```
    """

    language = "cpp"

    def __init__(
        self,
        settings: RunnerSettings | None = None,
        *,
        client: httpx.AsyncClient | None = None,
        interpreter_factory: Callable[[], FallbackInterpreter] | None = None,
    ) -> None:
        """Configure the service endpoint, HTTP client, and fallback interpreter factory.

        Example:
            ```python
            executor = CppExecutor(client=httpx.AsyncClient(transport=transport))
            ```
        """
        super().__init__()
        self._settings = settings or RunnerSettings()
        self._client = client
        self._interpreter_factory = interpreter_factory
        self._interpreter: FallbackInterpreter | None = None

    async def _load_runtime(self) -> None:
        """Import and build the fallback interpreter off the event loop.

        Example:
            ```python
            await executor.load_runtime()
            ```
        """
        factory = self._interpreter_factory or resolve_interpreter_factory(
            self._settings.fallback_interpreter
        )
        self._interpreter = await asyncio.to_thread(factory)

    async def _run(
        self,
        source_code: str,
        stream: EventStream,
        *,
        stdin: str,
        started: float,
    ) -> ExecutionResult:
        """Try the compile service; on transport failure use the fallback interpreter.

        Example:
            ```python
            result = await executor._run(source, EventStream(None), stdin="", started=time.perf_counter())
            ```
        """
        limit = self._settings.max_source_kb * 1024
        if len(source_code.encode("utf-8")) > limit:
            return stream.finish(
                Failure(
                    error_message=f"source too large: limit is {self._settings.max_source_kb} KB",
                    phase=FailurePhase.COMPILE,
                    execution_time_ms=elapsed_ms(started),
                )
            )

        stream.status("compiling and running remotely")
        try:
            response = await self._post(source_code, stdin)
        except httpx.TransportError as exc:
            logger.warning("Compile service at {} unreachable: {}", self._settings.compile_url, exc)
            if not self._settings.enable_fallback:
                return stream.finish(
                    Failure(
                        error_message=f"compile service unreachable: {exc}",
                        phase=FailurePhase.TRANSPORT,
                        execution_time_ms=elapsed_ms(started),
                    )
                )
            return await self._run_fallback(source_code, stream, stdin=stdin, started=started)

        return stream.finish(self._interpret_response(response, stream, started))

    async def _post(self, source_code: str, stdin: str) -> httpx.Response:
        """Send the source to the compile service.

        Example:
            ```python
            response = await executor._post("int main() {}", "")
            ```
        """
        payload = {"code": source_code, "input": stdin}
        if self._client is not None:
            return await self._client.post(self._settings.compile_url, json=payload)
        async with httpx.AsyncClient(timeout=self._settings.request_timeout_seconds) as client:
            return await client.post(self._settings.compile_url, json=payload)

    def _interpret_response(
        self,
        response: httpx.Response,
        stream: EventStream,
        started: float,
    ) -> ExecutionResult:
        """Map a compile service response onto an execution result.

        Example:
            ```python
            result = executor._interpret_response(response, stream, started)
            ```
        """
        try:
            body = response.json()
        except ValueError:
            body = None

        if response.is_error:
            message = body.get("error") if isinstance(body, dict) else None
            return Failure(
                error_message=str(message or f"compile service returned HTTP {response.status_code}"),
                phase=FailurePhase.RUNTIME,
                execution_time_ms=elapsed_ms(started),
            )

        try:
            reply = CompileServiceReply.from_json(body)
        except ValueError:
            return Failure(
                error_message="compile service returned invalid JSON",
                phase=FailurePhase.RUNTIME,
                error_detail=response.text[:2000],
                execution_time_ms=elapsed_ms(started),
            )

        if not reply.success:
            if reply.phase == "compile":
                return Failure(
                    error_message=f"Compile error:\n{reply.error or 'compilation failed'}",
                    phase=FailurePhase.COMPILE,
                    execution_time_ms=elapsed_ms(started),
                )
            prefix = "Runtime error:\n" if reply.phase == "run" else ""
            return Failure(
                error_message=f"{prefix}{reply.error or 'compile service reported a failure'}",
                phase=FailurePhase.RUNTIME,
                execution_time_ms=elapsed_ms(started),
            )

        if reply.output:
            stream.output(reply.output)
        if reply.stderr:
            stream.output(reply.stderr)
        return Success(
            result_value=reply.output or NO_OUTPUT,
            console_lines=_stderr_lines(reply.stderr),
            execution_time_ms=elapsed_ms(started),
            note=KILLED_NOTE if reply.killed else None,
            exit_code=reply.exit_code or 0,
            killed=reply.killed,
        )

    async def _run_fallback(
        self,
        source_code: str,
        stream: EventStream,
        *,
        stdin: str,
        started: float,
    ) -> ExecutionResult:
        """Run the preprocessed source on the lazily loaded fallback interpreter.

        Example:
            ```python
            result = await executor._run_fallback(source, stream, stdin="", started=started)
            ```
        """
        stream.status("compile service unreachable; running with the fallback interpreter")
        if not self.runtime_loaded:
            stream.status("loading fallback interpreter")
        try:
            await self.load_runtime()
        except Exception as exc:
            logger.warning("Fallback interpreter could not be loaded: {}", exc)
            return stream.finish(
                Failure(
                    error_message=f"compile service unreachable and fallback interpreter unavailable: {exc}",
                    phase=FailurePhase.TRANSPORT,
                    error_detail=traceback.format_exc(),
                    execution_time_ms=elapsed_ms(started),
                    note=DEGRADED_NOTE,
                )
            )
        interpreter = self._interpreter
        if interpreter is None:
            raise RuntimeError("fallback interpreter is not loaded")

        prepared = preprocess_source(source_code)
        loop = asyncio.get_running_loop()
        chunks: list[str] = []

        def write(chunk: str) -> None:
            """Buffer a chunk and hand it to the event loop for streaming.

            Example:
                ```python
                write("hello\\n")
                ```
            """
            chunks.append(chunk)
            loop.call_soon_threadsafe(stream.output, chunk)

        stream.status("running C++ code")
        timeout = self._settings.fallback_timeout_seconds or None
        config = InterpreterConfig(write=write, timeout_seconds=timeout)
        run = asyncio.to_thread(interpreter.run, prepared, stdin, config)
        try:
            status = await asyncio.wait_for(run, timeout + FALLBACK_KILL_GRACE_SECONDS if timeout else None)
        except ProgramTimeout as exc:
            return stream.finish(
                Failure(
                    error_message=str(exc),
                    phase=FailurePhase.RUNTIME,
                    killed=True,
                    execution_time_ms=elapsed_ms(started),
                    note=DEGRADED_NOTE,
                )
            )
        except TimeoutError:
            logger.warning("Fallback interpreter ignored its {}s limit; discarding it", timeout)
            if self._interpreter is interpreter:
                self._interpreter = None
                self.reset_runtime()
            return stream.finish(
                Failure(
                    error_message=f"fallback interpreter exceeded {timeout}s",
                    phase=FailurePhase.RUNTIME,
                    killed=True,
                    execution_time_ms=elapsed_ms(started),
                    note=DEGRADED_NOTE,
                )
            )
        except Exception as exc:
            return stream.finish(
                Failure(
                    error_message=f"C++ runtime error: {exc}",
                    phase=FailurePhase.RUNTIME,
                    error_detail=traceback.format_exc(),
                    execution_time_ms=elapsed_ms(started),
                    note=DEGRADED_NOTE,
                )
            )

        return stream.finish(
            Success(
                result_value="".join(chunks) or NO_OUTPUT,
                execution_time_ms=elapsed_ms(started),
                note=DEGRADED_NOTE,
                exit_code=status,
            )
        )
