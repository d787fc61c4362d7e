from __future__ import annotations

import time
import traceback
from typing import Iterable

from loguru import logger

from .execution.engine import HOST_INTERRUPTS, Executor, elapsed_ms
from .execution.events import EventStream
from .execution.inprocess import PythonExecutor
from .execution.remote import CppExecutor
from .execution.types import ExecutionRequest
from .results import ExecutionResult, Failure, FailurePhase, OutputSink
from .settings import RunnerSettings

LANGUAGE_ALIASES: dict[str, str] = {
    "python": "python",
    "py": "python",
    "python3": "python",
    "py3": "python",
    "cpp": "cpp",
    "c++": "cpp",
    "cxx": "cpp",
    "cc": "cpp",
    "hpp": "cpp",
}


def canonical_language(language: str) -> str | None:
    """Resolve a case-insensitive language tag or alias to its canonical id.

    Example:
        ```python
        canonical_language("C++")  # "cpp"
        ```
    """
    return LANGUAGE_ALIASES.get(language.strip().lower())


def _resolve_settings(settings: RunnerSettings | None, settings_file: str | None) -> RunnerSettings:
    """Resolve the effective settings object.

    Example:
        ```python
        settings = _resolve_settings(None, "/tmp/settings.toml")
        ```
    """
    if settings is not None and settings_file is not None:
        raise ValueError("Provide either 'settings' or 'settings_file', not both")
    if settings is None and settings_file is not None:
        return RunnerSettings.from_file(settings_file)
    if settings is None:
        return RunnerSettings()
    if settings.config_path is not None:
        return RunnerSettings.from_file(settings.config_path)
    return settings


def default_executors(settings: RunnerSettings) -> list[Executor]:
    """Build one executor per supported language.

    Example:
        ```python
        executors = default_executors(RunnerSettings())
        ```
    """
    return [PythonExecutor(settings), CppExecutor(settings)]


class Dispatcher:
    """Route snippets to the executor registered for their canonical language.

    Executors are built once and reused for every call, so aliases of the same
    language share one executor and its one-time runtime load.

    Example:
        ```python
        dispatcher = Dispatcher()
        result = await dispatcher.execute_code("print('hi')", "py")
        ```
    """

    def __init__(
        self,
        settings: RunnerSettings | None = None,
        executors: Iterable[Executor] | None = None,
        *,
        settings_file: str | None = None,
    ) -> None:
        """Register executors keyed by their `language` attribute.

        Example:
            ```python
            dispatcher = Dispatcher(executors=[PythonExecutor()])
            ```
        """
        self.settings = _resolve_settings(settings, settings_file)
        chosen = list(executors) if executors is not None else default_executors(self.settings)
        self._executors: dict[str, Executor] = {}
        for executor in chosen:
            if executor.language in self._executors:
                raise ValueError(f"Duplicate executor for language '{executor.language}'")
            self._executors[executor.language] = executor

    @property
    def languages(self) -> list[str]:
        """Return the canonical ids with a registered executor.

        Example:
            ```python
            Dispatcher().languages  # ["cpp", "python"]
            ```
        """
        return sorted(self._executors)

    def executor_for(self, language: str) -> Executor | None:
        """Return the executor for a language tag, or None if it is not supported.

        Example:
            ```python
            executor = dispatcher.executor_for("Python3")
            ```
        """
        canonical = canonical_language(language)
        if canonical is None:
            return None
        return self._executors.get(canonical)

    def validate_request(self, request: ExecutionRequest) -> Failure | None:
        """Reject empty or unsupported requests before any executor runs.

        Example:
            ```python
            failure = dispatcher.validate_request(ExecutionRequest("", "py"))
            ```
        """
        if not request.source_code or not request.language or not request.language.strip():
            return Failure(
                error_message="missing code or language",
                phase=FailurePhase.UNSUPPORTED_LANGUAGE,
            )
        if self.executor_for(request.language) is None:
            return Failure(
                error_message=f"unsupported language: '{request.language}'",
                phase=FailurePhase.UNSUPPORTED_LANGUAGE,
            )
        return None

    async def execute(
        self,
        request: ExecutionRequest,
        output_sink: OutputSink | None = None,
    ) -> ExecutionResult:
        """Dispatch a request; rejected requests emit no sink events.

        Example:
            ```python
            result = await dispatcher.execute(ExecutionRequest("2 + 2", "python"))
            ```
        """
        rejected = self.validate_request(request)
        if rejected is not None:
            logger.debug("Rejected request for language {!r}: {}", request.language, rejected.error_message)
            return rejected

        executor = self.executor_for(request.language)
        if executor is None:
            raise RuntimeError(f"no executor registered for {request.language!r}")
        logger.debug("Dispatching {!r} to the '{}' executor", request.language, executor.language)
        started = time.perf_counter()
        try:
            return await executor.execute(request.source_code, output_sink, stdin=request.stdin)
        except HOST_INTERRUPTS:
            raise
        except BaseException as exc:
            logger.exception("Executor '{}' escaped its error boundary", executor.language)
            return EventStream(output_sink).finish(
                Failure(
                    error_message=str(exc) or type(exc).__name__,
                    phase=FailurePhase.RUNTIME,
                    error_detail=traceback.format_exc(),
                    execution_time_ms=elapsed_ms(started),
                )
            )

    async def execute_code(
        self,
        source_code: str,
        language: str,
        output_sink: OutputSink | None = None,
        *,
        stdin: str = "",
    ) -> ExecutionResult:
        """Run a snippet in the given language.

        Example:
            ```python
            result = await dispatcher.execute_code("int main() { return 0; }", "c++")
            ```
        """
        return await self.execute(ExecutionRequest(source_code, language, stdin), output_sink)


_default_dispatcher: Dispatcher | None = None


def get_default_dispatcher() -> Dispatcher:
    """Return the process-wide dispatcher, creating it on first use.

    Example:
        ```python
        dispatcher = get_default_dispatcher()
        ```
    """
    global _default_dispatcher
    if _default_dispatcher is None:
        _default_dispatcher = Dispatcher()
    return _default_dispatcher


async def execute_code(
    source_code: str,
    language: str,
    output_sink: OutputSink | None = None,
    *,
    stdin: str = "",
) -> ExecutionResult:
    """Run a snippet through the process-wide dispatcher.

    Example:
        ```python
        from snippet_runner import execute_code
        result = await execute_code("print('hi'); 2 + 2", "python", print)
        ```
    """
    return await get_default_dispatcher().execute_code(
        source_code, language, output_sink, stdin=stdin
    )
