from __future__ import annotations

import ast
import functools
import traceback
from types import CodeType
from typing import Any, Callable

from loguru import logger

from ..results import ConsoleLine, ExecutionResult, Failure, FailurePhase, Success
from ..settings import RunnerSettings
from .capabilities import CapabilityViolation, build_scope, guard_exception_handlers, validate_source
from .console import ConsoleCapture
from .deadline import DeadlineExceeded, deadline_at, deadline_guard
from .engine import HOST_INTERRUPTS, BaseExecutor, elapsed_ms
from .events import EventStream
from .timers import TimerScheduler

SNIPPET_FILENAME = "<snippet>"


def compile_snippet(source: str) -> tuple[CodeType, CodeType | None]:
    """Compile a snippet, splitting off a trailing expression so its value can be reported.

    Raises SyntaxError or CapabilityViolation.

    Example:
        ```python
        body, last = compile_snippet("x = 2\\nx * 21")
        ```
    """
    tree = ast.parse(source, SNIPPET_FILENAME, "exec")
    validate_source(tree)
    guard_exception_handlers(tree)
    last_expr: ast.Expression | None = None
    if tree.body and isinstance(tree.body[-1], ast.Expr):
        last_expr = ast.Expression(body=tree.body.pop().value)
    body = compile(tree, SNIPPET_FILENAME, "exec")
    tail = compile(last_expr, SNIPPET_FILENAME, "eval") if last_expr is not None else None
    return body, tail


def format_snippet_traceback(exc: BaseException, source: str) -> str:
    """Render a traceback restricted to frames from the snippet itself.

    Example:
        ```python
        detail = format_snippet_traceback(exc, "1 / 0")
        ```
    """
    source_lines = source.splitlines()
    lines = ["Traceback (most recent call last):\n"]
    for frame in traceback.extract_tb(exc.__traceback__):
        if frame.filename != SNIPPET_FILENAME:
            continue
        lines.append(f'  File "{SNIPPET_FILENAME}", line {frame.lineno}, in {frame.name}\n')
        if frame.lineno and 0 < frame.lineno <= len(source_lines):
            lines.append(f"    {source_lines[frame.lineno - 1].strip()}\n")
    lines.extend(traceback.format_exception_only(type(exc), exc))
    return "".join(lines)


def _guarded_call(deadline: float | None, callback: Callable[..., Any], args: tuple[Any, ...]) -> None:
    """Run a timer callback under the invocation deadline.

    Example:
        ```python
        _guarded_call(None, print, ("tick",))
        ```
    """
    with deadline_guard(deadline):
        callback(*args)


class PythonExecutor(BaseExecutor):
    """Evaluate Python snippets in-process against a fresh capability-limited scope.

    The trailing expression, if any, becomes the result value. Console output
    is streamed as it happens; timers are drained before the terminal event.

    Example:
        ```python
        result = await PythonExecutor().execute("print('hi'); 2 + 2")
        assert result.result_value == 4
        ```
    """

    language = "python"

    def __init__(self, settings: RunnerSettings | None = None) -> None:
        """Create the executor with optional settings.

        Example:
            ```python
            executor = PythonExecutor(RunnerSettings(inprocess_timeout_seconds=2))
            ```
        """
        super().__init__()
        self._settings = settings or RunnerSettings()

    async def _run(
        self,
        source_code: str,
        stream: EventStream,
        *,
        stdin: str,
        started: float,
    ) -> ExecutionResult:
        """Compile, evaluate, and drain timers for one snippet.

        Example:
            ```python
            result = await executor._run("1 + 1", EventStream(None), stdin="", started=time.perf_counter())
            ```
        """
        console = ConsoleCapture(stream)
        timers = TimerScheduler(
            min_interval_ms=self._settings.min_interval_ms,
            max_timeout_ms=self._settings.max_timeout_ms,
        )
        scope = build_scope(
            console,
            timers,
            stdin=stdin,
            allowed_modules=self._settings.allowed_modules,
        )

        try:
            body, tail = compile_snippet(source_code)
        except SyntaxError as exc:
            return stream.finish(
                Failure(
                    error_message=f"SyntaxError: {exc.msg} (line {exc.lineno})",
                    phase=FailurePhase.COMPILE,
                    error_detail="".join(traceback.format_exception_only(type(exc), exc)),
                    execution_time_ms=elapsed_ms(started),
                )
            )
        except CapabilityViolation as exc:
            return stream.finish(
                Failure(
                    error_message=f"CapabilityViolation: {exc}",
                    phase=FailurePhase.COMPILE,
                    execution_time_ms=elapsed_ms(started),
                )
            )

        deadline = deadline_at(self._settings.inprocess_timeout_seconds)
        value: Any = None
        try:
            with deadline_guard(deadline):
                exec(body, scope)
                if tail is not None:
                    value = eval(tail, scope)
            await timers.drain(functools.partial(_guarded_call, deadline), deadline)
        except DeadlineExceeded as exc:
            logger.warning("Python snippet hit its {}s deadline", self._settings.inprocess_timeout_seconds)
            return stream.finish(self._failure(console, exc, source_code, started, killed=True))
        except HOST_INTERRUPTS:
            raise
        except BaseException as exc:
            return stream.finish(self._failure(console, exc, source_code, started))

        return stream.finish(
            Success(
                result_value=value,
                console_lines=tuple(console.lines),
                execution_time_ms=elapsed_ms(started),
            )
        )

    def _failure(
        self,
        console: ConsoleCapture,
        exc: BaseException,
        source_code: str,
        started: float,
        *,
        killed: bool = False,
    ) -> Failure:
        """Build a runtime failure that keeps the console output gathered so far.

        Example:
            ```python
            failure = executor._failure(console, NameError("x"), "x", started)
            ```
        """
        message = f"{type(exc).__name__}: {exc}"
        if not console.has_errors():
            console.write("error", message)
        lines: tuple[ConsoleLine, ...] = tuple(console.lines)
        return Failure(
            error_message=message,
            phase=FailurePhase.RUNTIME,
            error_detail=format_snippet_traceback(exc, source_code),
            killed=killed,
            execution_time_ms=elapsed_ms(started),
            console_lines=lines,
        )
