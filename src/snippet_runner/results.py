from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Union


class EventKind(str, Enum):
    """Kinds of events delivered to an output sink."""

    STATUS = "status"
    CONSOLE = "console"
    OUTPUT = "output"
    RESULT = "result"
    ERROR = "error"

    @property
    def terminal(self) -> bool:
        """Return True for the kinds that end an invocation.

        Example:
            ```python
            assert EventKind.RESULT.terminal
            ```
        """
        return self in {EventKind.RESULT, EventKind.ERROR}


class FailurePhase(str, Enum):
    """Stage at which an execution failed."""

    COMPILE = "compile"
    RUNTIME = "runtime"
    TRANSPORT = "transport"
    UNSUPPORTED_LANGUAGE = "unsupported-language"


@dataclass(frozen=True, slots=True)
class ConsoleLine:
    """One captured console line tagged with its stream.

    Example:
        ```python
        line = ConsoleLine("log", "hi")
        ```
    """

    stream: str
    text: str


@dataclass(frozen=True, slots=True)
class Success:
    """Terminal payload of a run that completed.

    `killed` marks a run that was cut off by the service time limit; output
    captured up to that point is still reported.

    Example:
        ```python
        result = Success(result_value="42\\n", execution_time_ms=3.5)
        ```
    """

    result_value: Any = None
    console_lines: tuple[ConsoleLine, ...] = ()
    execution_time_ms: float = 0.0
    note: str | None = None
    exit_code: int | None = None
    killed: bool = False

    @property
    def ok(self) -> bool:
        """Return True; lets callers branch without isinstance checks.

        Example:
            ```python
            assert Success().ok
            ```
        """
        return True


@dataclass(frozen=True, slots=True)
class Failure:
    """Terminal payload of a run that failed.

    Example:
        ```python
        result = Failure(error_message="expected ';'", phase=FailurePhase.COMPILE)
        ```
    """

    error_message: str
    phase: FailurePhase
    error_detail: str | None = None
    killed: bool = False
    execution_time_ms: float = 0.0
    console_lines: tuple[ConsoleLine, ...] = ()
    note: str | None = None

    @property
    def ok(self) -> bool:
        """Return False; lets callers branch without isinstance checks.

        Example:
            ```python
            assert not Failure("boom", FailurePhase.RUNTIME).ok
            ```
        """
        return False


ExecutionResult = Union[Success, Failure]


@dataclass(frozen=True, slots=True)
class OutputEvent:
    """Event delivered to an output sink during one invocation.

    Example:
        ```python
        event = OutputEvent(EventKind.STATUS, "running")
        ```
    """

    kind: EventKind
    payload: Any = None


OutputSink = Callable[[OutputEvent], None]


@dataclass(slots=True)
class EventLog:
    """Output sink that records every event it receives.

    Example:
        ```python
        log = EventLog()
        await execute_code("print(1)", "python", log)
        kinds = log.kinds()
        ```
    """

    events: list[OutputEvent] = field(default_factory=list)

    def __call__(self, event: OutputEvent) -> None:
        """Record one event.

        Example:
            ```python
            log(OutputEvent(EventKind.STATUS, "running"))
            ```
        """
        self.events.append(event)

    def kinds(self) -> list[EventKind]:
        """Return the recorded event kinds in emission order.

        Example:
            ```python
            assert log.kinds()[-1].terminal
            ```
        """
        return [event.kind for event in self.events]
