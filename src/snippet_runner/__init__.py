from .dispatcher import Dispatcher, canonical_language, execute_code
from .execution.inprocess import PythonExecutor
from .execution.remote import CppExecutor
from .results import (
    ConsoleLine,
    EventKind,
    EventLog,
    ExecutionResult,
    Failure,
    FailurePhase,
    OutputEvent,
    Success,
)
from .settings import RunnerSettings

__all__ = [
    "ConsoleLine",
    "CppExecutor",
    "Dispatcher",
    "EventKind",
    "EventLog",
    "ExecutionResult",
    "Failure",
    "FailurePhase",
    "OutputEvent",
    "PythonExecutor",
    "RunnerSettings",
    "Success",
    "canonical_language",
    "execute_code",
]
