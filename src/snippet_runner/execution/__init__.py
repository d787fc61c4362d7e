from .engine import BaseExecutor, Executor
from .fallback import FallbackInterpreter, InterpreterConfig, ProgramTimeout
from .types import CompileServiceReply, ExecutionRequest

__all__ = [
    "BaseExecutor",
    "CompileServiceReply",
    "ExecutionRequest",
    "Executor",
    "FallbackInterpreter",
    "InterpreterConfig",
    "ProgramTimeout",
]
