from __future__ import annotations

import pytest

from snippet_runner import dispatcher as dispatcher_module
from snippet_runner import (
    CppExecutor,
    Dispatcher,
    EventKind,
    EventLog,
    FailurePhase,
    PythonExecutor,
    RunnerSettings,
    Success,
    canonical_language,
    execute_code,
)
from snippet_runner.execution.engine import BaseExecutor
from snippet_runner.execution.events import EventStream
from snippet_runner.execution.types import ExecutionRequest


class _RecordingExecutor(BaseExecutor):
    language = "python"

    def __init__(self) -> None:
        super().__init__()
        self.calls: list[tuple[str, str]] = []

    async def _run(self, source_code: str, stream: EventStream, *, stdin: str, started: float):
        self.calls.append((source_code, stdin))
        stream.status("recording")
        return stream.finish(Success(result_value=source_code))


class _ExplodingExecutor:
    language = "cpp"

    async def load_runtime(self) -> None:
        return None

    async def execute(self, source_code, output_sink=None, *, stdin=""):
        raise RuntimeError("executor blew up")


@pytest.mark.parametrize(
    ("tag", "expected"),
    [
        ("python", "python"),
        ("PY", "python"),
        (" python3 ", "python"),
        ("cpp", "cpp"),
        ("C++", "cpp"),
        ("cxx", "cpp"),
        ("cobol", None),
    ],
)
def test_canonical_language(tag: str, expected: str | None) -> None:
    assert canonical_language(tag) == expected


def test_default_registry_holds_one_executor_per_language() -> None:
    dispatcher = Dispatcher(RunnerSettings())
    assert dispatcher.languages == ["cpp", "python"]
    assert isinstance(dispatcher.executor_for("py"), PythonExecutor)
    assert isinstance(dispatcher.executor_for("c++"), CppExecutor)


def test_aliases_route_to_the_same_executor_instance() -> None:
    dispatcher = Dispatcher(RunnerSettings())
    assert dispatcher.executor_for("py") is dispatcher.executor_for("Python3")
    assert dispatcher.executor_for("cpp") is dispatcher.executor_for("CC")


def test_duplicate_executor_languages_are_rejected() -> None:
    with pytest.raises(ValueError, match="Duplicate executor"):
        Dispatcher(executors=[_RecordingExecutor(), _RecordingExecutor()])


def test_settings_and_settings_file_are_mutually_exclusive() -> None:
    with pytest.raises(ValueError, match="either 'settings' or 'settings_file'"):
        Dispatcher(RunnerSettings(), settings_file="/tmp/settings.toml")


@pytest.mark.parametrize(("code", "language"), [("", "python"), ("print(1)", ""), ("print(1)", "  ")])
@pytest.mark.asyncio
async def test_missing_code_or_language_fails_without_events(code: str, language: str) -> None:
    executor = _RecordingExecutor()
    log = EventLog()
    result = await Dispatcher(executors=[executor]).execute_code(code, language, log)

    assert result.ok is False
    assert result.phase is FailurePhase.UNSUPPORTED_LANGUAGE
    assert result.error_message == "missing code or language"
    assert log.events == []
    assert executor.calls == []


@pytest.mark.asyncio
async def test_unsupported_language_names_the_rejected_tag() -> None:
    log = EventLog()
    result = await Dispatcher(executors=[_RecordingExecutor()]).execute_code("x", "Cobol", log)

    assert result.phase is FailurePhase.UNSUPPORTED_LANGUAGE
    assert "Cobol" in result.error_message
    assert log.events == []


def test_validate_request_is_synchronous() -> None:
    dispatcher = Dispatcher(executors=[_RecordingExecutor()])
    assert dispatcher.validate_request(ExecutionRequest("1", "py")) is None
    rejected = dispatcher.validate_request(ExecutionRequest("1", "rust"))
    assert rejected is not None
    assert rejected.phase is FailurePhase.UNSUPPORTED_LANGUAGE


@pytest.mark.asyncio
async def test_dispatch_forwards_code_stdin_and_sink() -> None:
    executor = _RecordingExecutor()
    log = EventLog()
    result = await Dispatcher(executors=[executor]).execute_code("1 + 1", "PY", log, stdin="7\n")

    assert result.ok is True
    assert executor.calls == [("1 + 1", "7\n")]
    assert log.kinds() == [EventKind.STATUS, EventKind.RESULT]


@pytest.mark.asyncio
async def test_executor_exceptions_become_runtime_failures() -> None:
    log = EventLog()
    result = await Dispatcher(executors=[_ExplodingExecutor()]).execute_code("int main(){}", "cpp", log)

    assert result.ok is False
    assert result.phase is FailurePhase.RUNTIME
    assert result.error_message == "executor blew up"
    assert "RuntimeError" in (result.error_detail or "")
    assert log.kinds() == [EventKind.ERROR]



class _Escape(BaseException):
    pass


class _EscapingExecutor(BaseExecutor):
    language = "python"

    async def _run(self, source_code: str, stream: EventStream, *, stdin: str, started: float):
        raise _Escape("not an Exception")


@pytest.mark.asyncio
async def test_non_exception_throwables_never_escape_execute_code() -> None:
    log = EventLog()
    result = await Dispatcher(executors=[_EscapingExecutor()]).execute_code("1", "python", log)

    assert result.ok is False
    assert result.phase is FailurePhase.RUNTIME
    assert result.error_message == "_Escape: not an Exception"
    assert log.kinds() == [EventKind.ERROR]


@pytest.mark.asyncio
async def test_keyboard_interrupt_is_not_converted() -> None:
    class _Interrupted(BaseExecutor):
        language = "python"

        async def _run(self, source_code, stream, *, stdin, started):
            raise KeyboardInterrupt

    with pytest.raises(KeyboardInterrupt):
        await Dispatcher(executors=[_Interrupted()]).execute_code("1", "python")

@pytest.mark.asyncio
async def test_module_level_execute_code_uses_default_dispatcher(monkeypatch: pytest.MonkeyPatch) -> None:
    executor = _RecordingExecutor()
    monkeypatch.setattr(dispatcher_module, "_default_dispatcher", Dispatcher(executors=[executor]))

    result = await execute_code("2 * 21", "python")

    assert result.ok is True
    assert result.result_value == "2 * 21"
    assert executor.calls == [("2 * 21", "")]


@pytest.mark.asyncio
async def test_end_to_end_python_snippet() -> None:
    result = await Dispatcher(RunnerSettings()).execute_code("print('hi'); 2+2", "py")

    assert result.ok is True
    assert result.result_value == 4
    assert [line.text for line in result.console_lines] == ["hi"]
