from __future__ import annotations

import io
from pathlib import Path

import pytest

from snippet_runner import Failure, FailurePhase, OutputEvent, EventKind, Success
from snr import cli


class _FakeDispatcher:
    languages = ["cpp", "python"]

    def __init__(self, **kwargs) -> None:
        self.kwargs = kwargs
        self.calls: list[tuple[str, str, str]] = []

    def executor_for(self, language: str):
        return object()

    async def execute_code(self, source_code, language, output_sink=None, *, stdin=""):
        self.calls.append((source_code, language, stdin))
        output_sink(OutputEvent(EventKind.STATUS, "compiling and running remotely"))
        output_sink(OutputEvent(EventKind.OUTPUT, "42\n"))
        result = Success(result_value="42\n", exit_code=0)
        output_sink(OutputEvent(EventKind.RESULT, result))
        return result


def test_cli_runs_python_file(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    script = tmp_path / "hello.py"
    script.write_text("print('hi from snippet')\n6 * 7\n", encoding="utf-8")

    code = cli.main(["run", str(script)])
    output = capsys.readouterr().out

    assert code == 0
    assert "hi from snippet" in output
    assert "42" in output
    assert "Result" in output


def test_cli_failure_exits_non_zero(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    script = tmp_path / "broken.py"
    script.write_text("missing_name\n", encoding="utf-8")

    code = cli.main(["run", str(script), "--show-detail"])
    output = capsys.readouterr().out

    assert code == 1
    assert "runtime" in output
    assert "NameError" in output
    assert "Traceback" in output


def test_cli_reads_source_from_stdin(monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]) -> None:
    monkeypatch.setattr("sys.stdin", io.StringIO("print(input())\n"))
    code = cli.main(["run", "-", "--language", "py", "--stdin", "echoed"])
    output = capsys.readouterr().out
    assert code == 0
    assert "echoed" in output


def test_cli_routes_cpp_through_dispatcher(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
    capsys: pytest.CaptureFixture[str],
) -> None:
    fake = _FakeDispatcher()
    monkeypatch.setattr(cli, "build_dispatcher", lambda args: fake)
    source = tmp_path / "main.cpp"
    source.write_text("int main() { return 0; }", encoding="utf-8")

    code = cli.main(["run", str(source), "--stdin", "3 4"])
    output = capsys.readouterr().out

    assert code == 0
    assert fake.calls == [("int main() { return 0; }", "cpp", "3 4")]
    assert "compiling and running remotely" in output
    assert "42" in output


def test_cli_passes_settings_file(monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]) -> None:
    monkeypatch.setattr(cli, "Dispatcher", _FakeDispatcher)
    code = cli.main(["--settings", "/tmp/custom.toml", "languages"])
    assert code == 0
    assert "Supported Languages" in capsys.readouterr().out


def test_cli_languages_table(capsys: pytest.CaptureFixture[str]) -> None:
    code = cli.main(["languages"])
    output = capsys.readouterr().out
    assert code == 0
    assert "PythonExecutor" in output
    assert "CppExecutor" in output
    assert "c++" in output


def test_cli_unsupported_language(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    script = tmp_path / "x.txt"
    script.write_text("hello", encoding="utf-8")
    code = cli.main(["run", str(script), "--language", "cobol"])
    assert code == 1
    assert "Unsupported language 'cobol'" in capsys.readouterr().out


def test_cli_requires_language_when_extension_is_unknown(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    script = tmp_path / "notes.txt"
    script.write_text("hello", encoding="utf-8")
    with pytest.raises(SystemExit) as exc:
        cli.main(["run", str(script)])
    assert exc.value.code == 2
    assert "cannot infer the language" in capsys.readouterr().out


def test_cli_missing_file(capsys: pytest.CaptureFixture[str]) -> None:
    code = cli.main(["run", "/nonexistent/snippet.py"])
    assert code == 1
    assert "Cannot read" in capsys.readouterr().out


def test_cli_renders_failure_result(capsys: pytest.CaptureFixture[str]) -> None:
    cli._print_result(
        Failure(error_message="Compile error:\nexpected ';'", phase=FailurePhase.COMPILE),
        show_detail=False,
    )
    output = capsys.readouterr().out
    assert "compile" in output
    assert "expected ';'" in output


def test_cli_top_level_help_examples(capsys: pytest.CaptureFixture[str]) -> None:
    with pytest.raises(SystemExit) as exc:
        cli.main(["--help"])
    output = capsys.readouterr().out
    assert exc.value.code == 0
    assert "Quick Examples:" in output
    assert "python -m snr languages" in output


def test_cli_print_help_writes_to_requested_stream(capsys: pytest.CaptureFixture[str]) -> None:
    parser = cli.build_parser()
    buffer = io.StringIO()
    parser.print_help(file=buffer)
    output = capsys.readouterr().out
    assert output == ""
    help_text = buffer.getvalue()
    assert "Usage:" in help_text
    assert "snippet-runner CLI" in help_text
