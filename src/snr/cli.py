from __future__ import annotations

import argparse
import asyncio
import sys
from functools import partial
from pathlib import Path
from typing import Any, Never, Sequence

from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.pretty import Pretty
from rich.table import Table
from rich_argparse import RawTextRichHelpFormatter
from snippet_runner import Dispatcher, EventKind, Failure, OutputEvent
from snippet_runner.dispatcher import LANGUAGE_ALIASES, canonical_language

_CONSOLE = Console(no_color=False)

_EXTENSION_LANGUAGES = {
    ".py": "python",
    ".cpp": "cpp",
    ".cc": "cpp",
    ".cxx": "cpp",
}


class _CLIHelpFormatter(RawTextRichHelpFormatter):
    """Rich formatter with explicit high-contrast CLI styles.

    Example:
        ```python
        parser = argparse.ArgumentParser(formatter_class=_CLIHelpFormatter)
        ```
    """

    styles = {
        "argparse.args": "bold cyan",
        "argparse.groups": "bold magenta",
        "argparse.help": "white",
        "argparse.metavar": "bold yellow",
        "argparse.prog": "bold bright_blue",
        "argparse.syntax": "bold bright_white",
        "argparse.text": "bright_white",
    }


_HELP_FORMATTER = partial(
    _CLIHelpFormatter,
    max_help_position=34,
    width=120,
)


class _RichArgumentParser(argparse.ArgumentParser):
    """ArgumentParser that renders errors via Rich.

    Example:
        ```python
        parser = _RichArgumentParser(prog="python -m snr")
        ```
    """

    def error(self, message: str) -> Never:
        """Render parse errors with Rich and exit.

        Example:
            ```python
            # parser.error("invalid usage")
            ```
        """
        _CONSOLE.print(Panel.fit(f"[bold red]Error:[/bold red] {escape(message)}", border_style="red"))
        self.print_help()
        raise SystemExit(2)


def build_parser() -> argparse.ArgumentParser:
    """Build CLI parser for running snippets.

    Example:
        ```python
        parser = build_parser()
        ```
    """
    parser = _RichArgumentParser(
        prog="python -m snr",
        description=(
            "snippet-runner CLI\n"
            "Run Python in-process or C++ through the compile service,\n"
            "streaming output as it is produced."
        ),
        epilog=(
            "Quick Examples:\n"
            "  python -m snr run hello.py\n"
            "  python -m snr run main.cpp --stdin '3 4'\n"
            "  echo 'print(2 + 2)' | python -m snr run - --language py\n"
            "  python -m snr languages"
        ),
        formatter_class=_HELP_FORMATTER,
    )
    parser.add_argument(
        "--settings",
        help=(
            "Path to a settings TOML file with a [settings] table.\n"
            "Example: --settings ./snippet-runner.toml"
        ),
    )

    sub = parser.add_subparsers(
        dest="command",
        required=True,
        parser_class=_RichArgumentParser,
    )

    run_cmd = sub.add_parser(
        "run",
        help="Run a source file (or '-' for standard input).",
        description=(
            "Run one snippet and print its result.\n"
            "The language is taken from --language or the file extension."
        ),
        epilog=(
            "Examples:\n"
            "  python -m snr run script.py\n"
            "  python -m snr run main.cc --language c++ --stdin '5'"
        ),
        formatter_class=_HELP_FORMATTER,
    )
    run_cmd.add_argument("source", help="Source file path, or '-' to read from standard input.")
    run_cmd.add_argument(
        "--language",
        "-l",
        help="Language tag or alias (python, py, cpp, c++, ...).",
    )
    run_cmd.add_argument(
        "--stdin",
        default="",
        help="Text handed to the program as its standard input.",
    )
    run_cmd.add_argument(
        "--show-detail",
        action="store_true",
        help="Print the error detail (traceback or diagnostics) on failure.",
    )

    sub.add_parser(
        "languages",
        help="List supported languages and their aliases.",
        description="Show each canonical language with the aliases that route to it.",
        formatter_class=_HELP_FORMATTER,
    )

    return parser


def build_dispatcher(args: argparse.Namespace) -> Dispatcher:
    """Create a Dispatcher from the global CLI flags.

    Example:
        ```python
        dispatcher = build_dispatcher(args)
        ```
    """
    return Dispatcher(settings_file=args.settings)


def _read_source(source: str) -> str:
    """Read snippet text from a path or standard input.

    Example:
        ```python
        code = _read_source("hello.py")
        ```
    """
    if source == "-":
        return sys.stdin.read()
    return Path(source).read_text(encoding="utf-8")


def _infer_language(source: str, language: str | None) -> str | None:
    """Pick the explicit language, else guess from the file extension.

    Example:
        ```python
        _infer_language("main.cpp", None)  # "cpp"
        ```
    """
    if language:
        return language
    return _EXTENSION_LANGUAGES.get(Path(source).suffix.lower())


def _print_event(event: OutputEvent) -> None:
    """Render one streamed event.

    Example:
        ```python
        _print_event(OutputEvent(EventKind.STATUS, "running"))
        ```
    """
    if event.kind is EventKind.STATUS:
        _CONSOLE.print(f"[dim]» {escape(str(event.payload))}[/dim]")
    elif event.kind is EventKind.CONSOLE:
        line = event.payload
        style = "red" if line.stream == "error" else "yellow" if line.stream == "warn" else None
        _CONSOLE.print(escape(line.text), style=style)
    elif event.kind is EventKind.OUTPUT:
        _CONSOLE.print(escape(str(event.payload)), end="")


def _print_result(result: Any, show_detail: bool) -> None:
    """Render the terminal result in a panel.

    Example:
        ```python
        _print_result(Success(result_value=4), show_detail=False)
        ```
    """
    footer = f"{result.execution_time_ms} ms"
    if result.note:
        footer += f" · {result.note}"
    if isinstance(result, Failure):
        body = f"[bold red]{result.phase.value}[/bold red]: {escape(result.error_message)}"
        if result.killed:
            body += "\n[yellow]killed by time limit[/yellow]"
        if show_detail and result.error_detail:
            body += f"\n\n{escape(result.error_detail)}"
        _CONSOLE.print(Panel.fit(body, title="Error", subtitle=escape(footer), border_style="red"))
        return
    if result.killed:
        footer += " · killed"
    if result.result_value is None:
        value: Any = "[dim]no value[/dim]"
    elif isinstance(result.result_value, str):
        value = escape(result.result_value.rstrip("\n"))
    else:
        value = Pretty(result.result_value)
    _CONSOLE.print(Panel.fit(value, title="Result", subtitle=escape(footer), border_style="green"))


def _print_languages(dispatcher: Dispatcher) -> None:
    """Render supported languages in a rich table.

    Example:
        ```python
        _print_languages(Dispatcher())
        ```
    """
    table = Table(title="Supported Languages")
    table.add_column("Language", style="cyan")
    table.add_column("Aliases", style="magenta")
    table.add_column("Executor")
    for language in dispatcher.languages:
        aliases = sorted(alias for alias, target in LANGUAGE_ALIASES.items() if target == language)
        executor = dispatcher.executor_for(language)
        table.add_row(language, ", ".join(aliases), type(executor).__name__)
    _CONSOLE.print(table)


def main(argv: Sequence[str] | None = None) -> int:
    """Run the `snr` CLI command handler.

    Example:
        ```python
        code = main(["run", "hello.py"])
        ```
    """
    parser = build_parser()
    args = parser.parse_args(list(argv) if argv is not None else None)
    dispatcher = build_dispatcher(args)

    if args.command == "languages":
        _print_languages(dispatcher)
        return 0
    if args.command == "run":
        language = _infer_language(args.source, args.language)
        if language is None:
            parser.error("cannot infer the language; pass --language")
        if canonical_language(language) is None:
            _CONSOLE.print(Panel.fit(f"Unsupported language '{escape(language)}'", style="bold red"))
            return 1
        try:
            source_code = _read_source(args.source)
        except OSError as exc:
            _CONSOLE.print(Panel.fit(f"Cannot read {escape(args.source)}: {escape(str(exc))}", style="bold red"))
            return 1
        result = asyncio.run(
            dispatcher.execute_code(source_code, language, _print_event, stdin=args.stdin)
        )
        _print_result(result, args.show_detail)
        return 0 if result.ok else 1

    parser.error("Unhandled command")
    return 2
