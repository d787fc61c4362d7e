from __future__ import annotations

import json
from types import SimpleNamespace
from typing import Any

from ..results import ConsoleLine, EventKind
from .events import EventStream

CONSOLE_CHANNELS = ("log", "info", "warn", "error", "debug")
UNFORMATTABLE = "[unformattable object]"


def format_console_value(value: Any) -> str:
    """Render one console argument as text.

    Containers are serialized as JSON, None becomes the literal `None`, and
    anything that cannot be rendered degrades to a placeholder.

    Example:
        ```python
        format_console_value({"a": [1, 2]})  # '{"a": [1, 2]}'
        ```
    """
    if value is None:
        return "None"
    if isinstance(value, str):
        return value
    try:
        if isinstance(value, (dict, list, tuple)):
            return json.dumps(value, ensure_ascii=False, default=repr)
        return str(value)
    except Exception:
        return UNFORMATTABLE


def format_console_args(args: tuple[Any, ...], sep: str = " ") -> str:
    """Render console call arguments into one line.

    Example:
        ```python
        format_console_args(("total", 3, None))  # "total 3 None"
        ```
    """
    return str(sep).join(format_console_value(arg) for arg in args)


class ConsoleCapture:
    """Captured console surface: forwards each line as an event, then buffers it.

    Example:
        ```python
        console = ConsoleCapture(EventStream(None))
        console.write("warn", "low disk")
        ```
    """

    def __init__(self, stream: EventStream) -> None:
        """Bind the capture to one invocation's event stream.

        Example:
            ```python
            console = ConsoleCapture(stream)
            ```
        """
        self._stream = stream
        self.lines: list[ConsoleLine] = []

    def write(self, channel: str, *args: Any, sep: str = " ") -> None:
        """Format and record a console call on `channel`.

        Example:
            ```python
            console.write("log", "hi")
            ```
        """
        line = ConsoleLine(channel, format_console_args(args, sep))
        self._stream.emit(EventKind.CONSOLE, line)
        self.lines.append(line)

    def print(self, *args: Any, sep: str = " ", end: str = "\n", **_: Any) -> None:
        """`print` replacement routed to the log channel.

        Example:
            ```python
            console.print("a", "b", sep="-")
            ```
        """
        text = format_console_args(args, sep) + str(end)
        if text.endswith("\n"):
            text = text[:-1]
        line = ConsoleLine("log", text)
        self._stream.emit(EventKind.CONSOLE, line)
        self.lines.append(line)

    def has_errors(self) -> bool:
        """Return True if any error-channel line was captured.

        Example:
            ```python
            if not console.has_errors(): ...
            ```
        """
        return any(line.stream == "error" for line in self.lines)

    def namespace(self) -> SimpleNamespace:
        """Return the `console` object exposed to evaluated code.

        Example:
            ```python
            scope["console"] = console.namespace()
            ```
        """
        channels = {name: self._channel(name) for name in CONSOLE_CHANNELS}
        channels["warning"] = channels["warn"]
        return SimpleNamespace(**channels)

    def _channel(self, name: str) -> Any:
        """Build the callable for one console channel.

        Example:
            ```python
            log = console._channel("log")
            ```
        """

        def emit(*args: Any, sep: str = " ") -> None:
            """Write `args` to this channel.

            Example:
                ```python
                console.info("ready")
                ```
            """
            self.write(name, *args, sep=sep)

        emit.__name__ = name
        return emit
