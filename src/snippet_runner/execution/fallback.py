from __future__ import annotations

import codecs
import contextlib
import importlib
import importlib.util
import json
import os
import re
import subprocess
import sys
import threading
from dataclasses import dataclass
from typing import Callable, Iterator, Protocol, Sequence

from loguru import logger

_INCLUDE_LINE = re.compile(r"^\s*#\s*include\b.*$", re.MULTILINE)

FLUSH_HELPER = """
#include <cstdio>
#include <iostream>
namespace snippet_runner_io {
inline void flush_all() { std::cout.flush(); std::cerr.flush(); std::fflush(nullptr); }
}
"""
# Exit status the Cling worker uses when it could not declare or run the program.
WORKER_FAILED_STATUS = 125


@dataclass(frozen=True, slots=True)
class InterpreterConfig:
    """Options handed to a fallback interpreter run.

    `write` receives every chunk the program writes to standard output.
    `unsigned_overflow` is "warn" so wrap-around is reported instead of aborting.
    `timeout_seconds` bounds the run; the interpreter raises ProgramTimeout past it.

    Example:
        ```python
        config = InterpreterConfig(write=chunks.append)
        ```
    """

    write: Callable[[str], None]
    unsigned_overflow: str = "warn"
    timeout_seconds: float | None = None


class ProgramTimeout(TimeoutError):
    """Raised by an interpreter after it stopped a program that ran past its time limit."""


class FallbackInterpreter(Protocol):
    def run(self, source: str, stdin: str, config: InterpreterConfig) -> int:
        """Run a whole program synchronously and return its exit status.

        Example:
            ```python
            status = interpreter.run(source, "", InterpreterConfig(write=print))
            ```
        """
        ...


def resolve_interpreter_factory(path: str) -> Callable[[], FallbackInterpreter]:
    """Import the `package.module:factory` callable named by `path`.

    Example:
        ```python
        factory = resolve_interpreter_factory("snippet_runner.execution.fallback:load_cling_interpreter")
        ```
    """
    module_name, _, attr = path.partition(":")
    module = importlib.import_module(module_name)
    try:
        return getattr(module, attr)
    except AttributeError:
        raise ImportError(f"'{module_name}' has no interpreter factory '{attr}'") from None


def split_includes(source: str) -> tuple[list[str], str]:
    """Separate `#include` lines, which must stay at global scope, from the rest.

    Example:
        ```python
        includes, body = split_includes("#include <iostream>\\nint main() {}")
        ```
    """
    includes = [match.group(0).strip() for match in _INCLUDE_LINE.finditer(source)]
    return includes, _INCLUDE_LINE.sub("", source)


def _pump(read_end: int, write: Callable[[str], None]) -> None:
    """Forward bytes from a pipe to `write` until EOF.

    Example:
        ```python
        threading.Thread(target=_pump, args=(read_end, chunks.append)).start()
        ```
    """
    decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
    while True:
        chunk = os.read(read_end, 4096)
        if not chunk:
            break
        text = decoder.decode(chunk)
        if text:
            write(text)
    tail = decoder.decode(b"", final=True)
    if tail:
        write(tail)


@contextlib.contextmanager
def feed_fd_input(fd: int, text: str) -> Iterator[None]:
    """Serve `text` on a file descriptor while the block runs.

    Example:
        ```python
        with feed_fd_input(0, "3 4\\n"):
            interpreter_main()
        ```
    """
    read_end, write_end = os.pipe()
    saved = os.dup(fd)
    os.dup2(read_end, fd)
    os.close(read_end)

    def feed() -> None:
        """Write the whole input then close the pipe.

        Example:
            ```python
            threading.Thread(target=feed).start()
            ```
        """
        with os.fdopen(write_end, "wb") as handle:
            handle.write(text.encode("utf-8"))

    feeder = threading.Thread(target=feed, daemon=True)
    feeder.start()
    try:
        yield
    finally:
        os.dup2(saved, fd)
        os.close(saved)
        feeder.join(timeout=1)


def worker_command() -> list[str]:
    """Return the command that starts one Cling worker process.

    Example:
        ```python
        subprocess.Popen(worker_command(), stdin=subprocess.PIPE, stdout=subprocess.PIPE)
        ```
    """
    return [sys.executable, "-m", "snippet_runner.execution.cling_worker"]


class ClingInterpreter:
    """Fallback C++ interpreter that runs each program under Cling in its own process.

    The child owns its standard streams: the program writes to a pipe the
    parent reads, so host output is never mixed in. A program that overruns
    its time limit is killed along with its process.

    Example:
        ```python
        interpreter = ClingInterpreter()
        status = interpreter.run(source, "", InterpreterConfig(write=print, timeout_seconds=10))
        ```
    """

    def __init__(self, command: Sequence[str] | None = None) -> None:
        """Use `command` to start workers, defaulting to the bundled Cling worker.

        Example:
            ```python
            interpreter = ClingInterpreter([sys.executable, "-m", "snippet_runner.execution.cling_worker"])
            ```
        """
        self._command = list(command or worker_command())

    def run(self, source: str, stdin: str, config: InterpreterConfig) -> int:
        """Run the program in a fresh worker and return its exit status.

        Cling wraps unsigned overflow silently, which satisfies the "warn" policy.

        Example:
            ```python
            status = interpreter.run("int main() { return 0; }", "", config)
            ```
        """
        payload = json.dumps({"source": source, "stdin": stdin}).encode("utf-8")
        process = subprocess.Popen(
            self._command,
            stdin=subprocess.PIPE,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
        )
        diagnostics: list[str] = []

        def send() -> None:
            """Hand the payload to the worker and close its input.

            Example:
                ```python
                threading.Thread(target=send).start()
                ```
            """
            try:
                with process.stdin:
                    process.stdin.write(payload)
            except BrokenPipeError:
                # The worker exited before reading; its status and stderr say why.
                logger.debug("Cling worker closed its input early")

        threads = [
            threading.Thread(target=send, daemon=True),
            threading.Thread(target=_pump, args=(process.stdout.fileno(), config.write), daemon=True),
            threading.Thread(target=_pump, args=(process.stderr.fileno(), diagnostics.append), daemon=True),
        ]
        for thread in threads:
            thread.start()
        try:
            status = process.wait(timeout=config.timeout_seconds)
        except subprocess.TimeoutExpired:
            process.kill()
            process.wait()
            raise ProgramTimeout(f"C++ program exceeded {config.timeout_seconds}s and was killed") from None
        finally:
            for thread in threads:
                thread.join()
            process.stdout.close()
            process.stderr.close()

        stderr = "".join(diagnostics).strip()
        if status == WORKER_FAILED_STATUS:
            raise RuntimeError(stderr or "the fallback interpreter could not run the program")
        if status < 0:
            raise RuntimeError(f"program terminated by signal {-status}" + (f"\n{stderr}" if stderr else ""))
        if stderr:
            logger.debug("C++ program wrote to stderr: {}", stderr)
        return status


def load_cling_interpreter() -> ClingInterpreter:
    """Check that `cppyy` (the `fallback` extra) is installed and build the interpreter.

    Example:
        ```python
        interpreter = load_cling_interpreter()
        ```
    """
    if importlib.util.find_spec("cppyy") is None:
        raise ImportError("No module named 'cppyy'; install the 'fallback' extra")
    return ClingInterpreter()
