"""Child process that runs one C++ program under Cling.

Reads `{"source": ..., "stdin": ...}` as JSON from standard input, serves the
program's input on fd 0 and lets it write straight to fd 1.
"""

from __future__ import annotations

import json
import sys
from typing import Any

from .fallback import FLUSH_HELPER, WORKER_FAILED_STATUS, feed_fd_input, split_includes


def run_program(cppyy: Any, source: str) -> int:
    """Declare the program inside its own namespace and call its `main`.

    Example:
        ```python
        import cppyy
        status = run_program(cppyy, "int main() { return 0; }")
        ```
    """
    includes, body = split_includes(source)
    cppyy.cppdef(FLUSH_HELPER)
    if includes:
        cppyy.cppdef("\n".join(includes))
    cppyy.cppdef(f"namespace snippet_program {{\n{body}\n}}")
    try:
        status = cppyy.gbl.snippet_program.main()
    finally:
        cppyy.gbl.snippet_runner_io.flush_all()
    return int(status or 0)


def main() -> int:
    """Run the requested program and exit with its status.

    Example:
        ```python
        # echo '{"source": "int main() { return 0; }"}' | python -m snippet_runner.execution.cling_worker
        ```
    """
    request = json.loads(sys.stdin.buffer.read().decode("utf-8") or "{}")
    try:
        import cppyy

        with feed_fd_input(0, str(request.get("stdin", ""))):
            return run_program(cppyy, str(request.get("source", "")))
    except Exception as exc:
        sys.stderr.write(f"{type(exc).__name__}: {exc}\n")
        return WORKER_FAILED_STATUS


if __name__ == "__main__":
    raise SystemExit(main())
