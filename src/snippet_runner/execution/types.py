from __future__ import annotations

from dataclasses import dataclass
from typing import Any


@dataclass(frozen=True, slots=True)
class ExecutionRequest:
    """A snippet and the language it was tagged with.

    Example:
        ```python
        req = ExecutionRequest(source_code="print(1)", language="py")
        ```
    """

    source_code: str
    language: str
    stdin: str = ""


@dataclass(frozen=True, slots=True)
class CompileServiceReply:
    """Normalized body returned by the compile-and-run service.

    Example:
        ```python
        reply = CompileServiceReply.from_json({"success": True, "output": "42\\n", "exitCode": 0})
        ```
    """

    success: bool
    phase: str | None = None
    error: str | None = None
    output: str = ""
    stderr: str = ""
    exit_code: int | None = None
    killed: bool = False

    @classmethod
    def from_json(cls, body: Any) -> "CompileServiceReply":
        """Build a reply from a decoded JSON body, tolerating missing fields.

        Example:
            ```python
            reply = CompileServiceReply.from_json({"success": False, "phase": "compile", "error": "expected ';'"})
            ```
        """
        if not isinstance(body, dict):
            raise ValueError("compile service reply must be a JSON object")
        exit_code = body.get("exitCode")
        return cls(
            success=bool(body.get("success", False)),
            phase=body.get("phase"),
            error=None if body.get("error") is None else str(body.get("error")),
            output=str(body.get("output") or ""),
            stderr=str(body.get("stderr") or ""),
            exit_code=int(exit_code) if isinstance(exit_code, (int, float)) else None,
            killed=bool(body.get("killed", False)),
        )
