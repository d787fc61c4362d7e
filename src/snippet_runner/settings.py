from __future__ import annotations

import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any


def _default_settings_path() -> Path:
    """Return bundled default settings TOML path.

    Example:
        ```python
        path = _default_settings_path()
        ```
    """
    return Path(__file__).with_name("default_settings.toml")


def _read_settings_toml(path: Path) -> dict[str, Any]:
    """Read settings TOML and return the settings table.

    Example:
        ```python
        raw = _read_settings_toml(Path("/tmp/settings.toml"))
        ```
    """
    if not path.exists():
        return {
            "compile_service_url": "http://localhost:3000",
            "compile_endpoint": "/api/compile/cpp",
            "request_timeout_seconds": 45,
            "max_source_kb": 100,
            "inprocess_timeout_seconds": 10,
            "fallback_timeout_seconds": 10,
            "min_interval_ms": 100,
            "max_timeout_ms": 5000,
            "enable_fallback": True,
            "fallback_interpreter": "snippet_runner.execution.fallback:load_cling_interpreter",
            "allowed_modules": [
                "math", "cmath", "string", "re", "json", "datetime", "collections",
                "itertools", "functools", "operator", "statistics", "random", "decimal",
                "fractions", "textwrap", "heapq", "bisect",
            ],
        }
    raw = tomllib.loads(path.read_text(encoding="utf-8"))
    settings_obj = raw.get("settings", raw)
    if not isinstance(settings_obj, dict):
        raise ValueError("Settings config must be a TOML table")
    return settings_obj


def _list_of_str(value: Any, field_name: str) -> list[str]:
    """Validate and normalize a list-of-strings settings field.

    Example:
        ```python
        modules = _list_of_str(["math", "json"], "allowed_modules")
        ```
    """
    if value is None:
        return []
    if not isinstance(value, list):
        raise ValueError(f"'{field_name}' must be a list of strings")
    out: list[str] = []
    for item in value:
        if not isinstance(item, str):
            raise ValueError(f"'{field_name}' must contain only strings")
        out.append(item)
    return out


_DEFAULTS_RAW = _read_settings_toml(_default_settings_path())
DEFAULT_COMPILE_SERVICE_URL = str(_DEFAULTS_RAW.get("compile_service_url", "http://localhost:3000"))
DEFAULT_COMPILE_ENDPOINT = str(_DEFAULTS_RAW.get("compile_endpoint", "/api/compile/cpp"))
DEFAULT_REQUEST_TIMEOUT_SECONDS = float(_DEFAULTS_RAW.get("request_timeout_seconds", 45))
DEFAULT_MAX_SOURCE_KB = int(_DEFAULTS_RAW.get("max_source_kb", 100))
DEFAULT_INPROCESS_TIMEOUT_SECONDS = float(_DEFAULTS_RAW.get("inprocess_timeout_seconds", 10))
DEFAULT_FALLBACK_TIMEOUT_SECONDS = float(_DEFAULTS_RAW.get("fallback_timeout_seconds", 10))
DEFAULT_MIN_INTERVAL_MS = int(_DEFAULTS_RAW.get("min_interval_ms", 100))
DEFAULT_MAX_TIMEOUT_MS = int(_DEFAULTS_RAW.get("max_timeout_ms", 5000))
DEFAULT_ENABLE_FALLBACK = bool(_DEFAULTS_RAW.get("enable_fallback", True))
DEFAULT_FALLBACK_INTERPRETER = str(
    _DEFAULTS_RAW.get(
        "fallback_interpreter", "snippet_runner.execution.fallback:load_cling_interpreter"
    )
)
DEFAULT_ALLOWED_MODULES = _list_of_str(
    _DEFAULTS_RAW.get("allowed_modules", []), "allowed_modules"
)


@dataclass(slots=True)
class RunnerSettings:
    """Tunables for the dispatcher and its executors.

    Example:
        ```python
        settings = RunnerSettings(compile_service_url="http://compile:3000", max_timeout_ms=2000)
        ```
    """

    compile_service_url: str = DEFAULT_COMPILE_SERVICE_URL
    compile_endpoint: str = DEFAULT_COMPILE_ENDPOINT
    request_timeout_seconds: float = DEFAULT_REQUEST_TIMEOUT_SECONDS
    max_source_kb: int = DEFAULT_MAX_SOURCE_KB
    inprocess_timeout_seconds: float = DEFAULT_INPROCESS_TIMEOUT_SECONDS
    fallback_timeout_seconds: float = DEFAULT_FALLBACK_TIMEOUT_SECONDS
    min_interval_ms: int = DEFAULT_MIN_INTERVAL_MS
    max_timeout_ms: int = DEFAULT_MAX_TIMEOUT_MS
    enable_fallback: bool = DEFAULT_ENABLE_FALLBACK
    fallback_interpreter: str = DEFAULT_FALLBACK_INTERPRETER
    allowed_modules: list[str] = field(default_factory=lambda: DEFAULT_ALLOWED_MODULES.copy())
    config_path: str | None = None

    def __post_init__(self) -> None:
        """Validate numeric bounds and the interpreter factory path.

        Example:
            ```python
            RunnerSettings(min_interval_ms=100)
            ```
        """
        if self.request_timeout_seconds <= 0:
            raise ValueError("'request_timeout_seconds' must be positive")
        if self.max_source_kb <= 0:
            raise ValueError("'max_source_kb' must be positive")
        if self.inprocess_timeout_seconds < 0:
            raise ValueError("'inprocess_timeout_seconds' must be zero or positive")
        if self.fallback_timeout_seconds < 0:
            raise ValueError("'fallback_timeout_seconds' must be zero or positive")
        if self.min_interval_ms < 0 or self.max_timeout_ms < 0:
            raise ValueError("'min_interval_ms' and 'max_timeout_ms' must not be negative")
        if ":" not in self.fallback_interpreter:
            raise ValueError("'fallback_interpreter' must look like 'package.module:factory'")
        if "importlib" in self.allowed_modules:
            raise ValueError("'allowed_modules' may not contain 'importlib'")

    @property
    def compile_url(self) -> str:
        """Return the full compile service URL.

        Example:
            ```python
            RunnerSettings().compile_url  # "http://localhost:3000/api/compile/cpp"
            ```
        """
        return self.compile_service_url.rstrip("/") + "/" + self.compile_endpoint.lstrip("/")

    @classmethod
    def from_file(cls, config_path: str) -> "RunnerSettings":
        """Create settings from a TOML file with an optional `[settings]` table.

        Example:
            ```python
            settings = RunnerSettings.from_file("/etc/snippet-runner.toml")
            ```
        """
        raw = _read_settings_toml(Path(config_path))
        return cls(
            compile_service_url=str(raw.get("compile_service_url", DEFAULT_COMPILE_SERVICE_URL)),
            compile_endpoint=str(raw.get("compile_endpoint", DEFAULT_COMPILE_ENDPOINT)),
            request_timeout_seconds=float(
                raw.get("request_timeout_seconds", DEFAULT_REQUEST_TIMEOUT_SECONDS)
            ),
            max_source_kb=int(raw.get("max_source_kb", DEFAULT_MAX_SOURCE_KB)),
            inprocess_timeout_seconds=float(
                raw.get("inprocess_timeout_seconds", DEFAULT_INPROCESS_TIMEOUT_SECONDS)
            ),
            fallback_timeout_seconds=float(
                raw.get("fallback_timeout_seconds", DEFAULT_FALLBACK_TIMEOUT_SECONDS)
            ),
            min_interval_ms=int(raw.get("min_interval_ms", DEFAULT_MIN_INTERVAL_MS)),
            max_timeout_ms=int(raw.get("max_timeout_ms", DEFAULT_MAX_TIMEOUT_MS)),
            enable_fallback=bool(raw.get("enable_fallback", DEFAULT_ENABLE_FALLBACK)),
            fallback_interpreter=str(
                raw.get("fallback_interpreter", DEFAULT_FALLBACK_INTERPRETER)
            ),
            allowed_modules=_list_of_str(
                raw.get("allowed_modules", DEFAULT_ALLOWED_MODULES), "allowed_modules"
            ),
            config_path=config_path,
        )
