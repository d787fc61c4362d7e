from pathlib import Path

import pytest

from snippet_runner import RunnerSettings
from snippet_runner.dispatcher import Dispatcher
from snippet_runner.settings import _default_settings_path, _read_settings_toml


def test_defaults_come_from_bundled_settings() -> None:
    settings = RunnerSettings()
    assert settings.compile_url == "http://localhost:3000/api/compile/cpp"
    assert settings.inprocess_timeout_seconds == 10
    assert settings.max_timeout_ms == 5000
    assert settings.min_interval_ms == 100
    assert settings.max_source_kb == 100
    assert settings.enable_fallback is True
    assert "math" in settings.allowed_modules
    assert "os" not in settings.allowed_modules


def test_built_in_defaults_match_bundled_settings(tmp_path: Path) -> None:
    assert _read_settings_toml(tmp_path / "missing.toml") == _read_settings_toml(_default_settings_path())


def test_default_allowed_modules_are_not_shared_between_instances() -> None:
    first = RunnerSettings()
    first.allowed_modules.append("textwrap2")
    assert "textwrap2" not in RunnerSettings().allowed_modules


def test_compile_url_joins_slashes() -> None:
    settings = RunnerSettings(compile_service_url="http://svc:3000/", compile_endpoint="/api/compile/cpp")
    assert settings.compile_url == "http://svc:3000/api/compile/cpp"


def test_from_file_reads_settings_table(tmp_path: Path) -> None:
    settings_file = tmp_path / "settings.toml"
    settings_file.write_text(
        (
            "[settings]\n"
            "compile_service_url = \"http://compile.internal:8080\"\n"
            "max_timeout_ms = 1000\n"
            "enable_fallback = false\n"
            "allowed_modules = [\"math\"]\n"
        ),
        encoding="utf-8",
    )

    settings = RunnerSettings.from_file(str(settings_file))

    assert settings.compile_url == "http://compile.internal:8080/api/compile/cpp"
    assert settings.max_timeout_ms == 1000
    assert settings.enable_fallback is False
    assert settings.allowed_modules == ["math"]
    assert settings.min_interval_ms == 100
    assert settings.config_path == str(settings_file)


def test_from_file_without_table_header(tmp_path: Path) -> None:
    settings_file = tmp_path / "flat.toml"
    settings_file.write_text("max_source_kb = 5\n", encoding="utf-8")
    assert RunnerSettings.from_file(str(settings_file)).max_source_kb == 5


def test_dispatcher_reloads_settings_from_config_path(tmp_path: Path) -> None:
    settings_file = tmp_path / "settings.toml"
    settings_file.write_text("[settings]\nmax_source_kb = 7\n", encoding="utf-8")
    dispatcher = Dispatcher(RunnerSettings(config_path=str(settings_file)))
    assert dispatcher.settings.max_source_kb == 7


@pytest.mark.parametrize(
    ("overrides", "field_name"),
    [
        ({"request_timeout_seconds": 0}, "request_timeout_seconds"),
        ({"max_source_kb": 0}, "max_source_kb"),
        ({"inprocess_timeout_seconds": -1}, "inprocess_timeout_seconds"),
        ({"fallback_timeout_seconds": -1}, "fallback_timeout_seconds"),
        ({"min_interval_ms": -1}, "min_interval_ms"),
        ({"fallback_interpreter": "no_colon_here"}, "fallback_interpreter"),
        ({"allowed_modules": ["math", "importlib"]}, "allowed_modules"),
    ],
)
def test_invalid_values_raise(overrides: dict, field_name: str) -> None:
    with pytest.raises(ValueError, match=field_name):
        RunnerSettings(**overrides)


def test_allowed_modules_must_be_strings(tmp_path: Path) -> None:
    settings_file = tmp_path / "bad.toml"
    settings_file.write_text("[settings]\nallowed_modules = [1, 2]\n", encoding="utf-8")
    with pytest.raises(ValueError, match="allowed_modules"):
        RunnerSettings.from_file(str(settings_file))
