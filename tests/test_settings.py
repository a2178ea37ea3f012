"""Tests for the settings persistence layer."""

from __future__ import annotations

import json
from dataclasses import replace
from pathlib import Path

import pytest

from arbiter.services.settings import ModelProfile, Settings, SettingsStore, redact_secret


def test_load_returns_defaults_when_file_missing(tmp_path: Path) -> None:
    settings = SettingsStore(tmp_path / "settings.json").load()

    assert settings == Settings()
    assert settings.reasoning_model == ModelProfile("arbiter", temperature=0.3)
    assert settings.execution_model == ModelProfile("dragoon", temperature=0.1)
    assert settings.max_iterations == 10
    assert settings.model_switch_cooldown == 0.5
    assert settings.channel_capacity == 100


def test_save_and_load_roundtrip_omits_api_key(tmp_path: Path) -> None:
    path = tmp_path / "settings.json"
    original = Settings(
        provider="openai",
        base_url="https://llm.example/v1",
        api_key="super-secret",
        reasoning_model=ModelProfile("planner", temperature=0.5),
        execution_model=ModelProfile("runner", temperature=0.0, enabled=False),
        max_iterations=12,
        iteration_timeout=90.0,
        working_directory="/srv/project",
    )

    SettingsStore(path).save(original)
    stored = json.loads(path.read_text(encoding="utf-8"))
    reloaded = SettingsStore(path).load()

    assert "api_key" not in stored
    assert stored["version"] == 1
    assert reloaded == replace(original, api_key="")


def test_invalid_json_falls_back_to_defaults(tmp_path: Path) -> None:
    path = tmp_path / "settings.json"
    path.write_text("{not json", encoding="utf-8")

    assert SettingsStore(path).load() == Settings()


def test_non_object_payload_falls_back_to_defaults(tmp_path: Path) -> None:
    path = tmp_path / "settings.json"
    path.write_text("[1, 2, 3]", encoding="utf-8")

    assert SettingsStore(path).load() == Settings()


def test_unknown_fields_are_ignored_and_payload_migrated(tmp_path: Path) -> None:
    path = tmp_path / "settings.json"
    path.write_text(json.dumps({"max_iterations": 7, "theme": "dark"}), encoding="utf-8")

    settings = SettingsStore(path).load()

    assert settings.max_iterations == 7
    migrated = json.loads(path.read_text(encoding="utf-8"))
    assert migrated["version"] == 1
    assert "theme" not in migrated


def test_profile_payload_accepts_name_or_partial_mapping(tmp_path: Path) -> None:
    path = tmp_path / "settings.json"
    path.write_text(
        json.dumps({"version": 1, "reasoning_model": "qwen3:14b", "execution_model": {"temperature": 0.4}}),
        encoding="utf-8",
    )

    settings = SettingsStore(path).load()

    assert settings.reasoning_model == ModelProfile("qwen3:14b", temperature=0.3)
    assert settings.execution_model == ModelProfile("dragoon", temperature=0.4)


def test_malformed_profile_keeps_default(tmp_path: Path) -> None:
    path = tmp_path / "settings.json"
    path.write_text(json.dumps({"version": 1, "execution_model": {"bogus": 1}}), encoding="utf-8")

    assert SettingsStore(path).load().execution_model == Settings().execution_model


def test_profiles_keep_their_own_servers(tmp_path: Path) -> None:
    path = tmp_path / "settings.json"
    path.write_text(
        json.dumps(
            {
                "version": 1,
                "reasoning_model": {"name": "arbiter", "server": "http://192.168.1.100:11434"},
                "execution_model": {"name": "winchester", "temperature": 0.15, "server": "http://192.168.1.101:11434"},
            }
        ),
        encoding="utf-8",
    )

    settings = SettingsStore(path).load()
    SettingsStore(path).save(settings)
    stored = json.loads(path.read_text(encoding="utf-8"))

    assert settings.reasoning_model.server == "http://192.168.1.100:11434"
    assert settings.execution_model == ModelProfile("winchester", temperature=0.15, server="http://192.168.1.101:11434")
    assert stored["execution_model"]["server"] == "http://192.168.1.101:11434"


def test_profile_server_env_overrides(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setenv("ARBITER_EXECUTION_MODEL", "qwen3:4b")
    monkeypatch.setenv("ARBITER_EXECUTION_SERVER", "http://gpu-box:11434")

    settings = SettingsStore(tmp_path / "settings.json").load()

    assert settings.execution_model == ModelProfile("qwen3:4b", temperature=0.1, server="http://gpu-box:11434")
    assert settings.reasoning_model.server is None


def test_env_overrides_take_precedence(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    path = tmp_path / "settings.json"
    SettingsStore(path).save(Settings(base_url="http://saved:11434"))
    monkeypatch.setenv("ARBITER_BASE_URL", "http://env:11434")
    monkeypatch.setenv("ARBITER_API_KEY", "env-key")
    monkeypatch.setenv("ARBITER_EXECUTION_MODEL", "qwen3:4b")

    settings = SettingsStore(path).load()

    assert settings.base_url == "http://env:11434"
    assert settings.api_key == "env-key"
    assert settings.execution_model == ModelProfile("qwen3:4b", temperature=0.1)


def test_numeric_and_bool_env_overrides(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setenv("ARBITER_MAX_ITERATIONS", "4")
    monkeypatch.setenv("ARBITER_TOOL_TIMEOUT", "2.5")
    monkeypatch.setenv("ARBITER_DEBUG_LOGGING", "yes")
    monkeypatch.setenv("ARBITER_CONTEXT_SIZE", "lots")

    settings = SettingsStore(tmp_path / "settings.json").load()

    assert settings.max_iterations == 4
    assert settings.tool_timeout == 2.5
    assert settings.debug_logging is True
    assert settings.context_size == Settings().context_size


def test_load_applies_cli_overrides(tmp_path: Path) -> None:
    settings = SettingsStore(tmp_path / "settings.json").load(
        overrides={"max_iterations": 3, "reasoning_model": "phi4", "unknown": 1, "max_tokens": None}
    )

    assert settings.max_iterations == 3
    assert settings.reasoning_model.name == "phi4"
    assert settings.max_tokens is None


def test_env_overrides_take_priority_over_cli(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setenv("ARBITER_PROVIDER", "openai")

    settings = SettingsStore(tmp_path / "settings.json").load(overrides={"provider": "ollama"})

    assert settings.provider == "openai"


def test_validation_normalizes_values(tmp_path: Path) -> None:
    settings = SettingsStore(tmp_path / "settings.json").load(
        overrides={
            "provider": "LlamaCpp",
            "max_iterations": 500,
            "model_switch_cooldown": -1.0,
            "channel_capacity": 0,
        }
    )

    assert settings.provider == "ollama"
    assert settings.max_iterations == 50
    assert settings.model_switch_cooldown == 0.0
    assert settings.channel_capacity == 1


def test_save_is_atomic(tmp_path: Path) -> None:
    path = tmp_path / "nested" / "settings.json"

    SettingsStore(path).save(Settings())

    assert path.exists()
    assert not path.with_suffix(".tmp").exists()


@pytest.mark.parametrize(
    ("value", "expected"),
    [("", ""), ("abc", "***"), ("sk-123456", "sk*****56")],
)
def test_redact_secret(value: str, expected: str) -> None:
    assert redact_secret(value) == expected
