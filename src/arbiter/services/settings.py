"""Settings dataclasses and persistence helpers."""

from __future__ import annotations

import json
import logging
import os
from dataclasses import asdict, dataclass, field, fields, replace
from pathlib import Path
from typing import Any, Dict, Mapping

__all__ = [
    "ModelProfile",
    "Settings",
    "SettingsStore",
    "PROVIDER_CHOICES",
    "redact_secret",
]

LOGGER = logging.getLogger(__name__)
_SETTINGS_DIR = Path.home() / ".arbiter"
_DEFAULT_SETTINGS_PATH = _SETTINGS_DIR / "settings.json"
_SETTINGS_VERSION = 1
_ENV_OVERRIDES: Mapping[str, str] = {
    "ARBITER_PROVIDER": "provider",
    "ARBITER_BASE_URL": "base_url",
    "ARBITER_API_KEY": "api_key",
    "ARBITER_WORKING_DIRECTORY": "working_directory",
}
_PROFILE_ENV_OVERRIDES: Mapping[str, str] = {
    "ARBITER_REASONING_MODEL": "reasoning_model",
    "ARBITER_EXECUTION_MODEL": "execution_model",
}
_PROFILE_SERVER_ENV_OVERRIDES: Mapping[str, str] = {
    "ARBITER_REASONING_SERVER": "reasoning_model",
    "ARBITER_EXECUTION_SERVER": "execution_model",
}
_BOOL_ENV_OVERRIDES: Mapping[str, str] = {
    "ARBITER_DEBUG_LOGGING": "debug_logging",
}
_FLOAT_ENV_OVERRIDES: Mapping[str, str] = {
    "ARBITER_REQUEST_TIMEOUT": "request_timeout",
    "ARBITER_MODEL_SWITCH_COOLDOWN": "model_switch_cooldown",
    "ARBITER_ITERATION_TIMEOUT": "iteration_timeout",
    "ARBITER_TOOL_TIMEOUT": "tool_timeout",
}
_INT_ENV_OVERRIDES: Mapping[str, str] = {
    "ARBITER_MAX_ITERATIONS": "max_iterations",
    "ARBITER_CONTEXT_SIZE": "context_size",
}
_TRUE_VALUES = {"1", "true", "yes", "on", "debug"}
_PROFILE_FIELDS = ("reasoning_model", "execution_model")
_UNPERSISTED_FIELDS = ("api_key",)
_NULLABLE_FIELDS = frozenset(
    {"max_tokens", "context_compression_threshold", "iteration_timeout", "working_directory", "system_prompt"}
)
PROVIDER_CHOICES: tuple[str, ...] = ("ollama", "openai")


@dataclass(slots=True)
class ModelProfile:
    """A model the orchestrator can route a phase to.

    ``server`` is the endpoint hosting the model (an Ollama root URL, or a
    ``/v1`` base URL for OpenAI-compatible providers). None uses ``base_url``.
    """

    name: str
    temperature: float = 0.2
    enabled: bool = True
    server: str | None = None


@dataclass(slots=True)
class Settings:
    """User-configurable settings persisted between sessions.

    ``api_key`` is never written to disk; supply it through ``ARBITER_API_KEY``.
    """

    provider: str = "ollama"
    base_url: str = "http://localhost:11434"
    api_key: str = ""
    reasoning_model: ModelProfile = field(default_factory=lambda: ModelProfile("arbiter", temperature=0.3))
    execution_model: ModelProfile = field(default_factory=lambda: ModelProfile("dragoon", temperature=0.1))
    max_iterations: int = 10
    model_switch_cooldown: float = 0.5
    context_size: int = 32_768
    max_tokens: int | None = 4_096
    context_compression_threshold: int | None = 24_000
    channel_capacity: int = 100
    request_timeout: float = 300.0
    max_retries: int = 3
    retry_min_seconds: float = 0.5
    retry_max_seconds: float = 6.0
    iteration_timeout: float | None = None
    tool_timeout: float = 120.0
    working_directory: str | None = None
    system_prompt: str | None = None
    debug_logging: bool = False


class SettingsStore:
    """Persistence adapter for :class:`Settings`."""

    def __init__(self, path: Path | None = None) -> None:
        self._path = path or _DEFAULT_SETTINGS_PATH

    @property
    def path(self) -> Path:
        """Return the resolved path backing this store."""

        return self._path

    def load(self, *, overrides: Mapping[str, Any] | None = None) -> Settings:
        """Load settings from disk, applying CLI/environment overrides when present."""

        payload = self._read_payload()
        settings = Settings()
        if payload:
            data = _filter_fields(payload)
            for name in _PROFILE_FIELDS:
                if name in data:
                    data[name] = _coerce_profile(data[name], getattr(settings, name))
            try:
                settings = Settings(**data)
            except TypeError as exc:
                LOGGER.warning("Settings payload contained unexpected data: %s", exc)
                settings = Settings()
            LOGGER.debug("Settings loaded from %s", self._path)

            if payload.get("version") != _SETTINGS_VERSION:
                try:
                    self.save(settings)
                except OSError as exc:
                    LOGGER.warning("Failed to migrate settings payload: %s", exc)

        if overrides:
            settings = self._apply_overrides(settings, overrides, source="CLI")

        settings = self._apply_env_overrides(settings)
        return _validate(settings)

    def save(self, settings: Settings) -> Path:
        """Persist settings to disk with atomic file writes."""

        payload = self._serialize(settings)
        body = json.dumps(payload, indent=2, sort_keys=True)
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self._path.with_suffix(".tmp")
        tmp_path.write_text(body, encoding="utf-8")
        tmp_path.replace(self._path)
        LOGGER.debug("Settings saved to %s", self._path)
        return self._path

    def _serialize(self, settings: Settings) -> Dict[str, Any]:
        data = asdict(settings)
        for name in _UNPERSISTED_FIELDS:
            data.pop(name, None)
        data["version"] = _SETTINGS_VERSION
        return data

    def _read_payload(self) -> Dict[str, Any]:
        if not self._path.exists():
            return {}
        try:
            payload = json.loads(self._path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return {}
        except json.JSONDecodeError as exc:
            LOGGER.warning("Settings file %s is not valid JSON: %s", self._path, exc)
            return {}
        if not isinstance(payload, dict):
            LOGGER.warning("Settings file %s does not contain a JSON object", self._path)
            return {}
        return payload

    def _apply_overrides(
        self,
        settings: Settings,
        overrides: Mapping[str, Any],
        *,
        source: str = "runtime",
    ) -> Settings:
        allowed = {item.name for item in fields(Settings)}
        filtered: Dict[str, Any] = {}
        for key, value in overrides.items():
            if key not in allowed:
                continue
            if value is None and key not in _NULLABLE_FIELDS:
                continue
            if key in _PROFILE_FIELDS:
                value = _coerce_profile(value, getattr(settings, key))
            filtered[key] = value
        if filtered:
            LOGGER.debug("Applying %s settings overrides: %s", source, sorted(filtered))
            settings = replace(settings, **filtered)
        return settings

    def _apply_env_overrides(self, settings: Settings) -> Settings:
        overrides: Dict[str, Any] = {}
        for env_name, field_name in _ENV_OVERRIDES.items():
            value = os.environ.get(env_name)
            if value is not None:
                overrides[field_name] = value
        for env_name, field_name in _PROFILE_ENV_OVERRIDES.items():
            value = os.environ.get(env_name)
            if value:
                overrides[field_name] = replace(getattr(settings, field_name), name=value.strip())
        for env_name, field_name in _PROFILE_SERVER_ENV_OVERRIDES.items():
            value = os.environ.get(env_name)
            if value:
                profile = overrides.get(field_name) or getattr(settings, field_name)
                overrides[field_name] = replace(profile, server=value.strip())
        for env_name, field_name in _BOOL_ENV_OVERRIDES.items():
            value = os.environ.get(env_name)
            if value is not None:
                overrides[field_name] = value.strip().lower() in _TRUE_VALUES
        for env_name, field_name in _INT_ENV_OVERRIDES.items():
            value = os.environ.get(env_name)
            if value is None:
                continue
            try:
                overrides[field_name] = int(value, 10)
            except ValueError:
                LOGGER.warning("Environment override %s=%s is not a valid integer", env_name, value)
        for env_name, field_name in _FLOAT_ENV_OVERRIDES.items():
            value = os.environ.get(env_name)
            if value is None:
                continue
            try:
                overrides[field_name] = float(value)
            except ValueError:
                LOGGER.warning("Environment override %s=%s is not a valid float", env_name, value)
        if overrides:
            settings = self._apply_overrides(settings, overrides, source="environment")
        return settings


def _filter_fields(payload: Mapping[str, Any]) -> Dict[str, Any]:
    allowed = {item.name for item in fields(Settings)} - set(_UNPERSISTED_FIELDS)
    return {key: value for key, value in payload.items() if key in allowed}


def _coerce_profile(value: Any, current: ModelProfile) -> ModelProfile:
    if isinstance(value, ModelProfile):
        return value
    if isinstance(value, str):
        return replace(current, name=value.strip())
    if isinstance(value, Mapping):
        try:
            return ModelProfile(**{**asdict(current), **value})
        except TypeError as exc:
            LOGGER.warning("Ignoring malformed model profile %r: %s", value, exc)
            return current
    LOGGER.warning("Ignoring malformed model profile %r", value)
    return current


def _validate(settings: Settings) -> Settings:
    provider = (settings.provider or "").strip().lower()
    if provider not in PROVIDER_CHOICES:
        LOGGER.warning("Unknown provider '%s'; defaulting to ollama.", settings.provider)
        provider = "ollama"
    max_iterations = max(1, min(int(settings.max_iterations), 50))
    if max_iterations != settings.max_iterations:
        LOGGER.warning("max_iterations clamped to %d", max_iterations)
    return replace(
        settings,
        provider=provider,
        max_iterations=max_iterations,
        model_switch_cooldown=max(0.0, float(settings.model_switch_cooldown)),
        channel_capacity=max(1, int(settings.channel_capacity)),
    )


def redact_secret(value: str) -> str:
    stripped = (value or "").strip()
    if not stripped:
        return ""
    if len(stripped) <= 4:
        return "*" * len(stripped)
    return f"{stripped[:2]}{'*' * (len(stripped) - 4)}{stripped[-2:]}"
