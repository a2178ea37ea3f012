"""Service layer helpers (settings persistence)."""

from .settings import PROVIDER_CHOICES, ModelProfile, Settings, SettingsStore, redact_secret

__all__ = [
    "ModelProfile",
    "Settings",
    "SettingsStore",
    "PROVIDER_CHOICES",
    "redact_secret",
]
