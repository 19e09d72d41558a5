"""Service layer helpers (settings persistence and the settings cell)."""

from .settings import SecretVault, Settings, SettingsCell, SettingsStore, redact_secret

__all__ = [
    "SecretVault",
    "Settings",
    "SettingsCell",
    "SettingsStore",
    "redact_secret",
]
