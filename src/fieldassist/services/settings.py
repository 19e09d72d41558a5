"""Settings dataclass, persistence helpers and the observable settings cell."""

from __future__ import annotations

import json
import logging
import os
from dataclasses import asdict, dataclass, field, fields, replace
from pathlib import Path
from typing import Any, Callable, Dict, Mapping

from cryptography.fernet import Fernet, InvalidToken

from ..ai.client import DEFAULT_BASE_URL, DEFAULT_MODEL, ClientSettings
from ..ui.events import EventBus, SettingsChanged

__all__ = [
    "Settings",
    "SettingsCell",
    "SettingsStore",
    "SecretVault",
    "redact_secret",
]

LOGGER = logging.getLogger(__name__)
_SETTINGS_DIR = Path.home() / ".fieldassist"
_DEFAULT_SETTINGS_PATH = _SETTINGS_DIR / "settings.json"
_SETTINGS_VERSION = 1
_ENV_OVERRIDES: Mapping[str, str] = {
    "FIELDASSIST_API_KEY": "api_key",
    "FIELDASSIST_BASE_URL": "base_url",
    "FIELDASSIST_MODEL": "model",
}
_BOOL_ENV_OVERRIDES: Mapping[str, str] = {
    "FIELDASSIST_DEBUG_LOGGING": "debug_logging",
    "FIELDASSIST_AUTO_APPLY": "auto_apply",
}
_FLOAT_ENV_OVERRIDES: Mapping[str, str] = {
    "FIELDASSIST_REQUEST_TIMEOUT": "request_timeout",
    "FIELDASSIST_TEMPERATURE": "temperature",
    "FIELDASSIST_MATCH_THRESHOLD": "match_threshold",
}
_INT_ENV_OVERRIDES: Mapping[str, str] = {
    "FIELDASSIST_CONTEXT_CHAR_BUDGET": "context_char_budget",
    "FIELDASSIST_MATCH_DISTANCE": "match_distance",
}
_TRUE_VALUES = {"1", "true", "yes", "on", "debug"}
_API_KEY_FIELD = "api_key_ciphertext"


@dataclass(slots=True)
class Settings:
    """User-configurable assistant settings persisted between sessions."""

    base_url: str = DEFAULT_BASE_URL
    api_key: str = ""
    model: str = DEFAULT_MODEL
    temperature: float = 0.2
    request_timeout: float = 90.0
    max_retries: int = 3
    retry_min_seconds: float = 0.5
    retry_max_seconds: float = 6.0
    default_headers: dict[str, str] = field(default_factory=dict)
    context_char_budget: int = 4_000
    match_threshold: float = 0.5
    match_distance: int = 1_000
    auto_apply: bool = True
    debug_logging: bool = False

    @property
    def has_api_key(self) -> bool:
        return bool((self.api_key or "").strip())

    def client_settings(self) -> ClientSettings:
        """Project the fields the backend client needs."""

        return ClientSettings(
            api_key=self.api_key.strip(),
            model=self.model.strip() or DEFAULT_MODEL,
            base_url=self.base_url.strip() or DEFAULT_BASE_URL,
            request_timeout=self.request_timeout,
            max_retries=self.max_retries,
            retry_min_seconds=self.retry_min_seconds,
            retry_max_seconds=self.retry_max_seconds,
            default_headers=dict(self.default_headers) or None,
            debug_logging=self.debug_logging,
        )

    def redacted(self) -> Dict[str, Any]:
        """Return a mapping safe to log or broadcast."""

        data = asdict(self)
        data["api_key"] = redact_secret(self.api_key)
        return data


class SecretVault:
    """Encrypts and decrypts the API key with a Fernet key stored on disk."""

    name = "fernet"

    def __init__(self, *, key_path: Path | None = None) -> None:
        self._key_path = key_path or (_SETTINGS_DIR / "settings.key")
        self._fernet: Fernet | None = None

    @property
    def key_path(self) -> Path:
        return self._key_path

    def encrypt(self, secret: str) -> str:
        if not secret:
            return ""
        token = self._get_fernet().encrypt(secret.encode("utf-8"))
        return f"{self.name}:{token.decode('ascii')}"

    def decrypt(self, token: str | None) -> str:
        if not token:
            return ""
        prefix, _, payload = token.partition(":")
        if not payload:
            prefix, payload = self.name, token
        if prefix != self.name:
            raise ValueError(f"Unsupported secret backend: {prefix}")
        try:
            return self._get_fernet().decrypt(payload.encode("ascii")).decode("utf-8")
        except InvalidToken as exc:
            raise ValueError("Invalid Fernet token") from exc

    def _get_fernet(self) -> Fernet:
        if self._fernet is None:
            self._fernet = Fernet(self._load_or_create_key())
        return self._fernet

    def _load_or_create_key(self) -> bytes:
        path = self._key_path
        path.parent.mkdir(parents=True, exist_ok=True)
        if path.exists():
            return path.read_bytes().strip()
        key = Fernet.generate_key()
        tmp_path = path.with_suffix(".tmp")
        tmp_path.write_bytes(key)
        if os.name != "nt":  # pragma: no cover - depends on OS
            os.chmod(tmp_path, 0o600)
        tmp_path.replace(path)
        return key


class SettingsStore:
    """Persistence adapter for :class:`Settings`."""

    def __init__(self, path: Path | None = None, *, vault: SecretVault | None = None) -> None:
        self._path = path or _DEFAULT_SETTINGS_PATH
        self._vault = vault or SecretVault(key_path=self._path.with_suffix(".key"))

    @property
    def path(self) -> Path:
        """Return the resolved path backing this store."""

        return self._path

    @property
    def vault(self) -> SecretVault:
        return self._vault

    def load(self, *, overrides: Mapping[str, Any] | None = None) -> Settings:
        """Load settings from disk, applying CLI/environment overrides when present."""

        payload = self._read_payload()
        settings = Settings()
        needs_migration = False

        if payload:
            plaintext_key, needs_migration = self._decrypt_api_key(
                payload.pop(_API_KEY_FIELD, None), payload.pop("api_key", None)
            )
            try:
                settings = Settings(**_filter_fields(payload))
            except TypeError as exc:
                LOGGER.warning("Settings payload contained unexpected data: %s", exc)
                settings = Settings()
            if plaintext_key:
                settings = replace(settings, api_key=plaintext_key)

        version_mismatch = bool(payload) and payload.get("version") != _SETTINGS_VERSION
        if needs_migration or version_mismatch:
            try:
                self.save(settings)
            except OSError as exc:
                LOGGER.warning("Failed to migrate settings payload: %s", exc)

        if overrides:
            settings = self._apply_overrides(settings, overrides, source="CLI")
        settings = self._apply_env_overrides(settings)
        LOGGER.debug("Settings loaded from %s (model=%s, key=%s)", self._path, settings.model, redact_secret(settings.api_key))
        return settings

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
        api_key = data.pop("api_key", "") or ""
        if api_key:
            data[_API_KEY_FIELD] = self._vault.encrypt(api_key)
        data["version"] = _SETTINGS_VERSION
        data["secret_backend"] = self._vault.name
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
        return payload if isinstance(payload, dict) else {}

    def _apply_overrides(
        self,
        settings: Settings,
        overrides: Mapping[str, Any],
        *,
        source: str = "runtime",
    ) -> Settings:
        allowed = {item.name for item in fields(Settings)}
        filtered = {key: value for key, value in overrides.items() if key in allowed and value is not None}
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

    def _decrypt_api_key(self, ciphertext: str | None, legacy_plaintext: str | None) -> tuple[str, bool]:
        if ciphertext:
            try:
                return self._vault.decrypt(ciphertext), False
            except ValueError as exc:
                LOGGER.warning("Unable to decrypt API key: %s", exc)
                return "", False
        if legacy_plaintext:
            LOGGER.info("Detected plaintext API key; migrating to encrypted storage.")
            return legacy_plaintext, True
        return "", False


SettingsListener = Callable[[Settings], None]


class SettingsCell:
    """Process-wide holder of the latest :class:`Settings`.

    Readers call :meth:`get` at the moment they need a value rather than
    capturing settings once. Every change is published as
    :class:`~fieldassist.ui.events.SettingsChanged` on the bus (when one is
    attached), delivered to direct subscribers, and persisted through the
    store (when one is attached).
    """

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        store: SettingsStore | None = None,
        event_bus: EventBus | None = None,
    ) -> None:
        self._settings = settings or Settings()
        self._store = store
        self._event_bus = event_bus
        self._listeners: list[SettingsListener] = []

    @classmethod
    def from_store(cls, store: SettingsStore, *, event_bus: EventBus | None = None) -> "SettingsCell":
        return cls(store.load(), store=store, event_bus=event_bus)

    def get(self) -> Settings:
        return self._settings

    def set(self, settings: Settings) -> Settings:
        """Replace the current settings and broadcast the change."""

        previous = self._settings
        changed = tuple(
            item.name for item in fields(Settings) if getattr(previous, item.name) != getattr(settings, item.name)
        )
        if not changed:
            self._settings = settings
            return settings
        # Persist first; a failed save leaves the previous settings live.
        if self._store is not None:
            self._store.save(settings)
        self._settings = settings
        LOGGER.info("Settings changed: %s", ", ".join(changed))
        for listener in list(self._listeners):
            listener(settings)
        if self._event_bus is not None:
            self._event_bus.publish(SettingsChanged(settings=settings.redacted(), changed=changed))
        return settings

    def update(self, **changes: Any) -> Settings:
        """Apply field-level changes on top of the current settings."""

        return self.set(replace(self._settings, **changes))

    def set_api_key(self, api_key: str | None) -> Settings:
        return self.update(api_key=(api_key or "").strip())

    def set_model(self, model: str | None) -> Settings:
        return self.update(model=(model or "").strip() or DEFAULT_MODEL)

    def subscribe(self, listener: SettingsListener) -> Callable[[], None]:
        """Register ``listener`` and return a callable that removes it."""

        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe


def _filter_fields(payload: Mapping[str, Any]) -> Dict[str, Any]:
    allowed = {item.name for item in fields(Settings)} - {"api_key"}
    return {key: value for key, value in payload.items() if key in allowed}


def redact_secret(value: str) -> str:
    stripped = (value or "").strip()
    if not stripped:
        return ""
    if len(stripped) <= 4:
        return "*" * len(stripped)
    return f"{stripped[:2]}{'*' * (len(stripped) - 4)}{stripped[-2:]}"
