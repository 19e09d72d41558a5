"""Tests for settings persistence and the observable settings cell."""

from __future__ import annotations

import json
import os
from pathlib import Path

import pytest

from fieldassist.ai.client import DEFAULT_MODEL
from fieldassist.services.settings import (
    SecretVault,
    Settings,
    SettingsCell,
    SettingsStore,
    redact_secret,
)
from fieldassist.ui.events import SettingsChanged


@pytest.fixture(autouse=True)
def _clean_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in list(os.environ):
        if name.startswith("FIELDASSIST_"):
            monkeypatch.delenv(name, raising=False)


def test_settings_store_round_trip_encrypts_api_key(tmp_path: Path) -> None:
    path = tmp_path / "settings.json"
    store = SettingsStore(path)

    store.save(Settings(api_key="sk-secret-value", model="anthropic/claude-3.5-sonnet"))
    loaded = SettingsStore(path).load()

    raw = json.loads(path.read_text(encoding="utf-8"))
    assert "api_key" not in raw
    assert raw["api_key_ciphertext"].startswith("fernet:")
    assert "sk-secret-value" not in path.read_text(encoding="utf-8")
    assert loaded.api_key == "sk-secret-value"
    assert loaded.model == "anthropic/claude-3.5-sonnet"


def test_missing_file_yields_defaults(tmp_path: Path) -> None:
    settings = SettingsStore(tmp_path / "absent.json").load()

    assert settings == Settings()
    assert settings.has_api_key is False


def test_plaintext_api_key_is_migrated(tmp_path: Path) -> None:
    path = tmp_path / "settings.json"
    path.write_text(json.dumps({"api_key": "sk-legacy", "model": "m"}), encoding="utf-8")

    settings = SettingsStore(path).load()

    raw = json.loads(path.read_text(encoding="utf-8"))
    assert settings.api_key == "sk-legacy"
    assert "api_key" not in raw
    assert raw["version"] == 1


def test_corrupt_file_falls_back_to_defaults(tmp_path: Path) -> None:
    path = tmp_path / "settings.json"
    path.write_text("{not json", encoding="utf-8")

    assert SettingsStore(path).load() == Settings()


def test_environment_overrides(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("FIELDASSIST_API_KEY", "sk-env")
    monkeypatch.setenv("FIELDASSIST_AUTO_APPLY", "off")
    monkeypatch.setenv("FIELDASSIST_CONTEXT_CHAR_BUDGET", "2000")
    monkeypatch.setenv("FIELDASSIST_TEMPERATURE", "not-a-number")

    settings = SettingsStore(tmp_path / "settings.json").load()

    assert settings.api_key == "sk-env"
    assert settings.auto_apply is False
    assert settings.context_char_budget == 2000
    assert settings.temperature == Settings().temperature


def test_explicit_overrides_ignore_unknown_fields(tmp_path: Path) -> None:
    settings = SettingsStore(tmp_path / "settings.json").load(overrides={"model": "x/y", "bogus": 1})

    assert settings.model == "x/y"


class TestSecretVault:
    """Tests for Fernet-backed secret storage."""

    def test_key_is_created_once(self, tmp_path: Path) -> None:
        key_path = tmp_path / "vault.key"
        token = SecretVault(key_path=key_path).encrypt("secret")

        assert key_path.exists()
        assert SecretVault(key_path=key_path).decrypt(token) == "secret"

    def test_foreign_backend_is_rejected(self, tmp_path: Path) -> None:
        with pytest.raises(ValueError):
            SecretVault(key_path=tmp_path / "vault.key").decrypt("dpapi:abc")

    def test_token_from_other_key_is_rejected(self, tmp_path: Path) -> None:
        token = SecretVault(key_path=tmp_path / "one.key").encrypt("secret")

        with pytest.raises(ValueError):
            SecretVault(key_path=tmp_path / "two.key").decrypt(token)

    def test_empty_secret(self, tmp_path: Path) -> None:
        vault = SecretVault(key_path=tmp_path / "vault.key")
        assert vault.encrypt("") == ""
        assert vault.decrypt(None) == ""


class TestSettingsCell:
    """Tests for SettingsCell."""

    def test_set_api_key_persists_and_publishes(self, tmp_path: Path, event_bus, recorder) -> None:
        store = SettingsStore(tmp_path / "settings.json")
        cell = SettingsCell.from_store(store, event_bus=event_bus)

        cell.set_api_key("  sk-new-key  ")

        assert cell.get().api_key == "sk-new-key"
        assert store.load().api_key == "sk-new-key"
        changes = recorder.of_type(SettingsChanged)
        assert len(changes) == 1
        assert changes[0].changed == ("api_key",)
        assert changes[0].settings["api_key"] == "sk******ey"

    def test_unchanged_settings_are_not_broadcast(self, event_bus, recorder) -> None:
        cell = SettingsCell(event_bus=event_bus)

        cell.set(Settings())

        assert recorder.events == []

    def test_listeners_see_latest_and_can_unsubscribe(self) -> None:
        cell = SettingsCell()
        seen: list[str] = []
        unsubscribe = cell.subscribe(lambda settings: seen.append(settings.model))

        cell.set_model("a/b")
        unsubscribe()
        cell.set_model("")

        assert seen == ["a/b"]
        assert cell.get().model == DEFAULT_MODEL

    def test_failed_save_keeps_previous_settings(
        self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch, event_bus, recorder
    ) -> None:
        store = SettingsStore(tmp_path / "settings.json")
        cell = SettingsCell.from_store(store, event_bus=event_bus)
        seen: list[str] = []
        cell.subscribe(lambda settings: seen.append(settings.model))

        def fail_save(settings: Settings) -> None:
            raise OSError("disk full")

        monkeypatch.setattr(store, "save", fail_save)

        with pytest.raises(OSError):
            cell.set_model("a/b")

        assert cell.get().model == DEFAULT_MODEL
        assert seen == []
        assert recorder.of_type(SettingsChanged) == []

    def test_client_settings_projection(self) -> None:
        settings = Settings(api_key=" sk ", base_url=" ", default_headers={"X-Title": "CMS"})

        client_settings = settings.client_settings()

        assert client_settings.api_key == "sk"
        assert client_settings.base_url.startswith("https://")
        assert client_settings.default_headers == {"X-Title": "CMS"}


@pytest.mark.parametrize(
    ("value", "expected"),
    [("", ""), ("abcd", "****"), ("sk-123456", "sk*****56")],
)
def test_redact_secret(value: str, expected: str) -> None:
    assert redact_secret(value) == expected
