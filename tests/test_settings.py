import json

import pytest

from readsync.digest import password_digest
from readsync.settings import (
    JsonSettingsStore, SyncSettings, default_device_name, new_device_id,
    precision_from_tolerance, tolerance_from_precision,
)


@pytest.mark.unit
class TestSyncSettings:

    def test_defaults_are_disabled(self):
        settings = SyncSettings()
        assert settings.strategy == "disabled"
        assert settings.checksum_method == "binary"
        assert not settings.has_credentials
        assert not settings.can_push

    def test_unknown_values_fall_back(self):
        settings = SyncSettings(strategy="yolo", checksum_method="sha1")
        assert settings.strategy == "disabled"
        assert settings.checksum_method == "binary"

    @pytest.mark.parametrize("strategy,can_push", [
        ("prompt", True), ("silent", True), ("send", True), ("receive", False), ("disabled", False),
    ])
    def test_push_gating(self, settings, strategy, can_push):
        assert settings.updated(strategy=strategy).can_push is can_push

    def test_device_name_defaults_to_app_and_os(self):
        assert SyncSettings().resolved_device_name == default_device_name()
        assert default_device_name().startswith("ReadSync")
        assert SyncSettings(device_name="Tablet").resolved_device_name == "Tablet"

    def test_from_dict_ignores_unknown_keys(self, settings):
        data = dict(settings.to_dict(), something_else=1)
        assert SyncSettings.from_dict(data) == settings

    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("KOSYNC_SERVER", "https://sync.example.com/")
        monkeypatch.setenv("KOSYNC_USER", "reader")
        monkeypatch.setenv("KOSYNC_KEY", "password")
        monkeypatch.delenv("KOSYNC_USERKEY", raising=False)
        monkeypatch.delenv("KOSYNC_STRATEGY", raising=False)
        monkeypatch.setenv("KOSYNC_PUSH_DELAY", "2.5")

        settings = SyncSettings.from_env()

        assert settings.server_url == "https://sync.example.com"
        assert settings.userkey == password_digest("password")
        assert settings.strategy == "prompt"
        assert settings.push_delay == 2.5


@pytest.mark.unit
class TestHelpers:

    def test_tolerance_and_precision(self):
        assert tolerance_from_precision(4) == pytest.approx(1e-4)
        assert precision_from_tolerance(1e-4) == 4
        assert precision_from_tolerance(None) == 4

    def test_precision_follows_tolerance(self):
        assert SyncSettings(percentage_tolerance=1e-2).precision == 2
        assert SyncSettings().precision == 4

    def test_precision_from_env(self, monkeypatch):
        monkeypatch.setenv("KOSYNC_PRECISION", "2")
        monkeypatch.setenv("KOSYNC_TOLERANCE", "0.5")
        assert SyncSettings.from_env().percentage_tolerance == pytest.approx(1e-2)

    def test_device_ids_are_unique_uppercase_hex(self):
        first, second = new_device_id(), new_device_id()
        assert first != second
        assert len(first) == 32
        assert first == first.upper()


@pytest.mark.unit
class TestJsonSettingsStore:

    def test_missing_file_gives_default(self, tmp_path):
        default = SyncSettings(username="env-user")
        assert JsonSettingsStore(tmp_path / "settings.json").load(default) is default

    def test_save_and_reload(self, tmp_path, settings):
        path = tmp_path / "nested" / "settings.json"
        JsonSettingsStore(path).save(settings)

        assert json.loads(path.read_text())["username"] == "reader"
        assert JsonSettingsStore(path).load() == settings
        assert not path.with_suffix(".json.tmp").exists()

    def test_corrupt_file_gives_default(self, tmp_path):
        path = tmp_path / "settings.json"
        path.write_text("{not json")
        assert JsonSettingsStore(path).load() == SyncSettings()
