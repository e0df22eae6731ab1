"""Tests for service settings."""
from pathlib import Path

import pytest

from authkey_sync.config.settings import DEFAULT_FEATURE, DEFAULT_SYSTEM_ROOT, SyncSettings

ENV_VARS = [
    "AUTHKEY_SYNC_SYSTEM_ROOT",
    "AUTHKEY_SYNC_FEATURE",
    "AUTHKEY_SYNC_KEYS_DIR",
    "AUTHKEY_SYNC_AUDIT_DIR",
    "AUTHKEY_SYNC_STATE_FILE",
]


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)


class TestSyncSettings:
    """Tests for SyncSettings."""

    def test_defaults(self):
        """Defaults apply without environment."""
        settings = SyncSettings.from_env()

        assert settings.system_root == DEFAULT_SYSTEM_ROOT
        assert settings.feature_name == DEFAULT_FEATURE
        assert settings.state_file is None
        assert settings.keys_path == Path.home() / ".authkey-sync" / "keys"

    def test_from_env(self, monkeypatch):
        """Environment variables override defaults."""
        monkeypatch.setenv("AUTHKEY_SYNC_SYSTEM_ROOT", "acme:system")
        monkeypatch.setenv("AUTHKEY_SYNC_FEATURE", "ssh-keys")
        monkeypatch.setenv("AUTHKEY_SYNC_STATE_FILE", "/tmp/state.yaml")

        settings = SyncSettings.from_env()

        assert settings.system_root == "acme:system"
        assert settings.feature_name == "ssh-keys"
        assert settings.state_file == "/tmp/state.yaml"

    def test_from_file(self, tmp_path):
        """YAML keys map onto settings; hyphens become underscores."""
        config = tmp_path / "settings.yaml"
        config.write_text("feature-name: ssh-keys\nkeys_dir: /srv/keys\nstate-file: state.yaml\n")

        settings = SyncSettings.from_file(config)

        assert settings.feature_name == "ssh-keys"
        assert settings.keys_path == Path("/srv/keys")
        assert settings.state_file == str(tmp_path / "state.yaml")

    def test_from_file_keeps_env_state_file(self, tmp_path, monkeypatch):
        """Only state files named by the settings file are resolved against it."""
        monkeypatch.setenv("AUTHKEY_SYNC_STATE_FILE", "relative.yaml")
        config = tmp_path / "settings.yaml"
        config.write_text("feature-name: ssh-keys\n")

        settings = SyncSettings.from_file(config)

        assert settings.state_file == "relative.yaml"

    def test_unknown_keys_ignored(self, tmp_path, caplog):
        """Unknown keys are logged and skipped."""
        config = tmp_path / "settings.yaml"
        config.write_text("colour: blue\n")

        settings = SyncSettings.from_file(config)

        assert not hasattr(settings, "colour")
        assert "colour" in caplog.text

    def test_non_mapping_file(self, tmp_path):
        """A settings file must hold a mapping."""
        config = tmp_path / "settings.yaml"
        config.write_text("- a\n- b\n")

        with pytest.raises(ValueError):
            SyncSettings.from_file(config)
