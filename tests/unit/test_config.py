"""Unit tests for configuration defaults and overrides."""

from __future__ import annotations

import platformdirs
import pytest

from omahaclient.config import (
    _DEFAULT_DATA_DIR,
    _DEFAULT_DB_PATH,
    _DEFAULT_JSON_PATH,
    ClientSettings,
    Settings,
    StateSettings,
)


class TestPlatformDefaults:
    """Verify state paths come from platformdirs instead of hardcoded Unix paths."""

    def test_default_data_dir_matches_platformdirs(self) -> None:
        assert platformdirs.user_data_dir("omahaclient") == _DEFAULT_DATA_DIR

    def test_default_state_paths_under_data_dir(self) -> None:
        assert _DEFAULT_DB_PATH.startswith(_DEFAULT_DATA_DIR)
        assert _DEFAULT_DB_PATH.endswith("state.db")
        assert _DEFAULT_JSON_PATH.startswith(_DEFAULT_DATA_DIR)
        assert _DEFAULT_JSON_PATH.endswith("state.json")

    def test_state_settings_use_platform_default(self) -> None:
        settings = StateSettings()
        assert settings.backend == "sqlite"
        assert settings.db_path == _DEFAULT_DB_PATH


class TestSettings:
    def test_defaults(self) -> None:
        settings = Settings()
        assert settings.server.mode == "daemon"
        assert settings.server.url.startswith("https://")
        assert settings.client == ClientSettings()
        assert settings.client.enable_communication is True
        assert settings.logging.format == "json"

    def test_env_overrides_nested_fields(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("OMAHACLIENT__SERVER__MODE", "once")
        monkeypatch.setenv("OMAHACLIENT__CLIENT__APP_ID", "{env-app}")
        monkeypatch.setenv("OMAHACLIENT__CLIENT__SYSTEM_IMAGE", "true")

        settings = Settings()

        assert settings.server.mode == "once"
        assert settings.client.app_id == "{env-app}"
        assert settings.client.system_image is True

    def test_init_args_beat_env(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("OMAHACLIENT__STATE__BACKEND", "sqlite")
        settings = Settings(state={"backend": "json"})
        assert settings.state.backend == "json"

    def test_invalid_mode_rejected(self) -> None:
        with pytest.raises(ValueError, match="mode"):
            Settings(server={"mode": "forever"})
