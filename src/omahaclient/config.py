"""Configuration loading.

Settings are loaded in priority order (highest first):
  1. Environment variables  (OMAHACLIENT__SERVER__MODE=once)
  2. omahaclient.yaml       (searched in cwd, then platform config dir)
  3. Hardcoded defaults

The config file is optional; every field has a default. Protocol
timings (backoff delays, request interval, transport timeout) are module
constants, not settings.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Literal

import platformdirs
from pydantic import BaseModel
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
    YamlConfigSettingsSource,
)

_DEFAULT_DATA_DIR = platformdirs.user_data_dir("omahaclient")
_DEFAULT_DB_PATH = str(Path(_DEFAULT_DATA_DIR) / "state.db")
_DEFAULT_JSON_PATH = str(Path(_DEFAULT_DATA_DIR) / "state.json")


def _find_config_file() -> str | None:
    """Return the path of the first omahaclient.yaml found, or None."""
    candidates = [
        Path("omahaclient.yaml"),
        Path(platformdirs.user_config_dir("omahaclient")) / "omahaclient.yaml",
    ]
    for path in candidates:
        if path.exists():
            return str(path)
    return None


class ServerSettings(BaseModel):
    url: str = "https://tools.google.com/service/update2"
    # "once": run a single cycle and exit (cron / OS timer hosts).
    # "daemon": keep an in-process timer armed between cycles.
    mode: Literal["once", "daemon"] = "daemon"
    idle_poll_seconds: int = 15 * 60


class ClientSettings(BaseModel):
    app_id: str = "{00000000-0000-0000-0000-000000000000}"
    brand: str = ""
    client: str = ""
    language: str = "en-US"
    version: str = "0.0.0.0"
    system_image: bool = False
    assume_active: bool = True
    enable_communication: bool = True
    enable_update_detection: bool = True
    strict_response_parsing: bool = True


class StateSettings(BaseModel):
    backend: Literal["sqlite", "json"] = "sqlite"
    db_path: str = _DEFAULT_DB_PATH
    json_path: str = _DEFAULT_JSON_PATH


class LoggingSettings(BaseModel):
    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    format: Literal["json", "text"] = "json"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        # Double-underscore separates nesting: OMAHACLIENT__CLIENT__APP_ID=...
        env_prefix="OMAHACLIENT__",
        env_nested_delimiter="__",
        yaml_file=_find_config_file(),
        yaml_file_encoding="utf-8",
    )

    server: ServerSettings = ServerSettings()
    client: ClientSettings = ClientSettings()
    state: StateSettings = StateSettings()
    logging: LoggingSettings = LoggingSettings()

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
        **kwargs: Any,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        return (
            init_settings,  # Constructor args (highest priority)
            env_settings,  # Environment variables
            YamlConfigSettingsSource(settings_cls),  # YAML file
            # dotenv and file secrets intentionally excluded
        )
