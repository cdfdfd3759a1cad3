"""Application configuration."""

import os
from pathlib import Path

from pydantic_settings import (
    BaseSettings,
    JsonConfigSettingsSource,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
)


def default_config_file() -> Path:
    """Locate ``fubako/config.json`` in the XDG config directory."""
    override = os.environ.get("FUBAKO_CONFIG_FILE")
    if override:
        return Path(override)
    config_home = os.environ.get("XDG_CONFIG_HOME") or Path.home() / ".config"
    return Path(config_home) / "fubako" / "config.json"


class Settings(BaseSettings):
    """Application settings.

    Sources, highest priority first: constructor arguments, ``FUBAKO_*``
    environment variables, ``.env``, then the JSON config file.
    """

    data_dir: Path = Path("data/pages")
    host: str = "127.0.0.1"
    port: int = 3000
    debug: bool = False
    app_title: str = "Fubako"
    watch: bool = True
    lock_timeout: float = 5.0
    monitor_interval: float = 1.0

    model_config = SettingsConfigDict(
        env_prefix="FUBAKO_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            JsonConfigSettingsSource(settings_cls, json_file=default_config_file()),
            file_secret_settings,
        )

    @property
    def images_dir(self) -> Path:
        return self.data_dir / "images"
