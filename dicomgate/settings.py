"""
Configuration settings for dicomgate.

This module provides a settings class for dicomgate, with support for loading
configuration from TOML files and environment variables.
"""

from functools import lru_cache
from pathlib import Path

from pydantic import BaseModel
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
    TomlConfigSettingsSource,
)


class DicomNodeSettings(BaseModel):
    """AE title and network address of a DICOM node."""

    aet: str
    host: str = "127.0.0.1"
    port: int = 11112


class Settings(BaseSettings):
    """Main settings class for dicomgate.

    This class handles loading configuration from TOML files and environment variables,
    with support for custom settings sources.
    """

    model_config = SettingsConfigDict(
        toml_file=["settings.toml", "settings.custom.toml"],
        env_prefix="DICOMGATE_",
        env_nested_delimiter="__",
        extra="ignore",
    )

    # Server settings
    port: int = 5000
    host: str = "127.0.0.1"
    root_url: str = "/"
    debug: bool = False

    # Storage settings
    storage_path: str = "./data"
    cache_db_path: str = "./cache.db"

    # DICOM settings
    source: DicomNodeSettings = DicomNodeSettings(aet="DICOMGATE", port=9999)
    target: DicomNodeSettings = DicomNodeSettings(aet="PACS", port=104)
    use_cget: bool = False
    max_pdu: int = 16384

    # Retrieve settings
    retrieve_key_by_study: bool = False
    retrieve_timeout: float | None = None  # None waits forever

    # Cache settings
    keep_cache_minutes: int | None = 60  # None or negative disables caching
    clear_cache_on_startup: bool = False
    cache_sweep_interval: int = 0  # seconds, 0 disables the periodic sweep

    # QIDO settings
    qido_min_chars: int = 0
    qido_append_wildcard: bool = True

    # Logging settings
    log_level: str = "INFO"
    log_to_file: bool = True
    log_dir: str = "./logs"
    log_rotation: str = "00:00"  # daily; a size such as "20 MB" also works
    log_retention: str = "14 days"
    log_format: str | None = None  # Use default if None

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,  # noqa: ARG003
        file_secret_settings: PydanticBaseSettingsSource,  # noqa: ARG003
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        """Customize the sources for settings.

        Priority order: explicit init arguments, environment variables, then TOML config files
        """
        return init_settings, env_settings, TomlConfigSettingsSource(settings_cls)

    @property
    def storage_root(self) -> Path:
        """Root directory of materialized DICOM files."""
        return Path(self.storage_path)

    @property
    def cache_database_url(self) -> str:
        """Async SQLAlchemy URL of the cache store database."""
        return f"sqlite+aiosqlite:///{self.cache_db_path}"

    def get_log_dir(self) -> Path:
        """Get the log directory path."""
        return Path(self.log_dir)


@lru_cache
def get_settings() -> Settings:
    """Get the settings instance, with caching.

    Returns:
        Cached Settings instance
    """
    return Settings()


# Create a global settings instance for easy imports
settings = get_settings()
