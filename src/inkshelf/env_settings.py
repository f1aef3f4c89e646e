"""Environment-based settings using pydantic-settings.

This module provides type-safe environment variable loading with validation.
Environment variables are loaded automatically and can be overridden by an
optional YAML config file (see load_settings()).

Usage:
    from inkshelf.env_settings import get_env_settings

    env = get_env_settings()
    print(env.watcher.dir)  # From WATCH_DIR env var

Environment Variables:
    Watcher:
        WATCH_DIR - Directory to watch for new files (empty = watcher disabled)
        WATCH_STABILITY_THRESHOLD - Seconds a file size must stay unchanged (default: 2.0)
        WATCH_POLL_INTERVAL - Seconds between size checks (default: 0.1)
        WATCH_USE_POLLING - Use the polling observer (network shares, containers)

    Application:
        INKSHELF_DATA_DIR - Data directory; covers are stored in <data>/covers
        DATABASE_URL - SQLAlchemy URL (default: sqlite:///<data>/inkshelf.db)
        LOG_LEVEL - Logging level (default: "INFO")
        INKSHELF_LOG_FILE - Optional log file
        INKSHELF_ENRICH_IN_BACKGROUND - Run enrichment as a background task (default: true)
        INKSHELF_HEARTBEAT_INTERVAL - Subscriber heartbeat in seconds (default: 30)
        INKSHELF_SCAN_INTERVAL - Periodic force scan in seconds (default: 0 = off)
        INKSHELF_RATE_LIMIT_MAX_WAIT - Longest wait for a rate-limit slot (default: 5)

    Metadata sources (<PREFIX>_RATE_LIMIT, _RATE_WINDOW, _SEARCH_TIMEOUT, _MAX_RETRIES):
        OPENLIBRARY_* - OpenLibrary (100 requests / 300s)
        GOOGLE_BOOKS_* - Google Books, GOOGLE_BOOKS_API_KEY required (100 / 60s)
        ANILIST_* - AniList GraphQL (90 / 60s)
        MAL_* - MyAnimeList, MAL_CLIENT_ID required (60 / 60s)
        MANGADEX_* - MangaDex (5 / 1s)
"""

from __future__ import annotations

import logging
from functools import lru_cache
from pathlib import Path
from typing import Any

import yaml
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from inkshelf.exceptions import ConfigurationError

logger = logging.getLogger(__name__)

DEFAULT_USER_AGENT = "inkshelf/0.4.0"


def _validate_url_field(v: str, field_name: str) -> str:
    """Validate URL format (shared validator).

    Args:
        v: The URL value to validate.
        field_name: Name of the field for error messages.

    Returns:
        The validated URL with trailing slash stripped.

    Raises:
        ValueError: If URL doesn't start with http:// or https://.
    """
    if v and not v.startswith(("http://", "https://")):
        raise ValueError(f"{field_name} must start with http:// or https://, got: {v}")
    return v.rstrip("/") if v else v


# =============================================================================
# Watcher
# =============================================================================


class WatcherEnvSettings(BaseSettings):
    """Directory watcher settings.

    Reads from WATCH_DIR, WATCH_STABILITY_THRESHOLD, WATCH_POLL_INTERVAL,
    WATCH_USE_POLLING env vars.
    """

    model_config = SettingsConfigDict(
        env_prefix="WATCH_",
        extra="ignore",
    )

    dir: str = Field(default="", description="Directory to watch for new files")
    stability_threshold: float = Field(
        default=2.0,
        ge=0.5,
        description="Seconds the file size must stay unchanged before it counts as finished",
    )
    poll_interval: float = Field(
        default=0.1,
        ge=0.05,
        description="Seconds between size checks while waiting for a write to finish",
    )
    use_polling: bool = Field(default=False, description="Use watchdog's PollingObserver")


# =============================================================================
# Metadata Sources
# =============================================================================


class SourceEnvSettings(BaseSettings):
    """Shared knobs for every metadata source.

    Subclasses set env_prefix and override defaults.
    """

    model_config = SettingsConfigDict(extra="ignore")

    enabled: bool = Field(default=True, description="Set false to skip this source")
    base_url: str = ""
    rate_limit: int = Field(default=60, ge=1, description="Requests allowed per window")
    rate_window: float = Field(default=60.0, gt=0, description="Rate window in seconds")
    search_timeout: float = Field(default=10.0, gt=0, description="Per-request timeout")
    max_retries: int = Field(default=3, ge=1, description="Attempts for transient failures")
    user_agent: str = DEFAULT_USER_AGENT

    @field_validator("base_url")
    @classmethod
    def validate_base_url(cls, v: str) -> str:
        """Validate source base URL format."""
        return _validate_url_field(v, "base_url")


class OpenLibraryEnvSettings(SourceEnvSettings):
    """OpenLibrary search settings (OPENLIBRARY_* env vars)."""

    model_config = SettingsConfigDict(env_prefix="OPENLIBRARY_", extra="ignore")

    base_url: str = "https://openlibrary.org"
    covers_base_url: str = "https://covers.openlibrary.org"
    rate_limit: int = 100
    rate_window: float = 300.0

    @field_validator("covers_base_url")
    @classmethod
    def validate_covers_url(cls, v: str) -> str:
        """Validate covers URL format."""
        return _validate_url_field(v, "OPENLIBRARY_COVERS_BASE_URL")


class GoogleBooksEnvSettings(SourceEnvSettings):
    """Google Books settings (GOOGLE_BOOKS_* env vars).

    The source is only available when GOOGLE_BOOKS_API_KEY is set.
    """

    model_config = SettingsConfigDict(env_prefix="GOOGLE_BOOKS_", extra="ignore")

    base_url: str = "https://www.googleapis.com/books/v1"
    api_key: str = Field(default="", description="Google Books API key")
    rate_limit: int = 100
    rate_window: float = 60.0


class AniListEnvSettings(SourceEnvSettings):
    """AniList GraphQL settings (ANILIST_* env vars)."""

    model_config = SettingsConfigDict(env_prefix="ANILIST_", extra="ignore")

    base_url: str = "https://graphql.anilist.co"
    rate_limit: int = 90
    rate_window: float = 60.0


class MyAnimeListEnvSettings(SourceEnvSettings):
    """MyAnimeList settings (MAL_* env vars).

    The source is only available when MAL_CLIENT_ID is set.
    """

    model_config = SettingsConfigDict(env_prefix="MAL_", extra="ignore")

    base_url: str = "https://api.myanimelist.net/v2"
    client_id: str = Field(default="", description="MyAnimeList API client id")
    rate_limit: int = 60
    rate_window: float = 60.0


class MangaDexEnvSettings(SourceEnvSettings):
    """MangaDex settings (MANGADEX_* env vars)."""

    model_config = SettingsConfigDict(env_prefix="MANGADEX_", extra="ignore")

    base_url: str = "https://api.mangadex.org"
    cover_base_url: str = "https://uploads.mangadex.org/covers"
    rate_limit: int = 5
    rate_window: float = 1.0

    @field_validator("cover_base_url")
    @classmethod
    def validate_cover_url(cls, v: str) -> str:
        """Validate cover CDN URL format."""
        return _validate_url_field(v, "MANGADEX_COVER_BASE_URL")


class SourcesEnvSettings(BaseSettings):
    """All metadata source settings."""

    model_config = SettingsConfigDict(extra="ignore")

    openlibrary: OpenLibraryEnvSettings = Field(default_factory=OpenLibraryEnvSettings)
    googlebooks: GoogleBooksEnvSettings = Field(default_factory=GoogleBooksEnvSettings)
    anilist: AniListEnvSettings = Field(default_factory=AniListEnvSettings)
    myanimelist: MyAnimeListEnvSettings = Field(default_factory=MyAnimeListEnvSettings)
    mangadex: MangaDexEnvSettings = Field(default_factory=MangaDexEnvSettings)


# =============================================================================
# Application
# =============================================================================


class AppEnvSettings(BaseSettings):
    """Application-level settings from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="INKSHELF_",
        extra="ignore",
        populate_by_name=True,
    )

    data_dir: Path = Field(default=Path("data"), description="Data directory")
    database_url: str = Field(
        default="",
        validation_alias="DATABASE_URL",
        description="SQLAlchemy database URL",
    )
    log_level: str = Field(
        default="INFO",
        validation_alias="LOG_LEVEL",
        description="Logging level",
    )
    log_file: Path | None = None
    enrich_in_background: bool = True
    heartbeat_interval: float = Field(default=30.0, gt=0)
    scan_interval: float = Field(default=0.0, ge=0)
    rate_limit_max_wait: float = Field(default=5.0, ge=0)

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate and normalize log level."""
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        upper = v.upper()
        if upper not in valid_levels:
            raise ValueError(f"LOG_LEVEL must be one of {valid_levels}, got: {v}")
        return upper

    @property
    def covers_dir(self) -> Path:
        """Directory where cover images are stored."""
        return self.data_dir / "covers"

    @property
    def resolved_database_url(self) -> str:
        """DATABASE_URL, or a SQLite file inside the data directory."""
        if self.database_url:
            return self.database_url
        return f"sqlite:///{(self.data_dir / 'inkshelf.db').as_posix()}"


class EnvSettings(BaseSettings):
    """Combined environment settings.

    Use get_env_settings() to get a cached instance.

    Example:
        env = get_env_settings()
        print(env.watcher.dir)
        print(env.sources.googlebooks.api_key)
        print(env.app.covers_dir)
    """

    model_config = SettingsConfigDict(
        extra="ignore",
    )

    watcher: WatcherEnvSettings = Field(default_factory=WatcherEnvSettings)
    sources: SourcesEnvSettings = Field(default_factory=SourcesEnvSettings)
    app: AppEnvSettings = Field(default_factory=AppEnvSettings)

    def validate_required_for_watch(self) -> list[str]:
        """Validate required settings for the directory watcher.

        Returns:
            List of error messages for missing/invalid settings.
        """
        errors: list[str] = []
        if not self.watcher.dir:
            errors.append("WATCH_DIR is required to watch for new files")
        return errors


@lru_cache(maxsize=1)
def get_env_settings() -> EnvSettings:
    """Get cached environment settings.

    Returns:
        EnvSettings instance with all environment-based configuration.
    """
    return EnvSettings()


def clear_env_settings_cache() -> None:
    """Clear the cached environment settings.

    Useful for testing to ensure fresh settings are loaded.
    """
    get_env_settings.cache_clear()


def load_env_settings_from_file(env_file: Path) -> EnvSettings:
    """Load environment settings from a specific .env file.

    Args:
        env_file: Path to .env file to load.

    Returns:
        EnvSettings instance with configuration from the file.
    """
    from dotenv import load_dotenv

    load_dotenv(env_file, override=True)

    clear_env_settings_cache()
    return get_env_settings()


def load_settings(config_file: Path | None = None) -> EnvSettings:
    """Build settings from env vars, overlaid with an optional YAML file.

    The YAML file mirrors the EnvSettings layout::

        watcher:
          dir: /srv/inbox
        app:
          data_dir: /srv/inkshelf
        sources:
          mangadex:
            rate_limit: 3

    Values in the file win over environment variables.

    Args:
        config_file: Optional YAML config path. Missing file = env only.

    Returns:
        EnvSettings instance.

    Raises:
        ConfigurationError: If the file is unreadable or has invalid values.
    """
    if config_file is None or not config_file.exists():
        return get_env_settings()

    try:
        raw = yaml.safe_load(config_file.read_text(encoding="utf-8")) or {}
    except (OSError, yaml.YAMLError) as e:
        raise ConfigurationError(
            f"Cannot read config file: {e}", details={"config_file": str(config_file)}
        ) from e

    if not isinstance(raw, dict):
        raise ConfigurationError(
            "Config file must contain a mapping", details={"config_file": str(config_file)}
        )

    try:
        return _build_settings(raw)
    except ValueError as e:
        raise ConfigurationError(
            f"Invalid config file: {e}", details={"config_file": str(config_file)}
        ) from e


def _build_settings(raw: dict[str, Any]) -> EnvSettings:
    source_classes: dict[str, type[SourceEnvSettings]] = {
        "openlibrary": OpenLibraryEnvSettings,
        "googlebooks": GoogleBooksEnvSettings,
        "anilist": AniListEnvSettings,
        "myanimelist": MyAnimeListEnvSettings,
        "mangadex": MangaDexEnvSettings,
    }
    source_overrides = raw.get("sources") or {}
    sources = SourcesEnvSettings(
        **{
            name: cls(**(source_overrides.get(name) or {}))
            for name, cls in source_classes.items()
        }
    )
    return EnvSettings(
        watcher=WatcherEnvSettings(**(raw.get("watcher") or {})),
        sources=sources,
        app=AppEnvSettings(**(raw.get("app") or {})),
    )
