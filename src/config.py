"""Configuration management using pydantic-settings.

All environment variables are loaded and validated here.
Every field has a working default so the server starts without a .env file.
"""

from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

KNOWN_PROVIDERS = ("piratebay", "yts", "torrents_csv", "x1337")


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application Configuration
    log_level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)",
    )

    environment: str = Field(
        default="production",
        description="Environment name (development, production)",
    )

    debug: bool = Field(
        default=False,
        description="Verbose stream/filter tracing (forces DEBUG log level)",
    )

    host: str = Field(default="0.0.0.0", description="HTTP listen address")

    port: int = Field(
        default=3000,
        description="HTTP listen port",
        ge=1,
        le=65535,
    )

    # Storage
    cache_dir: Path = Field(
        default=Path("cache"),
        description="Directory holding downloaded swarm data",
    )

    # Search
    search_limit: int = Field(
        default=20,
        description="Maximum candidates returned by a search",
        ge=1,
    )

    provider_timeout: float = Field(
        default=60.0,
        description="Per-provider request timeout in seconds",
        gt=0,
    )

    enabled_providers: list[str] = Field(
        default_factory=lambda: list(KNOWN_PROVIDERS),
        description="Index providers queried by the search fan-out",
    )

    piratebay_api_url: str = Field(
        default="https://apibay.org",
        description="PirateBay JSON API base URL (proxy override)",
    )

    yts_api_url: str = Field(default="https://yts.mx/api/v2", description="YTS API base URL")

    torrents_csv_url: str = Field(
        default="https://torrents-csv.com",
        description="Torrents-CSV base URL",
    )

    x1337_base_url: str = Field(default="https://1337x.to", description="1337x mirror")

    episode_min_seeds: int = Field(default=5, ge=0)
    movie_min_seeds: int = Field(default=20, ge=0)

    relaxed_min_seeds: int = Field(
        default=0,
        description="Relaxed pass keeps rows with seeds strictly above this",
        ge=0,
    )

    strict_year_tolerance: int = Field(default=0, ge=0)
    relaxed_year_tolerance: int = Field(default=1, ge=0)

    season_pack_max_bytes: int = Field(
        default=20 * 1024**3,
        description="Episode results larger than this are treated as season packs",
        gt=0,
    )

    # Streaming
    idle_timeout_seconds: float = Field(
        default=120.0,
        description="Delay before an inactive session has its pieces deselected",
        gt=0,
    )

    metadata_timeout: float | None = Field(
        default=None,
        description="Bound on waiting for swarm metadata (None waits forever)",
    )

    ffmpeg_path: str = Field(default="ffmpeg", description="Transcoder executable")

    max_connections: int = Field(default=200, ge=1)

    listen_port: int = Field(default=6881, ge=1, le=65535, description="BitTorrent port")

    extra_trackers: list[str] = Field(
        default_factory=lambda: [
            "udp://tracker.openbittorrent.com:6969/announce",
            "udp://tracker.opentrackr.org:1337/announce",
            "udp://tracker.torrent.eu.org:451/announce",
            "udp://tracker.moeking.me:6969/announce",
        ],
        description="Trackers appended to every added locator",
    )

    # Retention
    wipe_hour: int = Field(default=3, ge=0, le=23)
    wipe_minute: int = Field(default=0, ge=0, le=59)
    wipe_timezone: str = Field(default="Europe/London")

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level is one of the standard levels."""
        allowed = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        v_upper = v.upper()
        if v_upper not in allowed:
            raise ValueError(f"log_level must be one of {allowed}")
        return v_upper

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        """Validate environment is development or production."""
        allowed = {"development", "production"}
        v_lower = v.lower()
        if v_lower not in allowed:
            raise ValueError(f"environment must be one of {allowed}")
        return v_lower

    @field_validator("enabled_providers")
    @classmethod
    def validate_providers(cls, v: list[str]) -> list[str]:
        """Reject provider names that have no client."""
        names = [name.strip().lower() for name in v if name.strip()]
        unknown = set(names) - set(KNOWN_PROVIDERS)
        if unknown:
            raise ValueError(f"unknown providers: {sorted(unknown)}")
        return names

    @property
    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.environment == "development"

    @property
    def is_production(self) -> bool:
        """Check if running in production mode."""
        return self.environment == "production"

    @property
    def effective_log_level(self) -> str:
        """Log level after applying the debug toggle."""
        return "DEBUG" if self.debug else self.log_level

    def get_safe_dict(self) -> dict[str, str | int | float | None]:
        """Get configuration as a flat dict suitable for a startup log line."""
        result: dict[str, str | int | float | None] = {}
        for field_name in type(self).model_fields:
            value = getattr(self, field_name)
            if value is None or isinstance(value, str | int | float):
                result[field_name] = value
            else:
                result[field_name] = str(value)
        return result


# Global settings instance
settings = Settings()
