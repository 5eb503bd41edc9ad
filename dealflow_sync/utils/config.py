"""
Configuration management for the deal flow transcript sync layer.

Uses Pydantic Settings for type-safe configuration with environment variable support.
"""

from enum import Enum
from functools import lru_cache
from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Environment(str, Enum):
    """Application environment."""

    DEVELOPMENT = "development"
    STAGING = "staging"
    PRODUCTION = "production"


class LogLevel(str, Enum):
    """Logging level."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class ProviderSettings(BaseSettings):
    """Transcript provider (MeetGeek) configuration."""

    model_config = SettingsConfigDict(env_prefix="MEETGEEK_")

    api_key: str = Field(default="", description="MeetGeek API key")
    api_url: str = Field(
        default="https://api.meetgeek.ai", description="MeetGeek API base URL"
    )
    timeout: float = Field(
        default=30.0, gt=0, description="Request timeout in seconds"
    )


class AISettings(BaseSettings):
    """Analysis engine and momentum model configuration."""

    openai_api_key: str = Field(default="", description="OpenAI API key")
    analysis_model: str = Field(
        default="gpt-4o", description="Chat model used for transcript analysis"
    )
    momentum_model: str = Field(
        default="gpt-4o-mini", description="Chat model used for momentum scoring"
    )
    use_local_momentum_model: bool = Field(
        default=True,
        description="Score momentum with the local heuristic model instead of the API",
    )


class SyncSettings(BaseSettings):
    """Polling, backoff and cascade configuration."""

    intensive_interval_seconds: float = Field(
        default=120.0, gt=0, description="Delay between intensive poll attempts"
    )
    intensive_max_attempts: int = Field(
        default=15, ge=1, description="Attempt budget for an intensive session"
    )
    background_interval_seconds: float = Field(
        default=900.0, gt=0, description="Delay between background account checks"
    )
    background_min_interval_seconds: float = Field(
        default=300.0,
        ge=0,
        description="Minimum spacing between two checks of the same account",
    )
    background_initial_delay_seconds: float = Field(
        default=30.0, ge=0, description="Delay before the first background check"
    )
    momentum_max_passes: int = Field(
        default=3,
        ge=1,
        description="Recompute passes when analyses change mid-computation",
    )
    dedup_similarity_threshold: float = Field(
        default=0.8,
        ge=0.0,
        le=1.0,
        description="Similarity at which two insight bullets are duplicates",
    )


class LoggingSettings(BaseSettings):
    """Logging configuration."""

    model_config = SettingsConfigDict(env_prefix="LOG_")

    level: LogLevel = Field(default=LogLevel.INFO, description="Log level")
    dir: Path = Field(default=Path("./logs"), description="Log directory")
    json_format: bool = Field(default=False, description="Use JSON log format")

    @field_validator("dir", mode="before")
    @classmethod
    def ensure_path(cls, v: str | Path) -> Path:
        """Ensure log directory is a Path object."""
        return Path(v) if isinstance(v, str) else v


class Settings(BaseSettings):
    """
    Main application settings.

    Aggregates all configuration sections and provides a unified interface.
    Configuration is loaded from environment variables and .env files.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Environment
    environment: Environment = Field(
        default=Environment.DEVELOPMENT, description="Application environment"
    )

    # Component settings
    provider: ProviderSettings = Field(default_factory=ProviderSettings)
    ai: AISettings = Field(default_factory=AISettings)
    sync: SyncSettings = Field(default_factory=SyncSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)

    # Direct access fields (loaded from env)
    meetgeek_api_key: str = Field(default="")
    meetgeek_api_url: str = Field(default="https://api.meetgeek.ai")
    meetgeek_timeout: float = Field(default=30.0)
    openai_api_key: str = Field(default="")
    analysis_model: str = Field(default="gpt-4o")
    momentum_model: str = Field(default="gpt-4o-mini")
    use_local_momentum_model: bool = Field(default=True)
    intensive_interval_seconds: float = Field(default=120.0)
    intensive_max_attempts: int = Field(default=15)
    background_interval_seconds: float = Field(default=900.0)
    background_min_interval_seconds: float = Field(default=300.0)
    background_initial_delay_seconds: float = Field(default=30.0)
    momentum_max_passes: int = Field(default=3)
    dedup_similarity_threshold: float = Field(default=0.8)
    log_level: str = Field(default="INFO")
    log_dir: str = Field(default="./logs")
    log_json_format: bool = Field(default=False)

    def model_post_init(self, __context) -> None:
        """Sync nested settings with flat environment variables."""
        self.provider = ProviderSettings(
            api_key=self.meetgeek_api_key or self.provider.api_key,
            api_url=self.meetgeek_api_url or self.provider.api_url,
            timeout=self.meetgeek_timeout,
        )

        self.ai = AISettings(
            openai_api_key=self.openai_api_key,
            analysis_model=self.analysis_model,
            momentum_model=self.momentum_model,
            use_local_momentum_model=self.use_local_momentum_model,
        )

        self.sync = SyncSettings(
            intensive_interval_seconds=self.intensive_interval_seconds,
            intensive_max_attempts=self.intensive_max_attempts,
            background_interval_seconds=self.background_interval_seconds,
            background_min_interval_seconds=self.background_min_interval_seconds,
            background_initial_delay_seconds=self.background_initial_delay_seconds,
            momentum_max_passes=self.momentum_max_passes,
            dedup_similarity_threshold=self.dedup_similarity_threshold,
        )

        self.logging = LoggingSettings(
            level=LogLevel(self.log_level.upper()),
            dir=Path(self.log_dir),
            json_format=self.log_json_format,
        )

    @property
    def is_development(self) -> bool:
        """Check if running in development environment."""
        return self.environment == Environment.DEVELOPMENT

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.environment == Environment.PRODUCTION

    def validate_required(self) -> list[str]:
        """
        Validate that required configuration is present.

        Returns:
            List of missing required configuration keys.
        """
        missing = []

        if not self.provider.api_key:
            missing.append("MEETGEEK_API_KEY")
        if not self.ai.openai_api_key:
            missing.append("OPENAI_API_KEY")

        return missing


@lru_cache
def get_settings() -> Settings:
    """
    Get cached application settings.

    Returns:
        Singleton Settings instance loaded from environment.
    """
    return Settings()


def reload_settings() -> Settings:
    """
    Reload settings, clearing the cache.

    Returns:
        Fresh Settings instance.
    """
    get_settings.cache_clear()
    return get_settings()
