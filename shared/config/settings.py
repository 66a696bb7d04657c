"""
Settings Module
===============

Pydantic-based configuration with environment variable loading.

Version: 0.1.0
"""

from enum import Enum
from functools import lru_cache

from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Environment(str, Enum):
    """Deployment environment."""

    DEVELOPMENT = "development"
    STAGING = "staging"
    PRODUCTION = "production"
    TESTING = "testing"


class LogLevel(str, Enum):
    """Logging levels."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class LLMProvider(str, Enum):
    """Supported LLM providers."""

    CLAUDE = "claude"


class MongoSettings(BaseSettings):
    """
    MongoDB configuration.

    Regulatory data (sources, discovered items, evidence) and core pipeline
    data (rules, pointers, conflicts, alerts) live in separate databases.
    """

    model_config = SettingsConfigDict(env_prefix="MONGODB_")

    host: str = "localhost"
    port: int = 27017
    user: str = "regtruth"
    password: SecretStr = SecretStr("regtruth_mongo_password")
    regulatory_db: str = "regtruth_regulatory"
    core_db: str = "regtruth_core"

    @property
    def uri(self) -> str:
        """Generate MongoDB connection URI."""
        pwd = self.password.get_secret_value()
        return f"mongodb://{self.user}:{pwd}@{self.host}:{self.port}/?authSource=admin"


class ClaudeSettings(BaseSettings):
    """Anthropic Claude API configuration."""

    model_config = SettingsConfigDict(env_prefix="CLAUDE_")

    api_key: SecretStr = Field(
        default=SecretStr(""),
        alias="ANTHROPIC_API_KEY",
    )
    model: str = "claude-sonnet-4-20250514"
    max_tokens: int = 4096


class LLMSettings(BaseSettings):
    """LLM provider configuration."""

    model_config = SettingsConfigDict(env_prefix="LLM_")

    provider: LLMProvider = LLMProvider.CLAUDE
    temperature: float = 0.0
    max_retries: int = 3
    timeout_seconds: int = 120

    claude: ClaudeSettings = Field(default_factory=ClaudeSettings)


class SentinelSettings(BaseSettings):
    """Source monitoring and outbound fetch configuration."""

    model_config = SettingsConfigDict(env_prefix="SENTINEL_")

    # Per-domain politeness
    request_delay_ms: int = 2000
    circuit_breaker_threshold: int = 5
    circuit_breaker_reset_seconds: int = 3600

    # Fetch client
    fetch_timeout_seconds: float = 30.0
    user_agent: str = "RegTruth-Sentinel/1.0 (regulatory monitoring)"
    accept_language: str = "hr-HR,hr;q=0.9,en;q=0.8"

    # Scheduling
    scan_batch_limit: int = 200
    max_concurrent_domains: int = 4
    max_discovered_links: int = 200


class PublishSettings(BaseSettings):
    """Rule publication gate configuration."""

    model_config = SettingsConfigDict(env_prefix="PUBLISH_")

    min_confidence: float = Field(default=0.7, ge=0.0, le=1.0)
    block_on_open_conflicts: bool = True


class AlertSettings(BaseSettings):
    """Watchdog notification configuration."""

    model_config = SettingsConfigDict(env_prefix="ALERT_")

    chat_webhook_url: str = ""
    smtp_host: str = "localhost"
    smtp_port: int = 587
    smtp_user: str = ""
    smtp_password: SecretStr = SecretStr("")
    smtp_from: str = "noreply@regtruth.local"
    admin_email: str = ""
    digest_window_hours: int = 24
    dashboard_url: str = "http://localhost:8000/docs"


class CORSSettings(BaseSettings):
    """CORS configuration for the admin API."""

    model_config = SettingsConfigDict(env_prefix="CORS_")

    origins: str = "http://localhost:3000"
    allow_credentials: bool = True

    @property
    def origins_list(self) -> list[str]:
        """Parse origins string into list."""
        return [o.strip() for o in self.origins.split(",") if o.strip()]


class Settings(BaseSettings):
    """
    Main application settings.

    Loads configuration from environment variables with sensible defaults.
    Use the global `settings` singleton or call `get_settings()`.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # General
    environment: Environment = Environment.DEVELOPMENT
    debug: bool = True
    log_level: LogLevel = LogLevel.INFO

    # Admin API port
    port: int = Field(default=8010, alias="REGTRUTH_PORT")

    # Storage
    mongodb: MongoSettings = Field(default_factory=MongoSettings)

    # LLM configuration
    llm: LLMSettings = Field(default_factory=LLMSettings)

    # Pipeline
    sentinel: SentinelSettings = Field(default_factory=SentinelSettings)
    publish: PublishSettings = Field(default_factory=PublishSettings)
    alerts: AlertSettings = Field(default_factory=AlertSettings)

    # Admin API
    cors: CORSSettings = Field(default_factory=CORSSettings)

    @field_validator("log_level", mode="before")
    @classmethod
    def uppercase_log_level(cls, v: str | LogLevel) -> LogLevel:
        """Ensure log level is uppercase."""
        if isinstance(v, str):
            return LogLevel(v.upper())
        return v

    @property
    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.environment == Environment.DEVELOPMENT

    @property
    def is_production(self) -> bool:
        """Check if running in production mode."""
        return self.environment == Environment.PRODUCTION

    @property
    def is_testing(self) -> bool:
        """Check if running in test mode."""
        return self.environment == Environment.TESTING


@lru_cache
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Returns:
        Settings: Application settings singleton.
    """
    return Settings()
