"""Core configuration management using Pydantic settings."""
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import model_validator, field_validator
from typing import Optional, List


# Valid log levels
VALID_LOG_LEVELS = ['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL']


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    # Redis (redis_url should contain full connection string including port)
    redis_url: str = "redis://localhost:6379/0"
    redis_max_connections: int = 50
    redis_socket_timeout_seconds: float = 5.0

    # Market data (CoinGecko)
    coingecko_api_key: Optional[str] = None
    coingecko_base_url: str = "https://api.coingecko.com/api/v3"
    market_universe_size: int = 200
    market_fetch_timeout_seconds: float = 30.0

    # ATH detection
    ath_min_increase_fraction: float = 0.0
    detect_missed_ath: bool = False

    # Notifications
    notification_cooldown_seconds: int = 300  # 5 minutes per asset
    dispatch_concurrency: int = 10

    # Pipeline
    pipeline_lock_ttl_seconds: int = 300
    ath_check_interval_minutes: int = 5

    # Email (Resend)
    resend_api_key: Optional[str] = None
    resend_base_url: str = "https://api.resend.com"
    email_from: str = "ATH Watch <notifications@athwatch.local>"
    email_reply_to: Optional[str] = None
    app_url: str = "http://localhost:3000"

    # Logging
    log_level: str = "INFO"

    # Secrets for machine callers
    cron_secret: Optional[str] = None
    email_webhook_secret: Optional[str] = None

    # JWT Authentication (admin endpoints)
    jwt_secret: Optional[str] = None
    jwt_algorithm: str = "HS256"
    access_token_expire_minutes: int = 60

    # API Configuration
    backend_port: int = 8000

    # CORS Configuration
    cors_origins: str = "http://localhost:3000"  # Comma-separated list of allowed origins

    @field_validator('log_level')
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level is a valid Python logging level."""
        upper_v = v.upper()
        if upper_v not in VALID_LOG_LEVELS:
            raise ValueError(f"log_level must be one of {VALID_LOG_LEVELS}")
        return upper_v

    @field_validator('ath_min_increase_fraction')
    @classmethod
    def validate_threshold(cls, v: float) -> float:
        """ATH threshold is a non-negative fraction (0.01 = 1%)."""
        if v < 0:
            raise ValueError("ath_min_increase_fraction must be >= 0")
        return v

    @field_validator(
        'market_universe_size',
        'redis_max_connections',
        'dispatch_concurrency',
        'notification_cooldown_seconds',
        'pipeline_lock_ttl_seconds',
        'ath_check_interval_minutes',
    )
    @classmethod
    def validate_positive(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("value must be positive")
        return v

    @property
    def cors_origins_list(self) -> List[str]:
        """Parse CORS origins from comma-separated string to list."""
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]

    @model_validator(mode='after')
    def validate_config(self) -> 'Settings':
        """Validate configuration after all fields are set."""
        # Validate JWT secret strength
        if self.jwt_secret is not None and len(self.jwt_secret) < 32:
            raise ValueError("JWT secret must be at least 32 characters for security")
        return self


# Global settings instance
settings = Settings()
