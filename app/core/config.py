from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import field_validator
from typing import List, Union

class Settings(BaseSettings):
    # Application Secret Key - must be set via environment variable
    SECRET_KEY: str = ""

    # Database Configuration - falls back to a local SQLite file for development
    DATABASE_URL: str = "sqlite:///./healthhire.db"

    # CORS Configuration - must be set via environment variable
    ALLOWED_ORIGINS: Union[List[str], str] = []

    # Bearer token validation
    JWT_ALGORITHM: str = "HS256"
    JWT_CLOCK_SKEW_TOLERANCE_SECONDS: int = 5

    # Rate Limiting Configuration (per-endpoint, slowapi)
    RATE_LIMIT_ENABLED: bool = True

    # Default rate limits (requests per minute)
    DEFAULT_RATE_LIMIT: str = "100/minute"

    # Admin and usage endpoint rate limits
    ADMIN_RATE_LIMIT: str = "30/minute"
    USAGE_RATE_LIMIT: str = "60/minute"

    # AI usage monitoring
    USAGE_MONITORING_ENABLED: bool = True
    USAGE_SCHEDULER_ENABLED: bool = True
    USAGE_EVENT_RETENTION_HOURS: int = 24

    # Usage event logging
    USAGE_LOG_DIR: str = "logs"
    USAGE_LOG_LEVEL: str = "INFO"
    LOG_USAGE_EVENTS: bool = True

    @field_validator('ALLOWED_ORIGINS', mode='before')
    @classmethod
    def parse_cors_origins(cls, v):
        if isinstance(v, str):
            return [origin.strip() for origin in v.split(',') if origin.strip()]
        return v

    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore"  # Ignore extra environment variables
    )

settings = Settings()
