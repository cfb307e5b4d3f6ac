# ashram/config.py - configuration management
from dotenv import load_dotenv

load_dotenv()
from typing import Optional, Union
from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field, field_validator


class Settings(BaseSettings):
    """Application settings with validation and environment variable support"""

    model_config = SettingsConfigDict(
        env_file=".env",
        extra="allow",
        case_sensitive=False,
        populate_by_name=True,
    )

    # Application
    app_name: str = Field(default="Ashram Queue", alias="APP_NAME")
    app_version: str = Field(default="1.0.0", alias="APP_VERSION")
    environment: str = Field(default="development", alias="ENVIRONMENT")
    debug: bool = Field(default=False, alias="DEBUG")

    # Database
    database_url: str = Field(..., alias="DATABASE_URL")

    # Security
    secret_key: str = Field(..., alias="SECRET_KEY")
    algorithm: str = Field(default="HS256", alias="ALGORITHM")
    access_token_expire_minutes: int = Field(default=60, alias="ACCESS_TOKEN_EXPIRE_MINUTES")

    # CORS
    cors_origins: Union[str, list[str]] = Field(default=["http://localhost:3000"], alias="CORS_ORIGINS")

    # Cache / rate limiting
    redis_url: Optional[str] = Field(default=None, alias="REDIS_URL")
    checkin_cooldown_seconds: int = Field(default=10, alias="CHECKIN_COOLDOWN_SECONDS")
    rate_limit_enabled: bool = Field(default=True, alias="RATE_LIMIT_ENABLED")
    booking_rate_limit: str = Field(default="5/minute", alias="BOOKING_RATE_LIMIT")

    # Queue
    service_minutes_per_person: int = Field(default=15, alias="SERVICE_MINUTES_PER_PERSON")
    estimate_refresh_threshold_minutes: int = Field(default=5, alias="ESTIMATE_REFRESH_THRESHOLD_MINUTES")

    # Scheduling
    appointment_duration_minutes: int = Field(default=30, alias="APPOINTMENT_DURATION_MINUTES")
    business_hours_start: int = Field(default=9, alias="BUSINESS_HOURS_START")
    business_hours_end: int = Field(default=18, alias="BUSINESS_HOURS_END")
    conflict_window_minutes: int = Field(default=15, alias="CONFLICT_WINDOW_MINUTES")
    ashram_timezone: str = Field(default="Asia/Kolkata", alias="ASHRAM_TIMEZONE")

    # Monitoring
    metrics_buffer_size: int = Field(default=1000, alias="METRICS_BUFFER_SIZE")
    slow_request_ms: int = Field(default=2000, alias="SLOW_REQUEST_MS")

    # Logging
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    log_json: bool = Field(default=False, alias="LOG_JSON")

    # Seed data
    admin_default_email: str = Field(default="admin@ashram.org", alias="ADMIN_DEFAULT_EMAIL")
    admin_default_password: Optional[str] = Field(default=None, alias="ADMIN_DEFAULT_PASSWORD")
    default_guruji_email: str = Field(default="guruji@ashram.org", alias="DEFAULT_GURUJI_EMAIL")
    default_guruji_name: str = Field(default="Guruji", alias="DEFAULT_GURUJI_NAME")
    default_guruji_password: Optional[str] = Field(default=None, alias="DEFAULT_GURUJI_PASSWORD")

    @field_validator("cors_origins", mode='before')
    @classmethod
    def parse_cors_origins(cls, v):
        if isinstance(v, str):
            if not v.strip():
                return ["http://localhost:3000"]
            return [origin.strip() for origin in v.split(',') if origin.strip()]
        return v

    @field_validator("database_url")
    @classmethod
    def validate_database_url(cls, v):
        if not v:
            raise ValueError("DATABASE_URL is required")
        if not v.startswith(("postgresql://", "postgresql+psycopg2://", "sqlite:///")):
            raise ValueError("DATABASE_URL must be a valid PostgreSQL or SQLite URL")
        return v

    @field_validator("secret_key")
    @classmethod
    def validate_key_length(cls, v):
        if not v or len(v) < 32:
            raise ValueError("SECRET_KEY must be at least 32 characters long")
        return v

    @field_validator("business_hours_end")
    @classmethod
    def validate_business_hours(cls, v, info):
        start = info.data.get("business_hours_start", 9)
        if v <= start:
            raise ValueError("BUSINESS_HOURS_END must be later than BUSINESS_HOURS_START")
        return v

    @property
    def is_production(self) -> bool:
        return self.environment.lower() == "production"

    @property
    def is_development(self) -> bool:
        return self.environment.lower() == "development"

    @property
    def redis_enabled(self) -> bool:
        return bool(self.redis_url)


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance"""
    return Settings()

# Do not instantiate settings at import time; missing environment
# variables should only fail when settings are first needed.
