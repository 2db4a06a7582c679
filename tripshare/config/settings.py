"""
Configuration management system using Pydantic Settings.
Supports environment-based configuration for different deployment environments.
"""

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings
from typing import Optional
from enum import Enum


class Environment(str, Enum):
    """Supported deployment environments"""
    DEVELOPMENT = "development"
    STAGING = "staging"
    PRODUCTION = "production"
    TESTING = "testing"


class LogLevel(str, Enum):
    """Supported log levels"""
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class DatabaseSettings(BaseSettings):
    """Document store (SQLAlchemy) configuration"""

    url: str = Field(default="sqlite+aiosqlite:///./tripshare.db")
    echo: bool = Field(default=False)
    pool_pre_ping: bool = Field(default=True)

    model_config = {"env_prefix": "DATABASE_"}


class RedisSettings(BaseSettings):
    """Redis cache configuration"""

    host: str = Field(default="redis")  # Default to docker service name
    port: int = Field(default=6379, ge=1, le=65535)
    password: Optional[str] = Field(default=None)
    db: int = Field(default=0, ge=0, le=15)
    max_connections: int = Field(default=20, ge=1, le=100)
    socket_timeout: int = Field(default=5, ge=1, le=30)

    @property
    def url(self) -> str:
        """Generate Redis URL from configuration"""
        auth = f":{self.password}@" if self.password else ""
        return f"redis://{auth}{self.host}:{self.port}/{self.db}"

    model_config = {"env_prefix": "REDIS_"}


class CacheSettings(BaseSettings):
    """Read-through cache behaviour, one TTL per namespace"""

    enabled: bool = Field(default=True)
    trip_ttl_seconds: int = Field(default=1800, ge=1, le=86400)
    trip_list_ttl_seconds: int = Field(default=900, ge=1, le=86400)
    search_ttl_seconds: int = Field(default=300, ge=1, le=86400)
    permission_ttl_seconds: int = Field(default=300, ge=1, le=3600)

    model_config = {"env_prefix": "CACHE_"}


class StoreSettings(BaseSettings):
    """Trip record store tuning"""

    max_write_retries: int = Field(default=5, ge=1, le=50)
    default_page_size: int = Field(default=20, ge=1, le=100)
    max_page_size: int = Field(default=100, ge=1, le=500)
    activity_log_limit: int = Field(default=50, ge=1, le=1000)

    model_config = {"env_prefix": "STORE_"}


class Settings(BaseSettings):
    """Main application settings"""

    # Application Configuration
    app_name: str = Field(default="TripShare Collaboration Service")
    app_version: str = Field(default="1.0.0")
    environment: Environment = Field(default=Environment.DEVELOPMENT)
    debug: bool = Field(default=False)

    # Server Configuration
    host: str = Field(default="0.0.0.0")
    port: int = Field(default=8000, ge=1, le=65535)
    reload: bool = Field(default=False)
    workers: int = Field(default=1, ge=1, le=16)

    # Identity provider hands us a verified opaque user id in this header
    user_id_header: str = Field(default="X-User-Id")

    # Logging Configuration
    log_level: LogLevel = Field(default=LogLevel.INFO)
    log_format: str = Field(default="json", description="json or text")

    # Nested Settings
    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    redis: RedisSettings = Field(default_factory=RedisSettings)
    cache: CacheSettings = Field(default_factory=CacheSettings)
    store: StoreSettings = Field(default_factory=StoreSettings)

    @field_validator('environment', mode='before')
    @classmethod
    def validate_environment(cls, v):
        """Validate and normalize environment setting"""
        if isinstance(v, str):
            return Environment(v.lower())
        return v

    @field_validator('log_format', mode='before')
    @classmethod
    def validate_log_format(cls, v):
        """Only json and text formatters exist"""
        value = str(v).strip().lower()
        if value not in ("json", "text"):
            raise ValueError(f"Unsupported log format '{v}'")
        return value

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "case_sensitive": False,
        "extra": "ignore",
    }


# Global settings instance
settings = Settings()


def get_settings() -> Settings:
    """Get application settings instance"""
    return settings



def reload_settings() -> Settings:
    """Reload settings from environment and files"""
    global settings
    settings = Settings()
    return settings
