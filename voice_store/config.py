# voice_store/config.py - Configuration management
from dotenv import load_dotenv

load_dotenv()
from typing import Optional
from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field, field_validator


class Settings(BaseSettings):
    """Persistence layer settings with environment variable support (Pydantic V2 Syntax)"""

    model_config = SettingsConfigDict(
        env_file=".env",
        extra="allow",
        case_sensitive=False,
        populate_by_name=True,
    )

    # Application
    app_name: str = "Voice Demo Persistence Service"
    app_version: str = "1.0.0"
    environment: str = Field(default="development", alias="ENVIRONMENT")
    debug: bool = Field(default=False, alias="DEBUG")

    # Backend selection
    database_backend: str = Field(default="embedded", alias="DATABASE_BACKEND")

    # Embedded backend
    database_image_path: Optional[str] = Field(default=None, alias="DATABASE_IMAGE_PATH")
    flush_debounce_seconds: float = Field(default=5.0, alias="FLUSH_DEBOUNCE_SECONDS")

    # Remote backend
    remote_database_url: str = Field(default="http://localhost:3001", alias="REMOTE_DATABASE_URL")
    remote_api_prefix: str = Field(default="/api/db", alias="REMOTE_API_PREFIX")
    remote_timeout_seconds: float = Field(default=10.0, alias="REMOTE_TIMEOUT_SECONDS")

    # Logging
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    log_json: bool = Field(default=False, alias="LOG_JSON")

    # --- Pydantic V2 Validators ---
    @field_validator("database_backend")
    @classmethod
    def validate_backend(cls, v):
        v = (v or "").strip().lower()
        if v not in ("embedded", "remote"):
            raise ValueError("DATABASE_BACKEND must be 'embedded' or 'remote'")
        return v

    @field_validator("flush_debounce_seconds", "remote_timeout_seconds")
    @classmethod
    def validate_non_negative(cls, v):
        if v < 0:
            raise ValueError("Durations must not be negative")
        return v

    @field_validator("remote_database_url")
    @classmethod
    def validate_remote_url(cls, v):
        if not v.startswith(("http://", "https://")):
            raise ValueError("REMOTE_DATABASE_URL must be an http(s) URL")
        return v.rstrip("/")

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v):
        return v.upper()

    @property
    def is_production(self) -> bool:
        return self.environment.lower() == "production"

    @property
    def is_development(self) -> bool:
        return self.environment.lower() == "development"

    @property
    def remote_base_url(self) -> str:
        return f"{self.remote_database_url}{self.remote_api_prefix}"


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance"""
    return Settings()

# Environment-specific configurations
class DevelopmentConfig(Settings):
    """Development environment configuration"""
    debug: bool = True
    environment: str = "development"

class ProductionConfig(Settings):
    """Production environment configuration"""
    debug: bool = False
    environment: str = "production"
    log_json: bool = True

class TestingConfig(Settings):
    """Testing environment configuration"""
    debug: bool = True
    environment: str = "testing"
    database_image_path: Optional[str] = None
    flush_debounce_seconds: float = 0.05

def get_config_by_env(env: str) -> Settings:
    """Get configuration by environment name"""
    configs = {
        "development": DevelopmentConfig,
        "production": ProductionConfig,
        "testing": TestingConfig
    }

    config_class = configs.get(env.lower(), Settings)
    return config_class()
