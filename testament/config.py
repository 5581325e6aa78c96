"""
Configuration management using Pydantic Settings
"""
from functools import lru_cache
from typing import List

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings, read from TESTAMENT_* environment variables or .env"""

    # Application
    app_name: str = "testament"
    app_env: str = Field(default="production", description="Application environment")
    log_level: str = Field(default="INFO", description="Logging level")

    # Replica store
    database_path: str = Field(default="testament.db", description="SQLite file of the replica")

    # Read API
    api_host: str = Field(default="127.0.0.1", description="API host")
    api_port: int = Field(default=3001, ge=1, le=65535, description="API port")
    allowed_origins: str = Field(
        default="*",
        description="Allowed CORS origins (comma-separated)"
    )

    # Projection
    backfill_window: int = Field(
        default=10_000, ge=0, description="Blocks of history fetched on startup"
    )

    @property
    def allowed_origins_list(self) -> List[str]:
        """Parse CORS origins from comma-separated string"""
        return [origin.strip() for origin in self.allowed_origins.split(",") if origin.strip()]

    @property
    def is_development(self) -> bool:
        return self.app_env.lower() == "development"

    model_config = SettingsConfigDict(
        env_prefix="TESTAMENT_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        env_ignore_empty=True
    )


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance"""
    return Settings()
