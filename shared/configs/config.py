"""
Application configuration using Pydantic settings.
"""
from typing import Optional
from pydantic_settings import BaseSettings
from functools import lru_cache


class Settings(BaseSettings):
    """Application settings."""

    # Application
    app_name: str = "OSRS Flip Engine"
    debug: bool = False

    # Database
    database_url: str = "sqlite:///./osrs_flip_engine.db"

    # Service URLs
    market_analyzer_url: str = "http://localhost:8010"
    risk_manager_url: str = "http://localhost:8011"

    # Config directory for YAML service configs
    config_dir: Optional[str] = None

    # Logging
    log_level: str = "INFO"
    log_format: str = "text"
    log_file: Optional[str] = None

    # General
    environment: str = "development"

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore"  # Allow extra fields from .env file
    }


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Returns:
        Settings instance
    """
    return Settings()
