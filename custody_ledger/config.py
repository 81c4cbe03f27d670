"""
Configuration Management Module

Provides centralized configuration using pydantic-settings for environment-based configuration.
"""

from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import Optional


class CustodyConfig(BaseSettings):
    """Custody ledger configuration"""

    model_config = SettingsConfigDict(
        env_prefix="CUSTODY_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )

    # Ledger configuration
    owner_account: str = "owner"  # Identity fixed as owner at construction

    # Storage configuration
    storage_backend: str = "sqlite"  # memory or sqlite
    database_path: str = "custody_ledger.db"

    # API configuration
    api_host: str = "0.0.0.0"
    api_port: int = 8090

    # Security configuration
    jwt_secret: str = "change-me-in-production-use-32-bytes"
    jwt_algorithm: str = "HS256"
    jwt_expiry_hours: int = 24

    # Logging configuration
    log_level: str = "INFO"
    log_format: str = "json"  # json or text
    log_file: Optional[str] = None  # If None, logs to stderr

    # Feature flags
    enable_audit_logging: bool = True


# Global configuration instance
config = CustodyConfig()


def get_config() -> CustodyConfig:
    """Get global configuration instance"""
    return config


def reload_config() -> CustodyConfig:
    """Reload configuration from environment"""
    global config
    config = CustodyConfig()
    return config
