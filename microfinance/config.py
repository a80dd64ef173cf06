"""
Configuration Management Module

Centralized configuration using pydantic-settings. Every value can be
overridden with a MICROFINANCE_-prefixed environment variable or a .env file.
"""

from pydantic_settings import BaseSettings
from typing import Optional


class MicrofinanceConfig(BaseSettings):
    """Loan engine configuration"""

    # Runtime environment; "development" exposes error details in API responses
    environment: str = "production"

    # Storage configuration
    storage_backend: str = "sqlite"  # sqlite or memory
    database_path: str = "microfinance.db"

    # API configuration
    api_host: str = "0.0.0.0"
    api_port: int = 8090

    # Logging configuration
    log_level: str = "INFO"
    log_format: str = "json"  # json or text
    log_file: Optional[str] = None  # If None, logs to stdout

    # Business rules configuration
    default_currency: str = "USD"
    default_payment_method: str = "cash"
    completion_epsilon: str = "0.01"

    # duplicate_credit reproduces the legacy personal + general fan-out;
    # percentage_split applies the loan type's admin/client/general fractions
    interest_distribution_strategy: str = "duplicate_credit"

    # overwrite or accumulate
    partial_payment_strategy: str = "overwrite"

    # When False, installment rows are written best-effort after the loan
    strict_schedule_persistence: bool = True

    class Config:
        env_prefix = "MICROFINANCE_"
        env_file = ".env"
        case_sensitive = False

    @property
    def is_development(self) -> bool:
        return self.environment.lower() in ("development", "dev")


# Global configuration instance
config = MicrofinanceConfig()


def get_config() -> MicrofinanceConfig:
    """Get global configuration instance"""
    return config


def reload_config() -> MicrofinanceConfig:
    """Reload configuration from environment"""
    global config
    config = MicrofinanceConfig()
    return config
