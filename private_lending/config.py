"""
Configuration Management Module

Provides centralized configuration using pydantic-settings for environment-based configuration.
"""

from pydantic_settings import BaseSettings
from typing import Dict, List, Optional


class LendingConfig(BaseSettings):
    """Private lending system configuration"""

    # Storage configuration
    database_url: str = "sqlite:///lending.db"  # "memory://" for in-memory storage

    # API configuration
    api_host: str = "0.0.0.0"
    api_port: int = 8091
    api_workers: int = 1

    # Logging configuration
    log_level: str = "INFO"
    log_format: str = "json"  # json or text
    log_file: Optional[str] = None  # If None, logs to stdout

    # Currency configuration
    reporting_currency: str = "EUR"
    exchange_rate_url: str = "https://api.frankfurter.app"  # Empty = static table only
    exchange_rate_timeout: float = 3.0
    # Approximate EUR rates, not live
    fallback_rates: Dict[str, str] = {
        "USD": "0.92",
        "XAF": "0.0015",
        "CAD": "0.68",
        "CHF": "1.04",
        "GBP": "1.17",
    }

    # Reminder rules configuration
    notification_cooldown_days: int = 3
    reminder_days_before: int = 7
    final_warning_days_before: int = 1
    overdue_digest_interval_days: int = 7

    # Contract generation configuration
    contract_generation_url: str = ""  # Empty = local template only
    contract_generation_api_key: str = ""
    contract_generation_timeout: float = 20.0
    contract_generation_temperature: float = 0.1
    contract_repayment_currency: str = "EUR"

    # Feature flags
    enable_audit_logging: bool = True
    cors_origins: List[str] = ["*"]

    class Config:
        env_prefix = "LENDING_"
        env_file = ".env"
        case_sensitive = False


# Global configuration instance
config = LendingConfig()


def get_config() -> LendingConfig:
    """Get global configuration instance"""
    return config


def reload_config() -> LendingConfig:
    """Reload configuration from environment"""
    global config
    config = LendingConfig()
    return config
