"""
Configuration Management Module

Provides centralized configuration using pydantic-settings for environment-based configuration.
"""

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class LoanEngineConfig(BaseSettings):
    """Loan engine configuration"""

    model_config = SettingsConfigDict(
        env_prefix="LOAN_ENGINE_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )

    # Storage configuration
    database_url: str = "memory://"  # or sqlite:///path/to/loans.db

    # Logging configuration
    log_level: str = "INFO"
    log_format: str = "json"  # json or text

    # Calculation configuration
    guard_precision: int = 28  # Significant digits for intermediate EMI math

    # Business rules configuration
    min_tenure_months: int = 12
    max_tenure_months: int = 360
    enforce_eligibility: bool = True
    due_day_of_month: int = 1
    clamp_outstanding_balance: bool = True

    # Feature flags
    enable_audit_logging: bool = True

    @field_validator("guard_precision")
    @classmethod
    def _check_guard_precision(cls, value: int) -> int:
        if value < 20:
            raise ValueError("guard_precision must be at least 20 significant digits")
        return value

    @field_validator("due_day_of_month")
    @classmethod
    def _check_due_day(cls, value: int) -> int:
        if not 1 <= value <= 31:
            raise ValueError("due_day_of_month must be between 1 and 31")
        return value

    @field_validator("log_format")
    @classmethod
    def _check_log_format(cls, value: str) -> str:
        value = value.lower()
        if value not in ("json", "text"):
            raise ValueError("log_format must be 'json' or 'text'")
        return value


# Global configuration instance
config = LoanEngineConfig()


def get_config() -> LoanEngineConfig:
    """Get global configuration instance"""
    return config


def reload_config() -> LoanEngineConfig:
    """Reload configuration from environment"""
    global config
    config = LoanEngineConfig()
    return config
