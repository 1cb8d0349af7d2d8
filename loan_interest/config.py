"""
Configuration Management Module

Provides centralized configuration using pydantic-settings for environment-based configuration.
"""

from pydantic_settings import BaseSettings
from typing import Optional
from zoneinfo import ZoneInfo


class LoanInterestConfig(BaseSettings):
    """Loan interest engine configuration"""

    # Storage configuration
    database_url: str = "sqlite:///loan_interest.db"  # or memory://

    # Interest engine configuration
    day_count_basis: int = 365  # 365 or 366, policy choice
    batch_size: int = 100
    timezone: str = "Asia/Kolkata"  # Zone used for lastAppliedAt and "today"
    max_workers: int = 1  # 1 = sequential processing within a page
    use_row_locks: bool = False  # Only honoured when the store supports it

    # API configuration
    api_host: str = "0.0.0.0"
    api_port: int = 8090

    # Logging configuration
    log_level: str = "INFO"
    log_format: str = "json"  # json or text
    log_file: Optional[str] = None  # If None, logs to stdout

    class Config:
        env_prefix = "LOAN_INTEREST_"
        env_file = ".env"
        case_sensitive = False

    def zone(self) -> ZoneInfo:
        """Configured timezone as a tzinfo"""
        return ZoneInfo(self.timezone)


# Global configuration instance
config = LoanInterestConfig()


def get_config() -> LoanInterestConfig:
    """Get global configuration instance"""
    return config


def reload_config() -> LoanInterestConfig:
    """Reload configuration from environment"""
    global config
    config = LoanInterestConfig()
    return config
