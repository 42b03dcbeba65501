"""
Configuration Management using Pydantic Settings

Loads from environment variables with .env file support
Type-safe configuration with validation
"""

from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field, field_validator
from typing import Optional
from pathlib import Path
from dotenv import load_dotenv
import logging
import sys

logger = logging.getLogger(__name__)


def load_env_file():
    """Load .env file from multiple possible locations"""
    possible_paths = [
        Path('.env'),
        Path(__file__).parent.parent / '.env',
        Path(__file__).parent.parent.parent / '.env',
    ]

    for path in possible_paths:
        if path.exists():
            load_dotenv(path)
            logger.debug(f"Loaded .env from: {path.absolute()}")
            return True

    return False


# Load .env before defining Settings
load_env_file()


class Settings(BaseSettings):
    """Application settings"""

    model_config = SettingsConfigDict(
        env_file='.env',
        env_file_encoding='utf-8',
        case_sensitive=False,
        extra='ignore'
    )

    # ========================================================================
    # Database Configuration
    # ========================================================================

    database_url: str = Field(
        default="sqlite:///trade_ledger.db",
        description="Database connection string"
    )

    # ========================================================================
    # Logging Configuration
    # ========================================================================

    log_level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)"
    )

    log_file: Optional[Path] = Field(
        default=None,
        description="Log file path (None for stdout only)"
    )

    log_format: str = Field(
        default="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        description="Log message format"
    )

    # ========================================================================
    # Application Configuration
    # ========================================================================

    app_name: str = Field(
        default="Trade Ledger",
        description="Application name"
    )

    analytics_config_path: Optional[Path] = Field(
        default=None,
        description="Path to analytics YAML (None = search default locations)"
    )

    default_timeframe: str = Field(
        default="ALL",
        description="Timeframe used when a request does not specify one"
    )

    default_granularity: str = Field(
        default="monthly",
        description="Bucket size used when a request does not specify one"
    )

    # ========================================================================
    # Performance & Caching
    # ========================================================================

    analysis_cache_enabled: bool = Field(
        default=True,
        description="Memoize analysis reports per ledger version"
    )

    analysis_cache_max_entries: int = Field(
        default=256,
        description="Maximum cached analysis reports (LRU)"
    )

    # ========================================================================
    # Validators
    # ========================================================================

    @field_validator('log_level')
    @classmethod
    def validate_log_level(cls, v):
        valid_levels = ['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL']
        if v.upper() not in valid_levels:
            raise ValueError(f"log_level must be one of {valid_levels}")
        return v.upper()

    @field_validator('default_timeframe')
    @classmethod
    def validate_timeframe(cls, v):
        valid = ['ALL', '1M', '3M', '6M', '1Y']
        if v.upper() not in valid:
            raise ValueError(f"default_timeframe must be one of {valid}")
        return v.upper()

    @field_validator('default_granularity')
    @classmethod
    def validate_granularity(cls, v):
        valid = ['daily', 'weekly', 'monthly']
        if v.lower() not in valid:
            raise ValueError(f"default_granularity must be one of {valid}")
        return v.lower()

    @field_validator('analysis_cache_max_entries')
    @classmethod
    def validate_cache_size(cls, v):
        if v < 1:
            raise ValueError("analysis_cache_max_entries must be at least 1")
        return v

    @field_validator('log_file')
    @classmethod
    def ensure_path_exists(cls, v):
        if v:
            path = Path(v)
            if not path.parent.exists():
                path.parent.mkdir(parents=True, exist_ok=True)
        return v

    # ========================================================================
    # Helper Methods
    # ========================================================================

    def get_database_engine_kwargs(self) -> dict:
        """Get SQLAlchemy engine kwargs based on database URL"""
        kwargs = {
            'echo': self.log_level == 'DEBUG',
        }

        if 'sqlite' in self.database_url:
            kwargs['connect_args'] = {'check_same_thread': False}
        elif 'postgresql' in self.database_url:
            kwargs['pool_size'] = 20
            kwargs['max_overflow'] = 40
            kwargs['pool_pre_ping'] = True

        return kwargs


# ============================================================================
# Global Settings Instance
# ============================================================================

_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """
    Get global settings instance (singleton pattern)

    Usage:
        from trade_ledger.config.settings import get_settings
        settings = get_settings()
        print(settings.database_url)
    """
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


def reload_settings():
    """Reload settings (useful for testing)"""
    global _settings
    _settings = Settings()
    return _settings


# ============================================================================
# Logging Configuration
# ============================================================================

def setup_logging(settings: Optional[Settings] = None):
    """
    Configure logging based on settings

    Usage:
        from trade_ledger.config.settings import setup_logging, get_settings
        setup_logging(get_settings())
    """
    if settings is None:
        settings = get_settings()

    formatter = logging.Formatter(settings.log_format)

    root_logger = logging.getLogger()
    root_logger.setLevel(settings.log_level)
    root_logger.handlers.clear()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(settings.log_level)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    if settings.log_file:
        file_handler = logging.FileHandler(settings.log_file, encoding='utf-8')
        file_handler.setLevel(settings.log_level)
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)

    # Silence noisy libraries
    logging.getLogger('sqlalchemy.engine').setLevel(logging.WARNING)

    root_logger.info(f"Logging configured: level={settings.log_level}, file={settings.log_file}")
