"""
Configuration settings for the CampusKart backend
"""
import os
import logging
from typing import List, Optional
from dotenv import load_dotenv

# Load environment variables
load_dotenv()

logger = logging.getLogger(__name__)

_TRUE = {"1", "true", "yes", "on"}


class ConfigurationError(Exception):
    """Raised when configuration is invalid or incomplete"""
    pass


def _flag(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return default
    return value.strip().lower() in _TRUE


class Settings:
    """CampusKart Configuration"""

    def __init__(self):
        # MongoDB
        self.database_url = os.getenv("DATABASE_URL", "mongodb://localhost:27017")
        self.database_name = os.getenv("DATABASE_NAME", "campuskart")

        # Listing lifecycle: deletion is off in favour of mark-as-sold
        self.enable_deletion = _flag("ENABLE_DELETION", False)
        self.degrade_reads = _flag("DEGRADE_READS", True)

        # Server
        self.port_raw = os.getenv("PORT", "8000")
        self.log_level = os.getenv("LOG_LEVEL", "INFO").upper()
        self.cors_origins: List[str] = [
            origin.strip()
            for origin in os.getenv("CORS_ORIGINS", "*").split(",")
            if origin.strip()
        ]

    @property
    def port(self) -> int:
        return int(self.port_raw)

    def validate(self):
        """Validate required configuration"""
        if not self.database_url:
            raise ConfigurationError("DATABASE_URL not set")
        if not self.database_name:
            raise ConfigurationError("DATABASE_NAME not set")
        if not self.port_raw.isdigit():
            raise ConfigurationError(f"PORT must be a number, got {self.port_raw!r}")


# Global configuration instance
_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """Get the global configuration instance"""
    global _settings
    if _settings is None:
        _settings = Settings()
        _settings.validate()
        logger.debug(
            "Loaded settings (database=%s, deletion=%s)",
            _settings.database_name,
            _settings.enable_deletion,
        )
    return _settings
