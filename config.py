"""
Centralized configuration for Ham Radio Cloud.

All configurable values are loaded from environment variables with sensible defaults.
"""

import os


class Config:
    """Application configuration loaded from environment variables."""

    # Database
    DATABASE_PATH: str = os.getenv("DATABASE_PATH", "ham_radio_cloud.db")

    # ADIF export identity
    ADIF_VERSION: str = os.getenv("ADIF_VERSION", "3.1.4")
    PROGRAM_ID: str = os.getenv("PROGRAM_ID", "Ham Radio Cloud")
    PROGRAM_VERSION: str = os.getenv("PROGRAM_VERSION", "1.0.0")
    EXPORT_FILENAME_PREFIX: str = os.getenv("EXPORT_FILENAME_PREFIX", "hamradio_cloud_export")

    # Owning user for the HTTP layer (authentication is handled elsewhere)
    DEFAULT_USER_ID: int = int(os.getenv("DEFAULT_USER_ID", "1"))
    DEFAULT_USER_CALLSIGN: str = os.getenv("DEFAULT_USER_CALLSIGN", "N0CALL")

    # Per-user QSO quota, 0 means unlimited
    DEFAULT_QSO_LIMIT: int = int(os.getenv("DEFAULT_QSO_LIMIT", "0"))

    # Import limits
    MAX_IMPORT_ERRORS: int = int(os.getenv("MAX_IMPORT_ERRORS", "100"))
    MAX_UPLOAD_SIZE: int = int(os.getenv("MAX_UPLOAD_SIZE", str(10 * 1024 * 1024)))  # 10 MB
    ALLOWED_UPLOAD_EXTENSIONS: set = {".adi", ".adif", ".txt"}

    # Rate limiting
    RATE_LIMIT_IMPORT: str = os.getenv("RATE_LIMIT_IMPORT", "10/minute")

    # Logging
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO").upper()

    # Testing mode
    TESTING: bool = bool(os.getenv("TESTING", ""))


# Global config instance
config = Config()
