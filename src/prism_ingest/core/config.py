"""Runtime settings read from the environment or a .env file."""

from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Union
import logging
import os

from dotenv import load_dotenv

from prism_ingest.core.database_manager import DEFAULT_DB_URL
from prism_ingest.schemas.registry import COMBINED_FILE_CONFIG, FileProcessingConfig, create_custom_config

logger = logging.getLogger(__name__)

ENV_DB_URL = "PRISM_DB_URL"
ENV_MAX_FILE_SIZE = "PRISM_MAX_FILE_SIZE"
ENV_PROCESSING_TIMEOUT = "PRISM_PROCESSING_TIMEOUT"
ENV_LOG_LEVEL = "PRISM_LOG_LEVEL"

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


@dataclass(frozen=True)
class Settings:
    """Settings for a processing session.

    Attributes:
        db_url: SQLAlchemy URL of the store
        max_file_size: Upload limit in bytes
        processing_timeout: Processing budget in seconds
        log_level: Name of the logging level
    """

    db_url: str = DEFAULT_DB_URL
    max_file_size: int = COMBINED_FILE_CONFIG.max_file_size
    processing_timeout: float = COMBINED_FILE_CONFIG.processing_timeout
    log_level: str = "INFO"

    def file_config(self, base: FileProcessingConfig = COMBINED_FILE_CONFIG) -> FileProcessingConfig:
        """Apply the configured limits to a processing config."""
        return create_custom_config(
            base,
            max_file_size=self.max_file_size,
            processing_timeout=self.processing_timeout,
        )


def _read_number(name: str, default, cast):
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = cast(raw.strip())
    except ValueError:
        raise ValueError(f"{name} must be a number, got {raw!r}") from None
    if value <= 0:
        raise ValueError(f"{name} must be positive, got {raw!r}")
    return value


def load_settings(env_file: Optional[Union[str, Path]] = None) -> Settings:
    """Build Settings from environment variables.

    Args:
        env_file: Optional .env file loaded first; variables already set in
            the environment take precedence

    Raises:
        ValueError: If a numeric variable or the log level is invalid
    """
    if env_file and Path(env_file).exists():
        load_dotenv(env_file)
        logger.info(f"Loaded settings from {env_file}")
    elif env_file:
        logger.warning(f"Settings file not found: {env_file}")

    log_level = os.getenv(ENV_LOG_LEVEL, "INFO").strip().upper()
    if log_level not in LOG_LEVELS:
        raise ValueError(f"{ENV_LOG_LEVEL} must be one of {', '.join(LOG_LEVELS)}, got {log_level!r}")

    return Settings(
        db_url=os.getenv(ENV_DB_URL, DEFAULT_DB_URL),
        max_file_size=_read_number(ENV_MAX_FILE_SIZE, Settings.max_file_size, int),
        processing_timeout=_read_number(ENV_PROCESSING_TIMEOUT, Settings.processing_timeout, float),
        log_level=log_level,
    )
