"""
SecureSuite Configuration - validated settings and logging setup.

Reads settings from environment variables:
    SECURESUITE_DB_PATH            = <path to identity store database>
    SECURESUITE_PBKDF2_ITERATIONS  = <int, >= 100000>
    SECURESUITE_STORE_RETRIES      = <int, attempts on a busy database>
    SECURESUITE_STORE_TIMEOUT      = <float seconds, SQLite busy timeout>
    SECURESUITE_LOG_LEVEL          = DEBUG | INFO | WARNING | ERROR

Security Note:
    Never log key material, passwords or plaintext.
"""
import os
import logging

from pydantic import BaseModel, Field, ValidationError, field_validator

from . import crypto
from .errors import InvalidInput

logger = logging.getLogger("securesuite.config")

DEFAULT_DB_PATH = os.path.join(os.path.expanduser("~"), ".securesuite", "users.db")
LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"

_ENV_PREFIX = "SECURESUITE_"


class Settings(BaseModel):
    """Validated SecureSuite settings."""

    db_path: str = Field(default=DEFAULT_DB_PATH)
    pbkdf2_iterations: int = Field(
        default=crypto.PBKDF2_ITERATIONS,
        ge=crypto.MIN_PBKDF2_ITERATIONS, le=crypto.MAX_PBKDF2_ITERATIONS,
    )
    store_retries: int = Field(default=3, ge=1, le=20)
    store_timeout: float = Field(default=5.0, gt=0)
    log_level: str = Field(default="WARNING")

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate the level is one the logging module knows."""
        level = v.upper()
        if level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"Unsupported log level: {v}")
        return level

    @classmethod
    def from_env(cls) -> "Settings":
        """Create Settings from SECURESUITE_* environment variables.

        Unset variables keep their defaults.

        Raises:
            InvalidInput: If a variable holds an invalid value.
        """
        values = {}
        for field in cls.model_fields:
            raw = os.environ.get(_ENV_PREFIX + field.upper())
            if raw is not None:
                values[field] = raw
        try:
            settings = cls(**values)
        except ValidationError as e:
            fields = ", ".join(_ENV_PREFIX + str(err["loc"][0]).upper() for err in e.errors())
            raise InvalidInput(f"invalid settings: {fields}") from None
        logger.debug("Loaded settings (db=%s, iterations=%d)",
                     settings.db_path, settings.pbkdf2_iterations)
        return settings


def setup_logging(level: str = "WARNING") -> None:
    """Configure root logging for the command-line tools."""
    logging.basicConfig(level=getattr(logging, level.upper(), logging.WARNING), format=LOG_FORMAT)
