"""Configuration loaded from environment variables and .env files."""

import logging
import os
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv

from datacite_engine.api.datacite_serializer import DEFAULT_LANGUAGE, DEFAULT_PUBLISHER
from datacite_engine.utils.date_resolver import DateResolver


logger = logging.getLogger(__name__)

DEFAULT_TIMEZONE_FALLBACK = "+00:00"
TRUE_VALUES = ('1', 'true', 'yes', 'on')


@dataclass
class EngineConfig:
    """Settings shared by the CLI, the serializer and the import sources."""
    timezone_fallback: Optional[str] = DEFAULT_TIMEZONE_FALLBACK
    default_publisher: str = DEFAULT_PUBLISHER
    default_language: str = DEFAULT_LANGUAGE
    strict_validation: bool = False
    datacite_username: Optional[str] = None
    datacite_password: Optional[str] = None
    use_test_api: bool = False
    db_host: Optional[str] = None
    db_name: Optional[str] = None
    db_username: Optional[str] = None
    db_password: Optional[str] = None
    log_level: str = "INFO"
    log_file: Optional[str] = "datacite_engine.log"

    @property
    def has_database(self) -> bool:
        """True if all SUMARIOPMD connection settings are present."""
        return all([self.db_host, self.db_name, self.db_username, self.db_password])


def _get_bool(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    return value.strip().lower() in TRUE_VALUES


def load_config(env_file: Optional[str] = None) -> EngineConfig:
    """
    Load the engine configuration.

    Values from the environment take precedence over the .env file.

    Args:
        env_file: Path to a .env file (default: search from the working directory)

    Returns:
        EngineConfig

    Raises:
        ValueError: If DATACITE_TIMEZONE_FALLBACK is not a valid UTC offset
    """
    if env_file:
        load_dotenv(env_file)
    else:
        load_dotenv()

    timezone_fallback = os.getenv('DATACITE_TIMEZONE_FALLBACK', DEFAULT_TIMEZONE_FALLBACK).strip() or None
    if timezone_fallback is not None and not DateResolver.OFFSET_PATTERN.match(timezone_fallback):
        raise ValueError(f"Invalid DATACITE_TIMEZONE_FALLBACK: {timezone_fallback!r} (expected e.g. +01:00 or Z)")

    config = EngineConfig(
        timezone_fallback=timezone_fallback,
        default_publisher=os.getenv('DATACITE_PUBLISHER') or DEFAULT_PUBLISHER,
        default_language=os.getenv('DATACITE_LANGUAGE') or DEFAULT_LANGUAGE,
        strict_validation=_get_bool('DATACITE_STRICT_VALIDATION'),
        datacite_username=os.getenv('DATACITE_USERNAME') or None,
        datacite_password=os.getenv('DATACITE_PASSWORD') or None,
        use_test_api=_get_bool('DATACITE_USE_TEST_API'),
        db_host=os.getenv('DB_SUMARIOPMD_HOST') or None,
        db_name=os.getenv('DB_SUMARIOPMD_NAME') or None,
        db_username=os.getenv('DB_SUMARIOPMD_USER') or None,
        db_password=os.getenv('DB_SUMARIOPMD_PASSWORD') or None,
        log_level=(os.getenv('LOG_LEVEL') or "INFO").upper(),
        log_file=os.getenv('LOG_FILE', "datacite_engine.log") or None,
    )

    logger.debug(
        f"Configuration loaded (timezone fallback: {config.timezone_fallback}, "
        f"test API: {config.use_test_api}, database: {config.has_database})"
    )
    return config
