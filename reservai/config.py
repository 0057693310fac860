"""
Centralized configuration with environment variable overrides.

Business identity, scheduling limits, database and classifier settings
are all configurable here. Nothing is hardcoded in the conversation or
tool logic.
"""

import logging
import os
from dataclasses import dataclass, field
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from dotenv import load_dotenv

from reservai.logging_context import build_log_handler

load_dotenv()

logger = logging.getLogger(__name__)

CLASSIFIER_BACKENDS = ("keyword", "dialogflow")


def _safe_int(env_var: str, default: str) -> int:
    """Parse an integer from an env var with a clear error on bad values."""
    raw = os.getenv(env_var, default)
    try:
        return int(raw)
    except (ValueError, TypeError):
        raise ValueError(
            f"Invalid integer for {env_var}: {raw!r}"
        ) from None


def _safe_float(env_var: str, default: str) -> float:
    """Parse a float from an env var with a clear error on bad values."""
    raw = os.getenv(env_var, default)
    try:
        return float(raw)
    except (ValueError, TypeError):
        raise ValueError(
            f"Invalid float for {env_var}: {raw!r}"
        ) from None


def _safe_bool(env_var: str, default: str) -> bool:
    raw = os.getenv(env_var, default).strip().lower()
    if raw in ("1", "true", "yes", "on"):
        return True
    if raw in ("0", "false", "no", "off", ""):
        return False
    raise ValueError(f"Invalid boolean for {env_var}: {raw!r}")


@dataclass(frozen=True)
class BusinessConfig:
    """Business identity and locale."""

    name: str = os.getenv("BUSINESS_NAME", "Barbearia Reservai")
    timezone: str = os.getenv("BUSINESS_TIMEZONE", "America/Sao_Paulo")
    locale: str = os.getenv("BUSINESS_LOCALE", "pt-BR")
    default_client_name: str = os.getenv("DEFAULT_CLIENT_NAME", "Cliente")


@dataclass(frozen=True)
class SchedulingConfig:
    """Slot listing, session lifetime and demo schedule generation."""

    max_slots_listed: int = _safe_int("MAX_SLOTS_LISTED", "10")
    session_idle_timeout_minutes: int = _safe_int("SESSION_IDLE_TIMEOUT_MINUTES", "30")
    seed_days: int = _safe_int("SEED_DAYS", "7")
    seed_open_hour: int = _safe_int("SEED_OPEN_HOUR", "9")
    seed_close_hour: int = _safe_int("SEED_CLOSE_HOUR", "18")
    seed_slot_minutes: int = _safe_int("SEED_SLOT_MINUTES", "60")


@dataclass(frozen=True)
class DatabaseConfig:
    """Backing store connection settings."""

    url: str = os.getenv("DATABASE_URL", "sqlite:///reservai.db")
    echo: bool = _safe_bool("DATABASE_ECHO", "false")
    busy_timeout_sec: float = _safe_float("DATABASE_BUSY_TIMEOUT", "15.0")


@dataclass(frozen=True)
class ClassifierConfig:
    """External intent classifier settings."""

    backend: str = os.getenv("CLASSIFIER_BACKEND", "keyword")
    dialogflow_project_id: str = os.getenv("DIALOGFLOW_PROJECT_ID", "")
    dialogflow_credentials_file: str = os.getenv("DIALOGFLOW_CREDENTIALS_FILE", "")


@dataclass(frozen=True)
class AppConfig:
    """Root configuration aggregating all sub-configs."""

    business: BusinessConfig = field(default_factory=BusinessConfig)
    scheduling: SchedulingConfig = field(default_factory=SchedulingConfig)
    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    classifier: ClassifierConfig = field(default_factory=ClassifierConfig)
    log_level: str = os.getenv("LOG_LEVEL", "INFO")


def _validate_config(config: AppConfig) -> None:
    """Validate configuration values are within acceptable ranges."""
    try:
        ZoneInfo(config.business.timezone)
    except (ZoneInfoNotFoundError, ValueError):
        raise ValueError(
            f"BUSINESS_TIMEZONE is not a known timezone: {config.business.timezone!r}"
        ) from None
    if not config.business.default_client_name.strip():
        raise ValueError("DEFAULT_CLIENT_NAME must not be empty")

    scheduling = config.scheduling
    if scheduling.max_slots_listed < 1:
        raise ValueError(
            f"MAX_SLOTS_LISTED must be >= 1, got {scheduling.max_slots_listed}"
        )
    if scheduling.session_idle_timeout_minutes < 1:
        raise ValueError(
            "SESSION_IDLE_TIMEOUT_MINUTES must be >= 1, "
            f"got {scheduling.session_idle_timeout_minutes}"
        )
    if scheduling.seed_days < 1:
        raise ValueError(f"SEED_DAYS must be >= 1, got {scheduling.seed_days}")
    if not 0 <= scheduling.seed_open_hour < scheduling.seed_close_hour <= 24:
        raise ValueError(
            "SEED_OPEN_HOUR must be before SEED_CLOSE_HOUR within 0-24, "
            f"got {scheduling.seed_open_hour}-{scheduling.seed_close_hour}"
        )
    if scheduling.seed_slot_minutes < 5:
        raise ValueError(
            f"SEED_SLOT_MINUTES must be >= 5, got {scheduling.seed_slot_minutes}"
        )

    if config.database.busy_timeout_sec <= 0:
        raise ValueError(
            f"DATABASE_BUSY_TIMEOUT must be > 0, got {config.database.busy_timeout_sec}"
        )

    if config.classifier.backend not in CLASSIFIER_BACKENDS:
        raise ValueError(
            f"CLASSIFIER_BACKEND must be one of {CLASSIFIER_BACKENDS}, "
            f"got {config.classifier.backend!r}"
        )
    if config.classifier.backend == "dialogflow" and not config.classifier.dialogflow_project_id:
        raise ValueError("DIALOGFLOW_PROJECT_ID is required when CLASSIFIER_BACKEND=dialogflow")


def load_config() -> AppConfig:
    """Load and validate application configuration."""
    config = AppConfig()
    _validate_config(config)
    logging.basicConfig(
        level=getattr(logging, config.log_level.upper(), logging.INFO),
        handlers=[build_log_handler()],
    )
    logger.info("Configuration loaded for '%s'", config.business.name)
    return config


# Singleton instance
settings = load_config()
