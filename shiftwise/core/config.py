"""
Configuration for the Shiftwise backend.

Settings are loaded from environment variables or a `.env` file, with
defaults suitable for local development. Feature flags that only matter at
startup (``AUTO_CREATE_DB``, ``AUTO_SEED_RULES``, ``ENABLE_WORKFLOW_ENGINE``,
``ENABLE_MQTT_CONSUMER``) are read directly from the environment by
``shiftwise.main``.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from zoneinfo import ZoneInfo

from dotenv import load_dotenv
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

ENV_PATH = Path(__file__).resolve().parents[2] / ".env"
load_dotenv(ENV_PATH, override=False)


class Settings(BaseSettings):
    """Application configuration loaded from environment variables."""

    database_url: str = Field(default="sqlite+pysqlite:///./shiftwise.db", alias="DATABASE_URL")

    # Workflow engine
    scheduler_timezone: str = Field(default="UTC", alias="WORKFLOW_TIMEZONE")
    execution_log_size: int = Field(default=1000, alias="WORKFLOW_EXECUTION_LOG_SIZE")
    webhook_timeout_sec: float = Field(default=10.0, alias="WORKFLOW_WEBHOOK_TIMEOUT_SEC")

    # Outbound email
    email_provider: str = Field(default="log", alias="EMAIL_PROVIDER")
    smtp_host: str | None = Field(default=None, alias="SMTP_HOST")
    smtp_port: int = Field(default=587, alias="SMTP_PORT")
    smtp_user: str | None = Field(default=None, alias="SMTP_USER")
    smtp_password: str | None = Field(default=None, alias="SMTP_PASSWORD")
    smtp_from: str | None = Field(default=None, alias="SMTP_FROM")
    smtp_starttls: bool = Field(default=True, alias="SMTP_STARTTLS")

    # MQTT event source
    mqtt_broker_host: str = Field(default="localhost", alias="MQTT_BROKER_HOST")
    mqtt_broker_port: int = Field(default=1883, alias="MQTT_BROKER_PORT")
    mqtt_username: str | None = Field(default=None, alias="MQTT_USERNAME")
    mqtt_password: str | None = Field(default=None, alias="MQTT_PASSWORD")
    mqtt_topic_prefix: str = Field(default="shiftwise", alias="WORKFLOW_MQTT_TOPIC_PREFIX")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )


settings = Settings()


def env_flag(name: str, default: str = "true") -> bool:
    return os.getenv(name, default).lower() in {"1", "true", "yes"}


def get_app_env() -> str:
    raw = os.getenv("SHIFTWISE_ENV") or os.getenv("APP_ENV") or "dev"
    env = raw.strip().lower()
    if env not in {"dev", "prod"}:
        logging.getLogger("config").warning("Unknown SHIFTWISE_ENV=%s; defaulting to dev", raw)
        env = "dev"
    return env


def validate_runtime_settings(current: Settings | None = None) -> None:
    current = current or settings
    env = get_app_env()
    logger = logging.getLogger("config")

    try:
        ZoneInfo(current.scheduler_timezone)
    except Exception:
        if env == "prod":
            raise RuntimeError(f"WORKFLOW_TIMEZONE={current.scheduler_timezone!r} is not a valid timezone.")
        logger.error("WORKFLOW_TIMEZONE=%s is invalid; falling back to UTC.", current.scheduler_timezone)
        current.scheduler_timezone = "UTC"

    if current.execution_log_size < 1:
        logger.warning("WORKFLOW_EXECUTION_LOG_SIZE=%s is too small; using 1000.", current.execution_log_size)
        current.execution_log_size = 1000
    if current.webhook_timeout_sec <= 0:
        logger.warning("WORKFLOW_WEBHOOK_TIMEOUT_SEC=%s must be positive; using 10.", current.webhook_timeout_sec)
        current.webhook_timeout_sec = 10.0

    provider = (current.email_provider or "").strip().lower()
    if provider == "smtp" and not current.smtp_host:
        logger.error("EMAIL_PROVIDER=smtp but SMTP_HOST missing; falling back to log provider.")
        current.email_provider = "log"

    if env == "prod":
        if current.database_url.startswith("sqlite"):
            logger.warning("DATABASE_URL points at SQLite in prod. Consider PostgreSQL.")
        if env_flag("AUTO_CREATE_DB", "true"):
            logger.warning("AUTO_CREATE_DB is enabled in prod. Consider setting it to false.")
        if env_flag("AUTO_SEED_RULES", "true"):
            logger.warning("AUTO_SEED_RULES is enabled in prod. Consider setting it to false.")


validate_runtime_settings()
