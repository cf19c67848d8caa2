"""
Configuration module for the Weather Alert service.

Reads the process environment once at startup into an immutable Settings
object. Only presence and shape are validated here.
"""

import logging
import os
from dataclasses import dataclass, field
from typing import List, Mapping, Optional

from .errors import ConfigError

logger = logging.getLogger(__name__)

DEFAULT_SMTP_HOST = "smtp.gmail.com"
DEFAULT_SMTP_PORT = 587
DEFAULT_LOG_LEVEL = "INFO"
DEFAULT_WEATHER_API_URL = "https://api.openweathermap.org/data/2.5/weather"
DEFAULT_FETCH_INTERVAL_HOURS = 2
DEFAULT_HTTP_TIMEOUT = 10

REQUIRED_VARIABLES = (
    "DATABASE_URL",
    "WEATHER_API_KEY",
    "SMTP_USERNAME",
    "SMTP_PASSWORD",
)

LOG_LEVELS = ("CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG")


@dataclass(frozen=True)
class Settings:
    """Typed view of the service environment."""
    database_url: str
    weather_api_key: str
    smtp_username: str
    smtp_password: str
    smtp_host: str = DEFAULT_SMTP_HOST
    smtp_port: int = DEFAULT_SMTP_PORT
    smtp_from: Optional[str] = None
    log_level: str = DEFAULT_LOG_LEVEL
    weather_api_url: str = DEFAULT_WEATHER_API_URL
    fetch_interval_hours: int = DEFAULT_FETCH_INTERVAL_HOURS
    http_timeout: int = DEFAULT_HTTP_TIMEOUT
    cors_origins: List[str] = field(default_factory=lambda: ["*"])

    @property
    def sender(self) -> str:
        return self.smtp_from or self.smtp_username

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "Settings":
        """
        Build settings from environment variables.

        Raises:
            ConfigError: listing every missing or malformed variable.
        """
        env = os.environ if environ is None else environ
        problems = []

        values = {}
        for name in REQUIRED_VARIABLES:
            value = env.get(name, "").strip()
            if not value:
                problems.append(f"{name} not set")
            values[name] = value

        smtp_port = _parse_int(env, "SMTP_PORT", DEFAULT_SMTP_PORT, problems)
        interval = _parse_int(
            env, "FETCH_INTERVAL_HOURS", DEFAULT_FETCH_INTERVAL_HOURS, problems
        )
        timeout = _parse_int(env, "HTTP_TIMEOUT", DEFAULT_HTTP_TIMEOUT, problems)

        log_level = env.get("LOG_LEVEL", DEFAULT_LOG_LEVEL).strip().upper()
        if log_level not in LOG_LEVELS:
            problems.append(f"LOG_LEVEL must be one of {', '.join(LOG_LEVELS)}")

        if problems:
            raise ConfigError("; ".join(problems))

        origins = [
            o.strip() for o in env.get("CORS_ORIGINS", "*").split(",") if o.strip()
        ]

        return cls(
            database_url=values["DATABASE_URL"],
            weather_api_key=values["WEATHER_API_KEY"],
            smtp_username=values["SMTP_USERNAME"],
            smtp_password=values["SMTP_PASSWORD"],
            smtp_host=env.get("SMTP_HOST", "").strip() or DEFAULT_SMTP_HOST,
            smtp_port=smtp_port,
            smtp_from=env.get("SMTP_FROM", "").strip() or None,
            log_level=log_level,
            weather_api_url=env.get("WEATHER_API_URL", "").strip() or DEFAULT_WEATHER_API_URL,
            fetch_interval_hours=interval,
            http_timeout=timeout,
            cors_origins=origins or ["*"],
        )


def _parse_int(env: Mapping[str, str], name: str, default: int, problems: list) -> int:
    raw = env.get(name, "").strip()
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError:
        problems.append(f"{name} must be an integer, got {raw!r}")
        return default
    if value <= 0:
        problems.append(f"{name} must be positive, got {value}")
        return default
    return value
