"""
Weather Alert Service

A small weather notification system with:
- User registration with temperature/condition preferences
- OpenWeatherMap current-conditions fetching
- SQLite persistence of readings and sent alerts
- Scheduled fetch-and-alert cycles with email delivery
- REST API for management and on-demand runs
"""

from .config import Settings
from .database import Database
from .errors import (
    ConfigError,
    ConflictError,
    CycleInProgressError,
    NotFoundError,
    PersistenceError,
    ProviderError,
    TransportError,
    ValidationError,
    WeatherAlertError,
)
from .fetcher import WeatherClient
from .mailer import EmailClient
from .pipeline import AlertPipeline, PipelineResult, evaluate_preferences
from .scheduler import WeatherScheduler
from .context import AppContext, build_context
from .api import create_app

__version__ = "1.0.0"

__all__ = [
    "Settings",
    "Database",
    "WeatherClient",
    "EmailClient",
    "AlertPipeline",
    "PipelineResult",
    "evaluate_preferences",
    "WeatherScheduler",
    "AppContext",
    "build_context",
    "create_app",
    "WeatherAlertError",
    "ConfigError",
    "ValidationError",
    "ConflictError",
    "CycleInProgressError",
    "NotFoundError",
    "ProviderError",
    "TransportError",
    "PersistenceError",
]
