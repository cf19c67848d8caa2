"""
Application context: every long-lived component, built once at startup and
handed to the API and the CLI explicitly.
"""

import logging
from dataclasses import dataclass

from .config import Settings
from .database import Database
from .fetcher import WeatherClient
from .mailer import EmailClient
from .pipeline import AlertPipeline
from .scheduler import WeatherScheduler

logger = logging.getLogger(__name__)


@dataclass
class AppContext:
    settings: Settings
    database: Database
    weather_client: WeatherClient
    email_client: EmailClient
    pipeline: AlertPipeline
    scheduler: WeatherScheduler

    def close(self) -> None:
        self.scheduler.stop()
        self.weather_client.close()
        self.database.close()


def build_context(settings: Settings) -> AppContext:
    """
    Wire up all components from settings.

    Raises:
        PersistenceError: if the database cannot be opened.
    """
    database = Database(settings.database_url)
    weather_client = WeatherClient(
        api_key=settings.weather_api_key,
        base_url=settings.weather_api_url,
        timeout=settings.http_timeout,
    )
    email_client = EmailClient(
        host=settings.smtp_host,
        port=settings.smtp_port,
        username=settings.smtp_username,
        password=settings.smtp_password,
        sender=settings.sender,
    )
    pipeline = AlertPipeline(database, weather_client, email_client)
    scheduler = WeatherScheduler(pipeline, interval_hours=settings.fetch_interval_hours)

    logger.info("Application context ready")
    return AppContext(
        settings=settings,
        database=database,
        weather_client=weather_client,
        email_client=email_client,
        pipeline=pipeline,
        scheduler=scheduler,
    )
