"""Pytest configuration and shared fixtures."""

from unittest.mock import Mock

import pytest

from weather_alerts.config import Settings
from weather_alerts.context import AppContext
from weather_alerts.database import Database
from weather_alerts.errors import ProviderError
from weather_alerts.fetcher import WeatherClient
from weather_alerts.mailer import EmailClient
from weather_alerts.models import WeatherReading
from weather_alerts.pipeline import AlertPipeline
from weather_alerts.scheduler import WeatherScheduler


def make_reading(city="London", country="GB", temperature=20.0,
                 conditions="Clear", description="clear sky", fetched_at=None):
    """Helper to build a WeatherReading with sensible defaults."""
    reading = WeatherReading(
        city=city,
        country=country,
        temperature=temperature,
        feels_like=temperature - 1,
        conditions=conditions,
        description=description,
        humidity=70,
        wind_speed=3.5,
        pressure=1012,
    )
    if fetched_at:
        reading.fetched_at = fetched_at
    return reading


@pytest.fixture
def settings(tmp_path):
    return Settings(
        database_url=f"sqlite:///{tmp_path / 'alerts.db'}",
        weather_api_key="test-key",
        smtp_username="alerts@example.com",
        smtp_password="secret",
    )


@pytest.fixture
def database(settings):
    db = Database(settings.database_url)
    yield db
    db.close()


@pytest.fixture
def weather_client():
    """Weather client mock returning a mild clear reading per requested city."""
    client = Mock(spec=WeatherClient)
    client.fetch.side_effect = lambda city, country: make_reading(city=city, country=country)
    return client


@pytest.fixture
def email_client():
    return Mock(spec=EmailClient)


@pytest.fixture
def pipeline(database, weather_client, email_client):
    return AlertPipeline(database, weather_client, email_client)


@pytest.fixture
def context(settings, database, weather_client, email_client, pipeline):
    return AppContext(
        settings=settings,
        database=database,
        weather_client=weather_client,
        email_client=email_client,
        pipeline=pipeline,
        scheduler=WeatherScheduler(pipeline, interval_hours=settings.fetch_interval_hours),
    )


@pytest.fixture
def failing_city_client():
    """Weather client that fails for Paris and succeeds elsewhere."""
    def fetch(city, country):
        if city == "Paris":
            raise ProviderError("API returned status 500: upstream down")
        return make_reading(city=city, country=country, temperature=5.0)

    client = Mock(spec=WeatherClient)
    client.fetch.side_effect = fetch
    return client
