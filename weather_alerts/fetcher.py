"""
Weather client module for the Weather Alert service.

Fetches current conditions from the OpenWeatherMap current-weather API:
- One live GET per call (no caching, no retry)
- Strict schema validation of the JSON payload
- Every failure surfaces as ProviderError
"""

import logging
from typing import List, Optional
from datetime import datetime

import pydantic
import requests
from pydantic import BaseModel, Field

from .config import DEFAULT_HTTP_TIMEOUT, DEFAULT_WEATHER_API_URL
from .errors import ProviderError
from .models import WeatherReading

logger = logging.getLogger(__name__)

USER_AGENT = "WeatherAlertService/1.0"


# =============================================================================
# Upstream payload schema
# =============================================================================

class _MainBlock(BaseModel):
    temp: float
    feels_like: float
    humidity: int
    pressure: int


class _ConditionBlock(BaseModel):
    main: str
    description: str


class _WindBlock(BaseModel):
    speed: float


class _SysBlock(BaseModel):
    country: Optional[str] = None


class OpenWeatherPayload(BaseModel):
    """The subset of the current-weather response the service relies on."""
    name: str
    main: _MainBlock
    weather: List[_ConditionBlock] = Field(min_length=1)
    wind: _WindBlock
    sys: _SysBlock = Field(default_factory=_SysBlock)


class WeatherClient:
    """
    Stateless client for the upstream weather provider.

    Retry policy, if any, belongs to the caller.
    """

    def __init__(
        self,
        api_key: str,
        base_url: str = DEFAULT_WEATHER_API_URL,
        timeout: int = DEFAULT_HTTP_TIMEOUT,
        session: Optional[requests.Session] = None
    ):
        self.api_key = api_key
        self.base_url = base_url
        self.timeout = timeout
        self._session = session or self._create_session()

    def _create_session(self) -> requests.Session:
        session = requests.Session()
        session.headers.update({
            "User-Agent": USER_AGENT,
            "Accept": "application/json"
        })
        return session

    def _fetch_raw(self, city: str, country: str) -> dict:
        """Perform the GET and return the decoded JSON body."""
        params = {
            "q": f"{city},{country}",
            "appid": self.api_key,
            "units": "metric",
        }
        try:
            response = self._session.get(self.base_url, params=params, timeout=self.timeout)
            response.raise_for_status()
            return response.json()

        except requests.Timeout:
            raise ProviderError(f"Request timed out after {self.timeout}s")
        except requests.ConnectionError as e:
            raise ProviderError(f"Connection error - provider unavailable: {e}")
        except requests.HTTPError as e:
            raise ProviderError(
                f"API returned status {e.response.status_code}: {e.response.text[:200]}"
            )
        except ValueError as e:
            # requests' JSONDecodeError derives from ValueError
            raise ProviderError(f"Failed to parse response: {e}")
        except requests.RequestException as e:
            raise ProviderError(f"Request failed: {e}")

    def fetch(self, city: str, country: str) -> WeatherReading:
        """
        Fetch current conditions for a city.

        Returns:
            WeatherReading keyed by the requested city and country.

        Raises:
            ProviderError: on transport failure, non-2xx status or
                unexpected payload shape.
        """
        logger.info(f"Fetching weather from API: {city}, {country}")
        started = datetime.now()

        data = self._fetch_raw(city, country)
        try:
            payload = OpenWeatherPayload.model_validate(data)
        except pydantic.ValidationError as e:
            raise ProviderError(
                f"Unexpected payload for {city}, {country}: {e.error_count()} schema errors"
            ) from e

        condition = payload.weather[0]
        reading = WeatherReading(
            city=city,
            country=country.upper(),
            temperature=payload.main.temp,
            feels_like=payload.main.feels_like,
            conditions=condition.main,
            description=condition.description,
            humidity=payload.main.humidity,
            wind_speed=payload.wind.speed,
            pressure=payload.main.pressure,
        )

        elapsed_ms = int((datetime.now() - started).total_seconds() * 1000)
        logger.info(
            f"Weather fetched: {reading.city} - {reading.temperature}°C, "
            f"{reading.conditions} ({elapsed_ms}ms)"
        )
        return reading

    def close(self) -> None:
        self._session.close()
