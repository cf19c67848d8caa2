"""
Record types shared by the persistence layer, the clients and the pipeline.
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional


def utc_now() -> str:
    """Current UTC time as an ISO-8601 string."""
    return datetime.now(timezone.utc).isoformat()


def new_id() -> str:
    return str(uuid.uuid4())


@dataclass
class User:
    id: str
    email: str
    city: str
    country: str
    created_at: str


@dataclass
class Preference:
    """Alert thresholds for one user. Thresholds are in degrees Celsius."""
    user_id: str
    min_temp: Optional[int] = None
    max_temp: Optional[int] = None
    alert_on_rain: bool = False
    alert_on_snow: bool = False
    alert_on_storm: bool = False
    id: str = field(default_factory=new_id)
    created_at: str = field(default_factory=utc_now)
    updated_at: str = field(default_factory=utc_now)


@dataclass
class WeatherReading:
    """One weather observation for a city, stored exactly as fetched."""
    city: str
    country: str
    temperature: float
    feels_like: float
    conditions: str         # Category, e.g. "Rain", "Snow", "Thunderstorm"
    description: str        # Free text, e.g. "light intensity drizzle"
    humidity: int
    wind_speed: float
    pressure: int
    id: str = field(default_factory=new_id)
    fetched_at: str = field(default_factory=utc_now)


@dataclass
class AlertLogEntry:
    id: str
    user_id: str
    alert_type: str
    message: str
    sent_at: str


@dataclass(frozen=True)
class CityLocation:
    """A distinct (city, country) pair among registered users."""
    city: str
    country: str

    @property
    def label(self) -> str:
        return f"{self.city},{self.country}"
