"""
Alert pipeline for the Weather Alert service.

One cycle walks every distinct city among registered users:
fetch weather -> store reading -> evaluate each user's preferences ->
send one email per matched condition -> log each email sent.

Failures are contained to the smallest unit they affect: a provider error
skips a city, a transport error skips one email.
"""

import logging
import threading
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from .database import Database
from .errors import CycleInProgressError, PersistenceError, ProviderError, TransportError
from .fetcher import WeatherClient
from .mailer import EmailClient, render_alert_email
from .models import CityLocation, Preference, User, WeatherReading, utc_now

logger = logging.getLogger(__name__)

ALERT_TEMPERATURE = "temperature"
ALERT_RAIN = "rain"
ALERT_SNOW = "snow"
ALERT_STORM = "storm"

RAIN_MARKERS = ("rain", "drizzle")
SNOW_MARKERS = ("snow",)
STORM_MARKERS = ("storm", "thunder")


@dataclass
class AlertMatch:
    alert_type: str
    message: str


@dataclass
class PipelineResult:
    """Summary of one pipeline cycle."""
    started_at: str
    finished_at: Optional[str] = None
    cities_processed: int = 0
    readings_stored: int = 0
    alerts_sent: int = 0
    alerts_failed: int = 0
    errors: Dict[str, str] = field(default_factory=dict)

    @property
    def success(self) -> bool:
        return not self.errors and not self.alerts_failed


def _has_marker(conditions: str, markers) -> bool:
    lowered = conditions.lower()
    return any(marker in lowered for marker in markers)


def evaluate_preferences(reading: WeatherReading, preference: Preference) -> List[AlertMatch]:
    """
    Match a reading against one user's preferences.

    Only the condition category is inspected; the free-text description is
    never used for matching. A user can match several alert types at once.
    """
    matches = []
    temp = reading.temperature

    if preference.min_temp is not None and temp < preference.min_temp:
        matches.append(AlertMatch(
            ALERT_TEMPERATURE,
            f"Low temperature alert! Current: {temp:.1f}°C (Your limit: {preference.min_temp}°C)"
        ))
    elif preference.max_temp is not None and temp > preference.max_temp:
        matches.append(AlertMatch(
            ALERT_TEMPERATURE,
            f"High temperature alert! Current: {temp:.1f}°C (Your limit: {preference.max_temp}°C)"
        ))

    if preference.alert_on_rain and _has_marker(reading.conditions, RAIN_MARKERS):
        matches.append(AlertMatch(
            ALERT_RAIN, f"Rain alert! Current conditions: {reading.conditions}"
        ))

    if preference.alert_on_snow and _has_marker(reading.conditions, SNOW_MARKERS):
        matches.append(AlertMatch(
            ALERT_SNOW, f"Snow alert! Current conditions: {reading.conditions}"
        ))

    if preference.alert_on_storm and _has_marker(reading.conditions, STORM_MARKERS):
        matches.append(AlertMatch(
            ALERT_STORM, f"Storm alert! Current conditions: {reading.conditions}"
        ))

    return matches


class AlertPipeline:
    """
    Fetch-and-alert orchestration shared by the scheduler and the API.

    At most one cycle runs at a time; an overlapping call is refused with
    CycleInProgressError instead of waiting.
    """

    def __init__(
        self,
        database: Database,
        weather_client: WeatherClient,
        email_client: EmailClient
    ):
        self.database = database
        self.weather_client = weather_client
        self.email_client = email_client
        self._cycle_lock = threading.Lock()
        self.last_result: Optional[PipelineResult] = None

    @property
    def is_running(self) -> bool:
        return self._cycle_lock.locked()

    def run_cycle(self) -> PipelineResult:
        """
        Run one full pass over all registered cities.

        Raises:
            CycleInProgressError: if another cycle is in flight.
            PersistenceError: if the city list itself cannot be loaded.
        """
        if not self._cycle_lock.acquire(blocking=False):
            raise CycleInProgressError("A weather fetch cycle is already running")
        try:
            result = self._run()
            self.last_result = result
            return result
        finally:
            self._cycle_lock.release()

    def _run(self) -> PipelineResult:
        result = PipelineResult(started_at=utc_now())

        cities = self.database.get_user_cities()
        logger.info(f"Found {len(cities)} unique cities to fetch")

        for location in cities:
            result.cities_processed += 1
            self._process_city(location, result)

        result.finished_at = utc_now()
        logger.info(
            f"Cycle complete: cities={result.cities_processed}, "
            f"readings={result.readings_stored}, alerts_sent={result.alerts_sent}, "
            f"alerts_failed={result.alerts_failed}, errors={len(result.errors)}"
        )
        return result

    def _process_city(self, location: CityLocation, result: PipelineResult) -> None:
        logger.info(f"Fetching weather for {location.city}, {location.country}")

        try:
            reading = self.weather_client.fetch(location.city, location.country)
        except ProviderError as e:
            logger.error(f"Failed to fetch weather for {location.label}: {e}")
            result.errors[location.label] = str(e)
            return

        try:
            self.database.insert_reading(reading)
            result.readings_stored += 1
            logger.info(
                f"Stored weather: {location.city} - {reading.temperature}°C, {reading.conditions}"
            )
            users = self.database.get_users_in_city(location.city, location.country)
        except PersistenceError as e:
            logger.error(f"Skipping alerts for {location.label}: {e}")
            result.errors[location.label] = str(e)
            return

        for user in users:
            self._alert_user(user, reading, result)

    def _alert_user(self, user: User, reading: WeatherReading, result: PipelineResult) -> None:
        try:
            preference = self.database.get_preferences(user.id)
        except PersistenceError as e:
            logger.error(f"Cannot load preferences for {user.email}: {e}")
            result.errors[f"user:{user.id}"] = str(e)
            return
        if preference is None:
            preference = Preference(user_id=user.id)

        for match in evaluate_preferences(reading, preference):
            logger.info(f"Sending {match.alert_type} alert to {user.email}: {match.message}")
            subject, body = render_alert_email(
                user, reading, preference, match.alert_type, match.message
            )
            try:
                self.email_client.send(user.email, subject, body)
            except TransportError as e:
                logger.error(f"Failed to send alert to {user.email}: {e}")
                result.alerts_failed += 1
                continue

            result.alerts_sent += 1
            try:
                self.database.log_alert(user.id, match.alert_type, match.message)
            except PersistenceError as e:
                logger.error(f"Alert sent to {user.email} but not logged: {e}")
                result.errors[f"user:{user.id}"] = str(e)
