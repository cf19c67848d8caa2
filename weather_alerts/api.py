"""
REST API module for the Weather Alert service.

Provides endpoints for:
- User registration and preference management
- Current and historical weather per city
- On-demand pipeline runs and the alert log
"""

import logging
import re
from typing import Any, Dict, List, Optional
from contextlib import asynccontextmanager
from dataclasses import asdict

from fastapi import APIRouter, BackgroundTasks, Depends, FastAPI, Query, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field, field_validator

from .context import AppContext
from .errors import (
    ConflictError,
    NotFoundError,
    PersistenceError,
    ProviderError,
    TransportError,
    ValidationError,
    WeatherAlertError,
)
from .mailer import EmailClient
from .models import User, utc_now

logger = logging.getLogger(__name__)

SERVICE_NAME = "Weather Alert System"
API_VERSION = "1.0.0"

EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


# =============================================================================
# Pydantic Models
# =============================================================================

class CreateUserRequest(BaseModel):
    email: str = Field(..., max_length=255)
    city: str = Field(..., min_length=1, max_length=100)
    country: str = Field(..., min_length=2, max_length=2)

    @field_validator("email")
    @classmethod
    def email_well_formed(cls, value: str) -> str:
        if not EMAIL_PATTERN.match(value):
            raise ValueError("email is not a valid address")
        return value

    @field_validator("city")
    @classmethod
    def city_not_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("city must not be blank")
        if not value.isprintable():
            raise ValueError("city must not contain control characters")
        return value

    @field_validator("country")
    @classmethod
    def country_is_code(cls, value: str) -> str:
        if not value.isalpha():
            raise ValueError("country must be a two-letter code")
        return value.upper()


class UpdatePreferencesRequest(BaseModel):
    min_temp: Optional[int] = Field(default=None, ge=-100, le=100)
    max_temp: Optional[int] = Field(default=None, ge=-100, le=100)
    alert_on_rain: bool = False
    alert_on_snow: bool = False
    alert_on_storm: bool = False


class UserResponse(BaseModel):
    id: str
    email: str
    city: str
    country: str
    created_at: str


class PreferenceResponse(BaseModel):
    id: str
    user_id: str
    min_temp: Optional[int]
    max_temp: Optional[int]
    alert_on_rain: bool
    alert_on_snow: bool
    alert_on_storm: bool
    created_at: str
    updated_at: str


class UserWithPreferences(BaseModel):
    user: UserResponse
    preferences: Optional[PreferenceResponse]


class WeatherReadingResponse(BaseModel):
    id: str
    city: str
    country: str
    temperature: float
    feels_like: float
    conditions: str
    description: Optional[str]
    humidity: int
    wind_speed: float
    pressure: int
    fetched_at: str


class AlertLogResponse(BaseModel):
    id: str
    user_id: str
    alert_type: str
    message: str
    sent_at: str


class PipelineResultModel(BaseModel):
    started_at: str
    finished_at: Optional[str]
    cities_processed: int
    readings_stored: int
    alerts_sent: int
    alerts_failed: int
    errors: Dict[str, str]


class HealthResponse(BaseModel):
    status: str
    service: str
    timestamp: str
    database: str
    scheduler: str
    scheduler_status: Dict[str, Any]


# =============================================================================
# Error Mapping
# =============================================================================

ERROR_STATUS = [
    (NotFoundError, status.HTTP_404_NOT_FOUND),
    (ConflictError, status.HTTP_409_CONFLICT),
    (ValidationError, status.HTTP_400_BAD_REQUEST),
    (ProviderError, status.HTTP_502_BAD_GATEWAY),
    (TransportError, status.HTTP_502_BAD_GATEWAY),
    (PersistenceError, status.HTTP_500_INTERNAL_SERVER_ERROR),
]


async def handle_service_error(request: Request, exc: WeatherAlertError) -> JSONResponse:
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    for error_type, code in ERROR_STATUS:
        if isinstance(exc, error_type):
            status_code = code
            break
    if status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc}")
    return JSONResponse(status_code=status_code, content={"detail": str(exc)})


# =============================================================================
# Dependencies & Helpers
# =============================================================================

def get_context(request: Request) -> AppContext:
    return request.app.state.context


def require_user(context: AppContext, user_id: str) -> User:
    user = context.database.get_user(user_id)
    if user is None:
        raise NotFoundError(f"User not found: {user_id}")
    return user


def send_welcome_email(email_client: EmailClient, user: User) -> None:
    """Background task; a failed welcome email never affects registration."""
    try:
        email_client.send_welcome(user.email, user.city, user.country)
    except TransportError as e:
        logger.error(f"Failed to send welcome email to {user.email}: {e}")


router = APIRouter(prefix="/api")


# =============================================================================
# API Endpoints - Health
# =============================================================================

@router.get("/health", response_model=HealthResponse, tags=["Health"])
def health_check(context: AppContext = Depends(get_context)):
    """Health check endpoint."""
    try:
        context.database.get_data_summary()
        database = "connected"
    except PersistenceError:
        database = "error"

    return HealthResponse(
        status="healthy" if database == "connected" else "degraded",
        service=SERVICE_NAME,
        timestamp=utc_now(),
        database=database,
        scheduler="running" if context.scheduler.is_running else "stopped",
        scheduler_status=context.scheduler.get_scheduler_status(),
    )


# =============================================================================
# API Endpoints - Users & Preferences
# =============================================================================

@router.post(
    "/users",
    response_model=UserResponse,
    status_code=status.HTTP_201_CREATED,
    tags=["Users"]
)
def create_user(
    payload: CreateUserRequest,
    background_tasks: BackgroundTasks,
    context: AppContext = Depends(get_context)
):
    """Register a user; default preferences are created alongside."""
    if context.database.get_user_by_email(payload.email):
        raise ConflictError("User with this email already exists")

    user = context.database.create_user(payload.email, payload.city, payload.country)
    background_tasks.add_task(send_welcome_email, context.email_client, user)
    return UserResponse(**asdict(user))


@router.get("/users", response_model=List[UserResponse], tags=["Users"])
def list_users(context: AppContext = Depends(get_context)):
    return [UserResponse(**asdict(u)) for u in context.database.list_users()]


@router.get("/users/{user_id}", response_model=UserWithPreferences, tags=["Users"])
def get_user(user_id: str, context: AppContext = Depends(get_context)):
    user = require_user(context, user_id)
    preferences = context.database.get_preferences(user_id)
    return UserWithPreferences(
        user=UserResponse(**asdict(user)),
        preferences=PreferenceResponse(**asdict(preferences)) if preferences else None,
    )


@router.get("/users/{user_id}/preferences", response_model=PreferenceResponse, tags=["Users"])
def get_preferences(user_id: str, context: AppContext = Depends(get_context)):
    require_user(context, user_id)
    preferences = context.database.get_preferences(user_id)
    if preferences is None:
        raise NotFoundError(f"Preferences not found for user: {user_id}")
    return PreferenceResponse(**asdict(preferences))


@router.put("/users/{user_id}/preferences", response_model=PreferenceResponse, tags=["Users"])
def update_preferences(
    user_id: str,
    payload: UpdatePreferencesRequest,
    context: AppContext = Depends(get_context)
):
    """Replace all preference fields for a user."""
    require_user(context, user_id)
    if (payload.min_temp is not None and payload.max_temp is not None
            and payload.min_temp > payload.max_temp):
        raise ValidationError("min_temp must not be greater than max_temp")

    preferences = context.database.upsert_preferences(
        user_id,
        min_temp=payload.min_temp,
        max_temp=payload.max_temp,
        alert_on_rain=payload.alert_on_rain,
        alert_on_snow=payload.alert_on_snow,
        alert_on_storm=payload.alert_on_storm,
    )
    return PreferenceResponse(**asdict(preferences))


@router.get("/users/{user_id}/alerts", response_model=List[AlertLogResponse], tags=["Alerts"])
def get_user_alerts(
    user_id: str,
    limit: int = Query(default=50, ge=1, le=500),
    context: AppContext = Depends(get_context)
):
    require_user(context, user_id)
    alerts = context.database.get_user_alerts(user_id, limit)
    return [AlertLogResponse(**asdict(a)) for a in alerts]


# =============================================================================
# API Endpoints - Weather
# =============================================================================

@router.get("/weather/current/{city}", response_model=WeatherReadingResponse, tags=["Weather"])
def get_current_weather(
    city: str,
    refresh: bool = Query(default=False, description="Fetch live from the provider"),
    country: Optional[str] = Query(default=None, min_length=2, max_length=2),
    context: AppContext = Depends(get_context)
):
    """Latest reading for a city, optionally refreshed from the provider."""
    if refresh:
        if country is None:
            known = [c for c in context.database.get_user_cities()
                     if c.city.lower() == city.lower()]
            if not known:
                raise ValidationError("country is required to refresh an untracked city")
            country = known[0].country
        reading = context.weather_client.fetch(city, country.upper())
        context.database.insert_reading(reading)
        return WeatherReadingResponse(**asdict(reading))

    reading = context.database.get_latest_reading(city)
    if reading is None:
        raise NotFoundError(f"No weather data found for {city}")
    return WeatherReadingResponse(**asdict(reading))


@router.get(
    "/weather/history/{city}",
    response_model=List[WeatherReadingResponse],
    tags=["Weather"]
)
def get_weather_history(
    city: str,
    limit: int = Query(default=24, ge=1, le=500),
    context: AppContext = Depends(get_context)
):
    """Most recent readings for a city, newest first."""
    history = context.database.get_weather_history(city, limit)
    return [WeatherReadingResponse(**asdict(r)) for r in history]


@router.post("/weather/fetch", response_model=PipelineResultModel, tags=["Admin"])
def trigger_fetch(context: AppContext = Depends(get_context)):
    """Run one fetch-and-alert cycle synchronously."""
    logger.info("Manual weather fetch triggered via API")
    result = context.scheduler.trigger_immediate_run()
    return PipelineResultModel(**asdict(result))


# =============================================================================
# API Endpoints - Alerts
# =============================================================================

@router.get("/alerts", response_model=List[AlertLogResponse], tags=["Alerts"])
def get_all_alerts(
    limit: int = Query(default=100, ge=1, le=500),
    context: AppContext = Depends(get_context)
):
    return [AlertLogResponse(**asdict(a)) for a in context.database.get_all_alerts(limit)]


# =============================================================================
# FastAPI Application
# =============================================================================

def create_app(context: AppContext, start_scheduler: bool = True) -> FastAPI:
    """
    Build the FastAPI application around an already constructed context.

    The scheduler is started and stopped with the application lifespan;
    closing the database stays with whoever built the context.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("Starting Weather Alert API...")
        if start_scheduler:
            context.scheduler.start()
        yield
        logger.info("Shutting down...")
        context.scheduler.stop()
        logger.info("Shutdown complete")

    app = FastAPI(
        title=SERVICE_NAME,
        description="Weather alerts by email for registered users",
        version=API_VERSION,
        lifespan=lifespan
    )
    app.state.context = context

    app.add_middleware(
        CORSMiddleware,
        allow_origins=context.settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_exception_handler(WeatherAlertError, handle_service_error)
    app.include_router(router)
    return app
