"""
Error types for the Weather Alert service.

Each layer raises its own kind so callers can decide what is fatal:
- ConfigError: startup only, always fatal
- ValidationError / ConflictError: bad client input (4xx)
- NotFoundError: missing user or city data (404)
- ProviderError: upstream weather failure, pipeline skips the city
- TransportError: SMTP failure, pipeline skips the recipient
- PersistenceError: database failure (5xx)
"""


class WeatherAlertError(Exception):
    """Base class for all service errors."""
    pass


class ConfigError(WeatherAlertError):
    """Missing or malformed environment configuration."""
    pass


class ValidationError(WeatherAlertError):
    """Invalid input supplied by a client."""
    pass


class ConflictError(ValidationError):
    """Input conflicts with existing state (e.g. duplicate email)."""
    pass


class CycleInProgressError(ConflictError):
    """A pipeline cycle is already running."""
    pass


class NotFoundError(WeatherAlertError):
    pass


class ProviderError(WeatherAlertError):
    """Weather provider call failed or returned an unexpected shape."""
    pass


class TransportError(WeatherAlertError):
    """Email could not be delivered to the SMTP server."""
    pass


class PersistenceError(WeatherAlertError):
    pass
