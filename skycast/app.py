"""
Explicit construction of the weather lookup stack.

Nothing here is a module-level singleton: callers build one source and one
orchestrator at startup, pass them to whoever needs them, and close both at
shutdown.
"""

from loguru import logger

from skycast.datasource.base import BaseDataSource
from skycast.datasource.weather import OpenWeatherSource, WeatherData
from skycast.services.orchestrator import FetchOrchestrator
from skycast.settings import Settings


def build_weather_source(settings: Settings) -> OpenWeatherSource:
    """Create the OpenWeather source from settings."""
    source = OpenWeatherSource(
        api_key=settings.openweather_api_key,
        base_url=settings.openweather_base_url,
        units=settings.openweather_units,
        timeout=settings.fetch_timeout_ms / 1000,
    )
    if not source.is_configured():
        logger.warning("OPENWEATHER_API_KEY is not set, requests will be rejected")
    return source


def build_orchestrator(
    settings: Settings,
    source: BaseDataSource[WeatherData],
) -> FetchOrchestrator[WeatherData]:
    """Create an orchestrator fronting the given source."""
    return FetchOrchestrator(
        fetch=source.fetch,
        config=settings.orchestrator_config(source.service_id),
        validate=source.validate,
        debug=settings.debug,
    )
