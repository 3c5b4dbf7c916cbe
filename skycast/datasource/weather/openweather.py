"""
OpenWeather API data source for current weather by city name.

API Documentation: https://openweathermap.org/current
Free tier: 60 calls/minute
Get API key at: https://home.openweathermap.org/api_keys
"""

import re
import time
from typing import Any

import httpx
import pydantic
from loguru import logger
from pydantic import BaseModel, Field

from skycast.datasource.base import BaseDataSource
from skycast.services.errors import (
    ApiError,
    NetworkError,
    RequestTimeoutError,
    ValidationError,
)

MAX_CITY_LENGTH = 100
CITY_PATTERN = re.compile(r"^[a-zA-Z\s\-',.]+$")

# Status code -> (message, error code)
STATUS_ERRORS: dict[int, tuple[str, str]] = {
    404: ("City not found", "CITY_NOT_FOUND"),
    401: ("Invalid API key", "INVALID_API_KEY"),
    429: ("Rate limit exceeded", "RATE_LIMIT"),
    500: ("Server error", "SERVER_ERROR"),
    502: ("Server error", "SERVER_ERROR"),
    503: ("Server error", "SERVER_ERROR"),
    504: ("Server error", "SERVER_ERROR"),
}


class WeatherCondition(BaseModel):
    main: str = ""
    description: str
    icon: str


class MainReadings(BaseModel):
    temp: float
    feels_like: float
    pressure: float
    humidity: float


class WindReadings(BaseModel):
    speed: float
    deg: float | None = None
    gust: float | None = None


class SysInfo(BaseModel):
    country: str = ""


class WeatherApiResponse(BaseModel):
    """The parts of the /weather payload we rely on."""

    name: str
    weather: list[WeatherCondition] = Field(min_length=1)
    main: MainReadings
    wind: WindReadings
    sys: SysInfo = Field(default_factory=SysInfo)


class WeatherData(BaseModel):
    """Current weather for one city."""

    city_name: str
    temperature: int
    description: str
    humidity: float
    wind_speed: float
    wind_speed_kmh: int
    pressure: float
    feels_like: int
    icon: str
    country: str
    timestamp: float


class OpenWeatherSource(BaseDataSource[WeatherData]):
    """
    OpenWeather current-weather data source.

    Requires an API key from https://openweathermap.org/
    """

    BASE_URL = "https://api.openweathermap.org/data/2.5"
    ICON_URL = "https://openweathermap.org/img/wn/{icon}@2x.png"
    SERVICE_ID = "openweather"

    def __init__(
        self,
        api_key: str,
        base_url: str | None = None,
        units: str = "metric",
        timeout: float = 10.0,
        http_client: httpx.AsyncClient | None = None,
    ):
        self.api_key = api_key
        self.base_url = (base_url or self.BASE_URL).rstrip("/")
        self.units = units
        self._timeout = timeout
        self._http_client = http_client

    @property
    def service_id(self) -> str:
        return self.SERVICE_ID

    def is_configured(self) -> bool:
        return bool(self.api_key)

    def validate(self, key: str) -> None:
        """Check a city name before any request is made."""
        if not key:
            raise ValidationError("City name is required", code="CITY_REQUIRED")
        if len(key) > MAX_CITY_LENGTH:
            raise ValidationError("City name is too long", code="CITY_TOO_LONG")
        if not CITY_PATTERN.match(key):
            raise ValidationError("Invalid city name format", code="CITY_INVALID")

    async def _get_http_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(
                timeout=httpx.Timeout(self._timeout),
                headers={"Accept": "application/json"},
            )
        return self._http_client

    async def fetch(self, key: str) -> WeatherData:
        """
        Fetch current weather for a city.

        Raises:
            ApiError: If OpenWeather rejects the request or answers with
                an unexpected payload
            RequestTimeoutError: If the transport times out
            NetworkError: For other transport failures
        """
        payload = await self._request(
            "/weather",
            params={"q": key, "appid": self.api_key, "units": self.units},
        )

        try:
            response = WeatherApiResponse.model_validate(payload)
        except pydantic.ValidationError as e:
            raise ApiError(
                "Invalid API response format",
                code="INVALID_RESPONSE",
                service_id=self.SERVICE_ID,
            ) from e

        data = self._transform_response(response)
        logger.info(f"Fetched weather for {data.city_name}, {data.country}")
        return data

    async def _request(self, path: str, params: dict[str, Any]) -> Any:
        """Execute a GET request and classify failures."""
        client = await self._get_http_client()

        try:
            response = await client.get(f"{self.base_url}{path}", params=params)
        except httpx.TimeoutException as e:
            raise RequestTimeoutError(self.SERVICE_ID, self._timeout) from e
        except httpx.RequestError as e:
            raise NetworkError(
                f"Request to {self.SERVICE_ID} failed: {e}",
                service_id=self.SERVICE_ID,
            ) from e

        if response.is_error:
            raise self._status_error(response)

        try:
            return response.json()
        except ValueError as e:
            raise ApiError(
                "Invalid API response format",
                status=response.status_code,
                code="INVALID_RESPONSE",
                service_id=self.SERVICE_ID,
            ) from e

    def _status_error(self, response: httpx.Response) -> ApiError:
        status = response.status_code
        if status in STATUS_ERRORS:
            message, code = STATUS_ERRORS[status]
        else:
            message, code = self._error_message(response), "UNKNOWN_ERROR"
        return ApiError(message, status=status, code=code, service_id=self.SERVICE_ID)

    @staticmethod
    def _error_message(response: httpx.Response) -> str:
        try:
            body = response.json()
        except ValueError:
            return "Unknown API error"
        if isinstance(body, dict) and body.get("message"):
            return str(body["message"])
        return "Unknown API error"

    def _transform_response(self, response: WeatherApiResponse) -> WeatherData:
        """Transform OpenWeather response to WeatherData."""
        condition = response.weather[0]
        return WeatherData(
            city_name=response.name,
            temperature=round(response.main.temp),
            description=condition.description,
            humidity=response.main.humidity,
            wind_speed=response.wind.speed,
            wind_speed_kmh=round(response.wind.speed * 3.6),
            pressure=response.main.pressure,
            feels_like=round(response.main.feels_like),
            icon=condition.icon,
            country=response.sys.country,
            timestamp=time.time(),
        )

    def get_icon_url(self, icon: str) -> str:
        """Get the URL of a weather icon."""
        return self.ICON_URL.format(icon=icon)

    async def health_check(self, city: str = "London") -> bool:
        """Check that the API answers for a known city."""
        try:
            await self.fetch(city)
            return True
        except Exception as e:
            logger.warning(f"OpenWeather health check failed: {e}")
            return False

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._http_client:
            await self._http_client.aclose()
            self._http_client = None
