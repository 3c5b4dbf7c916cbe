"""Shared fixtures for skycast tests."""

from __future__ import annotations

import pytest

from skycast.services.retry import RetryConfig, RetryExecutor


class FakeClock:
    """Manually advanced clock returning seconds."""

    def __init__(self, start: float = 1_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    """A fake clock starting at t=1000s."""
    return FakeClock()


@pytest.fixture
def fast_retry():
    """Retry executor that retries without waiting."""

    def build(max_retries: int = 3) -> RetryExecutor:
        return RetryExecutor(
            RetryConfig(max_retries=max_retries, base_delay=0, max_jitter=0)
        )

    return build


@pytest.fixture
def weather_payload():
    """A trimmed OpenWeather /weather response for Paris."""
    return {
        "coord": {"lon": 2.3488, "lat": 48.8534},
        "weather": [
            {"id": 800, "main": "Clear", "description": "clear sky", "icon": "01d"}
        ],
        "base": "stations",
        "main": {
            "temp": 21.6,
            "feels_like": 21.2,
            "temp_min": 20.1,
            "temp_max": 23.0,
            "pressure": 1016,
            "humidity": 52,
        },
        "visibility": 10000,
        "wind": {"speed": 5.0, "deg": 240},
        "clouds": {"all": 0},
        "dt": 1718000000,
        "sys": {"type": 2, "id": 2041230, "country": "FR"},
        "timezone": 7200,
        "id": 2988507,
        "name": "Paris",
        "cod": 200,
    }
