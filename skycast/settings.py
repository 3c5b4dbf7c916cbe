import os
from datetime import timedelta

from dotenv import load_dotenv
from pydantic import BaseModel, Field, field_validator

from skycast.services.circuit_breaker import CircuitBreakerConfig
from skycast.services.orchestrator import OrchestratorConfig
from skycast.services.retry import RetryConfig


class Settings(BaseModel):
    # Cache Configuration
    cache_max_size: int = Field(default=50, ge=0, alias="CACHE_MAX_SIZE")
    cache_ttl_ms: int = Field(default=300_000, alias="CACHE_TTL_MS")
    cleanup_interval_ms: int = Field(default=60_000, gt=0, alias="CLEANUP_INTERVAL_MS")

    # Circuit Breaker Configuration
    breaker_failure_threshold: int = Field(
        default=5, ge=1, alias="BREAKER_FAILURE_THRESHOLD"
    )
    breaker_recovery_timeout_ms: int = Field(
        default=60_000, ge=0, alias="BREAKER_RECOVERY_TIMEOUT_MS"
    )

    # Retry Configuration
    retry_max_retries: int = Field(default=3, ge=0, alias="RETRY_MAX_RETRIES")
    retry_base_delay_ms: int = Field(default=1000, ge=0, alias="RETRY_BASE_DELAY_MS")
    retry_max_jitter_ms: int = Field(default=1000, ge=0, alias="RETRY_MAX_JITTER_MS")

    # Fetch Configuration
    fetch_timeout_ms: int = Field(default=10_000, gt=0, alias="FETCH_TIMEOUT_MS")
    latency_window: int = Field(default=100, ge=1, alias="LATENCY_WINDOW")
    history_size: int = Field(default=10, ge=0, alias="HISTORY_SIZE")

    # OpenWeather Configuration
    openweather_api_key: str = Field(default="", alias="OPENWEATHER_API_KEY")
    openweather_base_url: str = Field(
        default="https://api.openweathermap.org/data/2.5",
        alias="OPENWEATHER_BASE_URL",
    )
    openweather_units: str = Field(default="metric", alias="OPENWEATHER_UNITS")

    # Logging
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    debug: bool = Field(default=False, alias="SKYCAST_DEBUG")

    @field_validator("log_level")
    @classmethod
    def normalize_log_level(cls, value: str) -> str:
        """Loguru level names are upper case."""
        return value.strip().upper()

    @classmethod
    def from_env(cls, env_file: str | None = None) -> "Settings":
        """Build settings from the process environment and an optional .env file."""
        load_dotenv(env_file)
        return cls.model_validate(dict(os.environ))

    def orchestrator_config(self, service_id: str) -> OrchestratorConfig:
        """Translate millisecond settings into component configuration."""
        return OrchestratorConfig(
            service_id=service_id,
            cache_max_size=self.cache_max_size,
            cache_ttl=timedelta(milliseconds=self.cache_ttl_ms),
            cleanup_interval=timedelta(milliseconds=self.cleanup_interval_ms),
            fetch_timeout=self.fetch_timeout_ms / 1000,
            latency_window=self.latency_window,
            history_size=self.history_size,
            retry=RetryConfig(
                max_retries=self.retry_max_retries,
                base_delay=self.retry_base_delay_ms / 1000,
                max_jitter=self.retry_max_jitter_ms / 1000,
            ),
            breaker=CircuitBreakerConfig(
                failure_threshold=self.breaker_failure_threshold,
                recovery_timeout=timedelta(
                    milliseconds=self.breaker_recovery_timeout_ms
                ),
            ),
        )
