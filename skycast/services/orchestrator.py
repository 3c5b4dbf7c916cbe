"""
FetchOrchestrator - Cache-fronted fetches with resilience patterns.

Combines:
- LRUCache for serving repeated lookups without a network call
- CircuitBreaker, RetryExecutor and TimeoutGuard around the raw fetch
- RequestTracker so the latest request per subject wins
- CacheSweeper for periodic expiry
- Hit/miss counters and a rolling latency window for display

Per request: IDLE -> FETCHING -> SUCCEEDED | FAILED | CANCELLED.
"""

import asyncio
import time
from collections import deque
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any, Awaitable, Callable, Generic, TypeVar

from loguru import logger

from skycast.services.cache import LRUCache
from skycast.services.circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerConfig,
    CircuitBreakerRegistry,
)
from skycast.services.errors import ServiceError, ValidationError
from skycast.services.retry import RetryConfig, RetryExecutor
from skycast.services.sweeper import CacheSweeper
from skycast.services.timeout import TimeoutGuard
from skycast.services.tracker import RequestState, RequestTracker

T = TypeVar("T")

DEFAULT_SUBJECT = "default"


@dataclass
class ResolveResult(Generic[T]):
    """Result from a resolve call."""

    data: T
    key: str  # Key as given by the caller, stripped
    from_cache: bool = False
    latency_ms: float | None = None  # Network path only


@dataclass
class HistoryEntry(Generic[T]):
    """A successfully resolved key, newest first in the history."""

    key: str
    timestamp: float
    data: T


@dataclass
class OrchestratorConfig:
    """Configuration for the orchestrator and the components it builds."""

    service_id: str = "default"
    cache_max_size: int = 50
    cache_ttl: timedelta = timedelta(minutes=5)
    cleanup_interval: timedelta = timedelta(seconds=60)
    fetch_timeout: float = 10.0  # Seconds, per attempt
    latency_window: int = 100
    history_size: int = 10
    healthy_latency_ms: float = 5000.0
    retry: RetryConfig = field(default_factory=RetryConfig)
    breaker: CircuitBreakerConfig = field(default_factory=CircuitBreakerConfig)


@dataclass
class FetchStatistics:
    """Point-in-time statistics for display."""

    hits: int = 0
    misses: int = 0
    hit_rate: float = 0.0
    avg_latency_ms: float = 0.0
    size: int = 0
    max_size: int = 0
    request_count: int = 0
    failure_count: int = 0
    is_healthy: bool = True
    breaker_state: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "hits": self.hits,
            "misses": self.misses,
            "hit_rate": self.hit_rate,
            "avg_latency_ms": round(self.avg_latency_ms, 2),
            "size": self.size,
            "max_size": self.max_size,
            "request_count": self.request_count,
            "failure_count": self.failure_count,
            "is_healthy": self.is_healthy,
            "breaker_state": self.breaker_state,
        }


class FetchOrchestrator(Generic[T]):
    """
    Resolves keys through the cache, falling back to a guarded fetch.

    Usage:
        orchestrator = FetchOrchestrator(fetch=source.fetch)
        async with orchestrator:
            result = await orchestrator.resolve("Paris")
            if result is not None:  # None: superseded by a newer request
                print(result.data)

    The fetch callable receives the normalized key and must not return None.
    """

    def __init__(
        self,
        fetch: Callable[[str], Awaitable[T]],
        config: OrchestratorConfig | None = None,
        validate: Callable[[str], None] | None = None,
        cache: LRUCache[T] | None = None,
        breakers: CircuitBreakerRegistry | None = None,
        retry: RetryExecutor | None = None,
        timeout_guard: TimeoutGuard | None = None,
        timer: Callable[[], float] = time.perf_counter,
        clock: Callable[[], float] = time.time,
        debug: bool = False,
    ):
        self.config = config or OrchestratorConfig()
        self._fetch = fetch
        self._validate = validate
        self._timer = timer
        self._clock = clock
        self._debug = debug

        # Initialize components
        self._cache: LRUCache[T] = cache or LRUCache(
            max_size=self.config.cache_max_size,
            default_ttl=self.config.cache_ttl,
            clock=clock,
            debug=debug,
        )
        self._breakers = breakers or CircuitBreakerRegistry(self.config.breaker)
        self._retry = retry or RetryExecutor(self.config.retry)
        self._timeout = timeout_guard or TimeoutGuard(
            self.config.service_id, self.config.fetch_timeout
        )
        self._tracker = RequestTracker(debug=debug)
        self._sweeper = CacheSweeper(self._cache, self.config.cleanup_interval)

        # Statistics
        self._hits = 0
        self._misses = 0
        self._request_count = 0
        self._failure_count = 0
        self._latencies: deque[float] = deque(maxlen=self.config.latency_window)
        self._last_failed = False

        self._history: deque[HistoryEntry[T]] = deque(maxlen=self.config.history_size)

    @property
    def cache(self) -> LRUCache[T]:
        return self._cache

    @property
    def tracker(self) -> RequestTracker:
        return self._tracker

    @property
    def breaker(self) -> CircuitBreaker:
        return self._breakers.get(self.config.service_id)

    # Lifecycle

    async def start(self) -> None:
        """Start background cache sweeps."""
        self._sweeper.start()

    async def close(self) -> None:
        """Stop sweeps and cancel in-flight work."""
        self._sweeper.stop()
        cancelled = self._tracker.cancel_all()
        logger.debug(f"FetchOrchestrator closed ({cancelled} requests cancelled)")

    async def __aenter__(self) -> "FetchOrchestrator[T]":
        """Async context manager entry."""
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        """Async context manager exit."""
        await self.close()

    # Resolution

    async def resolve(
        self,
        key: str,
        subject: str = DEFAULT_SUBJECT,
    ) -> ResolveResult[T] | None:
        """
        Resolve a key from cache or the network.

        Args:
            key: Lookup key; stripped and case-folded for the cache
            subject: Logical slot; a newer resolve for the same subject
                cancels this one

        Returns:
            ResolveResult, or None when a newer request superseded this one

        Raises:
            ValidationError: If the key is empty or rejected by the validator
            CircuitOpenError: If the circuit breaker is open
            RequestTimeoutError: If every attempt timed out
            ServiceError: For other service errors
        """
        display_key, cache_key = self._normalize(key)
        if self._validate is not None:
            self._validate(display_key)

        self._tracker.supersede(subject)

        cached = self._cache.get(cache_key)
        if cached is not None:
            self._hits += 1
            self._remember(display_key, cached)
            self._log(f"HIT: {cache_key[:50]}")
            return ResolveResult(data=cached, key=display_key, from_cache=True)

        self._misses += 1
        self._log(f"MISS: {cache_key[:50]}")

        token = self._tracker.open(subject, cache_key)
        started = self._timer()
        token.task = asyncio.create_task(self._guarded_fetch(cache_key))

        try:
            data = await token.task
        except asyncio.CancelledError:
            if token.superseded:
                self._log(f"SUPERSEDED: {cache_key[:50]}")
                return None
            # The caller itself was cancelled
            token.task.cancel()
            self._tracker.finish(token, RequestState.CANCELLED)
            raise
        except Exception as e:
            if token.superseded:
                return None
            latency = self._record_latency(started)
            self._request_count += 1
            self._failure_count += 1
            self._last_failed = True
            self._tracker.finish(token, RequestState.FAILED)
            logger.warning(
                f"Resolve '{display_key}' failed after {latency:.0f}ms: "
                f"{type(e).__name__}: {e}"
            )
            if isinstance(e, ServiceError):
                raise
            raise ServiceError(
                f"Unexpected error: {e}",
                service_id=self.config.service_id,
                code="UNKNOWN_ERROR",
            ) from e

        if token.superseded:
            self._log(f"SUPERSEDED: {cache_key[:50]}")
            return None

        self._cache.set(cache_key, data)
        latency = self._record_latency(started)
        self._request_count += 1
        self._last_failed = False
        self._remember(display_key, data)
        self._tracker.finish(token, RequestState.SUCCEEDED)

        return ResolveResult(
            data=data,
            key=display_key,
            from_cache=False,
            latency_ms=latency,
        )

    async def refresh(
        self,
        key: str,
        subject: str = DEFAULT_SUBJECT,
    ) -> ResolveResult[T] | None:
        """Drop any cached value for key and resolve it again."""
        self.invalidate(key)
        return await self.resolve(key, subject)

    async def _guarded_fetch(self, cache_key: str) -> T:
        breaker = self._breakers.get(self.config.service_id)
        return await breaker.call(
            lambda: self._retry.execute(
                lambda: self._timeout.guard(lambda: self._fetch(cache_key))
            )
        )

    # Cache management

    def invalidate(self, key: str) -> bool:
        """Remove one key from the cache."""
        try:
            _, cache_key = self._normalize(key)
        except ValidationError:
            return False
        return self._cache.delete(cache_key)

    def clear(self) -> None:
        """Clear the cache and reset statistics."""
        self._cache.clear()
        self._hits = 0
        self._misses = 0
        self._request_count = 0
        self._failure_count = 0
        self._latencies.clear()
        self._last_failed = False
        logger.info("FetchOrchestrator cache and statistics cleared")

    def cached_keys(self) -> list[str]:
        """Get unexpired cache keys."""
        return self._cache.keys()

    def get_history(self) -> list[HistoryEntry[T]]:
        """Get recently resolved keys, newest first."""
        return list(self._history)

    # Statistics

    @property
    def hit_rate(self) -> float:
        """Cache hit rate since the last clear."""
        total = self._hits + self._misses
        if total == 0:
            return 0.0
        return self._hits / total

    @property
    def average_latency_ms(self) -> float:
        """Rolling average over the latency window."""
        if not self._latencies:
            return 0.0
        return sum(self._latencies) / len(self._latencies)

    def get_statistics(self) -> FetchStatistics:
        """Get current statistics."""
        cache_stats = self._cache.stats()
        avg_latency = self.average_latency_ms
        return FetchStatistics(
            hits=self._hits,
            misses=self._misses,
            hit_rate=self.hit_rate,
            avg_latency_ms=avg_latency,
            size=cache_stats.size,
            max_size=cache_stats.max_size,
            request_count=self._request_count,
            failure_count=self._failure_count,
            is_healthy=not self._last_failed
            and avg_latency < self.config.healthy_latency_ms,
            breaker_state=self.breaker.state.value,
        )

    def get_health_status(self) -> dict[str, Any]:
        """Get health status of all components."""
        return {
            "statistics": self.get_statistics().to_dict(),
            "cache": self._cache.stats().to_dict(),
            "circuit_breakers": self._breakers.get_all_status(),
            "requests": self._tracker.get_stats().to_dict(),
            "open_circuits": self._breakers.get_open_circuits(),
        }

    # Helpers

    @staticmethod
    def _normalize(key: str) -> tuple[str, str]:
        if not isinstance(key, str):
            raise ValidationError("Key must be a string")
        display_key = key.strip()
        if not display_key:
            raise ValidationError("Key is required", code="KEY_REQUIRED")
        return display_key, display_key.casefold()

    def _record_latency(self, started: float) -> float:
        latency_ms = (self._timer() - started) * 1000
        self._latencies.append(latency_ms)
        return latency_ms

    def _remember(self, display_key: str, data: T) -> None:
        for entry in list(self._history):
            if entry.key == display_key:
                self._history.remove(entry)
        self._history.appendleft(
            HistoryEntry(key=display_key, timestamp=self._clock(), data=data)
        )

    def _log(self, message: str) -> None:
        """Log debug message if debug mode is enabled."""
        if self._debug:
            logger.debug(f"[FetchOrchestrator] {message}")
