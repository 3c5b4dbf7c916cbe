"""
Service layer infrastructure - resilience patterns around a raw data fetch.

Provides:
- LRUCache: Bounded cache with TTL and least-recently-used eviction
- CircuitBreaker: Prevents cascading failures
- RetryExecutor: Bounded retries with exponential backoff and jitter
- TimeoutGuard: Per-attempt deadline
- RequestTracker: Latest-request-wins supersession
- CacheSweeper: Periodic expiry of cache entries
- FetchOrchestrator: Cache-fronted fetch combining all patterns
"""

from skycast.services.errors import (
    ServiceError,
    ValidationError,
    NetworkError,
    RequestTimeoutError,
    ApiError,
    CircuitOpenError,
)
from skycast.services.cache import LRUCache, CacheEntry, CacheStats
from skycast.services.circuit_breaker import (
    BreakerEvent,
    BreakerSnapshot,
    CircuitBreaker,
    CircuitBreakerConfig,
    CircuitBreakerRegistry,
    CircuitState,
    transition,
)
from skycast.services.retry import RetryConfig, RetryExecutor
from skycast.services.timeout import TimeoutGuard
from skycast.services.tracker import RequestState, RequestToken, RequestTracker
from skycast.services.sweeper import CacheSweeper
from skycast.services.orchestrator import (
    DEFAULT_SUBJECT,
    FetchOrchestrator,
    FetchStatistics,
    HistoryEntry,
    OrchestratorConfig,
    ResolveResult,
)

__all__ = [
    # Errors
    "ServiceError",
    "ValidationError",
    "NetworkError",
    "RequestTimeoutError",
    "ApiError",
    "CircuitOpenError",
    # Cache
    "LRUCache",
    "CacheEntry",
    "CacheStats",
    "CacheSweeper",
    # Circuit Breaker
    "BreakerEvent",
    "BreakerSnapshot",
    "CircuitBreaker",
    "CircuitBreakerConfig",
    "CircuitBreakerRegistry",
    "CircuitState",
    "transition",
    # Retry / Timeout
    "RetryConfig",
    "RetryExecutor",
    "TimeoutGuard",
    # Supersession
    "RequestState",
    "RequestToken",
    "RequestTracker",
    # Orchestrator
    "DEFAULT_SUBJECT",
    "FetchOrchestrator",
    "FetchStatistics",
    "HistoryEntry",
    "OrchestratorConfig",
    "ResolveResult",
]
