"""
CircuitBreaker - Prevents cascading failures by stopping requests to failing services.

States:
- CLOSED: Normal operation, requests pass through
- OPEN: Service is failing, requests are blocked
- HALF_OPEN: Testing if service has recovered, one probe at a time

Transitions:
- CLOSED → OPEN: When failure_threshold is reached
- OPEN → HALF_OPEN: On the first request after recovery_timeout expires
- HALF_OPEN → CLOSED: On successful probe
- HALF_OPEN → OPEN: On failed probe

While HALF_OPEN only the probe's own outcome counts; results of calls
admitted before the circuit opened are dropped.

The transitions live in the pure function `transition`, so the state
machine can be driven without timers. `CircuitBreaker` holds the current
snapshot and feeds it events with a clock reading.
"""

import asyncio
import time
from dataclasses import dataclass, replace
from datetime import timedelta
from enum import Enum
from typing import Any, Awaitable, Callable, TypeVar

from loguru import logger

from skycast.services.errors import CircuitOpenError, counts_against_breaker

T = TypeVar("T")


class CircuitState(str, Enum):
    """Circuit breaker states."""

    CLOSED = "CLOSED"  # Normal operation
    OPEN = "OPEN"  # Blocking requests
    HALF_OPEN = "HALF_OPEN"  # Testing recovery


class BreakerEvent(str, Enum):
    """Inputs to the breaker state machine."""

    ATTEMPT = "ATTEMPT"  # A caller wants to run the operation
    SUCCESS = "SUCCESS"
    FAILURE = "FAILURE"
    CANCEL = "CANCEL"  # Admitted call abandoned before settling


@dataclass
class CircuitBreakerConfig:
    """Configuration for circuit breaker."""

    failure_threshold: int = 5  # Failures before opening
    recovery_timeout: timedelta = timedelta(seconds=60)  # Time before half-open


@dataclass(frozen=True)
class BreakerSnapshot:
    """Complete breaker state at one instant."""

    state: CircuitState = CircuitState.CLOSED
    failure_count: int = 0
    last_failure_time: float | None = None
    probe_in_flight: bool = False
    probe_id: int = 0  # Bumped for every admitted probe


def transition(
    snapshot: BreakerSnapshot,
    event: BreakerEvent,
    now: float,
    config: CircuitBreakerConfig,
    probe_id: int | None = None,
) -> tuple[BreakerSnapshot, bool]:
    """
    Compute the next breaker state.

    Returns the new snapshot and, for ATTEMPT, whether the call is admitted.
    Outcome events always report True.

    An admitted probe reads its ticket from the new snapshot's `probe_id`
    and passes it back with its outcome; calls admitted while CLOSED pass
    None. While HALF_OPEN only the outstanding probe's outcome is applied.
    """
    state = snapshot.state

    if event == BreakerEvent.ATTEMPT:
        if state == CircuitState.CLOSED:
            return snapshot, True

        if state == CircuitState.OPEN:
            elapsed = now - (snapshot.last_failure_time or 0.0)
            if elapsed <= config.recovery_timeout.total_seconds():
                return snapshot, False
            return (
                replace(
                    snapshot,
                    state=CircuitState.HALF_OPEN,
                    probe_in_flight=True,
                    probe_id=snapshot.probe_id + 1,
                ),
                True,
            )

        # HALF_OPEN: only one probe at a time
        if snapshot.probe_in_flight:
            return snapshot, False
        return (
            replace(snapshot, probe_in_flight=True, probe_id=snapshot.probe_id + 1),
            True,
        )

    is_probe = (
        probe_id is not None
        and snapshot.probe_in_flight
        and probe_id == snapshot.probe_id
    )
    if state == CircuitState.HALF_OPEN and not is_probe:
        # Late outcome of a call admitted before the circuit opened
        return snapshot, True

    if event == BreakerEvent.SUCCESS:
        if state == CircuitState.OPEN:
            return snapshot, True
        return (
            BreakerSnapshot(
                last_failure_time=snapshot.last_failure_time,
                probe_id=snapshot.probe_id,
            ),
            True,
        )

    if event == BreakerEvent.FAILURE:
        failures = snapshot.failure_count + 1
        if state != CircuitState.CLOSED or failures >= config.failure_threshold:
            # A late failure while OPEN restarts the recovery window
            return (
                BreakerSnapshot(
                    state=CircuitState.OPEN,
                    failure_count=failures,
                    last_failure_time=now,
                    probe_id=snapshot.probe_id,
                ),
                True,
            )
        return replace(snapshot, failure_count=failures, last_failure_time=now), True

    # CANCEL
    if state == CircuitState.HALF_OPEN:
        return replace(snapshot, probe_in_flight=False), True
    return snapshot, True


class CircuitBreaker:
    """
    Circuit breaker implementation for a single service.

    Usage:
        cb = CircuitBreaker("openweather")

        result = await cb.call(lambda: fetch("paris"))
    """

    def __init__(
        self,
        service_id: str,
        config: CircuitBreakerConfig | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.service_id = service_id
        self.config = config or CircuitBreakerConfig()
        self._clock = clock
        self._snapshot = BreakerSnapshot()

    @property
    def state(self) -> CircuitState:
        """
        Current state.

        OPEN is reported until the next request performs the move to HALF_OPEN.
        """
        return self._snapshot.state

    @property
    def snapshot(self) -> BreakerSnapshot:
        return self._snapshot

    @property
    def failure_count(self) -> int:
        return self._snapshot.failure_count

    def can_request(self) -> bool:
        """Check if a request would be admitted, without changing state."""
        _, admitted = transition(
            self._snapshot, BreakerEvent.ATTEMPT, self._clock(), self.config
        )
        return admitted

    async def call(self, operation: Callable[[], Awaitable[T]]) -> T:
        """
        Run operation through the breaker.

        Raises:
            CircuitOpenError: If the circuit rejects the call. The
                operation is not invoked.
        """
        if not self._apply(BreakerEvent.ATTEMPT):
            raise CircuitOpenError(self.service_id, self.get_time_until_reset() or 0)

        # Admitted outside CLOSED means this call is the probe
        probe_id = None
        if self._snapshot.state == CircuitState.HALF_OPEN:
            probe_id = self._snapshot.probe_id

        try:
            result = await operation()
        except asyncio.CancelledError:
            self._apply(BreakerEvent.CANCEL, probe_id)
            raise
        except Exception as e:
            if counts_against_breaker(e):
                self.record_failure(probe_id)
            else:
                # The service answered; the request itself was the problem.
                self.record_success(probe_id)
            raise

        self.record_success(probe_id)
        return result

    def record_success(self, probe_id: int | None = None) -> None:
        """Record a successful request."""
        self._apply(BreakerEvent.SUCCESS, probe_id)

    def record_failure(self, probe_id: int | None = None) -> None:
        """Record a failed request."""
        self._apply(BreakerEvent.FAILURE, probe_id)

    def _apply(self, event: BreakerEvent, probe_id: int | None = None) -> bool:
        before = self._snapshot
        self._snapshot, admitted = transition(
            before, event, self._clock(), self.config, probe_id
        )
        after = self._snapshot

        if before.state != after.state:
            if after.state == CircuitState.OPEN:
                logger.warning(
                    f"Circuit breaker '{self.service_id}' OPENED after "
                    f"{after.failure_count} failures"
                )
            elif after.state == CircuitState.HALF_OPEN:
                logger.info(
                    f"Circuit breaker '{self.service_id}' transitioned to HALF_OPEN"
                )
            else:
                logger.info(f"Circuit breaker '{self.service_id}' CLOSED (recovered)")
        elif event == BreakerEvent.ATTEMPT and not admitted:
            logger.debug(f"Circuit breaker '{self.service_id}' rejected request")

        return admitted

    def reset(self) -> None:
        """Manually reset the circuit breaker."""
        # probe_id stays monotonic across resets
        self._snapshot = BreakerSnapshot(probe_id=self._snapshot.probe_id)
        logger.info(f"Circuit breaker '{self.service_id}' manually reset")

    def get_time_until_reset(self) -> float | None:
        """Get seconds until circuit admits a probe."""
        snapshot = self._snapshot
        if snapshot.state != CircuitState.OPEN or snapshot.last_failure_time is None:
            return None

        reset_at = snapshot.last_failure_time + self.config.recovery_timeout.total_seconds()
        return max(0.0, reset_at - self._clock())

    def get_status(self) -> dict[str, Any]:
        """Get current status as dictionary."""
        snapshot = self._snapshot
        return {
            "service_id": self.service_id,
            "state": snapshot.state.value,
            "failure_count": snapshot.failure_count,
            "last_failure": snapshot.last_failure_time,
            "probe_in_flight": snapshot.probe_in_flight,
            "time_until_reset": self.get_time_until_reset(),
        }


class CircuitBreakerRegistry:
    """
    Registry holding one circuit breaker per downstream service.

    Usage:
        registry = CircuitBreakerRegistry()
        cb = registry.get("openweather")
    """

    def __init__(
        self,
        default_config: CircuitBreakerConfig | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._breakers: dict[str, CircuitBreaker] = {}
        self._default_config = default_config or CircuitBreakerConfig()
        self._clock = clock

    def get(
        self,
        service_id: str,
        config: CircuitBreakerConfig | None = None,
    ) -> CircuitBreaker:
        """Get or create a circuit breaker for a service."""
        if service_id not in self._breakers:
            self._breakers[service_id] = CircuitBreaker(
                service_id,
                config or self._default_config,
                clock=self._clock,
            )
        return self._breakers[service_id]

    def get_all_status(self) -> dict[str, dict[str, Any]]:
        """Get status of all circuit breakers."""
        return {
            service_id: cb.get_status() for service_id, cb in self._breakers.items()
        }

    def reset_all(self) -> None:
        """Reset all circuit breakers."""
        for cb in self._breakers.values():
            cb.reset()
        logger.info(f"Reset {len(self._breakers)} circuit breakers")

    def reset(self, service_id: str) -> bool:
        """Reset a specific circuit breaker."""
        if service_id in self._breakers:
            self._breakers[service_id].reset()
            return True
        return False

    def get_open_circuits(self) -> list[str]:
        """Get list of services with open circuits."""
        return [
            service_id
            for service_id, cb in self._breakers.items()
            if cb.state == CircuitState.OPEN
        ]
