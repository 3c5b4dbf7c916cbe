"""Unit tests for the circuit breaker."""

import asyncio
from datetime import timedelta
from unittest.mock import AsyncMock

import pytest

from skycast.services.circuit_breaker import (
    BreakerEvent,
    BreakerSnapshot,
    CircuitBreaker,
    CircuitBreakerConfig,
    CircuitBreakerRegistry,
    CircuitState,
    transition,
)
from skycast.services.errors import ApiError, CircuitOpenError, NetworkError

CONFIG = CircuitBreakerConfig(failure_threshold=3, recovery_timeout=timedelta(seconds=60))
TWO_FAILURES = CircuitBreakerConfig(
    failure_threshold=2, recovery_timeout=timedelta(seconds=60)
)


class TestTransition:
    """Test the pure transition function."""

    def test_closed_admits(self):
        snapshot, admitted = transition(BreakerSnapshot(), BreakerEvent.ATTEMPT, 0, CONFIG)

        assert admitted is True
        assert snapshot.state == CircuitState.CLOSED

    def test_failures_below_threshold_stay_closed(self):
        snapshot = BreakerSnapshot()
        for now in (1, 2):
            snapshot, _ = transition(snapshot, BreakerEvent.FAILURE, now, CONFIG)

        assert snapshot.state == CircuitState.CLOSED
        assert snapshot.failure_count == 2

    def test_threshold_opens(self):
        snapshot = BreakerSnapshot()
        for now in (1, 2, 3):
            snapshot, _ = transition(snapshot, BreakerEvent.FAILURE, now, CONFIG)

        assert snapshot.state == CircuitState.OPEN
        assert snapshot.last_failure_time == 3

    def test_open_rejects_within_recovery_window(self):
        snapshot = BreakerSnapshot(CircuitState.OPEN, 3, last_failure_time=100)

        for now in (100, 130, 160):
            after, admitted = transition(snapshot, BreakerEvent.ATTEMPT, now, CONFIG)
            assert admitted is False
            assert after == snapshot

    def test_open_moves_to_half_open_after_window(self):
        snapshot = BreakerSnapshot(CircuitState.OPEN, 3, last_failure_time=100)

        after, admitted = transition(snapshot, BreakerEvent.ATTEMPT, 160.5, CONFIG)

        assert admitted is True
        assert after.state == CircuitState.HALF_OPEN
        assert after.probe_in_flight is True

    def test_half_open_allows_single_probe(self):
        probing = BreakerSnapshot(CircuitState.HALF_OPEN, 3, 100, probe_in_flight=True)

        after, admitted = transition(probing, BreakerEvent.ATTEMPT, 200, CONFIG)

        assert admitted is False
        assert after == probing

    def test_half_open_success_closes(self):
        probing = BreakerSnapshot(CircuitState.HALF_OPEN, 3, 100, probe_in_flight=True)

        after, _ = transition(
            probing, BreakerEvent.SUCCESS, 200, CONFIG, probing.probe_id
        )

        assert after.state == CircuitState.CLOSED
        assert after.failure_count == 0
        assert after.probe_in_flight is False

    def test_half_open_failure_reopens(self):
        probing = BreakerSnapshot(CircuitState.HALF_OPEN, 3, 100, probe_in_flight=True)

        after, _ = transition(
            probing, BreakerEvent.FAILURE, 200, CONFIG, probing.probe_id
        )

        assert after.state == CircuitState.OPEN
        assert after.last_failure_time == 200
        assert after.probe_in_flight is False

    def test_cancelled_probe_frees_slot(self):
        probing = BreakerSnapshot(CircuitState.HALF_OPEN, 3, 100, probe_in_flight=True)

        after, _ = transition(
            probing, BreakerEvent.CANCEL, 200, CONFIG, probing.probe_id
        )
        assert after.state == CircuitState.HALF_OPEN
        assert after.probe_in_flight is False

        _, admitted = transition(after, BreakerEvent.ATTEMPT, 201, CONFIG)
        assert admitted is True

    def test_each_probe_gets_a_new_ticket(self):
        snapshot = BreakerSnapshot(CircuitState.OPEN, 3, last_failure_time=100)

        first, _ = transition(snapshot, BreakerEvent.ATTEMPT, 161, CONFIG)
        freed, _ = transition(first, BreakerEvent.CANCEL, 162, CONFIG, first.probe_id)
        second, _ = transition(freed, BreakerEvent.ATTEMPT, 163, CONFIG)

        assert second.probe_id == first.probe_id + 1

    @pytest.mark.parametrize(
        "event", [BreakerEvent.SUCCESS, BreakerEvent.FAILURE, BreakerEvent.CANCEL]
    )
    @pytest.mark.parametrize("ticket", [None, 0])
    def test_half_open_ignores_other_calls(self, event, ticket):
        probing = BreakerSnapshot(
            CircuitState.HALF_OPEN, 3, 100, probe_in_flight=True, probe_id=1
        )

        after, _ = transition(probing, event, 200, CONFIG, ticket)

        assert after == probing

    def test_success_resets_failure_count_when_closed(self):
        snapshot = BreakerSnapshot(failure_count=2, last_failure_time=5)

        after, _ = transition(snapshot, BreakerEvent.SUCCESS, 6, CONFIG)

        assert after.failure_count == 0
        assert after.state == CircuitState.CLOSED


class TestCircuitBreaker:
    """Test CircuitBreaker functionality."""

    @pytest.mark.asyncio
    async def test_circuit_initially_closed(self, clock):
        breaker = CircuitBreaker("svc", CONFIG, clock=clock)
        mock_func = AsyncMock(return_value="result")

        assert await breaker.call(mock_func) == "result"
        assert breaker.state == CircuitState.CLOSED
        mock_func.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_open_circuit_fails_fast_without_calling(self, clock):
        breaker = CircuitBreaker("svc", CONFIG, clock=clock)
        failing = AsyncMock(side_effect=NetworkError("down"))

        for _ in range(3):
            with pytest.raises(NetworkError):
                await breaker.call(failing)

        assert breaker.state == CircuitState.OPEN

        tracked = AsyncMock(return_value="result")
        for _ in range(5):
            with pytest.raises(CircuitOpenError) as exc_info:
                await breaker.call(tracked)

        tracked.assert_not_awaited()
        assert exc_info.value.service_id == "svc"
        assert exc_info.value.reset_after_seconds == pytest.approx(60)
        # Rejections do not count as failures
        assert breaker.failure_count == 3

    @pytest.mark.asyncio
    async def test_half_open_probe_success_closes(self, clock):
        breaker = CircuitBreaker("svc", CONFIG, clock=clock)
        for _ in range(3):
            with pytest.raises(NetworkError):
                await breaker.call(AsyncMock(side_effect=NetworkError("down")))

        clock.advance(61)
        probe = AsyncMock(return_value="recovered")

        assert await breaker.call(probe) == "recovered"
        assert breaker.state == CircuitState.CLOSED
        assert breaker.failure_count == 0

    @pytest.mark.asyncio
    async def test_half_open_probe_failure_reopens(self, clock):
        breaker = CircuitBreaker("svc", CONFIG, clock=clock)
        for _ in range(3):
            with pytest.raises(NetworkError):
                await breaker.call(AsyncMock(side_effect=NetworkError("down")))

        clock.advance(61)
        with pytest.raises(NetworkError, match="still down"):
            await breaker.call(AsyncMock(side_effect=NetworkError("still down")))

        assert breaker.state == CircuitState.OPEN
        assert breaker.snapshot.last_failure_time == clock.now

        blocked = AsyncMock()
        with pytest.raises(CircuitOpenError):
            await breaker.call(blocked)
        blocked.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_only_one_concurrent_probe(self, clock):
        """Test a second caller is rejected while the probe is running."""
        breaker = CircuitBreaker("svc", CONFIG, clock=clock)
        for _ in range(3):
            with pytest.raises(NetworkError):
                await breaker.call(AsyncMock(side_effect=NetworkError("down")))
        clock.advance(61)

        release = asyncio.Event()

        async def slow_probe():
            await release.wait()
            return "ok"

        probe_task = asyncio.create_task(breaker.call(slow_probe))
        await asyncio.sleep(0)
        assert breaker.state == CircuitState.HALF_OPEN

        second = AsyncMock(return_value="second")
        with pytest.raises(CircuitOpenError):
            await breaker.call(second)
        second.assert_not_awaited()

        release.set()
        assert await probe_task == "ok"
        assert breaker.state == CircuitState.CLOSED

    @pytest.mark.asyncio
    async def test_cancelled_probe_releases_slot(self, clock):
        breaker = CircuitBreaker("svc", CONFIG, clock=clock)
        for _ in range(3):
            with pytest.raises(NetworkError):
                await breaker.call(AsyncMock(side_effect=NetworkError("down")))
        clock.advance(61)

        probe_task = asyncio.create_task(breaker.call(lambda: asyncio.sleep(10)))
        await asyncio.sleep(0)
        probe_task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await probe_task

        assert breaker.snapshot.probe_in_flight is False
        assert await breaker.call(AsyncMock(return_value="next")) == "next"

    @pytest.mark.asyncio
    async def test_earlier_success_cannot_close_half_open(self, clock):
        """Test a call admitted while CLOSED cannot close a half-open circuit."""
        breaker = CircuitBreaker("svc", TWO_FAILURES, clock=clock)
        earlier_done, probe_done = asyncio.Event(), asyncio.Event()

        async def earlier():
            await earlier_done.wait()
            return "late"

        async def probe():
            await probe_done.wait()
            raise NetworkError("still down")

        earlier_task = asyncio.create_task(breaker.call(earlier))
        await asyncio.sleep(0)
        for _ in range(2):
            with pytest.raises(NetworkError):
                await breaker.call(AsyncMock(side_effect=NetworkError("down")))
        clock.advance(61)
        probe_task = asyncio.create_task(breaker.call(probe))
        await asyncio.sleep(0)
        assert breaker.state == CircuitState.HALF_OPEN

        earlier_done.set()
        assert await earlier_task == "late"
        assert breaker.state == CircuitState.HALF_OPEN

        probe_done.set()
        with pytest.raises(NetworkError, match="still down"):
            await probe_task
        assert breaker.state == CircuitState.OPEN

    @pytest.mark.asyncio
    async def test_earlier_failure_cannot_reopen_half_open(self, clock):
        """Test a call admitted while CLOSED cannot reopen a half-open circuit."""
        breaker = CircuitBreaker("svc", TWO_FAILURES, clock=clock)
        earlier_done, probe_done = asyncio.Event(), asyncio.Event()

        async def earlier():
            await earlier_done.wait()
            raise NetworkError("late")

        async def probe():
            await probe_done.wait()
            return "ok"

        earlier_task = asyncio.create_task(breaker.call(earlier))
        await asyncio.sleep(0)
        for _ in range(2):
            with pytest.raises(NetworkError):
                await breaker.call(AsyncMock(side_effect=NetworkError("down")))
        clock.advance(61)
        probe_task = asyncio.create_task(breaker.call(probe))
        await asyncio.sleep(0)

        earlier_done.set()
        with pytest.raises(NetworkError, match="late"):
            await earlier_task
        assert breaker.state == CircuitState.HALF_OPEN
        assert breaker.failure_count == 2

        probe_done.set()
        assert await probe_task == "ok"
        assert breaker.state == CircuitState.CLOSED
        assert breaker.failure_count == 0

    @pytest.mark.asyncio
    async def test_late_failure_while_open_restarts_window(self, clock):
        breaker = CircuitBreaker("svc", TWO_FAILURES, clock=clock)
        for _ in range(2):
            breaker.record_failure()
        clock.advance(30)

        breaker.record_failure()

        assert breaker.snapshot.last_failure_time == clock.now
        assert breaker.get_time_until_reset() == pytest.approx(60)

    @pytest.mark.asyncio
    async def test_non_transient_errors_do_not_count(self, clock):
        breaker = CircuitBreaker("svc", CONFIG, clock=clock)
        not_found = AsyncMock(side_effect=ApiError("City not found", status=404))

        for _ in range(10):
            with pytest.raises(ApiError):
                await breaker.call(not_found)

        assert breaker.state == CircuitState.CLOSED
        assert breaker.failure_count == 0

    @pytest.mark.asyncio
    async def test_rate_limit_counts(self, clock):
        breaker = CircuitBreaker("svc", CONFIG, clock=clock)
        limited = AsyncMock(side_effect=ApiError("Rate limit exceeded", status=429))

        for _ in range(3):
            with pytest.raises(ApiError):
                await breaker.call(limited)

        assert breaker.state == CircuitState.OPEN

    def test_can_request_does_not_change_state(self, clock):
        breaker = CircuitBreaker("svc", CONFIG, clock=clock)
        for _ in range(3):
            breaker.record_failure()
        clock.advance(61)

        assert breaker.can_request() is True
        assert breaker.state == CircuitState.OPEN

    def test_reset_and_status(self, clock):
        breaker = CircuitBreaker("svc", CONFIG, clock=clock)
        for _ in range(3):
            breaker.record_failure()
        clock.advance(20)

        status = breaker.get_status()
        assert status["state"] == "OPEN"
        assert status["failure_count"] == 3
        assert status["time_until_reset"] == pytest.approx(40)

        breaker.reset()
        assert breaker.state == CircuitState.CLOSED
        assert breaker.get_time_until_reset() is None


class TestCircuitBreakerRegistry:
    """Test the per-service registry."""

    def test_get_returns_same_breaker(self):
        registry = CircuitBreakerRegistry(CONFIG)

        assert registry.get("a") is registry.get("a")
        assert registry.get("a") is not registry.get("b")

    def test_open_circuits_and_reset(self, clock):
        registry = CircuitBreakerRegistry(CONFIG, clock=clock)
        for _ in range(3):
            registry.get("flaky").record_failure()
        registry.get("healthy")

        assert registry.get_open_circuits() == ["flaky"]
        assert set(registry.get_all_status()) == {"flaky", "healthy"}

        assert registry.reset("flaky") is True
        assert registry.reset("unknown") is False
        assert registry.get_open_circuits() == []
