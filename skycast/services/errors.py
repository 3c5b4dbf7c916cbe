"""
Service layer exceptions.

Every failure that reaches a caller of the orchestrator is one of these.
Cancellation is not part of the taxonomy: superseded requests stay silent.
"""

# Status codes worth another attempt: rate limiting and server-side errors.
TRANSIENT_STATUSES = frozenset({429, 500, 502, 503, 504})


class ServiceError(Exception):
    """Base exception for service layer errors."""

    def __init__(
        self,
        message: str,
        service_id: str | None = None,
        code: str | None = None,
    ):
        self.message = message
        self.service_id = service_id
        self.code = code
        super().__init__(message)


class ValidationError(ServiceError):
    """Bad input key. Never retried, never counted against a breaker."""

    def __init__(self, message: str, code: str = "VALIDATION_ERROR"):
        super().__init__(message, code=code)


class NetworkError(ServiceError):
    """Transport-level failure."""

    def __init__(
        self,
        message: str,
        service_id: str | None = None,
        code: str = "NETWORK_ERROR",
    ):
        super().__init__(message, service_id=service_id, code=code)


class RequestTimeoutError(NetworkError):
    """Request timed out."""

    def __init__(self, service_id: str | None, timeout: float):
        self.timeout = timeout
        super().__init__(
            f"Request to service '{service_id}' timed out after {timeout}s",
            service_id=service_id,
            code="TIMEOUT",
        )


class ApiError(ServiceError):
    """Downstream service rejected the request."""

    def __init__(
        self,
        message: str,
        status: int | None = None,
        code: str = "UNKNOWN_ERROR",
        service_id: str | None = None,
    ):
        self.status = status
        super().__init__(message, service_id=service_id, code=code)

    @property
    def is_transient(self) -> bool:
        return self.status in TRANSIENT_STATUSES


class CircuitOpenError(ServiceError):
    """Circuit breaker is open, request blocked."""

    def __init__(self, service_id: str, reset_after_seconds: float):
        self.reset_after_seconds = reset_after_seconds
        super().__init__(
            f"Circuit breaker open for service '{service_id}', "
            f"retry after {reset_after_seconds:.1f}s",
            service_id=service_id,
            code="CIRCUIT_OPEN",
        )


def is_retryable(exc: BaseException) -> bool:
    """Whether another attempt at the same operation could succeed."""
    if isinstance(exc, NetworkError):
        return True
    if isinstance(exc, ApiError):
        return exc.is_transient
    return False


def counts_against_breaker(exc: BaseException) -> bool:
    """
    Whether a failure says something about the health of the downstream.

    Unclassified exceptions count: the service misbehaved in a way nobody
    anticipated.
    """
    if isinstance(exc, ServiceError):
        return is_retryable(exc)
    return isinstance(exc, Exception)
