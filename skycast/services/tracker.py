"""
RequestTracker - Latest-request-wins bookkeeping for in-flight fetches.

Each subject (a logical slot such as one search box) has at most one active
request token. Opening a new request for a subject cancels the previous
one; the cancelled request's outcome is dropped by its owner.
"""

import asyncio
import itertools
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from loguru import logger


class RequestState(str, Enum):
    """Lifecycle of one fetch attempt."""

    IDLE = "IDLE"
    FETCHING = "FETCHING"
    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"


@dataclass(eq=False)
class RequestToken:
    """One in-flight fetch for a subject."""

    id: int
    subject: str
    key: str
    state: RequestState = RequestState.IDLE
    superseded: bool = False
    task: asyncio.Task[Any] | None = field(default=None, repr=False)

    @property
    def is_active(self) -> bool:
        return self.state == RequestState.FETCHING and not self.superseded


class RequestTracker:
    """
    Tracks the active request per subject.

    Usage:
        tracker = RequestTracker()

        tracker.supersede("search")
        token = tracker.open("search", "paris")
        token.task = asyncio.create_task(fetch("paris"))
        ...
        tracker.finish(token, RequestState.SUCCEEDED)
    """

    def __init__(self, debug: bool = False):
        self._active: dict[str, RequestToken] = {}
        self._ids = itertools.count(1)
        self._debug = debug
        self._stats = TrackerStats()

    def supersede(self, subject: str) -> RequestToken | None:
        """Cancel the active request for a subject, if any."""
        token = self._active.pop(subject, None)
        if token is None:
            return None

        self._cancel(token)
        self._stats.superseded += 1
        self._log(f"SUPERSEDE: {subject} -> {token.key[:50]}")
        return token

    def open(self, subject: str, key: str) -> RequestToken:
        """Start tracking a new request, superseding any previous one."""
        self.supersede(subject)
        token = RequestToken(
            id=next(self._ids),
            subject=subject,
            key=key,
            state=RequestState.FETCHING,
        )
        self._active[subject] = token
        self._stats.total += 1
        self._log(f"OPEN: {subject} -> {key[:50]} (#{token.id})")
        return token

    def finish(self, token: RequestToken, state: RequestState) -> None:
        """Settle a token and stop tracking it if it is still current."""
        token.state = state
        if self._active.get(token.subject) is token:
            del self._active[token.subject]
        self._log(f"DONE: {token.subject} -> {token.key[:50]} ({state.value})")

    def is_current(self, token: RequestToken) -> bool:
        return self._active.get(token.subject) is token

    def cancel_all(self) -> int:
        """Cancel all in-flight requests."""
        tokens = list(self._active.values())
        self._active.clear()
        for token in tokens:
            self._cancel(token)
        if tokens:
            logger.debug(f"[RequestTracker] CANCEL_ALL: {len(tokens)} requests cancelled")
        return len(tokens)

    def get_in_flight_count(self) -> int:
        """Get number of in-flight requests."""
        return len(self._active)

    def get_in_flight_keys(self) -> list[str]:
        """Get keys of all in-flight requests."""
        return [token.key for token in self._active.values()]

    def get_stats(self) -> "TrackerStats":
        """Get tracking statistics."""
        self._stats.in_flight = len(self._active)
        return self._stats

    def _cancel(self, token: RequestToken) -> None:
        token.superseded = True
        token.state = RequestState.CANCELLED
        if token.task is not None and not token.task.done():
            token.task.cancel()

    def _log(self, message: str) -> None:
        """Log debug message if debug mode is enabled."""
        if self._debug:
            logger.debug(f"[RequestTracker] {message}")


class TrackerStats:
    """Statistics for request tracking."""

    def __init__(self):
        self.total: int = 0  # Requests opened
        self.superseded: int = 0  # Requests cancelled by a newer one
        self.in_flight: int = 0  # Current in-flight requests

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "total_requests": self.total,
            "superseded": self.superseded,
            "in_flight": self.in_flight,
        }
