"""
Base data source interface.
"""

from abc import ABC, abstractmethod
from typing import Generic, TypeVar

from pydantic import BaseModel

T = TypeVar("T", bound=BaseModel)


class BaseDataSource(ABC, Generic[T]):
    """
    Abstract base class for all data sources.

    A data source is the raw fetch behind a FetchOrchestrator. It should:
    - Raise errors from skycast.services.errors, never return None
    - Return Pydantic models
    - Stop promptly when its task is cancelled
    """

    @property
    @abstractmethod
    def service_id(self) -> str:
        """Unique identifier for this data source."""
        ...

    @abstractmethod
    async def fetch(self, key: str) -> T:
        """Fetch the value for a normalized key."""
        ...

    @abstractmethod
    def is_configured(self) -> bool:
        """Check if the data source is properly configured."""
        ...

    def validate(self, key: str) -> None:
        """Reject keys the source cannot serve. Accepts everything by default."""

    async def close(self) -> None:
        """Release transport resources."""
