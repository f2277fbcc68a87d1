"""
Abstract Key-Value Store: the persistence capability the queue depends on.

Implementations:
  - InMemoryKeyValueStore (dict-based, single-process, no persistence)
  - FileKeyValueStore     (one JSON document on disk, durable)

Values must be JSON-serializable. The queue store keeps its whole
collection under a single key and never assumes anything about the
backing medium.
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any


class BaseKeyValueStore(ABC):
    """Interface that all key-value backends must implement."""

    @abstractmethod
    async def get(self, key: str, default: Any = None) -> Any:
        """Return the value stored under key, or default when absent."""
        ...

    @abstractmethod
    async def set(self, key: str, value: Any) -> None:
        """Store value under key. Durable once the await returns."""
        ...

    @abstractmethod
    async def delete(self, key: str) -> None:
        ...

    @abstractmethod
    async def keys(self) -> list[str]:
        ...

    async def close(self) -> None:
        pass
