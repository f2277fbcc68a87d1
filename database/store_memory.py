"""
InMemoryKeyValueStore: Dict-backed store for development and testing.

Features:
  - Zero dependencies
  - Values are deep-copied on the way in and out, so callers never share
    mutable state with the store (same semantics as a real persistence layer)
  - All data lost on process restart

Best for: local development, unit tests.
"""
from __future__ import annotations

import copy
import structlog
from typing import Any

from database.store_base import BaseKeyValueStore

logger = structlog.get_logger()


class InMemoryKeyValueStore(BaseKeyValueStore):

    def __init__(self):
        self._data: dict[str, Any] = {}
        logger.info("inmemory_store_initialized")

    async def get(self, key: str, default: Any = None) -> Any:
        if key not in self._data:
            return default
        return copy.deepcopy(self._data[key])

    async def set(self, key: str, value: Any) -> None:
        self._data[key] = copy.deepcopy(value)

    async def delete(self, key: str) -> None:
        self._data.pop(key, None)

    async def keys(self) -> list[str]:
        return list(self._data.keys())
