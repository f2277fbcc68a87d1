"""
Store Factory: Create the right key-value backend from configuration.

Configuration in settings.yaml:
    store:
      # Key-value backend holding the queue
      #   "memory": In-memory dict (development, testing)
      #   "file":   One JSON file on disk (default for real use)
      backend: "file"

      # For file backend: path of the JSON document
      file_path: "./data/prompt_queue.json"

Usage:
    from database.store_factory import create_store, get_store
    store = create_store(config)     # Create from config dict
    store = get_store()              # Get singleton instance
"""
from __future__ import annotations

import structlog
from typing import Optional

from database.store_base import BaseKeyValueStore

logger = structlog.get_logger()

_instance: Optional[BaseKeyValueStore] = None


def create_store(config: dict = None) -> BaseKeyValueStore:
    """
    Factory: create the appropriate key-value backend.

    Args:
        config: dict with keys:
            backend: "memory" | "file"  (default: "memory")
            file_path: str (for file backend)
    """
    global _instance
    if _instance is not None:
        return _instance

    config = config or {}
    backend = config.get("backend", "memory")

    if backend == "file":
        from database.store_file import FileKeyValueStore
        file_path = config.get("file_path", "./data/prompt_queue.json")
        _instance = FileKeyValueStore(file_path=file_path)
        logger.info("store_created", backend="file", file_path=file_path)

    else:  # "memory" or default
        from database.store_memory import InMemoryKeyValueStore
        _instance = InMemoryKeyValueStore()
        logger.info("store_created", backend="memory")

    return _instance


def get_store() -> BaseKeyValueStore:
    """Return the singleton store instance, creating a memory store if none exists."""
    global _instance
    if _instance is None:
        _instance = create_store()
    return _instance


def reset_store() -> None:
    """Reset the singleton (for testing)."""
    global _instance
    _instance = None
