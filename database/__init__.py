"""
Database layer: key-value persistence for the prompt queue.

Backends:
  - In-memory (dict-based, for development/testing)
  - File (one JSON document on disk)

Quick start:
  from database import create_store
  kv = create_store({"backend": "file", "file_path": "./data/queue.json"})
  await kv.set("promptQueue.items", [])
"""
from database.store_base import BaseKeyValueStore
from database.store_memory import InMemoryKeyValueStore
from database.store_file import FileKeyValueStore
from database.store_factory import create_store, get_store, reset_store

__all__ = [
    "BaseKeyValueStore",
    "InMemoryKeyValueStore", "FileKeyValueStore",
    "create_store", "get_store", "reset_store",
]
