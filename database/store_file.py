"""
FileKeyValueStore: JSON file-backed store with persistence across restarts.

Data layout:
  {file_path}   one JSON object: {key: value, ...}

Features:
  - Survives process restarts (unlike InMemoryKeyValueStore)
  - No external dependencies (no database server)
  - Every write is flushed, fsynced and atomically swapped into place, so
    an awaited set() is on disk before the caller continues
  - Single-process only; the queue store serialises its own writes

Best for: a single user's local queue.
"""
from __future__ import annotations

import copy
import json
import os
import structlog
from pathlib import Path
from typing import Any

from database.store_memory import InMemoryKeyValueStore

logger = structlog.get_logger()


class FileKeyValueStore(InMemoryKeyValueStore):
    """
    Extends InMemoryKeyValueStore with JSON file persistence.

    On init: loads the document from disk into memory.
    On every write: rewrites the document.
    """

    def __init__(self, file_path: str = "./data/prompt_queue.json"):
        super().__init__()
        self._path = Path(file_path)
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._load()
        logger.info("file_store_initialized", path=str(self._path), keys=len(self._data))

    @property
    def path(self) -> Path:
        return self._path

    # ── Load / Save ───────────────────────────────────────

    def _load(self):
        if not self._path.exists():
            return
        try:
            with open(self._path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.warning("file_store_load_error", path=str(self._path), error=str(e))
            return
        if isinstance(data, dict):
            self._data = data
        else:
            logger.warning("file_store_unexpected_document", path=str(self._path),
                           type=type(data).__name__)

    def _flush(self, data: dict[str, Any]):
        tmp_path = self._path.with_suffix(self._path.suffix + ".tmp")
        try:
            with open(tmp_path, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_path, self._path)  # atomic on POSIX and Windows
        finally:
            tmp_path.unlink(missing_ok=True)

    # ── Write methods: memory changes only after the disk write ──

    async def set(self, key: str, value: Any) -> None:
        data = {**self._data, key: copy.deepcopy(value)}
        self._flush(data)
        self._data = data

    async def delete(self, key: str) -> None:
        if key not in self._data:
            return
        data = {k: v for k, v in self._data.items() if k != key}
        self._flush(data)
        self._data = data
