"""
Queue Store: the ordered, persistent collection of queue items.

The whole collection lives under one key of an injected key-value store as
a JSON array (ISO-8601 timestamps, camelCase keys). Every mutation is a
read-modify-write of that array under an asyncio.Lock, so a user action and
a scheduler tick never lose each other's updates.

The store does not validate item contents; that is the producer's job.
"""
from __future__ import annotations

import asyncio
import structlog
from typing import Callable, Optional

from database.store_base import BaseKeyValueStore
from models.schemas import QueueItem

logger = structlog.get_logger()

STORAGE_KEY = "promptQueue.items"


class QueueStore:
    """
    Usage:
        store = QueueStore(InMemoryKeyValueStore())
        await store.add(item)
        pending = await store.get_pending()
    """

    def __init__(self, kv: BaseKeyValueStore, key: str = STORAGE_KEY):
        self._kv = kv
        self._key = key
        self._lock = asyncio.Lock()

    # ── Reads ─────────────────────────────────────────────

    async def _load_records(self) -> list[dict]:
        raw = await self._kv.get(self._key, [])
        if raw is None:
            return []
        if not isinstance(raw, list):
            logger.warning("queue_store_unexpected_value", key=self._key, type=type(raw).__name__)
            return []
        return raw

    async def get_all(self) -> list[QueueItem]:
        """All items, processed ones included, in insertion order."""
        return [QueueItem.from_record(r) for r in await self._load_records()]

    async def get_pending(self) -> list[QueueItem]:
        """Items not yet processed, in insertion order."""
        return [i for i in await self.get_all() if not i.processed]

    async def get(self, item_id: str) -> Optional[QueueItem]:
        for item in await self.get_all():
            if item.id == item_id:
                return item
        return None

    # ── Writes ────────────────────────────────────────────

    async def _mutate(self, fn: Callable[[list[dict]], list[dict]]) -> None:
        async with self._lock:
            records = await self._load_records()
            await self._kv.set(self._key, fn(records))

    async def add(self, item: QueueItem) -> None:
        await self._mutate(lambda records: records + [item.to_record()])
        logger.info("queue_item_added", item_id=item.id, not_before=item.not_before.isoformat())

    async def mark_processed(self, item_id: str) -> None:
        """Flag an item delivered. No-op for unknown ids."""
        def _mark(records: list[dict]) -> list[dict]:
            return [{**r, "processed": True} if r.get("id") == item_id else r for r in records]
        await self._mutate(_mark)
        logger.debug("queue_item_marked_processed", item_id=item_id)

    async def remove(self, item_id: str) -> None:
        """Delete an item entirely. No-op for unknown ids."""
        await self._mutate(lambda records: [r for r in records if r.get("id") != item_id])
        logger.debug("queue_item_removed", item_id=item_id)

    async def purge_processed(self) -> None:
        await self._mutate(lambda records: [r for r in records if not r.get("processed")])
        logger.info("queue_processed_purged")

    async def clear(self) -> None:
        await self._mutate(lambda records: [])
        logger.info("queue_cleared")
