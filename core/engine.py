"""
Delivery Engine: composition root and producer surface of the queue.

Wires the key-value store, queue store, delivery sink and processor from
settings, and offers the operations a host calls:
- enqueue a prompt with an explicit or default delay
- the "I'm rate limited" flow: detect the delay from an error message,
  fall back to a manual delay
- process now / force deliver / remove / purge
- queue statistics over the 5-hour and 7-day windows
"""
from __future__ import annotations

import structlog
from datetime import datetime
from typing import Any, Optional

from config.settings import Settings, get_settings
from database.store_base import BaseKeyValueStore
from database.store_factory import create_store
from job_queue.processor import QueueProcessor
from job_queue.queue_store import QueueStore
from models.schemas import Confidence, QueueItem, RateLimitInfo
from sinks.base import DeliverySink
from sinks.factory import create_sink
from sinks.sessions.base import SessionHost
from utils.ratelimit import parse_rate_limit_message, suggest_delay_hours
from utils.timeutils import add_hours, is_overdue, utcnow, window_start_5h, window_start_7d

logger = structlog.get_logger()


class RateLimitNotDetected(ValueError):
    """No reset time in the message and no manual delay given."""


class DeliveryEngine:
    """
    Usage:
        engine = DeliveryEngine.from_settings()
        await engine.start()
        item, info = await engine.enqueue_rate_limited("Fix the build", "Resets in 4h 30m")
        ...
        await engine.stop()
    """

    def __init__(
        self,
        store: QueueStore,
        sink: DeliverySink,
        processor: Optional[QueueProcessor] = None,
        default_delay_hours: float = 5.0,
    ):
        self.store = store
        self.sink = sink
        self.processor = processor or QueueProcessor(store, sink)
        self.default_delay_hours = default_delay_hours

    @classmethod
    def from_settings(
        cls,
        settings: Optional[Settings] = None,
        kv: Optional[BaseKeyValueStore] = None,
        host: Optional[SessionHost] = None,
    ) -> DeliveryEngine:
        settings = settings or get_settings()
        kv = kv or create_store({
            "backend": settings.store.backend,
            "file_path": settings.store.file_path,
        })
        store = QueueStore(kv)
        sink = create_sink(settings, host=host)
        processor = QueueProcessor(
            store, sink, delivery_timeout_s=settings.queue.delivery_timeout_s,
        )
        return cls(store, sink, processor, default_delay_hours=settings.queue.default_delay_hours)

    # ── Lifecycle ─────────────────────────────────────────────

    async def start(self) -> None:
        await self.processor.start()

    async def stop(self) -> None:
        await self.processor.stop()
        await self.sink.shutdown()

    # ── Producer operations ───────────────────────────────────

    async def enqueue(
        self,
        prompt_text: str,
        delay_hours: Optional[float] = None,
        origin_context: str = "",
        now: Optional[datetime] = None,
    ) -> QueueItem:
        """Queue a prompt for delivery after delay_hours (default from settings)."""
        if not prompt_text or not prompt_text.strip():
            raise ValueError("prompt text must not be empty")
        delay = self.default_delay_hours if delay_hours is None else float(delay_hours)
        if delay < 0:
            raise ValueError(f"delay must not be negative, got {delay}")

        created = now or utcnow()
        item = QueueItem(
            created_at=created,
            not_before=add_hours(created, delay),
            prompt_text=prompt_text,
            origin_context=origin_context,
        )
        await self.store.add(item)
        logger.info("prompt_queued", item_id=item.id, delay_hours=delay,
                    not_before=item.not_before.isoformat())
        return item

    async def enqueue_rate_limited(
        self,
        prompt_text: str,
        message: str = "",
        override_delay_hours: Optional[float] = None,
        origin_context: str = "",
        now: Optional[datetime] = None,
    ) -> tuple[QueueItem, RateLimitInfo]:
        """
        Queue a prompt behind a rate limit.

        The delay comes from the override when given, otherwise from the
        parsed message. A message that cannot be parsed plus an override
        yields a low-confidence manual result. The returned info always
        carries the delay that was applied.

        Raises:
            RateLimitNotDetected: nothing parsed and no override
        """
        now = now or utcnow()
        info = parse_rate_limit_message(message, now) if message else None

        if override_delay_hours is not None:
            delay = float(override_delay_hours)
            if info is None:
                info = RateLimitInfo(
                    delay_hours=delay,
                    reset_at=add_hours(now, delay),
                    raw_match=str(override_delay_hours),
                    confidence=Confidence.LOW,
                )
            else:
                info = info.model_copy(update={"delay_hours": delay, "reset_at": add_hours(now, delay)})
        elif info is None:
            raise RateLimitNotDetected("could not detect a reset time; enter the delay manually")
        else:
            delay = info.delay_hours

        item = await self.enqueue(prompt_text, delay, origin_context, now)
        logger.info("rate_limited_prompt_queued", item_id=item.id,
                    confidence=info.confidence.value, raw_match=info.raw_match)
        return item, info

    def suggest_delay(self, text: str) -> float:
        return suggest_delay_hours(text or "", self.default_delay_hours)

    # ── Queue operations ──────────────────────────────────────

    async def list_items(self) -> list[QueueItem]:
        return await self.store.get_all()

    async def list_pending(self) -> list[QueueItem]:
        return await self.store.get_pending()

    async def get(self, item_id: str) -> Optional[QueueItem]:
        return await self.store.get(item_id)

    async def process_now(self) -> int:
        return await self.processor.process(manual=True)

    async def force_deliver(self, item_id: str) -> bool:
        return await self.processor.force_deliver(item_id)

    async def remove(self, item_id: str) -> bool:
        """Remove an item; False when the id is unknown."""
        if await self.store.get(item_id) is None:
            return False
        await self.store.remove(item_id)
        return True

    async def purge_processed(self) -> int:
        before = len(await self.store.get_all())
        await self.store.purge_processed()
        return before - len(await self.store.get_all())

    async def stats(self, now: Optional[datetime] = None) -> dict[str, int]:
        now = now or utcnow()
        items = await self.store.get_all()
        pending = [i for i in items if not i.processed]
        start_5h, start_7d = window_start_5h(now), window_start_7d(now)
        return {
            "total": len(items),
            "pending": len(pending),
            "due": sum(1 for i in pending if is_overdue(i.not_before, now)),
            "processed": len(items) - len(pending),
            "queued_last_5h": sum(1 for i in items if i.created_at >= start_5h),
            "queued_last_7d": sum(1 for i in items if i.created_at >= start_7d),
        }

    def health(self) -> dict[str, Any]:
        return {
            "processor_running": self.processor.running,
            "sink": self.sink.health(),
        }
