"""Shared test fixtures for the prompt queue."""
import asyncio
import pytest
import structlog
from datetime import datetime, timedelta, timezone
from typing import Optional

from config.settings import reset_settings
from database.store_factory import reset_store
from database.store_memory import InMemoryKeyValueStore
from job_queue.queue_store import QueueStore
from models.schemas import CompletionPolicy, QueueItem
from sinks.base import DeliveryError, DeliverySink

NOW = datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc)


def make_item(item_id="a1b2c3d4", prompt="Refactor the parser", due_in_hours=-1.0,
              origin="", processed=False, now=NOW) -> QueueItem:
    """An item whose not_before is due_in_hours away from `now` (negative = due)."""
    return QueueItem(
        id=item_id,
        created_at=now - timedelta(hours=5),
        not_before=now + timedelta(hours=due_in_hours),
        prompt_text=prompt,
        origin_context=origin,
        processed=processed,
    )


class FakeSink(DeliverySink):
    """Records deliveries; fails for ids in `failing`."""

    name = "fake"

    def __init__(self, failing=(), completion: Optional[CompletionPolicy] = None,
                 retry_on_tick: bool = True, delay_s: float = 0.0):
        super().__init__(completion)
        self.failing = set(failing)
        self.retry_on_tick = retry_on_tick
        self.delay_s = delay_s
        self.delivered: list[str] = []

    async def _do_deliver(self, item: QueueItem) -> str:
        if self.delay_s:
            await asyncio.sleep(self.delay_s)
        if item.id in self.failing:
            raise DeliveryError(f"cannot deliver {item.id}", self.name, item.id)
        self.delivered.append(item.id)
        return f"fake:{item.id}"


@pytest.fixture(autouse=True)
def _reset_singletons():
    reset_store()
    reset_settings()
    yield
    reset_store()
    reset_settings()
    structlog.reset_defaults()


@pytest.fixture
def kv():
    return InMemoryKeyValueStore()


@pytest.fixture
def queue_store(kv):
    return QueueStore(kv)


@pytest.fixture
def fake_sink():
    return FakeSink()
