"""
Tests for the queue processor.

Coverage:
  Tick:          due filtering, store order, failure isolation, completion policy
  Retry:         failed items stay pending, held items on manual-retry sinks
  Force:         bypasses not_before, unknown/processed ids
  Notification:  only after deliveries, failure listeners, raising listeners
  Lifecycle:     start/stop, double start, stop without start, timeouts
"""
import asyncio
import pytest
from unittest.mock import MagicMock

from conftest import NOW, FakeSink, make_item
from job_queue.processor import QueueProcessor
from models.schemas import CompletionPolicy, DeliveryStatus


def make_processor(store, sink, **kwargs) -> QueueProcessor:
    kwargs.setdefault("clock", lambda: NOW)
    return QueueProcessor(store, sink, **kwargs)


# ══════════════════════════════════════════════════════════════
#  TICK
# ══════════════════════════════════════════════════════════════

class TestProcess:
    @pytest.mark.asyncio
    async def test_delivers_only_due_items(self, queue_store, fake_sink):
        await queue_store.add(make_item("aaaa0001", due_in_hours=-2))
        await queue_store.add(make_item("bbbb0002", due_in_hours=1))
        await queue_store.add(make_item("cccc0003", due_in_hours=0))

        delivered = await make_processor(queue_store, fake_sink).process()

        assert delivered == 2
        assert fake_sink.delivered == ["aaaa0001", "cccc0003"]
        assert [i.id for i in await queue_store.get_pending()] == ["bbbb0002"]

    @pytest.mark.asyncio
    async def test_skips_processed_items(self, queue_store, fake_sink):
        await queue_store.add(make_item("aaaa0001", processed=True))
        assert await make_processor(queue_store, fake_sink).process() == 0
        assert fake_sink.delivered == []

    @pytest.mark.asyncio
    async def test_empty_queue(self, queue_store, fake_sink):
        assert await make_processor(queue_store, fake_sink).process() == 0

    @pytest.mark.asyncio
    async def test_failure_does_not_block_others(self, queue_store):
        sink = FakeSink(failing={"bbbb0002"})
        for item_id in ("aaaa0001", "bbbb0002", "cccc0003"):
            await queue_store.add(make_item(item_id))

        delivered = await make_processor(queue_store, sink).process()

        assert delivered == 2
        assert sink.delivered == ["aaaa0001", "cccc0003"]
        assert [i.id for i in await queue_store.get_pending()] == ["bbbb0002"]

    @pytest.mark.asyncio
    async def test_failed_item_retried_next_tick(self, queue_store):
        sink = FakeSink(failing={"aaaa0001"})
        processor = make_processor(queue_store, sink)
        await queue_store.add(make_item("aaaa0001"))

        assert await processor.process() == 0
        sink.failing.clear()
        assert await processor.process() == 1
        assert await queue_store.get_pending() == []

    @pytest.mark.asyncio
    async def test_mark_processed_completion_keeps_item(self, queue_store, fake_sink):
        await queue_store.add(make_item("aaaa0001"))
        await make_processor(queue_store, fake_sink).process()
        items = await queue_store.get_all()
        assert [(i.id, i.processed) for i in items] == [("aaaa0001", True)]

    @pytest.mark.asyncio
    async def test_remove_completion_drops_item(self, queue_store):
        sink = FakeSink(completion=CompletionPolicy.REMOVE)
        await queue_store.add(make_item("aaaa0001"))
        await make_processor(queue_store, sink).process()
        assert await queue_store.get_all() == []

    @pytest.mark.asyncio
    async def test_delivered_item_not_delivered_again(self, queue_store, fake_sink):
        processor = make_processor(queue_store, fake_sink)
        await queue_store.add(make_item("aaaa0001"))
        await processor.process()
        await processor.process()
        assert fake_sink.delivered == ["aaaa0001"]

    @pytest.mark.asyncio
    async def test_item_becomes_due_as_clock_advances(self, queue_store, fake_sink):
        clock = MagicMock(return_value=NOW)
        processor = QueueProcessor(queue_store, fake_sink, clock=clock)
        await queue_store.add(make_item("aaaa0001", due_in_hours=0.5))

        assert await processor.process() == 0
        clock.return_value = NOW.replace(hour=13)
        assert await processor.process() == 1

    @pytest.mark.asyncio
    async def test_concurrent_ticks_deliver_once(self, queue_store):
        sink = FakeSink(delay_s=0.01)
        processor = make_processor(queue_store, sink)
        for item_id in ("aaaa0001", "bbbb0002"):
            await queue_store.add(make_item(item_id))

        results = await asyncio.gather(processor.process(), processor.process(manual=True))

        assert sorted(results) == [0, 2]
        assert sink.delivered == ["aaaa0001", "bbbb0002"]


# ══════════════════════════════════════════════════════════════
#  MANUAL-RETRY SINKS
# ══════════════════════════════════════════════════════════════

class TestHeldItems:
    @pytest.mark.asyncio
    async def test_timer_skips_held_item_until_manual_process(self, queue_store):
        sink = FakeSink(failing={"aaaa0001"}, retry_on_tick=False)
        processor = make_processor(queue_store, sink)
        await queue_store.add(make_item("aaaa0001"))

        assert await processor.process() == 0
        sink.failing.clear()
        assert await processor.process() == 0
        assert sink.delivered == []

        assert await processor.process(manual=True) == 1
        assert sink.delivered == ["aaaa0001"]

    @pytest.mark.asyncio
    async def test_held_item_does_not_hold_others(self, queue_store):
        sink = FakeSink(failing={"aaaa0001"}, retry_on_tick=False)
        processor = make_processor(queue_store, sink)
        await queue_store.add(make_item("aaaa0001"))
        await processor.process()

        await queue_store.add(make_item("bbbb0002"))
        assert await processor.process() == 1
        assert sink.delivered == ["bbbb0002"]

    @pytest.mark.asyncio
    async def test_force_deliver_releases_held_item(self, queue_store):
        sink = FakeSink(failing={"aaaa0001"}, retry_on_tick=False)
        processor = make_processor(queue_store, sink)
        await queue_store.add(make_item("aaaa0001"))
        await processor.process()

        sink.failing.clear()
        assert await processor.force_deliver("aaaa0001") is True
        assert await queue_store.get_pending() == []

    @pytest.mark.asyncio
    async def test_removed_item_is_no_longer_held(self, queue_store):
        sink = FakeSink(failing={"aaaa0001"}, retry_on_tick=False)
        processor = make_processor(queue_store, sink)
        await queue_store.add(make_item("aaaa0001"))
        await processor.process()
        assert processor._held == {"aaaa0001"}

        await queue_store.remove("aaaa0001")
        await processor.process()
        assert processor._held == set()


# ══════════════════════════════════════════════════════════════
#  FORCE DELIVER
# ══════════════════════════════════════════════════════════════

class TestForceDeliver:
    @pytest.mark.asyncio
    async def test_bypasses_not_before(self, queue_store, fake_sink):
        await queue_store.add(make_item("aaaa0001", due_in_hours=4))
        assert await make_processor(queue_store, fake_sink).force_deliver("aaaa0001") is True
        assert fake_sink.delivered == ["aaaa0001"]
        assert (await queue_store.get("aaaa0001")).processed is True

    @pytest.mark.asyncio
    async def test_unknown_id(self, queue_store, fake_sink):
        assert await make_processor(queue_store, fake_sink).force_deliver("missing0") is False

    @pytest.mark.asyncio
    async def test_processed_item(self, queue_store, fake_sink):
        await queue_store.add(make_item("aaaa0001", processed=True))
        assert await make_processor(queue_store, fake_sink).force_deliver("aaaa0001") is False
        assert fake_sink.delivered == []

    @pytest.mark.asyncio
    async def test_failure(self, queue_store):
        sink = FakeSink(failing={"aaaa0001"})
        await queue_store.add(make_item("aaaa0001", due_in_hours=4))
        assert await make_processor(queue_store, sink).force_deliver("aaaa0001") is False
        assert [i.id for i in await queue_store.get_pending()] == ["aaaa0001"]


# ══════════════════════════════════════════════════════════════
#  NOTIFICATIONS
# ══════════════════════════════════════════════════════════════

class TestNotifications:
    @pytest.mark.asyncio
    async def test_listener_called_once_after_delivering_tick(self, queue_store, fake_sink):
        processor = make_processor(queue_store, fake_sink)
        listener = MagicMock()
        processor.subscribe(listener)
        await queue_store.add(make_item("aaaa0001"))
        await queue_store.add(make_item("bbbb0002"))

        await processor.process()

        listener.assert_called_once_with()

    @pytest.mark.asyncio
    async def test_no_notification_for_empty_tick(self, queue_store, fake_sink):
        processor = make_processor(queue_store, fake_sink)
        listener = MagicMock()
        processor.subscribe(listener)
        await queue_store.add(make_item("aaaa0001", due_in_hours=2))

        await processor.process()

        listener.assert_not_called()

    @pytest.mark.asyncio
    async def test_no_change_notification_when_all_fail(self, queue_store):
        sink = FakeSink(failing={"aaaa0001"})
        processor = make_processor(queue_store, sink)
        changed, failed = MagicMock(), MagicMock()
        processor.subscribe(changed)
        processor.subscribe_failures(failed)
        await queue_store.add(make_item("aaaa0001"))

        await processor.process()

        changed.assert_not_called()
        failed.assert_called_once()
        item, result = failed.call_args.args
        assert item.id == "aaaa0001"
        assert result.status == DeliveryStatus.FAILED
        assert "cannot deliver aaaa0001" in result.error

    @pytest.mark.asyncio
    async def test_force_deliver_notifies(self, queue_store, fake_sink):
        processor = make_processor(queue_store, fake_sink)
        listener = MagicMock()
        processor.subscribe(listener)
        await queue_store.add(make_item("aaaa0001", due_in_hours=3))

        await processor.force_deliver("aaaa0001")

        listener.assert_called_once_with()

    @pytest.mark.asyncio
    async def test_unsubscribe(self, queue_store, fake_sink):
        processor = make_processor(queue_store, fake_sink)
        listener = MagicMock()
        processor.subscribe(listener)
        processor.unsubscribe(listener)
        await queue_store.add(make_item("aaaa0001"))

        await processor.process()

        listener.assert_not_called()

    @pytest.mark.asyncio
    async def test_raising_listener_does_not_affect_others(self, queue_store, fake_sink):
        processor = make_processor(queue_store, fake_sink)
        broken = MagicMock(side_effect=RuntimeError("boom"))
        healthy = MagicMock()
        processor.subscribe(broken)
        processor.subscribe(healthy)
        await queue_store.add(make_item("aaaa0001"))

        assert await processor.process() == 1
        healthy.assert_called_once_with()


# ══════════════════════════════════════════════════════════════
#  LIFECYCLE & TIMEOUTS
# ══════════════════════════════════════════════════════════════

class TestLifecycle:
    @pytest.mark.asyncio
    async def test_start_ticks_and_stop(self, queue_store, fake_sink):
        processor = make_processor(queue_store, fake_sink, interval_s=0.01)
        await queue_store.add(make_item("aaaa0001"))

        await processor.start()
        assert processor.running
        for _ in range(100):
            if fake_sink.delivered:
                break
            await asyncio.sleep(0.01)
        await processor.stop()

        assert fake_sink.delivered == ["aaaa0001"]
        assert not processor.running

    @pytest.mark.asyncio
    async def test_no_tick_before_interval(self, queue_store, fake_sink):
        processor = make_processor(queue_store, fake_sink, interval_s=60)
        await queue_store.add(make_item("aaaa0001"))

        await processor.start()
        await asyncio.sleep(0.05)
        await processor.stop()

        assert fake_sink.delivered == []

    @pytest.mark.asyncio
    async def test_double_start_keeps_one_task(self, queue_store, fake_sink):
        processor = make_processor(queue_store, fake_sink)
        await processor.start()
        task = processor._task
        await processor.start()
        assert processor._task is task
        await processor.stop()

    @pytest.mark.asyncio
    async def test_stop_without_start(self, queue_store, fake_sink):
        await make_processor(queue_store, fake_sink).stop()

    @pytest.mark.asyncio
    async def test_stop_lets_inflight_delivery_finish(self, queue_store):
        sink = FakeSink(delay_s=0.1)
        processor = make_processor(queue_store, sink, interval_s=0.01)
        await queue_store.add(make_item("aaaa0001"))

        await processor.start()
        await asyncio.sleep(0.05)
        await processor.stop()

        assert sink.delivered == ["aaaa0001"]
        assert (await queue_store.get("aaaa0001")).processed is True

    @pytest.mark.asyncio
    async def test_slow_delivery_times_out(self, queue_store):
        sink = FakeSink(delay_s=1.0)
        processor = make_processor(queue_store, sink, delivery_timeout_s=0.05)
        failed = MagicMock()
        processor.subscribe_failures(failed)
        await queue_store.add(make_item("aaaa0001"))

        assert await processor.process() == 0

        assert [i.id for i in await queue_store.get_pending()] == ["aaaa0001"]
        _, result = failed.call_args.args
        assert "timed out" in result.error
