"""
Queue Processor: the scheduler that delivers due prompts.

Runs as a background asyncio task inside the application process:

    every 60s ─▶ store.get_pending() ─▶ filter is_overdue ─▶ sink.deliver()
                                                              │
                     success: mark processed / remove ◀───────┤
                     failure: log + warn, stays pending ◀─────┘

Item states as seen here:
    pending-not-due ─(clock passes not_before)─▶ pending-due
    pending-due ─▶ delivered (terminal) | delivery-failed (retried, no limit)

Timer ticks, "process now" and forced deliveries all go through one lock,
so two ticks never interleave their read-modify-write of the store.
"""
from __future__ import annotations

import asyncio
import structlog
from datetime import datetime
from typing import Callable, Optional

from job_queue.queue_store import QueueStore
from models.schemas import CompletionPolicy, DeliveryResult, QueueItem
from sinks.base import DeliverySink
from utils.timeutils import is_overdue, utcnow

logger = structlog.get_logger()

PROCESS_INTERVAL_S = 60
DELIVERY_TIMEOUT_S = 10.0

ChangeListener = Callable[[], None]
FailureListener = Callable[[QueueItem, DeliveryResult], None]


class QueueProcessor:
    """
    Usage:
        processor = QueueProcessor(store, FileDropSink())
        processor.subscribe(refresh_view)
        await processor.start()
        ...
        delivered = await processor.process(manual=True)   # "process now"
        await processor.stop()
    """

    def __init__(
        self,
        store: QueueStore,
        sink: DeliverySink,
        interval_s: float = PROCESS_INTERVAL_S,
        delivery_timeout_s: float = DELIVERY_TIMEOUT_S,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.sink = sink
        self.interval_s = interval_s
        self.delivery_timeout_s = delivery_timeout_s
        self._clock = clock
        self._lock = asyncio.Lock()
        self._listeners: list[ChangeListener] = []
        self._failure_listeners: list[FailureListener] = []
        self._held: set[str] = set()          # failed on a sink that waits for a manual retry
        self._task: Optional[asyncio.Task] = None
        self._stop_event: Optional[asyncio.Event] = None

    # ── Lifecycle ─────────────────────────────────────────────

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self) -> None:
        """Start the recurring tick as a background task."""
        if self.running:
            logger.warning("queue_processor_already_running")
            return
        self._stop_event = asyncio.Event()
        self._task = asyncio.create_task(self._run(), name="queue_processor")
        logger.info("queue_processor_started", interval_s=self.interval_s, sink=self.sink.name)

    async def stop(self) -> None:
        """
        Stop future ticks. A tick already delivering is allowed to finish;
        safe to call when not started.
        """
        if self._task is None:
            return
        self._stop_event.set()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("queue_processor_stopped")

    async def _run(self) -> None:
        while not self._stop_event.is_set():
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self.interval_s)
                break
            except asyncio.TimeoutError:
                pass
            try:
                await self.process()
            except Exception as e:
                logger.error("queue_tick_error", error=str(e), exc_info=True)

    # ── Listeners ─────────────────────────────────────────────

    def subscribe(self, listener: ChangeListener) -> None:
        """Register a parameterless "items changed" callback."""
        if listener not in self._listeners:
            self._listeners.append(listener)

    def unsubscribe(self, listener: ChangeListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def subscribe_failures(self, listener: FailureListener) -> None:
        """Register a callback surfacing each failed delivery to the user."""
        if listener not in self._failure_listeners:
            self._failure_listeners.append(listener)

    def unsubscribe_failures(self, listener: FailureListener) -> None:
        if listener in self._failure_listeners:
            self._failure_listeners.remove(listener)

    def _notify_changed(self) -> None:
        for listener in list(self._listeners):
            try:
                listener()
            except Exception as e:
                logger.error("change_listener_error", error=str(e))

    def _notify_failed(self, item: QueueItem, result: DeliveryResult) -> None:
        for listener in list(self._failure_listeners):
            try:
                listener(item, result)
            except Exception as e:
                logger.error("failure_listener_error", item_id=item.id, error=str(e))

    # ── Processing ────────────────────────────────────────────

    async def process(self, manual: bool = False) -> int:
        """
        Deliver every due pending item, in store order.

        Args:
            manual: an explicit "process now"; also retries items the
                    sink only retries on user action.

        Returns the number of items delivered.
        """
        async with self._lock:
            now = self._clock()
            pending = await self.store.get_pending()
            self._held &= {i.id for i in pending}
            due = [i for i in pending if is_overdue(i.not_before, now)]
            if not manual:
                due = [i for i in due if i.id not in self._held]

            if not due:
                return 0

            logger.info("queue_tick", due=len(due), pending=len(pending), manual=manual)

            delivered = 0
            for item in due:
                if await self._deliver_one(item):
                    delivered += 1

        if delivered:
            self._notify_changed()
        return delivered

    async def force_deliver(self, item_id: str) -> bool:
        """Deliver one pending item now, ignoring its not-before time."""
        async with self._lock:
            item = await self.store.get(item_id)
            if item is None or item.processed:
                logger.warning("force_deliver_not_pending", item_id=item_id)
                return False
            ok = await self._deliver_one(item)

        if ok:
            self._notify_changed()
        return ok

    async def _deliver_one(self, item: QueueItem) -> bool:
        try:
            result = await self.sink.deliver(item, timeout=self.delivery_timeout_s)
        except Exception as e:
            result = DeliveryResult(item_id=item.id, status="failed", sink=self.sink.name, error=str(e))

        if not result.ok:
            if not self.sink.retry_on_tick:
                self._held.add(item.id)
            logger.warning("delivery_failed", item_id=item.id, sink=result.sink, error=result.error)
            self._notify_failed(item, result)
            return False

        try:
            if self.sink.completion == CompletionPolicy.REMOVE:
                await self.store.remove(item.id)
            else:
                await self.store.mark_processed(item.id)
        except Exception as e:
            # Delivered but not recorded: the item will be delivered again
            logger.error("delivery_not_recorded", item_id=item.id, error=str(e), exc_info=True)
            return False

        self._held.discard(item.id)
        logger.info("prompt_delivered", item_id=item.id, sink=result.sink, detail=result.detail,
                    latency_ms=result.latency_ms)
        return True
