"""
Delivery Sinks: base infrastructure for every delivery strategy.

Provides:
- DeliveryError: failure raised inside a strategy
- SinkMetrics: per-sink delivered/failed/latency tracking
- DeliverySink: abstract base wrapping every delivery with a timeout,
  error capture and metrics

A sink makes one due item's prompt available to the user. It never
touches the queue store; the processor applies the sink's completion
policy (mark processed or remove) once delivery succeeded.
"""
from __future__ import annotations

import abc
import asyncio
import time
from collections import deque
import structlog
from typing import Any, Optional

from models.schemas import CompletionPolicy, DeliveryResult, DeliveryStatus, QueueItem

logger = structlog.get_logger()


# ══════════════════════════════════════════════════════════════
#  ERRORS
# ══════════════════════════════════════════════════════════════

class DeliveryError(Exception):
    """Base exception for all delivery operations."""

    def __init__(self, message: str, sink: str = "", item_id: str = ""):
        self.sink = sink
        self.item_id = item_id
        super().__init__(message)


# ══════════════════════════════════════════════════════════════
#  SINK METRICS
# ══════════════════════════════════════════════════════════════

class SinkMetrics:
    """Tracks per-sink delivery, failure and latency metrics over a recent window."""

    def __init__(self, sink: str, window: int = 100):
        self.sink = sink
        self.delivered: int = 0
        self.failed: int = 0
        self._latencies: deque[float] = deque(maxlen=window)
        self._errors: deque[str] = deque(maxlen=window)

    def record_delivery(self, latency_ms: float = 0.0):
        self.delivered += 1
        if latency_ms > 0:
            self._latencies.append(latency_ms)

    def record_failure(self, error: str = ""):
        self.failed += 1
        if error:
            self._errors.append(error)

    @property
    def avg_latency_ms(self) -> float:
        return sum(self._latencies) / len(self._latencies) if self._latencies else 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "sink": self.sink,
            "delivered": self.delivered,
            "failed": self.failed,
            "avg_latency_ms": round(self.avg_latency_ms, 1),
            "recent_errors": list(self._errors)[-10:],
        }


# ══════════════════════════════════════════════════════════════
#  DELIVERY SINK: Abstract Base
# ══════════════════════════════════════════════════════════════

class DeliverySink(abc.ABC):
    """
    Base class for all delivery strategies.

    Subclasses implement _do_deliver, returning a short detail string
    (file path, session name) or raising on failure. The base class turns
    every outcome into a DeliveryResult.

    Class attributes:
        name:               identifier used in logs and results
        default_completion: terminal transition applied after success
        retry_on_tick:      whether a failed item is retried by the timer
                            (False: only by an explicit user action)
        bounded_by_timeout: whether deliver() enforces its timeout; False
                            for strategies whose work cannot be cancelled
    """

    name: str = "sink"
    default_completion: CompletionPolicy = CompletionPolicy.MARK_PROCESSED
    retry_on_tick: bool = True
    bounded_by_timeout: bool = True

    def __init__(self, completion: Optional[CompletionPolicy] = None):
        self.completion = completion or self.default_completion
        self._metrics = SinkMetrics(self.name)

    # ── Abstract hook ─────────────────────────────────────────

    @abc.abstractmethod
    async def _do_deliver(self, item: QueueItem) -> str:
        ...

    # ── Public deliver ────────────────────────────────────────

    async def deliver(self, item: QueueItem, timeout: Optional[float] = None) -> DeliveryResult:
        start = time.monotonic()
        if not self.bounded_by_timeout:
            timeout = None
        try:
            detail = await asyncio.wait_for(self._do_deliver(item), timeout=timeout)
        except asyncio.TimeoutError:
            return self._failed(item, f"delivery timed out after {timeout}s", start)
        except Exception as e:
            return self._failed(item, str(e) or type(e).__name__, start)

        latency = (time.monotonic() - start) * 1000
        self._metrics.record_delivery(latency)
        return DeliveryResult(
            item_id=item.id,
            status=DeliveryStatus.DELIVERED,
            sink=self.name,
            detail=detail or "",
            latency_ms=round(latency, 1),
        )

    def _failed(self, item: QueueItem, error: str, start: float) -> DeliveryResult:
        self._metrics.record_failure(error)
        return DeliveryResult(
            item_id=item.id,
            status=DeliveryStatus.FAILED,
            sink=self.name,
            error=error,
            latency_ms=round((time.monotonic() - start) * 1000, 1),
        )

    # ── Health ────────────────────────────────────────────────

    def health(self) -> dict[str, Any]:
        return {
            "sink": self.name,
            "completion": self.completion.value,
            "retry_on_tick": self.retry_on_tick,
            "metrics": self._metrics.to_dict(),
        }

    async def shutdown(self) -> None:
        pass
