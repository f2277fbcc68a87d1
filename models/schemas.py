"""
Core data models for the prompt queue.
These are the universal types shared across all modules.
"""
from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import AwareDatetime, BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_item_id() -> str:
    """Short random identifier: 8 hex chars, 32 bits of entropy."""
    return uuid.uuid4().hex[:8]


# ──────────────────────────────────────────────────────────────
#  Enums
# ──────────────────────────────────────────────────────────────

class Confidence(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class CompletionPolicy(str, Enum):
    """What happens to an item once a sink has delivered it."""
    MARK_PROCESSED = "mark_processed"
    REMOVE = "remove"


class DeliveryStatus(str, Enum):
    DELIVERED = "delivered"
    FAILED = "failed"


# ──────────────────────────────────────────────────────────────
#  QueueItem: one deferred prompt
# ──────────────────────────────────────────────────────────────

class QueueItem(BaseModel):
    """
    A prompt waiting for its not-before time.

    Persisted with camelCase keys (createdAt, notBefore, promptText, ...)
    and ISO-8601 timestamps.
    """
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    id: str = Field(default_factory=new_item_id)
    created_at: AwareDatetime = Field(default_factory=_utcnow)
    not_before: AwareDatetime
    prompt_text: str
    origin_context: str = ""                  # workspace path or session hint
    processed: bool = False

    def to_record(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)

    @classmethod
    def from_record(cls, data: dict) -> QueueItem:
        return cls.model_validate(data)


# ──────────────────────────────────────────────────────────────
#  Rate-limit parse result
# ──────────────────────────────────────────────────────────────

class RateLimitInfo(BaseModel):
    """Output of the rate-limit parser. Never persisted."""
    delay_hours: float                        # buffer already included
    reset_at: Optional[datetime] = None
    raw_match: str = ""
    confidence: Confidence = Confidence.HIGH


# ──────────────────────────────────────────────────────────────
#  Delivery result
# ──────────────────────────────────────────────────────────────

class DeliveryResult(BaseModel):
    item_id: str
    status: DeliveryStatus
    sink: str = ""
    detail: str = ""                          # file path, session name, ...
    error: str = ""
    latency_ms: float = 0.0

    @property
    def ok(self) -> bool:
        return self.status == DeliveryStatus.DELIVERED
