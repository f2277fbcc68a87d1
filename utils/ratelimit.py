"""
Rate-limit message parser: turns free-form "try again later" errors into
a delivery delay.

Handles messages such as:
  - "Your limit will reset at 2:30 PM"
  - "Usage limit reached. Resets in 4h 30m."
  - "Rate limit exceeded. Retry after 45 minutes."
  - "Too many requests. Try again in 2 hours 15 minutes."
  - "try again after 30 seconds"

Matchers run in a fixed order, most explicit first; the first one that
produces a result wins. Every delay carries a 5-minute safety buffer so a
prompt is not delivered seconds before the limit actually lifts.
"""
from __future__ import annotations

import math
import re
from datetime import datetime, time, timedelta
from typing import Callable, Optional

from models.schemas import Confidence, RateLimitInfo
from utils.timeutils import add_hours, utcnow

SAFETY_BUFFER_HOURS = 5 / 60

_CLOCK = r"(\d{1,2}):(\d{2})(?::(\d{2}))?(?:\s*(am|pm)\b)?"

_ABS_RESET_RE = re.compile(
    r"(?:resets?|available|try\s+again|retry)\s+at\s+" + _CLOCK, re.IGNORECASE
)
_AT_TIME_RE = re.compile(r"\bat\s+" + _CLOCK, re.IGNORECASE)
_COMBINED_RE = re.compile(
    r"(\d+)\s*h(?:ours?)?\s+(\d+)\s*m(?:in(?:utes?)?)?", re.IGNORECASE
)
_HOURS_RE = re.compile(r"(?:in|after|for)\s+(\d+(?:\.\d+)?)\s*h(?:ours?)?", re.IGNORECASE)
_BARE_HOURS_RE = re.compile(r"(\d+(?:\.\d+)?)\s*hours?", re.IGNORECASE)
_MINUTES_RE = re.compile(
    r"(?:in|after|for)\s+(\d+(?:\.\d+)?)\s*m(?:in(?:utes?)?)?", re.IGNORECASE
)
_SECONDS_RE = re.compile(r"(?:in|after|for)\s+(\d+)\s*s(?:ec(?:onds?)?)?", re.IGNORECASE)


def add_buffer(hours: float) -> float:
    """Add the safety buffer and round half-up to one decimal."""
    return math.floor((hours + SAFETY_BUFFER_HOURS) * 10 + 0.5) / 10


def _local_now(now: Optional[datetime]) -> datetime:
    return (now or utcnow()).astimezone()


# ──────────────────────────────────────────────────────────────
#  Absolute clock times
# ──────────────────────────────────────────────────────────────

def _resolve_clock(match: re.Match, now: datetime, confidence: Confidence) -> Optional[RateLimitInfo]:
    hour = int(match.group(1))
    minute = int(match.group(2))
    ampm = (match.group(4) or "").lower()

    if ampm == "pm" and hour != 12:
        hour += 12
    elif ampm == "am" and hour == 12:
        hour = 0

    if hour > 23 or minute > 59:
        return None

    # Day arithmetic on the naive wall time; the offset is taken per date so
    # a DST change between now and the reset does not shift the clock time
    wall = datetime.combine(now.date(), time(hour, minute))
    reset_at = wall.astimezone()
    if reset_at <= now:
        reset_at = (wall + timedelta(days=1)).astimezone()

    raw_hours = (reset_at - now) / timedelta(hours=1)
    return RateLimitInfo(
        delay_hours=add_buffer(raw_hours),
        reset_at=reset_at,
        raw_match=match.group(0),
        confidence=confidence,
    )


def _match_reset_at(text: str, now: datetime) -> Optional[RateLimitInfo]:
    m = _ABS_RESET_RE.search(text)
    return _resolve_clock(m, now, Confidence.HIGH) if m else None


def _match_at_time(text: str, now: datetime) -> Optional[RateLimitInfo]:
    # Weaker signal: "at 14:30" may be incidental
    m = _AT_TIME_RE.search(text)
    return _resolve_clock(m, now, Confidence.MEDIUM) if m else None


# ──────────────────────────────────────────────────────────────
#  Relative durations
# ──────────────────────────────────────────────────────────────

def _relative(total_hours: float, raw: str, now: datetime, confidence: Confidence) -> RateLimitInfo:
    delay = add_buffer(total_hours)
    return RateLimitInfo(
        delay_hours=delay,
        reset_at=add_hours(now, delay),
        raw_match=raw,
        confidence=confidence,
    )


def _match_combined(text: str, now: datetime) -> Optional[RateLimitInfo]:
    m = _COMBINED_RE.search(text)
    if not m:
        return None
    total = int(m.group(1)) + int(m.group(2)) / 60
    return _relative(total, m.group(0), now, Confidence.HIGH)


def _match_hours(text: str, now: datetime) -> Optional[RateLimitInfo]:
    m = _HOURS_RE.search(text)
    return _relative(float(m.group(1)), m.group(0), now, Confidence.HIGH) if m else None


def _match_bare_hours(text: str, now: datetime) -> Optional[RateLimitInfo]:
    m = _BARE_HOURS_RE.search(text)
    return _relative(float(m.group(1)), m.group(0), now, Confidence.MEDIUM) if m else None


def _match_minutes(text: str, now: datetime) -> Optional[RateLimitInfo]:
    m = _MINUTES_RE.search(text)
    return _relative(float(m.group(1)) / 60, m.group(0), now, Confidence.HIGH) if m else None


def _match_seconds(text: str, now: datetime) -> Optional[RateLimitInfo]:
    m = _SECONDS_RE.search(text)
    return _relative(int(m.group(1)) / 3600, m.group(0), now, Confidence.MEDIUM) if m else None


MATCHERS: tuple[Callable[[str, datetime], Optional[RateLimitInfo]], ...] = (
    _match_reset_at,
    _match_at_time,
    _match_combined,
    _match_hours,
    _match_bare_hours,
    _match_minutes,
    _match_seconds,
)


def parse_rate_limit_message(text: str, now: Optional[datetime] = None) -> Optional[RateLimitInfo]:
    """
    Extract a reset delay from a raw rate-limit error.

    Returns None when no pattern matches; the caller should then ask for a
    manual delay.
    """
    if not text:
        return None
    current = _local_now(now)
    for matcher in MATCHERS:
        info = matcher(text, current)
        if info is not None:
            return info
    return None


def parse_rate_limit_delay(text: str, now: Optional[datetime] = None) -> Optional[float]:
    """Delay-only shortcut over parse_rate_limit_message."""
    info = parse_rate_limit_message(text, now)
    return info.delay_hours if info else None


def suggest_delay_hours(text: str, default: float) -> float:
    """Detected delay rounded up to one decimal, or the default."""
    parsed = parse_rate_limit_delay(text)
    if parsed:
        return math.ceil(parsed * 10) / 10
    return default
