"""
Date-range cache for calendar shift queries.
"""

import time
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Callable, Dict, List, Optional, Set, Tuple

from ..models import Shift, as_utc

DEFAULT_TTL_SECONDS = 300.0
DEFAULT_BUFFER_DAYS = 3


def calendar_date(value: datetime) -> date:
    """Calendar date of a timestamp, in UTC for aware values."""
    return as_utc(value).date()


def buffered_range(start: datetime, end: datetime, buffer_days: int) -> Tuple[datetime, datetime]:
    padding = timedelta(days=buffer_days)
    return start - padding, end + padding


@dataclass
class RangeCacheEntry:
    """Shifts fetched for one calendar-date window."""

    key: str
    shifts: List[Shift]
    timestamp: float
    start_date: date
    end_date: date
    requested_start: date
    requested_end: date

    def contains(self, day: date) -> bool:
        return self.start_date <= day <= self.end_date


class ShiftRangeCache:
    """TTL cache of shift lists keyed by calendar-date range.

    Also tracks which keys have a fetch in flight so a caller can skip
    duplicate loads rather than queue them.
    """

    def __init__(self, ttl: float = DEFAULT_TTL_SECONDS, clock: Optional[Callable[[], float]] = None):
        self.ttl = ttl
        self._clock = clock or time.monotonic
        self._entries: Dict[str, RangeCacheEntry] = {}
        self._in_flight: Set[str] = set()

    @staticmethod
    def make_key(start: date, end: date) -> str:
        return f"{start.isoformat()}_{end.isoformat()}"

    def get_valid(self, key: str) -> Optional[RangeCacheEntry]:
        """Entry for ``key`` if it is younger than the TTL."""
        entry = self._entries.get(key)
        if entry is None:
            return None
        if self._clock() - entry.timestamp >= self.ttl:
            del self._entries[key]
            return None
        return entry

    def store(self, key: str, shifts: List[Shift], start_date: date, end_date: date,
              requested_start: Optional[date] = None,
              requested_end: Optional[date] = None) -> RangeCacheEntry:
        entry = RangeCacheEntry(
            key=key,
            shifts=list(shifts),
            timestamp=self._clock(),
            start_date=start_date,
            end_date=end_date,
            requested_start=requested_start or start_date,
            requested_end=requested_end or end_date,
        )
        self._entries[key] = entry
        return entry

    def is_loading(self, key: str) -> bool:
        return key in self._in_flight

    def mark_loading(self, key: str) -> bool:
        """Claim ``key`` for a fetch; False if it is already claimed."""
        if key in self._in_flight:
            return False
        self._in_flight.add(key)
        return True

    def finish_loading(self, key: str):
        self._in_flight.discard(key)

    @property
    def in_flight(self) -> Set[str]:
        return set(self._in_flight)

    def invalidate_all(self):
        self._entries.clear()

    def invalidate_containing(self, day: date) -> List[str]:
        """Drop entries whose fetched window contains ``day``."""
        keys = [key for key, entry in self._entries.items() if entry.contains(day)]
        for key in keys:
            del self._entries[key]
        return keys

    def keys(self) -> List[str]:
        return list(self._entries)

    def __contains__(self, key: str) -> bool:
        return key in self._entries

    def __len__(self) -> int:
        return len(self._entries)
