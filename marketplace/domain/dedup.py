"""
Notification deduplication.

``NotificationDeduper`` keys alerts on ``(request_id, driver_id, version)``
so a mutation of the request (version bump) re-arms the alert for every
driver.  Entries live for a TTL (default 5 min) and are evicted lazily on
each ``mark_alerted``.

``RecentlyProcessed`` is the client-side companion: a bounded FIFO set
with no TTL sweep, oldest entry dropped once capacity is exceeded.

Both are optimisations only.  Losing their state (process restart) may
cause a duplicate alert but never hides a new one.
"""

from __future__ import annotations

from collections import OrderedDict
from datetime import datetime, timedelta
from typing import Hashable

from .clock import Clock, utcnow

DedupKey = tuple[int, int, int]


class NotificationDeduper:
    def __init__(self, ttl_seconds: float = 300, clock: Clock = utcnow):
        self.ttl = timedelta(seconds=ttl_seconds)
        self._clock = clock
        self._alerted: dict[DedupKey, datetime] = {}

    def should_alert(self, request_id: int, driver_id: int, version: int) -> bool:
        alerted_at = self._alerted.get((request_id, driver_id, version))
        if alerted_at is None:
            return True
        return self._clock() - alerted_at >= self.ttl

    def mark_alerted(self, request_id: int, driver_id: int, version: int) -> None:
        now = self._clock()
        self._alerted[(request_id, driver_id, version)] = now
        self._evict(now)

    def _evict(self, now: datetime) -> None:
        expired = [k for k, at in self._alerted.items() if now - at >= self.ttl]
        for key in expired:
            del self._alerted[key]

    def clear(self) -> None:
        self._alerted.clear()

    def __len__(self) -> int:
        return len(self._alerted)


class RecentlyProcessed:
    def __init__(self, max_size: int = 100):
        self.max_size = max_size
        self._seen: OrderedDict[Hashable, None] = OrderedDict()

    def __contains__(self, key: Hashable) -> bool:
        return key in self._seen

    def add(self, key: Hashable) -> None:
        if key in self._seen:
            return
        self._seen[key] = None
        while len(self._seen) > self.max_size:
            self._seen.popitem(last=False)

    def clear(self) -> None:
        self._seen.clear()

    def __len__(self) -> int:
        return len(self._seen)
