"""Per-feed due times on a monotonic clock."""

from __future__ import annotations

import time
from dataclasses import dataclass
from datetime import datetime, timezone
from threading import Lock
from typing import Callable


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(slots=True)
class DueEntry:
    interval: float
    next_due: float | None = None


class DueTable:
    """Track when each feed may be polled again.

    A feed whose poll started at monotonic time ``T`` becomes due at
    ``T + interval``. Feeds that were never polled are always due. Seeding
    from the persisted wall-clock ``last_polled_at`` carries the schedule
    across restarts.
    """

    def __init__(
        self,
        clock: Callable[[], float] = time.monotonic,
        wall_clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.clock = clock
        self.wall_clock = wall_clock
        self._entries: dict[str, DueEntry] = {}
        self._lock = Lock()

    def seed(self, feed_id: str, interval: float, last_polled_at: datetime | None) -> None:
        next_due: float | None = None
        if last_polled_at is not None:
            if last_polled_at.tzinfo is None:
                last_polled_at = last_polled_at.replace(tzinfo=timezone.utc)
            # Clock skew can put the last poll in the future; treat it as "just now"
            elapsed = max(0.0, (self.wall_clock() - last_polled_at).total_seconds())
            next_due = self.clock() - elapsed + interval
        with self._lock:
            self._entries[feed_id] = DueEntry(interval=interval, next_due=next_due)

    def __contains__(self, feed_id: object) -> bool:
        return feed_id in self._entries

    def is_due(self, feed_id: str, now: float | None = None) -> bool:
        with self._lock:
            entry = self._entries.get(feed_id)
        if entry is None or entry.next_due is None:
            return True
        now = self.clock() if now is None else now
        return now >= entry.next_due

    def mark_polled(self, feed_id: str, started_at: float) -> None:
        with self._lock:
            entry = self._entries.get(feed_id)
            if entry is None:
                raise KeyError(feed_id)
            entry.next_due = started_at + entry.interval

    def seconds_until_due(self, feed_id: str, now: float | None = None) -> float:
        with self._lock:
            entry = self._entries.get(feed_id)
        if entry is None or entry.next_due is None:
            return 0.0
        now = self.clock() if now is None else now
        return max(0.0, entry.next_due - now)


__all__ = ["DueEntry", "DueTable"]
