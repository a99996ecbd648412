"""Poll cycle: decide which feeds are due and run each one in config order."""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from threading import Event
from typing import Callable

import structlog

from ..config import AppConfig
from ..engine import ThreadPoolManager
from ..errors import StoreError, StoreUnrecoverableError
from ..infra import PollOutcome, StateStore
from ..orchestrator import Orchestrator, PollSummary
from .due_table import DueTable


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(slots=True)
class CycleReport:
    """What happened during one wake of the scheduler."""

    started_at: datetime
    summaries: list[PollSummary] = field(default_factory=list)
    aborted: bool = False
    stopped: bool = False
    error: str | None = None

    @property
    def polled(self) -> list[str]:
        return [summary.feed_id for summary in self.summaries]

    def total(self, attribute: str) -> int:
        return sum(getattr(summary, attribute) for summary in self.summaries)


class PollScheduler:
    """Run due feeds once per cycle with per-feed failure isolation.

    A ``StoreError`` aborts the cycle; after ``max_store_failures`` aborted
    cycles in a row ``StoreUnrecoverableError`` is raised instead.
    """

    def __init__(
        self,
        config: AppConfig,
        store: StateStore,
        orchestrator: Orchestrator,
        due_table: DueTable | None = None,
        clock: Callable[[], float] = time.monotonic,
        wall_clock: Callable[[], datetime] = _utcnow,
        stop_event: Event | None = None,
        thread_pool: ThreadPoolManager | None = None,
        logger: structlog.BoundLogger | None = None,
    ) -> None:
        self.config = config
        self.store = store
        self.orchestrator = orchestrator
        self.clock = clock
        self.wall_clock = wall_clock
        self.due_table = due_table or DueTable(clock=clock, wall_clock=wall_clock)
        self.stop_event = stop_event or Event()
        self.thread_pool = thread_pool
        if self.thread_pool is None and config.max_parallel_feeds > 1:
            self.thread_pool = ThreadPoolManager(config.max_parallel_feeds)
        self.logger = logger or structlog.get_logger("feed_to_epub.scheduler")
        self.consecutive_store_failures = 0
        self._seeded = False

    @property
    def interval_secs(self) -> int:
        return self.config.poll_interval_secs

    def seed(self) -> None:
        """Register configured feeds in the store and load their due times."""

        for feed_id, feed in self.config.feeds.items():
            state = self.store.ensure_feed(feed_id, feed.url)
            self.due_table.seed(feed_id, self.config.interval_for(feed_id), state.last_polled_at)
        self._seeded = True
        self.logger.info("scheduler_seeded", feeds=len(self.config.feeds))

    def due_feeds(self, force: bool = False, only: str | None = None) -> list[str]:
        now = self.clock()
        due: list[str] = []
        for feed_id in self.config.feeds:
            if only is not None and feed_id != only:
                continue
            if force or self.due_table.is_due(feed_id, now):
                due.append(feed_id)
            else:
                wait_secs = round(self.due_table.seconds_until_due(feed_id, now))
                self.logger.debug("feed_not_due", feed=feed_id, wait_secs=wait_secs)
        return due

    def run_cycle(self, force: bool = False, only: str | None = None) -> CycleReport:
        if only is not None and only not in self.config.feeds:
            raise KeyError(only)
        report = CycleReport(started_at=self.wall_clock())
        try:
            if not self._seeded:
                self.seed()
            due = self.due_feeds(force=force, only=only)
            self.logger.info("cycle_started", due=due)
            if self.thread_pool is not None and len(due) > 1:
                results = self.thread_pool.map_ordered(self._poll_one, due)
            else:
                results = []
                for feed_id in due:
                    if self.stop_event.is_set():
                        break
                    results.append(self._poll_one(feed_id))
        except StoreError as exc:
            self.consecutive_store_failures += 1
            report.aborted = True
            report.error = str(exc)
            self.logger.error(
                "cycle_aborted_store_error",
                error=str(exc),
                consecutive=self.consecutive_store_failures,
            )
            if self.consecutive_store_failures >= self.config.max_store_failures:
                raise StoreUnrecoverableError(
                    f"state store failed {self.consecutive_store_failures} cycles in a row: {exc}"
                ) from exc
            return report

        self.consecutive_store_failures = 0
        report.summaries = [summary for summary in results if summary is not None]
        report.stopped = self.stop_event.is_set()
        self.logger.info(
            "cycle_finished",
            polled=len(report.summaries),
            committed=report.total("committed"),
            failed=report.total("failed"),
            stopped=report.stopped,
        )
        return report

    def _poll_one(self, feed_id: str) -> PollSummary | None:
        if self.stop_event.is_set():
            return None
        started = self.clock()
        polled_at = self.wall_clock()
        self.due_table.mark_polled(feed_id, started)
        try:
            return self.orchestrator.poll_feed(feed_id, polled_at, self.stop_event)
        except StoreError:
            raise
        except Exception as exc:  # noqa: BLE001
            self.logger.exception("feed_poll_crashed", feed=feed_id, error=str(exc))
            self.store.record_poll(feed_id, polled_at, PollOutcome.FAILED, error=str(exc))
            return PollSummary(feed_id=feed_id, outcome=PollOutcome.FAILED, error=str(exc))

    def close(self) -> None:
        if self.thread_pool is not None:
            self.thread_pool.shutdown()


__all__ = ["CycleReport", "PollScheduler"]
