"""APScheduler wrapper chaining one poll cycle after another."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from threading import Event
from typing import Any

import structlog
from apscheduler.schedulers import SchedulerNotRunningError
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.date import DateTrigger

from ..errors import StoreUnrecoverableError
from .poller import PollScheduler

JOB_PREFIX = "poll-cycle::"


class APSchedulerAdapter:
    """Drive ``PollScheduler.run_cycle`` from a background APScheduler.

    Each completed cycle schedules the next one ``interval`` seconds later, so
    the sleep never overlaps a pass. Every cycle gets its own job id because a
    finished date job is removed by APScheduler after it fires.
    """

    def __init__(self, poller: PollScheduler, scheduler: Any | None = None) -> None:
        self.poller = poller
        self.scheduler = scheduler or BackgroundScheduler(timezone=timezone.utc)
        self.logger = structlog.get_logger("feed_to_epub.scheduler").bind(component="apscheduler")
        self.started = False
        self.failure: BaseException | None = None
        self.finished = Event()
        self._cycles = 0

    @property
    def stop_event(self) -> Event:
        return self.poller.stop_event

    def start(self, first_run: datetime | None = None) -> None:
        if not self.started:
            self.scheduler.start()
            self.started = True
            self.logger.info("apscheduler_started", interval=self.poller.interval_secs)
        self._schedule(first_run or datetime.now(timezone.utc))

    def request_stop(self) -> None:
        self.stop_event.set()
        self.finished.set()

    def wait(self, timeout: float | None = None) -> bool:
        return self.finished.wait(timeout)

    def shutdown(self) -> None:
        if self.started:
            # Waits for an in-flight cycle, which stops at the next item boundary
            self.scheduler.shutdown(wait=True)
            self.started = False
            self.logger.info("apscheduler_stopped")

    def _schedule(self, run_date: datetime) -> None:
        self._cycles += 1
        job_id = f"{JOB_PREFIX}{self._cycles}"
        try:
            self.scheduler.add_job(
                self.run_cycle,
                trigger=DateTrigger(run_date=run_date),
                id=job_id,
                max_instances=1,
                misfire_grace_time=None,
                replace_existing=True,
            )
        except SchedulerNotRunningError:
            self.logger.info("cycle_not_scheduled_shutdown")
            return
        self.logger.debug("cycle_scheduled", job=job_id, run_date=run_date.isoformat())

    def run_cycle(self) -> None:
        try:
            self.poller.run_cycle()
        except StoreUnrecoverableError as exc:
            self.logger.error("store_unrecoverable", error=str(exc))
            self.failure = exc
            self.finished.set()
            return
        except Exception as exc:  # noqa: BLE001
            # Keep the chain alive; the next cycle gets a fresh attempt
            self.logger.exception("cycle_crashed", error=str(exc))
        if self.stop_event.is_set():
            self.finished.set()
            return
        self._schedule(datetime.now(timezone.utc) + timedelta(seconds=self.poller.interval_secs))


__all__ = ["APSchedulerAdapter", "JOB_PREFIX"]
