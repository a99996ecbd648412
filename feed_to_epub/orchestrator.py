"""Per-feed pipeline wiring fetching, normalising, dedup, packaging and output."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from threading import Event
from typing import Callable

import structlog

from .config import AppConfig, FeedConfig
from .engine import (
    ConditionalFetcher,
    DedupFilter,
    EpubPackager,
    FeedItem,
    FetchRequest,
    OutputWriter,
    normalize_feed,
)
from .errors import FeedParseError, FetchError, OutputWriteError
from .infra import PollOutcome, StateStore
from .logging_conf import feed_logger

Normalizer = Callable[[str, bytes, str | None], list[FeedItem]]
Producer = Callable[[FeedItem, FeedConfig], bytes]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(slots=True)
class PollSummary:
    """Outcome of one poll of one feed."""

    feed_id: str
    outcome: PollOutcome
    new: int = 0
    skipped: int = 0
    committed: int = 0
    failed: int = 0
    write_errors: int = 0
    interrupted: bool = False
    error: str | None = None
    artifacts: list[Path] = field(default_factory=list)

    @property
    def tokens_advanced(self) -> bool:
        return self.outcome is PollOutcome.OK and not (self.write_errors or self.interrupted)


class Orchestrator:
    """Run one feed through fetch, dedup, convert and commit.

    Fetch and parse failures are recorded as a failed poll. Generation errors
    are recorded per item and the pass continues. Write errors leave the item
    unrecorded so it is picked up again. ``StoreError`` is not handled here
    and aborts the caller's cycle.
    """

    def __init__(
        self,
        config: AppConfig,
        store: StateStore,
        fetcher: ConditionalFetcher,
        writer: OutputWriter | None = None,
        normalizer: Normalizer = normalize_feed,
        producer: Producer | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.config = config
        self.store = store
        self.fetcher = fetcher
        self.normalizer = normalizer
        self.producer = producer or EpubPackager()
        self.clock = clock
        self.writer = writer or OutputWriter(config, store, clock=clock)
        self.dedup = DedupFilter(store)

    @classmethod
    def from_config(cls, config: AppConfig, store: StateStore) -> "Orchestrator":
        fetcher = ConditionalFetcher(
            timeout=config.http_request_timeout_secs,
            user_agent=config.user_agent,
        )
        return cls(config, store, fetcher)

    def close(self) -> None:
        self.fetcher.close()

    def poll_feed(
        self,
        feed_id: str,
        polled_at: datetime | None = None,
        stop_event: Event | None = None,
    ) -> PollSummary:
        feed = self.config.feeds[feed_id]
        polled_at = polled_at or self.clock()
        log = feed_logger(feed_id)
        state = self.store.get_feed(feed_id) or self.store.ensure_feed(feed_id, feed.url)

        request = FetchRequest(
            url=feed.url,
            etag=state.etag,
            last_modified=state.last_modified,
            conditional_type=feed.conditional_type,
        )
        try:
            result = self.fetcher.fetch(request)
        except FetchError as exc:
            log.warning("fetch_failed", url=feed.url, status=exc.status_code, error=str(exc))
            return self._record_failure(feed_id, polled_at, exc)

        if result.not_modified:
            self.store.record_poll(feed_id, polled_at, PollOutcome.NOT_MODIFIED)
            log.info("feed_not_modified", url=feed.url)
            return PollSummary(feed_id=feed_id, outcome=PollOutcome.NOT_MODIFIED)

        try:
            items = self.normalizer(feed_id, result.content, result.content_type)
        except FeedParseError as exc:
            log.warning("feed_parse_failed", url=feed.url, error=str(exc))
            return self._record_failure(feed_id, polled_at, exc)

        partition = self.dedup.partition(feed_id, items)
        summary = PollSummary(
            feed_id=feed_id,
            outcome=PollOutcome.OK,
            new=len(partition.new),
            skipped=len(partition.skipped),
        )
        for item in partition.new:
            if stop_event is not None and stop_event.is_set():
                summary.interrupted = True
                log.info("feed_pass_interrupted", handled=summary.committed + summary.failed)
                break
            self._convert(feed_id, feed, item, summary, log)

        if summary.tokens_advanced:
            self.store.record_poll(
                feed_id,
                polled_at,
                PollOutcome.OK,
                etag=result.etag,
                last_modified=result.last_modified,
            )
        else:
            # Keep the previous validators so the next poll refetches the document
            self.store.record_poll(feed_id, polled_at, PollOutcome.OK)
        log.info(
            "feed_polled",
            new=summary.new,
            skipped=summary.skipped,
            committed=summary.committed,
            failed=summary.failed,
            write_errors=summary.write_errors,
            interrupted=summary.interrupted,
        )
        return summary

    def _convert(
        self,
        feed_id: str,
        feed: FeedConfig,
        item: FeedItem,
        summary: PollSummary,
        log: structlog.BoundLogger,
    ) -> None:
        try:
            payload = self.producer(item, feed)
        except Exception as exc:  # noqa: BLE001
            log.error("item_generation_failed", item=item.item_id, error=str(exc))
            self.store.record_failure(feed_id, item.item_id, str(exc) or type(exc).__name__, self.clock())
            summary.failed += 1
            return
        try:
            path = self.writer.commit(feed_id, item, payload)
        except OutputWriteError as exc:
            log.error("item_write_failed", item=item.item_id, error=str(exc))
            summary.write_errors += 1
            return
        summary.committed += 1
        summary.artifacts.append(path)
        log.info("item_committed", item=item.item_id, title=item.title, path=str(path))

    def _record_failure(self, feed_id: str, polled_at: datetime, exc: Exception) -> PollSummary:
        self.store.record_poll(feed_id, polled_at, PollOutcome.FAILED, error=str(exc))
        return PollSummary(feed_id=feed_id, outcome=PollOutcome.FAILED, error=str(exc))


__all__ = ["Normalizer", "Orchestrator", "PollSummary", "Producer"]
