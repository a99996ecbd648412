from __future__ import annotations

import pytest

from feed_to_epub.engine import normalize_feed
from feed_to_epub.errors import StoreError, StoreUnrecoverableError
from feed_to_epub.infra import MemoryStateStore, PollOutcome, SQLiteStateStore
from feed_to_epub.orchestrator import Orchestrator
from feed_to_epub.scheduler import PollScheduler

A_URL = "https://a.example.com/feed.xml"
B_URL = "https://b.example.com/feed.xml"
C_URL = "https://c.example.com/feed.xml"


class FlakyStore(MemoryStateStore):
    """Memory store whose reads can be switched to fail."""

    def __init__(self) -> None:
        super().__init__()
        self.broken = False

    def get_feed(self, feed_id: str):  # noqa: ANN201
        if self.broken:
            raise StoreError("database is locked")
        return super().get_feed(feed_id)


def test_minimum_interval_floor(make_config, memory_store, make_pipeline, feed_server, feed_url, rss, entries, clock) -> None:
    feed_server.serve(feed_url, rss(entries(1)))
    pipeline = make_pipeline(make_config(), memory_store)

    assert pipeline.poller.run_cycle().polled == ["tech"]
    assert pipeline.poller.run_cycle().polled == []
    clock.advance(3599)
    assert pipeline.poller.run_cycle().polled == []
    clock.advance(1)
    assert pipeline.poller.run_cycle().polled == ["tech"]
    assert len(feed_server.requests) == 2


def test_per_feed_interval(make_config, memory_store, make_pipeline, feed_server, rss, clock) -> None:
    feed_server.serve(A_URL, rss([]))
    feed_server.serve(B_URL, rss([]))
    config = make_config(feeds={"a": A_URL, "b": {"url": B_URL, "poll_interval_secs": 7200}})
    pipeline = make_pipeline(config, memory_store)

    assert pipeline.poller.run_cycle().polled == ["a", "b"]
    clock.advance(3600)
    assert pipeline.poller.run_cycle().polled == ["a"]
    clock.advance(3600)
    assert pipeline.poller.run_cycle().polled == ["a", "b"]


def test_failures_are_isolated_and_order_kept(make_config, memory_store, make_pipeline, feed_server, rss, entries) -> None:
    feed_server.serve(A_URL, rss(entries(1)))
    feed_server.serve(B_URL, b"", status=503)
    feed_server.serve(C_URL, rss(entries(2)))
    config = make_config(feeds={"a": A_URL, "b": B_URL, "c": C_URL})
    pipeline = make_pipeline(config, memory_store)

    report = pipeline.poller.run_cycle()

    assert feed_server.urls() == [A_URL, B_URL, C_URL]
    assert [summary.outcome for summary in report.summaries] == [
        PollOutcome.OK,
        PollOutcome.FAILED,
        PollOutcome.OK,
    ]
    assert report.total("committed") == 3
    assert memory_store.get_feed("b").last_outcome is PollOutcome.FAILED


def test_unexpected_exception_is_isolated(make_config, memory_store, make_pipeline, feed_server, rss, entries) -> None:
    feed_server.serve(A_URL, rss(entries(1)))
    feed_server.serve(B_URL, rss(entries(1)))

    def exploding_normalizer(feed_id, content, content_type):  # noqa: ANN001, ANN202
        if feed_id == "a":
            raise RuntimeError("parser bug")
        return normalize_feed(feed_id, content, content_type)

    config = make_config(feeds={"a": A_URL, "b": B_URL})
    pipeline = make_pipeline(config, memory_store, normalizer=exploding_normalizer)

    report = pipeline.poller.run_cycle()

    assert [summary.outcome for summary in report.summaries] == [PollOutcome.FAILED, PollOutcome.OK]
    assert memory_store.get_feed("a").last_error == "parser bug"


def test_failed_poll_still_waits_an_interval(make_config, memory_store, make_pipeline, feed_server, feed_url, clock) -> None:
    feed_server.serve(feed_url, b"", status=500)
    pipeline = make_pipeline(make_config(), memory_store)

    assert pipeline.poller.run_cycle().polled == ["tech"]
    clock.advance(1800)
    assert pipeline.poller.run_cycle().polled == []
    assert memory_store.get_feed("tech").last_polled_at is not None


def test_force_and_only(make_config, memory_store, make_pipeline, feed_server, rss) -> None:
    feed_server.serve(A_URL, rss([]))
    feed_server.serve(B_URL, rss([]))
    pipeline = make_pipeline(make_config(feeds={"a": A_URL, "b": B_URL}), memory_store)
    pipeline.poller.run_cycle()

    assert pipeline.poller.run_cycle(force=True, only="b").polled == ["b"]
    assert pipeline.poller.run_cycle(force=True).polled == ["a", "b"]
    with pytest.raises(KeyError):
        pipeline.poller.run_cycle(only="missing")


def test_restart_does_not_repoll_early(make_config, make_pipeline, feed_server, feed_url, rss, entries, clock, tmp_path) -> None:
    feed_server.serve(feed_url, rss(entries(1)))
    first_store = SQLiteStateStore(tmp_path / "restart.db")
    make_pipeline(make_config(), first_store).poller.run_cycle()
    first_store.close()

    clock.advance(600)
    second_store = SQLiteStateStore(tmp_path / "restart.db")
    try:
        restarted = make_pipeline(make_config(), second_store)
        assert restarted.poller.run_cycle().polled == []
        clock.advance(3000)
        report = restarted.poller.run_cycle()
        assert report.polled == ["tech"]
        assert report.summaries[0].skipped == 1
    finally:
        second_store.close()


def test_store_error_aborts_cycle_then_escalates(make_config, make_pipeline, feed_server, feed_url, rss) -> None:
    feed_server.serve(feed_url, rss([]))
    store = FlakyStore()
    pipeline = make_pipeline(make_config(max_store_failures=3), store)
    pipeline.poller.seed()
    store.broken = True

    first = pipeline.poller.run_cycle(force=True)
    assert first.aborted
    assert "locked" in first.error
    assert pipeline.poller.run_cycle(force=True).aborted

    store.broken = False
    assert not pipeline.poller.run_cycle(force=True).aborted
    assert pipeline.poller.consecutive_store_failures == 0

    store.broken = True
    pipeline.poller.run_cycle(force=True)
    pipeline.poller.run_cycle(force=True)
    with pytest.raises(StoreUnrecoverableError):
        pipeline.poller.run_cycle(force=True)


def test_stop_event_stops_between_feeds(make_config, memory_store, make_pipeline, feed_server, rss, entries) -> None:
    feed_server.serve(A_URL, rss(entries(2)), etag='"a1"')
    feed_server.serve(B_URL, rss(entries(2)))
    pipeline = make_pipeline(make_config(feeds={"a": A_URL, "b": B_URL}), memory_store)

    def stopping_producer(item, feed):  # noqa: ANN001, ANN202
        pipeline.poller.stop_event.set()
        return b"epub"

    pipeline.orchestrator.producer = stopping_producer
    report = pipeline.poller.run_cycle()

    assert report.stopped
    assert report.polled == ["a"]
    summary = report.summaries[0]
    assert summary.committed == 1
    assert summary.interrupted
    assert memory_store.get_feed("a").etag is None
    assert feed_server.urls() == [A_URL]


def test_parallel_feeds_keep_config_order(make_config, memory_store, make_pipeline, feed_server, rss, entries) -> None:
    for url in (A_URL, B_URL, C_URL):
        feed_server.serve(url, rss(entries(2)))
    config = make_config(feeds={"a": A_URL, "b": B_URL, "c": C_URL}, max_parallel_feeds=3)
    pipeline = make_pipeline(config, memory_store)
    try:
        report = pipeline.poller.run_cycle()
    finally:
        pipeline.poller.close()

    assert report.polled == ["a", "b", "c"]
    assert report.total("committed") == 6


def test_scheduler_wires_orchestrator(make_config, memory_store) -> None:
    config = make_config()
    orchestrator = Orchestrator.from_config(config, memory_store)
    try:
        poller = PollScheduler(config, memory_store, orchestrator)
        poller.seed()
        assert poller.due_feeds() == ["tech"]
        assert poller.interval_secs == 3600
    finally:
        orchestrator.close()
