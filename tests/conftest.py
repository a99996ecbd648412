"""Shared fixtures: configs, stores, a mock feed server and a fake clock."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from email.utils import format_datetime
from pathlib import Path
from typing import Any, Callable, Iterable, Iterator

import httpx
import pytest
import yaml

from feed_to_epub.config import AppConfig, FeedConfig
from feed_to_epub.engine import ConditionalFetcher, FeedItem
from feed_to_epub.infra import MemoryStateStore, SQLiteStateStore, StateStore
from feed_to_epub.logging_conf import configure_logging
from feed_to_epub.orchestrator import Orchestrator
from feed_to_epub.scheduler import PollScheduler

FEED_URL = "https://example.com/feed.xml"


@pytest.fixture(autouse=True)
def _isolated_logs(tmp_path: Path) -> None:
    configure_logging(log_dir=tmp_path / "logs")


class FakeClock:
    """Monotonic and wall clocks that only move when told to."""

    def __init__(self, start: datetime = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)) -> None:
        self.start = start
        self.elapsed = 0.0

    def monotonic(self) -> float:
        return 1000.0 + self.elapsed

    def now(self) -> datetime:
        return self.start + timedelta(seconds=self.elapsed)

    def advance(self, seconds: float) -> None:
        self.elapsed += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


def rss_document(entries: Iterable[dict[str, Any]], title: str = "Example Tech") -> bytes:
    """Build an RSS 2.0 document; each entry may set guid/title/link/description/content/pub_date."""

    parts = [
        '<?xml version="1.0" encoding="UTF-8"?>',
        '<rss version="2.0" xmlns:content="http://purl.org/rss/1.0/modules/content/">',
        "<channel>",
        f"<title>{title}</title>",
        "<link>https://example.com/</link>",
        "<description>Example feed</description>",
    ]
    for entry in entries:
        parts.append("<item>")
        if "guid" in entry:
            parts.append(f'<guid isPermaLink="false">{entry["guid"]}</guid>')
        if "title" in entry:
            parts.append(f"<title>{entry['title']}</title>")
        if "link" in entry:
            parts.append(f"<link>{entry['link']}</link>")
        if "pub_date" in entry:
            parts.append(f"<pubDate>{format_datetime(entry['pub_date'])}</pubDate>")
        if "author" in entry:
            parts.append(f"<author>{entry['author']}</author>")
        if "description" in entry:
            parts.append(f"<description><![CDATA[{entry['description']}]]></description>")
        if "content" in entry:
            parts.append(f"<content:encoded><![CDATA[{entry['content']}]]></content:encoded>")
        parts.append("</item>")
    parts.extend(["</channel>", "</rss>"])
    return "\n".join(parts).encode("utf-8")


def sample_entries(count: int = 3) -> list[dict[str, Any]]:
    return [
        {
            "guid": f"item-{index}",
            "title": f"Post {index}",
            "link": f"https://example.com/posts/{index}",
            "description": f"Summary {index}",
            "content": f"<p>Body of post {index}</p>",
        }
        for index in range(1, count + 1)
    ]


@dataclass
class Route:
    body: bytes = b""
    status: int = 200
    etag: str | None = None
    last_modified: str | None = None
    content_type: str = "application/rss+xml"
    error: Exception | None = None
    honour_validators: bool = True


@dataclass
class FeedServer:
    """``httpx.MockTransport`` handler serving canned feed documents."""

    routes: dict[str, Route] = field(default_factory=dict)
    requests: list[httpx.Request] = field(default_factory=list)

    def serve(self, url: str, body: bytes = b"", **kwargs: Any) -> Route:
        route = Route(body=body, **kwargs)
        self.routes[url] = route
        return route

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        route = self.routes.get(str(request.url))
        if route is None:
            return httpx.Response(404, request=request)
        if route.error is not None:
            raise route.error
        if route.honour_validators and route.etag and request.headers.get("If-None-Match") == route.etag:
            return httpx.Response(304, request=request)
        if route.honour_validators and route.last_modified and request.headers.get("If-Modified-Since") == route.last_modified:
            return httpx.Response(304, request=request)
        headers = {"Content-Type": route.content_type}
        if route.etag:
            headers["ETag"] = route.etag
        if route.last_modified:
            headers["Last-Modified"] = route.last_modified
        return httpx.Response(route.status, content=route.body, headers=headers, request=request)

    def client(self) -> httpx.Client:
        return httpx.Client(transport=httpx.MockTransport(self.handler), follow_redirects=True)

    def urls(self) -> list[str]:
        return [str(request.url) for request in self.requests]


@pytest.fixture
def feed_server() -> FeedServer:
    return FeedServer()


@pytest.fixture
def make_config(tmp_path: Path) -> Callable[..., AppConfig]:
    def _builder(feeds: dict[str, str | dict[str, Any]] | None = None, **overrides: Any) -> AppConfig:
        if feeds is None:
            feeds = {"tech": FEED_URL}
        base: dict[str, Any] = {
            "feeds": {
                feed_id: FeedConfig(url=value) if isinstance(value, str) else FeedConfig(**value)
                for feed_id, value in feeds.items()
            },
            "db_file": tmp_path / "state.db",
            "download_dir": tmp_path / "downloads",
            "log_dir": tmp_path / "logs",
        }
        base.update(overrides)
        return AppConfig(**base)

    return _builder


@pytest.fixture
def write_config(tmp_path: Path) -> Callable[..., Path]:
    def _writer(payload: dict[str, Any], name: str = "config.yaml") -> Path:
        path = tmp_path / "conf" / name
        path.parent.mkdir(parents=True, exist_ok=True)
        if path.suffix == ".json":
            path.write_text(json.dumps(payload), encoding="utf-8")
        else:
            path.write_text(yaml.safe_dump(payload, sort_keys=False), encoding="utf-8")
        return path

    return _writer


@pytest.fixture
def memory_store() -> MemoryStateStore:
    return MemoryStateStore()


@pytest.fixture
def sqlite_store(tmp_path: Path) -> Iterator[SQLiteStateStore]:
    store = SQLiteStateStore(tmp_path / "state.db")
    yield store
    store.close()


@pytest.fixture(params=["memory", "sqlite"])
def store(request: pytest.FixtureRequest) -> StateStore:
    return request.getfixturevalue(f"{request.param}_store")


def stub_producer(item: FeedItem, feed: FeedConfig) -> bytes:
    return f"epub:{item.feed_id}:{item.item_id}".encode("utf-8")


@dataclass
class Pipeline:
    config: AppConfig
    store: StateStore
    orchestrator: Orchestrator
    poller: PollScheduler


@pytest.fixture
def make_pipeline(feed_server: FeedServer, clock: FakeClock) -> Callable[..., Pipeline]:
    def _builder(
        config: AppConfig,
        store: StateStore,
        producer: Callable[[FeedItem, FeedConfig], bytes] = stub_producer,
        **orchestrator_kwargs: Any,
    ) -> Pipeline:
        fetcher = ConditionalFetcher(client=feed_server.client())
        orchestrator = Orchestrator(
            config,
            store,
            fetcher,
            producer=producer,
            clock=clock.now,
            **orchestrator_kwargs,
        )
        poller = PollScheduler(
            config,
            store,
            orchestrator,
            clock=clock.monotonic,
            wall_clock=clock.now,
        )
        return Pipeline(config=config, store=store, orchestrator=orchestrator, poller=poller)

    return _builder


@pytest.fixture
def feed_url() -> str:
    return FEED_URL


@pytest.fixture
def rss() -> Callable[..., bytes]:
    return rss_document


@pytest.fixture
def entries() -> Callable[[int], list[dict[str, Any]]]:
    return sample_entries
