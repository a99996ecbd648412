from __future__ import annotations

import httpx
import pytest

from feed_to_epub.config import ConditionalType
from feed_to_epub.engine.fetcher import DEFAULT_USER_AGENT, ConditionalFetcher, FetchRequest
from feed_to_epub.errors import FetchError

URL = "https://example.com/feed.xml"
LAST_MODIFIED = "Mon, 01 Jan 2024 00:00:00 GMT"


def test_first_fetch_sends_no_validators(feed_server, rss, entries) -> None:
    feed_server.serve(URL, rss(entries(1)), etag='"v1"', last_modified=LAST_MODIFIED)
    fetcher = ConditionalFetcher(client=feed_server.client())

    result = fetcher.fetch(FetchRequest(url=URL))

    request = feed_server.requests[0]
    assert "If-None-Match" not in request.headers
    assert "If-Modified-Since" not in request.headers
    assert request.headers["User-Agent"] == DEFAULT_USER_AGENT
    assert result.not_modified is False
    assert result.status_code == 200
    assert result.etag == '"v1"'
    assert result.last_modified == LAST_MODIFIED
    assert result.content_type == "application/rss+xml"
    assert b"<rss" in result.content


def test_unchanged_document_returns_not_modified(feed_server, rss, entries) -> None:
    feed_server.serve(URL, rss(entries(1)), etag='"v1"')
    fetcher = ConditionalFetcher(client=feed_server.client())

    result = fetcher.fetch(FetchRequest(url=URL, etag='"v1"'))

    assert feed_server.requests[0].headers["If-None-Match"] == '"v1"'
    assert result.not_modified is True
    assert result.content == b""
    assert result.etag is None


@pytest.mark.parametrize(
    ("mode", "etag", "last_modified", "expected"),
    [
        (ConditionalType.BOTH, '"v1"', None, True),
        (ConditionalType.BOTH, '"v2"', LAST_MODIFIED, False),
        (ConditionalType.BOTH, None, LAST_MODIFIED, True),
        (ConditionalType.ETAG, None, LAST_MODIFIED, False),
        (ConditionalType.LAST_MODIFIED, '"v2"', LAST_MODIFIED, True),
        (ConditionalType.ETAG, None, None, False),
    ],
)
def test_repeated_validators_count_as_unchanged(
    mode: ConditionalType, etag: str | None, last_modified: str | None, expected: bool
) -> None:
    request = FetchRequest(url=URL, etag='"v1"', last_modified=LAST_MODIFIED, conditional_type=mode)
    assert request.unchanged(etag, last_modified) is expected


def test_full_response_with_same_etag_is_not_modified(feed_server, rss, entries) -> None:
    feed_server.serve(URL, rss(entries(1)), etag='"v1"', honour_validators=False)
    fetcher = ConditionalFetcher(client=feed_server.client())

    result = fetcher.fetch(FetchRequest(url=URL, etag='"v1"'))

    assert result.status_code == 200
    assert result.not_modified is True
    assert result.content == b""

    changed = fetcher.fetch(FetchRequest(url=URL, etag='"v0"'))
    assert changed.not_modified is False
    assert changed.etag == '"v1"'


@pytest.mark.parametrize(
    ("mode", "expected"),
    [
        (ConditionalType.ETAG, {"If-None-Match"}),
        (ConditionalType.LAST_MODIFIED, {"If-Modified-Since"}),
        (ConditionalType.BOTH, {"If-None-Match", "If-Modified-Since"}),
    ],
)
def test_conditional_mode_selects_headers(mode: ConditionalType, expected: set[str]) -> None:
    request = FetchRequest(url=URL, etag='"v1"', last_modified=LAST_MODIFIED, conditional_type=mode)
    assert set(request.conditional_headers()) == expected


def test_missing_tokens_send_nothing() -> None:
    assert FetchRequest(url=URL).conditional_headers() == {}


@pytest.mark.parametrize("status", [404, 429, 500, 503])
def test_error_status_raises_fetch_error(feed_server, status: int) -> None:
    feed_server.serve(URL, b"nope", status=status)
    fetcher = ConditionalFetcher(client=feed_server.client())
    with pytest.raises(FetchError) as excinfo:
        fetcher.fetch(FetchRequest(url=URL))
    assert excinfo.value.status_code == status
    assert excinfo.value.url == URL


def test_transport_error_raises_fetch_error(feed_server) -> None:
    feed_server.serve(URL, error=httpx.ConnectError("connection refused"))
    fetcher = ConditionalFetcher(client=feed_server.client())
    with pytest.raises(FetchError, match="transport error"):
        fetcher.fetch(FetchRequest(url=URL))
    assert len(feed_server.requests) == 1


def test_timeout_raises_fetch_error(feed_server) -> None:
    feed_server.serve(URL, error=httpx.ReadTimeout("too slow"))
    fetcher = ConditionalFetcher(client=feed_server.client())
    with pytest.raises(FetchError, match="timed out"):
        fetcher.fetch(FetchRequest(url=URL))


def test_custom_user_agent(feed_server, rss) -> None:
    feed_server.serve(URL, rss([]))
    fetcher = ConditionalFetcher(user_agent="my-reader/1.0", client=feed_server.client())
    fetcher.fetch(FetchRequest(url=URL))
    assert feed_server.requests[0].headers["User-Agent"] == "my-reader/1.0"


def test_close_leaves_injected_client_open(feed_server, rss) -> None:
    feed_server.serve(URL, rss([]))
    client = feed_server.client()
    ConditionalFetcher(client=client).close()
    assert not client.is_closed
    ConditionalFetcher().close()
