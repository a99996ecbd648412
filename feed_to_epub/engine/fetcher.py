"""Conditional HTTP fetching of feed documents."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict

import httpx
import structlog

from .. import __version__
from ..config import ConditionalType
from ..errors import FetchError

DEFAULT_USER_AGENT = f"feed-to-epub/{__version__} (+https://github.com/catouc/feed-to-epub)"


@dataclass(slots=True)
class FetchRequest:
    """Input for the fetcher."""

    url: str
    etag: str | None = None
    last_modified: str | None = None
    conditional_type: ConditionalType = ConditionalType.BOTH
    timeout: float | None = None

    def conditional_headers(self) -> dict[str, str]:
        headers: dict[str, str] = {}
        if self.etag and self.conditional_type in (ConditionalType.ETAG, ConditionalType.BOTH):
            headers["If-None-Match"] = self.etag
        if self.last_modified and self.conditional_type in (
            ConditionalType.LAST_MODIFIED,
            ConditionalType.BOTH,
        ):
            headers["If-Modified-Since"] = self.last_modified
        return headers

    def unchanged(self, etag: str | None, last_modified: str | None) -> bool:
        """True when a response repeats the validators sent with this request."""

        use_etag = self.conditional_type in (ConditionalType.ETAG, ConditionalType.BOTH)
        use_date = self.conditional_type in (ConditionalType.LAST_MODIFIED, ConditionalType.BOTH)
        # An entity tag, when both sides have one, outranks the date
        if use_etag and self.etag and etag:
            return etag == self.etag
        if use_date and self.last_modified and last_modified:
            return last_modified == self.last_modified
        return False


@dataclass(slots=True)
class FetchResult:
    """Standardised response wrapper.

    ``not_modified`` results carry no body and no tokens.
    """

    url: str
    status_code: int
    not_modified: bool = False
    content: bytes = b""
    content_type: str | None = None
    etag: str | None = None
    last_modified: str | None = None
    headers: Dict[str, str] = field(default_factory=dict, repr=False)


class ConditionalFetcher:
    """Single-attempt GET echoing stored validators back to the server."""

    def __init__(
        self,
        timeout: float = 15.0,
        user_agent: str | None = None,
        client: httpx.Client | None = None,
        logger: structlog.BoundLogger | None = None,
    ) -> None:
        self.timeout = timeout
        self.logger = logger or structlog.get_logger("feed_to_epub.fetcher")
        self._owns_client = client is None
        self._client = client or httpx.Client(follow_redirects=True, timeout=timeout)
        self._client.headers["User-Agent"] = user_agent or DEFAULT_USER_AGENT

    def close(self) -> None:
        if self._owns_client:
            self._client.close()

    def fetch(self, request: FetchRequest) -> FetchResult:
        headers = request.conditional_headers()
        try:
            response = self._client.get(
                request.url,
                headers=headers,
                timeout=request.timeout or self.timeout,
            )
        except httpx.TimeoutException as exc:
            raise FetchError(request.url, f"timed out: {exc}") from exc
        except httpx.HTTPError as exc:
            raise FetchError(request.url, f"transport error: {exc}") from exc

        if response.status_code == 304:
            self.logger.debug("fetch_not_modified", url=request.url)
            return FetchResult(
                url=str(response.url),
                status_code=response.status_code,
                not_modified=True,
                headers=dict(response.headers),
            )
        if not response.is_success:
            raise FetchError(
                request.url,
                f"unexpected status {response.status_code}",
                status_code=response.status_code,
            )

        etag = response.headers.get("ETag")
        last_modified = response.headers.get("Last-Modified")
        if request.unchanged(etag, last_modified):
            # Server ignored the conditional headers but sent the same validators
            self.logger.debug("fetch_same_validators", url=request.url, status=response.status_code)
            return FetchResult(
                url=str(response.url),
                status_code=response.status_code,
                not_modified=True,
                headers=dict(response.headers),
            )

        self.logger.debug(
            "fetch_ok",
            url=request.url,
            status=response.status_code,
            size=len(response.content),
            conditional=bool(headers),
        )
        return FetchResult(
            url=str(response.url),
            status_code=response.status_code,
            content=response.content,
            content_type=response.headers.get("Content-Type"),
            etag=etag,
            last_modified=last_modified,
            headers=dict(response.headers),
        )


__all__ = ["ConditionalFetcher", "DEFAULT_USER_AGENT", "FetchRequest", "FetchResult"]
