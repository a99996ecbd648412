"""Turn fetched RSS/Atom bytes into ordered ``FeedItem`` records."""

from __future__ import annotations

import calendar
import hashlib
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

import feedparser

from ..errors import FeedParseError

UNTITLED = "Untitled"


@dataclass(slots=True)
class FeedItem:
    """One feed entry, normalised independently of the source format."""

    feed_id: str
    item_id: str
    title: str
    link: str | None = None
    published: datetime | None = None
    updated: datetime | None = None
    authors: list[str] = field(default_factory=list)
    summary: str | None = None
    content: str | None = None
    feed_title: str | None = None

    @property
    def body(self) -> str | None:
        return self.content or self.summary


def _to_datetime(value: Any) -> datetime | None:
    # feedparser exposes *_parsed values as UTC struct_time
    if not value:
        return None
    return datetime.fromtimestamp(calendar.timegm(value), tz=timezone.utc)


def _clean(value: Any) -> str | None:
    if not isinstance(value, str):
        return None
    value = value.strip()
    return value or None


def _entry_content(entry: Any) -> str | None:
    parts = [_clean(part.get("value")) for part in entry.get("content") or []]
    parts = [part for part in parts if part]
    return "\n".join(parts) if parts else None


def _entry_authors(entry: Any) -> list[str]:
    names = [_clean(author.get("name")) for author in entry.get("authors") or []]
    names = [name for name in names if name]
    if not names:
        single = _clean(entry.get("author"))
        if single:
            names.append(single)
    return names


def item_identity(
    guid: str | None,
    link: str | None,
    title: str | None,
    summary: str | None,
    content: str | None,
) -> str:
    """Stable id for an entry: its guid, else its link, else a content hash."""

    if guid:
        return guid
    if link:
        return link
    digest = hashlib.sha256(
        "\0".join(part or "" for part in (title, link, summary, content)).encode("utf-8")
    )
    return f"sha256:{digest.hexdigest()}"


def normalize_feed(feed_id: str, content: bytes, content_type: str | None = None) -> list[FeedItem]:
    """Parse a feed document, preserving document order.

    Raises ``FeedParseError`` when the bytes are not recognisable as RSS or Atom.
    """

    headers = {"content-type": content_type} if content_type else None
    parsed = feedparser.parse(content, response_headers=headers)
    if not parsed.get("version") and not parsed.entries:
        reason = parsed.get("bozo_exception")
        raise FeedParseError(f"{feed_id}: not an RSS/Atom document ({reason or 'unknown format'})")

    feed_title = _clean(parsed.feed.get("title"))
    items: list[FeedItem] = []
    for entry in parsed.entries:
        title = _clean(entry.get("title"))
        link = _clean(entry.get("link"))
        summary = _clean(entry.get("summary"))
        body = _entry_content(entry)
        item_id = item_identity(_clean(entry.get("id")), link, title, summary, body)
        items.append(
            FeedItem(
                feed_id=feed_id,
                item_id=item_id,
                title=title or link or UNTITLED,
                link=link,
                published=_to_datetime(entry.get("published_parsed")),
                updated=_to_datetime(entry.get("updated_parsed")),
                authors=_entry_authors(entry),
                summary=summary,
                content=body,
                feed_title=feed_title,
            )
        )
    return items


__all__ = ["FeedItem", "item_identity", "normalize_feed"]
