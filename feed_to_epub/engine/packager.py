"""Deterministic EPUB 3 rendering of a single feed item."""

from __future__ import annotations

import io
import re
import uuid
import zipfile
from datetime import datetime, timezone
from html import escape

from ebooklib import epub
from selectolax.lexbor import LexborHTMLParser

from ..config import FeedConfig
from ..errors import GenerationError
from .normalizer import FeedItem

# Every zip member gets the same timestamp so identical input gives identical bytes
ZIP_TIMESTAMP = (1980, 1, 1, 0, 0, 0)
EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)
MAX_DESCRIPTION_BYTES = 1000
STRIPPED_TAGS = "script, style, iframe, object, embed, form, noscript"
CHAPTER_FILE = "article.xhtml"

_BODY_WRAPPER = re.compile(r"^<body[^>]*>|</body>$")


def _iso(value: datetime) -> str:
    return value.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def sanitize_html(fragment: str) -> str:
    """Drop active content and return the remaining body markup as HTML."""

    tree = LexborHTMLParser(fragment)
    for node in tree.css(STRIPPED_TAGS):
        node.decompose()
    if tree.body is None:
        return ""
    return _BODY_WRAPPER.sub("", (tree.body.html or "").strip())


def plain_text(fragment: str) -> str:
    tree = LexborHTMLParser(fragment)
    if tree.body is None:
        return ""
    return tree.body.text(separator=" ", strip=True)


def restamp(payload: bytes) -> bytes:
    """Rewrite an archive with fixed member dates and permissions, keeping order."""

    source = zipfile.ZipFile(io.BytesIO(payload))
    buffer = io.BytesIO()
    with source, zipfile.ZipFile(buffer, "w") as archive:
        for member in source.infolist():
            info = zipfile.ZipInfo(member.filename, date_time=ZIP_TIMESTAMP)
            info.compress_type = member.compress_type
            info.external_attr = 0o644 << 16
            info.create_system = 3
            archive.writestr(info, source.read(member))
    return buffer.getvalue()


class EpubPackager:
    """Render a ``FeedItem`` into EPUB bytes with ebooklib.

    Output only depends on the item and feed configuration: the identifier is
    a uuid5 of ``(feed_id, item_id)``, ``dcterms:modified`` comes from the
    item's own dates and archive members carry a fixed timestamp.
    """

    def __init__(self, language: str = "en") -> None:
        self.language = language

    def __call__(self, item: FeedItem, feed: FeedConfig) -> bytes:
        return self.render(item, feed)

    def render(self, item: FeedItem, feed: FeedConfig) -> bytes:
        body = item.body
        if not body:
            raise GenerationError(f"item {item.item_id!r} has neither content nor summary")
        collection = feed.title or item.feed_title or item.feed_id
        book = self._book(item, collection)
        chapter = epub.EpubHtml(
            uid="article",
            file_name=CHAPTER_FILE,
            title=item.title,
            lang=self.language,
            content=self._chapter(item, sanitize_html(body)).encode("utf-8"),
        )
        book.add_item(chapter)
        book.add_item(epub.EpubNcx())
        book.add_item(epub.EpubNav())
        book.toc = [epub.Link(CHAPTER_FILE, item.title, "article")]
        book.spine = [chapter]

        modified = (item.updated or item.published or EPOCH).astimezone(timezone.utc)
        buffer = io.BytesIO()
        try:
            epub.write_epub(buffer, book, {"mtime": modified, "raise_exceptions": True})
        except (OSError, ValueError) as exc:
            raise GenerationError(f"cannot package item {item.item_id!r}: {exc}") from exc
        return restamp(buffer.getvalue())

    @staticmethod
    def identifier(item: FeedItem) -> str:
        name = "\0".join((item.feed_id, item.item_id))
        return f"urn:uuid:{uuid.uuid5(uuid.NAMESPACE_URL, name)}"

    def _book(self, item: FeedItem, collection: str) -> epub.EpubBook:
        book = epub.EpubBook()
        book.set_identifier(self.identifier(item))
        book.set_title(item.title)
        book.set_language(self.language)
        book.add_metadata(None, "meta", collection, {"property": "belongs-to-collection", "id": "collection"})
        book.add_metadata(None, "meta", "series", {"refines": "#collection", "property": "collection-type"})
        if item.published is not None:
            book.add_metadata("DC", "date", _iso(item.published))
        for index, author in enumerate(item.authors, start=1):
            book.add_author(author, uid=f"creator-{index}")
        if item.summary and len(item.summary.encode("utf-8")) < MAX_DESCRIPTION_BYTES:
            book.add_metadata("DC", "description", plain_text(item.summary))
        if item.link:
            book.add_metadata("DC", "source", item.link)
        return book

    @staticmethod
    def _chapter(item: FeedItem, markup: str) -> str:
        parts = [f"<h1>{escape(item.title)}</h1>"]
        if item.authors:
            parts.append(f'<p class="byline">{escape(", ".join(item.authors))}</p>')
        parts.append(markup)
        if item.link:
            link = escape(item.link)
            parts.append(f'<p class="source"><a href="{link}">{link}</a></p>')
        return "<html><head></head><body>{}</body></html>".format("\n".join(parts))


__all__ = ["EpubPackager", "plain_text", "restamp", "sanitize_html"]
