"""Deduplication of feed items against the processing ledger."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable

from ..infra.state_store import StateStore
from .normalizer import FeedItem


@dataclass
class DedupResult:
    new: list[FeedItem] = field(default_factory=list)
    skipped: list[FeedItem] = field(default_factory=list)

    @property
    def has_new(self) -> bool:
        return bool(self.new)


class DedupFilter:
    """Split items into never-converted and already-converted ones.

    Items whose last attempt failed are treated as new so they get retried.
    Lookups have no side effects; records are written by the output stage.
    """

    def __init__(self, store: StateStore) -> None:
        self.store = store

    def partition(self, feed_id: str, items: Iterable[FeedItem]) -> DedupResult:
        result = DedupResult()
        seen: set[str] = set()
        for item in items:
            # A document listing the same entry twice converts it once
            if item.item_id in seen or self.store.is_processed(feed_id, item.item_id):
                result.skipped.append(item)
                continue
            seen.add(item.item_id)
            result.new.append(item)
        return result


__all__ = ["DedupFilter", "DedupResult"]
