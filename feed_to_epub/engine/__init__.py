"""Pipeline stages: fetch, normalise, dedup, package and write."""

from .dedup import DedupFilter, DedupResult
from .fetcher import ConditionalFetcher, FetchRequest, FetchResult
from .normalizer import FeedItem, normalize_feed
from .packager import EpubPackager
from .thread_pool import ThreadPoolManager
from .writer import OutputWriter

__all__ = [
    "ConditionalFetcher",
    "DedupFilter",
    "DedupResult",
    "EpubPackager",
    "FeedItem",
    "FetchRequest",
    "FetchResult",
    "OutputWriter",
    "ThreadPoolManager",
    "normalize_feed",
]
