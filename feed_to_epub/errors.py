"""Exception hierarchy shared by the pipeline stages."""

from __future__ import annotations


class FeedToEpubError(Exception):
    """Base class for every error raised by feed-to-epub."""


class ConfigError(FeedToEpubError):
    """Configuration file is missing or invalid."""


class FetchError(FeedToEpubError):
    """Transport or protocol failure while retrieving a feed."""

    def __init__(self, url: str, message: str, status_code: int | None = None) -> None:
        super().__init__(f"{message} ({url})")
        self.url = url
        self.status_code = status_code


class FeedParseError(FeedToEpubError):
    """Fetched bytes could not be read as an RSS/Atom document."""


class GenerationError(FeedToEpubError):
    """A single item could not be rendered into an artifact."""


class OutputWriteError(FeedToEpubError):
    """An artifact could not be committed to the download directory."""


class StoreError(FeedToEpubError):
    """The state store could not be opened, read or written."""


class StoreUnrecoverableError(StoreError):
    """The state store kept failing across consecutive cycles."""


__all__ = [
    "ConfigError",
    "FeedParseError",
    "FeedToEpubError",
    "FetchError",
    "GenerationError",
    "OutputWriteError",
    "StoreError",
    "StoreUnrecoverableError",
]
