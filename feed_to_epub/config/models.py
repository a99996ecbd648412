"""Pydantic models describing the daemon configuration."""

from __future__ import annotations

from enum import Enum
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, field_validator, model_validator

MIN_POLL_INTERVAL_SECS = 3600


def slugify(name: str) -> str:
    return "".join(ch.lower() if ch.isalnum() else "-" for ch in name).strip("-")


class ConditionalType(str, Enum):
    """Which validators are echoed back on conditional requests."""

    ETAG = "etag"
    LAST_MODIFIED = "last_modified"
    BOTH = "both"

    @classmethod
    def _missing_(cls, value: object) -> "ConditionalType | None":
        # Accept the CamelCase spellings used by older config files.
        if isinstance(value, str):
            key = value.replace("-", "").replace("_", "").lower()
            for member in cls:
                if member.value.replace("_", "") == key:
                    return member
        return None


class FeedConfig(BaseModel):
    """A single feed to poll."""

    url: str
    title: str | None = None
    poll_interval_secs: int | None = None
    conditional_type: ConditionalType = ConditionalType.BOTH
    download_dir: Path | None = None

    @field_validator("url")
    @classmethod
    def _validate_url(cls, value: str) -> str:
        value = value.strip()
        if not value.startswith(("http://", "https://")):
            raise ValueError(f"feed url must be http(s): {value!r}")
        return value

    @field_validator("conditional_type", mode="before")
    @classmethod
    def _coerce_conditional(cls, value: Any) -> Any:
        if isinstance(value, str):
            return ConditionalType(value)
        return value

    @field_validator("poll_interval_secs")
    @classmethod
    def _validate_interval(cls, value: int | None) -> int | None:
        if value is not None and value < MIN_POLL_INTERVAL_SECS:
            raise ValueError(
                f"poll_interval_secs cannot be below {MIN_POLL_INTERVAL_SECS}s, got {value}"
            )
        return value

    @field_validator("download_dir", mode="before")
    @classmethod
    def _coerce_path(cls, value: Any) -> Path | None:
        if value in (None, ""):
            return None
        return Path(value).expanduser()


class AppConfig(BaseModel):
    """Top-level daemon configuration, immutable once loaded."""

    feeds: dict[str, FeedConfig] = Field(default_factory=dict)
    poll_interval_secs: int = MIN_POLL_INTERVAL_SECS
    http_request_timeout_secs: float = 15.0
    db_file: Path = Field(default=Path("data/feed-to-epub.db"))
    download_dir: Path = Field(default=Path("data/downloads"))
    log_dir: Path = Field(default=Path("logs"))
    max_parallel_feeds: int = 1
    max_store_failures: int = 3
    user_agent: str | None = None

    model_config = {"frozen": True}

    @field_validator("poll_interval_secs")
    @classmethod
    def _validate_interval(cls, value: int) -> int:
        if value < MIN_POLL_INTERVAL_SECS:
            raise ValueError(
                f"poll_interval_secs cannot be below {MIN_POLL_INTERVAL_SECS}s, got {value}"
            )
        return value

    @field_validator("db_file", "download_dir", "log_dir", mode="before")
    @classmethod
    def _coerce_paths(cls, value: Any) -> Path:
        return Path(value).expanduser()

    @model_validator(mode="after")
    def _validate_limits(self) -> "AppConfig":
        if self.http_request_timeout_secs <= 0:
            raise ValueError("http_request_timeout_secs must be > 0")
        if self.max_parallel_feeds < 1:
            raise ValueError("max_parallel_feeds must be >= 1")
        if self.max_store_failures < 1:
            raise ValueError("max_store_failures must be >= 1")
        for feed_id in self.feeds:
            if not slugify(feed_id):
                raise ValueError(f"feed id must contain letters or digits: {feed_id!r}")
        return self

    def interval_for(self, feed_id: str) -> int:
        feed = self.feeds[feed_id]
        return feed.poll_interval_secs or self.poll_interval_secs

    def feed_download_dir(self, feed_id: str) -> Path:
        feed = self.feeds.get(feed_id)
        if feed is not None and feed.download_dir is not None:
            return feed.download_dir
        return self.download_dir / slugify(feed_id)

    def resolve_paths(self, base_dir: Path) -> "AppConfig":
        """Return a copy whose relative paths are anchored at ``base_dir``."""

        def _anchor(path: Path) -> Path:
            return path if path.is_absolute() else (base_dir / path).resolve()

        feeds = {
            feed_id: feed.model_copy(update={"download_dir": _anchor(feed.download_dir)})
            if feed.download_dir is not None
            else feed
            for feed_id, feed in self.feeds.items()
        }
        return self.model_copy(
            update={
                "feeds": feeds,
                "db_file": _anchor(self.db_file),
                "download_dir": _anchor(self.download_dir),
                "log_dir": _anchor(self.log_dir),
            }
        )


__all__ = [
    "AppConfig",
    "ConditionalType",
    "FeedConfig",
    "MIN_POLL_INTERVAL_SECS",
    "slugify",
]
