"""Configuration package exports."""

from .loader import ConfigLocator, ConfigRepository
from .models import (
    MIN_POLL_INTERVAL_SECS,
    AppConfig,
    ConditionalType,
    FeedConfig,
    slugify,
)

__all__ = [
    "AppConfig",
    "ConditionalType",
    "ConfigLocator",
    "ConfigRepository",
    "FeedConfig",
    "MIN_POLL_INTERVAL_SECS",
    "slugify",
]
