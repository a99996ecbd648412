"""Poll RSS/Atom feeds and turn every new item into a standalone EPUB."""

__version__ = "0.7.0"

__all__ = ["__version__"]
