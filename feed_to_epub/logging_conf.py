"""Logging configuration built around structlog JSON logging."""

from __future__ import annotations

import logging
import logging.config
from pathlib import Path
from typing import Iterable

import structlog

from .config.models import slugify

ROOT_LOGGER = "feed_to_epub"
MAIN_LOG = "feed-to-epub.log"
ERROR_LOG = "error.log"
FEEDS_SUBDIR = "feeds"

_LOGGING_INITIALISED = False
_LOG_DIR: Path | None = None


def _default_log_dir() -> Path:
    return Path.cwd() / "logs"


def current_log_dir() -> Path:
    return _LOG_DIR or _default_log_dir()


def configure_logging(verbose: bool = False, log_dir: Path | None = None) -> structlog.BoundLogger:
    """Configure structlog + stdlib handlers and return application logger.

    Calling again with a different ``log_dir`` re-targets the file handlers.
    """

    global _LOGGING_INITIALISED, _LOG_DIR
    log_dir = Path(log_dir) if log_dir is not None else current_log_dir()
    main_log = log_dir / MAIN_LOG
    error_log = log_dir / ERROR_LOG
    (log_dir / FEEDS_SUBDIR).mkdir(parents=True, exist_ok=True)
    main_log.touch(exist_ok=True)
    error_log.touch(exist_ok=True)

    if not _LOGGING_INITIALISED or log_dir != _LOG_DIR:
        level = "DEBUG" if verbose else "INFO"
        # Configure stdlib logging (console + files)
        logging.config.dictConfig(
            {
                "version": 1,
                "disable_existing_loggers": False,
                "formatters": {
                    "json": {
                        "()": "pythonjsonlogger.json.JsonFormatter",
                        "fmt": "%(asctime)s %(levelname)s %(name)s %(message)s",
                    }
                },
                "handlers": {
                    "console": {
                        "class": "logging.StreamHandler",
                        "level": level,
                        "formatter": "json",
                    },
                    "main_file": {
                        "class": "logging.FileHandler",
                        "level": "INFO",
                        "filename": str(main_log),
                        "encoding": "utf-8",
                        "formatter": "json",
                    },
                    "error_file": {
                        "class": "logging.FileHandler",
                        "level": "ERROR",
                        "filename": str(error_log),
                        "encoding": "utf-8",
                        "formatter": "json",
                    },
                },
                "loggers": {
                    ROOT_LOGGER: {
                        "handlers": ["console", "main_file", "error_file"],
                        "level": level,
                        "propagate": False,
                    },
                    # APScheduler is chatty at INFO; keep its warnings only.
                    "apscheduler": {
                        "handlers": ["console", "error_file"],
                        "level": "WARNING",
                        "propagate": False,
                    },
                },
            }
        )

        # Configure structlog to forward events to stdlib logging
        structlog.configure(
            processors=[
                structlog.contextvars.merge_contextvars,
                structlog.processors.TimeStamper(fmt="iso"),
                structlog.stdlib.add_log_level,
                structlog.processors.StackInfoRenderer(),
                structlog.processors.format_exc_info,
                # JSON rendering happens in the stdlib handler formatter
                structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
            ],
            logger_factory=structlog.stdlib.LoggerFactory(),
            cache_logger_on_first_use=True,
        )
        _LOGGING_INITIALISED = True
        _LOG_DIR = log_dir
    return structlog.get_logger(ROOT_LOGGER)


def feed_log_path(feed_id: str) -> Path:
    return current_log_dir() / FEEDS_SUBDIR / f"{slugify(feed_id)}.log"


def feed_logger(feed_id: str) -> structlog.BoundLogger:
    """Return a logger bound to a feed, writing to ``feeds/<feed>.log`` as well."""

    path = feed_log_path(feed_id)
    path.parent.mkdir(parents=True, exist_ok=True)

    logger_name = f"{ROOT_LOGGER}.feed.{slugify(feed_id)}"
    py_logger = logging.getLogger(logger_name)
    if not any(
        isinstance(handler, logging.FileHandler) and handler.baseFilename == str(path)
        for handler in py_logger.handlers
    ):
        for stale in [h for h in py_logger.handlers if isinstance(h, logging.FileHandler)]:
            py_logger.removeHandler(stale)
            stale.close()
        file_handler = logging.FileHandler(path, encoding="utf-8")
        # Reuse the same JSON formatter as the root application logger
        root_logger = logging.getLogger(ROOT_LOGGER)
        if root_logger.handlers:
            file_handler.setFormatter(root_logger.handlers[0].formatter)
        file_handler.setLevel(logging.INFO)
        py_logger.addHandler(file_handler)

    return structlog.get_logger(logger_name).bind(feed=feed_id)


def tail_log(path: Path, line_count: int = 100) -> list[str]:
    """Return the last N lines from a log file."""

    if not path.exists():
        return []
    with path.open("r", encoding="utf-8", errors="ignore") as stream:
        lines = stream.readlines()
    return lines[-line_count:]


def available_feed_logs() -> Iterable[Path]:
    """Yield available per-feed log file paths."""

    feeds_dir = current_log_dir() / FEEDS_SUBDIR
    if not feeds_dir.exists():
        return []
    return sorted(p for p in feeds_dir.glob("*.log"))


__all__ = [
    "ERROR_LOG",
    "MAIN_LOG",
    "available_feed_logs",
    "configure_logging",
    "current_log_dir",
    "feed_log_path",
    "feed_logger",
    "tail_log",
]
