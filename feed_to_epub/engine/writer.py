"""Atomic placement of artifacts followed by the ledger update."""

from __future__ import annotations

import hashlib
import os
import tempfile
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable

import structlog

from ..config import AppConfig
from ..errors import OutputWriteError
from ..infra.state_store import StateStore
from .normalizer import FeedItem

ARTIFACT_SUFFIX = ".epub"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def artifact_name(feed_id: str, item_id: str) -> str:
    digest = hashlib.sha256(f"{feed_id}\0{item_id}".encode("utf-8")).hexdigest()
    return f"{digest[:20]}{ARTIFACT_SUFFIX}"


def _fsync_dir(directory: Path) -> None:
    # Directories cannot be opened for fsync on every platform
    if not hasattr(os, "O_DIRECTORY"):
        return
    fd = os.open(directory, os.O_RDONLY | os.O_DIRECTORY)
    try:
        os.fsync(fd)
    finally:
        os.close(fd)


class OutputWriter:
    """Write an artifact via temp file + rename, then mark the item succeeded.

    The ``succeeded`` record is only written once the artifact is durably in
    place. When the write fails nothing is recorded and the item stays
    eligible for the next poll.
    """

    def __init__(
        self,
        config: AppConfig,
        store: StateStore,
        clock: Callable[[], datetime] = _utcnow,
        logger: structlog.BoundLogger | None = None,
    ) -> None:
        self.config = config
        self.store = store
        self.clock = clock
        self.logger = logger or structlog.get_logger("feed_to_epub.writer")

    def artifact_path(self, feed_id: str, item_id: str) -> Path:
        return self.config.feed_download_dir(feed_id) / artifact_name(feed_id, item_id)

    def commit(self, feed_id: str, item: FeedItem, payload: bytes) -> Path:
        target = self.artifact_path(feed_id, item.item_id)
        tmp_path: str | None = None
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(
                prefix=".tmp-", suffix=ARTIFACT_SUFFIX, dir=target.parent
            )
            with os.fdopen(fd, "wb") as handle:
                handle.write(payload)
                handle.flush()
                os.fsync(handle.fileno())
            os.replace(tmp_path, target)
            tmp_path = None
            _fsync_dir(target.parent)
        except OSError as exc:
            if tmp_path is not None:
                try:
                    os.unlink(tmp_path)
                except FileNotFoundError:
                    pass
            raise OutputWriteError(f"cannot write {target}: {exc}") from exc

        # StoreError propagates; the artifact is rewritten in place next time
        recorded = self.store.record_success(feed_id, item.item_id, target, self.clock())
        if not recorded:
            self.logger.warning("item_already_recorded", feed=feed_id, item=item.item_id)
        return target


__all__ = ["ARTIFACT_SUFFIX", "OutputWriter", "artifact_name"]
