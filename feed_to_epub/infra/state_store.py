"""Persistent ledger of feed fetch metadata and per-item processing records."""

from __future__ import annotations

import sqlite3
from abc import ABC, abstractmethod
from contextlib import contextmanager
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from threading import Lock
from typing import Any, Iterator

from ..errors import StoreError
from .storage import SQLiteManager

_KEEP: Any = object()


class PollOutcome(str, Enum):
    """Result of the last poll attempt of a feed."""

    OK = "ok"
    NOT_MODIFIED = "not_modified"
    FAILED = "failed"


class RecordOutcome(str, Enum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"


@dataclass(slots=True)
class FeedState:
    """Stored fetch metadata for one configured feed."""

    feed_id: str
    url: str
    etag: str | None = None
    last_modified: str | None = None
    last_polled_at: datetime | None = None
    last_success_at: datetime | None = None
    last_outcome: PollOutcome | None = None
    last_error: str | None = None


@dataclass(slots=True)
class ProcessingRecord:
    """Dedup ledger entry keyed by ``(feed_id, item_id)``."""

    feed_id: str
    item_id: str
    outcome: RecordOutcome
    processed_at: datetime
    artifact_path: Path | None = None
    error: str | None = None
    attempts: int = 1

    @property
    def succeeded(self) -> bool:
        return self.outcome is RecordOutcome.SUCCEEDED


def _utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _to_text(value: datetime | None) -> str | None:
    return _utc(value).isoformat() if value is not None else None


def _from_text(value: str | None) -> datetime | None:
    return _utc(datetime.fromisoformat(value)) if value else None


class StateStore(ABC):
    """Transactional store contract shared by the durable and in-memory ledgers.

    Every mutating call is atomic: a crash leaves either the previous or the
    new state. A ``succeeded`` record is final; later writes for the same key
    are ignored and reported by a ``False`` return value.
    """

    @abstractmethod
    def ensure_feed(self, feed_id: str, url: str) -> FeedState:
        """Create the feed row if missing, keep its URL in sync with config."""

    @abstractmethod
    def get_feed(self, feed_id: str) -> FeedState | None:
        """Return stored state for a feed or ``None``."""

    @abstractmethod
    def list_feeds(self) -> list[FeedState]:
        """Return every stored feed, including ones no longer configured."""

    @abstractmethod
    def record_poll(
        self,
        feed_id: str,
        polled_at: datetime,
        outcome: PollOutcome,
        *,
        etag: str | None = _KEEP,
        last_modified: str | None = _KEEP,
        error: str | None = None,
    ) -> FeedState:
        """Store the result of one poll attempt.

        Caching tokens are only replaced when passed explicitly and never on a
        failed outcome.
        """

    @abstractmethod
    def get_record(self, feed_id: str, item_id: str) -> ProcessingRecord | None:
        """Return the ledger entry for an item or ``None``."""

    @abstractmethod
    def record_success(
        self, feed_id: str, item_id: str, artifact_path: Path, processed_at: datetime
    ) -> bool:
        """Mark an item as durably converted. Returns ``False`` if it already was."""

    @abstractmethod
    def record_failure(
        self, feed_id: str, item_id: str, error: str, processed_at: datetime
    ) -> bool:
        """Record a failed conversion unless the item already succeeded."""

    @abstractmethod
    def history(self, feed_id: str, limit: int = 20) -> list[ProcessingRecord]:
        """Most recent ledger entries for a feed, newest first."""

    @abstractmethod
    def purge_feed(self, feed_id: str) -> bool:
        """Delete a feed and its ledger entries. Returns ``False`` if unknown."""

    def close(self) -> None:
        return

    def is_processed(self, feed_id: str, item_id: str) -> bool:
        record = self.get_record(feed_id, item_id)
        return record is not None and record.succeeded


class SQLiteStateStore(StateStore):
    """Durable ledger backed by a single SQLite file."""

    def __init__(self, path: Path, manager: SQLiteManager | None = None) -> None:
        self.path = path
        self.manager = manager or SQLiteManager()
        self._lock = Lock()
        try:
            self._conn = self.manager.connect(path)
        except (sqlite3.Error, OSError) as exc:
            raise StoreError(f"failed to open state store {path}: {exc}") from exc

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        with self._lock:
            try:
                with self._conn:
                    yield self._conn
            except sqlite3.Error as exc:
                raise StoreError(f"state store operation failed: {exc}") from exc

    @contextmanager
    def _reading(self) -> Iterator[sqlite3.Connection]:
        with self._lock:
            try:
                yield self._conn
            except sqlite3.Error as exc:
                raise StoreError(f"state store query failed: {exc}") from exc

    def ensure_feed(self, feed_id: str, url: str) -> FeedState:
        with self._transaction() as conn:
            conn.execute(
                """
                INSERT INTO feeds(feed_id, url) VALUES (?, ?)
                ON CONFLICT(feed_id) DO UPDATE SET url = excluded.url
                WHERE feeds.url != excluded.url
                """,
                (feed_id, url),
            )
            row = conn.execute("SELECT * FROM feeds WHERE feed_id = ?", (feed_id,)).fetchone()
        return self._feed_from_row(row)

    def get_feed(self, feed_id: str) -> FeedState | None:
        with self._reading() as conn:
            row = conn.execute("SELECT * FROM feeds WHERE feed_id = ?", (feed_id,)).fetchone()
        return self._feed_from_row(row) if row else None

    def list_feeds(self) -> list[FeedState]:
        with self._reading() as conn:
            rows = conn.execute("SELECT * FROM feeds ORDER BY feed_id").fetchall()
        return [self._feed_from_row(row) for row in rows]

    def record_poll(
        self,
        feed_id: str,
        polled_at: datetime,
        outcome: PollOutcome,
        *,
        etag: str | None = _KEEP,
        last_modified: str | None = _KEEP,
        error: str | None = None,
    ) -> FeedState:
        assignments = ["last_polled_at = ?", "last_outcome = ?", "last_error = ?"]
        params: list[Any] = [_to_text(polled_at), outcome.value, error]
        if outcome is not PollOutcome.FAILED:
            assignments.append("last_success_at = ?")
            params.append(_to_text(polled_at))
            if etag is not _KEEP:
                assignments.append("etag = ?")
                params.append(etag)
            if last_modified is not _KEEP:
                assignments.append("last_modified = ?")
                params.append(last_modified)
        params.append(feed_id)
        with self._transaction() as conn:
            cursor = conn.execute(
                f"UPDATE feeds SET {', '.join(assignments)} WHERE feed_id = ?", params
            )
            if cursor.rowcount == 0:
                raise StoreError(f"unknown feed: {feed_id}")
            row = conn.execute("SELECT * FROM feeds WHERE feed_id = ?", (feed_id,)).fetchone()
        return self._feed_from_row(row)

    def get_record(self, feed_id: str, item_id: str) -> ProcessingRecord | None:
        with self._reading() as conn:
            row = conn.execute(
                "SELECT * FROM processing_records WHERE feed_id = ? AND item_id = ?",
                (feed_id, item_id),
            ).fetchone()
        return self._record_from_row(row) if row else None

    def record_success(
        self, feed_id: str, item_id: str, artifact_path: Path, processed_at: datetime
    ) -> bool:
        with self._transaction() as conn:
            cursor = conn.execute(
                """
                INSERT INTO processing_records
                    (feed_id, item_id, outcome, artifact_path, error, attempts, processed_at)
                VALUES (?, ?, 'succeeded', ?, NULL, 1, ?)
                ON CONFLICT(feed_id, item_id) DO UPDATE SET
                    outcome = 'succeeded',
                    artifact_path = excluded.artifact_path,
                    error = NULL,
                    attempts = processing_records.attempts + 1,
                    processed_at = excluded.processed_at
                WHERE processing_records.outcome != 'succeeded'
                """,
                (feed_id, item_id, str(artifact_path), _to_text(processed_at)),
            )
        return cursor.rowcount > 0

    def record_failure(
        self, feed_id: str, item_id: str, error: str, processed_at: datetime
    ) -> bool:
        with self._transaction() as conn:
            cursor = conn.execute(
                """
                INSERT INTO processing_records
                    (feed_id, item_id, outcome, artifact_path, error, attempts, processed_at)
                VALUES (?, ?, 'failed', NULL, ?, 1, ?)
                ON CONFLICT(feed_id, item_id) DO UPDATE SET
                    error = excluded.error,
                    attempts = processing_records.attempts + 1,
                    processed_at = excluded.processed_at
                WHERE processing_records.outcome != 'succeeded'
                """,
                (feed_id, item_id, error, _to_text(processed_at)),
            )
        return cursor.rowcount > 0

    def history(self, feed_id: str, limit: int = 20) -> list[ProcessingRecord]:
        with self._reading() as conn:
            rows = conn.execute(
                """
                SELECT * FROM processing_records WHERE feed_id = ?
                ORDER BY processed_at DESC, item_id LIMIT ?
                """,
                (feed_id, limit),
            ).fetchall()
        return [self._record_from_row(row) for row in rows]

    def purge_feed(self, feed_id: str) -> bool:
        with self._transaction() as conn:
            conn.execute("DELETE FROM processing_records WHERE feed_id = ?", (feed_id,))
            cursor = conn.execute("DELETE FROM feeds WHERE feed_id = ?", (feed_id,))
        return cursor.rowcount > 0

    def close(self) -> None:
        self.manager.close(self.path)

    @staticmethod
    def _feed_from_row(row: sqlite3.Row) -> FeedState:
        outcome = row["last_outcome"]
        return FeedState(
            feed_id=row["feed_id"],
            url=row["url"],
            etag=row["etag"],
            last_modified=row["last_modified"],
            last_polled_at=_from_text(row["last_polled_at"]),
            last_success_at=_from_text(row["last_success_at"]),
            last_outcome=PollOutcome(outcome) if outcome else None,
            last_error=row["last_error"],
        )

    @staticmethod
    def _record_from_row(row: sqlite3.Row) -> ProcessingRecord:
        path = row["artifact_path"]
        return ProcessingRecord(
            feed_id=row["feed_id"],
            item_id=row["item_id"],
            outcome=RecordOutcome(row["outcome"]),
            processed_at=_from_text(row["processed_at"]),
            artifact_path=Path(path) if path else None,
            error=row["error"],
            attempts=row["attempts"],
        )


class MemoryStateStore(StateStore):
    """In-process ledger with the same contract, used by tests and dry runs."""

    def __init__(self) -> None:
        self._lock = Lock()
        self._feeds: dict[str, FeedState] = {}
        self._records: dict[tuple[str, str], ProcessingRecord] = {}

    def ensure_feed(self, feed_id: str, url: str) -> FeedState:
        with self._lock:
            state = self._feeds.get(feed_id)
            if state is None:
                state = FeedState(feed_id=feed_id, url=url)
            elif state.url != url:
                state = replace(state, url=url)
            self._feeds[feed_id] = state
            return replace(state)

    def get_feed(self, feed_id: str) -> FeedState | None:
        with self._lock:
            state = self._feeds.get(feed_id)
            return replace(state) if state else None

    def list_feeds(self) -> list[FeedState]:
        with self._lock:
            return [replace(self._feeds[key]) for key in sorted(self._feeds)]

    def record_poll(
        self,
        feed_id: str,
        polled_at: datetime,
        outcome: PollOutcome,
        *,
        etag: str | None = _KEEP,
        last_modified: str | None = _KEEP,
        error: str | None = None,
    ) -> FeedState:
        with self._lock:
            state = self._feeds.get(feed_id)
            if state is None:
                raise StoreError(f"unknown feed: {feed_id}")
            changes: dict[str, Any] = {
                "last_polled_at": _utc(polled_at),
                "last_outcome": outcome,
                "last_error": error,
            }
            if outcome is not PollOutcome.FAILED:
                changes["last_success_at"] = _utc(polled_at)
                if etag is not _KEEP:
                    changes["etag"] = etag
                if last_modified is not _KEEP:
                    changes["last_modified"] = last_modified
            state = replace(state, **changes)
            self._feeds[feed_id] = state
            return replace(state)

    def get_record(self, feed_id: str, item_id: str) -> ProcessingRecord | None:
        with self._lock:
            record = self._records.get((feed_id, item_id))
            return replace(record) if record else None

    def record_success(
        self, feed_id: str, item_id: str, artifact_path: Path, processed_at: datetime
    ) -> bool:
        return self._upsert(
            feed_id,
            item_id,
            outcome=RecordOutcome.SUCCEEDED,
            processed_at=processed_at,
            artifact_path=artifact_path,
            error=None,
        )

    def record_failure(
        self, feed_id: str, item_id: str, error: str, processed_at: datetime
    ) -> bool:
        return self._upsert(
            feed_id,
            item_id,
            outcome=RecordOutcome.FAILED,
            processed_at=processed_at,
            artifact_path=None,
            error=error,
        )

    def _upsert(
        self,
        feed_id: str,
        item_id: str,
        *,
        outcome: RecordOutcome,
        processed_at: datetime,
        artifact_path: Path | None,
        error: str | None,
    ) -> bool:
        with self._lock:
            if feed_id not in self._feeds:
                raise StoreError(f"unknown feed: {feed_id}")
            existing = self._records.get((feed_id, item_id))
            if existing is not None and existing.succeeded:
                return False
            self._records[(feed_id, item_id)] = ProcessingRecord(
                feed_id=feed_id,
                item_id=item_id,
                outcome=outcome,
                processed_at=_utc(processed_at),
                artifact_path=artifact_path,
                error=error,
                attempts=(existing.attempts + 1) if existing else 1,
            )
            return True

    def history(self, feed_id: str, limit: int = 20) -> list[ProcessingRecord]:
        with self._lock:
            records = [r for (fid, _), r in self._records.items() if fid == feed_id]
        records.sort(key=lambda r: r.item_id)
        records.sort(key=lambda r: r.processed_at, reverse=True)
        return [replace(r) for r in records[:limit]]

    def purge_feed(self, feed_id: str) -> bool:
        with self._lock:
            for key in [key for key in self._records if key[0] == feed_id]:
                del self._records[key]
            return self._feeds.pop(feed_id, None) is not None


__all__ = [
    "FeedState",
    "MemoryStateStore",
    "PollOutcome",
    "ProcessingRecord",
    "RecordOutcome",
    "SQLiteStateStore",
    "StateStore",
]
