"""Infra layer utilities (SQLite storage, state ledger)."""

from .state_store import (
    FeedState,
    MemoryStateStore,
    PollOutcome,
    ProcessingRecord,
    RecordOutcome,
    SQLiteStateStore,
    StateStore,
)
from .storage import SQLiteManager

__all__ = [
    "FeedState",
    "MemoryStateStore",
    "PollOutcome",
    "ProcessingRecord",
    "RecordOutcome",
    "SQLiteManager",
    "SQLiteStateStore",
    "StateStore",
]
