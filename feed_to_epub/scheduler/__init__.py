"""Scheduling of poll cycles."""

from .apsched_adapter import APSchedulerAdapter
from .due_table import DueTable
from .poller import CycleReport, PollScheduler

__all__ = ["APSchedulerAdapter", "CycleReport", "DueTable", "PollScheduler"]
