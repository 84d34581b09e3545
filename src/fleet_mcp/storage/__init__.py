"""Storage abstractions for Fleet MCP."""

from .history import ExecutionHistory
from .models import HistoryEntry, PersistedQueue, QueueItem
from .persister import JsonPersister, atomic_write_text

__all__ = [
    "ExecutionHistory",
    "HistoryEntry",
    "JsonPersister",
    "PersistedQueue",
    "QueueItem",
    "atomic_write_text",
]
