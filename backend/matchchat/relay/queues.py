"""Waiting queues for text and video pairing.

Two FIFO lists of ``WaitingEntry``. A connection id is in at most one queue
at a time: enqueueing into one kind removes the id from both first, so a
re-enqueue moves the entry to the tail with a fresh timestamp.

Each kind carries a generation counter bumped on every enqueue. Delayed
match attempts capture it as a token and are skipped when a newer enqueue
has happened in the meantime.
"""
import time
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, Field


class QueueKind(str, Enum):
    """Which waiting line an entry belongs to."""
    TEXT = "text"
    VIDEO = "video"


class WaitingEntry(BaseModel):
    """A connection waiting to be paired.

    Attributes:
        connection_id: The waiting connection.
        enqueued_at: Unix timestamp of the (latest) enqueue.
        ip_address: Client address snapshot taken at enqueue time.
        user_agent: Client string snapshot taken at enqueue time.
    """
    connection_id: str
    enqueued_at: float = Field(default_factory=time.time)
    ip_address: str = ""
    user_agent: str = ""


class QueueStore:
    """Ordered waiting lists, one per ``QueueKind``."""

    def __init__(self) -> None:
        self._queues: Dict[QueueKind, List[WaitingEntry]] = {kind: [] for kind in QueueKind}
        self._generations: Dict[QueueKind, int] = {kind: 0 for kind in QueueKind}

    def enqueue(self, kind: QueueKind, entry: WaitingEntry) -> None:
        """Append *entry* to the tail of *kind*, dropping any earlier entry
        for the same connection from both queues."""
        self.remove_everywhere(entry.connection_id)
        self._queues[kind].append(entry)
        self._generations[kind] += 1

    def remove(self, kind: QueueKind, connection_id: str) -> bool:
        """Remove a connection from one queue. Returns True if it was there."""
        queue = self._queues[kind]
        kept = [e for e in queue if e.connection_id != connection_id]
        removed = len(kept) != len(queue)
        self._queues[kind] = kept
        return removed

    def remove_everywhere(self, connection_id: str) -> None:
        for kind in QueueKind:
            self.remove(kind, connection_id)

    def snapshot(self, kind: QueueKind) -> List[WaitingEntry]:
        """Copy of the queue in arrival order (oldest first)."""
        return list(self._queues[kind])

    def kind_of(self, connection_id: str) -> Optional[QueueKind]:
        """The queue holding *connection_id*, or None."""
        for kind, queue in self._queues.items():
            if any(e.connection_id == connection_id for e in queue):
                return kind
        return None

    def contains(self, kind: QueueKind, connection_id: str) -> bool:
        return any(e.connection_id == connection_id for e in self._queues[kind])

    def generation(self, kind: QueueKind) -> int:
        return self._generations[kind]

    def size(self, kind: QueueKind) -> int:
        return len(self._queues[kind])
