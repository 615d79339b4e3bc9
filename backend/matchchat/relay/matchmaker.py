"""Pairing of waiting connections.

The matchmaker runs after every queue mutation. It draws two entries from
one queue, creates a room for them, tells both sides and writes one audit
record per participant.

Selection (``select_pair``):
    - Fewer than two entries: no match.
    - Standard case: the two oldest entries (FIFO).
    - Avoidance case, when more than two are waiting and an avoid pair (the
      two ids just split by "next") is known: prefer two entries outside the
      pair; with only one outsider, pair it with the oldest avoided entry;
      with no outsider, fall back to FIFO.

This is a greedy O(n) heuristic. Only the most recently split pair per
queue is remembered, and it is forgotten as soon as either of its members
is matched.
"""
import logging
from typing import Dict, Iterable, Optional, Sequence, Tuple

from . import events
from .queues import QueueKind, QueueStore, WaitingEntry
from .rooms import Room, RoomStore
from ..audit.schemas import AuditAction, AuditRecordCreate
from ..audit.service import AuditSink

logger = logging.getLogger(__name__)

AvoidPair = Tuple[str, str]


def select_pair(
    entries: Sequence[WaitingEntry],
    avoid_pair: Optional[Iterable[str]] = None,
) -> Optional[Tuple[WaitingEntry, WaitingEntry]]:
    """Pick the two entries to pair, or None if fewer than two wait.

    The first entry of the returned tuple is the one drawn first (and so the
    initiator of a video room).
    """
    if len(entries) < 2:
        return None

    avoid = set(avoid_pair or ())
    if len(entries) > 2 and len(avoid) == 2:
        available = [e for e in entries if e.connection_id not in avoid]
        if len(available) >= 2:
            return available[0], available[1]
        if len(available) == 1:
            avoided = next(e for e in entries if e.connection_id in avoid)
            return available[0], avoided

    return entries[0], entries[1]


class Matchmaker:
    """Creates rooms from waiting queues.

    Args:
        queues: Waiting queues to draw from.
        rooms: Room store that receives new rooms.
        audit: Sink for the two ``paired`` records of every match.
    """

    def __init__(self, queues: QueueStore, rooms: RoomStore, audit: AuditSink) -> None:
        self._queues = queues
        self._rooms = rooms
        self._audit = audit
        self._recent_splits: Dict[QueueKind, AvoidPair] = {}

    def remember_split(self, kind: QueueKind, pair: AvoidPair) -> None:
        """Record the pair just split on *kind*; it becomes the default
        avoidance set for later attempts on that queue."""
        self._recent_splits[kind] = pair

    def recent_split(self, kind: QueueKind) -> Optional[AvoidPair]:
        return self._recent_splits.get(kind)

    def attempt_match(
        self,
        kind: QueueKind,
        avoid_pair: Optional[AvoidPair] = None,
        *,
        use_remembered: bool = True,
        outbox: Optional[events.Outbox] = None,
    ) -> Optional[Room]:
        """Pair two waiting connections from *kind*.

        Args:
            kind: Queue to match from.
            avoid_pair: Ids to keep apart. Defaults to the pair most recently
                split on this queue.
            use_remembered: When False and no *avoid_pair* is given, match in
                plain FIFO order.
            outbox: When given, ``paired``/``video_paired`` frames for both
                sides are appended to it.

        Returns:
            The new room, or None if fewer than two connections wait.
        """
        if avoid_pair is None and use_remembered:
            avoid_pair = self._recent_splits.get(kind)

        pair = select_pair(self._queues.snapshot(kind), avoid_pair)
        if pair is None:
            return None
        first, second = pair

        is_video = kind == QueueKind.VIDEO
        room = self._rooms.create(first.connection_id, second.connection_id, is_video=is_video)
        split = self._recent_splits.get(kind)
        if split is not None and (first.connection_id in split or second.connection_id in split):
            del self._recent_splits[kind]

        if outbox is not None:
            if is_video:
                outbox.append(events.Send(
                    connection_id=first.connection_id,
                    payload=events.video_paired(room.id, is_initiator=True),
                ))
                outbox.append(events.Send(
                    connection_id=second.connection_id,
                    payload=events.video_paired(room.id, is_initiator=False),
                ))
            else:
                for entry in (first, second):
                    outbox.append(events.Send(
                        connection_id=entry.connection_id,
                        payload=events.paired(room.id),
                    ))

        label = "Video paired" if is_video else "Paired"
        for entry, partner in ((first, second), (second, first)):
            self._audit.record(AuditRecordCreate(
                connection_id=entry.connection_id,
                partner_connection_id=partner.connection_id,
                action=AuditAction.PAIRED,
                details=f"{label} with {partner.connection_id}",
                ip_address=entry.ip_address,
                user_agent=entry.user_agent,
            ))

        logger.info(
            "[Match] %s %s%s and %s in room %s",
            label,
            first.connection_id,
            " (initiator)" if is_video else "",
            second.connection_id,
            room.id,
        )
        return room
