"""Active two-party rooms.

A ``Room`` binds exactly two distinct connections. Removing either
participant removes the whole room: half-open rooms are not representable.

Creating a room takes both participants out of every waiting queue and maps
both to the room in one synchronous step, so neither can be matched twice.
Video rooms additionally keep a small per-room signaling record (the signal
kinds each side has sent so far), dropped together with the room.
"""
import logging
import time
import uuid
from typing import Dict, List, Optional, Set

from pydantic import BaseModel, Field, model_validator

from .queues import QueueKind, QueueStore

logger = logging.getLogger(__name__)


class Room(BaseModel):
    """A paired session.

    Attributes:
        id: Unique room identifier.
        participants: The two connection ids; the first one drawn is the
            video initiator.
        created_at: Unix timestamp of the pairing.
        is_video: Whether this is a video session.
    """
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    participants: List[str]
    created_at: float = Field(default_factory=time.time)
    is_video: bool = False

    @model_validator(mode="after")
    def _two_distinct_participants(self) -> "Room":
        if len(self.participants) != 2 or self.participants[0] == self.participants[1]:
            raise ValueError("a room needs exactly two distinct participants")
        return self

    @property
    def initiator_id(self) -> str:
        return self.participants[0]

    @property
    def kind(self) -> QueueKind:
        return QueueKind.VIDEO if self.is_video else QueueKind.TEXT

    def partner_of(self, connection_id: str) -> Optional[str]:
        """The other participant, or None if *connection_id* is not in the room."""
        if connection_id not in self.participants:
            return None
        first, second = self.participants
        return second if connection_id == first else first


class RoomStore:
    """Rooms keyed by id plus the participant -> room index.

    Args:
        queues: The QueueStore whose entries are evicted when rooms are
            created or participants removed.
    """

    def __init__(self, queues: QueueStore) -> None:
        self._queues = queues
        self._rooms: Dict[str, Room] = {}
        self._room_by_participant: Dict[str, str] = {}
        # room_id -> {connection_id -> signal kinds sent}
        self._signaling: Dict[str, Dict[str, Set[str]]] = {}

    def create(self, first_id: str, second_id: str, is_video: bool = False) -> Room:
        """Pair two connections into a new room.

        Any room either side still held is torn down first.
        """
        room = Room(participants=[first_id, second_id], is_video=is_video)
        for cid in (first_id, second_id):
            previous = self._room_by_participant.get(cid)
            if previous is not None:
                self.remove(previous)
            self._queues.remove_everywhere(cid)

        self._rooms[room.id] = room
        self._room_by_participant[first_id] = room.id
        self._room_by_participant[second_id] = room.id
        if is_video:
            self._signaling[room.id] = {first_id: set(), second_id: set()}
        return room

    def get(self, room_id: str) -> Optional[Room]:
        return self._rooms.get(room_id)

    def by_participant(self, connection_id: str) -> Optional[Room]:
        room_id = self._room_by_participant.get(connection_id)
        return self._rooms.get(room_id) if room_id else None

    def remove(self, room_id: str) -> Optional[Room]:
        """Delete a room, both participant mappings and its signaling state."""
        room = self._rooms.pop(room_id, None)
        if room is None:
            return None
        for cid in room.participants:
            if self._room_by_participant.get(cid) == room_id:
                del self._room_by_participant[cid]
        self.clear_signaling(room_id)
        logger.debug("[Rooms] Removed room %s", room_id)
        return room

    def remove_participant(self, connection_id: str) -> Optional[Room]:
        """Delete the whole room *connection_id* belongs to and drop the id
        from both queues, whether or not a room was found."""
        room = self.by_participant(connection_id)
        if room is not None:
            self.remove(room.id)
        self._queues.remove_everywhere(connection_id)
        return room

    # =========================================================================
    # Video signaling state
    # =========================================================================

    def note_signal(self, room_id: str, sender_id: str, signal_kind: str) -> None:
        state = self._signaling.get(room_id)
        if state is not None and sender_id in state:
            state[sender_id].add(signal_kind)

    def signaling_state(self, room_id: str) -> Optional[Dict[str, Set[str]]]:
        return self._signaling.get(room_id)

    def clear_signaling(self, room_id: str) -> None:
        if self._signaling.pop(room_id, None) is not None:
            logger.debug("[Rooms] Signaling state cleared for room %s", room_id)

    def all(self) -> List[Room]:
        return list(self._rooms.values())

    def __len__(self) -> int:
        return len(self._rooms)
