"""Session relay: the per-event state machine.

Every inbound event is handled synchronously against the owned stores and
returns a list of effects (``Send`` / ``ScheduleMatch``) for the transport
adapter to carry out. No handler awaits, so store mutations from two events
never interleave on the single event loop.

Connection states (derived from the stores, see ``state_of``):
    connected -> waiting | video_waiting -> paired | video_paired -> ...
    any -> disconnected

Teardown paths:
    - next / report: both sides are re-queued on the chosen queue, the pair
      is remembered for avoidance and a delayed match is scheduled.
    - disconnect / soft disconnect (partner unreachable): the survivor gets
      ``partner_disconnected``, is re-queued on the room's queue and a
      shorter delayed match is scheduled.
    - join while paired: the joiner is queued and matched at once; the
      partner is released as on a disconnect.
"""
import logging
from enum import Enum
from typing import Optional, Tuple, Union

from pydantic import ValidationError

from . import events
from .matchmaker import AvoidPair, Matchmaker
from .queues import QueueKind, QueueStore, WaitingEntry
from .registry import Connection, ConnectionRegistry
from .rooms import Room, RoomStore
from ..audit.schemas import AuditAction, AuditRecordCreate
from ..audit.service import AuditSink
from ..config import MatchingSettings

logger = logging.getLogger(__name__)

GENERIC_ERROR = "Failed to process message"


class ConnectionState(str, Enum):
    """Where a connection currently stands."""
    CONNECTED = "connected"
    WAITING = "waiting"
    PAIRED = "paired"
    VIDEO_WAITING = "video_waiting"
    VIDEO_PAIRED = "video_paired"
    DISCONNECTED = "disconnected"


def _looking(kind: QueueKind, *, new: bool = False, still: bool = False) -> str:
    lead = "Still looking" if still else "Looking"
    someone = "someone new" if new else "someone"
    what = "video chat" if kind == QueueKind.VIDEO else "chat"
    return f"{lead} for {someone} to {what} with..."


class SessionRelay:
    """Interprets client events and mutates the registry, queues and rooms.

    Args:
        registry: Live connections.
        queues: Waiting queues.
        rooms: Active rooms.
        matchmaker: Pairing algorithm bound to the same stores.
        audit: Lifecycle audit sink.
        settings: Matching delays and the message length cap.
    """

    def __init__(
        self,
        registry: ConnectionRegistry,
        queues: QueueStore,
        rooms: RoomStore,
        matchmaker: Matchmaker,
        audit: AuditSink,
        settings: Optional[MatchingSettings] = None,
    ) -> None:
        self.registry = registry
        self.queues = queues
        self.rooms = rooms
        self.matchmaker = matchmaker
        self._audit = audit
        self._settings = settings or MatchingSettings()

    # =========================================================================
    # Entry points
    # =========================================================================

    def connect(self, ip_address: str = "", user_agent: str = "") -> Tuple[str, events.Outbox]:
        """Register a new connection and greet it with its identifier."""
        connection_id = self.registry.register(ip_address, user_agent)
        return connection_id, [
            events.Send(connection_id=connection_id, payload=events.connected(connection_id))
        ]

    def handle(self, connection_id: str, raw: Union[str, bytes]) -> events.Outbox:
        """Parse and dispatch one raw inbound frame.

        Malformed frames produce a generic error for the sender and change
        nothing else.
        """
        if connection_id not in self.registry:
            logger.debug("[Relay] Frame from unknown connection %s ignored", connection_id)
            return []
        self.registry.mark_alive(connection_id)

        try:
            event = events.parse_inbound(raw)
        except ValidationError as exc:
            logger.warning(
                "[Relay] Malformed frame from %s: %d validation error(s)",
                connection_id,
                exc.error_count(),
            )
            return [events.Send(connection_id=connection_id, payload=events.error(GENERIC_ERROR))]

        return self.dispatch(connection_id, event)

    def dispatch(self, connection_id: str, event: events.InboundEvent) -> events.Outbox:
        """Apply one parsed event."""
        outbox: events.Outbox = []
        logger.debug("[Relay] %s from %s", event.type, connection_id)

        if isinstance(event, events.JoinQueue):
            self._join(connection_id, QueueKind.TEXT, outbox)
        elif isinstance(event, events.StartVideo):
            self._join(connection_id, QueueKind.VIDEO, outbox)
        elif isinstance(event, events.SendMessage):
            self._send_message(connection_id, event.content, outbox)
        elif isinstance(event, events.NextUser):
            self._next(connection_id, event.videoMode, outbox)
        elif isinstance(event, events.ReportUser):
            self._report(connection_id, outbox)
        elif isinstance(event, events.RelaySignal):
            self._relay_signal(connection_id, event.signal, outbox)
        return outbox

    def disconnect(self, connection_id: str) -> events.Outbox:
        """Remove a connection (graceful close, send failure or heartbeat
        timeout) and recover its partner, if any."""
        connection = self.registry.unregister(connection_id)
        outbox: events.Outbox = []

        room = self.rooms.by_participant(connection_id)
        partner_id = room.partner_of(connection_id) if room else None
        if room is not None:
            logger.info("[Relay] %s left room %s", connection_id, room.id)
            if partner_id is not None and partner_id in self.registry:
                self._release_survivor(room, partner_id, outbox)
            else:
                self.rooms.remove(room.id)

        self.rooms.remove_participant(connection_id)
        self._record(
            connection_id,
            AuditAction.DISCONNECT,
            partner_id=partner_id,
            details="User disconnected from chat" if room else "User disconnected",
            connection=connection,
        )
        return outbox

    def run_scheduled_match(
        self,
        kind: QueueKind,
        token: int,
        avoid_pair: Optional[AvoidPair] = None,
    ) -> events.Outbox:
        """Run a delayed match unless a newer enqueue superseded it.

        Pairs repeatedly until fewer than two connections wait, since several
        teardowns may have been folded into this one attempt.
        """
        if self.queues.generation(kind) != token:
            logger.debug("[Relay] Delayed %s match superseded (token %d)", kind.value, token)
            return []

        outbox: events.Outbox = []
        self._drain(kind, outbox, avoid_pair)
        return outbox

    def state_of(self, connection_id: str) -> ConnectionState:
        if connection_id not in self.registry:
            return ConnectionState.DISCONNECTED
        room = self.rooms.by_participant(connection_id)
        if room is not None:
            return ConnectionState.VIDEO_PAIRED if room.is_video else ConnectionState.PAIRED
        kind = self.queues.kind_of(connection_id)
        if kind == QueueKind.VIDEO:
            return ConnectionState.VIDEO_WAITING
        if kind == QueueKind.TEXT:
            return ConnectionState.WAITING
        return ConnectionState.CONNECTED

    # =========================================================================
    # Handlers
    # =========================================================================

    def _join(self, connection_id: str, kind: QueueKind, outbox: events.Outbox) -> None:
        room = self.rooms.by_participant(connection_id)

        if room is not None:
            # Leaving a live room for a queue: the joiner is matched right away
            # while the partner is released like after a disconnect, so the
            # two cannot be re-paired by this join.
            partner_id = room.partner_of(connection_id)
            self.rooms.remove(room.id)
            survivor = partner_id if partner_id in self.registry else None
            if survivor is not None:
                self.matchmaker.remember_split(room.kind, (connection_id, survivor))

            self._enqueue_and_match(connection_id, kind, outbox)
            if survivor is not None:
                self._release_survivor(room, survivor, outbox)
            return

        self._enqueue_and_match(connection_id, kind, outbox)

    def _enqueue_and_match(self, connection_id: str, kind: QueueKind, outbox: events.Outbox) -> None:
        self._requeue(connection_id, kind)
        self._record_join(connection_id, kind)
        # This enqueue supersedes any pending delayed attempt on the queue.
        self._drain(kind, outbox)
        if self.rooms.by_participant(connection_id) is None:
            outbox.append(events.Send(connection_id=connection_id, payload=events.waiting(kind, _looking(kind))))

    def _send_message(self, connection_id: str, content: str, outbox: events.Outbox) -> None:
        room = self.rooms.by_participant(connection_id)
        if room is None:
            outbox.append(self._error(connection_id, "You are not in a chat room"))
            return
        if not content or not content.strip():
            outbox.append(self._error(connection_id, "Message content is required"))
            return

        partner_id = room.partner_of(connection_id)
        if partner_id not in self.registry:
            self._soft_disconnect(connection_id, room, outbox)
            return

        body = events.chat_message(content[:self._settings.max_message_length])
        outbox.append(events.Send(connection_id=partner_id, payload=events.message(body)))
        outbox.append(events.Send(connection_id=connection_id, payload=events.message_sent(body)))

        # Content is never recorded.
        self._record(connection_id, AuditAction.MESSAGE, partner_id=partner_id, details="Message sent")

    def _next(self, connection_id: str, video_mode: Optional[bool], outbox: events.Outbox) -> None:
        room = self.rooms.by_participant(connection_id)

        if room is None:
            queued = self.queues.kind_of(connection_id)
            if queued is not None:
                kind = QueueKind.VIDEO if video_mode or queued == QueueKind.VIDEO else QueueKind.TEXT
                outbox.append(events.Send(
                    connection_id=connection_id,
                    payload=events.waiting(kind, _looking(kind, still=True)),
                ))
                return
            self._join(connection_id, QueueKind.VIDEO if video_mode else QueueKind.TEXT, outbox)
            return

        if video_mode is None:
            kind = room.kind
        else:
            kind = QueueKind.VIDEO if video_mode else QueueKind.TEXT
        partner_id = room.partner_of(connection_id)

        self._record(
            connection_id,
            AuditAction.NEXT,
            partner_id=partner_id,
            details="User clicked next to find new partner",
        )

        # Removing the room also drops its signaling state.
        self.rooms.remove(room.id)

        if partner_id not in self.registry:
            self._requeue(connection_id, kind)
            self._drain(kind, outbox)
            if self.rooms.by_participant(connection_id) is None:
                outbox.append(events.Send(connection_id=connection_id, payload=events.waiting(kind, _looking(kind))))
            return

        for cid in (connection_id, partner_id):
            self._requeue(cid, kind)
            outbox.append(events.Send(connection_id=cid, payload=events.waiting(kind, _looking(kind, new=True))))

        pair = (connection_id, partner_id)
        self.matchmaker.remember_split(kind, pair)
        outbox.append(self._schedule(kind, pair, self._settings.rematch_delay_after_next_seconds))

    def _report(self, connection_id: str, outbox: events.Outbox) -> None:
        room = self.rooms.by_participant(connection_id)
        if room is None:
            outbox.append(self._error(connection_id, "No active chat to report"))
            return

        partner_id = room.partner_of(connection_id)
        self._record(
            connection_id,
            AuditAction.REPORT,
            partner_id=partner_id,
            details=f"User reported partner {partner_id} for inappropriate behavior",
        )
        logger.info("[Relay] %s reported partner %s", connection_id, partner_id)

        outbox.append(events.Send(connection_id=connection_id, payload=events.report_submitted()))
        self._next(connection_id, None, outbox)

    def _relay_signal(self, connection_id: str, signal: events.SignalPayload, outbox: events.Outbox) -> None:
        room = self.rooms.by_participant(connection_id)
        if room is None or not room.is_video:
            outbox.append(self._error(connection_id, "Not in a video chat room"))
            return

        partner_id = room.partner_of(connection_id)
        if partner_id not in self.registry:
            self._soft_disconnect(connection_id, room, outbox)
            return

        outbox.append(events.Send(
            connection_id=partner_id,
            payload=events.signal(signal.routed(connection_id, partner_id)),
        ))
        self.rooms.note_signal(room.id, connection_id, signal.type)
        self._record(
            connection_id,
            AuditAction.SIGNAL,
            partner_id=partner_id,
            details=f"WebRTC signal type: {signal.type}",
        )

    # =========================================================================
    # Helpers
    # =========================================================================

    def _soft_disconnect(self, connection_id: str, room: Room, outbox: events.Outbox) -> None:
        """Partner vanished between pairing and use: recover the sender."""
        logger.info("[Relay] Partner of %s unreachable in room %s", connection_id, room.id)
        partner_id = room.partner_of(connection_id)
        self._release_survivor(room, connection_id, outbox)
        if partner_id is not None:
            self.queues.remove_everywhere(partner_id)

    def _release_survivor(self, room: Room, survivor_id: str, outbox: events.Outbox) -> None:
        """Tear *room* down and put the remaining participant back in line."""
        self.rooms.remove(room.id)
        kind = room.kind
        outbox.append(events.Send(connection_id=survivor_id, payload=events.partner_disconnected(room.is_video)))
        self._requeue(survivor_id, kind)
        outbox.append(events.Send(connection_id=survivor_id, payload=events.waiting(kind, _looking(kind))))
        outbox.append(self._schedule(kind, None, self._settings.rematch_delay_after_disconnect_seconds))

    def _drain(self, kind: QueueKind, outbox: events.Outbox, avoid_pair: Optional[AvoidPair] = None) -> None:
        """Pair from *kind* until fewer than two connections wait."""
        while self.matchmaker.attempt_match(kind, avoid_pair, outbox=outbox) is not None:
            pass

    def _requeue(self, connection_id: str, kind: QueueKind) -> None:
        connection = self.registry.find(connection_id)
        self.queues.enqueue(kind, WaitingEntry(
            connection_id=connection_id,
            ip_address=connection.ip_address if connection else "",
            user_agent=connection.user_agent if connection else "",
        ))

    def _schedule(self, kind: QueueKind, avoid_pair: Optional[AvoidPair], delay: float) -> events.ScheduleMatch:
        return events.ScheduleMatch(
            kind=kind,
            avoid_pair=avoid_pair,
            delay=delay,
            token=self.queues.generation(kind),
        )

    def _error(self, connection_id: str, text: str) -> events.Send:
        logger.info("[Relay] Rejected event from %s: %s", connection_id, text)
        return events.Send(connection_id=connection_id, payload=events.error(text))

    def _record_join(self, connection_id: str, kind: QueueKind) -> None:
        label = "video" if kind == QueueKind.VIDEO else "text"
        self._record(connection_id, AuditAction.JOIN, details=f"Joined {label} queue")

    def _record(
        self,
        connection_id: str,
        action: AuditAction,
        *,
        partner_id: Optional[str] = None,
        details: Optional[str] = None,
        connection: Optional[Connection] = None,
    ) -> None:
        connection = connection or self.registry.find(connection_id)
        self._audit.record(AuditRecordCreate(
            connection_id=connection_id,
            partner_connection_id=partner_id,
            action=action,
            details=details,
            ip_address=connection.ip_address if connection else None,
            user_agent=connection.user_agent if connection else None,
        ))
