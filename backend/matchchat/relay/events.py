"""Wire protocol and relay effects.

Inbound frames are JSON objects tagged by ``type`` and parsed into one of
the models below through a discriminated union; anything that fails to
parse is a protocol error.

Protocol Message Types (client -> server):
    - join_queue: Join the text waiting queue
    - start_video: Join the video waiting queue
    - send_message: Relay chat text to the partner
    - next_user: Leave the current partner and re-queue (videoMode optional)
    - report_user: Report the partner, then behave like next_user
    - webrtc_signal: Opaque peer media negotiation payload for the partner

Server -> client frames are built by the small helpers at the bottom.
The SessionRelay never touches sockets; it returns ``Send`` and
``ScheduleMatch`` effects which the RelayHub carries out.
"""
import uuid
from datetime import datetime
from typing import Annotated, Any, Dict, List, Literal, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter

from .queues import QueueKind

SignalKind = Literal["offer", "answer", "ice-candidate", "toggle-video", "toggle-audio"]


# =============================================================================
# Inbound
# =============================================================================


class SignalPayload(BaseModel):
    """Peer media negotiation payload.

    Only ``type`` is read (for the audit trail); ``data`` and any extra
    keys are forwarded untouched. ``from``/``to`` are stamped by the server.
    """
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    type: SignalKind
    data: Any = None
    from_: Optional[str] = Field(None, alias="from")
    to: Optional[str] = None

    def routed(self, sender_id: str, recipient_id: str) -> Dict[str, Any]:
        payload = self.model_dump(exclude={"from_", "to"})
        payload["from"] = sender_id
        payload["to"] = recipient_id
        return payload


class JoinQueue(BaseModel):
    type: Literal["join_queue"]


class StartVideo(BaseModel):
    type: Literal["start_video"]


class SendMessage(BaseModel):
    type: Literal["send_message"]
    content: str


class NextUser(BaseModel):
    type: Literal["next_user"]
    videoMode: Optional[bool] = None


class ReportUser(BaseModel):
    type: Literal["report_user"]


class RelaySignal(BaseModel):
    type: Literal["webrtc_signal"]
    signal: SignalPayload


InboundEvent = Annotated[
    Union[JoinQueue, StartVideo, SendMessage, NextUser, ReportUser, RelaySignal],
    Field(discriminator="type"),
]

_inbound_adapter: TypeAdapter = TypeAdapter(InboundEvent)


def parse_inbound(raw: Union[str, bytes]) -> InboundEvent:
    """Parse one inbound frame.

    Raises:
        pydantic.ValidationError: malformed JSON, unknown type or bad fields.
    """
    return _inbound_adapter.validate_json(raw)


# =============================================================================
# Effects
# =============================================================================


class Send(BaseModel):
    """Write *payload* to one connection."""
    connection_id: str
    payload: Dict[str, Any]


class ScheduleMatch(BaseModel):
    """Run a match attempt on *kind* after *delay* seconds.

    Attributes:
        kind: Queue to match.
        avoid_pair: The two ids just split apart, if any.
        delay: Seconds to wait before matching.
        token: Queue generation when scheduled; a newer enqueue supersedes it.
    """
    kind: QueueKind
    avoid_pair: Optional[Tuple[str, str]] = None
    delay: float = 0.0
    token: int = 0


Effect = Union[Send, ScheduleMatch]
Outbox = List[Effect]


# =============================================================================
# Outbound frames
# =============================================================================


def connected(connection_id: str) -> Dict[str, Any]:
    return {"type": "connected", "connectionId": connection_id}


def waiting(kind: QueueKind, message: str) -> Dict[str, Any]:
    frame_type = "video_waiting" if kind == QueueKind.VIDEO else "waiting"
    return {"type": frame_type, "message": message}


def paired(room_id: str) -> Dict[str, Any]:
    return {
        "type": "paired",
        "roomId": room_id,
        "message": "You have been connected to a stranger!",
    }


def video_paired(room_id: str, is_initiator: bool) -> Dict[str, Any]:
    return {
        "type": "video_paired",
        "roomId": room_id,
        "isInitiator": is_initiator,
        "message": "Connected for video chat! Preparing video...",
    }


def chat_message(content: str) -> Dict[str, Any]:
    """Message body shared by the partner delivery and the sender echo."""
    return {
        "id": str(uuid.uuid4()),
        "content": content,
        "timestamp": datetime.utcnow().isoformat() + "Z",
        "isOwn": False,
    }


def message(body: Dict[str, Any]) -> Dict[str, Any]:
    return {"type": "message", "message": body}


def message_sent(body: Dict[str, Any]) -> Dict[str, Any]:
    return {"type": "message_sent", "message": {**body, "isOwn": True}}


def signal(payload: Dict[str, Any]) -> Dict[str, Any]:
    return {"type": "webrtc_signal", "signal": payload}


def partner_disconnected(is_video: bool) -> Dict[str, Any]:
    who = "video partner" if is_video else "partner"
    return {"type": "partner_disconnected", "message": f"Your {who} has disconnected"}


def report_submitted() -> Dict[str, Any]:
    return {"type": "report_submitted", "message": "Report submitted successfully"}


def error(text: str) -> Dict[str, Any]:
    return {"type": "error", "message": text}

