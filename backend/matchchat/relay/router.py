"""WebSocket endpoint for anonymous pairing.

    - WebSocket /ws: one persistent connection per client

Protocol Flow:
    1. Client connects -> {type: "connected", connectionId}
    2. Client sends {type: "join_queue"} or {type: "start_video"}
       -> {type: "waiting"} / {type: "video_waiting"}, later
          {type: "paired", roomId} / {type: "video_paired", roomId, isInitiator}
    3. {type: "send_message", content} -> partner gets {type: "message"},
       sender gets {type: "message_sent"}
    4. {type: "webrtc_signal", signal} -> partner gets the signal with
       from/to stamped
    5. {type: "next_user", videoMode?} / {type: "report_user"} -> both sides
       re-queued
    6. On disconnect -> partner gets {type: "partner_disconnected"} and is
       re-queued
"""
import logging

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from .hub import RelayHub

logger = logging.getLogger(__name__)

router = APIRouter()


@router.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket) -> None:
    """Run one client's connection until it closes."""
    hub: RelayHub = websocket.app.state.hub
    connection_id = await hub.connect(websocket)

    try:
        while True:
            frame = await websocket.receive()
            if frame["type"] == "websocket.disconnect":
                raise WebSocketDisconnect(frame.get("code", 1000))
            raw = frame.get("text")
            if raw is None:
                raw = frame.get("bytes") or b""
            await hub.receive(connection_id, raw)
    except WebSocketDisconnect:
        logger.info(f"[WS] Client {connection_id} closed the connection")
    except RuntimeError as e:
        # Raised by Starlette when the socket was already closed server-side.
        logger.info(f"[WS] Connection {connection_id} ended: {e}")
    finally:
        await hub.disconnect(connection_id)
