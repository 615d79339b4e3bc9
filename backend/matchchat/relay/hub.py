"""Transport adapter between WebSockets and the SessionRelay.

The hub owns everything that touches I/O:
    - the connection id -> WebSocket mapping
    - writing ``Send`` effects to sockets (in order, per handler turn)
    - the asyncio tasks behind ``ScheduleMatch`` effects
    - the heartbeat loop that sweeps connections whose socket has closed

Protocol-level WebSocket pings are left to uvicorn (``ws_ping_interval`` /
``ws_ping_timeout``), which closes sockets that stop answering; browsers
answer those pings on their own, so an idle client is never dropped.

A failed send is treated like a disconnect of that connection; its socket
is closed as well.

Thread Safety:
    Designed for a single event loop. It is NOT thread-safe.
"""
import asyncio
import logging
from typing import Dict, Iterable, List, Optional, Set, Union

from fastapi import WebSocket
from starlette.websockets import WebSocketState

from . import events
from .session import SessionRelay

logger = logging.getLogger(__name__)


class RelayHub:
    """Executes relay effects against live WebSockets.

    Args:
        relay: The state machine producing effects.
        heartbeat_interval: Seconds between liveness sweeps.
    """

    def __init__(self, relay: SessionRelay, heartbeat_interval: float = 30.0) -> None:
        self.relay = relay
        self._heartbeat_interval = heartbeat_interval
        self._sockets: Dict[str, WebSocket] = {}
        self._tasks: Set[asyncio.Task] = set()
        self._heartbeat_task: Optional[asyncio.Task] = None

    # =========================================================================
    # Connection lifecycle
    # =========================================================================

    async def connect(self, websocket: WebSocket) -> str:
        """Accept a WebSocket, register it and send the ``connected`` frame."""
        await websocket.accept()

        ip_address = websocket.client.host if websocket.client else ""
        if not ip_address:
            forwarded = websocket.headers.get("x-forwarded-for", "")
            ip_address = forwarded.split(",")[0].strip()
        user_agent = websocket.headers.get("user-agent", "")

        connection_id, effects = self.relay.connect(ip_address, user_agent)
        self._sockets[connection_id] = websocket
        logger.info("[Hub] New connection %s (%d live)", connection_id, len(self._sockets))
        await self.dispatch(effects)
        return connection_id

    async def receive(self, connection_id: str, raw: Union[str, bytes]) -> None:
        await self.dispatch(self.relay.handle(connection_id, raw))

    async def disconnect(self, connection_id: str) -> None:
        """Run the disconnect path once per connection."""
        known = self._sockets.pop(connection_id, None) is not None
        if not known and connection_id not in self.relay.registry:
            return
        logger.info("[Hub] Connection %s gone", connection_id)
        await self.dispatch(self.relay.disconnect(connection_id))

    def is_connected(self, connection_id: str) -> bool:
        return connection_id in self._sockets

    # =========================================================================
    # Effects
    # =========================================================================

    async def dispatch(self, effects: Iterable[events.Effect]) -> None:
        """Carry out effects in order; disconnect any socket that fails."""
        failed: List[str] = []
        for effect in effects:
            if isinstance(effect, events.ScheduleMatch):
                self._schedule(effect)
                continue
            websocket = self._sockets.get(effect.connection_id)
            if websocket is None or effect.connection_id in failed:
                continue
            if not await self._safe_send(websocket, effect.payload):
                failed.append(effect.connection_id)

        for connection_id in failed:
            websocket = self._sockets.get(connection_id)
            await self.disconnect(connection_id)
            if websocket is not None:
                await self._close(websocket)

    async def _safe_send(self, websocket: WebSocket, payload: dict) -> bool:
        """Send JSON to a WebSocket.

        Returns:
            True if successful, False if the connection failed.
        """
        try:
            await websocket.send_json(payload)
            return True
        except Exception as e:
            logger.debug(f"[Hub] Failed to send to connection: {e}")
            return False

    async def _close(self, websocket: WebSocket) -> None:
        if websocket.application_state == WebSocketState.DISCONNECTED:
            return
        try:
            await websocket.close(code=1001)
        except Exception as e:
            logger.debug(f"[Hub] Close of dead connection failed: {e}")

    def _schedule(self, effect: events.ScheduleMatch) -> None:
        task = asyncio.create_task(self._delayed_match(effect))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _delayed_match(self, effect: events.ScheduleMatch) -> None:
        await asyncio.sleep(effect.delay)
        try:
            effects = self.relay.run_scheduled_match(effect.kind, effect.token, effect.avoid_pair)
            await self.dispatch(effects)
        except Exception:
            logger.exception("[Hub] Delayed %s match failed", effect.kind.value)

    # =========================================================================
    # Heartbeat
    # =========================================================================

    @staticmethod
    def _is_open(websocket: WebSocket) -> bool:
        return (
            websocket.client_state == WebSocketState.CONNECTED
            and websocket.application_state == WebSocketState.CONNECTED
        )

    async def sweep_once(self) -> List[str]:
        """Confirm every connection whose socket is still open, then drop
        the ones left unconfirmed since the previous sweep.

        Returns:
            Identifiers of the swept connections.
        """
        for connection_id in self.relay.registry.ids():
            websocket = self._sockets.get(connection_id)
            if websocket is not None and self._is_open(websocket):
                self.relay.registry.mark_alive(connection_id)

        dead = self.relay.registry.sweep_dead()
        for connection_id in dead:
            websocket = self._sockets.get(connection_id)
            await self.disconnect(connection_id)
            if websocket is not None:
                await self._close(websocket)
        return dead

    async def _heartbeat_loop(self) -> None:
        while True:
            await asyncio.sleep(self._heartbeat_interval)
            try:
                await self.sweep_once()
            except Exception:
                logger.exception("[Hub] Heartbeat sweep failed")

    def start(self) -> None:
        if self._heartbeat_task is None:
            self._heartbeat_task = asyncio.create_task(self._heartbeat_loop())
            logger.info("[Hub] Heartbeat started (every %ss)", self._heartbeat_interval)

    async def stop(self) -> None:
        """Cancel the heartbeat and any pending delayed matches."""
        pending = list(self._tasks)
        if self._heartbeat_task is not None:
            pending.append(self._heartbeat_task)
            self._heartbeat_task = None
        for task in pending:
            task.cancel()
        await asyncio.gather(*pending, return_exceptions=True)
        self._tasks.clear()
        logger.info("[Hub] Stopped")
