"""Registry of live connections.

Each accepted WebSocket gets an opaque, backend-generated identifier and a
``Connection`` record holding its liveness flag and a coarse snapshot of the
client (origin address, user agent). The registry knows nothing about
sockets; the RelayHub keeps the id -> WebSocket mapping.

Liveness:
    ``sweep_dead()`` is called once per heartbeat interval. Connections that
    have not been marked alive since the previous sweep are removed and
    returned; every survivor is flagged not-alive and must confirm again
    before the next sweep. The RelayHub confirms every connection whose
    socket is still open (uvicorn closes sockets that stop answering its
    protocol-level pings); an inbound frame also counts.
"""
import logging
import time
import uuid
from typing import Dict, List, Optional

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)


class Connection(BaseModel):
    """A live client connection.

    Attributes:
        id: Opaque identifier issued to the client on connect.
        is_alive: Confirmed liveness since the last sweep.
        created_at: Unix timestamp of the connect.
        ip_address: Origin address (may be empty).
        user_agent: Client string (may be empty).
    """
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    is_alive: bool = True
    created_at: float = Field(default_factory=time.time)
    ip_address: str = ""
    user_agent: str = ""


class ConnectionRegistry:
    """Tracks live connections and their liveness.

    Designed for a single event loop; not thread-safe.
    """

    def __init__(self) -> None:
        self._connections: Dict[str, Connection] = {}

    def register(self, ip_address: str = "", user_agent: str = "") -> str:
        """Create a connection record and return its new identifier."""
        connection = Connection(ip_address=ip_address, user_agent=user_agent)
        self._connections[connection.id] = connection
        logger.info("[Registry] Registered connection %s", connection.id)
        return connection.id

    def unregister(self, connection_id: str) -> Optional[Connection]:
        """Remove a connection. Returns the removed record, if any."""
        connection = self._connections.pop(connection_id, None)
        if connection is not None:
            logger.info("[Registry] Unregistered connection %s", connection_id)
        return connection

    def find(self, connection_id: str) -> Optional[Connection]:
        return self._connections.get(connection_id)

    def mark_alive(self, connection_id: str) -> None:
        connection = self._connections.get(connection_id)
        if connection is not None:
            connection.is_alive = True

    def sweep_dead(self) -> List[str]:
        """Remove connections that missed the last heartbeat.

        Returns:
            Identifiers of the removed connections. Their cleanup (queue and
            room cascade) is the caller's job.
        """
        dead = [cid for cid, conn in self._connections.items() if not conn.is_alive]
        for cid in dead:
            del self._connections[cid]
        for connection in self._connections.values():
            connection.is_alive = False
        if dead:
            logger.info("[Registry] Swept %d dead connection(s)", len(dead))
        return dead

    def ids(self) -> List[str]:
        return list(self._connections)

    def __len__(self) -> int:
        return len(self._connections)

    def __contains__(self, connection_id: object) -> bool:
        return connection_id in self._connections
