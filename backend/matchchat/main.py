"""Matchchat Backend Application.

Anonymous one-to-one text and video chat: connections wait in a text or
video queue, get paired into two-person rooms, and have their messages and
peer media negotiation signals relayed until either side leaves.

Modules:
    - relay: connection registry, queues, rooms, matchmaker, session relay
      and the WebSocket endpoint
    - audit: session lifecycle audit trail
"""
import logging
from contextlib import asynccontextmanager
from typing import Optional

import uvicorn
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from matchchat.audit.router import router as audit_router
from matchchat.audit.service import create_audit_sink
from matchchat.config import AppSettings, get_config
from matchchat.relay.hub import RelayHub
from matchchat.relay.matchmaker import Matchmaker
from matchchat.relay.queues import QueueKind, QueueStore
from matchchat.relay.registry import ConnectionRegistry
from matchchat.relay.rooms import RoomStore
from matchchat.relay.router import router as relay_router
from matchchat.relay.session import SessionRelay

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)

for _noisy in ("uvicorn.access", "duckdb"):
    logging.getLogger(_noisy).setLevel(logging.WARNING)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager for startup/shutdown events."""
    # Startup
    config: AppSettings = app.state.settings

    configured_level = getattr(logging, config.logging.level.upper(), None)
    if configured_level is not None:
        logging.getLogger().setLevel(configured_level)
        logger.info("Root logger level set to %s", config.logging.level.upper())

    app.state.hub.start()
    logger.info(
        f"Matchchat ready on http://{config.server.host}:{config.server.port} "
        f"(audit backend: {config.audit.backend})"
    )

    yield  # Application runs here

    # Shutdown
    await app.state.hub.stop()
    app.state.audit_sink.close()
    logger.info("Application shutdown complete")


def create_app(settings: Optional[AppSettings] = None) -> FastAPI:
    """Build the application with its own set of stores.

    Every call creates fresh registry, queue, room and audit instances, so
    tests can run isolated apps side by side.

    Args:
        settings: Settings to use. Defaults to ``get_config()``.
    """
    settings = settings or get_config()

    application = FastAPI(
        title="Matchchat API",
        description="Anonymous pairing and session relay for text and video chat",
        version="0.1.0",
        lifespan=lifespan,
    )
    application.add_middleware(
        CORSMiddleware,
        allow_origins=settings.server.allowed_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    registry = ConnectionRegistry()
    queues = QueueStore()
    rooms = RoomStore(queues)
    audit_sink = create_audit_sink(settings.audit.backend, settings.audit.db_path)
    matchmaker = Matchmaker(queues, rooms, audit_sink)
    relay = SessionRelay(registry, queues, rooms, matchmaker, audit_sink, settings.matching)

    application.state.settings = settings
    application.state.audit_sink = audit_sink
    application.state.relay = relay
    application.state.hub = RelayHub(relay, settings.heartbeat.interval_seconds)

    application.include_router(relay_router)
    application.include_router(audit_router)

    @application.get("/health")
    async def health() -> dict:
        """Health check endpoint.

        Returns:
            dict: Status object indicating the server is running.
        """
        return {"status": "ok"}

    @application.get("/stats")
    async def stats(request: Request) -> dict:
        """Current live connection, queue and room counts."""
        current: SessionRelay = request.app.state.relay
        return {
            "connections": len(current.registry),
            "waitingText": current.queues.size(QueueKind.TEXT),
            "waitingVideo": current.queues.size(QueueKind.VIDEO),
            "rooms": len(current.rooms),
        }

    return application


app = create_app()


def run() -> None:
    """Serve the module-level app with uvicorn's protocol-level pings."""
    config = get_config()
    uvicorn.run(
        app,
        host=config.server.host,
        port=config.server.port,
        ws_ping_interval=config.heartbeat.interval_seconds,
        ws_ping_timeout=config.heartbeat.timeout_seconds,
    )


if __name__ == "__main__":
    run()
