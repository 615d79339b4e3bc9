"""Shared test fixtures and configuration for backend tests."""
from typing import List

import pytest
from fastapi.testclient import TestClient

from matchchat.audit.service import MemoryAuditSink
from matchchat.config import AppSettings, HeartbeatSettings, MatchingSettings
from matchchat.main import create_app
from matchchat.relay import events
from matchchat.relay.matchmaker import Matchmaker
from matchchat.relay.queues import QueueStore
from matchchat.relay.registry import ConnectionRegistry
from matchchat.relay.rooms import RoomStore
from matchchat.relay.session import SessionRelay


def payloads_for(outbox: events.Outbox, connection_id: str) -> List[dict]:
    """Frames addressed to one connection, in order."""
    return [
        e.payload for e in outbox
        if isinstance(e, events.Send) and e.connection_id == connection_id
    ]


def types_for(outbox: events.Outbox, connection_id: str) -> List[str]:
    return [p["type"] for p in payloads_for(outbox, connection_id)]


def scheduled(outbox: events.Outbox) -> List[events.ScheduleMatch]:
    return [e for e in outbox if isinstance(e, events.ScheduleMatch)]


@pytest.fixture
def audit_sink():
    sink = MemoryAuditSink()
    yield sink
    sink.close()


@pytest.fixture
def relay(audit_sink):
    """A SessionRelay over fresh stores with reference settings."""
    registry = ConnectionRegistry()
    queues = QueueStore()
    rooms = RoomStore(queues)
    matchmaker = Matchmaker(queues, rooms, audit_sink)
    return SessionRelay(registry, queues, rooms, matchmaker, audit_sink, MatchingSettings())


@pytest.fixture
def test_settings():
    """Settings with instant re-matching and a heartbeat that never fires."""
    return AppSettings(
        matching=MatchingSettings(
            rematch_delay_after_next_seconds=0,
            rematch_delay_after_disconnect_seconds=0,
        ),
        heartbeat=HeartbeatSettings(interval_seconds=3600),
    )


@pytest.fixture
def api_client(test_settings):
    """TestClient for an isolated app; the lifespan runs for the whole test."""
    with TestClient(create_app(test_settings)) as client:
        yield client
