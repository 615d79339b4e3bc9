"""Unit tests for the session audit trail."""

import os
import tempfile
from datetime import datetime

import pytest
from fastapi.testclient import TestClient
from pydantic import ValidationError

from matchchat.audit.schemas import AuditAction, AuditRecord, AuditRecordCreate
from matchchat.audit.service import DuckDBAuditSink, MemoryAuditSink, create_audit_sink
from matchchat.config import AppSettings, AuditSettings
from matchchat.main import create_app


@pytest.fixture
def temp_db():
    """Create a temporary database path for testing."""
    # DuckDB refuses an existing empty file, so only reserve the name.
    db_path = tempfile.mktemp(suffix=".duckdb")

    yield db_path

    for path in (db_path, db_path + ".wal"):
        if os.path.exists(path):
            os.remove(path)


@pytest.fixture(params=["memory", "duckdb"])
def sink(request, temp_db):
    """Each sink implementation, freshly opened."""
    if request.param == "duckdb":
        store = DuckDBAuditSink(db_path=temp_db)
    else:
        store = MemoryAuditSink()
    yield store
    store.close()


def entry(connection_id: str = "conn-1", action: AuditAction = AuditAction.JOIN, **fields) -> AuditRecordCreate:
    return AuditRecordCreate(connection_id=connection_id, action=action, **fields)


class TestAuditRecord:
    """Tests for the audit record schemas."""

    def test_record_gets_id_and_timestamp(self):
        record = AuditRecord(connection_id="conn-1", action=AuditAction.PAIRED)

        assert record.id
        assert isinstance(record.timestamp, datetime)
        assert record.partner_connection_id is None

    def test_connection_id_is_required(self):
        with pytest.raises(ValidationError):
            AuditRecordCreate(connection_id="", action=AuditAction.JOIN)

    def test_action_values(self):
        assert {a.value for a in AuditAction} == {
            "join", "paired", "message", "next", "report", "disconnect", "signal",
        }


class TestSinks:
    """Behaviour shared by every sink."""

    def test_record_returns_stored_copy(self, sink):
        stored = sink.record(entry(
            partner_connection_id="conn-2",
            action=AuditAction.REPORT,
            details="User reported partner conn-2",
            ip_address="10.0.0.1",
            user_agent="pytest",
        ))

        (fetched,) = sink.recent()
        assert fetched.id == stored.id
        assert fetched.action == AuditAction.REPORT
        assert fetched.partner_connection_id == "conn-2"
        assert fetched.ip_address == "10.0.0.1"
        assert fetched.user_agent == "pytest"

    def test_recent_is_newest_first(self, sink):
        for n in range(5):
            sink.record(entry(connection_id=f"conn-{n}"))

        assert [r.connection_id for r in sink.recent()] == [f"conn-{n}" for n in (4, 3, 2, 1, 0)]

    def test_recent_respects_limit(self, sink):
        for n in range(5):
            sink.record(entry(connection_id=f"conn-{n}"))

        assert [r.connection_id for r in sink.recent(2)] == ["conn-4", "conn-3"]
        assert sink.recent(0) == []

    def test_empty_sink(self, sink):
        assert sink.recent() == []


class TestDuckDBAuditSink:
    def test_records_survive_reopen(self, temp_db):
        first = DuckDBAuditSink(db_path=temp_db)
        first.record(entry(action=AuditAction.DISCONNECT))
        first.close()

        reopened = DuckDBAuditSink(db_path=temp_db)
        try:
            (record,) = reopened.recent()
            assert record.action == AuditAction.DISCONNECT
        finally:
            reopened.close()

    def test_in_memory_database(self):
        store = DuckDBAuditSink(db_path=":memory:")
        store.record(entry())

        assert len(store.recent()) == 1
        store.close()


class TestCreateAuditSink:
    def test_memory_is_default(self):
        assert isinstance(create_audit_sink("memory", "unused.duckdb"), MemoryAuditSink)

    def test_duckdb_backend(self, temp_db):
        store = create_audit_sink("duckdb", temp_db)
        try:
            assert isinstance(store, DuckDBAuditSink)
        finally:
            store.close()


class TestAuditLogsEndpoint:
    @pytest.fixture
    def client(self, temp_db):
        settings = AppSettings(
            audit=AuditSettings(backend="duckdb", db_path=temp_db, default_page_size=2, max_page_size=3),
        )
        with TestClient(create_app(settings)) as client:
            yield client

    def test_default_and_clamped_pages(self, client):
        sink = client.app.state.audit_sink
        for n in range(5):
            sink.record(entry(connection_id=f"conn-{n}"))

        default_page = client.get("/api/audit-logs").json()
        clamped_page = client.get("/api/audit-logs?limit=50").json()

        assert default_page["count"] == 2
        assert [log["connection_id"] for log in default_page["logs"]] == ["conn-4", "conn-3"]
        assert clamped_page["count"] == 3

    def test_rejects_non_positive_limit(self, client):
        response = client.get("/api/audit-logs?limit=-1")

        assert response.status_code == 422
