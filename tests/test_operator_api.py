"""Tests for the Operator API."""

from __future__ import annotations

import asyncio
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from lbe.api.operator import create_app
from lbe.config.settings import Settings
from lbe.ledger import EventJournal, EventType, RecordLedger
from lbe.settlement.transitions import TransitionBuilder
from lbe.settlement.types import RecordKind
from lbe.tools.init_ledger import init_ledger


@pytest.fixture
def journal(workspace_tmp_path: Path) -> EventJournal:
    return EventJournal(str(workspace_tmp_path / "journal"))


@pytest.fixture
def client(ledger: RecordLedger, journal: EventJournal) -> TestClient:
    """Create a test client backed by a temporary ledger and journal."""
    app = create_app(ledger=ledger, journal=journal, settings=Settings(_env_file=None))
    return TestClient(app)


async def _create_event(ledger: RecordLedger, protocol, params) -> str:
    init_ledger(ledger)
    (factory,) = await ledger.get_records(RecordKind.FACTORY)
    now = await ledger.current_protocol_time()
    return await ledger.submit(TransitionBuilder(protocol).create_event(factory, params, now))


@pytest.fixture
def event_id(ledger: RecordLedger, protocol, params) -> str:
    asyncio.run(_create_event(ledger, protocol, params))
    return params.event_id


def test_root_endpoint(client: TestClient) -> None:
    """Test the root endpoint returns API info."""
    response = client.get("/")
    assert response.status_code == 200
    data = response.json()
    assert data["name"] == "LBE Settlement Operator API"
    assert data["version"] == "0.1.0"
    assert "endpoints" in data


def test_health_endpoint(client: TestClient, ledger: RecordLedger, t0: int) -> None:
    """Test the health endpoint reports the ledger tip."""
    response = client.get("/health")
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "healthy"
    assert data["tip_slot"] == ledger.tip_slot
    assert data["protocol_time"] == t0
    assert data["network"] == "preprod"
    assert "uptime_sec" in data
    assert "worker_enabled" in data


def test_events_endpoint_empty(client: TestClient) -> None:
    response = client.get("/events")
    assert response.status_code == 200
    data = response.json()
    assert data["count"] == 0
    assert data["events"] == []


def test_events_endpoint_lists_phase(client: TestClient, event_id: str) -> None:
    response = client.get("/events")
    assert response.status_code == 200
    data = response.json()
    assert data["count"] == 1
    (event,) = data["events"]
    assert event["event_id"] == event_id
    assert event["phase"] == "discovery"
    assert event["outstanding_seller_count"] == 3
    assert event["sellers"] == 3


def test_event_detail_includes_treasury(client: TestClient, event_id: str, params) -> None:
    response = client.get(f"/events/{event_id}")
    assert response.status_code == 200
    data = response.json()
    assert data["treasury"]["kind"] == "treasury"
    assert data["treasury"]["datum"]["owner"] == params.owner
    assert data["treasury"]["value"][params.base_asset.to_string()] == params.reserve_base


def test_unknown_event_is_404(client: TestClient) -> None:
    response = client.get(f"/events/{'0' * 64}")
    assert response.status_code == 404


def test_journal_endpoint_with_tail(client: TestClient, journal: EventJournal) -> None:
    for i in range(5):
        journal.append(EventType.TICK_COMPLETED, {"events": i})

    response = client.get("/journal?tail=3")
    assert response.status_code == 200
    data = response.json()
    assert data["count"] == 3
    assert data["last_sequence"] == 5
    assert [e["payload"]["events"] for e in data["events"]] == [2, 3, 4]


def test_journal_endpoint_tail_limits(client: TestClient) -> None:
    """Test the journal endpoint enforces tail limits."""
    # tail=0 should fail validation
    response = client.get("/journal?tail=0")
    assert response.status_code == 422

    # tail > 1000 should fail validation
    response = client.get("/journal?tail=1001")
    assert response.status_code == 422
