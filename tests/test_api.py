"""Tests for the FastAPI telemetry API."""

from __future__ import annotations

import sys
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

# Add project root to path
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from api.main import app, get_recorder, set_recorder  # noqa: E402
from treasury.telemetry.logger import AgentLogger  # noqa: E402
from treasury.telemetry.recorder import ActionRecorder  # noqa: E402
from treasury.types import RebalanceAction  # noqa: E402

from tests.conftest import DEPOSITOR, OTHER_DEPOSITOR  # noqa: E402


@pytest.fixture
def api_recorder():
    recorder = ActionRecorder(max_entries=50)
    set_recorder(recorder)
    yield recorder
    set_recorder(None)


@pytest.fixture
def client(api_recorder):
    return TestClient(app)


def test_fastapi_app_configuration():
    """Test that the FastAPI app is properly configured."""
    assert app.title == "TreasuryForge Agent API"
    routes = [route.path for route in app.routes]
    for path in ("/health", "/logs", "/state"):
        assert path in routes


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"ok": True}


def test_logs_empty(client):
    response = client.get("/logs")
    assert response.status_code == 200
    assert response.json() == {"entries": []}


def test_logs_filtered_by_user(client, api_recorder):
    """Entries about other depositors are not returned for a user query."""
    agent_logger = AgentLogger(listeners=[api_recorder])
    agent_logger.info("[Arc] Borrowed 100 USDC - for me", depositor=DEPOSITOR, relevant=True)
    agent_logger.info("[Arc] Borrowed 50 USDC - for them", depositor=OTHER_DEPOSITOR, relevant=True)

    entries = client.get("/logs", params={"user": DEPOSITOR}).json()["entries"]
    assert len(entries) == 1
    assert entries[0]["tag"] == "arc"
    assert entries[0]["user"] == DEPOSITOR
    assert entries[0]["relevant"] is True


def test_logs_relevant_only(client, api_recorder):
    agent_logger = AgentLogger(listeners=[api_recorder])
    agent_logger.info("[Agent] === Cycle 1 ===")
    agent_logger.info("[Arc] Repaid 10 USDC - for me", depositor=DEPOSITOR, relevant=True)

    entries = client.get("/logs", params={"relevant": "true"}).json()["entries"]
    assert [e["title"] for e in entries] == ["[Arc] Repaid 10 USDC"]


def test_state(client, api_recorder):
    """State exposes signals, positions and the last action."""
    action = RebalanceAction(kind="repay", venue="arc", amount=10_000_000, details={"depositor": DEPOSITOR})
    AgentLogger(listeners=[api_recorder]).info(
        "[Repay] Repaid 10 USDC on arc - tx pending", depositor=DEPOSITOR, relevant=True, action=action
    )

    body = client.get("/state", params={"user": DEPOSITOR}).json()
    assert body["signals"] == []
    assert body["positions"] == []
    assert body["last_action"]["title"] == "[Repay] Repaid 10 USDC on arc"


def test_cors_allows_any_origin(client):
    response = client.get("/health", headers={"Origin": "https://console.example"})
    assert response.headers["access-control-allow-origin"] == "*"


def test_default_recorder_is_created_lazily():
    set_recorder(None)
    recorder = get_recorder()
    assert isinstance(recorder, ActionRecorder)
    assert get_recorder() is recorder
    set_recorder(None)
