"""Property-based tests for API endpoints"""
import pytest
from fastapi.testclient import TestClient

from signal_tracker.config import AppConfig
from signal_tracker.core.domain.signal import SignalCategory, SignalStatus
from signal_tracker.data.simulated_provider import SimulatedPriceFeed
from signal_tracker.main import create_app

from conftest import build_signal


@pytest.fixture
def client(monkeypatch):
    monkeypatch.setenv("STORE__URL", "memory")
    monkeypatch.delenv("TELEGRAM__BOT_TOKEN", raising=False)
    monkeypatch.delenv("TELEGRAM__CHAT_ID", raising=False)
    app = create_app(AppConfig(), price_feed=SimulatedPriceFeed(seed=1), run_background=False)
    with TestClient(app) as test_client:
        yield test_client


def services(client):
    return client.app.state.services


# Feature: signal-tracker, Property 27: Health endpoint
def test_health_endpoint(client):
    """
    Feature: signal-tracker, Property 27: Health endpoint

    The health endpoint answers JSON with the store and monitor state and
    a 200 status while the store is reachable.
    """
    response = client.get("/health")

    assert response.status_code == 200
    assert response.headers["content-type"] == "application/json"
    data = response.json()
    assert data["status"] == "healthy"
    assert data["store"] == "healthy"
    assert data["monitor"] == "stopped"


def test_health_reports_unreachable_store(client, monkeypatch):
    monkeypatch.setattr(services(client).backend, "ping", lambda: False)

    response = client.get("/health")

    assert response.status_code == 503
    assert response.json()["status"] == "unhealthy"


def test_root(client):
    assert client.get("/").json() == {"service": "Signal Tracker", "version": "1.0.0", "status": "running"}


def test_active_and_completed_signals(client):
    store = services(client).store
    store.replace_active(SignalCategory.STANDARD, [build_signal("S1")])
    store.replace_active(SignalCategory.FAST, [build_signal("F1", category=SignalCategory.FAST)])
    store.archive("S1", SignalCategory.STANDARD)

    everything = client.get("/signals/active").json()
    assert everything["count"] == 1
    assert everything["signals"][0]["id"] == "F1"

    assert client.get("/signals/active", params={"category": "standard"}).json()["count"] == 0
    completed = client.get("/signals/completed").json()
    assert [s["id"] for s in completed["signals"]] == ["S1"]
    assert completed["signals"][0]["status"] == SignalStatus.COMPLETED.value


def test_stats(client):
    store = services(client).store
    store.replace_active(SignalCategory.STANDARD, [build_signal("W", current_price=103.0)])
    store.archive("W", SignalCategory.STANDARD)

    data = client.get("/signals/stats").json()

    assert data["completed"]["total"] == 1
    assert data["completed"]["successes"] == 1
    assert data["monitor"]["running"] is False
    assert data["monitor"]["active"] == {"standard": 0, "fast": 0, "flow": 0}


def test_manual_generation(client):
    response = client.post("/generate/fast")

    assert response.status_code == 200
    data = response.json()
    assert data["category"] == "fast"
    assert data["count"] == len(data["signals"])
    active_ids = {s.id for s in services(client).store.get_active(SignalCategory.FAST)}
    assert {s["id"] for s in data["signals"]} <= active_ids


def test_unknown_category_is_rejected(client):
    assert client.post("/generate/swing").status_code == 422
    assert client.get("/signals/active", params={"category": "swing"}).status_code == 422


def test_autogen_start_stop_status(client):
    started = client.post("/autogen/standard/start", json={"venue": "FOREX", "market_kind": "SPOT"}).json()
    assert started["enabled"] is True
    assert started["running"] is True
    assert started["config"] == {"venue": "FOREX", "market_kind": "SPOT"}
    assert started["seconds_until_next"] > 0

    status = client.get("/autogen/standard").json()
    assert status["running"] is True

    stopped = client.post("/autogen/standard/stop").json()
    assert stopped["enabled"] is False
    assert stopped["running"] is False
