"""
API Tests: health, version and status endpoints
"""
import pytest
from fastapi.testclient import TestClient

from clanboard import crud
from clanboard.main import APP_VERSION, app
from clanboard.service import ClanService, get_clan_service


@pytest.fixture
def client(session_factory, upstream, clock):
    service = ClanService(session_factory=session_factory, client=upstream, clock=clock)
    app.dependency_overrides[get_clan_service] = lambda: service
    yield TestClient(app)
    app.dependency_overrides.clear()


def test_health_endpoint_returns_200(client):
    """Test that /health returns HTTP 200"""
    response = client.get("/health")
    assert response.status_code == 200


def test_health_endpoint_returns_ok_status(client):
    """Test that /health returns status: ok"""
    data = client.get("/health").json()
    assert data["status"] == "ok"
    assert data["mode"] == "cached"


def test_version_endpoint(client):
    data = client.get("/version").json()
    assert data["version"] == APP_VERSION


def test_status_reports_every_probe(client, db, clock):
    crud.record_latency(db, "authoritative_coc", 42, int(clock()) - 30)

    response = client.get("/status")

    assert response.status_code == 200
    probes = response.json()["probes"]
    assert probes["authoritative_coc"] == {"status": "ONLINE", "latency": 42, "uptime_minutes": 1}
    assert probes["identity_cr"]["status"] == "OFFLINE"


def test_sideclans_endpoint(client, db):
    crud.sync_side_clans(db, [{"clan_tag": "#PYLQG", "name": "Side", "display_index": 1}])

    data = client.get("/sideclans").json()

    assert data[0]["clan"]["display_name"] == "Side"
    assert data[0]["history"] == []


def test_cache_stats_endpoint(client):
    data = client.get("/cache/stats").json()
    assert "hits_fresh" in data


def test_status_history_endpoint(client, db, clock):
    crud.record_latency(db, "frontend", None, int(clock()) - 60)

    data = client.get("/status/history").json()

    assert data == [{"api": "frontend", "latency": -1, "timestamp": int(clock()) - 60}]
