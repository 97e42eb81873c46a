# tests/test_health.py
from fastapi.testclient import TestClient

from pack_vault.api.v1.dependencies import get_delivery_service
from pack_vault.main import app


def test_health_responds(client):
    r = client.get("/health")
    assert r.status_code == 200
    assert r.json() == {"status": "ok"}


def test_root_describes_service(client):
    r = client.get("/")
    assert r.status_code == 200
    assert r.json()["docs"] == "/docs"


def test_services_unavailable_before_startup():
    assert get_delivery_service not in app.dependency_overrides
    r = TestClient(app).get("/api/v1/system/renderer")
    assert r.status_code == 500
    assert r.json() == {"error": "service_unavailable"}
