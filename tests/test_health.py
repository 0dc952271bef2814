# tests/test_health.py
from fastapi.testclient import TestClient


def test_health_responds(client: TestClient) -> None:
    """The health check answers without touching federation state."""
    r = client.get("/health")
    assert r.status_code == 200
    assert r.json() == {"status": "ok"}


def test_unknown_route_is_404(client: TestClient) -> None:
    r = client.get("/")
    assert r.status_code == 404
