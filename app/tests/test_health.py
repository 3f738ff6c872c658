"""
Tests for the health check, service banner, metrics endpoint and the
production frontend fallback.
"""
from pathlib import Path
from fastapi import FastAPI
from fastapi.testclient import TestClient
from api.frontend import mount_frontend
from main import app


def test_health_without_database():
    """Health stays green without touching the database (no tables exist here)."""
    client = TestClient(app)

    response = client.get("/health")

    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "healthy"
    assert data["env"] == "development"
    assert "timestamp" in data


def test_root_banner_outside_production():
    response = TestClient(app).get("/")

    assert response.status_code == 200
    data = response.json()
    assert data["message"] == "API Server Running"
    assert "/api/posts" in data["endpoints"]


def test_metrics_exposed():
    client = TestClient(app)
    client.get("/health")

    response = client.get("/metrics")

    assert response.status_code == 200
    assert "relay_connections_active" in response.text


class TestFrontend:
    """Tests for the SPA catch-all used in production."""

    def _bundle(self, tmp_path: Path) -> Path:
        (tmp_path / "assets").mkdir()
        (tmp_path / "index.html").write_text("<html>spa</html>")
        (tmp_path / "assets" / "app.js").write_text("console.log('app')")
        return tmp_path

    def test_serves_static_file(self, tmp_path: Path):
        spa = FastAPI()
        mount_frontend(spa, str(self._bundle(tmp_path)))

        response = TestClient(spa).get("/assets/app.js")

        assert response.status_code == 200
        assert "console.log" in response.text

    def test_client_routes_fall_back_to_index(self, tmp_path: Path):
        spa = FastAPI()
        mount_frontend(spa, str(self._bundle(tmp_path)))
        client = TestClient(spa)

        assert client.get("/listing/42").text == "<html>spa</html>"
        assert client.get("/").text == "<html>spa</html>"

    def test_api_paths_are_not_swallowed(self, tmp_path: Path):
        spa = FastAPI()
        mount_frontend(spa, str(self._bundle(tmp_path)))

        response = TestClient(spa).get("/api/unknown")

        assert response.status_code == 404

    def test_missing_bundle_disables_serving(self, tmp_path: Path):
        spa = FastAPI()
        mount_frontend(spa, str(tmp_path / "dist"))

        assert TestClient(spa).get("/").status_code == 404
