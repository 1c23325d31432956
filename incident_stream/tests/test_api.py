"""API endpoint tests"""

import pytest
from fastapi.testclient import TestClient

from incident_stream.main import app
from incident_stream.services.stream import build_pipeline
from incident_stream.tests.conftest import CLIENT_CONFIG, T0, FakeSource


class TestAPI:
    """Test API endpoints"""

    @pytest.fixture
    def client(self):
        """Create test client with one idle pipeline registered"""
        with TestClient(app) as client:
            build_pipeline(
                {"pipeline_id": "api-test", "from_timestamp": T0, "config": CLIENT_CONFIG},
                source=FakeSource(),
                registry=app.state.pipelines,
            )
            yield client

    def test_health_check(self, client):
        """Test health check endpoint"""
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json() == {"status": "ok", "pipelines": {"api-test": "idle"}}

    def test_get_stats(self, client):
        """Test stats endpoint"""
        response = client.get("/stats")
        assert response.status_code == 200
        [snapshot] = response.json()
        assert snapshot["pipeline_id"] == "api-test"
        assert snapshot["pending_demand"] == 0
        assert snapshot["fetches"] == 0
        assert snapshot["last_fetch_at"] is None
        assert snapshot["watermark"].startswith("2024-03-01T12:00:00")

    def test_get_single_pipeline_stats(self, client):
        response = client.get("/stats/api-test")
        assert response.status_code == 200
        assert response.json()["state"] == "idle"

    def test_unknown_pipeline_returns_404(self, client):
        response = client.get("/stats/nope")
        assert response.status_code == 404

    def test_invalid_endpoint(self, client):
        """Test invalid endpoint returns 404"""
        response = client.get("/invalid")
        assert response.status_code == 404
