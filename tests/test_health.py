"""Tests for health check endpoints."""

from unittest.mock import patch

from sqlalchemy.exc import OperationalError


class TestHealth:
    """Health endpoint tests."""

    def test_health_check(self, client):
        """Test health endpoint returns healthy status."""
        response = client.get("/api/health")
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["database"] == "connected"
        assert data["export_format"] == "living-tags-v1"
        assert "version" in data

    def test_health_reports_classifier(self, client):
        data = client.get("/api/health").json()
        assert data["classifier"]["configured"] is True
        assert "model" in data["classifier"]

    def test_health_degraded_when_database_down(self, client, db):
        with patch.object(db, "execute", side_effect=OperationalError("SELECT 1", {}, None)):
            response = client.get("/api/health")
        assert response.status_code == 200
        assert response.json()["status"] == "degraded"

    def test_version_endpoint(self, client):
        """Test version endpoint."""
        response = client.get("/api/version")
        assert response.status_code == 200
        data = response.json()
        assert data["name"] == "Living Tags"
        assert "version" in data

    def test_request_id_echoed(self, client, user_headers):
        response = client.get("/api/tags", headers={**user_headers, "X-Request-ID": "req-42"})
        assert response.headers["X-Request-ID"] == "req-42"

    def test_request_id_generated(self, client):
        response = client.get("/api/health")
        assert response.headers["X-Request-ID"]
