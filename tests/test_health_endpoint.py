"""
Tests for the /healthz endpoints.

Validates basic health check functionality, response format,
request tracking headers and readiness reporting.
"""

from fastapi import status
from fastapi.testclient import TestClient


class TestHealthEndpoint:
    """Test suite for health check endpoint."""

    def test_healthz_returns_200(self, test_client):
        """Health endpoint should return 200 OK."""
        response = test_client.get("/healthz")

        assert response.status_code == status.HTTP_200_OK
        assert response.headers["content-type"] == "application/json"

    def test_healthz_response_structure(self, test_client):
        """Health endpoint should return required fields."""
        data = test_client.get("/healthz").json()

        assert data["status"] == "ok"
        assert isinstance(data["version"], str)
        assert data["environment"] == "test"

    def test_healthz_request_id_header(self, test_client):
        """Every response carries a request id, echoing the caller's when given."""
        generated = test_client.get("/healthz")
        echoed = test_client.get("/healthz", headers={"X-Request-ID": "req-123"})

        assert generated.headers["X-Request-ID"]
        assert echoed.headers["X-Request-ID"] == "req-123"
        assert echoed.headers["X-Response-Time"].endswith("ms")

    def test_healthz_no_caching_headers(self, test_client):
        """Health endpoint should not be cached."""
        cache_control = test_client.get("/healthz").headers.get("cache-control", "")

        assert "no-cache" in cache_control or "max-age=0" in cache_control or not cache_control

    def test_healthz_multiple_requests_consistent(self, test_client):
        """Multiple health checks should return consistent results."""
        versions = set()
        for _ in range(3):
            response = test_client.get("/healthz")
            assert response.status_code == 200
            versions.add(response.json()["version"])

        assert len(versions) == 1, "Version should be consistent across requests"


class TestProbes:
    def test_liveness(self, test_client):
        assert test_client.get("/healthz/live").json() == {"status": "alive"}

    def test_readiness_reports_cache(self, test_client):
        data = test_client.get("/healthz/ready").json()

        assert data["ready"] is True
        assert data["cache"]["enabled"] is True
        assert data["cache"]["entries"] == 0

    def test_app_builds_its_own_gateway(self, settings):
        from design_gateway.app import create_app

        with TestClient(create_app(settings)) as client:
            assert client.get("/healthz/ready").json()["ready"] is True

    def test_root(self, test_client):
        data = test_client.get("/").json()

        assert data["health"] == "/healthz"
