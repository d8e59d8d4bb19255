"""Tests for health and monitoring endpoints."""

import asyncpg
from fastapi.testclient import TestClient


class TestHealth:
    """Tests for health check endpoints."""

    def test_health_check(self, client: TestClient):
        """Should return healthy status."""
        response = client.get("/v1/healthz")

        assert response.status_code == 200
        assert response.json() == {"ok": True}

    def test_health_check_does_not_touch_database(self, client: TestClient, mock_pg_conn):
        client.get("/v1/healthz")

        mock_pg_conn.fetchval.assert_not_awaited()

    def test_readiness(self, client: TestClient, mock_pg_conn):
        response = client.get("/v1/readyz")

        assert response.status_code == 200
        assert response.json() == {"ok": True}
        mock_pg_conn.fetchval.assert_awaited_once_with("SELECT 1")

    def test_readiness_database_down(self, client: TestClient, mock_pg_conn):
        mock_pg_conn.fetchval.side_effect = asyncpg.exceptions.CannotConnectNowError("starting")

        response = client.get("/v1/readyz")

        assert response.status_code == 503
        assert response.json() == {"ok": False}


class TestMetrics:
    """Tests for Prometheus metrics endpoint."""

    def test_metrics_endpoint(self, client: TestClient):
        """Should return Prometheus metrics."""
        client.get("/v1/healthz")
        response = client.get("/metrics")

        assert response.status_code == 200
        assert "text/plain" in response.headers.get("content-type", "")
        assert "scripture_index_requests_total" in response.text


class TestRequestId:
    def test_request_id_echoed(self, client: TestClient):
        response = client.get("/v1/healthz", headers={"X-Request-ID": "abc-123"})

        assert response.headers["X-Request-ID"] == "abc-123"

    def test_request_id_generated(self, client: TestClient):
        response = client.get("/v1/healthz")

        assert response.headers.get("X-Request-ID")
