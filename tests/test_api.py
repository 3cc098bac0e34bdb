"""
Tests for the metrics HTTP endpoints.

The router is mounted on a bare app with the orchestrator dependency
overridden, so no database or Redis is touched.
"""

from datetime import timedelta

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from admetrics.metrics.errors import CredentialError, TransientFetchError
from admetrics.metrics.freshness import FreshnessPolicy
from admetrics.metrics.keys import MetricsKey
from admetrics.metrics.models import Platform
from admetrics.metrics.orchestrator import MetricsOrchestrator
from admetrics.metrics.records import MetricsRecord
from api.metrics import get_metrics_orchestrator, router

from conftest import NOW, make_campaign


@pytest.fixture
def metrics_orchestrator(aggregator, cache, recorder, clock):
    return MetricsOrchestrator(
        aggregator=aggregator,
        cache=cache,
        policy=FreshnessPolicy(max_age=timedelta(hours=3), hot_ttl=timedelta(minutes=10)),
        recorder=recorder,
        clock=clock,
    )


@pytest.fixture
def client(metrics_orchestrator):
    app = FastAPI()
    app.include_router(router)
    app.dependency_overrides[get_metrics_orchestrator] = lambda: metrics_orchestrator
    with TestClient(app) as test_client:
        yield test_client


# =============================================================================
# METRICS ENDPOINT TESTS
# =============================================================================

class TestGetMetrics:

    def test_period(self, client):
        response = client.get("/api/metrics/acme", params={"period": "2024-06"})

        assert response.status_code == 200
        data = response.json()
        assert data["key"] == {"client_id": "acme", "platform": "both", "period_id": "2024-06"}
        assert data["totals"]["spend"] == 150
        assert data["source_tier"] == "live_fresh"
        assert data["stale"] is False
        assert len(data["campaigns"]) == 2

    def test_default_is_current_month(self, client):
        response = client.get("/api/metrics/acme", params={"platform": "social"})

        assert response.status_code == 200
        assert response.json()["key"]["period_id"] == "2024-06"

    def test_explicit_range(self, client):
        response = client.get(
            "/api/metrics/acme",
            params={"platform": "search", "start": "2024-06-01", "end": "2024-06-10"},
        )

        assert response.status_code == 200
        assert response.json()["key"]["period_id"] == "2024-06-01:2024-06-10"

    def test_week_range_normalized(self, client):
        response = client.get(
            "/api/metrics/acme",
            params={"start": "2024-06-10", "end": "2024-06-16"},
        )
        assert response.json()["key"]["period_id"] == "2024-W24"

    def test_second_request_served_hot(self, client):
        client.get("/api/metrics/acme", params={"period": "2024-06"})
        response = client.get("/api/metrics/acme", params={"period": "2024-06"})
        assert response.json()["source_tier"] == "hot"

    def test_half_open_range_rejected(self, client):
        response = client.get("/api/metrics/acme", params={"start": "2024-06-01"})
        assert response.status_code == 400

    def test_inverted_range_rejected(self, client):
        response = client.get("/api/metrics/acme", params={"period": "2024-06-30:2024-06-01"})
        assert response.status_code == 400

    def test_unknown_platform_rejected(self, client):
        response = client.get("/api/metrics/acme", params={"platform": "tiktok"})
        assert response.status_code == 400

    def test_partial_failure_is_success_with_warning(self, client, search_client):
        search_client.error = TransientFetchError("503")

        response = client.get("/api/metrics/acme", params={"period": "2024-06"})

        assert response.status_code == 200
        data = response.json()
        assert data["totals"]["spend"] == 100
        assert data["platform_errors"]["search"]["type"] == "TransientFetchError"
        assert any("search data unavailable" in w for w in data["warnings"])

    def test_credential_failure_is_401(self, client, social_client, search_client):
        social_client.error = CredentialError("expired")
        search_client.error = CredentialError("revoked")

        response = client.get("/api/metrics/acme", params={"period": "2024-06"})

        assert response.status_code == 401
        detail = response.json()["detail"]
        assert detail["requires_reauth"] is True
        assert set(detail["errors"]) == {"social", "search"}

    def test_upstream_failure_is_502(self, client, social_client, search_client):
        social_client.error = TransientFetchError("503")
        search_client.error = CredentialError("revoked")

        response = client.get("/api/metrics/acme", params={"period": "2024-06"})

        assert response.status_code == 502
        assert response.json()["detail"]["requires_reauth"] is False

    def test_non_string_timestamp_served_stale(self, client, warm_store):
        key = MetricsKey("acme", Platform.SOCIAL, "2024-06")
        record = MetricsRecord.from_campaigns(
            key,
            [make_campaign(Platform.SOCIAL, 10)],
            NOW - timedelta(hours=1),
            platform_errors={"social": None},
        )
        record.fetched_at = 12345
        warm_store._records[key] = record

        response = client.get("/api/metrics/acme", params={"platform": "social", "period": "2024-06"})

        assert response.status_code == 200
        data = response.json()
        assert data["stale"] is True
        assert data["fetched_at"] == "12345"
        assert data["totals"]["spend"] == 10


# =============================================================================
# CACHE MANAGEMENT ENDPOINT TESTS
# =============================================================================

class TestCacheEndpoints:

    def test_invalidate(self, client, warm_store):
        client.get("/api/metrics/acme", params={"period": "2024-06"})

        response = client.post("/api/metrics/invalidate/acme")

        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert data["hot_deleted"] == 2
        assert data["warm_deleted"] == 2

    def test_stats(self, client):
        client.get("/api/metrics/acme", params={"platform": "social", "period": "2024-06"})
        client.get("/api/metrics/acme", params={"platform": "social", "period": "2024-06"})

        response = client.get("/api/metrics/stats")

        assert response.status_code == 200
        data = response.json()
        assert data["hitRate"] == 0.5
        assert data["hotEntries"] == 1
        assert data["avgLatency"] >= 0
        assert data["details"]["liveFetches"] == 1

    def test_health(self, client):
        response = client.get("/api/metrics/health")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["hot"]["status"] == "in-process"
