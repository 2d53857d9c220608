"""
Integration tests for the FastAPI application.

Each test builds a container on in-memory repositories seeded with leads and
labeled outcomes, so the lifespan bootstraps a real model on startup and
every request runs through the full router, dependency and error-handler
stack.
"""

import asyncio
from typing import Iterator

import pytest
from fastapi.testclient import TestClient

from leadscore.core.config import Settings
from leadscore.core.container import ServiceContainer, build_container
from leadscore.main import create_app
from leadscore.models.schemas import utcnow
from leadscore.services.repositories import InMemoryLeadRepository
from leadscore.tests.factories import make_interactions, make_labeled_data, make_lead, seed_outcomes


pytestmark = pytest.mark.integration


def make_container(**overrides) -> ServiceContainer:
    settings = Settings(**{
        "database_url": None,
        "start_background_jobs": False,
        "bootstrap_training_on_startup": True,
        "batch_pause_seconds": 0,
        **overrides,
    })
    leads = InMemoryLeadRepository()
    for i in range(10):
        leads.add(make_lead(f"lead-{i}"), make_interactions(i % 4))
    container = build_container(settings, leads=leads)

    X, y = make_labeled_data(n=400, noise=0.5)
    asyncio.run(seed_outcomes(container.outcomes, X, y, end=utcnow()))
    return container


@pytest.fixture
def client() -> Iterator[TestClient]:
    with TestClient(create_app(make_container())) as test_client:
        yield test_client


class TestServiceEndpoints:

    def test_health(self, client: TestClient) -> None:
        response = client.get("/health")

        assert response.status_code == 200
        assert response.json() == {"status": "healthy"}

    def test_root(self, client: TestClient) -> None:
        assert client.get("/").json()["version"] == "1.0.0"

    def test_bootstrapped_model_is_active(self, client: TestClient) -> None:
        body = client.get("/models/active").json()

        assert body["success"] is True
        assert body["data"]["status"] == "active"
        assert "timestamp" in body


class TestScoringEndpoints:

    def test_score_lead(self, client: TestClient) -> None:
        response = client.post("/scoring/leads/lead-1")

        assert response.status_code == 200
        data = response.json()["data"]
        assert data["leadId"] == "lead-1"
        assert 0.0 <= data["value"] <= 1.0
        assert data["insights"]["riskLevel"] in ("low", "medium", "high")

    def test_unknown_lead(self, client: TestClient) -> None:
        response = client.post("/scoring/leads/nobody")

        assert response.status_code == 404
        body = response.json()
        assert body["success"] is False
        assert body["error"]["code"] == "NOT_FOUND"

    def test_score_with_data_uses_fallback_model(self, client: TestClient) -> None:
        active_id = client.get("/models/active").json()["data"]["id"]
        body = {
            "profile": make_lead("walk-in").model_dump(mode="json"),
            "modelId": "missing",
        }

        assert client.post("/scoring/score-with-data", json=body).status_code == 404

        response = client.post("/scoring/score-with-data", json={**body, "fallbackModelId": active_id})

        assert response.status_code == 200
        assert response.json()["data"]["modelId"] == active_id

    def test_empty_batch_rejected(self, client: TestClient) -> None:
        response = client.post("/scoring/batch", json={"leadIds": []})

        assert response.status_code == 400
        assert response.json()["error"]["code"] == "VALIDATION_ERROR"

    def test_batch(self, client: TestClient) -> None:
        response = client.post("/scoring/batch", json={"leadIds": ["lead-1", "lead-2", "nobody"]})

        data = response.json()["data"]
        assert data["successful"] == 2
        assert data["failed"] == 1

    def test_outcome_after_scoring(self, client: TestClient) -> None:
        client.post("/scoring/leads/lead-3")

        response = client.post("/scoring/outcomes", json={"leadId": "lead-3", "converted": True})

        assert response.status_code == 200
        assert response.json()["data"]["actual"] == 1

    def test_statistics(self, client: TestClient) -> None:
        client.post("/scoring/leads/lead-1")
        client.post("/scoring/leads/lead-1")

        data = client.get("/scoring/statistics").json()["data"]

        assert data["totalRequests"] == 2
        assert data["cacheHits"] == 1

    def test_rate_limit(self) -> None:
        with TestClient(create_app(make_container(rate_limit_max=2))) as client:
            headers = {"X-Client-Id": "crm-ui"}
            for _ in range(2):
                assert client.post("/scoring/leads/lead-1", headers=headers).status_code == 200

            response = client.post("/scoring/leads/lead-1", headers=headers)

            assert response.status_code == 429
            assert int(response.headers["Retry-After"]) >= 1
            assert client.post("/scoring/leads/lead-1", headers={"X-Client-Id": "other"}).status_code == 200


class TestLifecycleEndpoints:

    def test_train_registers_new_version(self, client: TestClient) -> None:
        response = client.post("/models/train", json={})

        assert response.status_code == 200
        data = response.json()["data"]
        assert data["status"] == "training"
        assert data["metrics"]["sampleSize"] == 80

    def test_retraining_status(self, client: TestClient) -> None:
        data = client.get("/models/retraining/status").json()["data"]

        assert data["enabled"] is True
        assert data["inProgress"] is False

    def test_ab_test_with_unknown_challenger(self, client: TestClient) -> None:
        response = client.post("/ab-tests", json={"challengerModelId": "missing"})

        assert response.status_code == 404
        assert response.json()["error"]["code"] == "NOT_FOUND"

    def test_unknown_ab_test(self, client: TestClient) -> None:
        assert client.get("/ab-tests/abt-missing").status_code == 404
