"""Tests for the HTTP endpoints."""
import pytest
from fastapi.testclient import TestClient

from splitlab.main import app
from splitlab.middleware.logging import experiment_id_from_path

EXPERIMENT = {
    "name": "Pricing page headline",
    "variants": [
        {"id": "control", "name": "Simple pricing", "weight": 50, "is_control": True},
        {"id": "value", "name": "Pay for what you use", "weight": 50},
    ],
    "metrics": {"minimum_sample_size": 100, "minimum_effect_size": 0.05, "confidence_level": 0.95},
}


@pytest.fixture
def client(db):
    with TestClient(app) as c:
        yield c


@pytest.fixture
def experiment_id(client):
    response = client.post("/experiments", json=EXPERIMENT)
    assert response.status_code == 201
    return response.json()["id"]


def test_health(client):
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json()["status"] == "healthy"
    assert "X-Trace-ID" in response.headers


def test_detailed_health(client):
    response = client.get("/health/detailed")

    assert response.status_code == 200
    assert response.json()["checks"]["database"] == "healthy"


def test_create_experiment(client):
    response = client.post("/experiments", json=EXPERIMENT)

    assert response.status_code == 201
    data = response.json()
    assert data["status"] == "draft"
    assert data["traffic_allocation"] == 100
    assert [v["id"] for v in data["variants"]] == ["control", "value"]


def test_create_experiment_with_bad_weights(client):
    payload = {**EXPERIMENT, "variants": [
        {"id": "control", "name": "A", "weight": 60, "is_control": True},
        {"id": "value", "name": "B", "weight": 60},
    ]}

    response = client.post("/experiments", json=payload)

    assert response.status_code == 422
    assert response.json()["detail"] == "Variant weights must sum to 100"


def test_unknown_experiment_returns_404(client):
    assert client.get("/experiments/missing").status_code == 404
    assert client.post("/experiments/missing/assignments", json={"visitor_id": "v1"}).status_code == 404
    assert client.get("/experiments/missing/results").status_code == 404


def test_draft_experiment_does_not_assign(client, experiment_id):
    response = client.post(f"/experiments/{experiment_id}/assignments", json={"visitor_id": "v1"})

    assert response.status_code == 200
    assert response.json()["assigned"] is False
    assert response.json()["variant"] is None


def test_assignment_flow(client, experiment_id):
    assert client.post(f"/experiments/{experiment_id}/start").json()["status"] == "running"

    first = client.post(f"/experiments/{experiment_id}/assignments", json={
        "visitor_id": "v1",
        "context": {"device_type": "mobile", "plan": "pro"}
    }).json()
    second = client.post(f"/experiments/{experiment_id}/assignments", json={"visitor_id": "v1"}).json()

    assert first["assigned"] is True
    assert first["is_new"] is True
    assert second["is_new"] is False
    assert second["variant"]["id"] == first["variant"]["id"]

    conversion = client.post(f"/experiments/{experiment_id}/conversions", json={
        "visitor_id": "v1",
        "event_value": 12.5
    }).json()
    assert conversion["recorded"] is True
    assert conversion["variant_id"] == first["variant"]["id"]

    results = client.get(f"/experiments/{experiment_id}/results")
    assert results.status_code == 200
    assert results.json()["sample_size"] == 1


def test_conversion_without_assignment(client, experiment_id):
    client.post(f"/experiments/{experiment_id}/start")

    response = client.post(f"/experiments/{experiment_id}/conversions", json={"visitor_id": "stranger"})

    assert response.status_code == 200
    assert response.json() == {
        "recorded": False,
        "event_id": None,
        "variant_id": None,
        "message": "No assignment found for visitor"
    }


def test_track_event_for_unknown_variant(client, experiment_id):
    response = client.post(f"/experiments/{experiment_id}/events", json={
        "variant_id": "nope",
        "visitor_id": "v1",
        "event_type": "click"
    })

    assert response.status_code == 422


def test_invalid_transition_returns_422(client, experiment_id):
    response = client.post(f"/experiments/{experiment_id}/pause")

    assert response.status_code == 422
    assert response.json()["detail"] == "Cannot transition from draft to paused"


def test_update_and_delete(client, experiment_id):
    response = client.patch(f"/experiments/{experiment_id}", json={"traffic_allocation": 20})
    assert response.json()["traffic_allocation"] == 20

    assert client.delete(f"/experiments/{experiment_id}").status_code == 204
    assert client.get(f"/experiments/{experiment_id}").status_code == 404


def test_list_experiments(client, experiment_id):
    client.post("/experiments", json=EXPERIMENT)
    client.post(f"/experiments/{experiment_id}/start")

    data = client.get("/experiments", params={"status": "running"}).json()

    assert data["total"] == 1
    assert data["experiments"][0]["id"] == experiment_id
    assert client.get("/experiments").json()["total"] == 2


def test_detailed_health_counts_running_experiments(client, experiment_id):
    assert client.get("/health/detailed").json()["running_experiments"] == 0

    client.post(f"/experiments/{experiment_id}/start")

    assert client.get("/health/detailed").json()["running_experiments"] == 1


@pytest.mark.parametrize("path,expected", [
    ("/experiments/abc-123", "abc-123"),
    ("/experiments/abc-123/assignments", "abc-123"),
    ("/experiments", None),
    ("/health", None),
])
def test_experiment_id_from_path(path, expected):
    assert experiment_id_from_path(path) == expected


def test_patch_metrics_is_merged(client):
    payload = {**EXPERIMENT, "metrics": {"minimum_sample_size": 2000, "confidence_level": 0.95}}
    experiment_id = client.post("/experiments", json=payload).json()["id"]

    response = client.patch(f"/experiments/{experiment_id}", json={"metrics": {"confidence_level": 0.99}})

    metrics = response.json()["metrics"]
    assert metrics["confidence_level"] == 0.99
    assert metrics["minimum_sample_size"] == 2000
