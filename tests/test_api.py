"""Tests for the rollout REST API."""

from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from rollout_sre.api import create_app

SPEC = {
    "name": "checkout",
    "replicas": 4,
    "steps": [
        {"weight": 25, "pause_duration_seconds": 60},
        {"weight": 100, "pause_duration_seconds": 60},
    ],
}


@pytest.fixture
def client(controller):
    return TestClient(create_app(controller))


def _create(client, spec=None, stable="v1", candidate="v2"):
    return client.post(
        "/api/v1/rollouts",
        json={"spec": spec or SPEC, "stable_version": stable, "candidate_version": candidate},
    )


class TestHealth:
    def test_health(self, client):
        resp = client.get("/health")
        assert resp.status_code == 200
        body = resp.json()
        assert body["status"] == "ok"
        assert body["controller_running"] is False
        assert body["halted_rollouts"] == []


class TestCreateRollout:
    def test_create(self, client):
        resp = _create(client)
        assert resp.status_code == 201
        body = resp.json()
        assert body["state"]["phase"] == "initializing"
        assert body["state"]["current_weights"] == {"v1": 100, "v2": 0}
        assert body["spec"]["name"] == "checkout"
        assert body["archived"] is False

    def test_invalid_spec(self, client):
        bad = dict(SPEC, steps=[{"weight": 80}, {"weight": 20}])
        resp = _create(client, spec=bad)
        assert resp.status_code == 422
        detail = resp.json()["detail"]
        assert "lower than the previous step" in detail["message"]
        assert detail["errors"]

    def test_missing_versions(self, client):
        resp = client.post("/api/v1/rollouts", json={"spec": SPEC})
        assert resp.status_code == 422

    def test_duplicate_service(self, client):
        assert _create(client).status_code == 201
        resp = _create(client, candidate="v3")
        assert resp.status_code == 409


class TestReadRollouts:
    def test_get(self, client):
        rollout_id = _create(client).json()["rollout_id"]
        resp = client.get(f"/api/v1/rollouts/{rollout_id}")
        assert resp.status_code == 200
        assert resp.json()["rollout_id"] == rollout_id

    def test_get_missing(self, client):
        resp = client.get("/api/v1/rollouts/nope")
        assert resp.status_code == 404
        assert "nope" in resp.json()["detail"]

    def test_list_and_filter(self, client, controller):
        first = _create(client).json()["rollout_id"]
        _create(client, spec=dict(SPEC, name="search"))
        controller.abort(first)

        resp = client.get("/api/v1/rollouts")
        assert resp.json()["count"] == 2

        resp = client.get("/api/v1/rollouts", params={"active_only": True})
        assert [r["spec"]["name"] for r in resp.json()["rollouts"]] == ["search"]

        resp = client.get("/api/v1/rollouts", params={"phase": "rolled_back"})
        assert [r["rollout_id"] for r in resp.json()["rollouts"]] == [first]


class TestControlRollouts:
    def test_abort(self, client, router):
        rollout_id = _create(client).json()["rollout_id"]
        resp = client.post(f"/api/v1/rollouts/{rollout_id}/abort", json={"reason": "bad build"})
        assert resp.status_code == 200
        state = resp.json()["state"]
        assert state["phase"] == "rolled_back"
        assert state["abort_reason"] == "bad build"
        assert resp.json()["archived"] is True

    def test_abort_without_body(self, client):
        rollout_id = _create(client).json()["rollout_id"]
        resp = client.post(f"/api/v1/rollouts/{rollout_id}/abort")
        assert resp.status_code == 200
        assert resp.json()["state"]["abort_reason"] == "aborted by operator"

    def test_abort_twice(self, client):
        rollout_id = _create(client).json()["rollout_id"]
        client.post(f"/api/v1/rollouts/{rollout_id}/abort")
        resp = client.post(f"/api/v1/rollouts/{rollout_id}/abort")
        assert resp.status_code == 409

    def test_abort_missing(self, client):
        assert client.post("/api/v1/rollouts/nope/abort").status_code == 404

    def test_resume_not_paused(self, client):
        rollout_id = _create(client).json()["rollout_id"]
        resp = client.post(f"/api/v1/rollouts/{rollout_id}/resume")
        assert resp.status_code == 409
        assert "Cannot resume" in resp.json()["detail"]

    def test_resume_manual_gate(self, client, controller, provider):
        provider.set_healthy("v2")
        spec = dict(
            SPEC,
            promotion_mode="manual_gate",
            steps=[{"weight": 50}, {"weight": 100}],
        )
        rollout_id = _create(client, spec=spec).json()["rollout_id"]
        controller.tick()
        assert client.get(f"/api/v1/rollouts/{rollout_id}").json()["state"]["phase"] == "paused"

        resp = client.post(f"/api/v1/rollouts/{rollout_id}/resume")
        assert resp.status_code == 200
        assert resp.json()["state"]["candidate_weight"] == 100
