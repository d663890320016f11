"""
Tests: HTTP routes over the builder session and the stateless scorers.

Run with:
    pytest resume_automation/tests/test_api.py -v
"""

import pytest
from fastapi.testclient import TestClient

from resume_automation.api import create_app
from resume_automation.services.llm_service import set_generation_service


@pytest.fixture
def client():
    return TestClient(create_app())


@pytest.fixture
def inputs_payload(target_inputs):
    return target_inputs.model_dump(mode="json")


def _create(client, payload):
    response = client.post("/api/sessions", json=payload)
    assert response.status_code == 201
    return response.json()["session_id"]


class TestHealth:
    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "ok"
        assert response.json()["store"] == "memory"


class TestScoringRoutes:
    def test_score(self, client):
        response = client.post("/api/score", json={
            "text": "Led Python services on AWS, increasing throughput 40%.",
            "ats_keywords": {"critical": ["Python", "AWS"]},
        })
        assert response.status_code == 200
        body = response.json()
        assert body["ats_match_percentage"] == 70
        assert body["overall"] == 82

    def test_matrix_without_requirements(self, client):
        response = client.post("/api/matrix", json={
            "requirements": [],
            "evidence_items": [{"id": "e1", "text": "Built Python services"}],
        })
        assert response.status_code == 200
        assert response.json()["coverage_percent"] is None
        assert response.json()["coverage_defined"] is False

    def test_rank(self, client):
        response = client.post("/api/rank", json={
            "target_text": "python",
            "items": [
                {"id": "a", "text": "Organized events"},
                {"id": "b", "text": "Python tooling"},
            ],
        })
        assert [item["id"] for item in response.json()["items"]] == ["b", "a"]

    def test_blank_evidence_id_is_a_bad_request(self, client):
        response = client.post("/api/rank", json={
            "target_text": "python",
            "items": [{"id": "", "text": "Python tooling"}],
        })
        assert response.status_code == 400
        assert response.json()["error_kind"] == "input"


class TestSessionRoutes:
    def test_create_and_fetch(self, client, inputs_payload):
        session_id = _create(client, inputs_payload)

        response = client.get(f"/api/sessions/{session_id}")
        assert response.status_code == 200
        assert response.json()["current_step"] == "target"
        assert response.json()["inputs"]["company"] == "Initech"

    def test_unknown_session(self, client):
        assert client.get("/api/sessions/missing").status_code == 404

    def test_forward_navigation_is_refused(self, client, inputs_payload):
        session_id = _create(client, inputs_payload)
        response = client.post(f"/api/sessions/{session_id}/goto/build")
        assert response.status_code == 400

    def test_steps_and_history(self, client, inputs_payload):
        session_id = _create(client, inputs_payload)

        target = client.post(f"/api/sessions/{session_id}/steps/target").json()
        assessment = client.post(f"/api/sessions/{session_id}/steps/assessment").json()
        assert target["success"] and assessment["success"]

        reverted = client.post(f"/api/sessions/{session_id}/revert/{target['version_id']}")
        assert reverted.status_code == 200
        assert reverted.json()["previous_version_id"] == assessment["version_id"]

        session = client.get(f"/api/sessions/{session_id}").json()
        assert session["matrix"] is None
        assert len(session["version_history"]) == 2

    def test_build_through_the_api(self, client, inputs_payload, scripted):
        set_generation_service(scripted(
            ideal="Team player.",
            personalized="Built Python services on AWS for payments.",
        ))
        session_id = _create(client, inputs_payload)
        for step in ("target", "assessment", "build"):
            assert client.post(f"/api/sessions/{session_id}/steps/{step}").json()["success"]

        response = client.post(f"/api/sessions/{session_id}/sections/summary/variant/ideal")
        assert response.status_code == 200
        assert response.json()["content"] == "Team player."
        assert client.get(f"/api/sessions/{session_id}/sections/summary/validation").status_code == 404

    def test_save_and_reload(self, client, inputs_payload):
        from resume_automation.api.routes import reset_sessions

        session_id = _create(client, inputs_payload)
        assert client.post(f"/api/sessions/{session_id}/save").status_code == 200

        reset_sessions()
        response = client.get(f"/api/sessions/{session_id}/active")
        assert response.status_code == 200
        assert response.json()["active"] is True
        assert response.json()["last_saved_at"] is not None
