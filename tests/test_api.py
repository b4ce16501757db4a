from datetime import timedelta

import pytest

from cardflow.api.forms import get_ai_scorer
from cardflow.core.meta import utc_now
from cardflow.engine.errors import ScoringError
from cardflow.engine.types import PercentageResult, PercentageScore
from cardflow.routes.sessions import CREATE_LIMITER
from cardflow.services import sessions as session_service


def _code(resp):
    return resp.json()["detail"]["error"]["code"]


@pytest.fixture
def form_id(client, survey_fields):
    resp = client.put("/api/forms/pets", json={
        "title": "Pets",
        "schema": [f.to_wire() for f in survey_fields],
        "profileEstimation": {
            "type": "percentage",
            "aiConfig": {"enabled": True},
            "fieldScoring": [{"fieldId": "likes_pets", "scoring": [{"answer": "yes", "points": 10}]}],
        },
        "successMessage": "Thanks!",
    })
    assert resp.status_code == 200, resp.text
    return "pets"


def test_health(client):
    assert client.get("/health").json() == {"status": "ok"}


def test_template_round_trip(client, form_id, survey_fields):
    body = client.get(f"/api/forms/{form_id}").json()
    assert [f["id"] for f in body["schema"]] == [f.id for f in survey_fields]
    assert body["successMessage"] == "Thanks!"
    assert body["profileEstimation"]["type"] == "percentage"

    graph = client.get(f"/api/forms/{form_id}/graph").json()
    assert [n["type"] for n in graph["nodes"]][0] == "start"
    assert len(graph["nodes"]) == len(survey_fields) + 2


def test_unknown_form(client):
    resp = client.get("/api/forms/missing")
    assert resp.status_code == 404
    assert _code(resp) == "UNKNOWN_FORM"


def test_invalid_graph_rejected(client):
    resp = client.put("/api/forms/bad", json={"graph": {
        "nodes": [{"id": "start", "type": "start"}, {"id": "end", "type": "end"}],
        "edges": [],
    }})
    assert resp.status_code == 422
    assert _code(resp) == "INVALID_TEMPLATE"
    assert resp.json()["detail"]["error"]["details"] == ["No path from start node to end node (graph is disconnected)"]


def test_graph_template_compiles_schema(client):
    resp = client.put("/api/forms/g", json={"graph": {
        "nodes": [
            {"id": "start", "type": "start"},
            {"id": "q", "type": "question", "data": {"field": {"id": "q", "type": "text", "label": "Q"}}},
            {"id": "end", "type": "end"},
        ],
        "edges": [
            {"id": "e-start-q", "source": "start", "target": "q"},
            {"id": "e-q-end", "source": "q", "target": "end"},
        ],
    }})
    assert resp.status_code == 200, resp.text
    assert [f["id"] for f in resp.json()["schema"]] == ["q"]
    assert client.get("/api/forms/g/graph").json()["edges"][0]["id"] == "e-start-q"


def test_session_lifecycle(client, form_id):
    created = client.post(f"/api/forms/{form_id}/sessions")
    assert created.status_code == 201
    token = created.json()["sessionToken"]
    assert created.json()["currentCardIndex"] == 0

    patched = client.patch(f"/api/forms/{form_id}/sessions/{token}",
                           json={"currentCardIndex": 2, "partialData": {"name": "Sam"}})
    assert patched.status_code == 200

    restored = client.get(f"/api/forms/{form_id}/sessions/{token}").json()
    assert restored["currentCardIndex"] == 2
    assert restored["partialData"] == {"name": "Sam"}

    done = client.post(f"/api/forms/{form_id}/sessions/{token}/complete")
    assert done.status_code == 200
    assert done.json()["completedAt"]

    again = client.get(f"/api/forms/{form_id}/sessions/{token}")
    assert again.status_code == 409
    assert _code(again) == "SESSION_COMPLETED"

    late = client.patch(f"/api/forms/{form_id}/sessions/{token}", json={"currentCardIndex": 3})
    assert late.status_code == 409


def test_unknown_and_expired_sessions_are_404(client, form_id, db):
    resp = client.get(f"/api/forms/{form_id}/sessions/nope")
    assert resp.status_code == 404
    assert resp.json()["detail"]["error"]["message"] == "Form session not found or expired"

    row = session_service.create_session(db, form_id, now=utc_now() - timedelta(days=30))
    db.commit()
    assert client.get(f"/api/forms/{form_id}/sessions/{row.token}").status_code == 404


def test_negative_index_rejected(client, form_id):
    token = client.post(f"/api/forms/{form_id}/sessions").json()["sessionToken"]
    resp = client.patch(f"/api/forms/{form_id}/sessions/{token}", json={"currentCardIndex": -1})
    assert resp.status_code == 422


def test_session_creation_is_rate_limited(client, form_id, monkeypatch):
    monkeypatch.setattr(CREATE_LIMITER, "limit", 2)
    assert client.post(f"/api/forms/{form_id}/sessions").status_code == 201
    assert client.post(f"/api/forms/{form_id}/sessions").status_code == 201

    resp = client.post(f"/api/forms/{form_id}/sessions")
    assert resp.status_code == 429
    assert _code(resp) == "RATE_LIMITED"


def test_submission_requires_visible_required_fields(client, form_id):
    resp = client.post(f"/api/forms/{form_id}/submissions", json={"answers": {"name": "Sam", "likes_pets": "yes"}})
    assert resp.status_code == 422
    assert resp.json()["detail"]["error"]["fields"] == ["pet_kind"]

    ok = client.post(f"/api/forms/{form_id}/submissions", json={"answers": {"name": "Sam", "likes_pets": "no"}})
    assert ok.status_code == 201
    assert ok.json()["successMessage"] == "Thanks!"


def test_submission_ignores_required_cards_a_branch_skipped(client):
    client.put("/api/forms/quiz", json={"schema": [
        {"id": "q", "type": "radio", "label": "Q", "options": ["yes", "no"],
         "branchRules": [{"targetFieldId": "r", "value": "yes"}]},
        {"id": "a", "label": "A", "required": True},
        {"id": "r", "label": "R"},
    ]})

    skipped = client.post("/api/forms/quiz/submissions", json={"answers": {"q": "yes"}})
    assert skipped.status_code == 201, skipped.text

    on_path = client.post("/api/forms/quiz/submissions", json={"answers": {"q": "no"}})
    assert on_path.status_code == 422
    assert on_path.json()["detail"]["error"]["fields"] == ["a"]


class _StubScorer:
    def __init__(self, error=None):
        self.error = error

    def score(self, profile, answers, fields):
        if self.error:
            raise self.error
        return PercentageResult(result=PercentageScore(score=77, description="stub"))


def test_profile_endpoint(client, api, form_id):
    api.dependency_overrides[get_ai_scorer] = lambda: _StubScorer()
    resp = client.post(f"/api/forms/{form_id}/profile", json={"answers": {"likes_pets": "yes"}})
    assert resp.status_code == 200
    assert resp.json()["type"] == "percentage"
    assert resp.json()["result"]["score"] == 77

    api.dependency_overrides[get_ai_scorer] = lambda: _StubScorer(error=ScoringError("no key"))
    resp = client.post(f"/api/forms/{form_id}/profile", json={"answers": {}})
    assert resp.status_code == 503
    assert _code(resp) == "SCORER_UNAVAILABLE"


def test_profile_endpoint_without_ai(client, survey_fields):
    client.put("/api/forms/plain", json={"schema": [f.to_wire() for f in survey_fields]})
    resp = client.post("/api/forms/plain/profile", json={"answers": {}})
    assert resp.status_code == 409
    assert _code(resp) == "AI_DISABLED"


def test_card_time_analytics(client, form_id):
    token = client.post(f"/api/forms/{form_id}/sessions").json()["sessionToken"]

    resp = client.post(f"/api/forms/{form_id}/analytics/card-time",
                       json={"sessionToken": token, "cardId": "name", "timeSeconds": 4})
    assert resp.status_code == 202
    assert resp.json()["accepted"] is True

    missing = client.post(f"/api/forms/{form_id}/analytics/card-time",
                          json={"sessionToken": "nope", "cardId": "name", "timeSeconds": 4})
    assert missing.status_code == 404
