"""
Tests for the converts API.

The Supabase-backed engine is swapped for one using the in-memory store.
"""

from __future__ import annotations

from uuid import uuid4

import pytest
from fastapi.testclient import TestClient

from api.main import app
from api.routers.converts import get_engine

OWNER = "00000000-0000-0000-0000-0000000000a1"


@pytest.fixture
def api(engine):
    app.dependency_overrides[get_engine] = lambda: engine
    yield TestClient(app)
    app.dependency_overrides.clear()


def register(api) -> dict:
    response = api.post(
        "/api/v1/converts",
        json={"soul_winner_id": OWNER, "parish_id": "parish-1", "name": "Ada Obi", "phone": "0803"},
    )
    assert response.status_code == 201
    return response.json()


def test_health(api) -> None:
    body = api.get("/health").json()
    assert body["status"] == "healthy"
    assert body["version"] == "1.0.0"


def test_register_returns_schedule_and_stage(api) -> None:
    body = register(api)

    assert body["status"] == "Active"
    assert body["stage"] == "Visit 1 of 8"
    assert len(body["follow_up_visits"]) == 8
    assert body["spiritual_growth"]["believerClass"] == "NotStarted"


def test_register_rejects_invalid_enum(api) -> None:
    response = api.post(
        "/api/v1/converts",
        json={"soul_winner_id": OWNER, "parish_id": "p", "name": "A", "phone": "1", "gender": "Other"},
    )

    assert response.status_code == 400


def test_toggle_visit_and_stage(api) -> None:
    convert_id = register(api)["convert_id"]

    body = api.patch(f"/api/v1/converts/{convert_id}/visits/1").json()
    assert body["follow_up_visits"][0]["is_completed"] is True
    assert api.get(f"/api/v1/converts/{convert_id}/stage").json()["stage"] == "Visit 2 of 8"


def test_error_mapping(api) -> None:
    convert_id = register(api)["convert_id"]

    assert api.get(f"/api/v1/converts/{uuid4()}").status_code == 404
    assert api.patch(f"/api/v1/converts/{convert_id}/visits/9").status_code == 400
    assert api.patch(
        f"/api/v1/converts/{convert_id}/milestones", json={"waterBaptism": "Maybe"}
    ).status_code == 400

    forbidden = api.post(
        f"/api/v1/converts/{convert_id}/status",
        json={"actor_id": str(uuid4()), "actor_role": "soul_winner", "status": "Unreachable"},
    )
    assert forbidden.status_code == 403


def test_manual_status_and_reopen(api) -> None:
    convert_id = register(api)["convert_id"]
    actor = {"actor_id": OWNER, "actor_role": "soul_winner"}

    body = api.post(f"/api/v1/converts/{convert_id}/status", json={**actor, "status": "Unreachable"}).json()
    assert body["status"] == "Unreachable"

    body = api.post(f"/api/v1/converts/{convert_id}/reopen", json=actor).json()
    assert body["status"] == "Active"


def test_update_details_and_milestones(api) -> None:
    convert_id = register(api)["convert_id"]

    body = api.put(
        f"/api/v1/converts/{convert_id}",
        json={"actor_id": OWNER, "actor_role": "soul_winner", "career": "Nurse"},
    ).json()
    assert body["career"] == "Nurse"
    assert body["name"] == "Ada Obi"

    body = api.patch(
        f"/api/v1/converts/{convert_id}/milestones", json={"believerClass": "InProgress"}
    ).json()
    assert body["spiritual_growth"]["believerClass"] == "InProgress"
    assert body["spiritual_growth"]["waterBaptism"] == "NotStarted"


def test_update_details_null_clears_optional_field(api) -> None:
    convert_id = register(api)["convert_id"]
    actor = {"actor_id": OWNER, "actor_role": "soul_winner"}

    body = api.put(f"/api/v1/converts/{convert_id}", json={**actor, "whatsapp": "0809", "career": "Nurse"}).json()
    assert body["whatsapp"] == "0809"

    body = api.put(f"/api/v1/converts/{convert_id}", json={**actor, "whatsapp": None}).json()
    assert body["whatsapp"] is None
    assert body["career"] == "Nurse"

    assert api.put(f"/api/v1/converts/{convert_id}", json={**actor, "name": None}).status_code == 400
