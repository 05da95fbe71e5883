"""Round trips through the HTTP surface."""

import json

import pytest
from fastapi.testclient import TestClient

from abengine.core.settings import Settings
from abengine.main import create_app
from abengine.models.schemas.event import ASSIGNMENT_CONVERSION, ASSIGNMENT_CREATED
from abengine.repositories.local_store import InMemoryAssignmentStore
from abengine.services.event_sink import InMemoryEventSink

TOKEN = "test-token"
AUTH = {"Authorization": f"Bearer {TOKEN}"}

CHECKOUT_BUTTON = {
    "experiment_id": "checkout_button",
    "name": "Checkout Button",
    "variants": [
        {"variant_id": "a", "variant_name": "Green", "weight": 50, "config": {"color": "green"}},
        {"variant_id": "b", "variant_name": "Blue", "weight": 50, "config": {"color": "blue"}},
    ],
    "traffic_allocation": 100,
}


@pytest.fixture
def sink():
    return InMemoryEventSink()


@pytest.fixture
def client(sink):
    settings = Settings(TOKENS=[TOKEN], ASSIGNMENT_STORE="memory", INCLUDE_DEFAULT_EXPERIMENTS=True)
    app = create_app(settings, assignment_store=InMemoryAssignmentStore(), event_sink=sink)
    with TestClient(app) as client:
        yield client


class TestAuth:
    def test_missing_token(self, client):
        assert client.get("/experiments/active").status_code == 401

    def test_unknown_token(self, client):
        response = client.get("/experiments/active", headers={"Authorization": "Bearer nope"})
        assert response.status_code == 401


class TestExperiments:
    def test_register(self, client):
        response = client.post("/experiments", json=CHECKOUT_BUTTON, headers=AUTH)
        assert response.status_code == 201
        body = response.json()
        assert body["experiment_id"] == "checkout_button"
        assert body["total_weight"] == 100
        assert body["has_audience_predicate"] is False

    def test_invalid_configuration_is_rejected(self, client):
        bad = dict(CHECKOUT_BUTTON, variants=[{"variant_id": "a", "variant_name": "A", "weight": 0}])
        response = client.post("/experiments", json=bad, headers=AUTH)
        assert response.status_code == 400
        assert "total variant weight" in response.json()["detail"]

    def test_traffic_allocation_out_of_range(self, client):
        response = client.post("/experiments", json=dict(CHECKOUT_BUTTON, traffic_allocation=150), headers=AUTH)
        assert response.status_code == 422

    def test_list_active_includes_enabled_defaults(self, client):
        client.post("/experiments", json=CHECKOUT_BUTTON, headers=AUTH)
        ids = {e["experiment_id"] for e in client.get("/experiments/active", headers=AUTH).json()}
        assert ids == {"landing_cta_text", "pricing_display", "checkout_button"}

    def test_is_active(self, client):
        assert client.get("/experiments/hero_layout/active", headers=AUTH).json()["active"] is False
        assert client.get("/experiments/pricing_display/active", headers=AUTH).json()["active"] is True


class TestAssignmentFlow:
    def test_assignment_is_sticky(self, client, sink):
        client.post("/experiments", json=CHECKOUT_BUTTON, headers=AUTH)

        first = client.get("/experiments/checkout_button/assignment/u1", headers=AUTH).json()
        second = client.get("/experiments/checkout_button/assignment/u1", headers=AUTH).json()

        assert first == second
        assert first["is_in_test"] is True
        assert first["config"]["color"] in ("green", "blue")
        assert len(sink.named(ASSIGNMENT_CREATED)) == 1

        stored = client.get("/subjects/u1/assignments", headers=AUTH).json()
        assert [(a["experiment_id"], a["variant_id"]) for a in stored] == [("checkout_button", first["variant_id"])]

    def test_unknown_experiment_gives_control(self, client):
        body = client.get("/experiments/missing/assignment/u1", headers=AUTH).json()
        assert body == {
            "experiment_id": "missing",
            "variant_id": "control",
            "variant_name": "Control",
            "is_in_test": False,
            "config": {},
        }

    def test_url_pattern_uses_path_query(self, client):
        client.post("/experiments", json=dict(CHECKOUT_BUTTON, target_url_pattern="^/checkout"), headers=AUTH)
        outside = client.get(
            "/experiments/checkout_button/assignment/u1", params={"path": "/blog"}, headers=AUTH
        ).json()
        inside = client.get(
            "/experiments/checkout_button/assignment/u1", params={"path": "/checkout/step-1"}, headers=AUTH
        ).json()
        assert outside["is_in_test"] is False
        assert inside["is_in_test"] is True

    def test_conversion_for_assigned_subject(self, client, sink):
        client.post("/experiments", json=CHECKOUT_BUTTON, headers=AUTH)
        assigned = client.get("/experiments/checkout_button/assignment/u1", headers=AUTH).json()

        response = client.post(
            "/experiments/checkout_button/conversions",
            json={"subject_id": "u1", "conversion_type": "purchase", "value": 49.5},
            headers=AUTH,
        )
        assert response.status_code == 202
        body = response.json()
        assert body["recorded"] is True
        assert body["variant_id"] == assigned["variant_id"]

        conversions = sink.named(ASSIGNMENT_CONVERSION, "checkout_button")
        assert len(conversions) == 1
        assert conversions[0].properties["value"] == 49.5

    def test_conversion_carries_session_into_first_assignment(self, client):
        client.post("/experiments", json=CHECKOUT_BUTTON, headers=AUTH)
        response = client.post(
            "/experiments/checkout_button/conversions",
            json={"subject_id": "u2", "conversion_type": "click", "session_id": "sess-42"},
            headers=AUTH,
        )
        assert response.json()["recorded"] is True

        stored = client.get("/subjects/u2/assignments", headers=AUTH).json()
        assert [a["subject_session_id"] for a in stored] == ["sess-42"]

    def test_conversion_for_unknown_experiment_is_ignored(self, client, sink):
        response = client.post(
            "/experiments/missing/conversions",
            json={"subject_id": "u1", "conversion_type": "purchase"},
            headers=AUTH,
        )
        assert response.status_code == 202
        assert response.json()["recorded"] is False
        assert sink.events == []


class TestExperimentOverridesFile:
    def test_overrides_are_layered_over_defaults(self, tmp_path):
        overrides = tmp_path / "experiments.json"
        hero = {
            "experiment_id": "hero_layout",
            "name": "Hero Section Layout",
            "variants": [
                {"variant_id": "control", "variant_name": "Standard Layout", "weight": 50},
                {"variant_id": "video_bg", "variant_name": "Video Background", "weight": 50},
            ],
            "traffic_allocation": 50,
            "enabled": True,
        }
        overrides.write_text(json.dumps([hero, CHECKOUT_BUTTON]), encoding="utf-8")

        settings = Settings(TOKENS=[TOKEN], ASSIGNMENT_STORE="memory", EXPERIMENTS_FILE=str(overrides))
        with TestClient(create_app(settings)) as client:
            ids = {e["experiment_id"] for e in client.get("/experiments/active", headers=AUTH).json()}
        assert ids == {"landing_cta_text", "hero_layout", "pricing_display", "checkout_button"}

    def test_defaults_can_be_left_out(self):
        settings = Settings(TOKENS=[TOKEN], ASSIGNMENT_STORE="memory", INCLUDE_DEFAULT_EXPERIMENTS=False)
        with TestClient(create_app(settings)) as client:
            assert client.get("/experiments/active", headers=AUTH).json() == []


class TestDatabaseBackend:
    def test_assignments_survive_app_restart(self, tmp_path):
        settings = Settings(
            TOKENS=[TOKEN],
            ASSIGNMENT_STORE="database",
            DATABASE_URL=f"sqlite:///{tmp_path / 'abengine.db'}",
        )
        with TestClient(create_app(settings)) as client:
            client.post("/experiments", json=CHECKOUT_BUTTON, headers=AUTH)
            first = client.get("/experiments/checkout_button/assignment/u1", headers=AUTH).json()

        # Flip the weights so a re-computation would land elsewhere
        flipped = dict(CHECKOUT_BUTTON, variants=[
            dict(v, weight=100 if v["variant_id"] != first["variant_id"] else 0) for v in CHECKOUT_BUTTON["variants"]
        ])
        with TestClient(create_app(settings)) as client:
            client.post("/experiments", json=flipped, headers=AUTH)
            again = client.get("/experiments/checkout_button/assignment/u1", headers=AUTH).json()

        assert again["variant_id"] == first["variant_id"]

    def test_stored_variants_cannot_be_dropped_after_restart(self, tmp_path):
        settings = Settings(
            TOKENS=[TOKEN],
            ASSIGNMENT_STORE="database",
            DATABASE_URL=f"sqlite:///{tmp_path / 'abengine.db'}",
        )
        with TestClient(create_app(settings)) as client:
            client.post("/experiments", json=CHECKOUT_BUTTON, headers=AUTH)
            first = client.get("/experiments/checkout_button/assignment/u1", headers=AUTH).json()

        replaced = dict(CHECKOUT_BUTTON, variants=[{"variant_id": "z", "variant_name": "Red", "weight": 100}])
        with TestClient(create_app(settings)) as client:
            response = client.post("/experiments", json=replaced, headers=AUTH)
            assert response.status_code == 400
            assert f"['{first['variant_id']}']" in response.json()["detail"]

            client.post("/experiments", json=CHECKOUT_BUTTON, headers=AUTH)
            again = client.get("/experiments/checkout_button/assignment/u1", headers=AUTH).json()

        assert again["variant_name"] == first["variant_name"]
        assert again["variant_name"] != "Unknown"
