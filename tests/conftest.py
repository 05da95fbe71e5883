from datetime import datetime, timezone

import pytest

from abengine.models.schemas.experiment import ExperimentModel, VariantConfig
from abengine.repositories.local_store import InMemoryAssignmentStore
from abengine.services.event_service import EventService
from abengine.services.event_sink import InMemoryEventSink
from abengine.services.experiment_service import ExperimentService
from abengine.services.registry import ExperimentRegistry

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


def make_experiment(experiment_id="checkout_button", weights=(50, 50), **overrides) -> ExperimentModel:
    variant_ids = overrides.pop("variant_ids", None) or [chr(ord("a") + i) for i in range(len(weights))]
    fields = dict(
        experiment_id=experiment_id,
        name=experiment_id.replace("_", " ").title(),
        variants=[
            VariantConfig(variant_id=vid, variant_name=f"Variant {vid.upper()}", weight=w, config={"label": vid})
            for vid, w in zip(variant_ids, weights)
        ],
        traffic_allocation=100,
        enabled=True,
    )
    fields.update(overrides)
    return ExperimentModel(**fields)


@pytest.fixture
def store():
    return InMemoryAssignmentStore()


@pytest.fixture
def registry(store):
    return ExperimentRegistry(assignment_store=store)


@pytest.fixture
def sink():
    return InMemoryEventSink()


@pytest.fixture
def service(registry, store, sink):
    return ExperimentService(registry=registry, assignment_store=store, event_sink=sink)


@pytest.fixture
def event_service(service):
    return EventService(service)
