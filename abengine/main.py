import json
import logging
from contextlib import asynccontextmanager
from datetime import datetime
from pathlib import Path as FilePath
from typing import List, Optional

import uvicorn
from fastapi import APIRouter, Depends, FastAPI, HTTPException, Path, Query, Request
from pydantic import TypeAdapter
from starlette import status

from abengine.core.auth import require_auth_token
from abengine.core.db import build_engine, build_session_factory, init_db
from abengine.core.exceptions import InvalidExperimentError
from abengine.core.log_config import configure_logging
from abengine.core.settings import Settings, config_settings
from abengine.models.schemas.assignment import AssignmentModel, AssignmentResultModel, RequestContext
from abengine.models.schemas.event import ConversionCreateModel, ConversionResponseModel
from abengine.models.schemas.experiment import (
    DEFAULT_EXPERIMENTS,
    ExperimentCreateModel,
    ExperimentModel,
    ExperimentResponseModel,
)
from abengine.repositories.assignment_repo import SqlAlchemyAssignmentStore
from abengine.repositories.base import AssignmentStore
from abengine.repositories.local_store import InMemoryAssignmentStore
from abengine.services.event_service import EventService
from abengine.services.event_sink import EventSink, LoggingEventSink
from abengine.services.experiment_service import ExperimentService
from abengine.services.registry import ExperimentRegistry

logger = logging.getLogger(__name__)

router = APIRouter()

_experiment_list = TypeAdapter(List[ExperimentCreateModel])


def load_experiment_overrides(path: str) -> List[ExperimentModel]:
    """Reads a JSON list of experiment definitions."""
    raw = FilePath(path).read_text(encoding="utf-8")
    return [item.to_experiment() for item in _experiment_list.validate_python(json.loads(raw))]


def build_registry(settings: Settings, assignment_store: Optional[AssignmentStore] = None) -> ExperimentRegistry:
    registry = ExperimentRegistry(
        DEFAULT_EXPERIMENTS if settings.INCLUDE_DEFAULT_EXPERIMENTS else (),
        assignment_store=assignment_store,
    )
    if settings.EXPERIMENTS_FILE:
        overrides = load_experiment_overrides(settings.EXPERIMENTS_FILE)
        registry.register_many(overrides)
        logger.info("Loaded %d experiment overrides from %s", len(overrides), settings.EXPERIMENTS_FILE)
    return registry


def build_assignment_store(settings: Settings) -> AssignmentStore:
    if settings.ASSIGNMENT_STORE == "memory":
        return InMemoryAssignmentStore()

    engine = build_engine(settings.DATABASE_URL)
    init_db(engine)
    return SqlAlchemyAssignmentStore(build_session_factory(engine))


def create_app(
    settings: Optional[Settings] = None,
    assignment_store: Optional[AssignmentStore] = None,
    event_sink: Optional[EventSink] = None,
) -> FastAPI:
    """Composes registry, store, sink and services for one process."""
    settings = settings or config_settings
    configure_logging(settings.LOG_LEVEL)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        store = assignment_store if assignment_store is not None else build_assignment_store(settings)
        experiment_service = ExperimentService(
            registry=build_registry(settings, store),
            assignment_store=store,
            event_sink=event_sink if event_sink is not None else LoggingEventSink(),
        )
        app.state.experiment_service = experiment_service
        app.state.event_service = EventService(experiment_service)
        yield

    app = FastAPI(
        title=settings.APP_NAME,
        description="Experiment assignment and attribution service",
        version="0.1.0",
        dependencies=[Depends(require_auth_token)],
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.include_router(router)
    return app


def get_experiment_service(request: Request) -> ExperimentService:
    return request.app.state.experiment_service


def get_event_service(request: Request) -> EventService:
    return request.app.state.event_service


def _context(subject_id: str, path: Optional[str], now: Optional[datetime], session_id: Optional[str] = None):
    if now is None:
        return RequestContext(subject_id=subject_id, path=path, session_id=session_id)
    return RequestContext(subject_id=subject_id, path=path, now=now, session_id=session_id)


@router.post(
    "/experiments",
    response_model=ExperimentResponseModel,
    status_code=status.HTTP_201_CREATED,
)
def post_experiments(
    experiment_data: ExperimentCreateModel,
    experiment_service: ExperimentService = Depends(get_experiment_service),
):
    try:
        experiment = experiment_service.register_experiment(experiment_data.to_experiment())
    except InvalidExperimentError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    return ExperimentResponseModel.from_experiment(experiment)


@router.get(
    "/experiments/active",
    response_model=List[ExperimentResponseModel],
    summary="List active experiments",
)
def get_active_experiments(
    now: Optional[datetime] = Query(None),
    experiment_service: ExperimentService = Depends(get_experiment_service),
):
    return [ExperimentResponseModel.from_experiment(e) for e in experiment_service.list_active_experiments(now)]


@router.get(
    "/experiments/{experiment_id}/active",
    summary="Is the experiment enabled and inside its time window",
)
def get_experiment_active(
    experiment_id: str = Path(..., description="The ID of the experiment."),
    now: Optional[datetime] = Query(None),
    experiment_service: ExperimentService = Depends(get_experiment_service),
):
    return {"experiment_id": experiment_id, "active": experiment_service.is_experiment_active(experiment_id, now)}


@router.get(
    "/experiments/{experiment_id}/assignment/{subject_id}",
    response_model=AssignmentResultModel,
    status_code=status.HTTP_200_OK,
    summary="Get subject assignment",
)
def get_subject_variant_assignment(
    experiment_id: str = Path(..., description="The ID of the experiment."),
    subject_id: str = Path(..., description="The stable ID of the subject."),
    path: Optional[str] = Query(None, description="Request path checked against the experiment's url pattern."),
    now: Optional[datetime] = Query(None),
    session_id: Optional[str] = Query(None),
    experiment_service: ExperimentService = Depends(get_experiment_service),
):
    """
    Retrieves a subject's variant. If no assignment exists and the subject is
    eligible, a new, persistent assignment is generated.
    """
    return experiment_service.get_variant(experiment_id, _context(subject_id, path, now, session_id))


@router.post(
    "/experiments/{experiment_id}/conversions",
    response_model=ConversionResponseModel,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Record a conversion for the subject's variant.",
)
def post_conversion(
    conversion: ConversionCreateModel,
    experiment_id: str = Path(..., description="The ID of the experiment."),
    event_service: EventService = Depends(get_event_service),
):
    event = event_service.record_conversion(
        experiment_id,
        _context(conversion.subject_id, conversion.path, conversion.timestamp, conversion.session_id),
        conversion.conversion_type,
        conversion.value,
    )
    return ConversionResponseModel(
        experiment_id=experiment_id,
        recorded=event is not None,
        variant_id=event.properties["variant_id"] if event else None,
        event=event,
    )


@router.get(
    "/subjects/{subject_id}/assignments",
    response_model=List[AssignmentModel],
    summary="List a subject's stored assignments",
)
def get_subject_assignments(
    subject_id: str = Path(..., description="The stable ID of the subject."),
    experiment_service: ExperimentService = Depends(get_experiment_service),
):
    return experiment_service.list_assignments_for_subject(subject_id)


app = create_app()


if __name__ == "__main__":
    uvicorn.run("abengine.main:app", host="0.0.0.0", port=8000, reload=True)
