# services/experiment_service.py

import logging
from datetime import datetime
from typing import List, Optional

from abengine.models.schemas.assignment import (
    AssignmentModel,
    AssignmentResultModel,
    RequestContext,
    utc_now,
)
from abengine.models.schemas.event import ASSIGNMENT_CREATED, AnalyticsEvent
from abengine.models.schemas.experiment import ExperimentModel
from abengine.repositories.base import AssignmentStore
from abengine.services.activation import is_active, is_eligible
from abengine.services.bucketing import bucket, rescale_to_allocation, select_variant
from abengine.services.event_sink import EventSink
from abengine.services.registry import ExperimentRegistry

logger = logging.getLogger(__name__)

UNKNOWN_VARIANT_NAME = "Unknown"


class ExperimentService:
    """
    Answers "which variant does this subject see for this experiment".

    Owns nothing global: the registry, the assignment store and the event sink
    are handed in by whoever composes the application.
    """

    def __init__(self, registry: ExperimentRegistry, assignment_store: AssignmentStore, event_sink: EventSink):
        self.registry = registry
        self.assignment_store = assignment_store
        self.event_sink = event_sink

    def register_experiment(self, experiment: ExperimentModel) -> ExperimentModel:
        """Registers or replaces an experiment; raises InvalidExperimentError on bad configuration."""
        return self.registry.register(experiment)

    def _result_for(self, experiment: ExperimentModel, assignment: AssignmentModel) -> AssignmentResultModel:
        variant = experiment.find_variant(assignment.variant_id)
        return AssignmentResultModel(
            experiment_id=experiment.experiment_id,
            variant_id=assignment.variant_id,
            variant_name=variant.variant_name if variant else UNKNOWN_VARIANT_NAME,
            is_in_test=True,
            config=dict(variant.config) if variant else {},
        )

    def emit(self, event: AnalyticsEvent) -> None:
        """Hands an event to the sink; a failing sink never fails the caller."""
        try:
            self.event_sink.emit(event)
        except Exception:
            logger.exception("Event sink failed to accept %s for %s", event.name, event.subject_id)

    def get_variant(self, experiment_id: str, context: RequestContext) -> AssignmentResultModel:
        """
        Gets a subject's variant for an experiment, ensuring stickiness.

        1. Unknown or disabled experiments give the control result.
        2. An existing assignment is returned as stored, whatever the current
           time window, url, audience or allocation say.
        3. Otherwise, if the subject is eligible, bucket, select and persist a
           new assignment, announcing it once.
        """
        experiment = self.registry.get(experiment_id)
        if experiment is None:
            return AssignmentResultModel.control(experiment_id)

        if not experiment.enabled:
            return AssignmentResultModel.control(experiment_id)

        # 1. Check for existing assignment (sticky path)
        existing_assignment = self.assignment_store.get(context.subject_id, experiment_id)
        if existing_assignment is not None:
            logger.debug(
                "Subject %s already assigned to variant %s of %s",
                context.subject_id,
                existing_assignment.variant_id,
                experiment_id,
            )
            return self._result_for(experiment, existing_assignment)

        # 2. Not eligible now; nothing is persisted so a later call is evaluated fresh
        if not is_eligible(experiment, context):
            return AssignmentResultModel.control(experiment_id)

        # 3. Determine and persist the assignment
        bucket_value = bucket(context.subject_id, experiment_id)
        assigned_variant = select_variant(
            experiment.variants, rescale_to_allocation(bucket_value, experiment.traffic_allocation)
        )
        candidate = AssignmentModel(
            experiment_id=experiment_id,
            subject_id=context.subject_id,
            variant_id=assigned_variant.variant_id,
            assigned_at_epoch_millis=int(context.now.timestamp() * 1000),
            subject_session_id=context.subject_session_id,
        )
        assignment, created = self.assignment_store.create_if_absent(candidate)
        result = self._result_for(experiment, assignment)

        if created:
            logger.info(
                "Assigned subject %s to variant %s of %s",
                context.subject_id,
                assignment.variant_id,
                experiment_id,
            )
            self.emit(
                AnalyticsEvent(
                    name=ASSIGNMENT_CREATED,
                    subject_id=context.subject_id,
                    timestamp=context.now,
                    properties={
                        "test_id": experiment_id,
                        "variant_id": result.variant_id,
                        "variant_name": result.variant_name,
                    },
                )
            )

        return result

    def is_experiment_active(self, experiment_id: str, now: Optional[datetime] = None) -> bool:
        experiment = self.registry.get(experiment_id)
        return experiment is not None and is_active(experiment, now or utc_now())

    def list_active_experiments(self, now: Optional[datetime] = None) -> List[ExperimentModel]:
        return self.registry.list_active(now or utc_now())

    def list_assignments_for_subject(self, subject_id: str) -> List[AssignmentModel]:
        return self.assignment_store.list_for_subject(subject_id)
