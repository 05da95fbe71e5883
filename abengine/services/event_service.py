# services/event_service.py
import logging
from typing import Optional

from abengine.models.schemas.assignment import RequestContext
from abengine.models.schemas.event import ASSIGNMENT_CONVERSION, AnalyticsEvent
from abengine.services.experiment_service import ExperimentService

logger = logging.getLogger(__name__)


class EventService:
    def __init__(self, experiment_service: ExperimentService):
        """Initializes the service with the engine that resolves assignments."""
        self.experiment_service = experiment_service

    def record_conversion(
        self,
        experiment_id: str,
        context: RequestContext,
        conversion_type: str,
        value: Optional[float] = None,
    ) -> Optional[AnalyticsEvent]:
        """
        Attributes a conversion to the subject's variant.
        1. Resolves the subject's current assignment for the experiment.
        2. Emits one conversion event carrying the resolved variant, or nothing
           at all when the subject is not in the test.
        """
        result = self.experiment_service.get_variant(experiment_id, context)
        if not result.is_in_test:
            logger.debug(
                "Ignoring %s conversion for %s: subject %s not in test",
                conversion_type,
                experiment_id,
                context.subject_id,
            )
            return None

        properties = {
            "test_id": experiment_id,
            "variant_id": result.variant_id,
            "variant_name": result.variant_name,
            "conversion_type": conversion_type,
        }
        if value is not None:
            properties["value"] = value

        event = AnalyticsEvent(
            name=ASSIGNMENT_CONVERSION,
            subject_id=context.subject_id,
            timestamp=context.now,
            properties=properties,
        )
        self.experiment_service.emit(event)
        return event
