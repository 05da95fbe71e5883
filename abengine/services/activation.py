import logging
import re
from datetime import datetime, timezone
from typing import Optional

from abengine.models.schemas.assignment import RequestContext
from abengine.models.schemas.experiment import ExperimentModel
from abengine.services.bucketing import bucket

logger = logging.getLogger(__name__)


def as_utc(moment: datetime) -> datetime:
    """Naive datetimes are read as UTC so they compare with aware ones."""
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment


def is_enabled(experiment: ExperimentModel) -> bool:
    return experiment.enabled


def in_time_window(experiment: ExperimentModel, now: datetime) -> bool:
    """Inclusive on both ends; a missing bound is open on that side."""
    now = as_utc(now)
    if experiment.start_time is not None and now < as_utc(experiment.start_time):
        return False
    if experiment.end_time is not None and now > as_utc(experiment.end_time):
        return False
    return True


def matches_target_url(experiment: ExperimentModel, path: Optional[str]) -> bool:
    if not experiment.target_url_pattern:
        return True
    # A pattern cannot be checked against a request without a path
    if path is None:
        return False
    return re.search(experiment.target_url_pattern, path) is not None


def in_audience(experiment: ExperimentModel, subject_id: str) -> bool:
    if experiment.audience_predicate is None:
        return True
    try:
        return bool(experiment.audience_predicate(subject_id))
    except Exception:
        logger.exception(
            "Audience predicate of %s failed for %s, treating subject as outside the audience",
            experiment.experiment_id,
            subject_id,
        )
        return False


def in_traffic_allocation(experiment: ExperimentModel, subject_id: str) -> bool:
    return bucket(subject_id, experiment.experiment_id) < experiment.traffic_allocation


def is_active(experiment: ExperimentModel, now: datetime) -> bool:
    """Whether the experiment is switched on and inside its time window."""
    return is_enabled(experiment) and in_time_window(experiment, now)


def is_eligible(experiment: ExperimentModel, context: RequestContext) -> bool:
    """
    Whether the subject in `context` may be newly assigned into the experiment.

    Every check is re-run on each call; nothing here is cached.
    """
    return (
        is_active(experiment, context.now)
        and matches_target_url(experiment, context.path)
        and in_audience(experiment, context.subject_id)
        and in_traffic_allocation(experiment, context.subject_id)
    )
