import logging
import re
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Set

from abengine.core.exceptions import InvalidExperimentError
from abengine.models.schemas.experiment import ExperimentModel
from abengine.repositories.base import AssignmentStore
from abengine.services.activation import is_active

logger = logging.getLogger(__name__)


class ExperimentRegistry:
    """
    The set of configured experiments, keyed by id.

    Built-in defaults are registered first; overrides registered later with the
    same id replace them (last write wins).

    When given the assignment store, variant ids that stored assignments still
    reference count as declared, so the rule against dropping variants holds
    across restarts.
    """

    def __init__(
        self,
        defaults: Iterable[ExperimentModel] = (),
        assignment_store: Optional[AssignmentStore] = None,
    ):
        self.assignment_store = assignment_store
        self._experiments: Dict[str, ExperimentModel] = {}
        # Every variant id ever declared per experiment; stored assignments may reference any of them
        self._declared_variants: Dict[str, Set[str]] = {}
        self.register_many(defaults)

    def _declared_variant_ids(self, experiment_id: str) -> Set[str]:
        declared = set(self._declared_variants.get(experiment_id, ()))
        if self.assignment_store is not None:
            declared |= self.assignment_store.declared_variant_ids(experiment_id)
        return declared

    def _validate(self, experiment: ExperimentModel) -> None:
        experiment_id = experiment.experiment_id
        if not experiment_id or not experiment_id.strip():
            raise InvalidExperimentError(experiment_id, "experiment id must not be empty")

        if not experiment.variants:
            raise InvalidExperimentError(experiment_id, "at least one variant is required")

        variant_ids = [v.variant_id for v in experiment.variants]
        if len(variant_ids) != len(set(variant_ids)):
            raise InvalidExperimentError(experiment_id, f"variant ids must be unique, got {variant_ids}")

        negative = [v.variant_id for v in experiment.variants if v.weight < 0]
        if negative:
            raise InvalidExperimentError(experiment_id, f"variant weights must be >= 0, negative: {negative}")

        total_weight = sum(v.weight for v in experiment.variants)
        if total_weight <= 0:
            raise InvalidExperimentError(experiment_id, f"total variant weight must be > 0, got {total_weight}")

        if experiment.target_url_pattern:
            try:
                re.compile(experiment.target_url_pattern)
            except re.error as e:
                raise InvalidExperimentError(experiment_id, f"invalid target url pattern: {e}") from e

        removed = self._declared_variant_ids(experiment_id) - set(variant_ids)
        if removed:
            raise InvalidExperimentError(
                experiment_id,
                f"re-registration may not remove previously declared variants {sorted(removed)}",
            )

    def register(self, experiment: ExperimentModel) -> ExperimentModel:
        """Validates and stores an experiment, replacing any with the same id."""
        self._validate(experiment)

        replaced = experiment.experiment_id in self._experiments
        self._experiments[experiment.experiment_id] = experiment
        self._declared_variants.setdefault(experiment.experiment_id, set()).update(
            v.variant_id for v in experiment.variants
        )
        logger.info(
            "%s experiment %s with variants %s",
            "Replaced" if replaced else "Registered",
            experiment.experiment_id,
            [v.variant_id for v in experiment.variants],
        )
        return experiment

    def register_many(self, experiments: Iterable[ExperimentModel]) -> None:
        for experiment in experiments:
            self.register(experiment)

    def get(self, experiment_id: str) -> Optional[ExperimentModel]:
        return self._experiments.get(experiment_id)

    def experiment_ids(self) -> List[str]:
        return list(self._experiments)

    def list_active(self, now: datetime) -> List[ExperimentModel]:
        return [e for e in self._experiments.values() if is_active(e, now)]
