from abc import ABC, abstractmethod
from typing import List, Optional, Set, Tuple

from abengine.models.schemas.assignment import AssignmentModel


class AssignmentStore(ABC):
    """
    Persistence for sticky assignments, partitioned by subject id.

    Implementations must never raise out of these methods: read failures
    behave as if nothing is stored, write failures are logged and dropped.
    """

    @abstractmethod
    def get(self, subject_id: str, experiment_id: str) -> Optional[AssignmentModel]:
        """Returns the stored assignment for the pair, or None."""

    @abstractmethod
    def put(self, assignment: AssignmentModel) -> None:
        """
        Upserts an assignment. Callers only do this after `get` returned None;
        use `create_if_absent` when the write must not race.
        """

    @abstractmethod
    def create_if_absent(self, assignment: AssignmentModel) -> Tuple[AssignmentModel, bool]:
        """
        Stores `assignment` unless one already exists for its
        (subject_id, experiment_id) key.

        Returns the assignment that is now authoritative and whether this call
        created it.
        """

    @abstractmethod
    def list_for_subject(self, subject_id: str) -> List[AssignmentModel]:
        """Returns every assignment held for the subject."""

    @abstractmethod
    def declared_variant_ids(self, experiment_id: str) -> Set[str]:
        """Returns the distinct variant ids stored for an experiment across all subjects."""
