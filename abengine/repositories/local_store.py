"""
Assignment stores that live in the process or in a plain key-value mapping.

`KeyValueAssignmentStore` keeps the layout a browser uses in local storage:
one namespaced key per subject holding a JSON list of assignment records.
Any `MutableMapping[str, str]` works as the backing medium (a dict, a shelf,
a thin adapter over a cache client).
"""

import logging
import threading
from collections.abc import MutableMapping
from typing import Dict, List, Optional, Set, Tuple

from pydantic import TypeAdapter

from abengine.models.schemas.assignment import AssignmentModel
from abengine.repositories.base import AssignmentStore

logger = logging.getLogger(__name__)

STORAGE_NAMESPACE = "irac_ab_tests"

_assignment_list = TypeAdapter(List[AssignmentModel])


class StripedLocks:
    """
    A fixed pool of locks picked by key hash. The pool never grows with the
    number of subjects; unrelated keys only contend when they share a stripe.
    """

    def __init__(self, stripes: int = 64):
        self._locks = [threading.Lock() for _ in range(stripes)]

    def __len__(self) -> int:
        return len(self._locks)

    def __call__(self, *key: str) -> threading.Lock:
        return self._locks[hash(key) % len(self._locks)]


class InMemoryAssignmentStore(AssignmentStore):
    def __init__(self):
        self._assignments: Dict[Tuple[str, str], AssignmentModel] = {}
        self._locks = StripedLocks()

    def get(self, subject_id: str, experiment_id: str) -> Optional[AssignmentModel]:
        return self._assignments.get((subject_id, experiment_id))

    def put(self, assignment: AssignmentModel) -> None:
        self._assignments[(assignment.subject_id, assignment.experiment_id)] = assignment

    def create_if_absent(self, assignment: AssignmentModel) -> Tuple[AssignmentModel, bool]:
        key = (assignment.subject_id, assignment.experiment_id)
        with self._locks(*key):
            existing = self._assignments.get(key)
            if existing is not None:
                return existing, False
            self._assignments[key] = assignment
            return assignment, True

    def list_for_subject(self, subject_id: str) -> List[AssignmentModel]:
        return [a for (subject, _), a in list(self._assignments.items()) if subject == subject_id]

    def declared_variant_ids(self, experiment_id: str) -> Set[str]:
        return {a.variant_id for (_, experiment), a in list(self._assignments.items()) if experiment == experiment_id}


class KeyValueAssignmentStore(AssignmentStore):
    def __init__(self, storage: MutableMapping, namespace: str = STORAGE_NAMESPACE):
        self.storage = storage
        self.namespace = namespace
        self._locks = StripedLocks()

    def storage_key(self, subject_id: str) -> str:
        return f"{self.namespace}:{subject_id}"

    def _load(self, subject_id: str) -> List[AssignmentModel]:
        try:
            raw = self.storage.get(self.storage_key(subject_id))
            return _assignment_list.validate_json(raw) if raw else []
        except (ValueError, TypeError, OSError) as e:
            logger.error("Error loading stored assignments for %s: %s", subject_id, e)
            return []

    def _save(self, subject_id: str, assignments: List[AssignmentModel]) -> None:
        try:
            self.storage[self.storage_key(subject_id)] = _assignment_list.dump_json(assignments).decode()
        except (ValueError, TypeError, OSError) as e:
            logger.error("Error saving assignments for %s: %s", subject_id, e)

    def get(self, subject_id: str, experiment_id: str) -> Optional[AssignmentModel]:
        for assignment in self._load(subject_id):
            if assignment.experiment_id == experiment_id:
                return assignment
        return None

    def put(self, assignment: AssignmentModel) -> None:
        with self._locks(assignment.subject_id):
            assignments = [
                a for a in self._load(assignment.subject_id) if a.experiment_id != assignment.experiment_id
            ]
            assignments.append(assignment)
            self._save(assignment.subject_id, assignments)

    def create_if_absent(self, assignment: AssignmentModel) -> Tuple[AssignmentModel, bool]:
        # The whole subject record is rewritten, so serialize per subject
        with self._locks(assignment.subject_id):
            assignments = self._load(assignment.subject_id)
            for existing in assignments:
                if existing.experiment_id == assignment.experiment_id:
                    return existing, False
            assignments.append(assignment)
            self._save(assignment.subject_id, assignments)
            return assignment, True

    def list_for_subject(self, subject_id: str) -> List[AssignmentModel]:
        return self._load(subject_id)

    def declared_variant_ids(self, experiment_id: str) -> Set[str]:
        prefix = f"{self.namespace}:"
        try:
            subject_ids = [key[len(prefix):] for key in list(self.storage) if key.startswith(prefix)]
        except (RuntimeError, OSError) as e:
            logger.error("Error scanning stored assignments for %s: %s", experiment_id, e)
            return set()
        return {
            a.variant_id
            for subject_id in subject_ids
            for a in self._load(subject_id)
            if a.experiment_id == experiment_id
        }
