# repositories/assignment_repo.py
import logging
from typing import List, Optional, Set, Tuple

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from abengine.models.orm.assignment import AssignmentORM
from abengine.models.schemas.assignment import AssignmentModel
from abengine.repositories.base import AssignmentStore

logger = logging.getLogger(__name__)


class SqlAlchemyAssignmentStore(AssignmentStore):
    """Assignment store backed by the `assignments` table."""

    def __init__(self, session_factory: sessionmaker):
        self.session_factory = session_factory

    def _fetch(self, db: Session, subject_id: str, experiment_id: str) -> Optional[AssignmentORM]:
        return (
            db.query(AssignmentORM)
            .filter(
                AssignmentORM.subject_id == subject_id,
                AssignmentORM.experiment_id == experiment_id,
            )
            .one_or_none()
        )

    def get(self, subject_id: str, experiment_id: str) -> Optional[AssignmentModel]:
        """Retrieves a persistent assignment for a subject in a specific experiment."""
        try:
            with self.session_factory() as db:
                row = self._fetch(db, subject_id, experiment_id)
                return AssignmentModel(**row.to_dict()) if row else None
        except SQLAlchemyError as e:
            logger.error(
                "Reading assignment (%s, %s) failed, treating as unassigned: %s",
                subject_id,
                experiment_id,
                e,
            )
            return None

    def put(self, assignment: AssignmentModel) -> None:
        try:
            with self.session_factory() as db:
                db.merge(AssignmentORM(**assignment.model_dump()))
                db.commit()
        except SQLAlchemyError as e:
            logger.error(
                "Dropping assignment write (%s, %s): %s",
                assignment.subject_id,
                assignment.experiment_id,
                e,
            )

    def create_if_absent(self, assignment: AssignmentModel) -> Tuple[AssignmentModel, bool]:
        """
        Inserts a new assignment record. The composite primary key makes the
        insert the compare-and-swap: a concurrent first visit loses with an
        IntegrityError and adopts the row that won.
        """
        try:
            with self.session_factory() as db:
                db.add(AssignmentORM(**assignment.model_dump()))
                try:
                    db.commit()
                    return assignment, True
                except IntegrityError:
                    db.rollback()
                    existing = self._fetch(db, assignment.subject_id, assignment.experiment_id)
                    if existing is None:
                        raise
                    logger.info(
                        "Assignment (%s, %s) already exists, keeping variant %s",
                        assignment.subject_id,
                        assignment.experiment_id,
                        existing.variant_id,
                    )
                    return AssignmentModel(**existing.to_dict()), False
        except SQLAlchemyError as e:
            logger.error(
                "Dropping assignment write (%s, %s), subject may be re-bucketed: %s",
                assignment.subject_id,
                assignment.experiment_id,
                e,
            )
            return assignment, True

    def list_for_subject(self, subject_id: str) -> List[AssignmentModel]:
        stmt = select(AssignmentORM).where(AssignmentORM.subject_id == subject_id)
        try:
            with self.session_factory() as db:
                return [AssignmentModel(**row.to_dict()) for row in db.scalars(stmt).all()]
        except SQLAlchemyError as e:
            logger.error("Listing assignments for %s failed: %s", subject_id, e)
            return []

    def declared_variant_ids(self, experiment_id: str) -> Set[str]:
        stmt = select(AssignmentORM.variant_id).where(AssignmentORM.experiment_id == experiment_id).distinct()
        try:
            with self.session_factory() as db:
                return set(db.scalars(stmt).all())
        except SQLAlchemyError as e:
            logger.error("Reading stored variants of %s failed: %s", experiment_id, e)
            return set()
