from sqlalchemy import BigInteger, Column, PrimaryKeyConstraint, String

from .base import Base


class AssignmentORM(Base):
    __tablename__ = "assignments"

    # Partition key of the store
    subject_id = Column(String, nullable=False, index=True)
    # No foreign keys: experiments live in the registry, not in the database
    experiment_id = Column(String, nullable=False, index=True)
    variant_id = Column(String, nullable=False)

    assigned_at_epoch_millis = Column(BigInteger, nullable=False)
    subject_session_id = Column(String, nullable=False)

    __table_args__ = (
        PrimaryKeyConstraint("subject_id", "experiment_id", name="assignment_pk"),
    )
