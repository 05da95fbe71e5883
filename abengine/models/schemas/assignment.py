from datetime import datetime, timezone
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

CONTROL_VARIANT_ID = "control"
CONTROL_VARIANT_NAME = "Control"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class AssignmentModel(BaseModel):
    """Data model for a persistent subject assignment record."""

    model_config = ConfigDict(from_attributes=True, frozen=True)

    experiment_id: str
    subject_id: str
    variant_id: str = Field(..., description="The id of the variant the subject was assigned.")
    assigned_at_epoch_millis: int
    subject_session_id: str


class RequestContext(BaseModel):
    """Who is asking, from where and when."""

    subject_id: str
    path: Optional[str] = None
    now: datetime = Field(default_factory=utc_now)
    # Recorded on the assignment; falls back to the subject id
    session_id: Optional[str] = None

    @field_validator("now")
    @classmethod
    def _assume_utc(cls, value: datetime) -> datetime:
        return value if value.tzinfo is not None else value.replace(tzinfo=timezone.utc)

    @property
    def subject_session_id(self) -> str:
        return self.session_id or self.subject_id


class AssignmentResultModel(BaseModel):
    """What a subject sees for one experiment."""

    experiment_id: str
    variant_id: str
    variant_name: str
    is_in_test: bool
    config: Dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def control(cls, experiment_id: str) -> "AssignmentResultModel":
        return cls(
            experiment_id=experiment_id,
            variant_id=CONTROL_VARIANT_ID,
            variant_name=CONTROL_VARIANT_NAME,
            is_in_test=False,
        )
