from pydantic import BaseModel, Field
from typing import Any, Dict, Optional
from datetime import datetime

from abengine.models.schemas.assignment import utc_now

ASSIGNMENT_CREATED = "assignment_created"
ASSIGNMENT_CONVERSION = "assignment_conversion"


class AnalyticsEvent(BaseModel):
    """A named event handed to the analytics sink."""

    name: str = Field(..., description="e.g., 'assignment_created', 'assignment_conversion'")
    subject_id: str
    timestamp: datetime = Field(default_factory=utc_now)
    properties: Dict[str, Any] = Field(default_factory=dict)


#  conversion posting flow


class ConversionCreateModel(BaseModel):
    """Schema for recording a conversion (API Input)."""

    subject_id: str
    conversion_type: str = Field(..., description="e.g., 'click', 'purchase', 'signup'")
    value: Optional[float] = None
    path: Optional[str] = None
    session_id: Optional[str] = None
    # The server stamps the time when missing.
    timestamp: Optional[datetime] = None


class ConversionResponseModel(BaseModel):
    experiment_id: str
    recorded: bool
    variant_id: Optional[str] = None
    event: Optional[AnalyticsEvent] = None
