"""Assignment and event tracking schemas."""
from pydantic import BaseModel, Field
from typing import Any, Dict, Optional

from splitlab.schemas.experiment import AssignmentContext, Variant


class AssignmentRequest(BaseModel):
    """Request a variant for a visitor."""

    visitor_id: str = Field(..., min_length=1, max_length=255)
    user_id: Optional[str] = Field(None, max_length=255)
    context: Optional[AssignmentContext] = None

    class Config:
        json_schema_extra = {
            "example": {
                "visitor_id": "v_8f14e45f",
                "context": {"device_type": "desktop", "browser": "Chrome", "country": "DE"}
            }
        }


class AssignmentResult(BaseModel):
    """Resolved treatment for a visitor."""

    variant: Variant
    is_new: bool = Field(..., description="True when this call created the assignment")


class AssignmentResponse(BaseModel):
    """Response for an assignment request. `assigned` is False when the visitor does not qualify."""

    experiment_id: str
    visitor_id: str
    assigned: bool
    variant: Optional[Variant] = None
    is_new: bool = False


class TrackEventRequest(BaseModel):
    """Record a named event against a known variant."""

    variant_id: str = Field(..., min_length=1, max_length=100)
    visitor_id: str = Field(..., min_length=1, max_length=255)
    event_type: str = Field(..., min_length=1, max_length=100)
    user_id: Optional[str] = Field(None, max_length=255)
    event_value: Optional[float] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)


class ConversionRequest(BaseModel):
    """Record a conversion for the visitor's existing assignment."""

    visitor_id: str = Field(..., min_length=1, max_length=255)
    event_value: Optional[float] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)


class EventResponse(BaseModel):
    """Response after tracking an event."""

    recorded: bool
    event_id: Optional[str] = None
    variant_id: Optional[str] = None
    message: str = Field(default="Event recorded")
