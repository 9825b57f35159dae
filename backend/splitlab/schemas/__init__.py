"""Pydantic schemas for request/response validation."""
from splitlab.schemas.experiment import (
    AssignmentContext,
    CustomRule,
    ExperimentCreate,
    ExperimentList,
    ExperimentRead,
    ExperimentUpdate,
    Metrics,
    TargetingRules,
    Variant,
)
from splitlab.schemas.assignment import (
    AssignmentRequest,
    AssignmentResponse,
    AssignmentResult,
    ConversionRequest,
    EventResponse,
    TrackEventRequest,
)
from splitlab.schemas.results import ExperimentResults, VariantResults

__all__ = [
    "AssignmentContext",
    "CustomRule",
    "ExperimentCreate",
    "ExperimentList",
    "ExperimentRead",
    "ExperimentUpdate",
    "Metrics",
    "TargetingRules",
    "Variant",
    "AssignmentRequest",
    "AssignmentResponse",
    "AssignmentResult",
    "ConversionRequest",
    "EventResponse",
    "TrackEventRequest",
    "ExperimentResults",
    "VariantResults",
]
