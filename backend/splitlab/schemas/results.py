"""Experiment results schemas."""
from pydantic import BaseModel, Field
from typing import Dict, List, Optional, Tuple


class VariantResults(BaseModel):
    """Per-variant outcome, recomputed on every request."""

    variant_id: str
    variant_name: str
    is_control: bool
    sample_size: int
    conversions: int
    conversion_rate: float
    conversion_rate_change: float = Field(0.0, description="Relative change vs control, in percent")
    confidence_interval: Tuple[float, float] = (0.0, 0.0)
    significance: float = Field(0.0, description="1 - two-tailed p-value vs control")
    events: Dict[str, int] = Field(default_factory=dict)
    average_value: Optional[float] = None


class ExperimentResults(BaseModel):
    """Statistical summary of an experiment."""

    experiment_id: str
    variants: List[VariantResults]
    winner: Optional[str] = None
    statistical_significance: float
    confidence_level: float
    confidence_interval: Tuple[float, float]
    sample_size: int
    duration_days: int
    recommendation: str
