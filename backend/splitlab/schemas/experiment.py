"""Experiment configuration schemas."""
from pydantic import BaseModel, Field, field_validator
from typing import Any, Dict, List, Literal, Optional
from datetime import datetime

from splitlab.config import get_settings

ExperimentType = Literal["ab", "multivariate", "bandit"]
ExperimentStatus = Literal["draft", "running", "paused", "completed", "archived"]
DeviceType = Literal["desktop", "mobile", "tablet"]
RuleOperator = Literal[
    "eq", "neq", "gt", "lt", "gte", "lte", "contains", "not_contains", "in", "not_in"
]


class Variant(BaseModel):
    """One treatment arm of an experiment, control included."""

    id: Optional[str] = Field(None, min_length=1, max_length=100, description="Stable variant id (generated when omitted)")
    name: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = Field(None, max_length=500)
    weight: int = Field(..., ge=0, le=100, description="Share of experiment traffic, weights sum to 100")
    is_control: bool = False
    config: Dict[str, Any] = Field(default_factory=dict, description="Opaque payload for the caller")


class CustomRule(BaseModel):
    """Comparison of one context attribute against a literal value."""

    field: str = Field(..., min_length=1)
    operator: RuleOperator
    value: Any = None


class TargetingRules(BaseModel):
    """Audience filters. Every non-empty category must match."""

    device_types: List[DeviceType] = Field(default_factory=list)
    browsers: List[str] = Field(default_factory=list)
    countries: List[str] = Field(default_factory=list)
    url_patterns: List[str] = Field(default_factory=list)
    custom_rules: List[CustomRule] = Field(default_factory=list)


class Metrics(BaseModel):
    """Success metric and decision thresholds."""

    primary_metric: str = "conversion"
    secondary_metrics: List[str] = Field(default_factory=list)
    guardrail_metrics: List[str] = Field(default_factory=list)
    minimum_sample_size: int = Field(
        default_factory=lambda: get_settings().default_minimum_sample_size, ge=0
    )
    minimum_effect_size: float = Field(
        default_factory=lambda: get_settings().default_minimum_effect_size, ge=0
    )
    confidence_level: float = Field(
        default_factory=lambda: get_settings().default_confidence_level, gt=0, lt=1
    )


class AssignmentContext(BaseModel):
    """Request attributes captured at assignment time.

    Unknown attributes are kept so custom targeting rules can refer to them.
    """

    url: Optional[str] = None
    device_type: Optional[DeviceType] = None
    browser: Optional[str] = None
    country: Optional[str] = None
    language: Optional[str] = None
    user_agent: Optional[str] = None
    referrer: Optional[str] = None

    class Config:
        extra = "allow"
        json_schema_extra = {
            "example": {
                "url": "https://example.com/pricing",
                "device_type": "mobile",
                "browser": "Mobile Safari",
                "country": "US",
                "plan": "pro"
            }
        }


class ExperimentCreate(BaseModel):
    """Request to create an experiment (stored as draft)."""

    name: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = Field(None, max_length=1000)
    hypothesis: Optional[str] = Field(None, max_length=1000)
    type: ExperimentType = "ab"
    variants: List[Variant]
    targeting: TargetingRules = Field(default_factory=TargetingRules)
    metrics: Metrics = Field(default_factory=Metrics)
    traffic_allocation: int = Field(100, ge=0, le=100)

    class Config:
        json_schema_extra = {
            "example": {
                "name": "Checkout button copy",
                "type": "ab",
                "variants": [
                    {"id": "control", "name": "Buy now", "weight": 50, "is_control": True},
                    {"id": "urgent", "name": "Get it today", "weight": 50}
                ],
                "targeting": {"device_types": ["mobile"], "url_patterns": ["/checkout*"]},
                "metrics": {"confidence_level": 0.95, "minimum_sample_size": 1000},
                "traffic_allocation": 50
            }
        }


class ExperimentUpdate(BaseModel):
    """Partial update. Only fields that are set are applied."""

    name: Optional[str] = Field(None, min_length=1, max_length=200)
    description: Optional[str] = Field(None, max_length=1000)
    hypothesis: Optional[str] = Field(None, max_length=1000)
    type: Optional[ExperimentType] = None
    variants: Optional[List[Variant]] = None
    targeting: Optional[TargetingRules] = None
    metrics: Optional[Metrics] = None
    traffic_allocation: Optional[int] = Field(None, ge=0, le=100)


class ExperimentRead(BaseModel):
    """Experiment as stored."""

    id: str
    name: str
    description: Optional[str] = None
    hypothesis: Optional[str] = None
    type: ExperimentType
    status: ExperimentStatus
    variants: List[Variant]
    targeting: TargetingRules
    metrics: Metrics
    traffic_allocation: int
    started_at: Optional[datetime] = None
    ended_at: Optional[datetime] = None
    winner_variant_id: Optional[str] = None
    created_by: Optional[str] = None
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True

    @field_validator("targeting", "metrics", mode="before")
    @classmethod
    def empty_block_to_defaults(cls, v):
        return v or {}

    @property
    def control(self) -> Optional[Variant]:
        return next((v for v in self.variants if v.is_control), None)

    def get_variant(self, variant_id: str) -> Optional[Variant]:
        return next((v for v in self.variants if v.id == variant_id), None)


class ExperimentList(BaseModel):
    """Page of experiments, newest first."""

    experiments: List[ExperimentRead]
    total: int
    limit: int
    offset: int
