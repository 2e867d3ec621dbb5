"""
Report models produced by the analytics components.

Senior Engineering Note:
- Read-only snapshots; nothing here maps to a table except the
  ORM-backed responses at the bottom
- Floats are rounded where they are shown to people
"""
from datetime import datetime
from typing import Literal, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


# ---------------------------------------------------------------------------
# Correlation
# ---------------------------------------------------------------------------


class TemporalCorrelation(BaseModel):
    """Two groups that occur in the same time slots more often than chance."""

    group_a: UUID
    group_b: UUID
    error_type_a: str
    error_type_b: str
    co_occurrences: int = Field(..., description="Slots in which both groups occurred")
    expected_co_occurrences: float
    lift: float
    correlation: float = Field(..., description="Pearson correlation of per-slot counts")
    strength: str


class ReleaseStats(BaseModel):
    """Per-release volume, compared against the release before it."""

    release: str
    occurrence_count: float
    critical_count: float
    critical_ratio: float
    distinct_error_types: int
    first_seen: datetime
    last_seen: datetime
    previous_release: Optional[str] = None
    change_percentage: Optional[float] = None
    trend: Optional[str] = None
    problematic: bool = False


class PeriodStats(BaseModel):
    start: datetime
    end: datetime
    occurrence_count: float
    critical_count: float
    severity_mix: dict[str, float] = Field(default_factory=dict)


class PeriodComparison(BaseModel):
    """Current range versus a previous range."""

    current: PeriodStats
    previous: PeriodStats
    change_percentage: Optional[float] = None
    critical_change_percentage: Optional[float] = None
    trend: str


class UserCorrelation(BaseModel):
    """A user who hit several distinct error types in the window."""

    user_id: str
    distinct_error_types: int
    occurrence_count: float
    error_types: list[str]
    group_ids: list[UUID]


class BurstWindow(BaseModel):
    """A run of one group's occurrences with no gap longer than the burst gap."""

    group_id: UUID
    error_type: str
    start: datetime
    end: datetime
    duration_seconds: float
    occurrence_count: float
    intensity: str = Field(..., description="low, medium or high")


class CyclicalPattern(BaseModel):
    """Hour-of-day and weekday rhythm of one group."""

    group_id: UUID
    error_type: str
    pattern_type: str = Field(..., description="business_hours, night, weekend or uniform")
    peak_hours: list[int] = Field(..., description="UTC hours above twice the hourly mean")
    hourly_distribution: list[float] = Field(..., description="Weighted count per UTC hour 0-23")
    weekday_distribution: list[float] = Field(..., description="Weighted count per weekday, Monday first")
    pattern_strength: float = Field(..., ge=0.0, le=1.0)
    occurrence_count: float


class CorrelationReport(BaseModel):
    application: str
    window_start: datetime
    window_end: datetime
    temporal: list[TemporalCorrelation] = Field(default_factory=list)
    release_comparison: list[ReleaseStats] = Field(default_factory=list)
    period_comparison: Optional[PeriodComparison] = None
    user_correlation: list[UserCorrelation] = Field(default_factory=list)
    bursts: list[BurstWindow] = Field(default_factory=list)
    cyclical_patterns: list[CyclicalPattern] = Field(default_factory=list)
    failed: list[str] = Field(
        default_factory=list,
        description="Analyses that failed this run; their section is stale or empty",
    )
    stale: list[str] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Cascades
# ---------------------------------------------------------------------------


class CascadeCandidate(BaseModel):
    """Statistics for one ordered pair evaluated by the cascade detector."""

    parent_group_id: UUID
    child_group_id: UUID
    sample_count: int
    explained_fraction: float
    chance_coverage: float
    confidence: float
    lag_mean_seconds: float
    lag_variance_seconds: float
    probability: float
    parent_occurrences: int
    child_occurrences: int
    accepted: bool


class CascadeLinkResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    application_id: UUID
    parent_group_id: UUID
    child_group_id: UUID
    lag_mean_seconds: float
    lag_variance_seconds: float
    confidence: float
    probability: float
    sample_count: int
    parent_occurrences: int
    child_occurrences: int
    detected_at: datetime


class CascadeChainNode(BaseModel):
    group_id: UUID
    depth: int
    via_group_id: Optional[UUID] = None
    confidence: float


class CascadeChain(BaseModel):
    """Ancestors and descendants of a group in the cascade graph."""

    group_id: UUID
    ancestors: list[CascadeChainNode] = Field(default_factory=list)
    descendants: list[CascadeChainNode] = Field(default_factory=list)
    truncated: bool = Field(
        default=False,
        description="A cycle or the depth cap ended at least one branch",
    )


class CascadeRunSummary(BaseModel):
    application: str
    groups_evaluated: int
    pairs_evaluated: int
    links_stored: int
    links_removed: int


# ---------------------------------------------------------------------------
# Baseline
# ---------------------------------------------------------------------------


class BaselineAlertResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    application_id: UUID
    scope_key: str
    group_id: Optional[UUID] = None
    granularity: str
    bucket_start: datetime
    bucket_end: datetime
    observed_count: float
    expected_mean: float
    std_dev: float
    threshold: float
    deviation_sigma: Optional[float] = None
    level: str
    created_at: datetime


class BaselineRunSummary(BaseModel):
    application: str
    keys_evaluated: int
    buckets_observed: int
    alerts_raised: int
    conflicts: int = 0


# ---------------------------------------------------------------------------
# Platform scores
# ---------------------------------------------------------------------------


class PlatformScore(BaseModel):
    """Composite 0-100 stability score. None when there is no data."""

    platform: str
    status: Literal["ok", "insufficient_data"]
    score: Optional[float] = None
    occurrence_count: float = 0.0
    error_rate_per_hour: Optional[float] = None
    mean_severity_weight: Optional[float] = None
    mean_resolution_hours: Optional[float] = None
    rate_score: Optional[float] = None
    severity_score: Optional[float] = None
    resolution_score: Optional[float] = None
