"""
Platform stability scoring.

    rate_score       = 100 * (1 - min(1, error_rate / rate_ceiling))
    severity_score   = 100 * (1 - mean_severity_weight)
    resolution_score = 100 * (1 - min(1, mttr_hours / resolution_ceiling))
    score            = sum(w_i * score_i) / sum(w_i)   over available components

A platform with no occurrences has no score (status "insufficient_data").
"""
from dataclasses import dataclass
from typing import Optional

from errorscope.schemas.analytics import PlatformScore

INSUFFICIENT_DATA = "insufficient_data"


@dataclass
class PlatformInputs:
    """Aggregates for one platform over the scoring window."""

    platform: str
    occurrence_count: float
    window_hours: float
    mean_severity_weight: Optional[float] = None
    mean_resolution_hours: Optional[float] = None


@dataclass(frozen=True)
class ScoreWeights:
    error_rate: float = 0.5
    severity: float = 0.3
    resolution: float = 0.2


class PlatformScorer:
    """Combines per-platform aggregates into a 0-100 score."""

    def __init__(
        self,
        weights: ScoreWeights = ScoreWeights(),
        rate_ceiling_per_hour: float = 100.0,
        resolution_ceiling_hours: float = 72.0,
    ):
        self.weights = weights
        self.rate_ceiling_per_hour = rate_ceiling_per_hour
        self.resolution_ceiling_hours = resolution_ceiling_hours

    @classmethod
    def from_settings(cls, settings) -> "PlatformScorer":
        return cls(
            weights=ScoreWeights(
                error_rate=settings.platform_weight_error_rate,
                severity=settings.platform_weight_severity,
                resolution=settings.platform_weight_resolution,
            ),
            rate_ceiling_per_hour=settings.platform_rate_ceiling_per_hour,
            resolution_ceiling_hours=settings.platform_resolution_ceiling_hours,
        )

    def score(self, inputs: PlatformInputs) -> PlatformScore:
        if inputs.occurrence_count <= 0 or inputs.window_hours <= 0:
            return PlatformScore(platform=inputs.platform, status=INSUFFICIENT_DATA)

        error_rate = inputs.occurrence_count / inputs.window_hours
        rate_score = 100.0 * (1.0 - min(1.0, error_rate / self.rate_ceiling_per_hour))

        severity_score = None
        if inputs.mean_severity_weight is not None:
            severity_score = 100.0 * (1.0 - inputs.mean_severity_weight)

        resolution_score = None
        if inputs.mean_resolution_hours is not None:
            resolution_score = 100.0 * (
                1.0 - min(1.0, inputs.mean_resolution_hours / self.resolution_ceiling_hours)
            )

        components = [
            (self.weights.error_rate, rate_score),
            (self.weights.severity, severity_score),
            (self.weights.resolution, resolution_score),
        ]
        available = [(w, s) for w, s in components if s is not None and w > 0]
        total_weight = sum(w for w, _ in available)
        combined = sum(w * s for w, s in available) / total_weight if total_weight else None

        return PlatformScore(
            platform=inputs.platform,
            status="ok" if combined is not None else INSUFFICIENT_DATA,
            score=round(combined, 1) if combined is not None else None,
            occurrence_count=round(inputs.occurrence_count, 1),
            error_rate_per_hour=round(error_rate, 3),
            mean_severity_weight=(
                round(inputs.mean_severity_weight, 3)
                if inputs.mean_severity_weight is not None else None
            ),
            mean_resolution_hours=(
                round(inputs.mean_resolution_hours, 2)
                if inputs.mean_resolution_hours is not None else None
            ),
            rate_score=round(rate_score, 1),
            severity_score=round(severity_score, 1) if severity_score is not None else None,
            resolution_score=round(resolution_score, 1) if resolution_score is not None else None,
        )
