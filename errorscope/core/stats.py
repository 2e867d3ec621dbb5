"""
Small statistics helpers and the qualitative labels shown next to numbers.

Senior Engineering Note:
- Pure functions, no I/O
- Degenerate inputs (empty, constant series) return neutral values, never raise
"""
import statistics
from typing import Optional, Sequence


def mean_and_std(values: Sequence[float]) -> tuple[float, float]:
    """Mean and population standard deviation. (0.0, 0.0) for an empty series."""
    if not values:
        return 0.0, 0.0
    mean = statistics.fmean(values)
    if len(values) < 2:
        return mean, 0.0
    return mean, statistics.pstdev(values, mu=mean)


def change_percentage(current: float, previous: float) -> Optional[float]:
    """Percent change rounded to 1 decimal; None when there is no previous volume."""
    if previous == 0:
        return None
    return round((current - previous) / previous * 100, 1)


def correlation_strength(correlation: float) -> str:
    abs_corr = abs(correlation)
    if abs_corr >= 0.8:
        return "strong"
    elif abs_corr >= 0.5:
        return "moderate"
    return "weak"


def trend_direction(change_pct: Optional[float]) -> str:
    if change_pct is None:
        return "new"
    if change_pct > 20:
        return "increasing_significantly"
    elif change_pct > 5:
        return "increasing"
    elif change_pct < -20:
        return "decreasing_significantly"
    elif change_pct < -5:
        return "decreasing"
    return "stable"


def spike_severity(multiplier: float) -> str:
    """Label a count expressed as a multiple of its baseline mean."""
    if multiplier < 2:
        return "normal"
    elif multiplier < 5:
        return "elevated"
    elif multiplier < 10:
        return "high"
    return "critical"


def burst_intensity(count: float) -> str:
    if count >= 20:
        return "high"
    elif count >= 10:
        return "medium"
    return "low"
