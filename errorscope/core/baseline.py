"""
Rolling-baseline spike detection.

Senior Engineering Note:
- Z-score style threshold (mean + k * std) over a fixed-size window of
  bucketed counts, same approach as the metric anomaly detector before it
- The just-closed bucket is compared against the window BEFORE it is
  appended, so a spike cannot inflate its own threshold
- Three guards against noise: minimum history, minimum absolute delta
  (flat history has std 0) and a per-key cooldown
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Optional

from errorscope.core import stats

logger = logging.getLogger(__name__)


@dataclass
class BaselineWindow:
    """In-memory view of one BaselineState row."""

    counts: list[float] = field(default_factory=list)
    mean: float = 0.0
    std: float = 0.0
    last_bucket_end: Optional[datetime] = None
    last_alert_at: Optional[datetime] = None


@dataclass
class SpikeAlert:
    """Result of observing a bucket that breached its threshold."""

    bucket_start: datetime
    bucket_end: datetime
    observed_count: float
    expected_mean: float
    std_dev: float
    threshold: float
    deviation_sigma: Optional[float]
    level: str


class BaselineMonitor:
    """
    Maintains rolling statistics per key and raises spike alerts.

    Pure: operates on BaselineWindow values; persistence lives in
    BaselineService.
    """

    def __init__(
        self,
        std_multiplier: float = 3.0,
        cooldown: timedelta = timedelta(hours=1),
        min_samples: int = 6,
        min_absolute_delta: float = 5.0,
        window_size: int = 168,
    ):
        self.std_multiplier = std_multiplier
        self.cooldown = cooldown
        self.min_samples = min_samples
        self.min_absolute_delta = min_absolute_delta
        self.window_size = window_size

    @classmethod
    def from_settings(cls, settings) -> "BaselineMonitor":
        return cls(
            std_multiplier=settings.baseline_std_multiplier,
            cooldown=timedelta(minutes=settings.baseline_cooldown_minutes),
            min_samples=settings.baseline_min_samples,
            min_absolute_delta=settings.baseline_min_absolute_delta,
            window_size=settings.baseline_window_buckets,
        )

    def threshold(self, window: BaselineWindow) -> float:
        return window.mean + self.std_multiplier * window.std

    def in_cooldown(self, window: BaselineWindow, at: datetime) -> bool:
        if window.last_alert_at is None:
            return False
        return at - window.last_alert_at < self.cooldown

    def seed(self, window: BaselineWindow, counts: list[float], last_bucket_end: datetime) -> BaselineWindow:
        """Cold start: load trailing history without evaluating it."""
        window.counts = list(counts)[-self.window_size:]
        window.mean, window.std = stats.mean_and_std(window.counts)
        window.last_bucket_end = last_bucket_end
        return window

    def observe(
        self,
        window: BaselineWindow,
        bucket_start: datetime,
        bucket_end: datetime,
        count: float,
    ) -> Optional[SpikeAlert]:
        """
        Evaluate a closed bucket, then fold it into the window.

        Statistics are always updated, whether or not an alert is raised or
        suppressed by the cooldown.

        Returns:
            SpikeAlert if the bucket breached its threshold, else None
        """
        alert = None
        if len(window.counts) >= self.min_samples:
            threshold = self.threshold(window)
            delta = count - window.mean
            if count > threshold and delta >= self.min_absolute_delta:
                if self.in_cooldown(window, bucket_end):
                    logger.debug(
                        f"Spike at {bucket_end} suppressed by cooldown "
                        f"(last alert {window.last_alert_at})"
                    )
                else:
                    sigma = delta / window.std if window.std > 0 else None
                    multiplier = count / window.mean if window.mean > 0 else float("inf")
                    alert = SpikeAlert(
                        bucket_start=bucket_start,
                        bucket_end=bucket_end,
                        observed_count=count,
                        expected_mean=round(window.mean, 3),
                        std_dev=round(window.std, 3),
                        threshold=round(threshold, 3),
                        deviation_sigma=round(sigma, 2) if sigma is not None else None,
                        level=_alert_level(multiplier),
                    )
                    window.last_alert_at = bucket_end

        window.counts.append(count)
        if len(window.counts) > self.window_size:
            del window.counts[: len(window.counts) - self.window_size]
        window.mean, window.std = stats.mean_and_std(window.counts)
        window.last_bucket_end = bucket_end
        return alert


def _alert_level(multiplier: float) -> str:
    # A breach below 2x mean still cleared the k-sigma threshold; report it as elevated
    level = stats.spike_severity(multiplier)
    return "elevated" if level == "normal" else level
