"""
Unit tests for the BaselineMonitor.

Tests cover:
- Spike above mean + k * std raises an alert
- Cooldown suppresses repeat alerts but statistics keep updating
- Minimum history and minimum absolute delta guards
- Window eviction and cold-start seeding
"""
from datetime import datetime, timedelta

import pytest

from errorscope.core.baseline import BaselineMonitor, BaselineWindow

START = datetime(2024, 3, 1, 0, 0, 0)
HOUR = timedelta(hours=1)


@pytest.fixture
def monitor():
    return BaselineMonitor(
        std_multiplier=3.0,
        cooldown=timedelta(hours=3),
        min_samples=6,
        min_absolute_delta=5.0,
        window_size=24,
    )


def feed(monitor, window, counts, start=START):
    """Observe consecutive hourly buckets; returns (alerts, next bucket start)."""
    alerts = []
    bucket_start = start
    for count in counts:
        alert = monitor.observe(window, bucket_start, bucket_start + HOUR, count)
        if alert is not None:
            alerts.append(alert)
        bucket_start += HOUR
    return alerts, bucket_start


class TestBaselineMonitor:
    """Test the spike detection scenario end to end."""

    def test_spike_cooldown_and_second_spike(self, monitor):
        window = BaselineWindow()

        alerts, cursor = feed(monitor, window, [10] * 24)
        assert alerts == []
        assert window.mean == 10.0
        assert window.std == 0.0

        alerts, cursor = feed(monitor, window, [100], cursor)
        assert len(alerts) == 1
        spike = alerts[0]
        assert spike.observed_count == 100
        assert spike.expected_mean == 10.0
        assert spike.threshold == 10.0
        assert spike.deviation_sigma is None
        assert spike.level == "critical"
        assert spike.bucket_end == cursor

        # Still high one bucket later: inside the cooldown
        alerts, cursor = feed(monitor, window, [100], cursor)
        assert alerts == []
        assert window.counts[-1] == 100

        alerts, cursor = feed(monitor, window, [10] * 5, cursor)
        assert alerts == []

        alerts, cursor = feed(monitor, window, [500], cursor)
        assert len(alerts) == 1
        assert alerts[0].deviation_sigma > 3.0

    def test_flat_history_needs_minimum_delta(self, monitor):
        window = BaselineWindow()
        _, cursor = feed(monitor, window, [10] * 12)

        small, cursor = feed(monitor, window, [14], cursor)
        assert small == []

        window = BaselineWindow()
        _, cursor = feed(monitor, window, [10] * 12)
        large, _ = feed(monitor, window, [16], cursor)
        assert len(large) == 1
        assert large[0].level == "elevated"

    def test_not_enough_history(self, monitor):
        window = BaselineWindow()

        alerts, _ = feed(monitor, window, [1, 1, 1, 500])

        assert alerts == []
        assert len(window.counts) == 4

    def test_window_evicts_oldest(self, monitor):
        window = BaselineWindow()

        feed(monitor, window, list(range(30)))

        assert len(window.counts) == 24
        assert window.counts[0] == 6
        assert window.last_bucket_end == START + 30 * HOUR

    def test_seed_loads_history_without_alerting(self, monitor):
        window = monitor.seed(BaselineWindow(), [5.0] * 30 + [400.0], START)

        assert len(window.counts) == 24
        assert window.last_alert_at is None
        assert window.last_bucket_end == START
        assert window.mean == pytest.approx((5.0 * 23 + 400.0) / 24)

    def test_cooldown_boundary(self, monitor):
        window = BaselineWindow(counts=[10.0] * 24, mean=10.0, std=0.0, last_alert_at=START)

        assert monitor.in_cooldown(window, START + timedelta(hours=2, minutes=59))
        assert not monitor.in_cooldown(window, START + timedelta(hours=3))
