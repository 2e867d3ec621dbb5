"""
Unit tests for severity classification, platform detection and the
statistics helpers.
"""
import pytest

from errorscope.core import stats
from errorscope.core.platform_detector import detect_platform
from errorscope.core.severity import SeverityClassifier, default_priority, severity_weight
from errorscope.models.error_group import Severity


class TestSeverityClassifier:
    def test_builtin_lists(self):
        classifier = SeverityClassifier()

        assert classifier.classify("MemoryError") == Severity.CRITICAL
        assert classifier.classify("KeyError") == Severity.HIGH
        assert classifier.classify("TimeoutError") == Severity.MEDIUM
        assert classifier.classify("SomethingOdd") == Severity.LOW

    def test_qualified_names_match_short_name(self):
        classifier = SeverityClassifier()

        assert classifier.classify("requests.exceptions.ReadTimeout") == Severity.MEDIUM
        assert classifier.classify("ActiveRecord::ConnectionError") == Severity.CRITICAL

    def test_custom_rules_win(self):
        classifier = SeverityClassifier({"KeyError": "low", "PaymentDeclined": "critical"})

        assert classifier.classify("KeyError") == Severity.LOW
        assert classifier.classify("PaymentDeclined") == Severity.CRITICAL

    def test_weights_and_priorities(self):
        assert severity_weight("critical") == 1.0
        assert severity_weight(Severity.LOW) == 0.25
        assert default_priority(Severity.CRITICAL) == 3
        assert default_priority("low") == 0


class TestPlatformDetection:
    @pytest.mark.parametrize(
        "user_agent, platform",
        [
            ("Mozilla/5.0 (iPhone; CPU iPhone OS 17_0 like Mac OS X)", "iOS"),
            ("Mozilla/5.0 (Linux; Android 14; Pixel 8)", "Android"),
            ("Expo/2.30 CFNetwork iOS", "iOS"),
            ("Expo/2.30", "Mobile"),
            ("Mozilla/5.0 (Windows NT 10.0) Chrome/120.0", "Web"),
            ("curl/8.4.0", "API"),
            (None, "API"),
            ("   ", "API"),
        ],
    )
    def test_detect(self, user_agent, platform):
        assert detect_platform(user_agent) == platform


class TestStats:
    def test_change_percentage(self):
        assert stats.change_percentage(120, 50) == 140.0
        assert stats.change_percentage(45, 50) == -10.0
        assert stats.change_percentage(10, 0) is None

    def test_trend_direction(self):
        assert stats.trend_direction(None) == "new"
        assert stats.trend_direction(140.0) == "increasing_significantly"
        assert stats.trend_direction(10.0) == "increasing"
        assert stats.trend_direction(0.0) == "stable"
        assert stats.trend_direction(-10.0) == "decreasing"
        assert stats.trend_direction(-50.0) == "decreasing_significantly"

    def test_mean_and_std(self):
        assert stats.mean_and_std([]) == (0.0, 0.0)
        assert stats.mean_and_std([4.0]) == (4.0, 0.0)
        mean, std = stats.mean_and_std([2, 4, 4, 4, 5, 5, 7, 9])
        assert mean == 5.0
        assert std == 2.0

    def test_labels(self):
        assert stats.correlation_strength(-0.9) == "strong"
        assert stats.correlation_strength(0.6) == "moderate"
        assert stats.correlation_strength(0.1) == "weak"
        assert stats.spike_severity(1.5) == "normal"
        assert stats.spike_severity(3) == "elevated"
        assert stats.spike_severity(7) == "high"
        assert stats.spike_severity(20) == "critical"
        assert stats.burst_intensity(5) == "low"
        assert stats.burst_intensity(10) == "medium"
        assert stats.burst_intensity(20) == "high"
