"""
Unit tests for platform stability scoring.
"""
import pytest

from errorscope.core.platform_scorer import PlatformInputs, PlatformScorer, ScoreWeights


@pytest.fixture
def scorer():
    return PlatformScorer(
        weights=ScoreWeights(error_rate=0.5, severity=0.3, resolution=0.2),
        rate_ceiling_per_hour=100.0,
        resolution_ceiling_hours=72.0,
    )


class TestPlatformScorer:
    def test_all_components(self, scorer):
        score = scorer.score(
            PlatformInputs(
                platform="iOS",
                occurrence_count=1680,
                window_hours=168,
                mean_severity_weight=0.5,
                mean_resolution_hours=36,
            )
        )

        # rate 10/h -> 90, severity 50, resolution 50
        assert score.status == "ok"
        assert score.error_rate_per_hour == 10.0
        assert score.rate_score == 90.0
        assert score.severity_score == 50.0
        assert score.resolution_score == 50.0
        assert score.score == 70.0

    def test_missing_resolution_renormalises_weights(self, scorer):
        score = scorer.score(
            PlatformInputs(platform="Web", occurrence_count=1680, window_hours=168, mean_severity_weight=0.5)
        )

        # (0.5 * 90 + 0.3 * 50) / 0.8
        assert score.resolution_score is None
        assert score.score == 75.0

    def test_rate_clamped_at_ceiling(self, scorer):
        score = scorer.score(
            PlatformInputs(platform="API", occurrence_count=100_000, window_hours=1, mean_severity_weight=1.0)
        )

        assert score.rate_score == 0.0
        assert score.score == 0.0

    def test_zero_occurrences_is_insufficient_data(self, scorer):
        score = scorer.score(PlatformInputs(platform="Android", occurrence_count=0, window_hours=168))

        assert score.status == "insufficient_data"
        assert score.score is None
