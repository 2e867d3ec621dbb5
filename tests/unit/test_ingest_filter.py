"""
Unit tests for the ignore list and occurrence sampling.
"""
from errorscope.core.ingest_filter import IgnoreFilter, OccurrenceSampler


class TestIgnoreFilter:
    def test_exact_type(self):
        ignore = IgnoreFilter(ignored_types=["KeyboardInterrupt"])

        assert ignore.is_ignored("KeyboardInterrupt")
        assert not ignore.is_ignored("KeyError")

    def test_pattern(self):
        ignore = IgnoreFilter(ignored_patterns=[r"^ActionController::RoutingError$", r"Timeout"])

        assert ignore.is_ignored("ActionController::RoutingError")
        assert ignore.is_ignored("requests.exceptions.ReadTimeout")
        assert not ignore.is_ignored("ValueError")

    def test_empty_filter_ignores_nothing(self):
        assert not IgnoreFilter().is_ignored("ValueError")


class TestOccurrenceSampler:
    """Sampling thins rows but never the first or critical occurrence."""

    def test_full_rate_keeps_everything(self):
        sampler = OccurrenceSampler(1.0, rng=lambda: 0.99)

        decision = sampler.decide(is_first=False, is_critical=False)

        assert decision.persist
        assert decision.sample_weight == 1.0

    def test_first_and_critical_always_kept(self):
        sampler = OccurrenceSampler(0.1, rng=lambda: 0.99)

        assert sampler.decide(is_first=True, is_critical=False).persist
        assert sampler.decide(is_first=False, is_critical=True).persist
        assert sampler.decide(is_first=True, is_critical=False).sample_weight == 1.0

    def test_sampled_rows_carry_inverse_weight(self):
        kept = OccurrenceSampler(0.25, rng=lambda: 0.1).decide(is_first=False, is_critical=False)
        dropped = OccurrenceSampler(0.25, rng=lambda: 0.9).decide(is_first=False, is_critical=False)

        assert kept.persist
        assert kept.sample_weight == 4.0
        assert not dropped.persist
