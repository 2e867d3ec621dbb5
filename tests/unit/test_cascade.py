"""
Unit tests for cascade detection and cascade graph traversal.

Tests cover:
- A dependent pair is accepted with the observed lag statistics
- Independent groups produce no link
- Chance correction for a parent that fires constantly
- Minimum sample and lag window bounds
- Traversal termination on cycles, diamonds and the depth cap
"""
from datetime import datetime, timedelta
from types import SimpleNamespace
from uuid import uuid4

import pytest

from errorscope.core.cascade import CascadeDetector, CascadeGraph

START = datetime(2024, 3, 1, 0, 0, 0)


@pytest.fixture
def detector():
    return CascadeDetector(
        lag_min_seconds=0,
        lag_max_seconds=300,
        min_confidence=0.5,
        min_samples=5,
        confidence_prior=2.0,
    )


def hourly(offset_seconds=lambda k: 0, hours=24):
    return [START + timedelta(hours=k, seconds=offset_seconds(k)) for k in range(hours)]


class TestCascadeDetector:
    """Test pairwise cascade inference."""

    def test_dependent_pair_is_accepted(self, detector):
        database, checkout, independent = uuid4(), uuid4(), uuid4()
        timelines = {
            database: hourly(),
            checkout: hourly(lambda k: 30),
            independent: hourly(lambda k: 1800 + (k * 37 % 600)),
        }

        candidates = detector.detect(timelines)

        assert [(c.parent_group_id, c.child_group_id) for c in candidates] == [(database, checkout)]
        link = candidates[0]
        assert link.accepted
        assert link.sample_count == 24
        assert link.lag_mean_seconds == 30.0
        assert link.lag_variance_seconds == 0.0
        assert link.probability == 1.0
        assert link.confidence == pytest.approx(24 / 26, abs=1e-3)

    def test_constant_parent_explains_nothing(self, detector):
        noisy, child = uuid4(), uuid4()
        timelines = {
            noisy: [START + timedelta(seconds=60 * i) for i in range(60)],
            child: [START + timedelta(seconds=347 * i + 10) for i in range(10)],
        }

        candidates = {(c.parent_group_id, c.child_group_id): c for c in detector.detect(timelines)}

        pair = candidates[(noisy, child)]
        assert pair.explained_fraction == 1.0
        assert pair.chance_coverage == 1.0
        assert pair.confidence == 0.0
        assert not pair.accepted

    def test_too_few_samples_rejected(self, detector):
        parent, child = uuid4(), uuid4()
        timelines = {
            parent: hourly(hours=3),
            child: hourly(lambda k: 20, hours=3),
        }

        candidates = detector.detect(timelines)

        pair = next(c for c in candidates if c.parent_group_id == parent)
        assert pair.sample_count == 3
        assert not pair.accepted

    def test_lag_below_minimum_is_not_matched(self):
        detector = CascadeDetector(lag_min_seconds=10, lag_max_seconds=300)
        parent, child = uuid4(), uuid4()
        timelines = {
            parent: hourly(),
            child: hourly(lambda k: 5),
        }

        pairs = {(c.parent_group_id, c.child_group_id) for c in detector.detect(timelines)}

        assert (parent, child) not in pairs

    def test_degenerate_inputs(self, detector):
        group = uuid4()

        assert detector.detect({}) == []
        assert detector.detect({group: hourly()}) == []
        assert detector.detect({group: [START], uuid4(): [START]}) == []
        assert detector.detect({group: hourly(), uuid4(): []}) == []


def graph_of(*edges):
    links = [
        SimpleNamespace(parent_group_id=parent, child_group_id=child, confidence=confidence)
        for parent, child, confidence in edges
    ]
    return CascadeGraph.from_links(links)


class TestCascadeGraph:
    """Test chain traversal over stored links."""

    def test_linear_chain(self):
        a, b, c = uuid4(), uuid4(), uuid4()
        graph = graph_of((a, b, 0.9), (b, c, 0.8))

        chain = graph.chain(a)

        assert [(n.group_id, n.depth, n.via_group_id) for n in chain.descendants] == [
            (b, 1, None),
            (c, 2, b),
        ]
        assert chain.ancestors == []
        assert not chain.truncated

        ancestors, _ = graph.ancestors(c)
        assert [n.group_id for n in ancestors] == [b, a]

    def test_cycle_terminates_and_is_flagged(self):
        a, b, c = uuid4(), uuid4(), uuid4()
        graph = graph_of((a, b, 0.9), (b, c, 0.8), (c, a, 0.7))

        descendants, truncated = graph.descendants(a)

        assert [n.group_id for n in descendants] == [b, c]
        assert truncated

    def test_diamond_reported_once(self):
        a, b, c, d = uuid4(), uuid4(), uuid4(), uuid4()
        graph = graph_of((a, b, 0.9), (a, c, 0.6), (b, d, 0.8), (c, d, 0.7))

        descendants, truncated = graph.descendants(a)

        assert [n.group_id for n in descendants] == [b, c, d]
        assert [n.depth for n in descendants] == [1, 1, 2]
        assert not truncated

    def test_depth_cap(self):
        a, b, c, d = uuid4(), uuid4(), uuid4(), uuid4()
        graph = graph_of((a, b, 0.9), (b, c, 0.9), (c, d, 0.9))

        descendants, truncated = graph.descendants(a, max_depth=2)

        assert [n.group_id for n in descendants] == [b, c]
        assert truncated

    def test_unknown_group(self):
        chain = CascadeGraph().chain(uuid4())

        assert chain.ancestors == []
        assert chain.descendants == []
        assert not chain.truncated

    def test_self_links_ignored(self):
        a = uuid4()
        graph = graph_of((a, a, 1.0))

        assert graph.edges == []
