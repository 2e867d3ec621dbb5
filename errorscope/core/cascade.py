"""
Cascade detection between error groups.

Senior Engineering Note:
- For every ordered pair (A, B) each B occurrence is matched to the nearest
  preceding A within the lag window (bisect, O(|B| log |A|))
- Confidence is chance-corrected: a parent firing constantly "explains"
  anything, so the explained fraction is measured against the share of the
  timeline its lag windows cover
- Pairs below the minimum overlap are rejected regardless of fraction
- The graph is a node table plus edge list; traversal carries a visited set
  and depth cap so cycles from independent pairwise links terminate
"""
import bisect
import logging
from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Sequence
from uuid import UUID

from errorscope.schemas.analytics import CascadeCandidate, CascadeChain, CascadeChainNode
from errorscope.utils.timeutil import to_naive_utc

logger = logging.getLogger(__name__)


EPOCH = datetime(1970, 1, 1)


def _epoch_seconds(value: datetime) -> float:
    return (to_naive_utc(value) - EPOCH).total_seconds()


def _covered_seconds(parents: Sequence[float], lag_min: float, lag_max: float,
                     start: float, end: float) -> float:
    """Length of the union of [a + lag_min, a + lag_max] clipped to [start, end]."""
    covered = 0.0
    current_start: Optional[float] = None
    current_end = 0.0
    for a in parents:
        lo = max(a + lag_min, start)
        hi = min(a + lag_max, end)
        if hi <= lo:
            continue
        if current_start is None:
            current_start, current_end = lo, hi
        elif lo <= current_end:
            current_end = max(current_end, hi)
        else:
            covered += current_end - current_start
            current_start, current_end = lo, hi
    if current_start is not None:
        covered += current_end - current_start
    return covered


class CascadeDetector:
    """
    Infers "B tends to occur shortly after A" links from occurrence timelines.

    confidence = adjusted_fraction * n / (n + prior)

    where n is the number of B occurrences with an A inside the lag window and
    adjusted_fraction = max(0, (n/|B| - coverage) / (1 - coverage)), coverage
    being the fraction of the observed span covered by A's lag windows.
    """

    def __init__(
        self,
        lag_min_seconds: float = 0.0,
        lag_max_seconds: float = 300.0,
        min_confidence: float = 0.5,
        min_samples: int = 5,
        confidence_prior: float = 2.0,
    ):
        self.lag_min_seconds = lag_min_seconds
        self.lag_max_seconds = lag_max_seconds
        self.min_confidence = min_confidence
        self.min_samples = min_samples
        self.confidence_prior = confidence_prior

    @classmethod
    def from_settings(cls, settings) -> "CascadeDetector":
        return cls(
            lag_min_seconds=settings.cascade_lag_min_seconds,
            lag_max_seconds=settings.cascade_lag_max_seconds,
            min_confidence=settings.cascade_min_confidence,
            min_samples=settings.cascade_min_samples,
            confidence_prior=settings.cascade_confidence_prior,
        )

    def detect(self, timelines: dict[UUID, Sequence[datetime]]) -> list[CascadeCandidate]:
        """
        Evaluate every ordered pair of groups.

        Args:
            timelines: group id -> occurrence timestamps

        Returns:
            Candidates with at least one explained occurrence, accepted first,
            then by confidence
        """
        series = {
            group_id: sorted(_epoch_seconds(ts) for ts in stamps)
            for group_id, stamps in timelines.items()
            if stamps
        }
        if len(series) < 2:
            return []

        start = min(s[0] for s in series.values())
        end = max(s[-1] for s in series.values())
        span = end - start
        if span <= 0:
            return []

        coverage = {
            group_id: _covered_seconds(
                stamps, self.lag_min_seconds, self.lag_max_seconds, start, end
            ) / span
            for group_id, stamps in series.items()
        }

        candidates = []
        for parent_id, parents in series.items():
            for child_id, children in series.items():
                if parent_id == child_id:
                    continue
                candidate = self._evaluate_pair(
                    parent_id, parents, child_id, children, coverage[parent_id]
                )
                if candidate is not None:
                    candidates.append(candidate)

        candidates.sort(key=lambda c: (c.accepted, c.confidence), reverse=True)
        return candidates

    def _evaluate_pair(
        self,
        parent_id: UUID,
        parents: list[float],
        child_id: UUID,
        children: list[float],
        parent_coverage: float,
    ) -> Optional[CascadeCandidate]:
        lags = []
        for b in children:
            # Latest A with lag >= lag_min; if it is too old, none fits
            idx = bisect.bisect_right(parents, b - self.lag_min_seconds) - 1
            if idx >= 0:
                lag = b - parents[idx]
                if lag <= self.lag_max_seconds:
                    lags.append(lag)

        n = len(lags)
        if n == 0:
            return None

        fraction = n / len(children)
        if parent_coverage >= 1.0:
            adjusted = 0.0
        else:
            adjusted = max(0.0, (fraction - parent_coverage) / (1.0 - parent_coverage))
        confidence = adjusted * n / (n + self.confidence_prior)

        lag_mean = sum(lags) / n
        lag_variance = sum((lag - lag_mean) ** 2 for lag in lags) / n

        accepted = n >= self.min_samples and confidence >= self.min_confidence
        return CascadeCandidate(
            parent_group_id=parent_id,
            child_group_id=child_id,
            sample_count=n,
            explained_fraction=round(fraction, 4),
            chance_coverage=round(parent_coverage, 4),
            confidence=round(confidence, 4),
            lag_mean_seconds=round(lag_mean, 3),
            lag_variance_seconds=round(lag_variance, 3),
            probability=round(min(1.0, n / len(parents)), 4),
            parent_occurrences=len(parents),
            child_occurrences=len(children),
            accepted=accepted,
        )


@dataclass(frozen=True)
class Edge:
    parent: int
    child: int
    confidence: float


class CascadeGraph:
    """
    Cascade links as a node table and an edge list with adjacency indexes.

    Nodes are referenced by integer position, never by object pointers.
    """

    def __init__(self):
        self.nodes: list[UUID] = []
        self.edges: list[Edge] = []
        self._index: dict[UUID, int] = {}
        self._outgoing: dict[int, list[int]] = defaultdict(list)
        self._incoming: dict[int, list[int]] = defaultdict(list)

    def _node(self, group_id: UUID) -> int:
        if group_id not in self._index:
            self._index[group_id] = len(self.nodes)
            self.nodes.append(group_id)
        return self._index[group_id]

    def add_link(self, parent_id: UUID, child_id: UUID, confidence: float) -> None:
        if parent_id == child_id:
            return
        edge = Edge(self._node(parent_id), self._node(child_id), confidence)
        self.edges.append(edge)
        self._outgoing[edge.parent].append(len(self.edges) - 1)
        self._incoming[edge.child].append(len(self.edges) - 1)

    @classmethod
    def from_links(cls, links) -> "CascadeGraph":
        graph = cls()
        for link in links:
            graph.add_link(link.parent_group_id, link.child_group_id, link.confidence)
        return graph

    def descendants(self, group_id: UUID, max_depth: int = 10) -> tuple[list[CascadeChainNode], bool]:
        return self._walk(group_id, max_depth, downstream=True)

    def ancestors(self, group_id: UUID, max_depth: int = 10) -> tuple[list[CascadeChainNode], bool]:
        return self._walk(group_id, max_depth, downstream=False)

    def chain(self, group_id: UUID, max_depth: int = 10) -> CascadeChain:
        ancestors, truncated_up = self.ancestors(group_id, max_depth)
        descendants, truncated_down = self.descendants(group_id, max_depth)
        return CascadeChain(
            group_id=group_id,
            ancestors=ancestors,
            descendants=descendants,
            truncated=truncated_up or truncated_down,
        )

    def _walk(self, group_id: UUID, max_depth: int, downstream: bool) -> tuple[list[CascadeChainNode], bool]:
        """
        Breadth-first walk with a visited set.

        A cycle back onto the current path or hitting max_depth with edges left
        ends that branch and sets the truncated flag; the rest of the walk
        continues. Diamonds (two paths to one node) are reported once.
        """
        start = self._index.get(group_id)
        if start is None:
            return [], False

        adjacency = self._outgoing if downstream else self._incoming
        via: dict[int, Optional[int]] = {start: None}
        visited = {start}
        frontier = [start]
        results: list[CascadeChainNode] = []
        truncated = False
        depth = 0

        while frontier:
            depth += 1
            next_frontier = []
            for node in frontier:
                edge_ids = adjacency.get(node, [])
                if depth > max_depth:
                    if edge_ids:
                        truncated = True
                    continue
                for edge_id in sorted(edge_ids, key=lambda e: self.edges[e].confidence, reverse=True):
                    edge = self.edges[edge_id]
                    neighbour = edge.child if downstream else edge.parent
                    if neighbour in visited:
                        if self._on_path(neighbour, node, via):
                            truncated = True
                        continue
                    visited.add(neighbour)
                    via[neighbour] = node
                    next_frontier.append(neighbour)
                    results.append(
                        CascadeChainNode(
                            group_id=self.nodes[neighbour],
                            depth=depth,
                            via_group_id=self.nodes[node] if node != start else None,
                            confidence=edge.confidence,
                        )
                    )
            frontier = next_frontier

        if truncated:
            logger.debug(f"Cascade walk from {group_id} truncated (cycle or depth cap {max_depth})")
        return results, truncated

    @staticmethod
    def _on_path(target: int, node: int, via: dict[int, Optional[int]]) -> bool:
        current: Optional[int] = node
        while current is not None:
            if current == target:
                return True
            current = via.get(current)
        return False
