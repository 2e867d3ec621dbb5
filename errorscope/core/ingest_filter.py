"""
Ingestion filters: ignore list and occurrence sampling.

Senior Engineering Note:
- Ignored errors are dropped before fingerprinting, silently
- Sampling only thins Occurrence rows; group counters stay exact
- The first occurrence of a group and critical errors are always kept
"""
import random
import re
from dataclasses import dataclass
from typing import Callable, Optional


class IgnoreFilter:
    """Drops error types that match configured names or regular expressions."""

    def __init__(
        self,
        ignored_types: Optional[list[str]] = None,
        ignored_patterns: Optional[list[str]] = None,
    ):
        self.ignored_types = frozenset(ignored_types or ())
        # Patterns are validated by Settings, compile here once
        self.ignored_patterns = [re.compile(p) for p in (ignored_patterns or ())]

    def is_ignored(self, error_type: str) -> bool:
        if error_type in self.ignored_types:
            return True
        return any(pattern.search(error_type) for pattern in self.ignored_patterns)


@dataclass(frozen=True)
class SamplingDecision:
    persist: bool
    sample_weight: float


class OccurrenceSampler:
    """
    Decides whether an occurrence row is written.

    sample_weight is 1 / sampling_rate for sampled rows so weighted counts
    over Occurrence estimate the true volume; always-kept rows weigh 1.
    """

    def __init__(
        self,
        sampling_rate: float = 1.0,
        rng: Optional[Callable[[], float]] = None,
    ):
        self.sampling_rate = sampling_rate
        self._rng = rng or random.random

    def decide(self, is_first: bool, is_critical: bool) -> SamplingDecision:
        if is_first or is_critical or self.sampling_rate >= 1.0:
            return SamplingDecision(persist=True, sample_weight=1.0)
        if self._rng() < self.sampling_rate:
            return SamplingDecision(persist=True, sample_weight=1.0 / self.sampling_rate)
        return SamplingDecision(persist=False, sample_weight=0.0)
