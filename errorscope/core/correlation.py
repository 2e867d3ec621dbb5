"""
Correlation engine: temporal, release, period and user correlation, plus
burst and hour/weekday pattern detection.

Senior Engineering Note:
- Pure functions over OccurrenceRecord tuples; the caller fetches the window
- Every analysis returns an empty result (or None) for empty and
  single-point inputs instead of raising
- Counts are sums of sample_weight so sampled data estimates true volume
"""
import logging
from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, Optional, Sequence
from uuid import UUID

from errorscope.core import stats
from errorscope.models.error_group import Severity
from errorscope.schemas.analytics import (
    BurstWindow,
    CyclicalPattern,
    PeriodComparison,
    PeriodStats,
    ReleaseStats,
    TemporalCorrelation,
    UserCorrelation,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class OccurrenceRecord:
    """The slice of an Occurrence (joined with its group) that analyses need."""

    group_id: UUID
    error_type: str
    severity: Severity
    occurred_at: datetime
    weight: float = 1.0
    platform: Optional[str] = None
    app_version: Optional[str] = None
    revision: Optional[str] = None
    user_id: Optional[str] = None


def _weighted(records: Iterable[OccurrenceRecord]) -> float:
    return sum(r.weight for r in records)


class CorrelationEngine:
    """
    Read-only correlation analyses.

    Configured once with thresholds; every method takes the records of one
    application and window.
    """

    def __init__(
        self,
        temporal_window_seconds: int = 300,
        temporal_min_co_occurrences: int = 3,
        temporal_max_groups: int = 50,
        release_key: str = "app_version",
        release_problem_margin_pct: float = 20.0,
        user_min_error_types: int = 2,
        burst_gap_seconds: float = 60.0,
        burst_min_occurrences: int = 5,
        pattern_min_occurrences: int = 10,
    ):
        self.temporal_window_seconds = temporal_window_seconds
        self.temporal_min_co_occurrences = temporal_min_co_occurrences
        self.temporal_max_groups = temporal_max_groups
        self.release_key = release_key
        self.release_problem_margin_pct = release_problem_margin_pct
        self.user_min_error_types = user_min_error_types
        self.burst_gap_seconds = burst_gap_seconds
        self.burst_min_occurrences = burst_min_occurrences
        self.pattern_min_occurrences = pattern_min_occurrences

    @classmethod
    def from_settings(cls, settings) -> "CorrelationEngine":
        return cls(
            temporal_window_seconds=settings.temporal_window_seconds,
            temporal_min_co_occurrences=settings.temporal_min_co_occurrences,
            temporal_max_groups=settings.temporal_max_groups,
            release_key=settings.release_key,
            release_problem_margin_pct=settings.release_problem_margin_pct,
            user_min_error_types=settings.user_correlation_min_error_types,
            burst_gap_seconds=settings.burst_gap_seconds,
            burst_min_occurrences=settings.burst_min_occurrences,
            pattern_min_occurrences=settings.pattern_min_occurrences,
        )

    # ------------------------------------------------------------------
    # Temporal
    # ------------------------------------------------------------------

    def temporal_correlation(
        self,
        records: Sequence[OccurrenceRecord],
    ) -> list[TemporalCorrelation]:
        """
        Pairs of groups that land in the same time slot more often than chance.

        Slots are fixed windows of temporal_window_seconds. For groups A and B
        occupying a and b of T slots, independence predicts a * b / T shared
        slots; a pair is reported when the observed count is above that and
        at least temporal_min_co_occurrences.

        Returns:
            Pairs ranked by co-occurrence count, then lift
        """
        if len(records) < 2:
            return []

        origin = min(r.occurred_at for r in records)
        latest = max(r.occurred_at for r in records)
        width = self.temporal_window_seconds
        total_slots = int((latest - origin).total_seconds() // width) + 1
        if total_slots < 2:
            return []

        slot_counts: dict[UUID, dict[int, float]] = defaultdict(lambda: defaultdict(float))
        error_types: dict[UUID, str] = {}
        for record in records:
            slot = int((record.occurred_at - origin).total_seconds() // width)
            slot_counts[record.group_id][slot] += record.weight
            error_types[record.group_id] = record.error_type

        if len(slot_counts) < 2:
            return []

        # Cap the quadratic pair scan to the most active groups
        groups = sorted(
            slot_counts,
            key=lambda g: sum(slot_counts[g].values()),
            reverse=True,
        )[: self.temporal_max_groups]

        results = []
        for i, group_a in enumerate(groups):
            slots_a = slot_counts[group_a]
            for group_b in groups[i + 1:]:
                slots_b = slot_counts[group_b]
                shared = slots_a.keys() & slots_b.keys()
                co_occurrences = len(shared)
                if co_occurrences < self.temporal_min_co_occurrences:
                    continue

                expected = len(slots_a) * len(slots_b) / total_slots
                if co_occurrences <= expected:
                    continue

                correlation = _sparse_pearson(slots_a, slots_b, total_slots)
                results.append(
                    TemporalCorrelation(
                        group_a=group_a,
                        group_b=group_b,
                        error_type_a=error_types[group_a],
                        error_type_b=error_types[group_b],
                        co_occurrences=co_occurrences,
                        expected_co_occurrences=round(expected, 3),
                        lift=round(co_occurrences / expected, 3) if expected else 0.0,
                        correlation=correlation,
                        strength=stats.correlation_strength(correlation),
                    )
                )

        results.sort(key=lambda r: (r.co_occurrences, r.lift), reverse=True)
        return results

    # ------------------------------------------------------------------
    # Release
    # ------------------------------------------------------------------

    def release_of(self, record: OccurrenceRecord) -> Optional[str]:
        return getattr(record, self.release_key)

    def release_correlation(
        self,
        records: Sequence[OccurrenceRecord],
    ) -> list[ReleaseStats]:
        """
        Per-release volume and critical count, each compared to its predecessor.

        Releases are ordered by first appearance. A release is problematic when
        its volume grew by more than release_problem_margin_pct over the
        previous release. Fewer than two releases yields an empty list.
        """
        by_release: dict[str, list[OccurrenceRecord]] = defaultdict(list)
        for record in records:
            release = self.release_of(record)
            if release:
                by_release[release].append(record)

        if len(by_release) < 2:
            return []

        ordered = sorted(
            by_release.items(),
            key=lambda item: min(r.occurred_at for r in item[1]),
        )

        results: list[ReleaseStats] = []
        previous: Optional[ReleaseStats] = None
        for release, release_records in ordered:
            count = _weighted(release_records)
            critical = _weighted(r for r in release_records if r.severity == Severity.CRITICAL)
            current = ReleaseStats(
                release=release,
                occurrence_count=round(count, 1),
                critical_count=round(critical, 1),
                critical_ratio=round(critical / count, 3) if count else 0.0,
                distinct_error_types=len({r.error_type for r in release_records}),
                first_seen=min(r.occurred_at for r in release_records),
                last_seen=max(r.occurred_at for r in release_records),
            )
            if previous is not None:
                change = stats.change_percentage(count, previous.occurrence_count)
                current.previous_release = previous.release
                current.change_percentage = change
                current.trend = stats.trend_direction(change)
                current.problematic = (
                    change is not None and change > self.release_problem_margin_pct
                )
                if current.problematic:
                    logger.info(
                        f"Release {release} flagged problematic: "
                        f"{previous.occurrence_count:.0f} -> {count:.0f} ({change:+.1f}%)"
                    )
            results.append(current)
            previous = current

        return results

    # ------------------------------------------------------------------
    # Period comparison
    # ------------------------------------------------------------------

    def period_comparison(
        self,
        current_records: Sequence[OccurrenceRecord],
        previous_records: Sequence[OccurrenceRecord],
        current_range: tuple[datetime, datetime],
        previous_range: tuple[datetime, datetime],
    ) -> Optional[PeriodComparison]:
        """Aggregate count and severity mix of two ranges. None when both are empty."""
        if not current_records and not previous_records:
            return None

        current = _period_stats(current_records, current_range)
        previous = _period_stats(previous_records, previous_range)
        change = stats.change_percentage(current.occurrence_count, previous.occurrence_count)
        return PeriodComparison(
            current=current,
            previous=previous,
            change_percentage=change,
            critical_change_percentage=stats.change_percentage(
                current.critical_count, previous.critical_count
            ),
            trend=stats.trend_direction(change),
        )

    # ------------------------------------------------------------------
    # User
    # ------------------------------------------------------------------

    def user_correlation(
        self,
        records: Sequence[OccurrenceRecord],
        min_error_types: Optional[int] = None,
        limit: int = 50,
    ) -> list[UserCorrelation]:
        """
        Users who triggered at least K distinct error types.

        Ranked by distinct type count, then occurrence volume.
        """
        threshold = min_error_types or self.user_min_error_types
        types_by_user: dict[str, set[str]] = defaultdict(set)
        groups_by_user: dict[str, set[UUID]] = defaultdict(set)
        volume_by_user: dict[str, float] = defaultdict(float)

        for record in records:
            if not record.user_id:
                continue
            types_by_user[record.user_id].add(record.error_type)
            groups_by_user[record.user_id].add(record.group_id)
            volume_by_user[record.user_id] += record.weight

        results = [
            UserCorrelation(
                user_id=user_id,
                distinct_error_types=len(error_types),
                occurrence_count=round(volume_by_user[user_id], 1),
                error_types=sorted(error_types),
                group_ids=sorted(groups_by_user[user_id], key=str),
            )
            for user_id, error_types in types_by_user.items()
            if len(error_types) >= threshold
        ]
        results.sort(key=lambda u: (u.distinct_error_types, u.occurrence_count), reverse=True)
        return results[:limit]

    # ------------------------------------------------------------------
    # Patterns
    # ------------------------------------------------------------------

    def burst_detection(self, records: Sequence[OccurrenceRecord]) -> list[BurstWindow]:
        """
        Runs of one group's occurrences where no gap exceeds burst_gap_seconds.

        A run of at least burst_min_occurrences rows is a burst. Intensity is
        graded on the weighted count so sampled bursts are not understated.

        Returns:
            Bursts ordered by start time
        """
        by_group: dict[UUID, list[OccurrenceRecord]] = defaultdict(list)
        for record in records:
            by_group[record.group_id].append(record)

        bursts: list[BurstWindow] = []
        for group_records in by_group.values():
            if len(group_records) < self.burst_min_occurrences:
                continue
            ordered = sorted(group_records, key=lambda r: r.occurred_at)
            run = [ordered[0]]
            for record in ordered[1:]:
                gap = (record.occurred_at - run[-1].occurred_at).total_seconds()
                if gap <= self.burst_gap_seconds:
                    run.append(record)
                    continue
                self._close_run(run, bursts)
                run = [record]
            self._close_run(run, bursts)

        bursts.sort(key=lambda b: (b.start, str(b.group_id)))
        return bursts

    def _close_run(self, run: list[OccurrenceRecord], bursts: list[BurstWindow]) -> None:
        if len(run) < self.burst_min_occurrences:
            return
        count = _weighted(run)
        start, end = run[0].occurred_at, run[-1].occurred_at
        bursts.append(
            BurstWindow(
                group_id=run[0].group_id,
                error_type=run[0].error_type,
                start=start,
                end=end,
                duration_seconds=round((end - start).total_seconds(), 1),
                occurrence_count=round(count, 1),
                intensity=stats.burst_intensity(count),
            )
        )

    def cyclical_patterns(self, records: Sequence[OccurrenceRecord]) -> list[CyclicalPattern]:
        """
        Hour-of-day and weekday rhythm per group (UTC).

        Peak hours hold more than twice the hourly mean. The pattern is
        business_hours with 3+ peaks in 09-17, night with 2+ peaks in 00-06,
        weekend when Saturday and Sunday carry over half the volume, and
        uniform otherwise. Strength is the coefficient of variation of the
        hourly counts, capped at 1.

        Returns:
            Patterns ranked by strength, then volume
        """
        by_group: dict[UUID, list[OccurrenceRecord]] = defaultdict(list)
        for record in records:
            by_group[record.group_id].append(record)

        eligible = [
            group_records
            for group_records in by_group.values()
            if _weighted(group_records) >= self.pattern_min_occurrences
        ]
        eligible.sort(key=_weighted, reverse=True)

        results = [
            _cyclical_pattern(group_records)
            for group_records in eligible[: self.temporal_max_groups]
        ]
        results.sort(key=lambda p: (p.pattern_strength, p.occurrence_count), reverse=True)
        return results


def _cyclical_pattern(records: Sequence[OccurrenceRecord]) -> CyclicalPattern:
    hourly = [0.0] * 24
    weekday = [0.0] * 7
    for record in records:
        hourly[record.occurred_at.hour] += record.weight
        weekday[record.occurred_at.weekday()] += record.weight

    total = sum(hourly)
    mean, std = stats.mean_and_std(hourly)
    peak_hours = [hour for hour, count in enumerate(hourly) if count > mean * 2]
    strength = min(round(std / mean, 2), 1.0) if mean else 0.0

    return CyclicalPattern(
        group_id=records[0].group_id,
        error_type=records[0].error_type,
        pattern_type=_pattern_type(peak_hours, weekday, total),
        peak_hours=peak_hours,
        hourly_distribution=[round(c, 1) for c in hourly],
        weekday_distribution=[round(c, 1) for c in weekday],
        pattern_strength=strength,
        occurrence_count=round(total, 1),
    )


def _pattern_type(peak_hours: list[int], weekday: list[float], total: float) -> str:
    if sum(1 for hour in peak_hours if 9 <= hour <= 17) >= 3:
        return "business_hours"
    if sum(1 for hour in peak_hours if 0 <= hour <= 6) >= 2:
        return "night"
    # Saturday and Sunday
    if weekday[5] + weekday[6] > total * 0.5:
        return "weekend"
    return "uniform"


def _period_stats(
    records: Sequence[OccurrenceRecord],
    period: tuple[datetime, datetime],
) -> PeriodStats:
    mix: dict[str, float] = {severity.value: 0.0 for severity in Severity}
    for record in records:
        mix[Severity(record.severity).value] += record.weight
    return PeriodStats(
        start=period[0],
        end=period[1],
        occurrence_count=round(_weighted(records), 1),
        critical_count=round(mix[Severity.CRITICAL.value], 1),
        severity_mix={k: round(v, 1) for k, v in mix.items()},
    )


def _sparse_pearson(a: dict[int, float], b: dict[int, float], n: int) -> float:
    """
    Pearson correlation of two per-slot count series stored sparsely.

    Slots absent from a dict are zero; n is the total number of slots.
    """
    if n < 2:
        return 0.0
    sum_a = sum(a.values())
    sum_b = sum(b.values())
    sum_a2 = sum(v * v for v in a.values())
    sum_b2 = sum(v * v for v in b.values())
    sum_ab = sum(a[k] * b[k] for k in a.keys() & b.keys())

    cov = sum_ab - sum_a * sum_b / n
    var_a = sum_a2 - sum_a * sum_a / n
    var_b = sum_b2 - sum_b * sum_b / n
    if var_a <= 0 or var_b <= 0:
        return 0.0
    return round(cov / (var_a * var_b) ** 0.5, 3)
