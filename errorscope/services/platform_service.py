"""
Platform stability scores (platformScores).

Aggregation happens in SQL (weighted counts per platform and severity);
scoring is the pure PlatformScorer.
"""
import logging
from collections import defaultdict
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from errorscope.config import Settings
from errorscope.core.platform_scorer import PlatformInputs, PlatformScorer
from errorscope.core.severity import severity_weight
from errorscope.models.error_group import ErrorGroup
from errorscope.models.occurrence import Occurrence
from errorscope.schemas.analytics import PlatformScore
from errorscope.services.group_queries import resolve_application_id
from errorscope.utils.timeutil import utcnow

logger = logging.getLogger(__name__)

UNKNOWN_PLATFORM = "Unknown"


class PlatformService:
    def __init__(self, settings: Settings, scorer: Optional[PlatformScorer] = None):
        self.settings = settings
        self.scorer = scorer or PlatformScorer.from_settings(settings)

    async def platform_scores(
        self,
        db: AsyncSession,
        application: str,
        window_start: Optional[datetime] = None,
        window_end: Optional[datetime] = None,
    ) -> dict[str, PlatformScore]:
        """
        Score every known or observed platform over the window.

        Raises:
            NotFoundError: unknown application
        """
        application_id = await resolve_application_id(db, application)
        end = window_end or utcnow()
        start = window_start or end - timedelta(days=self.settings.correlation_window_days)
        window_hours = (end - start).total_seconds() / 3600

        volume_stmt = (
            select(
                Occurrence.platform,
                ErrorGroup.severity,
                func.sum(Occurrence.sample_weight).label("weighted"),
            )
            .join(ErrorGroup, ErrorGroup.id == Occurrence.group_id)
            .where(Occurrence.application_id == application_id)
            .where(Occurrence.occurred_at >= start)
            .where(Occurrence.occurred_at < end)
            .group_by(Occurrence.platform, ErrorGroup.severity)
        )
        volume: dict[str, float] = defaultdict(float)
        severity_mass: dict[str, float] = defaultdict(float)
        for row in (await db.execute(volume_stmt)).all():
            platform = row.platform or UNKNOWN_PLATFORM
            weighted = float(row.weighted or 0.0)
            volume[platform] += weighted
            severity_mass[platform] += weighted * severity_weight(row.severity)

        resolved_stmt = (
            select(Occurrence.platform, ErrorGroup.id, ErrorGroup.first_seen, ErrorGroup.resolved_at)
            .join(ErrorGroup, ErrorGroup.id == Occurrence.group_id)
            .where(Occurrence.application_id == application_id)
            .where(Occurrence.occurred_at >= start)
            .where(Occurrence.occurred_at < end)
            .where(ErrorGroup.resolved_at.is_not(None))
            .distinct()
        )
        resolution_hours: dict[str, list[float]] = defaultdict(list)
        for row in (await db.execute(resolved_stmt)).all():
            hours = max(0.0, (row.resolved_at - row.first_seen).total_seconds() / 3600)
            resolution_hours[row.platform or UNKNOWN_PLATFORM].append(hours)

        platforms = list(dict.fromkeys([*self.settings.known_platforms, *sorted(volume)]))
        scores = {}
        for platform in platforms:
            count = volume.get(platform, 0.0)
            mttr = resolution_hours.get(platform)
            scores[platform] = self.scorer.score(
                PlatformInputs(
                    platform=platform,
                    occurrence_count=count,
                    window_hours=window_hours,
                    mean_severity_weight=severity_mass[platform] / count if count else None,
                    mean_resolution_hours=sum(mttr) / len(mttr) if mttr else None,
                )
            )
        return scores
