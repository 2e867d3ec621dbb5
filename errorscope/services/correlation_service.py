"""
Correlation report assembly (correlationReport).

Senior Engineering Note:
- One windowed read, then each analysis runs in a worker thread under the
  runner's timeout so a slow section is abandoned without blocking the loop
- A failed section is served from the last good result and listed in
  `failed`; the other sections are unaffected
"""
import asyncio
import logging
from datetime import datetime, timedelta
from typing import Any, Optional
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from errorscope.config import Settings
from errorscope.core.correlation import CorrelationEngine, OccurrenceRecord
from errorscope.errors import AnalyticsComputationError
from errorscope.schemas.analytics import (
    BurstWindow,
    CorrelationReport,
    CyclicalPattern,
    PeriodComparison,
    ReleaseStats,
    TemporalCorrelation,
    UserCorrelation,
)
from errorscope.services.analytics_runner import AnalyticsRunner
from errorscope.services.group_queries import resolve_application_id
from errorscope.services.occurrence_queries import fetch_records
from errorscope.services.report_cache import ReportCache
from errorscope.utils.timeutil import utcnow

logger = logging.getLogger(__name__)

SECTION_MODELS = {
    "temporal": TemporalCorrelation,
    "release_comparison": ReleaseStats,
    "period_comparison": PeriodComparison,
    "user_correlation": UserCorrelation,
    "bursts": BurstWindow,
    "cyclical_patterns": CyclicalPattern,
}


class CorrelationService:
    """Builds correlation reports for one application and window."""

    def __init__(
        self,
        settings: Settings,
        engine: Optional[CorrelationEngine] = None,
        runner: Optional[AnalyticsRunner] = None,
        cache: Optional[ReportCache] = None,
    ):
        self.settings = settings
        self.engine = engine or CorrelationEngine.from_settings(settings)
        self.runner = runner or AnalyticsRunner(settings.analytics_timeout_seconds)
        self.cache = cache or ReportCache()

    async def correlation_report(
        self,
        db: AsyncSession,
        application: str,
        window_start: Optional[datetime] = None,
        window_end: Optional[datetime] = None,
    ) -> CorrelationReport:
        """
        Temporal, release, period and user correlation plus burst and
        hour/weekday patterns for a window.

        Raises:
            NotFoundError: unknown application
        """
        application_id = await resolve_application_id(db, application)
        end = window_end or utcnow()
        start = window_start or end - timedelta(days=self.settings.correlation_window_days)
        length = end - start
        report = CorrelationReport(application=application, window_start=start, window_end=end)

        try:
            current = await fetch_records(db, application_id, start, end)
            previous = await fetch_records(db, application_id, start - length, start)
        except Exception as e:
            logger.error(f"Correlation read failed for {application}: {e}", exc_info=True)
            await self._fill_from_cache(report, application_id, length, list(SECTION_MODELS))
            return report

        results = await self.runner.run_all(
            self._analyses(current, previous, (start, end), (start - length, start))
        )

        failed = []
        for name, result in results.items():
            if isinstance(result, AnalyticsComputationError):
                failed.append(name)
                continue
            setattr(report, name, result)
            await self.cache.set(self._cache_key(application_id, length, name), _dump(result))

        if failed:
            await self._fill_from_cache(report, application_id, length, failed)
        return report

    def _analyses(
        self,
        current: list[OccurrenceRecord],
        previous: list[OccurrenceRecord],
        current_range: tuple[datetime, datetime],
        previous_range: tuple[datetime, datetime],
    ) -> dict[str, Any]:
        engine = self.engine
        return {
            "temporal": lambda: asyncio.to_thread(engine.temporal_correlation, current),
            "release_comparison": lambda: asyncio.to_thread(engine.release_correlation, current),
            "period_comparison": lambda: asyncio.to_thread(
                engine.period_comparison, current, previous, current_range, previous_range
            ),
            "user_correlation": lambda: asyncio.to_thread(engine.user_correlation, current),
            "bursts": lambda: asyncio.to_thread(engine.burst_detection, current),
            "cyclical_patterns": lambda: asyncio.to_thread(engine.cyclical_patterns, current),
        }

    async def _fill_from_cache(
        self,
        report: CorrelationReport,
        application_id: UUID,
        length: timedelta,
        sections: list[str],
    ) -> None:
        for name in sections:
            if name not in report.failed:
                report.failed.append(name)
            cached = await self.cache.get(self._cache_key(application_id, length, name))
            if cached is None:
                continue
            model = SECTION_MODELS[name]
            if isinstance(cached, list):
                value = [model.model_validate(item) for item in cached]
            else:
                value = model.model_validate(cached)
            setattr(report, name, value)
            report.stale.append(name)
            logger.info(f"Serving stale {name} section for application {application_id}")

    @staticmethod
    def _cache_key(application_id: UUID, length: timedelta, section: str) -> str:
        return f"correlation:{application_id}:{int(length.total_seconds())}:{section}"


def _dump(result: Any) -> Any:
    if result is None:
        return None
    if isinstance(result, list):
        return [item.model_dump(mode="json") for item in result]
    return result.model_dump(mode="json")
