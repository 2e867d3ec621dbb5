"""
Baseline evaluation runs and the baselineAlerts query.

Senior Engineering Note:
- Tracks the application-wide total plus the most active groups
- Each key is processed in its own transaction: read state, observe every
  closed bucket since last_bucket_end, guarded upsert, insert alerts
- The upsert only wins when it advances last_bucket_end, so overlapping
  scheduler ticks cannot double-count a bucket or double-raise an alert
"""
import logging
from collections import defaultdict
from datetime import datetime, timedelta
from typing import Optional
from uuid import UUID, uuid4

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from errorscope.config import Settings
from errorscope.core.baseline import BaselineMonitor, BaselineWindow, SpikeAlert
from errorscope.errors import ConcurrencyConflict
from errorscope.models.baseline import GLOBAL_SCOPE, BaselineAlert, BaselineState, group_scope
from errorscope.models.occurrence import Occurrence
from errorscope.schemas.analytics import BaselineRunSummary
from errorscope.services.event_bus import Event, EventBus, EventType
from errorscope.services.group_queries import resolve_application_id
from errorscope.services.occurrence_queries import most_active_groups
from errorscope.utils.timeutil import floor_to_granularity, granularity_delta, utcnow
from errorscope.utils.upsert import insert_for, is_transient

logger = logging.getLogger(__name__)


class BaselineService:
    """Feeds closed buckets to the BaselineMonitor and persists its state."""

    def __init__(
        self,
        settings: Settings,
        monitor: Optional[BaselineMonitor] = None,
        event_bus: Optional[EventBus] = None,
    ):
        self.settings = settings
        self.monitor = monitor or BaselineMonitor.from_settings(settings)
        self.event_bus = event_bus
        self.granularity = settings.baseline_granularity
        self.bucket = granularity_delta(self.granularity)

    async def evaluate(
        self,
        db: AsyncSession,
        application: str,
        now: Optional[datetime] = None,
    ) -> BaselineRunSummary:
        """
        Observe every bucket closed since the last run, for every tracked key.

        Raises:
            NotFoundError: unknown application
        """
        application_id = await resolve_application_id(db, application)
        closed_until = floor_to_granularity(now or utcnow(), self.granularity)

        keys: list[tuple[str, Optional[UUID]]] = [(GLOBAL_SCOPE, None)]
        if self.settings.baseline_max_tracked_groups:
            group_ids = await most_active_groups(
                db,
                application_id,
                closed_until - self.bucket * self.monitor.window_size,
                closed_until,
                self.settings.baseline_max_tracked_groups,
            )
            keys.extend((group_scope(group_id), group_id) for group_id in group_ids)
        await db.commit()

        summary = BaselineRunSummary(
            application=application,
            keys_evaluated=0,
            buckets_observed=0,
            alerts_raised=0,
        )
        for scope_key, group_id in keys:
            try:
                observed, alerts = await self._evaluate_key(
                    db, application_id, scope_key, group_id, closed_until
                )
            except ConcurrencyConflict as e:
                summary.conflicts += 1
                logger.warning(f"Baseline key {scope_key} skipped after contention: {e}")
                continue
            summary.keys_evaluated += 1
            summary.buckets_observed += observed
            summary.alerts_raised += len(alerts)
            await self._publish(application_id, scope_key, group_id, alerts)

        logger.info(
            f"Baseline pass for {application}: {summary.keys_evaluated} keys, "
            f"{summary.buckets_observed} buckets, {summary.alerts_raised} alerts"
        )
        return summary

    async def _evaluate_key(
        self,
        db: AsyncSession,
        application_id: UUID,
        scope_key: str,
        group_id: Optional[UUID],
        closed_until: datetime,
    ) -> tuple[int, list[SpikeAlert]]:
        try:
            state = (
                await db.execute(
                    select(BaselineState)
                    .where(BaselineState.application_id == application_id)
                    .where(BaselineState.scope_key == scope_key)
                    .where(BaselineState.granularity == self.granularity)
                )
            ).scalar_one_or_none()

            alerts: list[SpikeAlert] = []
            observed = 0
            if state is None:
                window = await self._seed(db, application_id, group_id, closed_until)
            else:
                if state.last_bucket_end >= closed_until:
                    await db.commit()
                    return 0, []
                window = BaselineWindow(
                    counts=list(state.counts),
                    mean=state.rolling_mean,
                    std=state.rolling_std,
                    last_bucket_end=state.last_bucket_end,
                    last_alert_at=state.last_alert_at,
                )
                # After a long outage only the last window's worth of buckets matters
                start = max(state.last_bucket_end, closed_until - self.bucket * self.monitor.window_size)
                counts = await self._bucket_counts(db, application_id, group_id, start, closed_until)
                bucket_start = start
                while bucket_start < closed_until:
                    bucket_end = bucket_start + self.bucket
                    alert = self.monitor.observe(
                        window, bucket_start, bucket_end, counts.get(bucket_start, 0.0)
                    )
                    if alert is not None:
                        alerts.append(alert)
                    observed += 1
                    bucket_start = bucket_end

            if not await self._save_state(db, application_id, scope_key, window):
                # Another run already advanced this key
                await db.rollback()
                logger.info(f"Baseline key {scope_key} already advanced by a concurrent run")
                return 0, []

            for alert in alerts:
                db.add(self._alert_row(application_id, scope_key, group_id, alert))
            await db.commit()
        except SQLAlchemyError as e:
            await db.rollback()
            if is_transient(e):
                raise ConcurrencyConflict(str(e)) from e
            raise
        return observed, alerts

    async def _seed(
        self,
        db: AsyncSession,
        application_id: UUID,
        group_id: Optional[UUID],
        closed_until: datetime,
    ) -> BaselineWindow:
        """Cold start: trailing history from the key's first occurrence, no alerting."""
        first_stmt = select(func.min(Occurrence.occurred_at)).where(
            Occurrence.application_id == application_id
        )
        if group_id is not None:
            first_stmt = first_stmt.where(Occurrence.group_id == group_id)
        first_seen = (await db.execute(first_stmt)).scalar_one_or_none()

        history_start = closed_until - self.bucket * self.monitor.window_size
        if first_seen is not None:
            history_start = max(history_start, floor_to_granularity(first_seen, self.granularity))

        counts = await self._bucket_counts(db, application_id, group_id, history_start, closed_until)
        series = []
        bucket_start = history_start
        while bucket_start < closed_until:
            series.append(counts.get(bucket_start, 0.0))
            bucket_start += self.bucket
        logger.info(f"Seeded baseline for {application_id}/{group_id or GLOBAL_SCOPE} with {len(series)} buckets")
        return self.monitor.seed(BaselineWindow(), series, closed_until)

    async def _bucket_counts(
        self,
        db: AsyncSession,
        application_id: UUID,
        group_id: Optional[UUID],
        start: datetime,
        end: datetime,
    ) -> dict[datetime, float]:
        """Sample-weighted occurrence counts per bucket start in [start, end)."""
        if start >= end:
            return {}
        stmt = (
            select(Occurrence.occurred_at, Occurrence.sample_weight)
            .where(Occurrence.application_id == application_id)
            .where(Occurrence.occurred_at >= start)
            .where(Occurrence.occurred_at < end)
        )
        if group_id is not None:
            stmt = stmt.where(Occurrence.group_id == group_id)
        counts: dict[datetime, float] = defaultdict(float)
        for row in (await db.execute(stmt)).all():
            counts[floor_to_granularity(row.occurred_at, self.granularity)] += row.sample_weight
        return counts

    async def _save_state(
        self,
        db: AsyncSession,
        application_id: UUID,
        scope_key: str,
        window: BaselineWindow,
    ) -> bool:
        """Upsert that only applies when it moves last_bucket_end forward."""
        insert = insert_for(db)
        now = utcnow()
        stmt = insert(BaselineState).values(
            id=uuid4(),
            application_id=application_id,
            scope_key=scope_key,
            granularity=self.granularity,
            counts=window.counts,
            rolling_mean=window.mean,
            rolling_std=window.std,
            last_bucket_end=window.last_bucket_end,
            last_alert_at=window.last_alert_at,
            created_at=now,
            updated_at=now,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[
                BaselineState.application_id,
                BaselineState.scope_key,
                BaselineState.granularity,
            ],
            set_={
                "counts": stmt.excluded.counts,
                "rolling_mean": stmt.excluded.rolling_mean,
                "rolling_std": stmt.excluded.rolling_std,
                "last_bucket_end": stmt.excluded.last_bucket_end,
                "last_alert_at": stmt.excluded.last_alert_at,
                "updated_at": now,
            },
            where=BaselineState.last_bucket_end < stmt.excluded.last_bucket_end,
        ).returning(BaselineState.id)
        return (await db.execute(stmt)).first() is not None

    def _alert_row(
        self,
        application_id: UUID,
        scope_key: str,
        group_id: Optional[UUID],
        alert: SpikeAlert,
    ) -> BaselineAlert:
        return BaselineAlert(
            application_id=application_id,
            scope_key=scope_key,
            group_id=group_id,
            granularity=self.granularity,
            bucket_start=alert.bucket_start,
            bucket_end=alert.bucket_end,
            observed_count=alert.observed_count,
            expected_mean=alert.expected_mean,
            std_dev=alert.std_dev,
            threshold=alert.threshold,
            deviation_sigma=alert.deviation_sigma,
            level=alert.level,
        )

    async def _publish(
        self,
        application_id: UUID,
        scope_key: str,
        group_id: Optional[UUID],
        alerts: list[SpikeAlert],
    ) -> None:
        if self.event_bus is None:
            return
        for alert in alerts:
            await self.event_bus.publish(
                Event(
                    EventType.BASELINE_ALERT,
                    application_id=application_id,
                    group_id=group_id,
                    payload={
                        "scope_key": scope_key,
                        "bucket_end": alert.bucket_end.isoformat(),
                        "observed_count": alert.observed_count,
                        "threshold": alert.threshold,
                        "level": alert.level,
                    },
                )
            )

    async def baseline_alerts(
        self,
        db: AsyncSession,
        application: str,
        since: Optional[datetime] = None,
        limit: int = 200,
    ) -> list[BaselineAlert]:
        """Alerts raised for an application, newest bucket first."""
        application_id = await resolve_application_id(db, application)
        since = since or utcnow() - timedelta(days=7)
        stmt = (
            select(BaselineAlert)
            .where(BaselineAlert.application_id == application_id)
            .where(BaselineAlert.bucket_end >= since)
            .order_by(BaselineAlert.bucket_end.desc(), BaselineAlert.scope_key)
            .limit(limit)
        )
        return list((await db.execute(stmt)).scalars().all())
