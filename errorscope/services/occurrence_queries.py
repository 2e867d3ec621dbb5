"""
Windowed occurrence reads shared by the analytics services.

All reads are plain SELECTs over the (application_id, occurred_at) index;
analytics tolerate rows committed while they run.
"""
from collections import defaultdict
from datetime import datetime
from uuid import UUID

from sqlalchemy import desc, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from errorscope.core.correlation import OccurrenceRecord
from errorscope.models.error_group import ErrorGroup
from errorscope.models.occurrence import Occurrence


async def fetch_records(
    db: AsyncSession,
    application_id: UUID,
    start: datetime,
    end: datetime,
) -> list[OccurrenceRecord]:
    """Occurrences in [start, end) joined with their group's type and severity."""
    stmt = (
        select(
            Occurrence.group_id,
            ErrorGroup.error_type,
            ErrorGroup.severity,
            Occurrence.occurred_at,
            Occurrence.sample_weight,
            Occurrence.platform,
            Occurrence.app_version,
            Occurrence.revision,
            Occurrence.user_id,
        )
        .join(ErrorGroup, ErrorGroup.id == Occurrence.group_id)
        .where(Occurrence.application_id == application_id)
        .where(Occurrence.occurred_at >= start)
        .where(Occurrence.occurred_at < end)
        .order_by(Occurrence.occurred_at)
    )
    rows = (await db.execute(stmt)).all()
    return [
        OccurrenceRecord(
            group_id=row.group_id,
            error_type=row.error_type,
            severity=row.severity,
            occurred_at=row.occurred_at,
            weight=row.sample_weight,
            platform=row.platform,
            app_version=row.app_version,
            revision=row.revision,
            user_id=row.user_id,
        )
        for row in rows
    ]


async def most_active_groups(
    db: AsyncSession,
    application_id: UUID,
    start: datetime,
    end: datetime,
    limit: int,
) -> list[UUID]:
    """Group ids with the most occurrence rows in the window."""
    stmt = (
        select(Occurrence.group_id, func.count(Occurrence.id).label("n"))
        .where(Occurrence.application_id == application_id)
        .where(Occurrence.occurred_at >= start)
        .where(Occurrence.occurred_at < end)
        .group_by(Occurrence.group_id)
        .order_by(desc("n"))
        .limit(limit)
    )
    return [row.group_id for row in (await db.execute(stmt)).all()]


async def fetch_timelines(
    db: AsyncSession,
    application_id: UUID,
    group_ids: list[UUID],
    start: datetime,
    end: datetime,
) -> dict[UUID, list[datetime]]:
    if not group_ids:
        return {}
    stmt = (
        select(Occurrence.group_id, Occurrence.occurred_at)
        .where(Occurrence.application_id == application_id)
        .where(Occurrence.group_id.in_(group_ids))
        .where(Occurrence.occurred_at >= start)
        .where(Occurrence.occurred_at < end)
        .order_by(Occurrence.occurred_at)
    )
    timelines: dict[UUID, list[datetime]] = defaultdict(list)
    for row in (await db.execute(stmt)).all():
        timelines[row.group_id].append(row.occurred_at)
    return dict(timelines)

