"""
Read-side queries over error groups (listGroups, getGroup).
"""
import logging
from datetime import datetime, timedelta
from typing import Optional
from uuid import UUID

from sqlalchemy import Select, asc, desc, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from errorscope.errors import NotFoundError
from errorscope.models.application import Application
from errorscope.models.error_group import ErrorGroup, GroupStatus
from errorscope.models.occurrence import Occurrence
from errorscope.schemas.group import GroupFilter, GroupListResponse, GroupResponse
from errorscope.utils.timeutil import utcnow

logger = logging.getLogger(__name__)

SORT_COLUMNS = {
    "last_seen": ErrorGroup.last_seen,
    "first_seen": ErrorGroup.first_seen,
    "occurrence_count": ErrorGroup.occurrence_count,
    "priority": ErrorGroup.priority_level,
}


def timeframe_bounds(timeframe: str, now: Optional[datetime] = None) -> tuple[datetime, Optional[datetime]]:
    """Translate a named timeframe into [start, end) on last_seen."""
    now = now or utcnow()
    midnight = now.replace(hour=0, minute=0, second=0, microsecond=0)
    if timeframe == "last_hour":
        return now - timedelta(hours=1), None
    if timeframe == "today":
        return midnight, None
    if timeframe == "yesterday":
        return midnight - timedelta(days=1), midnight
    if timeframe == "last_7_days":
        return now - timedelta(days=7), None
    if timeframe == "last_30_days":
        return now - timedelta(days=30), None
    if timeframe == "last_90_days":
        return now - timedelta(days=90), None
    raise ValueError(f"Unknown timeframe: {timeframe}")


async def resolve_application_id(db: AsyncSession, name: str) -> UUID:
    """Look up an application by name. NotFoundError if it was never seen."""
    result = await db.execute(select(Application.id).where(Application.name == name))
    application_id = result.scalar_one_or_none()
    if application_id is None:
        raise NotFoundError("Application", name)
    return application_id


def _apply_filters(stmt: Select, filters: GroupFilter, application_id: Optional[UUID], now: datetime) -> Select:
    if application_id is not None:
        stmt = stmt.where(ErrorGroup.application_id == application_id)

    if filters.status == "unresolved":
        stmt = stmt.where(ErrorGroup.status.in_(GroupStatus.unresolved()))
    elif filters.status:
        stmt = stmt.where(ErrorGroup.status == GroupStatus(filters.status))

    if filters.severity:
        stmt = stmt.where(ErrorGroup.severity == filters.severity)

    if filters.platform:
        on_platform = (
            select(Occurrence.id)
            .where(Occurrence.group_id == ErrorGroup.id)
            .where(Occurrence.platform == filters.platform)
            .exists()
        )
        stmt = stmt.where(on_platform)

    if filters.timeframe:
        start, end = timeframe_bounds(filters.timeframe, now)
        stmt = stmt.where(ErrorGroup.last_seen >= start)
        if end is not None:
            stmt = stmt.where(ErrorGroup.last_seen < end)

    if filters.search:
        pattern = f"%{filters.search.lower()}%"
        stmt = stmt.where(
            or_(
                func.lower(ErrorGroup.error_type).like(pattern),
                func.lower(ErrorGroup.message).like(pattern),
            )
        )
    return stmt


async def list_groups(
    db: AsyncSession,
    filters: GroupFilter,
    now: Optional[datetime] = None,
) -> GroupListResponse:
    """
    Paginated, filtered, ordered list of groups.

    Unknown application names yield an empty page rather than an error.
    """
    now = now or utcnow()
    application_id = None
    if filters.application:
        try:
            application_id = await resolve_application_id(db, filters.application)
        except NotFoundError:
            return GroupListResponse(
                items=[], total=0, page=1, page_size=filters.page_size, pages=0
            )

    stmt = _apply_filters(select(ErrorGroup), filters, application_id, now)

    count_stmt = select(func.count()).select_from(stmt.subquery())
    total = (await db.execute(count_stmt)).scalar_one()
    total_pages = (total + filters.page_size - 1) // filters.page_size if total > 0 else 1

    # Clamp page to valid range so out-of-range pages return the last page
    page = min(filters.page, total_pages)

    order = desc if filters.descending else asc
    stmt = (
        stmt.order_by(order(SORT_COLUMNS[filters.sort]), desc(ErrorGroup.last_seen), ErrorGroup.id)
        .offset((page - 1) * filters.page_size)
        .limit(filters.page_size)
    )
    groups = (await db.execute(stmt)).scalars().all()

    return GroupListResponse(
        items=[GroupResponse.model_validate(g) for g in groups],
        total=total,
        page=page,
        page_size=filters.page_size,
        pages=total_pages if total > 0 else 0,
    )


async def get_group(db: AsyncSession, group_id: UUID) -> ErrorGroup:
    group = await db.get(ErrorGroup, group_id)
    if group is None:
        raise NotFoundError("ErrorGroup", group_id)
    return group
